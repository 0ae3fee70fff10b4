#!/usr/bin/env python3
"""
Report sink for run statistics.

Each run appends three lines to a persistent report file and mirrors them
to the live status stream (the pathprobe.report logger):

    # of packets RECEIVED = 98
    # of packets LOST = 2
    # of packets received OUT OF ORDER = 1
"""

import logging
from pathlib import Path
from typing import Optional, Union

from .statistics import RunStatistics


class ReportSink:
    """Append-only report destination."""

    def __init__(
        self,
        path: Union[str, Path] = "output.txt",
        logger: Optional[logging.Logger] = None,
    ):
        self.path = Path(path)
        self.logger = logger or logging.getLogger(__name__)
        self.emitted = 0

    def emit(self, stats: RunStatistics) -> None:
        """
        Append one run's report and mirror it to the status stream.

        Raises:
            OSError: If the report file cannot be written
        """
        lines = stats.report_lines()

        with open(self.path, 'a') as f:
            for line in lines:
                f.write(line + "\n")

        for line in lines:
            self.logger.info(line)

        self.emitted += 1
