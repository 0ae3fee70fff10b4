#!/usr/bin/env python3
"""
Logging setup shared by the client, server and report entry points.

Every module logs through logging.getLogger(__name__); the entry points
call setup_logging() once with the flags added by add_logging_arguments().
"""

import logging
import sys
from typing import Optional


DEFAULT_FORMAT = '%(asctime)s.%(msecs)03d %(levelname)-8s %(message)s'
DEFAULT_DATE_FORMAT = '%H:%M:%S'

# Adds the call site, for per-packet tracing
VERBOSE_FORMAT = '%(asctime)s.%(msecs)03d %(levelname)-8s [%(module)s:%(funcName)s:%(lineno)d] %(message)s'


def setup_logging(
    verbose: bool = False,
    debug: bool = False,
    quiet: bool = False,
    log_file: Optional[str] = None,
) -> None:
    """
    Configure the root logger for a pathprobe process.

    Args:
        verbose: Include module, function and line in each record
        debug: Log every probe sent, received and echoed
        quiet: Warnings and errors only (report lines are suppressed too)
        log_file: Also append records to this file

    Example:
        setup_logging(debug=True, log_file="server.log")
        logging.getLogger("pathprobe.server").info("listening")
    """
    level = logging.DEBUG if debug else logging.WARNING if quiet else logging.INFO
    formatter = logging.Formatter(VERBOSE_FORMAT if verbose else DEFAULT_FORMAT, DEFAULT_DATE_FORMAT)

    handlers = [logging.StreamHandler(sys.stderr)]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    for handler in handlers:
        handler.setFormatter(formatter)

    logging.basicConfig(level=level, handlers=handlers, force=True)


def format_bytes(num_bytes: float) -> str:
    """Human-readable byte count, e.g. "1.5 KB"."""
    for unit in ('B', 'KB', 'MB', 'GB'):
        if abs(num_bytes) < 1024.0:
            return f"{num_bytes:.1f} {unit}"
        num_bytes /= 1024.0
    return f"{num_bytes:.1f} TB"


def format_duration(seconds: float) -> str:
    """Human-readable run duration: "850ms", "12.3s" or "2m 05s"."""
    if seconds < 1:
        return f"{seconds * 1000:.0f}ms"
    if seconds < 60:
        return f"{seconds:.1f}s"
    minutes, secs = divmod(int(round(seconds)), 60)
    return f"{minutes}m {secs:02d}s"


def add_logging_arguments(parser) -> None:
    """Add the shared --verbose/--debug/--quiet/--log-file flags."""
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Verbose output")
    parser.add_argument("--debug", action="store_true",
                        help="Per-packet debug logging")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Warnings and errors only")
    parser.add_argument("--log-file", default=None,
                        help="Also write logs to this file")
