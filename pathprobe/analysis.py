#!/usr/bin/env python3
"""
Report history analysis.

Reads the append-only report file written by the server (three lines per
run) and summarizes loss and reordering across runs, optionally plotting
the history.

Example:
    pathprobe-report output.txt --plot history.png
"""

import argparse
import re
import sys
from pathlib import Path
from typing import List, Optional, Union

import matplotlib
matplotlib.use('Agg')
import matplotlib.pyplot as plt
import numpy as np
import pandas as pd


LINE_PATTERNS = [
    ('received', re.compile(r'^# of packets RECEIVED = (\d+)\s*$')),
    ('lost', re.compile(r'^# of packets LOST = (\d+)\s*$')),
    ('out_of_order', re.compile(r'^# of packets received OUT OF ORDER = (\d+)\s*$')),
]

COLUMNS = ['run', 'received', 'lost', 'out_of_order', 'expected', 'loss_pct']


def parse_report(lines) -> List[dict]:
    """
    Group report lines into one record per run.

    Lines that do not match the report format are skipped; a block is only
    accepted when its three lines appear in order, so a truncated trailing
    block is dropped.
    """
    records = []
    current: dict = {}
    position = 0

    for line in lines:
        key, pattern = LINE_PATTERNS[position]
        match = pattern.match(line)
        if not match:
            # Out-of-sequence line: restart if it opens a new block
            current = {}
            position = 0
            key, pattern = LINE_PATTERNS[0]
            match = pattern.match(line)
            if not match:
                continue

        current[key] = int(match.group(1))
        position += 1
        if position == len(LINE_PATTERNS):
            records.append(current)
            current = {}
            position = 0

    return records


def load_report(path: Union[str, Path]) -> pd.DataFrame:
    """
    Load a report file into a DataFrame, one row per run.

    Args:
        path: Report file written by the server

    Returns:
        DataFrame with columns run, received, lost, out_of_order,
        expected and loss_pct
    """
    with open(path, 'r') as f:
        records = parse_report(f)

    if not records:
        return pd.DataFrame(columns=COLUMNS)

    df = pd.DataFrame.from_records(records)
    df.insert(0, 'run', np.arange(1, len(df) + 1))
    df['expected'] = df['received'] + df['lost']
    df['loss_pct'] = np.where(df['expected'] > 0,
                              df['lost'] / df['expected'].where(df['expected'] > 0, 1) * 100,
                              0.0)
    return df[COLUMNS]


def summarize(df: pd.DataFrame) -> dict:
    """Compute summary statistics across runs."""
    if df.empty:
        return {'runs': 0}

    loss = df['loss_pct'].to_numpy(dtype=float)
    return {
        'runs': int(len(df)),
        'total_received': int(df['received'].sum()),
        'total_lost': int(df['lost'].sum()),
        'total_out_of_order': int(df['out_of_order'].sum()),
        'loss_pct_mean': float(np.mean(loss)),
        'loss_pct_median': float(np.median(loss)),
        'loss_pct_p95': float(np.percentile(loss, 95)),
        'loss_pct_max': float(np.max(loss)),
        'runs_with_reordering': int((df['out_of_order'] > 0).sum()),
    }


def plot_history(df: pd.DataFrame, output_path: Union[str, Path]) -> Path:
    """
    Plot loss percentage and out-of-order count per run.

    Args:
        df: DataFrame from load_report()
        output_path: PNG file to write

    Returns:
        Path of the written file
    """
    output_path = Path(output_path)
    fig, (ax1, ax2) = plt.subplots(2, 1, figsize=(12, 8), sharex=True)

    ax1.bar(df['run'], df['loss_pct'], color='tab:red', alpha=0.7)
    ax1.set_ylabel('Loss (%)')
    ax1.set_title('Probe Loss per Run')
    ax1.set_ylim(0, max(1.0, float(df['loss_pct'].max()) * 1.1) if not df.empty else 1.0)

    ax2.bar(df['run'], df['out_of_order'], color='tab:blue', alpha=0.7)
    ax2.set_ylabel('Out-of-order arrivals')
    ax2.set_xlabel('Run')
    ax2.set_title('Reordering per Run')

    plt.tight_layout()
    fig.savefig(output_path, dpi=150)
    plt.close(fig)
    return output_path


def setup_argparse(argv: Optional[List[str]] = None) -> argparse.Namespace:
    """Parse command-line arguments."""
    parser = argparse.ArgumentParser(
        description="Summarize a probe server report file",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
    # Summary table
    pathprobe-report output.txt

    # Summary plus history plot
    pathprobe-report output.txt --plot history.png
        """
    )
    parser.add_argument("report", help="Report file written by pathprobe-server")
    parser.add_argument("--plot", default=None,
                        help="Write a PNG history plot to this path")
    parser.add_argument("--quiet", "-q", action="store_true",
                        help="Only print the summary")
    return parser.parse_args(argv)


def main(argv: Optional[List[str]] = None) -> int:
    args = setup_argparse(argv)

    try:
        df = load_report(args.report)
    except OSError as e:
        print(f"Cannot read {args.report}: {e}", file=sys.stderr)
        return 1

    if df.empty:
        print(f"No complete runs in {args.report}")
        return 1

    if not args.quiet:
        print(df.to_string(index=False))
        print()

    summary = summarize(df)
    print(f"Runs: {summary['runs']}")
    print(f"Received: {summary['total_received']}, Lost: {summary['total_lost']}, "
          f"Out of order: {summary['total_out_of_order']}")
    print(f"Loss %: mean {summary['loss_pct_mean']:.2f}, median {summary['loss_pct_median']:.2f}, "
          f"p95 {summary['loss_pct_p95']:.2f}, max {summary['loss_pct_max']:.2f}")
    print(f"Runs with reordering: {summary['runs_with_reordering']}")

    if args.plot:
        saved = plot_history(df, args.plot)
        print(f"Saved: {saved}")

    return 0


if __name__ == "__main__":
    sys.exit(main())
