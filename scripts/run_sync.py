"""
Script to run one sync of one source from the command line

Usage:
    python scripts/run_sync.py --source rest --mode incremental
    python scripts/run_sync.py --source prestashop --mode full
"""

import argparse
import asyncio
import sys
import os
import logging

# Add current directory to path to allow imports from core, models, etc.
sys.path.append(os.getcwd())

from core.logging import setup_logging
from ingestion.runner import run_sync
from models.base import SourceType, SyncMode

logger = logging.getLogger(__name__)


def parse_args(argv=None):
    parser = argparse.ArgumentParser(description="Run an ingestion sync for one source")
    parser.add_argument(
        "--source",
        required=True,
        choices=[s.value for s in SourceType],
        help="API family to sync"
    )
    parser.add_argument(
        "--mode",
        default=SyncMode.INCREMENTAL.value,
        choices=[m.value for m in SyncMode],
        help="full clears stored pages first; incremental filters by watermark"
    )
    return parser.parse_args(argv)


async def main(argv=None) -> int:
    args = parse_args(argv)
    report = await run_sync(SourceType(args.source), SyncMode(args.mode))
    print(report.render())
    return 0 if report.succeeded else 1


if __name__ == "__main__":
    setup_logging()
    sys.exit(asyncio.run(main()))
