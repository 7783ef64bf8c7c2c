#!/usr/bin/env python3
"""
Reset Stuck Recommendation Entries in the auto_jobs Collection

A recommendation left at "Calculating..." (no score, no error) after its
computation died with the process is stuck. This script clears such entries
so the next read recomputes them. The service runs the same sweep on a
timer; use this when the service is down or for a one-off check.

Usage:
    # Preview only (default)
    python scripts/reset_stuck_recommendations.py

    # Clear placeholders older than 10 minutes
    python scripts/reset_stuck_recommendations.py --apply

    # Custom staleness window
    python scripts/reset_stuck_recommendations.py --older-than-seconds 3600 --apply
"""

import argparse
import os
import sys
from datetime import timedelta

# Add project root to path
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Load environment variables
from dotenv import load_dotenv
load_dotenv()

from src.common.repositories import AutoJobRepositoryInterface, get_auto_job_repository
from src.common.workflow_types import utcnow


def reset_stuck(
    repo: AutoJobRepositoryInterface,
    older_than_seconds: float = 600,
    dry_run: bool = True,
) -> int:
    """
    Clear stuck recommendation placeholders.

    Args:
        repo: Auto job repository
        older_than_seconds: Staleness window
        dry_run: If True, only count

    Returns:
        Number of entries found (dry run) or cleared
    """
    cutoff = utcnow() - timedelta(seconds=older_than_seconds)
    count = repo.count_stuck_recommendations(cutoff)

    print(f"\n{'='*60}")
    print("Stuck Recommendation Reset")
    print(f"{'='*60}")
    print(f"Mode: {'DRY RUN (preview only)' if dry_run else 'LIVE'}")
    print(f"Cutoff: placeholders cached before {cutoff.isoformat()}Z")
    print(f"Stuck entries found: {count:,}")
    print(f"{'='*60}\n")

    if count == 0 or dry_run:
        return count

    cleared = repo.clear_stuck_recommendations(cutoff)
    print(f"Entries cleared: {cleared:,}")
    return cleared


def main(argv=None):
    parser = argparse.ArgumentParser(
        description="Clear stuck 'Calculating...' recommendation entries",
    )
    parser.add_argument(
        "--older-than-seconds",
        type=float,
        default=600,
        metavar="N",
        help="Only clear placeholders older than N seconds (default: 600)"
    )
    parser.add_argument(
        "--apply",
        action="store_true",
        help="Clear the entries (default is a dry run that only counts them)"
    )

    args = parser.parse_args(argv)

    try:
        reset_stuck(
            get_auto_job_repository(),
            older_than_seconds=args.older_than_seconds,
            dry_run=not args.apply,
        )
    except Exception as e:
        print(f"Reset failed: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
