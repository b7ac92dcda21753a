#!/usr/bin/env python3
"""CLI entry point for metrics collection.

Usage:
    # Collect today's data
    PYTHONPATH=. python scripts/run_metrics_collector.py

    # Collect specific date
    PYTHONPATH=. python scripts/run_metrics_collector.py --date 2024-12-30

    # Backfill date range
    PYTHONPATH=. python scripts/run_metrics_collector.py --start-date 2024-12-01 --end-date 2024-12-07

    # Daily cron
    PYTHONPATH=. python scripts/run_metrics_collector.py --scheduled
"""
import sys
from pathlib import Path

sys.path.insert(0, str(Path(__file__).parent.parent))

from src.pulse_core.metrics.cli import main


if __name__ == "__main__":
    sys.exit(main())
