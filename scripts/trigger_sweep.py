"""Run a catalog sweep by hand: ``python scripts/trigger_sweep.py [daily|frequent]``."""

from __future__ import annotations

import logging
import sys

from vascatalog.jobs.sweep import get_service


def main() -> None:
    logging.basicConfig(level=logging.INFO)
    kind = sys.argv[1] if len(sys.argv) > 1 else "daily"
    service = get_service()
    if kind == "daily":
        stats = service.trigger_daily_sweep()
    elif kind == "frequent":
        stats = service.trigger_frequent_update()
    else:
        raise SystemExit("usage: trigger_sweep.py [daily|frequent]")
    if stats is None:
        raise SystemExit("A sweep is already running")
    print(stats.as_dict())


if __name__ == "__main__":
    main()
