"""Periodic staleness sweep.

Run from cron or any timer:

    python -m royale.scheduler --threshold 5
"""
import argparse
import logging
from typing import Optional

from royale.core.config import settings
from royale.core.database import SessionLocal
from royale.core.log import configure_logging
from royale.schemas.standing_schemas import SweepReport
from royale.services.phase_standing_service import PhaseStandingService

logger = logging.getLogger(__name__)

phase_standing_service = PhaseStandingService()


def run_stale_sweep(threshold_minutes: Optional[float] = None, session_factory=SessionLocal) -> SweepReport:
    if threshold_minutes is None:
        threshold_minutes = settings.STALE_THRESHOLD_MINUTES
    db = session_factory()
    try:
        return phase_standing_service.sweep_stale(db, threshold_minutes)
    finally:
        db.close()


def main(argv=None) -> int:
    parser = argparse.ArgumentParser(description="Recalculate stale phase standings")
    parser.add_argument(
        "--threshold",
        type=float,
        default=settings.STALE_THRESHOLD_MINUTES,
        help="Age in minutes after which an in-progress snapshot is stale",
    )
    parser.add_argument("--log-level", default=None)
    args = parser.parse_args(argv)

    configure_logging(args.log_level)
    report = run_stale_sweep(args.threshold)
    logger.info("Sweep finished: %s", report.model_dump())
    return 1 if report.failed else 0


if __name__ == "__main__":
    raise SystemExit(main())
