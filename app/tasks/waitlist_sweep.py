"""
Periodic waitlist sweep.

Expires seat offers whose confirmation window has passed and offers each
released seat to the next client in line.

    python -m app.tasks.waitlist_sweep            # one pass
    python -m app.tasks.waitlist_sweep --loop     # keep sweeping
"""
import argparse
import asyncio
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.ext.asyncio import AsyncSession

from app.core.config import get_settings
from app.core.logging_config import setup_logging
from app.crud.waitlistCrud import sweep_expired_entries
from app.services.notifications import Notifier

logger = logging.getLogger("app.tasks.waitlist_sweep")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Expire lapsed waitlist offers and promote the next clients."
    )
    parser.add_argument(
        "--loop",
        action="store_true",
        help="Keep sweeping until interrupted.",
    )
    parser.add_argument(
        "--interval",
        type=int,
        default=None,
        help="Seconds between sweeps (default: WAITLIST_SWEEP_INTERVAL_SECONDS).",
    )
    parser.add_argument("--studio-id", type=int, default=None)
    return parser.parse_args(argv)


async def run_once(
    session_factory: Callable[[], AsyncSession],
    notifier: Optional[Notifier] = None,
    studio_id: Optional[int] = None
) -> Dict[str, Any]:
    async with session_factory() as db:
        stats = await sweep_expired_entries(db, notifier=notifier, studio_id=studio_id)

    for error in stats["errors"]:
        logger.warning("Sweep error: %s", error)
    return stats


async def run_loop(
    session_factory: Callable[[], AsyncSession],
    interval: int,
    notifier: Optional[Notifier] = None,
    studio_id: Optional[int] = None,
    iterations: Optional[int] = None
) -> None:
    """Sweep every `interval` seconds; a failed pass is logged and retried next time"""
    done = 0
    while iterations is None or done < iterations:
        try:
            await run_once(session_factory, notifier, studio_id)
        except Exception:
            logger.exception("Waitlist sweep failed")
        done += 1
        if iterations is None or done < iterations:
            await asyncio.sleep(interval)


async def main(argv=None) -> None:
    args = parse_args(argv)
    setup_logging()

    # Imported here so --help works without a database driver
    from app import models  # noqa: F401
    from app.db.postgresql import SessionLocal, engine

    interval = args.interval or get_settings().waitlist_sweep_interval_seconds
    try:
        if args.loop:
            logger.info("Starting waitlist sweep loop every %ss", interval)
            await run_loop(SessionLocal, interval, studio_id=args.studio_id)
        else:
            stats = await run_once(SessionLocal, studio_id=args.studio_id)
            logger.info(
                "Waitlist sweep finished: expired=%s promoted=%s errors=%s",
                stats["expired"], stats["promoted"], len(stats["errors"])
            )
    finally:
        await engine.dispose()


if __name__ == "__main__":
    asyncio.run(main())
