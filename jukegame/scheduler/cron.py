"""Cron scheduling for self-hosted maintenance ticks"""

import logging
import time
from datetime import datetime, timezone
from typing import Callable, Optional

from croniter import croniter


logger = logging.getLogger(__name__)


def calculate_next_run(cron_expression: str, now: Optional[datetime] = None) -> datetime:
    """Calculate next run time from cron expression.

    Args:
        cron_expression: Cron expression string
        now: Reference time (defaults to current UTC time)

    Returns:
        Next run datetime
    """
    now = now or datetime.now(timezone.utc)
    return croniter(cron_expression, now).get_next(datetime)


def wait_until(target_time: datetime) -> None:
    """Wait until target time.

    Args:
        target_time: Target datetime to wait until
    """
    now = datetime.now(timezone.utc)

    if target_time <= now:
        return

    wait_seconds = (target_time - now).total_seconds()
    logger.debug("Waiting %.1f seconds until next tick at %s",
                 wait_seconds, target_time.strftime("%Y-%m-%d %H:%M:%S %Z"))
    time.sleep(wait_seconds)


def run_with_schedule(func: Callable, cron_expression: str, max_runs: Optional[int] = None,
                      **kwargs) -> int:
    """Run function on a schedule defined by cron expression.

    Args:
        func: Function to run
        cron_expression: Cron expression for schedule
        max_runs: Stop after this many runs (None runs until interrupted)
        **kwargs: Additional arguments to pass to function

    Returns:
        Number of runs executed
    """
    if not croniter.is_valid(cron_expression):
        raise ValueError(f"Invalid cron expression: {cron_expression}")

    logger.info("Starting scheduled ticks with cron: %s", cron_expression)
    runs = 0

    while max_runs is None or runs < max_runs:
        try:
            wait_until(calculate_next_run(cron_expression))
            func(**kwargs)
            runs += 1
        except KeyboardInterrupt:
            logger.info("Scheduling interrupted by user")
            break
        except Exception as e:
            runs += 1
            logger.error("❌ Scheduled tick failed: %s", e, exc_info=True)

    return runs
