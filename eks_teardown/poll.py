"""
Bounded polling for asynchronous deletions.
"""

import logging
import time
from typing import Callable

logger = logging.getLogger(__name__)


def poll_until(
    check: Callable[[], bool],
    timeout_s: float,
    interval_s: float,
    description: str,
    sleep: Callable[[float], None] = time.sleep,
    clock: Callable[[], float] = time.monotonic,
) -> bool:
    """
    Call `check` until it returns truthy or the timeout passes.

    The check always runs at least once. Exceptions raised by `check`
    propagate to the caller.

    Args:
        check: Predicate, e.g. "no load balancers left"
        timeout_s: Total time to wait in seconds
        interval_s: Delay between checks
        description: Used in log messages
        sleep: Sleep function (injectable for tests)
        clock: Monotonic clock (injectable for tests)

    Returns:
        True if the condition was met, False if we gave up
    """
    deadline = clock() + timeout_s
    attempt = 0

    while True:
        attempt += 1
        if check():
            if attempt > 1:
                logger.info(f"{description}: done after {attempt} checks")
            return True

        remaining = deadline - clock()
        if remaining <= 0:
            logger.warning(f"{description}: gave up after {timeout_s:.0f}s ({attempt} checks)")
            return False

        logger.debug(f"{description}: not yet, retrying in {interval_s:.0f}s")
        sleep(min(interval_s, remaining))
