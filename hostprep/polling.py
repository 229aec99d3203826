"""Bounded waiting for external effects."""

import time
from typing import Callable, Optional

from hostprep.console import logger
from hostprep.constants import VERIFY_ATTEMPTS, VERIFY_INTERVAL


class Poller:
    """Call a predicate until it holds, at most ``attempts`` times.

    Sleeps ``interval`` seconds before every attempt and gives up early once
    ``deadline`` seconds have passed since the first call.
    """

    def __init__(
        self,
        attempts: int = VERIFY_ATTEMPTS,
        interval: float = VERIFY_INTERVAL,
        deadline: Optional[float] = None,
        sleep: Callable[[float], None] = time.sleep,
        clock: Callable[[], float] = time.monotonic,
    ):
        if attempts < 1:
            raise ValueError("attempts must be at least 1")
        self.attempts = attempts
        self.interval = interval
        self.deadline = deadline
        self.sleep = sleep
        self.clock = clock

    def wait_for(self, predicate: Callable[[], Optional[bool]]) -> bool:
        start = self.clock()
        for attempt in range(1, self.attempts + 1):
            if self.deadline is not None and self.clock() - start >= self.deadline:
                logger.debug(f"Deadline of {self.deadline}s reached after {attempt - 1} attempts")
                return False
            self.sleep(self.interval)
            if predicate():
                logger.debug(f"Condition met on attempt {attempt}")
                return True
        return False
