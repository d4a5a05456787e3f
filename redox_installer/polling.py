#!/usr/bin/env python3
"""Bounded polling used wherever the installer waits on the OS to catch up."""

import time
from typing import Callable

from redox_installer.errors import StageTimeoutError


def wait_until(predicate: Callable[[], bool], timeout: float, interval: float,
               description: str, clock: Callable[[], float] = time.monotonic,
               sleep: Callable[[float], None] = time.sleep) -> None:
    """
    Poll predicate until it returns True or the deadline passes.

    The predicate is always evaluated at least once, and once more after the
    deadline so a condition that became true during the last sleep still counts.
    Exceptions raised by the predicate propagate unchanged.

    Raises:
        StageTimeoutError: The predicate never returned True within timeout seconds
    """
    deadline = clock() + timeout
    while True:
        if predicate():
            return
        remaining = deadline - clock()
        if remaining <= 0:
            break
        sleep(min(interval, remaining))

    if predicate():
        return
    raise StageTimeoutError(description, timeout)
