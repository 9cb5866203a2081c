"""
Bounded polling for on-chain conditions
"""

import asyncio
import inspect
import logging
from typing import Awaitable, Callable, Optional, Union

logger = logging.getLogger(__name__)

Check = Callable[[], Union[bool, Awaitable[bool]]]


async def await_condition(
    check: Check,
    *,
    attempts: int,
    interval: float,
    backoff: float = 1.0,
    max_interval: Optional[float] = None,
    description: str = "condition",
) -> bool:
    """Call ``check`` until it is truthy or ``attempts`` runs out.

    Sleeps ``interval`` seconds between attempts, multiplying the interval by
    ``backoff`` after each sleep (capped at ``max_interval``). There is no
    sleep after the final attempt. Exceptions raised by ``check`` propagate.
    """
    if attempts < 1:
        raise ValueError("attempts must be at least 1")

    delay = interval
    for attempt in range(1, attempts + 1):
        result = check()
        if inspect.isawaitable(result):
            result = await result
        if result:
            logger.info(f"{description} satisfied after {attempt} attempt(s)")
            return True
        if attempt == attempts:
            break
        logger.debug(f"{description} not yet satisfied (attempt {attempt}/{attempts}), retrying in {delay:g}s")
        await asyncio.sleep(delay)
        delay = delay * backoff
        if max_interval is not None:
            delay = min(delay, max_interval)

    logger.warning(f"{description} not satisfied after {attempts} attempt(s)")
    return False
