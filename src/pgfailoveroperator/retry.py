"""A bounded, fixed-interval retry combinator."""

from __future__ import annotations

__all__ = ("retry",)

import math
import time
from collections.abc import Callable
from typing import Any

import structlog

from pgfailoveroperator.exceptions import RetryTimeoutError


def retry(
    func: Callable[[], Any],
    *,
    interval: float,
    timeout: float,
    retry_on: type[BaseException] | tuple[type[BaseException], ...] = (
        Exception
    ),
    logger: Any | None = None,
) -> Any:
    """Call ``func`` until it returns a truthy value or the time budget is
    spent.

    Parameters
    ----------
    func : callable
        Zero-argument callable. A truthy return value ends the retries and is
        returned. A falsy value or an exception matching ``retry_on`` causes
        another attempt after ``interval`` seconds.
    interval : `float`
        Seconds to wait between attempts.
    timeout : `float`
        Total budget in seconds. At most ``timeout // interval`` attempts are
        made (and always at least one).
    retry_on : exception type or tuple, optional
        Exceptions that count as a failed attempt. Anything else propagates
        immediately.
    logger : `logging.Logger`, optional
        Logger for failed attempts.

    Returns
    -------
    result
        The first truthy value returned by ``func``.

    Raises
    ------
    ValueError
        Raised if ``timeout`` is smaller than ``interval``.
    pgfailoveroperator.exceptions.RetryTimeoutError
        Raised once all attempts failed. It is chained from the last
        exception raised by ``func``, if any.
    """
    if logger is None:
        logger = structlog.getLogger(__name__)
    if timeout < interval:
        raise ValueError(
            f"timeout ({timeout}s) should be greater than interval "
            f"({interval}s)"
        )

    if interval > 0:
        # Rounding keeps float budgets such as 0.05 / 0.01 at 5 attempts.
        max_attempts = max(1, math.floor(round(timeout / interval, 9)))
    else:
        max_attempts = 1
    last_error: BaseException | None = None
    for attempt in range(1, max_attempts + 1):
        try:
            result = func()
        except retry_on as e:
            last_error = e
            logger.debug(f"Attempt {attempt}/{max_attempts} failed: {e}")
        else:
            if result:
                return result
            last_error = None
        if attempt < max_attempts:
            time.sleep(interval)

    message = f"still failing after {max_attempts} attempts"
    if last_error is not None:
        message = f"{message}: {last_error}"
    raise RetryTimeoutError(message, max_attempts) from last_error
