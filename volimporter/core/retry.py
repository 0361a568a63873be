# SPDX-License-Identifier: LGPL-3.0-or-later
# -*- coding: utf-8 -*-
"""
Bounded retry for optimistic-concurrency writes.

The copy engine never retries; this is only used by the controller to
re-apply its own status writes when the state store reports a conflict.
"""

from __future__ import annotations

import logging
import random
import time
from typing import Callable, Optional, Tuple, Type, TypeVar, Union

T = TypeVar("T")


def retry_operation(
    operation: Callable[[], T],
    *,
    max_attempts: int = 5,
    base_backoff_s: float = 0.05,
    max_backoff_s: float = 2.0,
    jitter_s: float = 0.05,
    exceptions: Union[Type[Exception], Tuple[Type[Exception], ...]] = Exception,
    operation_name: str = "operation",
    logger: Optional[logging.Logger] = None,
    log_level: int = logging.DEBUG,
    sleep: Callable[[float], None] = time.sleep,
) -> T:
    """
    Retry an operation with exponential backoff.

    Only exceptions matching `exceptions` are retried; anything else
    propagates immediately. After `max_attempts` the last matching
    exception is re-raised.

    Example:
        status = retry_operation(
            lambda: apply_status(key),
            exceptions=ConflictError,
            operation_name="update status",
            logger=log,
        )
    """
    if max_attempts < 1:
        raise ValueError(f"max_attempts must be >= 1, got {max_attempts}")

    last_exception: Optional[Exception] = None

    for attempt in range(1, max_attempts + 1):
        try:
            return operation()
        except exceptions as e:
            last_exception = e

            if attempt >= max_attempts:
                if logger:
                    logger.warning("%s failed after %d attempts: %s", operation_name, max_attempts, e)
                break

            sleep_time = min(base_backoff_s * (2 ** (attempt - 1)), max_backoff_s)
            if jitter_s > 0:
                sleep_time += random.uniform(0, jitter_s)

            if logger:
                logger.log(
                    log_level,
                    "%s failed (attempt %d/%d): %s. Retrying in %.2fs...",
                    operation_name,
                    attempt,
                    max_attempts,
                    e,
                    sleep_time,
                )
            sleep(sleep_time)

    assert last_exception is not None
    raise last_exception
