from __future__ import annotations

import logging
import time
from typing import Callable, Optional, Tuple, Type, TypeVar

from .errors import RetryExhaustedError, RpcError, TransactionError

log = logging.getLogger(__name__)

T = TypeVar("T")

TRANSIENT_ERRORS: Tuple[Type[BaseException], ...] = (RpcError, TransactionError)


class RetryExecutor:
    """
    Runs an operation with exponential backoff: after failed attempt `n`
    (counting from 0) it waits `base_delay_ms * 2**n` before trying again.

    `max_retries` counts the retries, so the operation runs at most
    `max_retries + 1` times before RetryExhaustedError is raised.
    """

    def __init__(
        self,
        max_retries: int = 3,
        base_delay_ms: int = 2000,
        sleep: Callable[[float], None] = time.sleep,
        retry_on: Tuple[Type[BaseException], ...] = TRANSIENT_ERRORS,
    ) -> None:
        if max_retries < 0:
            raise ValueError("max_retries must be >= 0")
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.sleep = sleep
        self.retry_on = retry_on

    def delays_ms(self) -> Tuple[int, ...]:
        return tuple(self.base_delay_ms * 2**n for n in range(self.max_retries))

    def run(
        self,
        label: str,
        operation: Callable[[], T],
        on_retry: Optional[Callable[[int, BaseException], None]] = None,
    ) -> T:
        last_error: Optional[BaseException] = None
        for attempt in range(self.max_retries + 1):
            try:
                return operation()
            except self.retry_on as e:
                last_error = e
                if attempt >= self.max_retries:
                    break
                delay_ms = self.base_delay_ms * 2**attempt
                log.warning(
                    "%s: attempt %d/%d failed, retrying in %dms: %s",
                    label,
                    attempt + 1,
                    self.max_retries + 1,
                    delay_ms,
                    e,
                )
                if on_retry is not None:
                    on_retry(attempt + 1, e)
                self.sleep(delay_ms / 1000.0)

        assert last_error is not None
        attempts = self.max_retries + 1
        raise RetryExhaustedError(label, attempts, last_error) from last_error
