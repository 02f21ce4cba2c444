from __future__ import annotations

from typing import Optional


class DrawBotError(RuntimeError):
    """Base class for every error raised by the draw bot."""


class ConfigError(DrawBotError):
    pass


class RpcError(DrawBotError):
    def __init__(self, message: str, code: Optional[int] = None) -> None:
        super().__init__(message)
        self.code = code


class TransactionError(DrawBotError):
    def __init__(
        self, label: str, message: str, signature: Optional[str] = None
    ) -> None:
        super().__init__(f"{label}: {message}")
        self.label = label
        self.signature = signature


class AccountNotFoundError(DrawBotError):
    pass


class AccountDecodeError(DrawBotError):
    pass


class IndexerError(DrawBotError):
    pass


class RetryExhaustedError(DrawBotError):
    def __init__(self, label: str, attempts: int, last_error: BaseException) -> None:
        super().__init__(f"{label}: failed after {attempts} attempts: {last_error}")
        self.label = label
        self.attempts = attempts
        self.last_error = last_error
