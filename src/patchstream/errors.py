from __future__ import annotations

from enum import StrEnum


class ErrorCode(StrEnum):
    TRANSPORT_FAILED = "TRANSPORT_FAILED"
    EMPTY_RESPONSE_BODY = "EMPTY_RESPONSE_BODY"
    GENERATION_ABORTED = "GENERATION_ABORTED"
    INVALID_INPUT = "INVALID_INPUT"
    STORE_FULL = "STORE_FULL"


class PatchStreamError(Exception):
    """Raised for failures the caller has to see.

    Only transport failures, aborted generations and invalid input cross the
    public API as exceptions. Patch application and cache failures are
    recovered where they happen and never reach this type.
    """

    def __init__(
        self,
        code: ErrorCode,
        message: str,
        suggestion: str,
        recoverable: bool = False,
    ) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.suggestion = suggestion
        self.recoverable = recoverable

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.message,
                "suggestion": self.suggestion,
                "recoverable": self.recoverable,
            }
        }


class GenerationAbortedError(PatchStreamError):
    """The caller's cancellation signal fired while the stream was being read.

    Not a failure: callers must not report it to the end user.
    """

    def __init__(self, message: str = "Generation was cancelled") -> None:
        super().__init__(
            code=ErrorCode.GENERATION_ABORTED,
            message=message,
            suggestion="Start a new generation if the result is still needed.",
            recoverable=True,
        )


class StoreFullError(Exception):
    """Raised by a durable store when a value exceeds its size quota."""

    def __init__(self, key: str, size: int, limit: int) -> None:
        super().__init__(f"Value for {key!r} is {size} bytes; store limit is {limit}")
        self.code = ErrorCode.STORE_FULL
        self.key = key
        self.size = size
        self.limit = limit
