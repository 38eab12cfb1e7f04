"""Error taxonomy shared by the registry, cache, scheduler and router.

Every error carries a stable ``ErrorCode`` and a ``recoverable`` flag so a
transport layer can serialise it without inspecting the exception type.
"""

from __future__ import annotations

from enum import StrEnum
from typing import Any


class ErrorCode(StrEnum):
    NOT_FOUND = "NOT_FOUND"
    GENERATION_FAILED = "GENERATION_FAILED"
    GENERATION_TIMEOUT = "GENERATION_TIMEOUT"
    REGISTRY_BUILD_FAILED = "REGISTRY_BUILD_FAILED"
    CACHE_CORRUPTED = "CACHE_CORRUPTED"
    REDIRECT_LOOP = "REDIRECT_LOOP"


class PrerenderError(Exception):
    """Base for all prerender errors."""

    def __init__(self, code: ErrorCode, message: str, *, recoverable: bool = False) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.recoverable = recoverable

    def to_dict(self) -> dict[str, Any]:
        return {
            "error": {
                "code": self.code.value,
                "message": self.message,
                "recoverable": self.recoverable,
            }
        }


class NotFoundError(PrerenderError):
    """No route matched, the fallback rejected the parameters, or the renderer said so."""

    def __init__(self, message: str = "Not Found") -> None:
        super().__init__(ErrorCode.NOT_FOUND, message)


class GenerationError(PrerenderError):
    """The renderer failed. The underlying exception is kept as ``cause``."""

    def __init__(
        self,
        message: str,
        *,
        cause: BaseException | None = None,
        code: ErrorCode = ErrorCode.GENERATION_FAILED,
    ) -> None:
        super().__init__(code, message, recoverable=True)
        self.cause = cause
        if cause is not None:
            self.__cause__ = cause


class GenerationTimeoutError(GenerationError, TimeoutError):
    """Generation exceeded the configured deadline."""

    def __init__(self, key: str, timeout_ms: int) -> None:
        super().__init__(
            f"Generation of {key!r} exceeded {timeout_ms}ms",
            code=ErrorCode.GENERATION_TIMEOUT,
        )
        self.key = key
        self.timeout_ms = timeout_ms


class RegistryBuildError(PrerenderError):
    """Enumeration failed or route patterns conflict. Fatal at startup."""

    def __init__(self, message: str) -> None:
        super().__init__(ErrorCode.REGISTRY_BUILD_FAILED, message)


class CacheCorruptionError(PrerenderError):
    """A persisted record could not be decoded. Never surfaced to callers."""

    def __init__(self, key: str, reason: str) -> None:
        super().__init__(ErrorCode.CACHE_CORRUPTED, f"Corrupt cache record {key!r}: {reason}")
        self.key = key
