"""Unit tests for the error taxonomy."""

from __future__ import annotations

from prerender.errors import (
    CacheCorruptionError,
    ErrorCode,
    GenerationError,
    GenerationTimeoutError,
    NotFoundError,
    PrerenderError,
    RegistryBuildError,
)


class TestErrorTaxonomy:
    def test_timeout_is_generation_error(self) -> None:
        exc = GenerationTimeoutError("abc", 50)
        assert isinstance(exc, GenerationError)
        assert isinstance(exc, TimeoutError)
        assert exc.code is ErrorCode.GENERATION_TIMEOUT
        assert "50ms" in exc.message

    def test_generation_error_keeps_cause(self) -> None:
        cause = ValueError("bad template")
        exc = GenerationError("render failed", cause=cause)
        assert exc.cause is cause
        assert exc.__cause__ is cause
        assert exc.recoverable is True

    def test_codes(self) -> None:
        assert NotFoundError().code is ErrorCode.NOT_FOUND
        assert RegistryBuildError("x").code is ErrorCode.REGISTRY_BUILD_FAILED
        assert CacheCorruptionError("k", "bad").code is ErrorCode.CACHE_CORRUPTED

    def test_envelope(self) -> None:
        exc: PrerenderError = NotFoundError("No route matches '/x'")
        assert exc.to_dict() == {
            "error": {
                "code": "NOT_FOUND",
                "message": "No route matches '/x'",
                "recoverable": False,
            }
        }
