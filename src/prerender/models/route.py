from __future__ import annotations

import hashlib
import json
import re
from collections.abc import Mapping
from enum import StrEnum
from functools import cached_property
from typing import Literal

from pydantic import BaseModel, ConfigDict, NonNegativeInt, field_validator

# A parameter set maps parameter name -> raw string value captured from a path.
ParameterSet = dict[str, str]

Revalidate = NonNegativeInt | Literal["infinite"]

_PARAM_NAME = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*$")


class RenderMode(StrEnum):
    STATIC = "static"
    PER_REQUEST = "per_request"
    INCREMENTAL = "incremental"


class FallbackMode(StrEnum):
    REJECT = "reject"
    BLOCKING_GENERATE = "blocking"
    GENERATE_WITH_PLACEHOLDER = "placeholder"


class PathSegment(BaseModel):
    """One segment of a compiled route pattern.

    Literal:    ``blog``             (is_param=False)
    Parameter:  ``{slug}``           (is_param=True, param_name="slug")
    Catch-all:  ``{rest:path}``      (is_param=True, catch_all=True)
    """

    model_config = ConfigDict(frozen=True)

    value: str
    is_param: bool = False
    param_name: str | None = None
    catch_all: bool = False

    @property
    def rank(self) -> int:
        """Specificity rank used to order patterns: literal < param < catch-all."""
        if self.catch_all:
            return 2
        return 1 if self.is_param else 0


def parse_pattern(pattern: str) -> tuple[PathSegment, ...]:
    """Compile ``/blog/{slug}`` style patterns into a segment tuple.

    Raises ``ValueError`` for malformed parameter segments, duplicate parameter
    names, or a catch-all that is not the final segment.
    """
    parts = [p for p in pattern.strip("/").split("/") if p]
    segments: list[PathSegment] = []
    seen: set[str] = set()
    for index, part in enumerate(parts):
        if not (part.startswith("{") and part.endswith("}")):
            if "{" in part or "}" in part:
                raise ValueError(f"Malformed segment {part!r} in {pattern!r}")
            segments.append(PathSegment(value=part))
            continue

        inner = part[1:-1]
        name, _, kind = inner.partition(":")
        if not _PARAM_NAME.match(name):
            raise ValueError(f"Invalid parameter name {name!r} in {pattern!r}")
        if kind not in ("", "path"):
            raise ValueError(f"Unknown parameter type {kind!r} in {pattern!r}")
        if name in seen:
            raise ValueError(f"Duplicate parameter {name!r} in {pattern!r}")
        catch_all = kind == "path"
        if catch_all and index != len(parts) - 1:
            raise ValueError(f"Catch-all {part!r} must be the last segment of {pattern!r}")
        seen.add(name)
        segments.append(
            PathSegment(value=part, is_param=True, param_name=name, catch_all=catch_all)
        )
    return tuple(segments)


def cache_key(route_id: str, params: Mapping[str, str]) -> str:
    """Stable, order-independent fingerprint of a route and its parameters."""
    encoded = json.dumps(
        {"route": route_id, "params": dict(sorted(params.items()))},
        sort_keys=True,
        separators=(",", ":"),
        ensure_ascii=False,
    )
    return hashlib.sha256(encoded.encode("utf-8")).hexdigest()


class Route(BaseModel):
    """A registered route. Immutable once the registry is built.

    ``revalidate_seconds`` and ``fallback_mode`` left as ``None`` are filled in
    from settings when the registry is built.
    """

    model_config = ConfigDict(frozen=True)

    id: str
    pattern: str
    render_mode: RenderMode = RenderMode.INCREMENTAL
    revalidate_seconds: Revalidate | None = None
    fallback_mode: FallbackMode | None = None

    @field_validator("id")
    @classmethod
    def validate_id(cls, v: str) -> str:
        if not re.match(r"^[a-z0-9][a-z0-9_./-]*$", v):
            raise ValueError(f"Invalid route ID: {v!r}")
        return v

    @field_validator("pattern")
    @classmethod
    def validate_pattern(cls, v: str) -> str:
        parse_pattern(v)
        return "/" + v.strip("/")

    @cached_property
    def segments(self) -> tuple[PathSegment, ...]:
        return parse_pattern(self.pattern)

    @cached_property
    def param_names(self) -> frozenset[str]:
        return frozenset(s.param_name for s in self.segments if s.param_name)

    @property
    def is_dynamic(self) -> bool:
        return bool(self.param_names)


class RouteMatch(BaseModel):
    """Result of resolving a concrete path against the registry."""

    route: Route
    params: ParameterSet
    prebuilt: bool  # parameter set came from the enumeration

    @property
    def key(self) -> str:
        return cache_key(self.route.id, self.params)
