"""Route registry: pattern compilation, enumeration, and path resolution.

The registry is built once at startup. Routes are ordered by specificity
(literal beats parameter beats catch-all at the first differing position), so
the first structural match for a path is the most specific one. Two patterns
that can match the same path without one being at least as specific at every
position (for example `/x/{a}` and `/{b}/y`) abort the build.
"""

from __future__ import annotations

from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

import structlog

from prerender.errors import NotFoundError, RegistryBuildError
from prerender.models.route import (
    ParameterSet,
    PathSegment,
    RenderMode,
    Route,
    RouteMatch,
    cache_key,
)

if TYPE_CHECKING:
    from prerender.config import Settings

log = structlog.get_logger()

Enumerator = Callable[[], Awaitable[list[ParameterSet]]]


def _specificity(route: Route) -> tuple[tuple[int, ...], int]:
    # Literal segments sort first; longer patterns win ties on a shared prefix.
    return tuple(s.rank for s in route.segments), -len(route.segments)


def _can_share_path(a: tuple[PathSegment, ...], b: tuple[PathSegment, ...]) -> bool:
    """Whether at least one concrete path matches both segment sequences."""
    for index in range(max(len(a), len(b))):
        if index >= len(a) or index >= len(b):
            # A catch-all needs one or more segments the shorter pattern lacks.
            return False
        sa, sb = a[index], b[index]
        if sa.catch_all or sb.catch_all:
            return True
        if not sa.is_param and not sb.is_param and sa.value != sb.value:
            return False
    return True


def _ambiguous(a: Route, b: Route) -> bool:
    """Overlapping patterns where neither is at least as specific everywhere.

    A shorter pattern that overlaps a longer one ends in a catch-all, which
    stands in for every position past its end.
    """
    if not _can_share_path(a.segments, b.segments):
        return False
    width = max(len(a.segments), len(b.segments))
    ranks_a = [s.rank for s in a.segments] + [2] * (width - len(a.segments))
    ranks_b = [s.rank for s in b.segments] + [2] * (width - len(b.segments))
    a_wins = any(ra < rb for ra, rb in zip(ranks_a, ranks_b))
    b_wins = any(rb < ra for ra, rb in zip(ranks_a, ranks_b))
    return a_wins == b_wins


def _apply_defaults(route: Route, settings: Settings) -> Route:
    update: dict[str, object] = {}
    if route.revalidate_seconds is None:
        update["revalidate_seconds"] = (
            "infinite"
            if route.render_mode is RenderMode.STATIC
            else settings.cache.revalidate_seconds
        )
    if route.fallback_mode is None:
        update["fallback_mode"] = settings.routing.fallback_mode
    return route.model_copy(update=update) if update else route


def match_segments(route: Route, parts: list[str]) -> ParameterSet | None:
    """Match path parts against a route's segments, capturing parameters positionally."""
    params: ParameterSet = {}
    segments = route.segments
    for index, seg in enumerate(segments):
        if seg.catch_all:
            rest = parts[index:]
            if not rest:
                return None
            params[seg.param_name or "path"] = "/".join(rest)
            return params
        if index >= len(parts):
            return None
        if seg.is_param:
            params[seg.param_name or ""] = parts[index]
        elif seg.value != parts[index]:
            return None
    if len(parts) != len(segments):
        return None
    return params


@dataclass
class RouteRegistry:
    """Immutable-after-build collection of routes and their enumerated keys."""

    routes: tuple[Route, ...] = ()

    # route ID -> route
    by_id: dict[str, Route] = field(default_factory=dict)

    # route ID -> cache keys of every enumerated parameter set
    prebuilt: dict[str, frozenset[str]] = field(default_factory=dict)

    # route ID -> enumerated parameter sets, in enumeration order
    enumerated: dict[str, tuple[ParameterSet, ...]] = field(default_factory=dict)

    @classmethod
    async def build(
        cls,
        routes: Iterable[Route],
        settings: Settings,
        enumerators: Mapping[str, Enumerator] | None = None,
    ) -> RouteRegistry:
        """Validate routes, run enumerators, and compile the lookup order.

        Raises ``RegistryBuildError`` on duplicate IDs, ambiguous patterns,
        enumeration failures, or enumerated parameter sets that do not fit
        their pattern. Nothing is retried.
        """
        enumerators = dict(enumerators or {})
        by_id: dict[str, Route] = {}

        for route in routes:
            route = _apply_defaults(route, settings)
            if route.id in by_id:
                raise RegistryBuildError(f"Duplicate route ID {route.id!r}")
            for other in by_id.values():
                if _ambiguous(route, other):
                    raise RegistryBuildError(
                        f"Route {route.id!r} ({route.pattern}) overlaps "
                        f"{other.id!r} ({other.pattern}) ambiguously"
                    )
            by_id[route.id] = route

        unknown = set(enumerators) - set(by_id)
        if unknown:
            raise RegistryBuildError(f"Enumerators for unknown routes: {sorted(unknown)}")

        prebuilt: dict[str, frozenset[str]] = {}
        enumerated: dict[str, tuple[ParameterSet, ...]] = {}
        for route_id, route in by_id.items():
            if not route.is_dynamic:
                enumerated[route_id] = ({},)
                prebuilt[route_id] = frozenset({cache_key(route_id, {})})
                continue
            enumerator = enumerators.get(route_id)
            if enumerator is None:
                enumerated[route_id] = ()
                prebuilt[route_id] = frozenset()
                continue
            param_sets = await cls._enumerate(route, enumerator)
            enumerated[route_id] = param_sets
            prebuilt[route_id] = frozenset(cache_key(route_id, p) for p in param_sets)

        ordered = tuple(sorted(by_id.values(), key=_specificity))
        log.info(
            "registry_built",
            routes=len(ordered),
            prebuilt=sum(len(keys) for keys in prebuilt.values()),
        )
        return cls(routes=ordered, by_id=by_id, prebuilt=prebuilt, enumerated=enumerated)

    @staticmethod
    async def _enumerate(route: Route, enumerator: Enumerator) -> tuple[ParameterSet, ...]:
        try:
            result = await enumerator()
        except Exception as exc:
            raise RegistryBuildError(f"Enumeration for route {route.id!r} failed: {exc}") from exc

        param_sets: list[ParameterSet] = []
        for raw in result:
            params = {str(k): str(v) for k, v in raw.items()}
            if set(params) != route.param_names:
                raise RegistryBuildError(
                    f"Enumerated parameters {sorted(params)} for route {route.id!r} "
                    f"do not match pattern {route.pattern}"
                )
            param_sets.append(params)
        return tuple(param_sets)

    def resolve(self, path: str) -> RouteMatch:
        """Return the first route whose pattern matches ``path``.

        Raises ``NotFoundError`` if no pattern matches.
        """
        parts = [p for p in path.split("?", 1)[0].strip("/").split("/") if p]
        for route in self.routes:
            params = match_segments(route, parts)
            if params is None:
                continue
            key = cache_key(route.id, params)
            return RouteMatch(
                route=route,
                params=params,
                prebuilt=key in self.prebuilt.get(route.id, frozenset()),
            )
        raise NotFoundError(f"No route matches {path!r}")

    def build_path(self, route: Route, params: Mapping[str, str]) -> str:
        """Inverse of ``resolve``: render a parameter set into a concrete path."""
        parts: list[str] = []
        for seg in route.segments:
            if seg.is_param:
                try:
                    parts.append(params[seg.param_name or ""])
                except KeyError:
                    raise ValueError(
                        f"Missing parameter {seg.param_name!r} for route {route.id!r}"
                    ) from None
            else:
                parts.append(seg.value)
        return "/" + "/".join(parts)

    def prebuilt_targets(self) -> list[tuple[Route, ParameterSet]]:
        """Every (route, params) pair that should exist before traffic arrives."""
        return [
            (self.by_id[route_id], params)
            for route_id, param_sets in self.enumerated.items()
            if self.by_id[route_id].render_mode is not RenderMode.PER_REQUEST
            for params in param_sets
        ]
