"""Tagged results a renderer may return for one generation."""

from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BaseModel, ConfigDict, Field

from prerender.models.route import Revalidate


class Rendered(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["rendered"] = "rendered"
    payload: bytes
    metadata: dict[str, str] = {}
    revalidate_seconds: Revalidate | None = None  # Overrides the route for this artifact only
    error: str | None = None  # Renderer served degraded output


class NotFoundResult(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["not_found"] = "not_found"


class Redirect(BaseModel):
    model_config = ConfigDict(frozen=True)

    kind: Literal["redirect"] = "redirect"
    target: str  # Path to serve instead


RenderResult = Annotated[Rendered | NotFoundResult | Redirect, Field(discriminator="kind")]
