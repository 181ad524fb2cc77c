"""Pydantic schema for guard decisions handed to the calling layer."""

from __future__ import annotations

from pydantic import BaseModel, Field


class GuardDecision(BaseModel):
    """Outcome of a guard check.

    The calling layer decides how to render it (e.g. HTTP 429 with a
    Retry-After header when ``blocked`` is true).
    """

    blocked: bool = Field(
        ..., description="True when the attempt must be rejected."
    )
    tier: str = Field(
        ..., description="Name of the tier the decision was made for."
    )
    retry_after_seconds: int | None = Field(
        default=None,
        description="Seconds until the next attempt is allowed (ceil-rounded). Set only when blocked.",
        ge=1,
    )
    next_valid_at: float | None = Field(
        default=None,
        description="UNIX time from which the next attempt is allowed. Set only when blocked.",
    )
    message: str | None = Field(
        default=None,
        description="Human-readable block message rendered from the tier template.",
    )
    degraded: bool = Field(
        default=False,
        description=(
            "True when the attempt store failed and the guard allowed the attempt "
            "under its fail-open policy."
        ),
    )

    @property
    def allowed(self) -> bool:
        return not self.blocked
