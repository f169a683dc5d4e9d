"""Named coordination policies that seed a session's configuration."""

from __future__ import annotations

from typing import Any

from pydantic import BaseModel, Field, field_validator

from ..coordination.types import CollabConfig


class CollabPolicy(BaseModel):
    """A reusable preset for ``CollabConfig`` shared across a team."""

    id: str = Field(..., description="Unique identifier used by collab_session_start and collab_config.")
    title: str = Field(..., description="Display title for the policy.")
    description: str = Field(
        default="",
        description="When this policy should be chosen.",
    )
    config: CollabConfig = Field(
        default_factory=CollabConfig,
        description="Coordination settings applied to sessions using this policy.",
    )
    metadata: dict[str, Any] = Field(
        default_factory=dict,
        description="Arbitrary metadata, e.g. owning team.",
    )

    @field_validator("id")
    @classmethod
    def _normalize_id(cls, value: str) -> str:
        normalized = value.strip()
        if not normalized:
            raise ValueError("Policy id must not be empty")
        return normalized

    @field_validator("config", mode="before")
    @classmethod
    def _ensure_mapping(cls, value: Any):  # type: ignore[override]
        if value is None:
            return {}
        return value

    def summary(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "config": self.config.to_dict(),
            "metadata": dict(self.metadata),
        }


__all__ = ["CollabPolicy"]
