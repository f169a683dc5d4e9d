"""Policy loading utilities."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Iterable

import yaml
from pydantic import ValidationError

from ..coordination.types import CollabConfig
from .models import CollabPolicy

logger = logging.getLogger(__name__)


class PolicyLoadError(RuntimeError):
    """Raised when one or more policy files cannot be parsed."""


@dataclass(slots=True)
class PolicySeed:
    """A policy as applied to a session: which file it came from and what it sets."""

    policy: CollabPolicy
    origin: Path
    overrides: list[Path] = field(default_factory=list)

    @property
    def config(self) -> CollabConfig:
        return self.policy.config

    @property
    def seeded_fields(self) -> list[str]:
        """Config keys written in the policy file; everything else is a default."""

        return sorted(self.policy.config.model_fields_set)

    @property
    def defaulted_fields(self) -> list[str]:
        return sorted(set(CollabConfig.model_fields) - set(self.seeded_fields))

    def to_dict(self) -> dict[str, Any]:
        return {
            "policy_id": self.policy.id,
            "origin": str(self.origin),
            "overrides": [str(path) for path in self.overrides],
            "seeded_fields": self.seeded_fields,
            "defaulted_fields": self.defaulted_fields,
        }


class PolicyLoader:
    """Loads coordination policies from YAML files on disk.

    A policy id defined in several search paths resolves to the last one; the
    shadowed files are kept on the seed so callers can see what was replaced.
    """

    def __init__(self, search_paths: Iterable[Path] | None = None) -> None:
        paths = [Path(path) for path in (search_paths or [])]
        self._search_paths: list[Path] = [path for path in paths if path.exists()]

    @property
    def search_paths(self) -> list[Path]:
        return list(self._search_paths)

    def load_seeds(self) -> dict[str, PolicySeed]:
        seeds: dict[str, PolicySeed] = {}
        errors: list[str] = []

        for base in self._search_paths:
            for path in sorted(base.glob("*.yml")) + sorted(base.glob("*.yaml")):
                try:
                    document = yaml.safe_load(path.read_text(encoding="utf-8"))
                except yaml.YAMLError as exc:
                    errors.append(f"Failed to parse YAML in {path}: {exc}")
                    continue

                if document is None:
                    continue

                try:
                    policy = CollabPolicy.model_validate(document)
                except ValidationError as exc:
                    errors.append(f"Policy validation error in {path}: {exc}")
                    continue

                shadowed = seeds.get(policy.id)
                overrides: list[Path] = []
                if shadowed is not None:
                    overrides = [*shadowed.overrides, shadowed.origin]
                    logger.debug(
                        "Policy overridden by later search path",
                        extra={"policy_id": policy.id, "origin": str(path), "shadowed": str(shadowed.origin)},
                    )
                seeds[policy.id] = PolicySeed(policy=policy, origin=path, overrides=overrides)

        if errors:
            raise PolicyLoadError("; ".join(errors))

        return seeds

    def load_all(self) -> dict[str, CollabPolicy]:
        """Load policies from all configured search paths, keyed by id."""

        return {policy_id: seed.policy for policy_id, seed in self.load_seeds().items()}

    def seed(self, policy_id: str) -> PolicySeed | None:
        """The resolved seed for ``policy_id``, or ``None`` if no file defines it."""

        return self.load_seeds().get(policy_id)

    def get(self, policy_id: str) -> CollabPolicy:
        seed = self.seed(policy_id)
        if seed is None:
            raise PolicyLoadError(f"Policy '{policy_id}' not found in search paths")
        return seed.policy

    def catalog(self) -> list[dict[str, Any]]:
        return [
            {**seed.policy.summary(), **seed.to_dict()}
            for _, seed in sorted(self.load_seeds().items())
        ]


def load_policies(search_paths: Iterable[Path] | None = None) -> dict[str, CollabPolicy]:
    """Convenience wrapper for loading policies from the provided paths."""

    return PolicyLoader(search_paths).load_all()


__all__ = ["CollabPolicy", "PolicyLoadError", "PolicyLoader", "PolicySeed", "load_policies"]
