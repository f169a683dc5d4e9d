"""Coordination policy models and loader exports."""

from .loader import PolicyLoadError, PolicyLoader, PolicySeed, load_policies
from .models import CollabPolicy

__all__ = [
    "CollabPolicy",
    "PolicyLoadError",
    "PolicyLoader",
    "PolicySeed",
    "load_policies",
]
