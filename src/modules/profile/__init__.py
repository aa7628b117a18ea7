"""Learner profiles and progression snapshots."""

from .service import ProfileService, ProfileSnapshot

__all__ = ["ProfileService", "ProfileSnapshot"]
