"""
Core domain ORM models.

Exports:
- Profile
"""

from .profile import Profile

__all__ = ["Profile"]
