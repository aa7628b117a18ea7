"""Lesson and module completion tracking."""

from .service import CompletionResult, LessonProgressService

__all__ = ["LessonProgressService", "CompletionResult"]
