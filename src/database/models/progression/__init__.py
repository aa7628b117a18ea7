"""
Progression domain ORM models.

Exports:
- XpTransaction
- LabAttempt
- QuizCompletion
- LessonProgress
- ModuleProgress
"""

from .lab_attempt import LabAttempt
from .lesson_progress import LessonProgress, ModuleProgress
from .quiz_completion import QuizCompletion
from .xp_transaction import XpTransaction

__all__ = [
    "XpTransaction",
    "LabAttempt",
    "QuizCompletion",
    "LessonProgress",
    "ModuleProgress",
]
