"""Lab command evaluation: sanitize, match, record attempts, reward once."""

from .evaluation import is_accepted, normalize_command, sanitize_command
from .service import LabAttemptRecord, LabEvaluationService, LabSubmissionResult

__all__ = [
    "LabEvaluationService",
    "LabAttemptRecord",
    "LabSubmissionResult",
    "sanitize_command",
    "normalize_command",
    "is_accepted",
]
