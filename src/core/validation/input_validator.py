"""
Input validation for Academy services.

Every caller-supplied value (learner ids, lab and lesson ids, XP amounts,
page sizes, percentages, enum-like choices) passes through ``InputValidator``
before a service opens a transaction. Methods return the coerced value or
raise ``ValidationError``; business rules and authorization live elsewhere.

Rejections are expected traffic, so they are logged at DEBUG only.
"""

from __future__ import annotations

import re
from typing import Any, Iterable, List, NoReturn, Optional, Sequence

from src.core.logging.logger import get_logger
from src.modules.shared.constants import MAX_IDENTIFIER_LENGTH
from src.modules.shared.exceptions import ValidationError

logger = get_logger(__name__)

_IDENTIFIER = re.compile(r"[A-Za-z0-9][A-Za-z0-9_.:@-]*")
_COLLECTIONS = (list, tuple, set, frozenset)


def _reject(field_name: str, value: Any, reason: str) -> NoReturn:
    logger.debug(
        "Input rejected",
        extra={"field_name": field_name, "raw_value": repr(value), "reason": reason},
    )
    raise ValidationError(field_name, reason)


def _check_bounds(
    field_name: str,
    value: Any,
    size: int,
    low: Optional[int],
    high: Optional[int],
    too_small: str,
    too_large: str,
) -> None:
    if low is not None and size < low:
        _reject(field_name, value, too_small.format(low=low, size=size))
    if high is not None and size > high:
        _reject(field_name, value, too_large.format(high=high, size=size))


class InputValidator:
    """Stateless validators; all methods are static."""

    # -------------------------------------------------------------------------
    # Numbers
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_integer(
        value: Any,
        field_name: str,
        min_value: Optional[int] = None,
        max_value: Optional[int] = None,
        allow_zero: bool = True,
    ) -> int:
        """
        Coerce ``value`` to ``int``.

        Numeric strings (``"42"``) and integral floats (``5.0``) are accepted.
        Booleans, fractional floats and anything ``int()`` refuses are not.
        """
        if value is None:
            _reject(field_name, value, "Value is required")
        if isinstance(value, bool) or (isinstance(value, float) and not value.is_integer()):
            _reject(field_name, value, f"Must be a whole number, got '{value}'")

        try:
            number = int(value)
        except (TypeError, ValueError):
            _reject(field_name, value, f"Must be a whole number, got '{value}'")

        if number == 0 and not allow_zero:
            _reject(field_name, number, "Cannot be zero")
        _check_bounds(
            field_name,
            number,
            number,
            min_value,
            max_value,
            "Must be at least {low}, got {size}",
            "Cannot exceed {high}, got {size}",
        )
        return number

    @staticmethod
    def validate_positive_integer(
        value: Any, field_name: str, max_value: Optional[int] = None
    ) -> int:
        return InputValidator.validate_integer(
            value, field_name, min_value=1, max_value=max_value, allow_zero=False
        )

    @staticmethod
    def validate_non_negative_integer(
        value: Any, field_name: str, max_value: Optional[int] = None
    ) -> int:
        return InputValidator.validate_integer(
            value, field_name, min_value=0, max_value=max_value
        )

    # -------------------------------------------------------------------------
    # Text
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_string(
        value: Any,
        field_name: str,
        min_length: Optional[int] = None,
        max_length: Optional[int] = None,
        allowed_chars: Optional[str] = None,
    ) -> str:
        """
        Stringify and strip ``value``, then check its length.

        ``allowed_chars`` is a regex character class body such as
        ``"a-zA-Z0-9 "``.
        """
        if value is None:
            _reject(field_name, value, "Value is required")

        text = str(value).strip()
        _check_bounds(
            field_name,
            text,
            len(text),
            min_length,
            max_length,
            "Must be at least {low} characters",
            "Cannot exceed {high} characters",
        )
        if allowed_chars is not None and not re.fullmatch(f"[{allowed_chars}]+", text):
            _reject(field_name, text, "Contains invalid characters")
        return text

    @staticmethod
    def validate_identifier(
        value: Any,
        field_name: str,
        max_length: int = MAX_IDENTIFIER_LENGTH,
    ) -> str:
        """
        Opaque platform-issued id (UUID, slug, ``provider:subject``).

        Integers are accepted and returned as strings.
        """
        if isinstance(value, bool) or not isinstance(value, (str, int)):
            _reject(field_name, value, "Must be a string identifier")

        identifier = InputValidator.validate_string(
            value, field_name, min_length=1, max_length=max_length
        )
        if _IDENTIFIER.fullmatch(identifier) is None:
            _reject(field_name, identifier, "Contains invalid characters")
        return identifier

    @staticmethod
    def validate_choice(value: Any, field_name: str, valid_choices: Sequence[str]) -> str:
        """Case-insensitive; returns the lowercased choice."""
        choice = str(value).strip().lower()
        if choice not in {option.lower() for option in valid_choices}:
            _reject(
                field_name,
                value,
                f"Invalid choice '{value}'. Must be one of: {', '.join(sorted(valid_choices))}",
            )
        return choice

    # -------------------------------------------------------------------------
    # Collections
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_id_list(
        values: Any,
        field_name: str,
        min_count: Optional[int] = None,
        max_count: Optional[int] = None,
    ) -> List[str]:
        """Identifiers with duplicates dropped, first occurrence wins."""
        if not isinstance(values, _COLLECTIONS):
            _reject(field_name, values, "Must be a list")

        _check_bounds(
            field_name,
            values,
            len(values),
            min_count,
            max_count,
            "Must provide at least {low} items",
            "Cannot provide more than {high} items",
        )
        return list(dict.fromkeys(InputValidator._each_identifier(values, field_name)))

    @staticmethod
    def _each_identifier(values: Iterable[Any], field_name: str) -> Iterable[str]:
        for idx, raw in enumerate(values):
            try:
                yield InputValidator.validate_identifier(raw, f"{field_name}[{idx}]")
            except ValidationError as exc:
                _reject(field_name, raw, f"Item {idx}: {exc.validation_message}")
