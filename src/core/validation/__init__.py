"""Caller-input validation run by every service before it opens a transaction."""

from src.core.validation.input_validator import InputValidator

__all__ = ["InputValidator"]
