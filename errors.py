"""
Errors Module - Exception and warning types raised by the analytics engine.
"""


class InsufficientDataError(ValueError):
    """Reference data cannot support a grade-adjustment fit."""


class MissingTimeDataWarning(UserWarning):
    """Some time-derived values were unavailable and resolved to None."""
