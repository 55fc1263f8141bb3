"""Model-level validation utilities for data integrity.

Validators enforce stock rules at the ORM level so no service or endpoint
can persist a negative quantity, whatever path writes the row.
"""


def non_negative(key: str, value):
    """Validate that a numeric value is >= 0."""
    if value is not None and float(value) < 0:
        raise ValueError(f"{key} cannot be negative, got {value}")
    return value


def positive(key: str, value):
    """Validate that a numeric value is > 0."""
    if value is not None and float(value) <= 0:
        raise ValueError(f"{key} must be positive, got {value}")
    return value


def validate_dict(key: str, value):
    """Validate that a JSON column value is a dict (or None)."""
    if value is not None and not isinstance(value, dict):
        raise ValueError(f"{key} must be a dict, got {type(value).__name__}")
    return value
