"""
logic/validation.py
Pure logic: validates CLI input before any flag or file work happens.
No file access. Simple checks, ValueError on bad input.
"""

from typing import Any, Tuple


def parse_flag_assignment(assignment: str) -> Tuple[str, bool]:
    """
    Parses one KEY=VALUE argument of `feature-flags set`.

    Rules:
    - strip whitespace around key and value
    - key and value must both be present
    - value is "true" or "false" (any case)
    - else raise ValueError

    The key itself is checked later against the flag schema.

    Returns:
        (key, bool value)
    """
    if assignment is None or "=" not in assignment:
        raise ValueError(f"Invalid flag format: {assignment}. Use KEY=VALUE format.")

    key, _, value = assignment.partition("=")
    key = key.strip()
    value = value.strip().lower()

    if not key or not value:
        raise ValueError(f"Invalid flag format: {assignment}. Use KEY=VALUE format.")

    if value not in ("true", "false"):
        raise ValueError(f"Invalid value for {key}: {value!r}. Use true or false.")

    return key, value == "true"


def validate_max_age_days(value: Any) -> int:
    """
    Validates the --days option of `feature-flags cleanup`.

    Returns:
        the value as a positive int.

    Raises:
        ValueError if it is not a whole number >= 1.
    """
    try:
        days = int(str(value).strip())
    except (TypeError, ValueError):
        raise ValueError("Days must be a positive number")

    if days < 1:
        raise ValueError("Days must be a positive number")

    return days
