"""
Input validation functions for grocery_sync.

Provides validation for entity names, quantities and coordinates so the
data-mutation layer rejects bad input before anything is written to the
local store.
"""

import math

MAX_NAME_LENGTH = 255


# ---------------------------------------------------------------------------
# Error message formatting helpers
# ---------------------------------------------------------------------------


def format_validation_error(field_name: str, reason: str) -> str:
    """
    Generate consistent error message for validation failures.

    Args:
        field_name: Human-readable field name (e.g., "List name")
        reason: Description of validation failure (e.g., "cannot be empty")

    Returns:
        Formatted error message string
    """
    return f"{field_name} {reason}"


def validate_name(name: str, field_name: str = "Name") -> tuple[bool, str]:
    """
    Validate a list, item or store name.

    Args:
        name: The name to validate
        field_name: Label used in the error message

    Returns:
        Tuple of (is_valid, error_message).
        Returns (True, "") if valid, (False, reason) if invalid.

    Validation rules:
        - Cannot be empty or whitespace-only
        - Cannot exceed MAX_NAME_LENGTH characters
    """
    if not name or not name.strip():
        return (
            False,
            format_validation_error(field_name, "cannot be empty"),
        )

    if len(name) > MAX_NAME_LENGTH:
        return (
            False,
            format_validation_error(
                field_name,
                f"exceeds maximum length of {MAX_NAME_LENGTH} characters",
            ),
        )

    return (True, "")


def validate_quantity(quantity: float) -> tuple[bool, str]:
    """
    Validate an item quantity.

    Validation rules:
        - Must be a finite number
        - Cannot be negative
    """
    if not isinstance(quantity, (int, float)) or not math.isfinite(
        quantity
    ):
        return (
            False,
            format_validation_error("Quantity", "must be a finite number"),
        )

    if quantity < 0:
        return (
            False,
            format_validation_error("Quantity", "cannot be negative"),
        )

    return (True, "")


def validate_coordinates(
    latitude: float, longitude: float
) -> tuple[bool, str]:
    """
    Validate a latitude/longitude pair in degrees.
    """
    if not -90.0 <= latitude <= 90.0:
        return (
            False,
            format_validation_error(
                "Latitude", "must be between -90 and 90"
            ),
        )

    if not -180.0 <= longitude <= 180.0:
        return (
            False,
            format_validation_error(
                "Longitude", "must be between -180 and 180"
            ),
        )

    return (True, "")
