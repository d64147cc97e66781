"""
Workflow Hub - Field Validator

Reusable field-level checks shared by every workflow definition.
"""

import re
from typing import Any, Dict, Iterable, List

from services.workflow_errors import ValidationError

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")
PHONE_PATTERN = re.compile(r"^\+?[0-9\s\-()]+$")


def _is_blank(value: Any) -> bool:
    if value is None:
        return True
    if isinstance(value, str):
        return value.strip() == ""
    return False


class FieldValidator:
    """Required-field, email and phone checks."""

    def missing_fields(self, record: Dict[str, Any], fields: Iterable[str]) -> List[str]:
        return [name for name in fields if _is_blank((record or {}).get(name))]

    def assert_required(self, record: Dict[str, Any], fields: Iterable[str], entity_name: str = "Record"):
        """Raise ValidationError naming the first missing field (all missing ones in context)."""
        missing = self.missing_fields(record, fields)
        if missing:
            raise ValidationError(
                f"Required field '{missing[0]}' is missing or empty",
                code="VALIDATION_MISSING_FIELD",
                context={"field": missing[0], "missing_fields": missing, "entity": entity_name},
            )

    def is_valid_email(self, value: str) -> bool:
        return isinstance(value, str) and bool(EMAIL_PATTERN.match(value.strip()))

    def is_valid_phone(self, value: str) -> bool:
        return isinstance(value, str) and bool(value.strip()) and bool(PHONE_PATTERN.match(value.strip()))
