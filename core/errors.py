"""Error taxonomy for the mapping tool.

- NotFoundError: a remote entity is absent
- FormatError: a persisted document or a remote response is malformed
- TransportError: network or HTTP failure talking to an external service
- ValidationWarning: a literal value fails a format constraint (never raised
  through the matching pipeline, only recorded and logged)
"""

from typing import Any, Dict, List, Optional


class MappingToolError(Exception):
    """Base exception for all mapping tool errors."""

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class NotFoundError(MappingToolError):
    """Remote entity not found (missing in the knowledge base)."""

    def __init__(self, entity_id: str, message: Optional[str] = None):
        super().__init__(message or f"Entity {entity_id} not found", {"entity_id": entity_id})
        self.entity_id = entity_id


class FormatError(MappingToolError):
    """Malformed persisted document or malformed remote response."""

    def __init__(self, message: str, source: Optional[str] = None):
        if source:
            message = f"{message} ({source})"
        super().__init__(message, {"source": source} if source else None)
        self.source = source


class TransportError(MappingToolError):
    """Network or HTTP failure."""

    def __init__(self, message: str, status_code: int = 0, endpoint: str = ""):
        super().__init__(message, {"status_code": status_code, "endpoint": endpoint})
        self.status_code = status_code
        self.endpoint = endpoint


class ValidationWarning(UserWarning):
    """A value does not satisfy one or more format constraints.

    Non-blocking: the matching pipeline records it and carries on.
    """

    def __init__(self, property_id: str, value: str, violations: List[Dict[str, Any]]):
        super().__init__(
            f"Value {value!r} violates {len(violations)} format constraint(s) of {property_id}"
        )
        self.property_id = property_id
        self.value = value
        self.violations = violations

    def to_dict(self) -> Dict[str, Any]:
        return {
            "property_id": self.property_id,
            "value": self.value,
            "violations": self.violations,
        }
