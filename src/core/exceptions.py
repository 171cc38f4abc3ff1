"""
Exception classes for structured error handling in the automation engine.
"""

from typing import Optional


class AutomationError(Exception):
    """Base exception for all automation engine errors."""

    def __init__(self, detail: str, error_code: str = None):
        super().__init__(detail)
        self.detail = detail
        self.error_code = error_code or self.__class__.__name__


class RuleValidationError(AutomationError):
    """Raised when a rule definition is malformed at load time."""

    def __init__(self, detail: str, rule_id: Optional[str] = None):
        super().__init__(
            detail=f"Invalid rule definition: {detail}" + (f" (rule: {rule_id})" if rule_id else ""),
            error_code="RULE_VALIDATION_ERROR"
        )
        self.rule_id = rule_id


class ParseFailed(AutomationError):
    """Raised when no entity draft could be produced from message content."""

    def __init__(self, detail: str = "no_entity_extracted"):
        super().__init__(detail=detail, error_code="NO_ENTITY_EXTRACTED")


class ParseAmbiguous(AutomationError):
    """Informational: extraction succeeded but with low confidence."""

    def __init__(self, detail: str, confidence: float = 0.0):
        super().__init__(detail=detail, error_code="PARSE_AMBIGUOUS")
        self.confidence = confidence


class PersistenceFailure(AutomationError):
    """Raised when the storage collaborator cannot persist a record."""

    def __init__(self, detail: str, operation: Optional[str] = None):
        super().__init__(
            detail=f"Persistence failed: {detail}" + (f" (operation: {operation})" if operation else ""),
            error_code="PERSISTENCE_FAILURE"
        )
        self.operation = operation


class DuplicateSuppressed(AutomationError):
    """Raised when a (rule, message) pair already has a ledger record."""

    def __init__(self, rule_id: str, message_id: str, record=None):
        super().__init__(
            detail=f"Execution already recorded for rule {rule_id} and message {message_id}",
            error_code="DUPLICATE_SUPPRESSED"
        )
        self.rule_id = rule_id
        self.message_id = message_id
        self.record = record


class InstanceNotFoundError(AutomationError):
    """Raised when the instance directory has no entry for an instance id."""

    def __init__(self, instance_id: str):
        super().__init__(
            detail=f"Instance '{instance_id}' not found",
            error_code="INSTANCE_NOT_FOUND"
        )
        self.instance_id = instance_id


class UnitTimeoutError(AutomationError):
    """Raised when an (event, rule) unit of work exceeds its time budget."""

    def __init__(self, rule_id: str, message_id: str, timeout: float):
        super().__init__(
            detail=f"Unit for rule {rule_id} / message {message_id} timed out after {timeout}s",
            error_code="UNIT_TIMEOUT"
        )
        self.rule_id = rule_id
        self.message_id = message_id
        self.timeout = timeout
