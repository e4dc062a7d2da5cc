"""
Flask-FormWizard exceptions.

Every error raised by the wizard engine derives from ``FormWizardException`` so
callers embedding the engine can catch the whole family in one place.
"""

from typing import Any, Dict, Optional


class FormWizardException(Exception):
    """Base exception for form wizard errors."""

    def __init__(self, message: str, details: Dict[str, Any] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}


class ConfigurationError(FormWizardException):
    """Raised when a form configuration is missing, ambiguous or unusable."""
    pass


class EntityMetadataError(ConfigurationError):
    """Raised when entity metadata needed by the engine cannot be obtained."""

    def __init__(self, message: str, entity_type_name: Optional[str] = None):
        super().__init__(message, {'entity_type_name': entity_type_name})
        self.entity_type_name = entity_type_name


class NormalizationError(FormWizardException):
    """
    Raised when wizard data cannot be converted into an entity payload.

    Carries the field (and relationship entity type, when known) that could not
    be mapped so the error can be reported next to the offending input.
    """

    def __init__(self, message: str, field_name: Optional[str] = None,
                 entity_type_name: Optional[str] = None, index: Optional[int] = None):
        super().__init__(message, {
            'field_name': field_name,
            'entity_type_name': entity_type_name,
            'index': index,
        })
        self.field_name = field_name
        self.entity_type_name = entity_type_name
        self.index = index


class PersistenceError(FormWizardException):
    """Raised when a progress snapshot cannot be saved or loaded."""

    def __init__(self, message: str, operation: Optional[str] = None,
                 cause: Optional[BaseException] = None):
        super().__init__(message, {'operation': operation})
        self.operation = operation
        self.cause = cause


class StateTransitionError(FormWizardException):
    """Exception raised for invalid wizard session state transitions."""
    pass


class ValidationExecutionError(FormWizardException):
    """Raised when the validation service could not execute a rule check."""

    def __init__(self, message: str, field_id: Any = None):
        super().__init__(message, {'field_id': field_id})
        self.field_id = field_id
