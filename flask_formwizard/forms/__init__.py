"""
Flask-FormWizard engine

Multi-step form sessions driven by form configurations: ordering, conditional
visibility, debounced server-side validation, relationship steps with nested
child sessions, progress persistence and submission normalization.
"""

from .conditions import ConditionEvaluator  # noqa: F401
from .persistence import MemoryProgressStore, SQLAProgressStore  # noqa: F401
from .providers import (  # noqa: F401
    MemoryEntityStore,
    StaticConfigurationProvider,
    StaticMetadataProvider,
)
from .submission import SubmissionNormalizer  # noqa: F401
from .validation import FieldValidationState, ValidationOrchestrator  # noqa: F401
from .wizard import (  # noqa: F401
    SessionStatus,
    StepResult,
    WizardCollaborators,
    WizardSession,
    WizardSessionManager,
    WizardState,
)

__all__ = [
    'ConditionEvaluator',
    'FieldValidationState',
    'MemoryEntityStore',
    'MemoryProgressStore',
    'SessionStatus',
    'SQLAProgressStore',
    'StaticConfigurationProvider',
    'StaticMetadataProvider',
    'StepResult',
    'SubmissionNormalizer',
    'ValidationOrchestrator',
    'WizardCollaborators',
    'WizardSession',
    'WizardSessionManager',
    'WizardState',
]
