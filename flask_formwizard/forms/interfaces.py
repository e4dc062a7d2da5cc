"""
Collaborator interfaces consumed by the wizard engine.

Every method is a coroutine; each await is a suspension point of the session.
"""
from abc import ABC, abstractmethod
from typing import Any, Dict, List, Optional

from ..models.forms import (
    EntityMetadata,
    FormConfiguration,
    FormField,
    FormStep,
    FormSubmissionProgress,
    PagedResult,
    PlaceholderResolutionRequest,
    PlaceholderResolutionResponse,
    ValidateFieldRequest,
    ValidationResult,
)


class ConfigurationProvider(ABC):
    """Source of form configurations and reusable templates."""

    @abstractmethod
    async def get_configuration(self, configuration_id: Any) -> Optional[FormConfiguration]:
        pass

    @abstractmethod
    async def get_default_configuration(self, entity_type_name: str) -> Optional[FormConfiguration]:
        """
        Return the default configuration of an entity type.

        Raises:
            ConfigurationError: when several configurations claim to be default
        """
        pass

    async def get_reusable_steps(self) -> List[FormStep]:
        return []

    async def get_reusable_fields(self) -> List[FormField]:
        return []


class MetadataProvider(ABC):
    @abstractmethod
    async def get_entity_metadata(self, entity_type_name: str) -> Optional[EntityMetadata]:
        pass


class ValidationService(ABC):
    @abstractmethod
    async def validate_field(self, request: ValidateFieldRequest) -> ValidationResult:
        pass

    async def resolve_placeholders(
        self, request: PlaceholderResolutionRequest
    ) -> PlaceholderResolutionResponse:
        return PlaceholderResolutionResponse(
            total_placeholders_requested=len(request.placeholder_paths)
        )


class ProgressStore(ABC):
    """Durable storage of form submission progress rows."""

    @abstractmethod
    async def create(self, progress: FormSubmissionProgress) -> FormSubmissionProgress:
        """Store a new progress; the returned copy carries the assigned id"""
        pass

    @abstractmethod
    async def update(self, progress_id: str, progress: FormSubmissionProgress) -> FormSubmissionProgress:
        pass

    @abstractmethod
    async def get_by_id(self, progress_id: str) -> Optional[FormSubmissionProgress]:
        """Return the progress with its child progresses, or None"""
        pass


class EntityDataSource(ABC):
    @abstractmethod
    async def fetch_by_id(self, entity_type_name: str, entity_id: Any) -> Optional[Dict[str, Any]]:
        pass

    @abstractmethod
    async def create(self, entity_type_name: str, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass

    @abstractmethod
    async def update(self, entity_type_name: str, entity_id: Any, payload: Dict[str, Any]) -> Dict[str, Any]:
        pass


class EntityBrowser(ABC):
    """Paged search over the entities a relationship step can select from."""

    @abstractmethod
    async def browse(
        self,
        entity_type_name: str,
        page: int = 1,
        page_size: int = 25,
        search: Optional[str] = None,
    ) -> PagedResult:
        pass
