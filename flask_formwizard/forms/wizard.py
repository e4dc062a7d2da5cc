"""
Wizard sessions.

A ``WizardSession`` drives one multi-step form: it loads a configuration (and
optionally a saved progress or an existing entity), keeps the per-step data in
a single ``WizardState``, gates step advance on required fields, blocking
validation results and completion conditions, persists progress, manages
relationship steps and nested child sessions, and finally normalizes the
collected data into an entity payload.

Status transitions::

    Initializing -> Active -> Paused | Completed | Abandoned
    Paused -> Active | Completed | Abandoned
"""

import copy
import inspect
import json
import logging
import uuid
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Dict, List, Optional

from ..config.wizard import WizardEngineConfig
from ..const import (
    LOGMSG_ERR_PROGRESS_SAVE,
    LOGMSG_INF_SESSION_LOADED,
    LOGMSG_INF_SESSION_SAVED,
    LOGMSG_INF_SESSION_SUBMITTED,
    RELATED_ENTITY_ID_KEY,
)
from ..exceptions import (
    ConfigurationError,
    FormWizardException,
    NormalizationError,
    PersistenceError,
    StateTransitionError,
)
from ..models.forms import (
    AllStepsData,
    ConditionType,
    EntityMetadata,
    FormConfiguration,
    FormField,
    FormStep,
    FormSubmissionProgress,
    FormSubmissionStatus,
)
from .conditions import ConditionEvaluator
from .normalization import flatten_all_steps, is_empty_value, normalize_all
from .ordering import ordered_fields, ordered_steps
from .relationships import RelationshipEditor
from .submission import SubmissionNormalizer, check_required_fields
from .validation import ValidationOrchestrator

log = logging.getLogger(__name__)


class SessionStatus(str, Enum):
    INITIALIZING = "Initializing"
    ACTIVE = "Active"
    PAUSED = "Paused"
    COMPLETED = "Completed"
    ABANDONED = "Abandoned"


SESSION_TRANSITIONS = {
    SessionStatus.INITIALIZING: {SessionStatus.ACTIVE},
    SessionStatus.ACTIVE: {
        SessionStatus.PAUSED,
        SessionStatus.COMPLETED,
        SessionStatus.ABANDONED,
    },
    SessionStatus.PAUSED: {
        SessionStatus.ACTIVE,
        SessionStatus.COMPLETED,
        SessionStatus.ABANDONED,
    },
    SessionStatus.COMPLETED: set(),  # Terminal state
    SessionStatus.ABANDONED: set(),  # Terminal state
}


@dataclass
class WizardCollaborators:
    """External services a session talks to"""
    configuration_provider: Any
    metadata_provider: Any = None
    validation_service: Any = None
    progress_store: Any = None
    entity_source: Any = None
    entity_browser: Any = None


@dataclass
class WizardState:
    """Everything a session knows; replaced only through session methods"""
    configuration: FormConfiguration
    status: SessionStatus = SessionStatus.INITIALIZING
    current_step_index: int = 0
    all_steps_data: AllStepsData = field(default_factory=dict)
    progress_id: Optional[str] = None
    parent_progress_id: Optional[str] = None
    entity_id: Any = None
    user_id: Optional[str] = None
    entity_metadata: Optional[EntityMetadata] = None
    join_metadata: Dict[str, EntityMetadata] = field(default_factory=dict)
    step_errors: List[str] = field(default_factory=list)
    feedback: Optional[Dict[str, str]] = None
    submitted_payload: Optional[Dict[str, Any]] = None
    result_entity: Optional[Dict[str, Any]] = None


@dataclass
class StepResult:
    """Outcome of a navigation or submit request"""
    success: bool
    step_index: int
    errors: List[str] = field(default_factory=list)
    field_errors: Dict[str, str] = field(default_factory=dict)
    completed: bool = False
    payload: Optional[Dict[str, Any]] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            'success': self.success,
            'step_index': self.step_index,
            'errors': list(self.errors),
            'field_errors': dict(self.field_errors),
            'completed': self.completed,
            'payload': self.payload,
        }


def _lookup_case_insensitive(data: Dict[str, Any], key: str):
    if key in data:
        return True, data[key]
    lowered = key.lower()
    for candidate, value in data.items():
        if str(candidate).lower() == lowered:
            return True, value
    return False, None


async def _maybe_await(value):
    if inspect.isawaitable(value):
        return await value
    return value


class WizardSession:
    """
    Controller of one wizard session.

    Args:
        collaborators: configuration/metadata providers, validation service,
            progress store and entity source
        config: engine configuration, defaults to ``WizardEngineConfig()``
        on_complete: called with ``(payload, progress)`` after a successful
            submit; when absent the payload is written through the entity
            source (update in edit mode, create otherwise)
    """

    def __init__(
        self,
        collaborators: WizardCollaborators,
        config: Optional[WizardEngineConfig] = None,
        on_complete: Optional[Callable] = None,
    ):
        self.collaborators = collaborators
        self.config = config or WizardEngineConfig()
        self.on_complete = on_complete
        self.session_id = str(uuid.uuid4())
        self.state: Optional[WizardState] = None
        self.evaluator = ConditionEvaluator()
        self.validation: Optional[ValidationOrchestrator] = None
        self.children: Dict[str, 'WizardSession'] = {}

    # -------------------------------------------------------------------------
    # State transitions
    # -------------------------------------------------------------------------

    @property
    def status(self) -> SessionStatus:
        return self.state.status if self.state else SessionStatus.INITIALIZING

    def _transition(self, to_status: SessionStatus) -> None:
        current = self.status
        if current == to_status:
            return
        if to_status not in SESSION_TRANSITIONS[current]:
            raise StateTransitionError(
                f"Invalid session transition from {current.value} to {to_status.value}"
            )
        log.debug(f"Session {self.session_id}: {current.value} -> {to_status.value}")
        self.state.status = to_status

    def _ensure_editable(self) -> None:
        if self.state is None:
            raise StateTransitionError("Session is not loaded")
        if self.status in (SessionStatus.COMPLETED, SessionStatus.ABANDONED):
            raise StateTransitionError(
                f"Session is {self.status.value} and can no longer be changed"
            )
        if self.status == SessionStatus.PAUSED:
            self._transition(SessionStatus.ACTIVE)

    # -------------------------------------------------------------------------
    # Loading
    # -------------------------------------------------------------------------

    async def load(
        self,
        configuration_id: Any = None,
        entity_type_name: Optional[str] = None,
        progress_id: Optional[str] = None,
        entity_id: Any = None,
        parent_progress_id: Optional[str] = None,
        user_id: Optional[str] = None,
        initial_data: Optional[Dict[str, Any]] = None,
        configuration: Optional[FormConfiguration] = None,
    ) -> WizardState:
        """
        Load or create the session state.

        With ``progress_id`` the saved progress is resumed: its step index and
        entity id are restored and child progresses are merged into the
        relationship lists before the data is normalized. Otherwise the
        configuration is looked up by id (or as the entity type's default) and,
        in edit mode, pre-populated from the existing entity.

        Raises:
            ConfigurationError: no usable configuration or step index
            PersistenceError: the progress cannot be loaded
            StateTransitionError: the progress is already terminal
        """
        progress = None
        if progress_id:
            progress = await self._load_progress(progress_id)
            configuration_id = progress.form_configuration_id
            stored_entity_id = progress.decoded_entity_id()
            entity_id = stored_entity_id if stored_entity_id is not None else entity_id
            parent_progress_id = progress.parent_progress_id
            user_id = progress.user_id or user_id

        if configuration is None:
            configuration = await self._load_configuration(configuration_id, entity_type_name)
        configuration = copy.deepcopy(configuration)
        configuration.steps = ordered_steps(configuration)
        if not configuration.steps:
            raise ConfigurationError(
                f"Configuration {configuration.id} for {configuration.entity_type_name} has no steps"
            )

        self.state = WizardState(
            configuration=configuration,
            progress_id=progress.id if progress else None,
            parent_progress_id=parent_progress_id,
            entity_id=entity_id,
            user_id=user_id,
        )
        await self._load_metadata()

        if progress is not None:
            partial = progress.all_steps_data()
            current_data = progress.current_step_data()
            if current_data:
                partial.setdefault(progress.current_step_index, {}).update(current_data)
            partial = self._merge_child_progresses(partial, progress.child_progresses)
            step_index = progress.current_step_index
        else:
            partial = await self._initial_data(initial_data)
            step_index = 0

        if step_index < 0 or step_index >= len(configuration.steps):
            raise ConfigurationError(
                f"Step index {step_index} is out of range for configuration {configuration.id}"
            )
        self.state.all_steps_data = normalize_all(configuration, partial)
        self.state.current_step_index = step_index
        self.validation = ValidationOrchestrator(
            configuration,
            self.collaborators.validation_service,
            lambda: self.state.all_steps_data,
            debounce_delay=self.config.behavior.debounce_delay,
            timeout=self.config.behavior.validation_timeout,
            entity_id_getter=lambda: self.state.entity_id,
        )
        self._transition(SessionStatus.ACTIVE)
        log.info(LOGMSG_INF_SESSION_LOADED.format(configuration.entity_type_name, step_index))
        return self.state

    async def _load_progress(self, progress_id: str) -> FormSubmissionProgress:
        store = self.collaborators.progress_store
        if store is None:
            raise PersistenceError("No progress store configured", operation="get")
        try:
            progress = await store.get_by_id(progress_id)
        except PersistenceError:
            raise
        except Exception as e:
            raise PersistenceError(
                f"Could not load progress {progress_id}: {e}", operation="get", cause=e
            ) from e
        if progress is None:
            raise PersistenceError(f"Progress {progress_id} not found", operation="get")
        if progress.is_terminal:
            raise StateTransitionError(
                f"Progress {progress_id} is {progress.status} and cannot be resumed"
            )
        return progress

    async def _load_configuration(
        self, configuration_id: Any, entity_type_name: Optional[str]
    ) -> FormConfiguration:
        provider = self.collaborators.configuration_provider
        if configuration_id is not None:
            configuration = await provider.get_configuration(configuration_id)
            if configuration is None:
                raise ConfigurationError(f"Form configuration {configuration_id} not found")
            return configuration
        if entity_type_name:
            configuration = await provider.get_default_configuration(entity_type_name)
            if configuration is None:
                raise ConfigurationError(
                    f"No default form configuration for {entity_type_name}",
                    {'entity_type_name': entity_type_name},
                )
            return configuration
        raise ConfigurationError("A configuration id or entity type name is required")

    async def _get_metadata(self, entity_type_name: str) -> Optional[EntityMetadata]:
        provider = self.collaborators.metadata_provider
        if provider is None or not entity_type_name:
            return None
        try:
            return await provider.get_entity_metadata(entity_type_name)
        except Exception as e:
            log.warning(f"Metadata for {entity_type_name} unavailable: {e}")
            return None

    async def _load_metadata(self) -> None:
        configuration = self.state.configuration
        self.state.entity_metadata = await self._get_metadata(configuration.entity_type_name)
        for step in configuration.steps:
            join_type = step.join_entity_type
            if not step.is_many_to_many_relationship or not join_type:
                continue
            if join_type in self.state.join_metadata:
                continue
            metadata = await self._get_metadata(join_type)
            if metadata is not None:
                self.state.join_metadata[join_type] = metadata

    async def _initial_data(self, initial_data: Optional[Dict[str, Any]]) -> AllStepsData:
        source: Dict[str, Any] = dict(initial_data or {})
        if self.state.entity_id is not None and self.collaborators.entity_source is not None:
            try:
                entity = await self.collaborators.entity_source.fetch_by_id(
                    self.state.configuration.entity_type_name, self.state.entity_id
                )
            except Exception as e:
                log.warning(
                    f"Could not fetch {self.state.configuration.entity_type_name} "
                    f"{self.state.entity_id}, using defaults: {e}"
                )
                entity = None
            if entity:
                source = dict(entity, **source)

        partial: AllStepsData = {}
        for index, step in enumerate(self.state.configuration.steps):
            step_data = {}
            for form_field in step.fields:
                found, value = _lookup_case_insensitive(source, form_field.field_name)
                if found:
                    step_data[form_field.field_name] = value
            partial[index] = step_data
        return partial

    def _merge_child_progresses(
        self, partial: AllStepsData, child_progresses: List[FormSubmissionProgress]
    ) -> AllStepsData:
        if not child_progresses:
            return partial
        for index, step in enumerate(self.state.configuration.steps):
            if not step.is_many_to_many_relationship or not step.related_entity_property_name:
                continue
            editor = self.relationship_editor(index)
            step_data = partial.setdefault(index, {})
            step_data[step.related_entity_property_name] = editor.merge_child_progresses(
                step_data.get(step.related_entity_property_name), child_progresses
            )
        return partial

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    @property
    def configuration(self) -> FormConfiguration:
        return self.state.configuration

    @property
    def current_step(self) -> FormStep:
        return self.configuration.steps[self.state.current_step_index]

    def step_data(self, step_index: Optional[int] = None) -> Dict[str, Any]:
        if step_index is None:
            step_index = self.state.current_step_index
        return self.state.all_steps_data.setdefault(step_index, {})

    def flattened_data(self) -> Dict[str, Any]:
        return flatten_all_steps(self.state.all_steps_data)

    def is_final_step(self) -> bool:
        return self._next_available_index(self.state.current_step_index) is None

    def is_field_visible(self, form_field: FormField, step_index: Optional[int] = None) -> bool:
        if step_index is None:
            step_index = self.state.current_step_index
        return self.evaluator.evaluate(
            form_field.dependency_condition_json,
            self.step_data(step_index),
            self.state.all_steps_data,
        )

    def visible_fields(self, step_index: Optional[int] = None) -> List[FormField]:
        """Fields of a step in display order, hidden ones removed"""
        if step_index is None:
            step_index = self.state.current_step_index
        step = self.configuration.steps[step_index]
        return [
            form_field for form_field in ordered_fields(step)
            if self.is_field_visible(form_field, step_index)
        ]

    def is_step_available(self, step_index: int) -> bool:
        """A step is available when all of its active Entry conditions are met"""
        step = self.configuration.steps[step_index]
        return all(
            self.evaluator.evaluate(
                condition.condition_json,
                self.step_data(step_index),
                self.state.all_steps_data,
            )
            for condition in step.active_conditions(ConditionType.ENTRY)
        )

    def _next_available_index(self, from_index: int) -> Optional[int]:
        for index in range(from_index + 1, len(self.configuration.steps)):
            if not self.config.behavior.skip_unmet_entry_steps or self.is_step_available(index):
                return index
        return None

    def _previous_available_index(self, from_index: int) -> Optional[int]:
        for index in range(from_index - 1, -1, -1):
            if not self.config.behavior.skip_unmet_entry_steps or self.is_step_available(index):
                return index
        return None

    def step_progress_percentage(self, step_index: int) -> float:
        fields = self.visible_fields(step_index)
        if not fields:
            return 100.0
        data = self.step_data(step_index)
        filled = sum(1 for form_field in fields if not is_empty_value(data.get(form_field.field_name)))
        return (filled / len(fields)) * 100.0

    def progress_percentage(self) -> float:
        """Overall completion; steps before the current one count as 100%"""
        if self.status == SessionStatus.COMPLETED:
            return 100.0
        total = 0.0
        for index in range(len(self.configuration.steps)):
            if index < self.state.current_step_index:
                total += 100.0
            elif index == self.state.current_step_index:
                total += self.step_progress_percentage(index)
        return total / len(self.configuration.steps)

    # -------------------------------------------------------------------------
    # Editing
    # -------------------------------------------------------------------------

    def _locate_field(self, field_name: str) -> FormField:
        form_field = self.current_step.get_field(field_name)
        if form_field is None:
            raise FormWizardException(
                f"Field {field_name} is not part of step {self.current_step.step_name}",
                {'field_name': field_name},
            )
        return form_field

    async def change_field(self, field_name: str, value: Any, debounce: bool = True) -> None:
        """
        Set a field of the current step and trigger its validation.

        With ``debounce`` the field and its dependents are checked after the
        configured delay; otherwise they are checked before returning.
        """
        self._ensure_editable()
        self._locate_field(field_name)
        self.step_data()[field_name] = value
        self.state.step_errors = []
        await self._after_change(field_name, debounce)

    async def _after_change(self, field_name: str, debounce: bool) -> None:
        if debounce:
            self.validation.on_value_change(field_name)
            return
        changed = self.configuration.find_field(field_name)
        names = [field_name]
        if changed is not None:
            names.extend(
                dependent.field_name for dependent in self.validation.dependent_fields(changed)
                if dependent.field_name != field_name
            )
        await self.validation.validate_fields(names)

    async def _check_step(self) -> StepResult:
        """Run the step-advance gate for the current step"""
        behavior = self.config.behavior
        index = self.state.current_step_index
        step = self.current_step
        data = self.step_data(index)
        visible = self.visible_fields(index)
        visible_names = [form_field.field_name for form_field in visible]

        result = StepResult(success=True, step_index=index)
        if behavior.require_step_completion:
            for form_field in visible:
                if form_field.is_required and is_empty_value(data.get(form_field.field_name)):
                    result.field_errors[form_field.field_name] = (
                        f"{form_field.label or form_field.field_name} is required"
                    )

        if behavior.validate_on_step_change:
            await self.validation.validate_fields(visible_names)
        for name in self.validation.blocking_fields(visible_names):
            result.field_errors.setdefault(name, self.validation.field_errors.get(name, ""))

        if behavior.require_step_completion:
            for condition in step.active_conditions(ConditionType.COMPLETION):
                met = self.evaluator.evaluate(
                    condition.condition_json, data, self.state.all_steps_data
                )
                if not met:
                    message = condition.error_message or "Step completion conditions are not met"
                    log.info(f"Completion condition of step {step.step_name} not met: {message}")
                    result.errors.append(message)

        result.success = not result.field_errors and not result.errors
        self.state.step_errors = list(result.errors)
        return result

    async def next_step(self) -> StepResult:
        """
        Advance to the next available step, or submit on the final step.

        The current step must pass the gate: no required-but-empty visible
        field, no blocking validation result, all completion conditions met.
        """
        self._ensure_editable()
        if self.is_final_step():
            return await self.submit()

        check = await self._check_step()
        if not check.success:
            return check

        target = self._next_available_index(self.state.current_step_index)
        if self.config.behavior.save_on_step_change:
            await self.save_progress(FormSubmissionStatus.IN_PROGRESS, step_index=target)
        self.validation.clear()
        self.state.current_step_index = target
        log.info(f"Session {self.session_id} advanced to step {target}")
        return StepResult(success=True, step_index=target)

    async def previous_step(self) -> StepResult:
        self._ensure_editable()
        target = self._previous_available_index(self.state.current_step_index)
        if target is None:
            return StepResult(
                success=False,
                step_index=self.state.current_step_index,
                errors=["Already on the first step"],
            )
        self.validation.clear()
        self.state.step_errors = []
        self.state.current_step_index = target
        return StepResult(success=True, step_index=target)

    # -------------------------------------------------------------------------
    # Persistence
    # -------------------------------------------------------------------------

    def build_progress(
        self, status: FormSubmissionStatus, step_index: Optional[int] = None
    ) -> FormSubmissionProgress:
        if step_index is None:
            step_index = self.state.current_step_index
        all_steps = normalize_all(self.configuration, self.state.all_steps_data)
        return FormSubmissionProgress(
            id=self.state.progress_id,
            form_configuration_id=self.configuration.id,
            user_id=self.state.user_id,
            entity_type_name=self.configuration.entity_type_name,
            entity_id=FormSubmissionProgress.encode_entity_id(self.state.entity_id),
            parent_progress_id=self.state.parent_progress_id,
            current_step_index=step_index,
            current_step_data_json=json.dumps(all_steps.get(step_index, {}), default=str),
            all_steps_data_json=json.dumps(
                {str(index): data for index, data in all_steps.items()}, default=str
            ),
            status=status.value,
        )

    async def save_progress(
        self, status: FormSubmissionStatus, step_index: Optional[int] = None, raise_errors: bool = False
    ) -> Optional[FormSubmissionProgress]:
        """
        Persist the normalized snapshot.

        Failures are reported through ``state.feedback`` and leave the
        in-memory state untouched; with ``raise_errors`` they are re-raised as
        ``PersistenceError``.
        """
        store = self.collaborators.progress_store
        if store is None:
            return None
        progress = self.build_progress(status, step_index)
        try:
            if self.state.progress_id:
                saved = await store.update(self.state.progress_id, progress)
            else:
                saved = await store.create(progress)
        except Exception as e:
            log.error(LOGMSG_ERR_PROGRESS_SAVE.format(self.configuration.id, e))
            self.state.feedback = {'type': 'error', 'message': f"Failed to save progress: {e}"}
            if raise_errors:
                if isinstance(e, PersistenceError):
                    raise
                raise PersistenceError(str(e), operation="save", cause=e) from e
            return None
        self.state.progress_id = saved.id
        log.info(LOGMSG_INF_SESSION_SAVED.format(saved.id, status.value))
        return saved

    async def save_draft(self) -> bool:
        """Persist the session as Paused and report the outcome in ``state.feedback``"""
        self._ensure_editable()
        saved = await self.save_progress(FormSubmissionStatus.PAUSED)
        if saved is None:
            if self.collaborators.progress_store is None:
                self.state.feedback = {'type': 'error', 'message': "No progress store configured"}
            return False
        self._transition(SessionStatus.PAUSED)
        self.state.feedback = {'type': 'success', 'message': "Draft saved"}
        return True

    async def abandon(self) -> None:
        self._ensure_editable()
        self.validation.clear()
        await self.save_progress(FormSubmissionStatus.ABANDONED)
        self._transition(SessionStatus.ABANDONED)

    # -------------------------------------------------------------------------
    # Submission
    # -------------------------------------------------------------------------

    def build_payload(self) -> Dict[str, Any]:
        """
        Normalize all collected data into the entity payload.

        Raises:
            NormalizationError: when a relationship or related object cannot
                be mapped to foreign keys
        """
        normalizer = SubmissionNormalizer(
            self.configuration, self.state.entity_metadata, self.state.join_metadata
        )
        payload = normalizer.normalize(self.flattened_data(), entity_id=self.state.entity_id)
        if self.config.behavior.check_required_metadata and self.state.entity_metadata:
            check_required_fields(payload, self.state.entity_metadata)
        return payload

    async def submit(self) -> StepResult:
        """
        Complete the session.

        Order: step gate, normalization, persist Completed, transition, then
        the on-complete callback (or entity source write). A normalization or
        persistence failure leaves the session Active.
        """
        self._ensure_editable()
        check = await self._check_step()
        if not check.success:
            return check

        try:
            payload = self.build_payload()
        except NormalizationError as e:
            self.state.step_errors = [e.message]
            field_errors = {e.field_name: e.message} if e.field_name else {}
            return StepResult(
                success=False,
                step_index=self.state.current_step_index,
                errors=[e.message],
                field_errors=field_errors,
            )

        progress = None
        if self.collaborators.progress_store is not None:
            try:
                progress = await self.save_progress(
                    FormSubmissionStatus.COMPLETED, raise_errors=True
                )
            except PersistenceError as e:
                return StepResult(
                    success=False,
                    step_index=self.state.current_step_index,
                    errors=[e.message],
                )

        self.validation.clear()
        self._transition(SessionStatus.COMPLETED)
        self.state.submitted_payload = payload
        log.info(LOGMSG_INF_SESSION_SUBMITTED.format(
            self.configuration.entity_type_name, self.state.progress_id
        ))

        if self.on_complete is not None:
            self.state.result_entity = await _maybe_await(self.on_complete(payload, progress))
        elif self.collaborators.entity_source is not None:
            source = self.collaborators.entity_source
            entity_type_name = self.configuration.entity_type_name
            if self.state.entity_id is not None:
                self.state.result_entity = await source.update(
                    entity_type_name, self.state.entity_id, payload
                )
            else:
                self.state.result_entity = await source.create(entity_type_name, payload)
        return StepResult(
            success=True,
            step_index=self.state.current_step_index,
            completed=True,
            payload=payload,
        )

    # -------------------------------------------------------------------------
    # Relationship steps
    # -------------------------------------------------------------------------

    def relationship_editor(self, step_index: Optional[int] = None) -> RelationshipEditor:
        if step_index is None:
            step_index = self.state.current_step_index
        step = self.configuration.steps[step_index]
        if not step.is_many_to_many_relationship or not step.related_entity_property_name:
            raise ConfigurationError(f"Step {step.step_name} is not a relationship step")
        return RelationshipEditor(
            step,
            self.state.join_metadata.get(step.join_entity_type),
            self.configuration.entity_type_name,
        )

    def relationships(self, step_index: Optional[int] = None) -> List[Dict[str, Any]]:
        editor = self.relationship_editor(step_index)
        return list(self.step_data(step_index).get(editor.field_name) or [])

    async def _set_relationships(
        self, step_index: Optional[int], entries: List[Dict[str, Any]], debounce: bool
    ) -> None:
        if step_index is None:
            step_index = self.state.current_step_index
        editor = self.relationship_editor(step_index)
        self.step_data(step_index)[editor.field_name] = entries
        if step_index == self.state.current_step_index:
            await self._after_change(editor.field_name, debounce)

    async def add_relationships(
        self,
        selected_entities: List[Dict[str, Any]],
        step_index: Optional[int] = None,
        debounce: bool = True,
    ) -> List[Dict[str, Any]]:
        self._ensure_editable()
        editor = self.relationship_editor(step_index)
        entries = editor.add_relationships(self.relationships(step_index), selected_entities)
        await self._set_relationships(step_index, entries, debounce)
        return entries

    async def remove_relationship(
        self, index: int, step_index: Optional[int] = None, debounce: bool = True
    ) -> List[Dict[str, Any]]:
        self._ensure_editable()
        editor = self.relationship_editor(step_index)
        entries = editor.remove_relationship(self.relationships(step_index), index)
        await self._set_relationships(step_index, entries, debounce)
        return entries

    async def update_relationship(
        self,
        index: int,
        field_name: str,
        value: Any,
        step_index: Optional[int] = None,
        debounce: bool = True,
    ) -> List[Dict[str, Any]]:
        self._ensure_editable()
        editor = self.relationship_editor(step_index)
        entries = editor.update_relationship(
            self.relationships(step_index), index, field_name, value
        )
        await self._set_relationships(step_index, entries, debounce)
        return entries

    # -------------------------------------------------------------------------
    # Child sessions
    # -------------------------------------------------------------------------

    async def _child_configuration(
        self, sub_configuration_id: Any, entity_type_name: str, template_steps: List[FormStep], template_id: str
    ) -> FormConfiguration:
        if sub_configuration_id:
            configuration = await self.collaborators.configuration_provider.get_configuration(
                sub_configuration_id
            )
            if configuration is None:
                raise ConfigurationError(
                    f"Sub configuration {sub_configuration_id} not found"
                )
            return configuration
        if template_steps:
            return FormConfiguration(
                entity_type_name=entity_type_name,
                steps=copy.deepcopy(template_steps),
                id=template_id,
                configuration_name=f"{entity_type_name} join fields",
            )
        configuration = await self.collaborators.configuration_provider.get_default_configuration(
            entity_type_name
        )
        if configuration is None:
            raise ConfigurationError(f"No form configuration for {entity_type_name}")
        return configuration

    async def open_join_entry(self, index: int, step_index: Optional[int] = None) -> 'WizardSession':
        """
        Open a nested session that fills the join fields of one relationship.

        Completing the child writes its values back into the entry, records the
        child progress id on it and re-saves the parent when it is persisted.
        """
        self._ensure_editable()
        if step_index is None:
            step_index = self.state.current_step_index
        step = self.configuration.steps[step_index]
        editor = self.relationship_editor(step_index)
        entries = self.relationships(step_index)
        if index < 0 or index >= len(entries):
            raise IndexError(f"No relationship at index {index}")
        entry = entries[index]

        configuration = await self._child_configuration(
            step.sub_configuration_id,
            step.join_entity_type,
            step.child_form_steps,
            f"{self.configuration.id}:{step.stable_id}",
        )
        related_id = entry.get(RELATED_ENTITY_ID_KEY)

        async def complete(payload, progress):
            current = self.relationships(step_index)
            position = next(
                (
                    position for position, candidate in enumerate(current)
                    if str(candidate.get(RELATED_ENTITY_ID_KEY)) == str(related_id)
                ),
                None,
            )
            if position is None:
                log.warning(f"Relationship {related_id} vanished before its join form completed")
                return payload
            updated = editor.apply_child_result(
                current, position, progress.id if progress else None, payload
            )
            self.step_data(step_index)[editor.field_name] = updated
            if self.state.progress_id:
                await self.save_progress(self._persisted_status())
            return payload

        initial = dict(entry)
        if editor.join_metadata is not None:
            initial.setdefault(editor.foreign_key_field, related_id)
        return await self._open_child(configuration, complete, initial)

    async def open_child_form(self, field_name: str) -> 'WizardSession':
        """
        Open a nested session that creates the related entity of an Object field.

        The created entity (through the entity source when one is configured)
        is written into the field once the child completes.
        """
        self._ensure_editable()
        form_field = self._locate_field(field_name)
        if not form_field.object_type:
            raise ConfigurationError(f"Field {field_name} declares no object type")
        configuration = await self._child_configuration(
            form_field.sub_configuration_id, form_field.object_type, [], ""
        )
        step_index = self.state.current_step_index

        async def complete(payload, progress):
            entity = payload
            if self.collaborators.entity_source is not None:
                entity = await self.collaborators.entity_source.create(
                    form_field.object_type, payload
                )
            self.set_child_entity(field_name, entity, step_index=step_index)
            return entity

        return await self._open_child(configuration, complete, None)

    def set_child_entity(self, field_name: str, entity: Any, step_index: Optional[int] = None) -> None:
        """Store an entity created by a child form in an Object or collection field"""
        if step_index is None:
            step_index = self.state.current_step_index
        form_field = self.configuration.steps[step_index].get_field(field_name)
        if form_field is None:
            raise FormWizardException(f"Unknown field {field_name}", {'field_name': field_name})
        data = self.step_data(step_index)
        if form_field.is_collection:
            data[field_name] = list(data.get(field_name) or []) + [entity]
        else:
            data[field_name] = entity

    async def _open_child(
        self, configuration: FormConfiguration, on_complete: Callable, initial_data: Optional[Dict[str, Any]]
    ) -> 'WizardSession':
        child = WizardSession(self.collaborators, self.config, on_complete=on_complete)
        await child.load(
            configuration=configuration,
            parent_progress_id=self.state.progress_id,
            user_id=self.state.user_id,
            initial_data=initial_data,
        )
        self.children[child.session_id] = child
        return child

    def _persisted_status(self) -> FormSubmissionStatus:
        if self.status == SessionStatus.PAUSED:
            return FormSubmissionStatus.PAUSED
        return FormSubmissionStatus.IN_PROGRESS

    # -------------------------------------------------------------------------
    # Serialization
    # -------------------------------------------------------------------------

    def to_dict(self) -> Dict[str, Any]:
        """Session snapshot for API responses"""
        state = self.state
        index = state.current_step_index
        step = self.current_step
        return {
            'session_id': self.session_id,
            'status': state.status.value,
            'progress_id': state.progress_id,
            'parent_progress_id': state.parent_progress_id,
            'entity_id': state.entity_id,
            'configuration_id': self.configuration.id,
            'entity_type_name': self.configuration.entity_type_name,
            'current_step_index': index,
            'total_steps': len(self.configuration.steps),
            'is_final_step': self.is_final_step(),
            'current_step': {
                'step_name': step.step_name,
                'title': step.title,
                'is_many_to_many_relationship': step.is_many_to_many_relationship,
                'fields': [
                    {
                        'field_name': form_field.field_name,
                        'label': form_field.label,
                        'field_type': form_field.field_type,
                        'is_required': form_field.is_required,
                        'validation_state': self.validation.state_of(form_field.field_name).value,
                    }
                    for form_field in self.visible_fields(index)
                ],
            },
            'steps': [
                {
                    'step_name': candidate.step_name,
                    'available': self.is_step_available(position),
                    'progress': self.step_progress_percentage(position),
                }
                for position, candidate in enumerate(self.configuration.steps)
            ],
            'step_data': dict(self.step_data(index)),
            'all_steps_data': {str(key): value for key, value in state.all_steps_data.items()},
            'field_errors': dict(self.validation.field_errors),
            'step_errors': list(state.step_errors),
            'feedback': state.feedback,
            'progress_percentage': self.progress_percentage(),
            'result_entity': state.result_entity,
        }


class WizardSessionManager:
    """Keeps the live sessions of a process, keyed by session id"""

    def __init__(self, collaborators: WizardCollaborators, config: Optional[WizardEngineConfig] = None):
        self.collaborators = collaborators
        self.config = config or WizardEngineConfig()
        self.sessions: Dict[str, WizardSession] = {}

    def new_session(self, on_complete: Optional[Callable] = None) -> WizardSession:
        session = WizardSession(self.collaborators, self.config, on_complete=on_complete)
        self.sessions[session.session_id] = session
        return session

    async def create_session(self, **load_kwargs) -> WizardSession:
        session = self.new_session()
        try:
            await session.load(**load_kwargs)
        except FormWizardException:
            self.sessions.pop(session.session_id, None)
            raise
        return session

    def register(self, session: WizardSession) -> WizardSession:
        self.sessions[session.session_id] = session
        for child in session.children.values():
            self.sessions.setdefault(child.session_id, child)
        return session

    def get_session(self, session_id: str) -> Optional[WizardSession]:
        return self.sessions.get(session_id)

    def discard(self, session_id: str) -> bool:
        return self.sessions.pop(session_id, None) is not None
