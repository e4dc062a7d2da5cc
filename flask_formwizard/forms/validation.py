"""
Field validation orchestration.

Each field with at least one validation rule moves through
``IDLE -> PENDING -> VALID | INVALID_BLOCKING | INVALID_NON_BLOCKING``.
Value changes schedule a debounced check, step advance checks every field of
the step immediately and in parallel, and a change to a field another rule
depends on re-schedules the dependent field.

Every trigger bumps a per-field generation counter. A check only stores its
result when its generation is still current, so results that arrive after a
newer trigger or after ``clear()`` are dropped silently.
"""
import asyncio
import logging
from enum import Enum
from typing import Any, Callable, Dict, Iterable, List, Mapping, Optional

from ..const import (
    DEFAULT_DEBOUNCE_DELAY_MS,
    LOGMSG_ERR_VALIDATION_EXECUTION,
    VALIDATION_FAILED_MESSAGE,
)
from ..exceptions import ValidationExecutionError
from ..models.forms import (
    AllStepsData,
    FormConfiguration,
    FormField,
    ValidateFieldRequest,
    ValidationResult,
)
from .normalization import flatten_all_steps, is_empty_value, normalize_all
from .placeholders import (
    build_placeholder_context,
    extract_placeholders,
    interpolate_placeholders,
    resolve_dependency_path,
    resolve_rule_placeholders,
)

log = logging.getLogger(__name__)


class FieldValidationState(str, Enum):
    IDLE = "idle"
    PENDING = "pending"
    VALID = "valid"
    INVALID_BLOCKING = "invalid_blocking"
    INVALID_NON_BLOCKING = "invalid_non_blocking"


class ValidationOrchestrator:
    """
    Runs validation rules for the fields of one wizard session.

    Args:
        configuration: the form configuration of the session
        validation_service: collaborator exposing ``validate_field`` and
            ``resolve_placeholders`` coroutines
        steps_data_getter: returns the session's current all-steps data
        debounce_delay: delay in milliseconds before a changed field is checked
        timeout: optional bound in seconds for each service call
        entity_id_getter: returns the edited entity id, if any
    """

    def __init__(
        self,
        configuration: FormConfiguration,
        validation_service,
        steps_data_getter: Callable[[], AllStepsData],
        debounce_delay: int = DEFAULT_DEBOUNCE_DELAY_MS,
        timeout: Optional[float] = None,
        entity_id_getter: Optional[Callable[[], Any]] = None,
    ):
        self.configuration = configuration
        self.validation_service = validation_service
        self.steps_data_getter = steps_data_getter
        self.debounce_delay = debounce_delay
        self.timeout = timeout
        self.entity_id_getter = entity_id_getter or (lambda: None)

        self.states: Dict[str, FieldValidationState] = {}
        self.results: Dict[str, ValidationResult] = {}
        self.field_errors: Dict[str, str] = {}
        self._timers: Dict[str, asyncio.Task] = {}
        self._generations: Dict[str, int] = {}

    # -------------------------------------------------------------------------
    # Triggers
    # -------------------------------------------------------------------------

    def on_value_change(self, field_name: str) -> List[str]:
        """
        Schedule debounced checks for a changed field and its dependents.

        Returns:
            names of the fields that were scheduled
        """
        scheduled = []
        form_field = self.configuration.find_field(field_name)
        if form_field is not None and form_field.has_rules:
            self.schedule(field_name)
            scheduled.append(field_name)
        scheduled.extend(self.cascade(field_name))
        return scheduled

    def schedule(self, field_name: str) -> None:
        """Start (or restart) the debounce timer of a field"""
        self._cancel_timer(field_name)
        generation = self._next_generation(field_name)
        self.states[field_name] = FieldValidationState.PENDING
        loop = asyncio.get_running_loop()
        self._timers[field_name] = loop.create_task(
            self._debounced(field_name, generation)
        )
        log.debug(f"Scheduled validation of {field_name} in {self.debounce_delay} ms")

    def cascade(self, changed_field_name: str) -> List[str]:
        """Schedule every field whose rule depends on the changed field"""
        changed = self.configuration.find_field(changed_field_name)
        if changed is None or changed.id is None:
            return []
        dependents = []
        for form_field in self.dependent_fields(changed):
            if form_field.field_name == changed_field_name:
                continue
            self.schedule(form_field.field_name)
            dependents.append(form_field.field_name)
        return dependents

    def dependent_fields(self, form_field: FormField) -> List[FormField]:
        return [
            candidate for candidate in self.configuration.all_fields()
            if any(
                rule.depends_on_field_id is not None
                and str(rule.depends_on_field_id) == str(form_field.id)
                for rule in candidate.validations
            )
        ]

    async def validate_field_now(self, field_name: str) -> Optional[ValidationResult]:
        """Check a field immediately, superseding any pending debounced check"""
        self._cancel_timer(field_name)
        generation = self._next_generation(field_name)
        return await self._run(field_name, generation)

    async def validate_fields(self, field_names: Iterable[str]) -> Dict[str, ValidationResult]:
        """Check fields in parallel and wait for all of them"""
        names = [name for name in field_names if self._has_rules(name)]
        results = await asyncio.gather(*(self.validate_field_now(name) for name in names))
        return {name: result for name, result in zip(names, results) if result is not None}

    async def flush(self) -> None:
        """Wait for every pending debounced check"""
        while self._timers:
            pending = list(self._timers.values())
            await asyncio.gather(*pending, return_exceptions=True)
            for name, task in list(self._timers.items()):
                if task.done():
                    del self._timers[name]

    def clear(self) -> None:
        """Forget all results and drop every pending or in-flight check"""
        for field_name in list(self._timers):
            self._cancel_timer(field_name)
        for field_name in list(self._generations):
            self._generations[field_name] += 1
        self.states.clear()
        self.results.clear()
        self.field_errors.clear()

    # -------------------------------------------------------------------------
    # Queries
    # -------------------------------------------------------------------------

    def state_of(self, field_name: str) -> FieldValidationState:
        return self.states.get(field_name, FieldValidationState.IDLE)

    def is_pending(self, field_name: str) -> bool:
        return self.state_of(field_name) == FieldValidationState.PENDING

    def blocking_fields(self, field_names: Iterable[str]) -> List[str]:
        return [
            name for name in field_names
            if name in self.results and self.results[name].blocks
        ]

    # -------------------------------------------------------------------------
    # Execution
    # -------------------------------------------------------------------------

    def _has_rules(self, field_name: str) -> bool:
        form_field = self.configuration.find_field(field_name)
        return form_field is not None and form_field.has_rules

    def _next_generation(self, field_name: str) -> int:
        self._generations[field_name] = self._generations.get(field_name, 0) + 1
        return self._generations[field_name]

    def _is_current(self, field_name: str, generation: int) -> bool:
        return self._generations.get(field_name) == generation

    def _cancel_timer(self, field_name: str) -> None:
        task = self._timers.pop(field_name, None)
        if task is not None and not task.done():
            task.cancel()

    async def _debounced(self, field_name: str, generation: int) -> None:
        try:
            await asyncio.sleep(self.debounce_delay / 1000.0)
            await self._run(field_name, generation)
        except asyncio.CancelledError:
            log.debug(f"Validation of {field_name} superseded")
            raise
        finally:
            if self._timers.get(field_name) is asyncio.current_task():
                del self._timers[field_name]

    def _dependency_value(self, form_field: FormField, flat: Mapping[str, Any]) -> Any:
        for rule in form_field.validations:
            if rule.depends_on_field_id is None:
                continue
            dependency = self.configuration.find_field_by_id(rule.depends_on_field_id)
            if dependency is None:
                log.warning(
                    f"Rule {rule.id} of {form_field.field_name} depends on unknown "
                    f"field {rule.depends_on_field_id}"
                )
                return None
            return resolve_dependency_path(flat, dependency.field_name, rule.dependency_path)
        return None

    async def _call_service(self, form_field: FormField, request: ValidateFieldRequest) -> ValidationResult:
        try:
            call = self.validation_service.validate_field(request)
            if self.timeout:
                return await asyncio.wait_for(call, self.timeout)
            return await call
        except asyncio.TimeoutError:
            raise ValidationExecutionError(
                f"timed out after {self.timeout} seconds", field_id=form_field.id
            )
        except asyncio.CancelledError:
            raise
        except Exception as e:
            raise ValidationExecutionError(str(e), field_id=form_field.id) from e

    async def _run(self, field_name: str, generation: int) -> Optional[ValidationResult]:
        form_field = self.configuration.find_field(field_name)
        if form_field is None or not form_field.has_rules:
            return None

        all_steps = normalize_all(self.configuration, self.steps_data_getter())
        flat = flatten_all_steps(all_steps)
        dependency_value = self._dependency_value(form_field, flat)

        if is_empty_value(dependency_value) and any(
            rule.requires_dependency_filled for rule in form_field.validations
        ):
            log.debug(f"Skipping validation of {field_name}, dependency not filled")
            if self._is_current(field_name, generation):
                self.states[field_name] = FieldValidationState.IDLE
                self.results.pop(field_name, None)
                self.field_errors.pop(field_name, None)
            return None

        self.states[field_name] = FieldValidationState.PENDING
        request = ValidateFieldRequest(
            field_id=form_field.id,
            field_value=flat.get(field_name),
            dependency_value=dependency_value,
            form_context_data=flat,
        )
        try:
            result = await self._call_service(form_field, request)
        except ValidationExecutionError as e:
            log.error(LOGMSG_ERR_VALIDATION_EXECUTION.format(field_name, e.message))
            result = ValidationResult.execution_failure(
                VALIDATION_FAILED_MESSAGE.format(e.message)
            )

        message = None
        if result.blocks:
            message = await self._interpolated_message(form_field, result, all_steps)

        if not self._is_current(field_name, generation):
            log.debug(f"Discarding stale validation result for {field_name}")
            return None

        self.results[field_name] = result
        if result.is_valid:
            self.states[field_name] = FieldValidationState.VALID
            self.field_errors.pop(field_name, None)
        elif result.is_blocking:
            self.states[field_name] = FieldValidationState.INVALID_BLOCKING
            self.field_errors[field_name] = message
        else:
            self.states[field_name] = FieldValidationState.INVALID_NON_BLOCKING
            self.field_errors.pop(field_name, None)
        return result

    async def _interpolated_message(
        self, form_field: FormField, result: ValidationResult, all_steps: AllStepsData
    ) -> str:
        placeholders = build_placeholder_context(self.configuration, all_steps)
        placeholders.update(result.placeholders or {})
        missing = [
            name for name in extract_placeholders(result.message)
            if name not in placeholders
        ]
        if missing and self.validation_service is not None:
            for rule in form_field.validations:
                resolved = await resolve_rule_placeholders(
                    self.validation_service,
                    rule,
                    self.configuration,
                    all_steps,
                    entity_id=self.entity_id_getter(),
                )
                for name, value in resolved.items():
                    placeholders.setdefault(name, value)
        return interpolate_placeholders(result.message, placeholders)
