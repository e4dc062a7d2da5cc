"""
Marshmallow schemas for the collaborators' camelCase DTOs.

Loading produces the snake_case dataclasses of ``flask_formwizard.models.forms``;
dumping turns them back into camelCase dictionaries. Key casing is handled here
and nowhere else in the engine.
"""
from marshmallow import EXCLUDE, fields, post_load, Schema, validate

from ..models.forms import (
    ConditionType,
    EntityMetadata,
    FieldMetadata,
    FormConfiguration,
    FormField,
    FormStep,
    FormSubmissionProgress,
    FormSubmissionStatus,
    PagedResult,
    PlaceholderResolutionError,
    PlaceholderResolutionRequest,
    PlaceholderResolutionResponse,
    StepCondition,
    ValidateFieldRequest,
    ValidationResult,
    ValidationRule,
)


class CamelSchema(Schema):
    """Base schema: ignores unknown keys and builds ``__model__`` on load."""

    __model__ = None

    class Meta:
        unknown = EXCLUDE

    @post_load
    def make_object(self, data, **kwargs):
        if self.__model__ is None:
            return data
        return self.__model__(**data)


class ValidationRuleSchema(CamelSchema):
    __model__ = ValidationRule

    id = fields.Raw(allow_none=True)
    form_field_id = fields.Raw(data_key="formFieldId", allow_none=True)
    validation_type = fields.String(data_key="validationType", required=True)
    depends_on_field_id = fields.Raw(data_key="dependsOnFieldId", allow_none=True)
    dependency_path = fields.String(data_key="dependencyPath", allow_none=True)
    config_json = fields.String(data_key="configJson", load_default="{}", allow_none=True)
    error_message = fields.String(data_key="errorMessage", load_default="", allow_none=True)
    success_message = fields.String(data_key="successMessage", allow_none=True)
    is_blocking = fields.Boolean(data_key="isBlocking", load_default=True)
    requires_dependency_filled = fields.Boolean(
        data_key="requiresDependencyFilled", load_default=False
    )


class StepConditionSchema(CamelSchema):
    __model__ = StepCondition

    id = fields.Raw(allow_none=True)
    condition_type = fields.String(
        data_key="conditionType",
        required=True,
        validate=validate.OneOf([item.value for item in ConditionType]),
    )
    condition_json = fields.String(data_key="conditionJson", required=True)
    error_message = fields.String(data_key="errorMessage", allow_none=True)
    is_active = fields.Boolean(data_key="isActive", load_default=True)


class FormFieldSchema(CamelSchema):
    __model__ = FormField

    id = fields.Raw(allow_none=True)
    field_guid = fields.String(data_key="fieldGuid", allow_none=True)
    field_name = fields.String(data_key="fieldName", required=True)
    label = fields.String(load_default="", allow_none=True)
    field_type = fields.String(data_key="fieldType", load_default="String")
    order = fields.Integer(load_default=0)
    is_required = fields.Boolean(data_key="isRequired", load_default=False)
    is_read_only = fields.Boolean(data_key="isReadOnly", load_default=False)
    default_value = fields.Raw(data_key="defaultValue", allow_none=True)
    element_type = fields.String(data_key="elementType", allow_none=True)
    object_type = fields.String(data_key="objectType", allow_none=True)
    dependency_condition_json = fields.String(
        data_key="dependencyConditionJson", allow_none=True
    )
    settings_json = fields.String(data_key="settingsJson", allow_none=True)
    sub_configuration_id = fields.Raw(data_key="subConfigurationId", allow_none=True)
    is_reusable = fields.Boolean(data_key="isReusable", load_default=False)
    source_field_id = fields.Raw(data_key="sourceFieldId", allow_none=True)
    is_linked_to_source = fields.Boolean(data_key="isLinkedToSource", load_default=False)
    can_create = fields.Boolean(data_key="canCreate", load_default=False)
    min_selection = fields.Integer(data_key="minSelection", allow_none=True)
    max_selection = fields.Integer(data_key="maxSelection", allow_none=True)
    validations = fields.List(fields.Nested(ValidationRuleSchema), load_default=list)


class FormStepSchema(CamelSchema):
    __model__ = FormStep

    id = fields.Raw(allow_none=True)
    step_guid = fields.String(data_key="stepGuid", allow_none=True)
    step_name = fields.String(data_key="stepName", required=True)
    title = fields.String(allow_none=True)
    description = fields.String(allow_none=True)
    order = fields.Integer(load_default=0)
    field_order_json = fields.String(data_key="fieldOrderJson", allow_none=True)
    step_fields = fields.List(
        fields.Nested(FormFieldSchema), data_key="fields", attribute="fields", load_default=list
    )
    conditions = fields.List(fields.Nested(StepConditionSchema), load_default=list)
    is_many_to_many_relationship = fields.Boolean(
        data_key="isManyToManyRelationship", load_default=False
    )
    related_entity_property_name = fields.String(
        data_key="relatedEntityPropertyName", allow_none=True
    )
    join_entity_type = fields.String(data_key="joinEntityType", allow_none=True)
    sub_configuration_id = fields.Raw(data_key="subConfigurationId", allow_none=True)
    parent_step_id = fields.Raw(data_key="parentStepId", allow_none=True)
    child_form_steps = fields.List(
        fields.Nested(lambda: FormStepSchema()), data_key="childFormSteps", load_default=list
    )
    is_reusable = fields.Boolean(data_key="isReusable", load_default=False)
    source_step_id = fields.Raw(data_key="sourceStepId", allow_none=True)
    is_linked_to_source = fields.Boolean(data_key="isLinkedToSource", load_default=False)


class FormConfigurationSchema(CamelSchema):
    __model__ = FormConfiguration

    id = fields.Raw(allow_none=True)
    entity_type_name = fields.String(data_key="entityTypeName", required=True)
    configuration_name = fields.String(data_key="configurationName", load_default="")
    description = fields.String(allow_none=True)
    is_default = fields.Boolean(data_key="isDefault", load_default=False)
    is_active = fields.Boolean(data_key="isActive", load_default=True)
    step_order_json = fields.String(data_key="stepOrderJson", allow_none=True)
    steps = fields.List(fields.Nested(FormStepSchema), load_default=list)


class FieldMetadataSchema(CamelSchema):
    __model__ = FieldMetadata

    field_name = fields.String(data_key="fieldName", required=True)
    field_type = fields.String(data_key="fieldType", load_default="")
    is_nullable = fields.Boolean(data_key="isNullable", load_default=True)
    is_related_entity = fields.Boolean(data_key="isRelatedEntity", load_default=False)
    related_entity_type = fields.String(data_key="relatedEntityType", allow_none=True)
    has_default_value = fields.Boolean(data_key="hasDefaultValue", load_default=False)
    default_value = fields.String(data_key="defaultValue", allow_none=True)


class EntityMetadataSchema(CamelSchema):
    __model__ = EntityMetadata

    entity_name = fields.String(data_key="entityName", required=True)
    display_name = fields.String(data_key="displayName", load_default="")
    metadata_fields = fields.List(
        fields.Nested(FieldMetadataSchema), data_key="fields", attribute="fields", load_default=list
    )


class ValidateFieldRequestSchema(CamelSchema):
    __model__ = ValidateFieldRequest

    field_id = fields.Raw(data_key="fieldId", required=True)
    field_value = fields.Raw(data_key="fieldValue", allow_none=True)
    dependency_value = fields.Raw(data_key="dependencyValue", allow_none=True)
    form_context_data = fields.Dict(data_key="formContextData", load_default=dict)


class ValidationResultSchema(CamelSchema):
    __model__ = ValidationResult

    is_valid = fields.Boolean(data_key="isValid", required=True)
    is_blocking = fields.Boolean(data_key="isBlocking", load_default=False)
    message = fields.String(allow_none=True)
    placeholders = fields.Dict(
        keys=fields.String(), values=fields.String(allow_none=True), load_default=dict
    )
    result_metadata = fields.Dict(
        data_key="metadata", attribute="metadata", load_default=dict, allow_none=True
    )


class PlaceholderResolutionRequestSchema(CamelSchema):
    __model__ = PlaceholderResolutionRequest

    field_validation_rule_id = fields.Raw(data_key="fieldValidationRuleId", allow_none=True)
    entity_type_name = fields.String(data_key="entityTypeName", allow_none=True)
    entity_id = fields.Raw(data_key="entityId", allow_none=True)
    placeholder_paths = fields.List(fields.String(), data_key="placeholderPaths", load_default=list)
    current_entity_placeholders = fields.Dict(
        data_key="currentEntityPlaceholders", load_default=dict
    )
    context_data = fields.Dict(data_key="contextData", load_default=dict)


class PlaceholderResolutionErrorSchema(CamelSchema):
    __model__ = PlaceholderResolutionError

    placeholder_path = fields.String(data_key="placeholderPath", required=True)
    error_code = fields.String(data_key="errorCode", load_default="")
    message = fields.String(load_default="")


class PlaceholderResolutionResponseSchema(CamelSchema):
    __model__ = PlaceholderResolutionResponse

    resolved_placeholders = fields.Dict(data_key="resolvedPlaceholders", load_default=dict)
    resolution_errors = fields.List(
        fields.Nested(PlaceholderResolutionErrorSchema),
        data_key="resolutionErrors",
        load_default=list,
    )
    total_placeholders_requested = fields.Integer(
        data_key="totalPlaceholdersRequested", load_default=0
    )
    is_successful = fields.Boolean(data_key="isSuccessful", load_default=True)


class FormSubmissionProgressSchema(CamelSchema):
    __model__ = FormSubmissionProgress

    id = fields.String(allow_none=True)
    form_configuration_id = fields.Raw(data_key="formConfigurationId", required=True)
    user_id = fields.String(data_key="userId", allow_none=True)
    entity_type_name = fields.String(data_key="entityTypeName", allow_none=True)
    entity_id = fields.Raw(data_key="entityId", allow_none=True)
    current_step_index = fields.Integer(data_key="currentStepIndex", load_default=0)
    current_step_data_json = fields.String(
        data_key="currentStepDataJson", load_default="{}", allow_none=True
    )
    all_steps_data_json = fields.String(
        data_key="allStepsDataJson", load_default="{}", allow_none=True
    )
    parent_progress_id = fields.String(data_key="parentProgressId", allow_none=True)
    status = fields.String(
        load_default=FormSubmissionStatus.IN_PROGRESS.value,
        validate=validate.OneOf([item.value for item in FormSubmissionStatus]),
    )
    created_at = fields.DateTime(data_key="createdAt", allow_none=True)
    updated_at = fields.DateTime(data_key="updatedAt", allow_none=True)
    completed_at = fields.DateTime(data_key="completedAt", allow_none=True)
    child_progresses = fields.List(
        fields.Nested(lambda: FormSubmissionProgressSchema()),
        data_key="childProgresses",
        load_default=list,
    )


class PagedResultSchema(CamelSchema):
    __model__ = PagedResult

    items = fields.List(fields.Dict(), load_default=list)
    page = fields.Integer(data_key="pageNumber", load_default=1)
    page_size = fields.Integer(data_key="pageSize", load_default=25)
    total_count = fields.Integer(data_key="totalCount", load_default=0)


configuration_schema = FormConfigurationSchema()
entity_metadata_schema = EntityMetadataSchema()
progress_schema = FormSubmissionProgressSchema()
validation_result_schema = ValidationResultSchema()
