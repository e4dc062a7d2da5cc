"""
JSON API over wizard sessions.

The blueprint is registered by ``flask_formwizard.FormWizard`` under the
configured url prefix. Session coroutines are driven with ``asyncio.run`` per
request, so field changes made through the API are validated immediately
rather than debounced.
"""
import asyncio
import logging

from flask import Blueprint, current_app, jsonify, request
from marshmallow import EXCLUDE, fields, Schema, ValidationError

from ..exceptions import (
    ConfigurationError,
    FormWizardException,
    NormalizationError,
    PersistenceError,
    StateTransitionError,
)
from ..forms.schemas import PagedResultSchema

log = logging.getLogger(__name__)

wizard_bp = Blueprint("formwizard", __name__)


class SessionCreateSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    configuration_id = fields.Raw(data_key="configurationId", allow_none=True)
    entity_type_name = fields.String(data_key="entityTypeName", allow_none=True)
    progress_id = fields.String(data_key="progressId", allow_none=True)
    entity_id = fields.Raw(data_key="entityId", allow_none=True)
    user_id = fields.String(data_key="userId", allow_none=True)


class FieldChangeSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    value = fields.Raw(required=True, allow_none=True)


class RelationshipAddSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    entities = fields.List(fields.Dict(), required=True)
    step_index = fields.Integer(data_key="stepIndex", allow_none=True)


class RelationshipUpdateSchema(Schema):
    class Meta:
        unknown = EXCLUDE

    field_name = fields.String(data_key="fieldName", required=True)
    value = fields.Raw(required=True, allow_none=True)
    step_index = fields.Integer(data_key="stepIndex", allow_none=True)


session_create_schema = SessionCreateSchema()
field_change_schema = FieldChangeSchema()
relationship_add_schema = RelationshipAddSchema()
relationship_update_schema = RelationshipUpdateSchema()
paged_result_schema = PagedResultSchema()


def get_extension():
    return current_app.extensions["formwizard"]


def _error(message, status_code, **extra):
    body = {"message": message}
    body.update(extra)
    return jsonify(body), status_code


def _load_body(schema):
    return schema.load(request.get_json(silent=True) or {})


def _session_or_404(session_id):
    session = get_extension().manager.get_session(session_id)
    if session is None:
        return None, _error(f"Session {session_id} not found", 404)
    return session, None


def _step_response(session, result):
    body = result.to_dict()
    body["session"] = session.to_dict()
    return jsonify(body), 200 if result.success else 422


@wizard_bp.errorhandler(ValidationError)
def handle_request_validation(error):
    return _error("Invalid request", 400, errors=error.messages)


@wizard_bp.errorhandler(StateTransitionError)
def handle_state_transition(error):
    return _error(error.message, 409)


@wizard_bp.errorhandler(NormalizationError)
def handle_normalization(error):
    return _error(error.message, 422, details=error.details)


@wizard_bp.errorhandler(PersistenceError)
def handle_persistence(error):
    log.error(f"Progress store error during {error.operation}: {error.message}")
    return _error(error.message, 404 if error.operation == "get" else 409)


@wizard_bp.errorhandler(ConfigurationError)
def handle_configuration(error):
    return _error(error.message, 400, details=error.details)


@wizard_bp.errorhandler(FormWizardException)
def handle_form_wizard(error):
    return _error(error.message, 400, details=error.details)


@wizard_bp.errorhandler(IndexError)
def handle_index(error):
    return _error(str(error), 404)


@wizard_bp.errorhandler(ValueError)
def handle_value(error):
    return _error(str(error), 400)


@wizard_bp.route("/sessions", methods=["POST"])
def create_session():
    """Start a session, or resume one when ``progressId`` is given"""
    params = _load_body(session_create_schema)
    session = asyncio.run(get_extension().manager.create_session(**params))
    return jsonify(session.to_dict()), 201


@wizard_bp.route("/sessions/<session_id>", methods=["GET"])
def get_session(session_id):
    session, error = _session_or_404(session_id)
    if error:
        return error
    return jsonify(session.to_dict())


@wizard_bp.route("/sessions/<session_id>", methods=["DELETE"])
def discard_session(session_id):
    if not get_extension().manager.discard(session_id):
        return _error(f"Session {session_id} not found", 404)
    return jsonify({"message": "Session discarded"})


@wizard_bp.route("/sessions/<session_id>/fields/<field_name>", methods=["PUT"])
def change_field(session_id, field_name):
    session, error = _session_or_404(session_id)
    if error:
        return error
    params = _load_body(field_change_schema)
    asyncio.run(session.change_field(field_name, params["value"], debounce=False))
    return jsonify(session.to_dict())


@wizard_bp.route("/sessions/<session_id>/next", methods=["POST"])
def next_step(session_id):
    session, error = _session_or_404(session_id)
    if error:
        return error
    return _step_response(session, asyncio.run(session.next_step()))


@wizard_bp.route("/sessions/<session_id>/previous", methods=["POST"])
def previous_step(session_id):
    session, error = _session_or_404(session_id)
    if error:
        return error
    return _step_response(session, asyncio.run(session.previous_step()))


@wizard_bp.route("/sessions/<session_id>/draft", methods=["POST"])
def save_draft(session_id):
    session, error = _session_or_404(session_id)
    if error:
        return error
    saved = asyncio.run(session.save_draft())
    return jsonify(session.to_dict()), 200 if saved else 503


@wizard_bp.route("/sessions/<session_id>/submit", methods=["POST"])
def submit(session_id):
    session, error = _session_or_404(session_id)
    if error:
        return error
    return _step_response(session, asyncio.run(session.submit()))


@wizard_bp.route("/sessions/<session_id>/abandon", methods=["POST"])
def abandon(session_id):
    session, error = _session_or_404(session_id)
    if error:
        return error
    asyncio.run(session.abandon())
    return jsonify(session.to_dict())


@wizard_bp.route("/sessions/<session_id>/relationships", methods=["POST"])
def add_relationships(session_id):
    session, error = _session_or_404(session_id)
    if error:
        return error
    params = _load_body(relationship_add_schema)
    entries = asyncio.run(session.add_relationships(
        params["entities"], step_index=params.get("step_index"), debounce=False
    ))
    return jsonify({"relationships": entries, "session": session.to_dict()})


@wizard_bp.route("/sessions/<session_id>/relationships/<int:index>", methods=["PATCH"])
def update_relationship(session_id, index):
    session, error = _session_or_404(session_id)
    if error:
        return error
    params = _load_body(relationship_update_schema)
    entries = asyncio.run(session.update_relationship(
        index,
        params["field_name"],
        params["value"],
        step_index=params.get("step_index"),
        debounce=False,
    ))
    return jsonify({"relationships": entries, "session": session.to_dict()})


@wizard_bp.route("/sessions/<session_id>/relationships/<int:index>", methods=["DELETE"])
def remove_relationship(session_id, index):
    session, error = _session_or_404(session_id)
    if error:
        return error
    step_index = request.args.get("stepIndex", type=int)
    entries = asyncio.run(session.remove_relationship(index, step_index=step_index, debounce=False))
    return jsonify({"relationships": entries, "session": session.to_dict()})


@wizard_bp.route("/entities/<entity_type_name>", methods=["GET"])
def browse_entities(entity_type_name):
    """Page through selectable entities for relationship steps"""
    browser = get_extension().manager.collaborators.entity_browser
    if browser is None:
        return _error("No entity browser configured", 404)
    page = asyncio.run(browser.browse(
        entity_type_name,
        page=request.args.get("page", 1, type=int),
        page_size=request.args.get("pageSize", 25, type=int),
        search=request.args.get("search"),
    ))
    return jsonify(paged_result_schema.dump(page))
