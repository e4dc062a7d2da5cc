"""
Progress store tests

Covers the in-memory store and the Flask-SQLAlchemy backed store, including
the parent/child progress tree used by nested wizard sessions.
"""

import asyncio
import json
import unittest

from flask import Flask

from conftest import make_collaborators
from flask_formwizard.exceptions import PersistenceError
from flask_formwizard.forms.persistence import MemoryProgressStore, SQLAProgressStore
from flask_formwizard.forms.wizard import SessionStatus, WizardSession
from flask_formwizard.models.forms import FormSubmissionProgress
from flask_formwizard.models.sqla import db, FormSubmissionProgressModel


def make_progress(**kwargs):
    kwargs.setdefault("form_configuration_id", 1)
    kwargs.setdefault("entity_type_name", "ItemBlueprint")
    kwargs.setdefault("all_steps_data_json", json.dumps({"0": {"name": "Axe"}}))
    return FormSubmissionProgress(**kwargs)


class ProgressStoreContract:
    """Behavior shared by every progress store"""

    def sync(self, coroutine):
        return asyncio.run(coroutine)

    def test_create_assigns_id_and_timestamps(self):
        saved = self.sync(self.store.create(make_progress()))
        self.assertIsNotNone(saved.id)
        self.assertIsNotNone(saved.created_at)
        self.assertEqual(saved.status, "InProgress")
        self.assertIsNone(saved.completed_at)
        loaded = self.sync(self.store.get_by_id(saved.id))
        self.assertEqual(loaded.all_steps_data(), {0: {"name": "Axe"}})

    def test_update_keeps_identity(self):
        saved = self.sync(self.store.create(make_progress()))
        updated = self.sync(self.store.update(
            saved.id, make_progress(current_step_index=2, status="Paused")
        ))
        self.assertEqual(updated.id, saved.id)
        self.assertEqual(updated.current_step_index, 2)
        self.assertEqual(updated.status, "Paused")
        self.assertEqual(updated.created_at, saved.created_at)

    def test_completion_is_stamped(self):
        saved = self.sync(self.store.create(make_progress()))
        completed = self.sync(self.store.update(saved.id, make_progress(status="Completed")))
        self.assertIsNotNone(completed.completed_at)
        self.assertTrue(completed.is_terminal)

    def test_update_missing(self):
        with self.assertRaises(PersistenceError) as context:
            self.sync(self.store.update("missing", make_progress()))
        self.assertEqual(context.exception.operation, "update")

    def test_get_missing(self):
        self.assertIsNone(self.sync(self.store.get_by_id("missing")))

    def test_children_are_loaded(self):
        parent = self.sync(self.store.create(make_progress()))
        self.sync(self.store.create(make_progress(
            form_configuration_id="1:step-enchantments",
            entity_type_name="ItemBlueprintEnchantment",
            parent_progress_id=parent.id,
            status="Completed",
        )))
        loaded = self.sync(self.store.get_by_id(parent.id))
        self.assertEqual(len(loaded.child_progresses), 1)
        child = loaded.child_progresses[0]
        self.assertEqual(child.entity_type_name, "ItemBlueprintEnchantment")
        self.assertEqual(child.parent_progress_id, parent.id)

    def test_wizard_session_round_trip(self):
        collaborators = make_collaborators()
        collaborators.progress_store = self.store

        async def scenario():
            session = WizardSession(collaborators)
            await session.load(entity_type_name="ItemBlueprint")
            await session.change_field("name", "Excalibur", debounce=False)
            await session.next_step()
            await session.save_draft()
            resumed = WizardSession(collaborators)
            await resumed.load(progress_id=session.state.progress_id)
            return session, resumed

        session, resumed = self.sync(scenario())
        self.assertEqual(session.status, SessionStatus.PAUSED)
        self.assertEqual(resumed.state.progress_id, session.state.progress_id)
        self.assertEqual(resumed.state.current_step_index, 1)
        self.assertEqual(resumed.step_data(0)["name"], "Excalibur")


class MemoryProgressStoreTestCase(ProgressStoreContract, unittest.TestCase):
    def setUp(self):
        self.store = MemoryProgressStore()

    def test_duplicate_id(self):
        self.sync(self.store.create(make_progress(id="fixed")))
        with self.assertRaises(PersistenceError) as context:
            self.sync(self.store.create(make_progress(id="fixed")))
        self.assertEqual(context.exception.operation, "create")

    def test_rows_are_copies(self):
        progress = make_progress()
        saved = self.sync(self.store.create(progress))
        saved.status = "Abandoned"
        self.assertEqual(self.sync(self.store.get_by_id(saved.id)).status, "InProgress")
        self.assertIsNone(progress.id)


class SQLAProgressStoreTestCase(ProgressStoreContract, unittest.TestCase):
    def setUp(self):
        self.app = Flask(__name__)
        self.app.config["SQLALCHEMY_DATABASE_URI"] = "sqlite://"
        self.app.config["SQLALCHEMY_TRACK_MODIFICATIONS"] = False
        db.init_app(self.app)
        self.ctx = self.app.app_context()
        self.ctx.push()
        db.create_all()
        self.store = SQLAProgressStore()

    def tearDown(self):
        db.session.remove()
        db.drop_all()
        self.ctx.pop()

    def test_model_row(self):
        saved = self.sync(self.store.create(make_progress(user_id="u-1")))
        model = db.session.get(FormSubmissionProgressModel, saved.id)
        self.assertEqual(model.form_configuration_id, "1")
        self.assertEqual(model.user_id, "u-1")
        self.assertIn(saved.id, repr(model))

    def test_delete(self):
        saved = self.sync(self.store.create(make_progress()))
        self.assertTrue(self.store.delete(saved.id))
        self.assertFalse(self.store.delete(saved.id))
        self.assertIsNone(self.sync(self.store.get_by_id(saved.id)))
