"""
Progress stores.

``MemoryProgressStore`` keeps progress rows in a dictionary and is used for
tests and single-process deployments. ``SQLAProgressStore`` persists them with
Flask-SQLAlchemy and must be used inside an application context.
"""
import copy
import datetime
import logging
import uuid
from typing import Dict, List, Optional

from sqlalchemy.exc import SQLAlchemyError

from ..const import LOGMSG_ERR_PROGRESS_LOAD
from ..exceptions import PersistenceError
from ..models.forms import FormSubmissionProgress, FormSubmissionStatus
from ..models.sqla import FormSubmissionProgressModel, db
from .interfaces import ProgressStore

log = logging.getLogger(__name__)


class MemoryProgressStore(ProgressStore):
    def __init__(self):
        self._rows: Dict[str, FormSubmissionProgress] = {}

    def __len__(self):
        return len(self._rows)

    async def create(self, progress: FormSubmissionProgress) -> FormSubmissionProgress:
        row = copy.deepcopy(progress)
        row.child_progresses = []
        row.id = row.id or str(uuid.uuid4())
        if row.id in self._rows:
            raise PersistenceError(f"Progress {row.id} already exists", operation="create")
        now = datetime.datetime.utcnow()
        row.created_at = now
        row.updated_at = now
        self._stamp_completion(row)
        self._rows[row.id] = row
        return await self.get_by_id(row.id)

    async def update(self, progress_id: str, progress: FormSubmissionProgress) -> FormSubmissionProgress:
        existing = self._rows.get(progress_id)
        if existing is None:
            raise PersistenceError(f"Progress {progress_id} not found", operation="update")
        row = copy.deepcopy(progress)
        row.child_progresses = []
        row.id = progress_id
        row.created_at = existing.created_at
        row.completed_at = existing.completed_at
        row.updated_at = datetime.datetime.utcnow()
        self._stamp_completion(row)
        self._rows[progress_id] = row
        return await self.get_by_id(progress_id)

    async def get_by_id(self, progress_id: str) -> Optional[FormSubmissionProgress]:
        row = self._rows.get(progress_id)
        if row is None:
            return None
        return self._with_children(row)

    def children_of(self, progress_id: str) -> List[FormSubmissionProgress]:
        return [
            row for row in self._rows.values() if row.parent_progress_id == progress_id
        ]

    def _with_children(self, row: FormSubmissionProgress) -> FormSubmissionProgress:
        result = copy.deepcopy(row)
        result.child_progresses = [
            self._with_children(child) for child in self.children_of(row.id)
        ]
        return result

    @staticmethod
    def _stamp_completion(row: FormSubmissionProgress) -> None:
        if row.status == FormSubmissionStatus.COMPLETED and row.completed_at is None:
            row.completed_at = datetime.datetime.utcnow()


class SQLAProgressStore(ProgressStore):
    """
    Progress store backed by ``FormSubmissionProgressModel``.

    Args:
        session: SQLAlchemy session to use, defaults to ``db.session``
    """

    def __init__(self, session=None):
        self._session = session

    @property
    def session(self):
        return self._session or db.session

    async def create(self, progress: FormSubmissionProgress) -> FormSubmissionProgress:
        model = FormSubmissionProgressModel()
        if progress.id:
            model.id = progress.id
        model.update_from(progress)
        try:
            self.session.add(model)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(
                f"Could not create progress: {e}", operation="create", cause=e
            ) from e
        log.debug(f"Created progress {model.id}")
        return model.to_progress()

    async def update(self, progress_id: str, progress: FormSubmissionProgress) -> FormSubmissionProgress:
        try:
            model = self.session.get(FormSubmissionProgressModel, progress_id)
            if model is None:
                raise PersistenceError(f"Progress {progress_id} not found", operation="update")
            model.update_from(progress)
            self.session.commit()
        except SQLAlchemyError as e:
            self.session.rollback()
            raise PersistenceError(
                f"Could not update progress {progress_id}: {e}", operation="update", cause=e
            ) from e
        return model.to_progress()

    async def get_by_id(self, progress_id: str) -> Optional[FormSubmissionProgress]:
        try:
            model = self.session.get(FormSubmissionProgressModel, progress_id)
        except SQLAlchemyError as e:
            log.error(LOGMSG_ERR_PROGRESS_LOAD.format(progress_id, e))
            raise PersistenceError(
                f"Could not load progress {progress_id}: {e}", operation="get", cause=e
            ) from e
        if model is None:
            return None
        return model.to_progress()

    def delete(self, progress_id: str) -> bool:
        model = self.session.get(FormSubmissionProgressModel, progress_id)
        if model is None:
            return False
        self.session.delete(model)
        self.session.commit()
        return True
