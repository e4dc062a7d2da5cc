"""
SQLAlchemy persistence model for form submission progress.

Progress rows form a tree through ``parent_progress_id``: a join-entry or child
object session stores its own row pointing at the session that opened it.
"""
import datetime
import logging
import uuid

from flask_sqlalchemy import SQLAlchemy
from sqlalchemy import Column, DateTime, ForeignKey, Integer, String, Text
from sqlalchemy.orm import backref, relationship

from .forms import FormSubmissionProgress, FormSubmissionStatus

log = logging.getLogger(__name__)

db = SQLAlchemy()


def _new_id():
    return str(uuid.uuid4())


class FormSubmissionProgressModel(db.Model):
    __tablename__ = "formwizard_submission_progress"

    id = Column(String(36), primary_key=True, default=_new_id)
    form_configuration_id = Column(String(100), nullable=False, index=True)
    user_id = Column(String(100), nullable=True, index=True)
    entity_type_name = Column(String(200), nullable=True)
    entity_id = Column(String(100), nullable=True)
    current_step_index = Column(Integer, default=0, nullable=False)
    current_step_data_json = Column(Text, default="{}", nullable=False)
    all_steps_data_json = Column(Text, default="{}", nullable=False)
    status = Column(
        String(20), default=FormSubmissionStatus.IN_PROGRESS.value, nullable=False
    )
    parent_progress_id = Column(
        String(36), ForeignKey("formwizard_submission_progress.id"), nullable=True
    )
    created_at = Column(DateTime, default=datetime.datetime.utcnow, nullable=False)
    updated_at = Column(
        DateTime,
        default=datetime.datetime.utcnow,
        onupdate=datetime.datetime.utcnow,
        nullable=False,
    )
    completed_at = Column(DateTime, nullable=True)

    children = relationship(
        "FormSubmissionProgressModel",
        backref=backref("parent", remote_side=[id]),
        lazy="select",
    )

    def __repr__(self):
        return f"<FormSubmissionProgress {self.id} {self.status}>"

    def update_from(self, progress: FormSubmissionProgress):
        self.form_configuration_id = str(progress.form_configuration_id)
        self.user_id = progress.user_id
        self.entity_type_name = progress.entity_type_name
        self.entity_id = progress.entity_id
        self.current_step_index = progress.current_step_index
        self.current_step_data_json = progress.current_step_data_json or "{}"
        self.all_steps_data_json = progress.all_steps_data_json or "{}"
        self.status = progress.status
        self.parent_progress_id = progress.parent_progress_id
        if progress.status == FormSubmissionStatus.COMPLETED and not self.completed_at:
            self.completed_at = datetime.datetime.utcnow()

    def to_progress(self, with_children: bool = True) -> FormSubmissionProgress:
        return FormSubmissionProgress(
            id=self.id,
            form_configuration_id=self.form_configuration_id,
            user_id=self.user_id,
            entity_type_name=self.entity_type_name,
            entity_id=self.entity_id,
            current_step_index=self.current_step_index,
            current_step_data_json=self.current_step_data_json,
            all_steps_data_json=self.all_steps_data_json,
            status=self.status,
            parent_progress_id=self.parent_progress_id,
            created_at=self.created_at,
            updated_at=self.updated_at,
            completed_at=self.completed_at,
            child_progresses=[
                child.to_progress(with_children=True) for child in self.children
            ]
            if with_children
            else [],
        )
