"""Database models for the workflow automation engine.

This module imports all models to ensure they are registered
with SQLAlchemy's declarative base.
"""

from db.models.workflow import Workflow
from db.models.execution import WorkflowExecution
from db.models.workflow_log import WorkflowLog
from db.models.project import Project
from db.models.task import Task, TaskComment
from db.models.notification import Notification

__all__ = [
    "Workflow",
    "WorkflowExecution",
    "WorkflowLog",
    "Project",
    "Task",
    "TaskComment",
    "Notification",
]
