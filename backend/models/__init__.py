"""Database models package."""
from models.database import Base, get_session, init_db, close_db, get_pool_status, get_engine
from models.jira_connection import JiraConnection
from models.jira_project import JiraProject
from models.jira_task_mapping import JiraTaskMapping
from models.task import Task, TaskPriority, TaskStatus

__all__ = [
    "Base",
    "get_session",
    "init_db",
    "close_db",
    "get_pool_status",
    "get_engine",
    "JiraConnection",
    "JiraProject",
    "JiraTaskMapping",
    "Task",
    "TaskPriority",
    "TaskStatus",
]
