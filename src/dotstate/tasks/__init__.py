"""Task plugins and the bridge that runs them."""

from .base import Task, TaskApplyResult, TaskInfo, TaskStatus, missing_capabilities
from .bridge import TaskBridge, TaskRunSummary
from .registry import BUILTIN_TASKS, list_tasks, load_task

__all__ = [
    "Task",
    "TaskApplyResult",
    "TaskInfo",
    "TaskStatus",
    "missing_capabilities",
    "TaskBridge",
    "TaskRunSummary",
    "BUILTIN_TASKS",
    "list_tasks",
    "load_task",
]
