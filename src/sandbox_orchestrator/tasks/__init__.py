"""Task lifecycle: bootstrap, readiness polling, diff and abort."""

from sandbox_orchestrator.tasks.bootstrap import TaskBootstrapper, build_bootstrap_graph
from sandbox_orchestrator.tasks.models import CreateTaskRequest, Task, TaskStatus
from sandbox_orchestrator.tasks.operations import abort_task, get_diff
from sandbox_orchestrator.tasks.readiness import wait_until_ready

__all__ = [
    "CreateTaskRequest",
    "Task",
    "TaskBootstrapper",
    "TaskStatus",
    "abort_task",
    "build_bootstrap_graph",
    "get_diff",
    "wait_until_ready",
]
