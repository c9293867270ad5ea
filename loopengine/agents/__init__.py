"""Agent process supervision."""

from loopengine.agents.supervisor import (
    AgentProcessSupervisor,
    RunState,
    RunStatus,
    is_iteration_marker,
    truncate_log,
)

__all__ = [
    "AgentProcessSupervisor",
    "RunState",
    "RunStatus",
    "is_iteration_marker",
    "truncate_log",
]
