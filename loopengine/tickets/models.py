"""
Data models for tickets.

Records are persisted with camelCase keys (the snapshot format shared with
other readers); Python attributes are snake_case. Timestamps are integer
milliseconds since the epoch.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional

from loopengine.workflow.state_machine import TicketStatus, parse_status


class TicketType(Enum):
    FEATURE = "feature"
    BUG = "bug"
    CHORE = "chore"
    SPIKE = "spike"


class TicketPriority(Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def now_ms() -> int:
    """Current wall-clock time in epoch milliseconds."""
    return int(time.time() * 1000)


@dataclass
class PRD:
    """Approval-gated requirements document attached to a ticket."""
    content: str
    generated_at: int
    approved: bool = False

    def to_dict(self) -> dict:
        return {"content": self.content, "generatedAt": self.generated_at, "approved": self.approved}

    @classmethod
    def from_dict(cls, data: dict) -> "PRD":
        return cls(
            content=data.get("content", ""),
            generated_at=int(data.get("generatedAt", 0)),
            approved=bool(data.get("approved", False)),
        )


@dataclass
class HistoryEvent:
    timestamp: int
    action: str                        # created, updated, transitioned, prd_approved, prd_rejected
    from_status: Optional[str] = None
    to_status: Optional[str] = None

    def to_dict(self) -> dict:
        data = {"timestamp": self.timestamp, "action": self.action}
        if self.from_status is not None:
            data["from"] = self.from_status
        if self.to_status is not None:
            data["to"] = self.to_status
        return data

    @classmethod
    def from_dict(cls, data: dict) -> "HistoryEvent":
        return cls(
            timestamp=int(data.get("timestamp", 0)),
            action=data.get("action", "unknown"),
            from_status=data.get("from"),
            to_status=data.get("to"),
        )


@dataclass
class Ticket:
    """The unit of work moved across the board and handed to the agent."""
    id: str
    title: str
    description: str = ""
    acceptance_criteria: list[str] = field(default_factory=list)
    status: TicketStatus = TicketStatus.BACKLOG
    type: TicketType = TicketType.FEATURE
    priority: TicketPriority = TicketPriority.MEDIUM
    project_id: Optional[str] = None
    prd: Optional[PRD] = None
    history: list[HistoryEvent] = field(default_factory=list)
    worktree_base_path: Optional[str] = None   # User-chosen root directory
    worktree_path: Optional[str] = None        # Set once, after provisioning
    created_at: int = 0
    updated_at: int = 0
    order: int = 0

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "title": self.title,
            "description": self.description,
            "acceptanceCriteria": list(self.acceptance_criteria),
            "status": self.status.value,
            "type": self.type.value,
            "priority": self.priority.value,
            "projectId": self.project_id,
            "prd": self.prd.to_dict() if self.prd else None,
            "history": [event.to_dict() for event in self.history],
            "worktreeBasePath": self.worktree_base_path,
            "worktreePath": self.worktree_path,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
            "order": self.order,
        }

    @classmethod
    def from_dict(cls, data: dict) -> "Ticket":
        """Build a Ticket from a snapshot record.

        Absent fields take their defaults. Unknown enum values raise ValueError.
        """
        status = parse_status(data.get("status", TicketStatus.BACKLOG.value))
        if status is None:
            raise ValueError(f"Unknown ticket status: {data.get('status')!r}")
        prd = data.get("prd")
        return cls(
            id=data["id"],
            title=data["title"],
            description=data.get("description", ""),
            acceptance_criteria=list(data.get("acceptanceCriteria", [])),
            status=status,
            type=TicketType(data.get("type", TicketType.FEATURE.value)),
            priority=TicketPriority(data.get("priority", TicketPriority.MEDIUM.value)),
            project_id=data.get("projectId"),
            prd=PRD.from_dict(prd) if prd else None,
            history=[HistoryEvent.from_dict(e) for e in data.get("history", [])],
            worktree_base_path=data.get("worktreeBasePath"),
            worktree_path=data.get("worktreePath"),
            created_at=int(data.get("createdAt", 0)),
            updated_at=int(data.get("updatedAt", data.get("createdAt", 0))),
            order=int(data.get("order", 0)),
        )
