"""Persistence commands issued by an editing session.

Each optimistic change that has to reach the server is captured as a command
carrying everything needed to send it again, so a failure leaves a record
that can be inspected and retried instead of only a notice.
"""

from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Any, Dict, List, Optional
from uuid import UUID, uuid4

import structlog
from pydantic import BaseModel, ConfigDict, Field

from quoteflow.positions.models import PositionRecord, PositionUpdate

if TYPE_CHECKING:
    from quoteflow.backends.base import PositionsBackend

logger = structlog.get_logger()


class CommandStatus(str, Enum):
    """Lifecycle of a persistence command."""
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    SUPERSEDED = "superseded"


class PersistenceCommand(BaseModel):
    """Base for commands sent to the backend."""

    command_id: UUID = Field(default_factory=uuid4, description="Command ID")
    version_id: str = Field(..., description="Quote version the command applies to")
    status: CommandStatus = Field(default=CommandStatus.PENDING, description="Command status")
    attempts: int = Field(default=0, description="Number of times the command was sent")
    error: Optional[str] = Field(default=None, description="Last error message")
    created_at: datetime = Field(
        default_factory=lambda: datetime.now(timezone.utc), description="Creation timestamp"
    )
    completed_at: Optional[datetime] = Field(default=None, description="Completion timestamp")

    model_config = ConfigDict(from_attributes=True)

    @property
    def failed(self) -> bool:
        return self.status == CommandStatus.FAILED

    async def execute(self, backend: "PositionsBackend") -> Any:
        """Send the command, recording the outcome; errors are re-raised."""
        self.status = CommandStatus.RUNNING
        self.attempts += 1
        try:
            result = await self._send(backend)
        except Exception as e:
            self.status = CommandStatus.FAILED
            self.error = str(e)
            logger.warning(
                "Command failed",
                command=type(self).__name__,
                command_id=str(self.command_id),
                attempts=self.attempts,
                error=str(e),
            )
            raise

        self.status = CommandStatus.SUCCEEDED
        self.error = None
        self.completed_at = datetime.now(timezone.utc)
        return result

    async def _send(self, backend: "PositionsBackend") -> Any:
        raise NotImplementedError


class MoveCommand(PersistenceCommand):
    """Absolute position order resulting from a drag/drop move."""

    drag_ids: List[str] = Field(..., description="Moved position IDs")
    target_parent_id: Optional[str] = Field(default=None, description="New parent ID")
    target_index: int = Field(..., description="Insertion index among the new siblings")
    updates: List[PositionUpdate] = Field(..., description="Complete renumbering after the move")

    async def _send(self, backend: "PositionsBackend") -> None:
        await backend.reorder_positions(self.version_id, self.updates)


class FieldEditCommand(PersistenceCommand):
    """Batch of pending field edits."""

    changes: List[Dict[str, Any]] = Field(..., description="One entry per edited position")
    result: List[PositionRecord] = Field(
        default_factory=list, description="Records returned by the server"
    )

    async def _send(self, backend: "PositionsBackend") -> List[PositionRecord]:
        self.result = await backend.save_positions(self.version_id, self.changes)
        return self.result
