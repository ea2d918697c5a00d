"""Tree editing session.

Binds the position tree, the change store and the edit lock to one quote
version. Handlers run on the event loop one at a time; moves are applied
locally first and their new order is sent to the server in the background.
"""

import asyncio
from typing import Any, Dict, Iterable, List, Optional, Set

import structlog

from quoteflow.backends.base import PositionsBackend
from quoteflow.changes.store import ChangeOverlay, ChangeTrackingStore
from quoteflow.config import settings
from quoteflow.exceptions import EditLockError, NotFoundError, ValidationError
from quoteflow.locking.models import LockState, UserRef
from quoteflow.locking.protocol import EditLock
from quoteflow.notices import NoticeBoard
from quoteflow.positions.models import PositionNode, PositionType, editable_fields
from quoteflow.positions.tree import PositionTree, build_tree
from quoteflow.session.commands import (
    CommandStatus,
    FieldEditCommand,
    MoveCommand,
    PersistenceCommand,
)

logger = structlog.get_logger()

LOCK_LOST_MESSAGE = (
    "Your edit lock has expired or was taken over. "
    "Unsaved changes were kept; reload and enter edit mode again to save them."
)


class TreeEditingSession:
    """Editing session for the position tree of one quote version."""

    def __init__(
        self,
        backend: PositionsBackend,
        version_id: str,
        user: UserRef,
        resource_type: Optional[str] = None,
        max_depth: Optional[int] = None,
        notices: Optional[NoticeBoard] = None,
    ):
        self.backend = backend
        self.version_id = version_id
        self.user = user
        self.max_depth = max_depth if max_depth is not None else settings.max_tree_depth
        self.notices = notices if notices is not None else NoticeBoard()
        self.lock = EditLock(
            backend,
            resource_type or settings.lock_resource_type,
            version_id,
            user,
            notices=self.notices,
        )
        self.changes = ChangeTrackingStore()
        self.overlay = ChangeOverlay(self.changes)
        self.tree = PositionTree(max_depth=self.max_depth)
        self.selected_id: Optional[str] = None
        self.commands: List[PersistenceCommand] = []
        self._tasks: Set[asyncio.Task] = set()
        self._saving = False
        self.logger = logger.bind(component="tree_editing_session", version_id=version_id)

    @property
    def is_editing(self) -> bool:
        return self.lock.state == LockState.LOCKED_BY_ME

    @property
    def can_edit(self) -> bool:
        return self.lock.can_edit

    @property
    def failed_commands(self) -> List[PersistenceCommand]:
        return [command for command in self.commands if command.failed]

    async def open(self) -> None:
        """Load the positions and the current lock state."""
        await self.reload(discard_changes=True)
        await self.lock.refresh()
        self.logger.info("Session opened", positions=self.tree.size(), lock=self.lock.state.value)

    async def reload(self, discard_changes: bool = False) -> None:
        """Replace the tree with a fresh copy from the server."""
        records = await self.backend.fetch_positions(self.version_id)
        self.tree = build_tree(records, max_depth=self.max_depth)

        if discard_changes:
            self.changes.clear_all_changes()
        else:
            present = self.tree.node_ids()
            for position_id in self.changes.changed_position_ids():
                if position_id not in present:
                    self.changes.remove_change(position_id)

        if self.selected_id is not None and self.tree.locate(self.selected_id) is None:
            self.selected_id = None

    async def enter_edit(self, force: bool = False, reload: bool = False) -> bool:
        """Take the edit lock; optionally reload so edits start from fresh data."""
        acquired = await self.lock.enter_edit(force=force)
        if acquired and reload:
            await self.reload()
        return acquired

    async def exit_edit(self) -> bool:
        return await self.lock.exit_edit()

    async def cancel(self) -> None:
        """Discard pending edits and leave edit mode."""
        self.changes.clear_all_changes()
        await self.lock.exit_edit()
        self.notices.info("Changes discarded")

    def _require_edit_mode(self, action: str) -> bool:
        if self.is_editing:
            return True
        self.notices.warning(f"Enter edit mode to {action}")
        return False

    def move(
        self,
        drag_ids: Iterable[str],
        target_parent_id: Optional[str],
        target_index: int,
    ) -> Optional[MoveCommand]:
        """Apply a drag/drop move locally and send the new order in the background.

        Must be called from a running event loop. Returns the scheduled
        command, or None when the move was refused.
        """
        if not self._require_edit_mode("reorganize positions"):
            return None

        drag_ids = list(drag_ids)
        try:
            moved = self.tree.move(drag_ids, target_parent_id, target_index)
        except ValidationError as e:
            self.logger.info("Move rejected", drag_ids=drag_ids, reason=str(e))
            self.notices.error(str(e))
            return None

        self.tree = moved
        command = MoveCommand(
            version_id=self.version_id,
            drag_ids=drag_ids,
            target_parent_id=target_parent_id,
            target_index=target_index,
            updates=moved.renumber(),
        )
        self.commands.append(command)
        task = asyncio.get_running_loop().create_task(self._run_move(command))
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return command

    async def _run_move(self, command: MoveCommand) -> None:
        try:
            await command.execute(self.backend)
        except Exception as e:
            self.logger.error(
                "Failed to persist position order",
                command_id=str(command.command_id),
                error=str(e),
            )
            self.notices.error(f"The new position order could not be saved: {e}")
            return

        self._supersede_failed(MoveCommand, before=command)
        self._prune_commands()

    def _supersede_failed(self, kind: type, before: Optional[PersistenceCommand] = None) -> None:
        """Mark failed commands of ``kind`` superseded by a later successful one."""
        for command in self.commands:
            if command is before:
                break
            if isinstance(command, kind) and command.failed:
                command.status = CommandStatus.SUPERSEDED

    def _prune_commands(self) -> None:
        """Keep only commands that are still in flight or failed."""
        self.commands = [
            command
            for command in self.commands
            if command.status not in (CommandStatus.SUCCEEDED, CommandStatus.SUPERSEDED)
        ]

    async def retry_failed(self) -> bool:
        """Resend the latest position order if sending it failed.

        Every move command carries the complete order, so only the most recent
        one matters; older failed moves are marked superseded.
        """
        moves = [command for command in self.commands if isinstance(command, MoveCommand)]
        if not moves:
            return True

        latest = moves[-1]
        self._supersede_failed(MoveCommand, before=latest)
        self._prune_commands()

        if not latest.failed:
            return True

        try:
            await latest.execute(self.backend)
        except Exception as e:
            self.logger.error("Retry failed", command_id=str(latest.command_id), error=str(e))
            self.notices.error(f"The new position order could not be saved: {e}")
            return False

        self._prune_commands()
        self.notices.success("Position order saved")
        return True

    def _node(self, position_id: str) -> PositionNode:
        node = self.tree.locate(position_id)
        if node is None:
            raise NotFoundError(f"Position {position_id} not found")
        return node

    def edit_field(self, position_id: str, field: str, value: Any) -> bool:
        """Stage an edit of one field; nothing is sent until ``save``."""
        if not self._require_edit_mode("change positions"):
            return False

        node = self.tree.locate(position_id)
        if node is None:
            self.notices.error(f"Position {position_id} not found")
            return False
        if field not in editable_fields(node.type):
            self.notices.error(f"'{field}' cannot be edited on a {node.type.value} position")
            return False

        try:
            self.overlay.stage(node, field, value)
        except ValidationError as e:
            self.notices.error(str(e))
            return False
        return True

    def field_value(self, position_id: str, field: str) -> Any:
        """Current value of a field: the pending edit if any, else the saved value."""
        return self.overlay.resolve(self._node(position_id), field)

    async def save(self) -> bool:
        """Persist pending edits. Returns True when something was saved."""
        if not self._require_edit_mode("save changes"):
            return False
        if self._saving:
            self.notices.warning("A save is already in progress")
            return False

        payload = self.changes.get_changes_for_save()
        if not payload:
            self.notices.info("Nothing to save")
            return False

        command = FieldEditCommand(version_id=self.version_id, changes=payload)
        self.commands.append(command)
        self._saving = True
        try:
            records = await command.execute(self.backend)
        except EditLockError as e:
            self.logger.warning("Save rejected, lock lost", error=str(e))
            self.lock.mark_lost(LOCK_LOST_MESSAGE)
            return False
        except Exception as e:
            self.logger.error("Failed to save changes", error=str(e))
            self.notices.error(f"Saving failed: {e}")
            return False
        finally:
            self._saving = False

        self._merge(payload, records)
        self.changes.discard_saved(payload)
        self._supersede_failed(FieldEditCommand)
        self._prune_commands()
        self.notices.success("Changes saved")
        self.logger.info("Changes saved", positions=len(payload))

        if self.changes.has_unsaved_changes:
            self.notices.info("Changes made while saving are still pending")
            return True

        await self.lock.release_after_save()
        return True

    def _merge(self, payload: List[Dict[str, Any]], records) -> None:
        values_by_id: Dict[str, Dict[str, Any]] = {}
        for entry in payload:
            values_by_id[entry["id"]] = {k: v for k, v in entry.items() if k != "id"}

        for record in records:
            fields = values_by_id.setdefault(record.id, {})
            for field in editable_fields(PositionType.ARTICLE):
                fields[field] = getattr(record, field)

        self.tree = self.tree.with_fields(values_by_id)

    async def add_position(self, kind: PositionType, source_id: str) -> Optional[str]:
        """Create a position from a catalog entry next to the current selection."""
        if not self._require_edit_mode("add positions"):
            return None

        parent_id, index = self.tree.placement_for_new(self.selected_id)
        if parent_id is not None and self.tree.depth_of(parent_id) + 1 > self.max_depth:
            self.notices.error(f"Maximum nesting depth of {self.max_depth} levels exceeded")
            return None

        try:
            position_id = await self.backend.add_position(
                self.version_id, kind, source_id, parent_id, index
            )
        except EditLockError as e:
            self.logger.warning("Add rejected, lock lost", error=str(e))
            self.lock.mark_lost(LOCK_LOST_MESSAGE)
            return None
        except Exception as e:
            self.logger.error("Failed to add position", error=str(e))
            self.notices.error(f"Position could not be added: {e}")
            return None

        await self.reload()
        self.selected_id = position_id
        return position_id

    def select(self, position_id: Optional[str]) -> None:
        if position_id is not None:
            self._node(position_id)
        self.selected_id = position_id

    def render(self) -> List[Dict[str, Any]]:
        """Tree view rows: id, name, type, outline number, selection and dirty flag."""
        numbers = self.tree.numbering()

        def row(node: PositionNode) -> Dict[str, Any]:
            return {
                "id": node.id,
                "name": self.overlay.resolve(node, "title") or "",
                "type": node.type.value,
                "number": numbers[node.id],
                "selected": node.id == self.selected_id,
                "has_changes": self.changes.has_position_changes(node.id),
                "children": [row(child) for child in node.children],
            }

        return [row(node) for node in self.tree.roots]

    def details(self) -> Optional[Dict[str, Any]]:
        """Details panel of the selected position, values resolved through pending edits."""
        if self.selected_id is None:
            return None
        node = self._node(self.selected_id)
        fields = editable_fields(node.type)
        return {
            "id": node.id,
            "type": node.type.value,
            "fields": self.overlay.resolve_all(node, fields),
            "dirty_fields": sorted(self.changes.get_position_changes(node.id)),
            "editable": self.is_editing,
        }

    async def drain(self) -> None:
        """Wait for every background command to finish."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks), return_exceptions=True)

    async def close(self) -> None:
        """Finish background work and give the lock back."""
        await self.drain()
        if self.is_editing:
            await self.lock.exit_edit()
        self.logger.info("Session closed")
