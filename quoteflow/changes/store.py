"""Pending field-level edits of a position tree.

Edits are recorded here instead of being written into the tree, so the
canonical values and the user's in-progress values coexist until a save
succeeds. The store is the only place that knows whether there is unsaved
work.
"""

from typing import Any, Dict, List, Optional

import structlog
from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from quoteflow.exceptions import ValidationError
from quoteflow.positions.models import EDITABLE_FIELDS, PositionNode

logger = structlog.get_logger()


class FieldChange(BaseModel):
    """Old and new value of one edited field."""

    old_value: Any = Field(default=None, description="Canonical value when editing started")
    new_value: Any = Field(default=None, description="Pending value")

    model_config = ConfigDict(frozen=True)


class ChangeTrackingStore:
    """Ledger of pending edits keyed by position ID and field."""

    def __init__(self):
        self._changes: Dict[str, Dict[str, FieldChange]] = {}
        self.logger = logger.bind(component="change_store")

    def __len__(self) -> int:
        return sum(len(fields) for fields in self._changes.values())

    @property
    def has_unsaved_changes(self) -> bool:
        return bool(self._changes)

    def add_change(self, position_id: str, field: str, old_value: Any, new_value: Any) -> None:
        """Record an edit, or drop it if the value ends up unchanged."""
        existing = self.get_change(position_id, field)
        baseline = existing.old_value if existing is not None else old_value

        if new_value == old_value or new_value == baseline:
            self.remove_change(position_id, field)
            return

        self._changes.setdefault(position_id, {})[field] = FieldChange(
            old_value=baseline, new_value=new_value
        )
        self.logger.debug("Change recorded", position_id=position_id, field=field)

    def remove_change(self, position_id: str, field: Optional[str] = None) -> None:
        """Remove one field's change, or every change of the position."""
        if field is None:
            self._changes.pop(position_id, None)
            return

        fields = self._changes.get(position_id)
        if fields is None:
            return
        fields.pop(field, None)
        if not fields:
            del self._changes[position_id]

    def get_change(self, position_id: str, field: str) -> Optional[FieldChange]:
        return self._changes.get(position_id, {}).get(field)

    def has_position_changes(self, position_id: str) -> bool:
        return bool(self._changes.get(position_id))

    def get_position_changes(self, position_id: str) -> Dict[str, FieldChange]:
        return dict(self._changes.get(position_id, {}))

    def changed_position_ids(self) -> List[str]:
        return list(self._changes)

    def get_changes_for_save(self) -> List[Dict[str, Any]]:
        """Flatten into one ``{"id": ..., field: new_value}`` entry per position."""
        payload = []
        for position_id, fields in self._changes.items():
            entry: Dict[str, Any] = {"id": position_id}
            for field, change in fields.items():
                entry[field] = change.new_value
            payload.append(entry)
        return payload

    def discard_saved(self, payload: List[Dict[str, Any]]) -> None:
        """Drop the changes a save sent, keeping fields edited again since."""
        for entry in payload:
            position_id = entry["id"]
            for field, sent in entry.items():
                if field == "id":
                    continue
                change = self.get_change(position_id, field)
                if change is not None and change.new_value == sent:
                    self.remove_change(position_id, field)

    def clear_all_changes(self) -> None:
        if self._changes:
            self.logger.debug("Clearing changes", positions=len(self._changes))
        self._changes.clear()


class ChangeOverlay:
    """Read-through view of pending edits over canonical node values.

    Every field reader goes through ``resolve`` so a pending value always
    wins over the canonical one.
    """

    def __init__(self, store: ChangeTrackingStore):
        self.store = store

    def resolve(self, node: PositionNode, field: str) -> Any:
        _check_field(field)
        pending = self.store.get_change(node.id, field)
        if pending is not None:
            return pending.new_value
        return getattr(node, field)

    def resolve_all(self, node: PositionNode, fields) -> Dict[str, Any]:
        return {field: self.resolve(node, field) for field in fields}

    def stage(self, node: PositionNode, field: str, value: Any) -> None:
        """Record an edit against the node's canonical value.

        The value is coerced to the field's type first, so ``"5"`` and
        ``Decimal("5")`` compare equal.
        """
        _check_field(field)
        try:
            coerced = PositionNode.model_validate(
                {**node.model_dump(exclude={"children"}), field: value}
            )
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid value for {field}: {value!r}") from e
        self.store.add_change(node.id, field, getattr(node, field), getattr(coerced, field))

    def is_dirty(self, node: PositionNode, field: Optional[str] = None) -> bool:
        if field is None:
            return self.store.has_position_changes(node.id)
        return self.store.get_change(node.id, field) is not None


def _check_field(field: str) -> None:
    if field not in EDITABLE_FIELDS:
        raise ValidationError(f"Unknown position field: {field}")
