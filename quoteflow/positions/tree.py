"""Position tree engine.

Holds the hierarchical outline of a quote version and performs structurally
validated mutations on it. Every mutating operation returns a new tree and
leaves the receiver untouched, so a tree handed to a renderer stays stable
while the next drag is being applied.
"""

from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Set, Tuple

import structlog

from quoteflow.config import settings
from quoteflow.exceptions import NotFoundError, TreeValidationError, ValidationError
from quoteflow.positions.models import (
    EDITABLE_FIELDS,
    PositionNode,
    PositionRecord,
    PositionType,
    PositionUpdate,
)

logger = structlog.get_logger()


class PositionTree:
    """Ordered forest of position nodes."""

    def __init__(
        self,
        roots: Optional[Sequence[PositionNode]] = None,
        max_depth: Optional[int] = None,
    ):
        self.roots: List[PositionNode] = list(roots or [])
        self.max_depth = max_depth if max_depth is not None else settings.max_tree_depth

    def __iter__(self) -> Iterator[PositionNode]:
        return iter(self.roots)

    def __repr__(self) -> str:
        return f"PositionTree(roots={[node.id for node in self.roots]!r})"

    @property
    def is_empty(self) -> bool:
        return not self.roots

    def walk(self) -> Iterator[Tuple[PositionNode, int, Optional[PositionNode]]]:
        """Yield ``(node, depth, parent)`` in depth-first pre-order."""
        stack: List[Tuple[PositionNode, int, Optional[PositionNode]]] = [
            (node, 1, None) for node in reversed(self.roots)
        ]
        while stack:
            node, depth, parent = stack.pop()
            yield node, depth, parent
            stack.extend((child, depth + 1, node) for child in reversed(node.children))

    def size(self) -> int:
        """Count all nodes in the tree."""
        return sum(1 for _ in self.walk())

    def node_ids(self) -> Set[str]:
        return {node.id for node, _, _ in self.walk()}

    def locate(self, node_id: str) -> Optional[PositionNode]:
        """Find a node by ID."""
        for node, _, _ in self.walk():
            if node.id == node_id:
                return node
        return None

    def depth_of(self, node_id: str) -> int:
        """Get the depth of a node, 1 for root-level nodes."""
        for node, depth, _ in self.walk():
            if node.id == node_id:
                return depth
        raise NotFoundError(f"Position {node_id} not found")

    def parent_of(self, node_id: str) -> Optional[PositionNode]:
        """Get the parent of a node, None for root-level nodes."""
        for node, _, parent in self.walk():
            if node.id == node_id:
                return parent
        raise NotFoundError(f"Position {node_id} not found")

    def siblings_of(self, node_id: str) -> List[PositionNode]:
        parent = self.parent_of(node_id)
        return parent.children if parent is not None else self.roots

    @staticmethod
    def height(node: PositionNode) -> int:
        """Number of levels in the subtree rooted at ``node``."""
        if not node.children:
            return 1
        return 1 + max(PositionTree.height(child) for child in node.children)

    def copy(self) -> "PositionTree":
        """Deep copy of the tree."""
        return PositionTree(
            [node.model_copy(deep=True) for node in self.roots],
            max_depth=self.max_depth,
        )

    def validate_move(self, drag_ids: Iterable[str], target_parent_id: Optional[str]) -> None:
        """Check a move without applying it.

        Raises:
            TreeValidationError: If the move would attach children to an
                article, nest deeper than ``max_depth``, move a node into its
                own subtree, or target a parent that does not exist.
        """
        index: Dict[str, Tuple[PositionNode, int, Optional[str]]] = {
            node.id: (node, depth, parent.id if parent else None)
            for node, depth, parent in self.walk()
        }
        dragged = [node_id for node_id in drag_ids if node_id in index]

        if target_parent_id is None:
            base_depth = 1
        else:
            if target_parent_id not in index:
                raise TreeValidationError(f"Target position {target_parent_id} does not exist")

            target, target_depth, _ = index[target_parent_id]
            if target.type == PositionType.ARTICLE:
                raise TreeValidationError("Articles cannot contain other positions")

            ancestor_id: Optional[str] = target_parent_id
            while ancestor_id is not None:
                if ancestor_id in dragged:
                    raise TreeValidationError(
                        "A position cannot be moved into itself or one of its children"
                    )
                ancestor_id = index[ancestor_id][2]

            base_depth = target_depth + 1

        if base_depth > self.max_depth:
            raise TreeValidationError(
                f"Maximum nesting depth of {self.max_depth} levels exceeded"
            )

        for node_id in dragged:
            node = index[node_id][0]
            if base_depth + self.height(node) - 1 > self.max_depth:
                raise TreeValidationError(
                    f"Moving '{node.name or node.id}' would exceed the maximum nesting "
                    f"depth of {self.max_depth} levels"
                )

    def move(
        self,
        drag_ids: Iterable[str],
        target_parent_id: Optional[str],
        target_index: int,
    ) -> "PositionTree":
        """Move the dragged subtrees under ``target_parent_id`` at ``target_index``.

        Returns a new tree; this one is not modified. Dragged IDs that are not
        in the tree are ignored.
        """
        drag_set = set(drag_ids)
        self.validate_move(drag_set, target_parent_id)

        missing = drag_set - self.node_ids()
        if missing:
            logger.debug("Ignoring unknown dragged positions", position_ids=sorted(missing))

        moved = self.copy()
        detached: List[PositionNode] = []
        moved.roots = _detach(moved.roots, drag_set, detached)

        if target_parent_id is None:
            siblings = moved.roots
        else:
            siblings = moved.locate(target_parent_id).children

        index = max(0, min(target_index, len(siblings)))
        siblings[index:index] = detached

        logger.debug(
            "Moved positions",
            position_ids=[node.id for node in detached],
            target_parent_id=target_parent_id,
            target_index=index,
        )
        return moved

    def renumber(self) -> List[PositionUpdate]:
        """Assign contiguous 1-based numbers within every sibling group."""
        updates: List[PositionUpdate] = []

        def visit(nodes: List[PositionNode], parent_id: Optional[str]) -> None:
            for number, node in enumerate(nodes, start=1):
                updates.append(
                    PositionUpdate(id=node.id, position_number=number, parent_id=parent_id)
                )
                visit(node.children, node.id)

        visit(self.roots, None)
        return updates

    def numbering(self) -> Dict[str, str]:
        """Hierarchical outline labels such as ``"2.1.3"`` keyed by node ID."""
        labels: Dict[str, str] = {}

        def visit(nodes: List[PositionNode], prefix: str) -> None:
            for number, node in enumerate(nodes, start=1):
                label = f"{prefix}{number}"
                labels[node.id] = label
                visit(node.children, f"{label}.")

        visit(self.roots, "")
        return labels

    def placement_for_new(self, selected_id: Optional[str]) -> Tuple[Optional[str], int]:
        """Work out where a newly added position goes.

        Without a (known) selection the position is appended at root level.
        A selected node that already has children receives it as its last
        child; otherwise it is inserted right after the selected node.
        """
        selected = self.locate(selected_id) if selected_id else None
        if selected is None:
            return None, len(self.roots)

        if selected.children:
            return selected.id, len(selected.children)

        parent = self.parent_of(selected.id)
        siblings = parent.children if parent is not None else self.roots
        index = next(i for i, node in enumerate(siblings) if node.id == selected.id)
        return (parent.id if parent is not None else None), index + 1

    def with_fields(self, values_by_id: Mapping[str, Mapping[str, Any]]) -> "PositionTree":
        """Return a copy with field values merged into the given positions."""
        for values in values_by_id.values():
            unknown = set(values) - EDITABLE_FIELDS
            if unknown:
                raise ValidationError(f"Fields cannot be edited: {', '.join(sorted(unknown))}")

        merged = self.copy()
        for position_id, values in values_by_id.items():
            node = merged.locate(position_id)
            if node is None:
                logger.debug("Skipping merge for missing position", position_id=position_id)
                continue
            validated = PositionNode.model_validate(
                {**node.model_dump(exclude={"children"}), **values}
            )
            for field in values:
                setattr(node, field, getattr(validated, field))
        return merged

    def to_records(self) -> List[PositionRecord]:
        """Flatten the tree into records carrying parent and number."""
        numbers = {update.id: update for update in self.renumber()}
        records = []
        for node, _, parent in self.walk():
            records.append(
                PositionRecord(
                    parent_id=parent.id if parent is not None else None,
                    position_number=numbers[node.id].position_number,
                    **node.model_dump(exclude={"children"}),
                )
            )
        return records


def _detach(
    nodes: List[PositionNode],
    drag_ids: Set[str],
    detached: List[PositionNode],
) -> List[PositionNode]:
    """Remove dragged nodes at any level, collecting them in pre-order."""
    kept = []
    for node in nodes:
        if node.id in drag_ids:
            detached.append(node)
            continue
        node.children = _detach(node.children, drag_ids, detached)
        kept.append(node)
    return kept


def build_tree(
    records: Iterable[PositionRecord],
    max_depth: Optional[int] = None,
) -> PositionTree:
    """Assemble a tree from flat records with parent references.

    Siblings are ordered by ``position_number``; records without a number keep
    their fetch order after the numbered ones. A record whose parent is not
    part of the fetch is placed at root level.

    Raises:
        ValidationError: On duplicate IDs.
        TreeValidationError: If an article has children or parent references
            form a cycle.
    """
    records = list(records)
    nodes: Dict[str, PositionNode] = {}
    for record in records:
        if record.id in nodes:
            raise ValidationError(f"Duplicate position ID {record.id}")
        nodes[record.id] = record.to_node()

    groups: Dict[Optional[str], List[PositionRecord]] = {}
    for record in records:
        parent_id = record.parent_id
        if parent_id is not None and parent_id not in nodes:
            logger.warning(
                "Position references unknown parent, attaching at root level",
                position_id=record.id,
                parent_id=parent_id,
            )
            parent_id = None
        groups.setdefault(parent_id, []).append(record)

    for group in groups.values():
        group.sort(key=lambda r: (r.position_number is None, r.position_number or 0))

    for parent_id, group in groups.items():
        if parent_id is None:
            continue
        parent = nodes[parent_id]
        if parent.type == PositionType.ARTICLE:
            raise TreeValidationError(f"Article position {parent_id} cannot have children")
        parent.children = [nodes[record.id] for record in group]

    tree = PositionTree(
        [nodes[record.id] for record in groups.get(None, [])],
        max_depth=max_depth,
    )

    reachable = tree.size()
    if reachable != len(nodes):
        raise TreeValidationError(
            f"Parent references form a cycle; {len(nodes) - reachable} positions are unreachable"
        )

    deepest = max((depth for _, depth, _ in tree.walk()), default=0)
    if deepest > tree.max_depth:
        logger.warning(
            "Loaded tree exceeds maximum depth",
            depth=deepest,
            max_depth=tree.max_depth,
        )
    return tree
