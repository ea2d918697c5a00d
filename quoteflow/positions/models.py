"""Position tree data models."""

from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel


class PositionType(str, Enum):
    """Kinds of quote positions."""
    TEXTBLOCK = "textblock"
    ARTICLE = "article"


# Fields the details panel exposes per position type
DETAIL_FIELDS: Dict[PositionType, Tuple[str, ...]] = {
    PositionType.TEXTBLOCK: ("title", "description"),
    PositionType.ARTICLE: (
        "title",
        "description",
        "quantity",
        "unit_price",
        "total_price",
        "article_cost",
    ),
}

EDITABLE_FIELDS = frozenset(DETAIL_FIELDS[PositionType.ARTICLE])


def editable_fields(position_type: PositionType) -> Tuple[str, ...]:
    """Get the fields a user may edit on a position of the given type."""
    return DETAIL_FIELDS[position_type]


class PositionNode(BaseModel):
    """A node of the position tree."""

    id: str = Field(..., description="Position ID, unique within the tree")
    title: Optional[str] = Field(default=None, description="Position title")
    type: PositionType = Field(default=PositionType.TEXTBLOCK, description="Position type")
    description: Optional[str] = Field(default=None, description="Rich-text description")
    quantity: Optional[Decimal] = Field(default=None, description="Quantity")
    unit_price: Optional[Decimal] = Field(default=None, description="Unit price")
    total_price: Optional[Decimal] = Field(default=None, description="Total price")
    article_cost: Optional[Decimal] = Field(default=None, description="Article cost")
    block_id: Optional[str] = Field(default=None, description="Source text block ID")
    article_id: Optional[str] = Field(default=None, description="Source article ID")
    children: List["PositionNode"] = Field(default_factory=list, description="Child positions")

    model_config = ConfigDict(from_attributes=True)

    @model_validator(mode="after")
    def check_article_is_leaf(self) -> "PositionNode":
        """Articles never carry children."""
        if self.type == PositionType.ARTICLE and self.children:
            raise ValueError(f"Article position {self.id} cannot have children")
        return self

    @property
    def is_article(self) -> bool:
        return self.type == PositionType.ARTICLE

    @property
    def name(self) -> str:
        """Display name used by the tree view."""
        return self.title or ""


PositionNode.model_rebuild()


class PositionRecord(BaseModel):
    """Flat position as fetched from and stored by the backend."""

    id: str = Field(..., description="Position ID")
    parent_id: Optional[str] = Field(
        default=None, alias="quotePositionParentId", description="Parent position ID"
    )
    position_number: Optional[int] = Field(default=None, description="1-based number among siblings")
    type: Optional[PositionType] = Field(default=None, description="Position type")
    title: Optional[str] = Field(default=None, description="Position title")
    description: Optional[str] = Field(default=None, description="Rich-text description")
    quantity: Optional[Decimal] = Field(default=None, description="Quantity")
    unit_price: Optional[Decimal] = Field(default=None, description="Unit price")
    total_price: Optional[Decimal] = Field(default=None, description="Total price")
    article_cost: Optional[Decimal] = Field(default=None, description="Article cost")
    block_id: Optional[str] = Field(default=None, description="Source text block ID")
    article_id: Optional[str] = Field(default=None, description="Source article ID")

    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        from_attributes=True,
    )

    @model_validator(mode="after")
    def derive_type(self) -> "PositionRecord":
        """Positions referencing an article are articles, everything else is text."""
        if self.type is None:
            self.type = PositionType.ARTICLE if self.article_id else PositionType.TEXTBLOCK
        return self

    def to_node(self) -> PositionNode:
        """Convert to a childless tree node."""
        return PositionNode.model_validate(
            self.model_dump(exclude={"parent_id", "position_number"})
        )

    def to_api(self) -> Dict[str, Any]:
        """Serialize with the API's camelCase keys."""
        return self.model_dump(mode="json", by_alias=True)


class PositionUpdate(BaseModel):
    """Absolute ordering assignment for one position."""

    id: str = Field(..., description="Position ID")
    position_number: int = Field(..., ge=1, description="1-based number among siblings")
    parent_id: Optional[str] = Field(default=None, description="Parent position ID")

    model_config = ConfigDict(frozen=True)

    def to_api(self) -> Dict[str, Any]:
        """Serialize for the reorder endpoint."""
        return {
            "id": self.id,
            "positionNumber": self.position_number,
            "quotePositionParentId": self.parent_id,
        }
