"""Cart models with Decimal-based pricing."""
from dataclasses import dataclass, field
from datetime import UTC, datetime
from decimal import Decimal
from enum import Enum
from types import MappingProxyType
from typing import Any, Iterable, Iterator, Mapping, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from cartsync.services.money import multiply, to_decimal, to_float


class CartLineItem(BaseModel):
    """Single line item in the cart, one per product.

    The wire record uses camelCase keys; both spellings are accepted on input.
    """

    model_config = ConfigDict(frozen=True, extra="ignore", populate_by_name=True)

    product_id: str = Field(alias="productId", min_length=1)
    title: str
    unit_price: Decimal = Field(alias="unitPrice", ge=0)
    quantity: int = Field(ge=1)
    added_at: datetime = Field(alias="addedAt")
    image_ref: str = Field(default="", alias="imageRef")
    category: str = ""

    @field_validator("product_id", mode="before")
    @classmethod
    def convert_id_to_str(cls, v):
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("unit_price", mode="before")
    @classmethod
    def convert_price_to_decimal(cls, v):
        if v is None or isinstance(v, bool):
            raise ValueError("unitPrice must be a number")
        if isinstance(v, (int, float)):
            return to_decimal(v)
        return v

    @field_validator("quantity", mode="before")
    @classmethod
    def reject_bool_quantity(cls, v):
        if isinstance(v, bool):
            raise ValueError("quantity must be an integer")
        return v

    @field_validator("added_at")
    @classmethod
    def ensure_utc(cls, v: datetime) -> datetime:
        # Naive timestamps are stored as UTC; keeps ordering comparable
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)

    @property
    def subtotal(self) -> Decimal:
        """unit_price × quantity at full precision."""
        return multiply(self.unit_price, self.quantity)

    def with_quantity(self, quantity: int) -> "CartLineItem":
        """Copy with a new quantity; every other field is preserved."""
        if quantity < 1:
            raise ValueError("quantity must be a positive integer")
        return self.model_copy(update={"quantity": quantity})

    def to_wire(self) -> dict:
        """Full record for the remote store. Always carries every field."""
        return {
            "productId": self.product_id,
            "title": self.title,
            "unitPrice": to_float(self.unit_price),
            "imageRef": self.image_ref,
            "category": self.category,
            "quantity": self.quantity,
            "addedAt": self.added_at.isoformat(),
        }

    @classmethod
    def from_wire(cls, data: Mapping[str, Any]) -> "CartLineItem":
        """Validate a wire record. Raises pydantic.ValidationError when malformed."""
        return cls.model_validate(dict(data))


def _display_order(item: CartLineItem) -> tuple:
    return (item.added_at, item.product_id)


@dataclass(frozen=True)
class Cart:
    """Reconciled cart for one user.

    Items are keyed by product id; iteration follows display order
    (oldest first), which carries no meaning beyond presentation.
    """

    user_id: str
    items: Mapping[str, CartLineItem] = field(default_factory=dict)

    def __post_init__(self):
        ordered = sorted(self.items.values(), key=_display_order)
        object.__setattr__(
            self, "items", MappingProxyType({item.product_id: item for item in ordered})
        )

    @classmethod
    def empty(cls, user_id: str) -> "Cart":
        return cls(user_id=user_id)

    @classmethod
    def from_items(cls, user_id: str, items: Iterable[CartLineItem]) -> "Cart":
        return cls(user_id=user_id, items={item.product_id: item for item in items})

    def __iter__(self) -> Iterator[CartLineItem]:
        return iter(self.items.values())

    def __len__(self) -> int:
        return len(self.items)

    def __contains__(self, product_id: object) -> bool:
        return product_id in self.items

    def get(self, product_id: str) -> Optional[CartLineItem]:
        return self.items.get(product_id)

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def total_items(self) -> int:
        """Total number of units in cart."""
        return sum(item.quantity for item in self.items.values())

    @property
    def total_price(self) -> Decimal:
        """Sum of line subtotals, unrounded."""
        return sum((item.subtotal for item in self.items.values()), Decimal("0"))


class PendingKind(str, Enum):
    """Kind of in-flight mutation."""
    ADDING = "adding"
    UPDATING = "updating"
    REMOVING = "removing"


@dataclass(frozen=True)
class PendingOperation:
    """In-flight mutation on one line item."""

    product_id: str
    kind: PendingKind
    target_quantity: Optional[int] = None
    started_at: datetime = field(default_factory=lambda: datetime.now(UTC))

    @classmethod
    def adding(cls, product_id: str) -> "PendingOperation":
        return cls(product_id=product_id, kind=PendingKind.ADDING)

    @classmethod
    def updating(cls, product_id: str, target_quantity: int) -> "PendingOperation":
        return cls(product_id=product_id, kind=PendingKind.UPDATING, target_quantity=target_quantity)

    @classmethod
    def removing(cls, product_id: str) -> "PendingOperation":
        return cls(product_id=product_id, kind=PendingKind.REMOVING)


@dataclass(frozen=True)
class CartSnapshot:
    """Full point-in-time copy of a user's cart hash, as read from the store."""

    user_id: str
    entries: Mapping[str, Any]
    cursor: str = "0-0"
    received_at: datetime = field(default_factory=lambda: datetime.now(UTC))
