from __future__ import annotations

from dataclasses import asdict, dataclass
from enum import Enum
from typing import Any, Iterable


class OrderStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


TERMINAL_STATUSES = frozenset({OrderStatus.PAID, OrderStatus.FAILED})


def can_transition(current: str, target: str) -> bool:
    return OrderStatus(current) == OrderStatus.PENDING and OrderStatus(target) in TERMINAL_STATUSES


@dataclass(frozen=True)
class LineItem:
    """Snapshot of one cart line taken when the order is created."""

    product_id: str
    name: str
    size: str
    quantity: int
    price: int
    image_url: str | None = None

    @property
    def subtotal(self) -> int:
        return self.price * self.quantity

    @property
    def display_name(self) -> str:
        return f"{self.name} (Size: {self.size})"

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)

    @classmethod
    def from_dict(cls, raw: dict[str, Any]) -> "LineItem":
        return cls(
            product_id=str(raw["product_id"]),
            name=str(raw["name"]),
            size=str(raw["size"]),
            quantity=int(raw["quantity"]),
            price=int(raw["price"]),
            image_url=raw.get("image_url"),
        )


def order_total(items: Iterable[LineItem]) -> int:
    return sum(item.subtotal for item in items)
