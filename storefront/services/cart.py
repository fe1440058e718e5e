from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Any, Iterable, Mapping


class InvalidCartError(ValueError):
    """Raised when a cart line carries values no storefront could have produced."""


def _to_decimal(value: Any) -> Decimal:
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


@dataclass(frozen=True)
class CartLine:
    product_id: str
    unit_price: Decimal
    quantity: int
    weight: Decimal | None = None
    category_id: str | None = None
    brand_id: str | None = None

    def __post_init__(self) -> None:
        price = _to_decimal(self.unit_price)
        object.__setattr__(self, "unit_price", price)
        if price < 0:
            raise InvalidCartError(f"Negative unit price for product {self.product_id}")
        if int(self.quantity) < 1:
            raise InvalidCartError(f"Quantity must be at least 1 for product {self.product_id}")
        object.__setattr__(self, "quantity", int(self.quantity))
        if self.weight is not None:
            weight = _to_decimal(self.weight)
            if weight < 0:
                raise InvalidCartError(f"Negative weight for product {self.product_id}")
            object.__setattr__(self, "weight", weight)

    @property
    def line_total(self) -> Decimal:
        return self.unit_price * self.quantity


@dataclass(frozen=True)
class CartSnapshot:
    """Read-only view of a cart handed to the pricing calculators."""

    items: tuple[CartLine, ...] = ()

    def __post_init__(self) -> None:
        object.__setattr__(self, "items", tuple(self.items))

    @property
    def subtotal(self) -> Decimal:
        return sum((item.line_total for item in self.items), start=Decimal("0.00"))

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def product_ids(self) -> list[str]:
        return [item.product_id for item in self.items]


def snapshot_from_items(items: Iterable[Mapping[str, Any]]) -> CartSnapshot:
    lines = [
        CartLine(
            product_id=str(item["product_id"]),
            unit_price=item["unit_price"],
            quantity=item.get("quantity", 1),
            weight=item.get("weight"),
            category_id=str(item["category_id"]) if item.get("category_id") is not None else None,
            brand_id=str(item["brand_id"]) if item.get("brand_id") is not None else None,
        )
        for item in items
    ]
    return CartSnapshot(items=tuple(lines))
