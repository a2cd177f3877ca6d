# storefront/domain/cart.py
from datetime import datetime, timezone
from decimal import Decimal
from typing import List

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator

CENTS = Decimal("0.01")


class ProductSnapshot(BaseModel):
    """Product data embedded in a cart item. Does not follow the live catalog."""

    model_config = ConfigDict(frozen=True)

    id: str = Field(..., min_length=1)
    name: str
    price: Decimal = Field(..., ge=0)
    # None -> product is not stock tracked
    stock_quantity: int | None = Field(default=None, ge=0)
    images: List[str] | None = None

    @field_validator("id", mode="before")
    @classmethod
    def _id_as_str(cls, value):
        return str(value) if isinstance(value, int) else value

    @field_validator("price")
    @classmethod
    def _two_decimals(cls, value: Decimal) -> Decimal:
        return value.quantize(CENTS)


class CartItem(BaseModel):
    id: str
    product_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=1)
    added_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))
    product: ProductSnapshot

    @property
    def line_total(self) -> Decimal:
        return (self.product.price * self.quantity).quantize(CENTS)


class Cart(BaseModel):
    id: str | None = None
    user_id: str | None = None
    items: List[CartItem] = Field(default_factory=list)

    @model_validator(mode="after")
    def _unique_products(self):
        seen = set()
        for item in self.items:
            if item.product_id in seen:
                raise ValueError(f"Duplicate product {item.product_id} in cart")
            seen.add(item.product_id)
        return self

    # derived, never persisted
    @property
    def total_items(self) -> int:
        return sum(i.quantity for i in self.items)

    @property
    def subtotal(self) -> Decimal:
        return sum((i.line_total for i in self.items), Decimal("0.00"))

    def find(self, product_id: str) -> CartItem | None:
        for item in self.items:
            if item.product_id == product_id:
                return item
        return None

    @property
    def is_empty(self) -> bool:
        return not self.items
