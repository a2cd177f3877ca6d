# storefront/domain/schemas.py
from pydantic import BaseModel, Field, ConfigDict
from typing import Any, Dict, List
from decimal import Decimal
from datetime import datetime


class ItemIn(BaseModel):
    """Dodanie produktu do koszyka. Ilosc <= 0 jest ignorowana, nie odrzucana."""

    product_id: str = Field(..., min_length=1, description="ID produktu")
    quantity: int = Field(..., description="Ilość produktu")


class QuantityIn(BaseModel):
    quantity: int = Field(..., description="Nowa ilość, 0 usuwa produkt")


class NoticeOut(BaseModel):
    kind: str
    detail: str
    product_id: str | None = None
    requested: int | None = None
    granted: int | None = None


class ProductOut(BaseModel):
    id: str
    name: str
    price: Decimal
    stock_quantity: int | None = None
    images: List[str] | None = None


class CartItemOut(BaseModel):
    id: str
    product_id: str
    quantity: int
    added_at: datetime
    product: ProductOut


class CartOut(BaseModel):
    """Koszyk (response). total_items i subtotal liczone przy odczycie."""

    id: str | None = None
    user_id: str | None = None
    items: List[CartItemOut]
    total_items: int
    subtotal: Decimal
    notices: List[NoticeOut] = []


class CartSummaryIn(BaseModel):
    total_amount: Decimal | None = Field(default=None, ge=0)
    currency: str | None = Field(default=None, min_length=3, max_length=3)
    items: List[Dict[str, Any]] = []


class CheckoutCreateIn(BaseModel):
    cart_summary: CartSummaryIn = CartSummaryIn()


class CheckoutCreateOut(BaseModel):
    id: str = Field(..., description="ID zamówienia u dostawcy")
    order_id: str
    provider: str
    amount: Decimal
    currency: str
    status: str
    approval: Dict[str, Any]


class CaptureIn(BaseModel):
    provider_order_id: str = Field(..., min_length=1)


class CaptureOut(BaseModel):
    order_id: str
    status: str
    transaction_id: str | None = None
    provider_status: str
    replayed: bool = False


class StatusIn(BaseModel):
    status: str


class OrderItemOut(BaseModel):
    product_id: str
    name: str
    quantity: int
    price_at_purchase: Decimal

    model_config = ConfigDict(from_attributes=True)


class OrderOut(BaseModel):
    """Zamówienie (response)."""

    id: str
    user_id: str | None = None
    total_amount: Decimal
    currency: str
    status: str
    payment_gateway: str
    payment_intent_id: str
    created_at: datetime
    updated_at: datetime
    items: List[OrderItemOut]

    model_config = ConfigDict(from_attributes=True)
