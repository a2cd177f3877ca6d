#storefront/api/routers/carts.py
from typing import Any, List

from fastapi import APIRouter, Depends, HTTPException
import requests

from storefront.api.deps import get_cart_store, get_product_client
from storefront.domain.cart import Cart
from storefront.domain.errors import StockClamped, StockConflict, StorefrontError, ValidationError
from storefront.domain.schemas import CartOut, ItemIn, NoticeOut, QuantityIn
from storefront.services.cart_store import CartStore
from storefront.services.product_client import ProductClient, ProductNotFound

router = APIRouter(prefix="/cart", tags=["cart"])


def _notice(notice: Any) -> NoticeOut:
    if isinstance(notice, StockClamped):
        return NoticeOut(
            kind=notice.kind,
            detail=f"Only {notice.granted} item(s) available",
            product_id=notice.product_id,
            requested=notice.requested,
            granted=notice.granted,
        )
    if isinstance(notice, StorefrontError):
        return NoticeOut(kind=type(notice).__name__, detail=notice.message)
    return NoticeOut(kind=type(notice).__name__, detail=str(notice))


def _cart_out(cart: Cart, notices: List[Any]) -> CartOut:
    #notices to kanal boczny: przyciecie do stanu, blad zapisu, uszkodzony zapis
    return CartOut(
        id=cart.id,
        user_id=cart.user_id,
        items=[i.model_dump() for i in cart.items],
        total_items=cart.total_items,
        subtotal=cart.subtotal,
        notices=[_notice(n) for n in notices],
    )


@router.get("", response_model=CartOut)
def get_cart(store: CartStore = Depends(get_cart_store)):
    return _cart_out(store.cart, store.pop_notices())


@router.post("/items", response_model=CartOut)
def add_item(
    payload: ItemIn,
    store: CartStore = Depends(get_cart_store),
    product_client: ProductClient = Depends(get_product_client),
):
    try:
        product = product_client.fetch_product(payload.product_id)
    except ProductNotFound as e:
        raise HTTPException(status_code=404, detail=str(e))
    except requests.RequestException as e:
        raise HTTPException(status_code=502, detail=f"Catalog unavailable: {e}")

    cart = store.add_item(product, payload.quantity)
    return _cart_out(cart, store.pop_notices())


@router.patch("/items/{product_id}", response_model=CartOut)
def update_item(
    product_id: str,
    payload: QuantityIn,
    store: CartStore = Depends(get_cart_store),
):
    try:
        cart = store.update_quantity(product_id, payload.quantity)
    except StockConflict as e:
        raise HTTPException(status_code=409, detail=e.message)
    except ValidationError as e:
        raise HTTPException(status_code=422, detail=e.message)
    return _cart_out(cart, store.pop_notices())


@router.delete("/items/{product_id}", response_model=CartOut)
def remove_item(product_id: str, store: CartStore = Depends(get_cart_store)):
    cart = store.remove_item(product_id)
    return _cart_out(cart, store.pop_notices())


@router.delete("", response_model=CartOut)
def clear_cart(store: CartStore = Depends(get_cart_store)):
    cart = store.clear()
    return _cart_out(cart, store.pop_notices())
