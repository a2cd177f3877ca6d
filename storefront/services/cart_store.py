# storefront/services/cart_store.py
import threading
from concurrent.futures import Executor, Future, ThreadPoolExecutor
from datetime import datetime, timezone
from typing import Any, List, Mapping

from storefront.domain.cart import Cart, CartItem, ProductSnapshot
from storefront.domain.errors import (
    PersistenceWriteFailed,
    StockClamped,
    StockConflict,
    ValidationError,
)
from storefront.services.persistence_codec import PersistenceCodec
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CartStore:
    """
    Wlasciciel koszyka jednej sesji.

    - mutacje (add, update, remove, clear) ida jedna po drugiej pod lockiem
    - po kazdej mutacji zapis przez PersistenceCodec
    - zapis w tle (write_behind) nie blokuje mutacji, blad zapisu nie cofa stanu w pamieci
    - StockClamped / PersistenceWriteFailed / PersistenceCorrupt trafiaja do notices
    """

    def __init__(self, codec: PersistenceCodec, write_behind: bool = False, executor: Executor | None = None):
        self.codec = codec
        self._lock = threading.RLock()
        self._notices: List[Any] = []
        # wspolny writer (z CartRegistry) albo wlasny, jednowatkowy
        self._owns_executor = executor is None and write_behind
        if self._owns_executor:
            executor = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cart-writer")
        self._executor = executor
        self._pending: Future | None = None

        cart, corrupt = codec.load()
        if corrupt is not None:
            self._notices.append(corrupt)
        self._cart = cart

    @property
    def cart(self) -> Cart:
        return self._cart

    # query

    def snapshot(self) -> Cart:
        with self._lock:
            return self._cart.model_copy(deep=True)

    def pop_notices(self) -> List[Any]:
        with self._lock:
            notices, self._notices = self._notices, []
            return notices

    # commands

    def add_item(self, product: ProductSnapshot, quantity: int) -> Cart:
        if not isinstance(quantity, int) or isinstance(quantity, bool) or quantity <= 0:
            logger.info(f"Pomijam dodanie produktu {product.id}, ilosc {quantity!r}")
            return self._cart

        with self._lock:
            existing = self._cart.find(product.id)
            wanted = quantity + (existing.quantity if existing else 0)
            granted = wanted

            if product.stock_quantity is not None and wanted > product.stock_quantity:
                granted = product.stock_quantity
                self._notices.append(StockClamped(product.id, wanted, granted))
                logger.info(f"Produkt {product.id}: ilosc {wanted} przycieta do stanu {granted}")

            if granted < 1:
                # brak na stanie: istniejaca linia wypada z koszyka
                if existing is None:
                    return self._cart
                logger.info(f"Produkt {product.id} niedostepny, usuwam z koszyka")
                return self._commit([i for i in self._cart.items if i.product_id != product.id])

            if existing:
                logger.info(f"Produkt {product.id} juz jest w koszyku, ilosc {existing.quantity} -> {granted}")
                refreshed = existing.product.model_copy(update={"stock_quantity": product.stock_quantity})
                items = [
                    i.model_copy(update={"quantity": granted, "product": refreshed}) if i.product_id == product.id else i
                    for i in self._cart.items
                ]
            else:
                logger.info(f"Dodaje nowy produkt {product.id} do koszyka")
                items = self._cart.items + [
                    CartItem(
                        id=product.id,
                        product_id=product.id,
                        quantity=granted,
                        added_at=datetime.now(timezone.utc),
                        product=product,
                    )
                ]
            return self._commit(items)

    def update_quantity(self, product_id: str, quantity: int) -> Cart:
        if not isinstance(quantity, int) or isinstance(quantity, bool):
            raise ValidationError(f"Quantity must be an integer, got {quantity!r}")
        if quantity < 0:
            raise ValidationError("Quantity cannot be negative")

        with self._lock:
            if quantity == 0:
                return self.remove_item(product_id)

            item = self._cart.find(product_id)
            if item is None:
                return self._cart

            stock = item.product.stock_quantity
            if stock is not None and quantity > stock:
                raise StockConflict(product_id, quantity, stock)

            items = [
                i.model_copy(update={"quantity": quantity}) if i.product_id == product_id else i
                for i in self._cart.items
            ]
            return self._commit(items)

    def remove_item(self, product_id: str) -> Cart:
        with self._lock:
            if self._cart.find(product_id) is None:
                return self._cart
            logger.info(f"Usuwanie produktu {product_id} z koszyka")
            return self._commit([i for i in self._cart.items if i.product_id != product_id])

    def clear(self) -> Cart:
        with self._lock:
            return self._commit([])

    def clear_if_matches(self, lines: Mapping[str, int]) -> bool:
        """Czysci koszyk tylko gdy zawiera dokladnie te produkty w tych ilosciach."""
        with self._lock:
            if {i.product_id: i.quantity for i in self._cart.items} != dict(lines):
                return False
            self._commit([])
            return True

    # persistence

    def flush(self, timeout: float | None = None) -> None:
        pending = self._pending
        if pending is not None:
            pending.result(timeout=timeout)

    def close(self) -> None:
        if self._owns_executor:
            self._executor.shutdown(wait=True)
        else:
            self.flush()

    def _commit(self, items: List[CartItem]) -> Cart:
        self._cart = self._cart.model_copy(update={"items": items})
        snapshot = self._cart
        if self._executor is None:
            self._persist(snapshot)
        else:
            self._pending = self._executor.submit(self._persist, snapshot)
        return self._cart

    def _persist(self, cart: Cart) -> None:
        try:
            self.codec.save(cart)
        except PersistenceWriteFailed as e:
            logger.warning(f"Koszyk zostaje tylko w pamieci: {e.message}")
            with self._lock:
                self._notices.append(e)
