# storefront/services/persistence_codec.py
import json

import pydantic
from redis.exceptions import RedisError

from storefront.domain.cart import Cart
from storefront.domain.errors import PersistenceCorrupt, PersistenceWriteFailed
from storefront.utils.retry import redis_retry
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class PersistenceCodec:
    """
    Zapis i odczyt koszyka pod jednym stalym kluczem w redisie.

    format: {"items": [{id, product_id, quantity, added_at, product: {...}}]}
    wartosc bez tablicy items traktujemy jako uszkodzona, nic nie ratujemy
    """

    def __init__(self, client, key: str):
        self.client = client
        self.key = key

    @staticmethod
    def encode(cart: Cart) -> str:
        return json.dumps(cart.model_dump(mode="json", exclude_none=True), separators=(",", ":"))

    @staticmethod
    def decode(raw: str | bytes) -> Cart:
        try:
            payload = json.loads(raw)
        except (TypeError, ValueError) as e:
            raise PersistenceCorrupt(f"Stored cart is not valid JSON: {e}")

        if not isinstance(payload, dict) or not isinstance(payload.get("items"), list):
            raise PersistenceCorrupt("Stored cart has no items array")

        try:
            return Cart.model_validate(payload)
        except pydantic.ValidationError as e:
            raise PersistenceCorrupt(f"Stored cart has invalid shape: {e.error_count()} error(s)")

    def save(self, cart: Cart) -> None:
        raw = self.encode(cart)
        try:
            self._write(raw)
        except RedisError as e:
            logger.error(f"Zapis koszyka {self.key} nieudany: {e}")
            raise PersistenceWriteFailed(f"Could not persist cart under {self.key}: {e}")

    def load(self) -> tuple[Cart, PersistenceCorrupt | None]:
        raw = self._read()
        if raw is None:
            return Cart(), None

        try:
            return self.decode(raw), None
        except PersistenceCorrupt as e:
            logger.warning(f"Uszkodzony koszyk pod kluczem {self.key}, usuwam: {e.message}")
            self.discard()
            return Cart(), e

    @redis_retry()
    def discard(self) -> None:
        self.client.delete(self.key)

    @redis_retry()
    def _write(self, raw: str) -> None:
        self.client.set(self.key, raw)

    @redis_retry()
    def _read(self):
        return self.client.get(self.key)
