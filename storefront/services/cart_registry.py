import threading
from collections import OrderedDict
from concurrent.futures import ThreadPoolExecutor

from storefront.services.cart_store import CartStore
from storefront.services.persistence_codec import PersistenceCodec
from storefront.utils.settings import CART_MAX_SESSIONS, CART_STORAGE_KEY, CART_WRITE_BEHIND
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class CartRegistry:
    """
    Jeden CartStore na sesje koszyka, trzymany na app.state (bez globalnego singletona).
    Koszyk ladowany leniwie z redisa przy pierwszym uzyciu sesji.

    - najwyzej max_sessions koszykow w pamieci, najdawniej uzywany wypada (LRU)
    - wypadajacy koszyk dopisuje zalegle zapisy, nastepne uzycie sesji czyta go z redisa
    - wszystkie koszyki pisza w tle przez jeden wspolny watek
    """

    def __init__(
        self,
        redis_client,
        key_prefix: str = CART_STORAGE_KEY,
        write_behind: bool = CART_WRITE_BEHIND,
        max_sessions: int = CART_MAX_SESSIONS,
    ):
        self.redis = redis_client
        self.key_prefix = key_prefix
        self.write_behind = write_behind
        self.max_sessions = max(1, max_sessions)
        self._stores: "OrderedDict[str, CartStore]" = OrderedDict()
        self._lock = threading.Lock()
        self._writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="cart-writer") if write_behind else None

    def key_for(self, session_id: str) -> str:
        return f"{self.key_prefix}:{session_id}"

    def __len__(self) -> int:
        return len(self._stores)

    def get(self, session_id: str) -> CartStore:
        with self._lock:
            store = self._stores.get(session_id)
            if store is not None:
                self._stores.move_to_end(session_id)
                return store

            logger.info(f"Ladowanie koszyka sesji {session_id}")
            store = CartStore(
                PersistenceCodec(self.redis, self.key_for(session_id)),
                write_behind=self.write_behind,
                executor=self._writer,
            )
            self._stores[session_id] = store

            while len(self._stores) > self.max_sessions:
                evicted_id, evicted = self._stores.popitem(last=False)
                logger.info(f"Koszyk sesji {evicted_id} usuniety z pamieci")
                evicted.close()
            return store

    def close(self) -> None:
        with self._lock:
            for store in self._stores.values():
                store.close()
            self._stores.clear()
            if self._writer is not None:
                self._writer.shutdown(wait=True)
