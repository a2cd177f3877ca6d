import uuid

import redis

from storefront.utils.retry import redis_retry, wait_for_lock
from storefront.utils.settings import REDIS_URL, CAPTURE_LOCK_TTL_SECONDS, CAPTURE_LOCK_WAIT_SECONDS
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

#LUA porownaj i usun, atomicity
_RELEASE_LUA = """
if redis.call('GET', KEYS[1]) == ARGV[1] then
    return redis.call('DEL', KEYS[1])
else
    return 0
end
"""

#redis wykonuje skrypt lua atomowo, nie mozna wcisnac sie miedzy GET a DEL
#wiec lock zdejmuje tylko ten kto go zalozyl (token)


class LockService:
    """
    -mutex na capture jednego zamowienia (order:{id}:capture:lock)
    -zwalnianie locka tylko przez wlasciciela tokena
    -atomowosc przy pomocy lua
    """

    def __init__(self, client=None, url: str | None = None):
        self.redis = client or redis.Redis.from_url(
            url or REDIS_URL,
            decode_responses=True,
        )

    @staticmethod
    def _key(order_id: str) -> str:
        return f"order:{order_id}:capture:lock"

    @redis_retry()
    def try_acquire(self, order_id: str, token: str, ttl: int = CAPTURE_LOCK_TTL_SECONDS) -> bool:
        #SET order:abc:capture:lock "token" NX EX 30
        return bool(self.redis.set(name=self._key(order_id), value=token, nx=True, ex=ttl))

    def acquire_order_lock(self, order_id: str, ttl: int = CAPTURE_LOCK_TTL_SECONDS,
                           wait: float = CAPTURE_LOCK_WAIT_SECONDS) -> str | None:
        """Zwraca token albo None jesli w czasie `wait` lock sie nie zwolnil."""
        token = uuid.uuid4().hex
        logger.info(f"Acquire lock {self._key(order_id)}")

        @wait_for_lock(wait)
        def _attempt() -> bool:
            return self.try_acquire(order_id, token, ttl)

        acquired = _attempt()
        return token if acquired else None

    @redis_retry()
    def release_order_lock(self, order_id: str, token: str) -> bool:
        logger.info(f"Release lock {self._key(order_id)}")
        res = self.redis.eval(_RELEASE_LUA, 1, self._key(order_id), token)
        return bool(res)
