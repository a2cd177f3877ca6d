# storefront/services/product_client.py
import requests

from storefront.domain.cart import ProductSnapshot
from storefront.utils.retry import http_retry
from storefront.utils.settings import PRODUCT_SERVICE_URL
from storefront.utils.logging import get_logger

logger = get_logger(__name__)


class ProductNotFound(LookupError):
    pass


class ProductClient:
    """Klient katalogu, stock_quantity z katalogu jest autorytatywny w chwili odczytu."""

    def __init__(self, base_url: str | None = None, timeout: int = 2, session: requests.Session | None = None):
        self.base_url = (base_url or PRODUCT_SERVICE_URL).rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()

    @http_retry()
    def _get(self, product_id: str) -> requests.Response:
        url = f"{self.base_url}/products/{product_id}"
        logger.info(f"ProductClient GET {url}")
        return self.session.get(url, timeout=self.timeout)

    def fetch_product(self, product_id: str) -> ProductSnapshot:
        resp = self._get(product_id)
        if resp.status_code == 404:
            raise ProductNotFound(f"Product {product_id} not found")
        resp.raise_for_status()

        data = resp.json()
        return ProductSnapshot(
            id=data["id"],
            name=data["name"],
            price=str(data["price"]),
            stock_quantity=data.get("stock_quantity"),
            images=[i["image_url"] if isinstance(i, dict) else i for i in data.get("images") or []] or None,
        )
