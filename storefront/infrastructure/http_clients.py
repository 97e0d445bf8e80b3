import httpx
import logging
from typing import Optional

from storefront.application.interfaces import CatalogService
from storefront.domain.models import Product
from storefront.domain.exceptions import CatalogServiceError

logger = logging.getLogger(__name__)


class HTTPCatalogClient(CatalogService):
    def __init__(self, base_url: str, api_token: str, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._base_url = base_url
        self._api_token = api_token
        self._transport = transport

    async def get_product(self, product_id: str) -> Optional[Product]:
        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.get(
                    f"{self._base_url}/api/products/{product_id}",
                    headers={"X-API-Key": self._api_token},
                    timeout=10.0
                )

                if response.status_code == 200:
                    data = response.json()
                    return Product(
                        id=str(data.get("id") or data.get("_id")),
                        name=data["name"],
                        price=data["price"],
                        images=data.get("images", []),
                        sizes=[size["name"] if isinstance(size, dict) else size for size in data.get("size", [])]
                    )
                elif response.status_code == 404:
                    return None
                else:
                    raise CatalogServiceError(f"Catalog service ошибка: {response.status_code}")

        except httpx.RequestError as e:
            logger.error(f"Catalog service ошибка подключения: {e}")
            raise CatalogServiceError(f"Catalog service не доступен: {str(e)}")
