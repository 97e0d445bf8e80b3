from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional, Mapping
from storefront.domain.models import Order, Cart, Product, PaymentMethod, GatewayCallback, IpnAck


class OrderRepository(ABC):
    @abstractmethod
    async def get_by_id(self, order_id: str) -> Optional[Order]:
        pass

    @abstractmethod
    async def create(self, order: Order) -> None:
        pass

    @abstractmethod
    async def list_by_user(self, user_id: str, offset: int, limit: int) -> List[Order]:
        """Заказы пользователя, новые первыми"""
        pass

    @abstractmethod
    async def count_by_user(self, user_id: str) -> int:
        pass

    @abstractmethod
    async def compare_and_set(self, order: Order, expected_version: int) -> bool:
        """Сохраняет заказ, только если в БД все еще expected_version и он не оплачен"""
        pass


class CartRepository(ABC):
    @abstractmethod
    async def get(self, user_id: str) -> Optional[Cart]:
        pass

    @abstractmethod
    async def save(self, cart: Cart, expected_version: int) -> bool:
        pass


class UnitOfWork(ABC):
    @property
    @abstractmethod
    def orders(self) -> OrderRepository:
        pass

    @property
    @abstractmethod
    def carts(self) -> CartRepository:
        pass

    @abstractmethod
    async def __call__(self):
        pass

    @abstractmethod
    async def commit(self):
        pass

    @abstractmethod
    async def rollback(self):
        pass


class CatalogService(ABC):
    @abstractmethod
    async def get_product(self, product_id: str) -> Optional[Product]:
        pass


class PaymentGateway(ABC):
    method: PaymentMethod

    @abstractmethod
    def ensure_configured(self) -> None:
        pass

    @abstractmethod
    async def create_payment_url(self, order: Order, client_ip: str, now: datetime) -> str:
        pass

    @abstractmethod
    def verify_callback(self, params: Mapping[str, str]) -> GatewayCallback:
        pass

    @abstractmethod
    def ipn_response(self, ack: IpnAck) -> dict:
        pass
