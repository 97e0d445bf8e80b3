import logging
from pydantic import BaseModel
from datetime import datetime, timezone
from typing import Callable, Mapping, Optional

from storefront.domain.models import Order, ShippingAddress, PaymentMethod
from storefront.domain.exceptions import (
    EmptyCartError, UnsupportedPaymentMethodError, GatewayUnavailableError, ConcurrentUpdateError
)
from storefront.application.interfaces import PaymentGateway


logger = logging.getLogger(__name__)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class CheckoutDTO(BaseModel):
    user_id: str
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    client_ip: str


class CheckoutResult(BaseModel):
    order: Order
    payment_url: Optional[str] = None


class CheckoutUseCase:
    """
    Оформление заказа из корзины.

    Заказ создается и корзина очищается в одной транзакции: если ссылку на оплату
    построить не удалось, откатывается и то и другое. При таймауте шлюза
    заказ остается pending и дождется IPN, а покупатель получает paymentUrl = None.
    """

    def __init__(
        self,
        unit_of_work,
        gateways: Mapping[PaymentMethod, PaymentGateway],
        clock: Callable[[], datetime] = utc_now
    ):
        self._uow = unit_of_work
        self._gateways = gateways
        self._clock = clock

    async def __call__(self, dto: CheckoutDTO) -> CheckoutResult:
        logger.info(f"Оформление заказа для пользователя {dto.user_id}, способ оплаты {dto.payment_method.value}")

        gateway = self._gateways.get(dto.payment_method)
        if gateway is None:
            raise UnsupportedPaymentMethodError(f"Способ оплаты {dto.payment_method.value} не поддерживается")
        # 1. Конфигурация шлюза проверяется до любых изменений
        gateway.ensure_configured()

        now = self._clock()
        async with self._uow() as uow:
            # 2. Снимок корзины
            cart = await uow.carts.get(dto.user_id)
            if cart is None or cart.is_empty():
                raise EmptyCartError("Cart is empty")

            order = Order.from_cart(cart, dto.shipping_address, dto.payment_method, now)
            await uow.orders.create(order)

            # 3. Ссылка на оплату
            try:
                payment_url = await gateway.create_payment_url(order, dto.client_ip, now)
            except GatewayUnavailableError as e:
                logger.warning(f"Шлюз недоступен, заказ {order.id} остается pending: {e}")
                payment_url = None

            # 4. Очистка корзины (версия защищает от параллельного оформления)
            if not await uow.carts.save(cart.cleared(), expected_version=cart.version):
                raise ConcurrentUpdateError("Корзина изменилась во время оформления заказа")

            await uow.commit()

        logger.info(f"Заказ создан: {order.id}, сумма {order.total_amount}")
        return CheckoutResult(order=order, payment_url=payment_url)
