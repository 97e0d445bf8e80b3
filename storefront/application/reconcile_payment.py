import logging
from datetime import datetime
from typing import Callable

from storefront.domain.models import Order, GatewayCallback, CallbackOutcome
from storefront.domain.exceptions import (
    UnknownOrderError, AlreadySettledError, AmountMismatchError, ConcurrentUpdateError
)
from storefront.application.checkout import utc_now
from storefront.application.locks import KeyedLock

logger = logging.getLogger(__name__)


class ReconcilePaymentUseCase:
    """
    Применяет проверенный результат оплаты к заказу ровно один раз.

    pending -> completed | failed, failed -> completed (поздний успех),
    completed не меняется никогда. Чтение-проверка-запись сериализуются
    по id заказа: KeyedLock внутри процесса, условный UPDATE по версии в БД.
    """

    def __init__(
        self,
        unit_of_work,
        locks: KeyedLock,
        clock: Callable[[], datetime] = utc_now,
        max_attempts: int = 3
    ):
        self._uow = unit_of_work
        self._locks = locks
        self._clock = clock
        self._max_attempts = max_attempts

    async def __call__(self, callback: GatewayCallback) -> Order:
        logger.info(
            f"Обработка callback {callback.gateway.value}: заказ {callback.order_id}, "
            f"результат {callback.outcome.value}, код {callback.response_code}"
        )
        if callback.outcome == CallbackOutcome.UNKNOWN_ORDER or not callback.order_id:
            logger.warning(f"Callback {callback.gateway.value} без ссылки на заказ")
            raise UnknownOrderError("Order not found")

        async with self._locks.hold(callback.order_id):
            for attempt in range(self._max_attempts):
                async with self._uow() as uow:
                    order = await uow.orders.get_by_id(callback.order_id)
                    if not order:
                        logger.warning(f"Заказ {callback.order_id} не найден")
                        raise UnknownOrderError("Order not found")

                    if order.payment_method != callback.gateway:
                        logger.warning(
                            f"Callback {callback.gateway.value} для заказа {order.id}, "
                            f"оформленного через {order.payment_method.value}"
                        )
                        raise UnknownOrderError("Order not found")

                    # Идемпотентность: оплаченный заказ только подтверждаем
                    if order.is_settled():
                        logger.info(f"Заказ {order.id} уже оплачен, повторный callback проигнорирован")
                        raise AlreadySettledError(order)

                    if not callback.amount_matches(order.total_amount):
                        logger.warning(
                            f"Сумма callback {callback.gateway_amount} не совпадает с заказом {order.id}"
                        )
                        raise AmountMismatchError(
                            order.total_amount * callback.amount_multiplier, callback.gateway_amount
                        )

                    updated = order.apply_callback(callback, self._clock())
                    if await uow.orders.compare_and_set(updated, expected_version=order.version):
                        await uow.commit()
                        logger.info(f"Заказ {order.id}: {order.payment_status.value} -> {updated.payment_status.value}")
                        return updated

                logger.warning(
                    f"Конфликт версий заказа {callback.order_id} (попытка {attempt + 1}/{self._max_attempts})"
                )

        raise ConcurrentUpdateError(f"Не удалось обновить заказ {callback.order_id}")
