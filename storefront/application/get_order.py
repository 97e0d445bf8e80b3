import math
from typing import List
from pydantic import BaseModel

from storefront.domain.models import Order
from storefront.domain.exceptions import OrderNotFoundError


class GetOrderUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, order_id: str, user_id: str) -> Order:
        async with self._uow() as uow:
            order = await uow.orders.get_by_id(order_id)
            # чужой заказ выглядит так же, как несуществующий
            if not order or order.user_id != user_id:
                raise OrderNotFoundError(f"Заказ {order_id} не найден")
            return order


class OrderPage(BaseModel):
    orders: List[Order]
    total_orders: int
    total_pages: int
    current_page: int


class ListOrdersUseCase:
    """История заказов пользователя постранично, новые первыми"""

    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, user_id: str, page: int = 1, limit: int = 10) -> OrderPage:
        if page < 1 or limit < 1:
            raise ValueError("Invalid pagination parameters")

        async with self._uow() as uow:
            orders = await uow.orders.list_by_user(user_id, offset=(page - 1) * limit, limit=limit)
            total = await uow.orders.count_by_user(user_id)

        return OrderPage(
            orders=orders,
            total_orders=total,
            total_pages=math.ceil(total / limit),
            current_page=page
        )
