from typing import List, Optional
from datetime import datetime, timezone
from sqlalchemy import select, insert, update, func
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from storefront.domain.models import (
    Order, OrderItem, ShippingAddress, PaymentInfo, PaymentStatus, PaymentMethod, Cart, CartItem
)
from storefront.infrastructure.db_schema import orders_tbl, carts_tbl
from storefront.application.interfaces import OrderRepository, CartRepository


class SQLAlchemyOrderRepository(OrderRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get_by_id(self, order_id: str) -> Optional[Order]:
        result = await self._session.execute(
            select(orders_tbl).where(orders_tbl.c.id == order_id)
        )
        row = result.fetchone()
        return self._to_domain(row) if row else None

    async def create(self, order: Order) -> None:
        stmt = insert(orders_tbl).values(
            id=order.id,
            user_id=order.user_id,
            items=[item.model_dump(mode="json") for item in order.items],
            total_amount=order.total_amount,
            shipping_address=order.shipping_address.model_dump(mode="json"),
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            payment_info=order.payment_info.model_dump(mode="json") if order.payment_info else None,
            version=order.version,
            created_at=order.created_at,
            updated_at=order.updated_at
        )
        await self._session.execute(stmt)

    async def list_by_user(self, user_id: str, offset: int, limit: int) -> List[Order]:
        result = await self._session.execute(
            select(orders_tbl)
            .where(orders_tbl.c.user_id == user_id)
            .order_by(orders_tbl.c.created_at.desc(), orders_tbl.c.id)
            .offset(offset)
            .limit(limit)
        )
        return [self._to_domain(row) for row in result.fetchall()]

    async def count_by_user(self, user_id: str) -> int:
        result = await self._session.execute(
            select(func.count()).select_from(orders_tbl).where(orders_tbl.c.user_id == user_id)
        )
        return result.scalar_one()

    async def compare_and_set(self, order: Order, expected_version: int) -> bool:
        """
        Условное обновление статуса оплаты.

        Строка меняется, только если ее версия все еще expected_version и заказ
        не в статусе completed. Возвращает False, если кто-то успел раньше.
        """
        stmt = (
            update(orders_tbl)
            .where(
                orders_tbl.c.id == order.id,
                orders_tbl.c.version == expected_version,
                orders_tbl.c.payment_status != PaymentStatus.COMPLETED
            )
            .values(
                payment_status=order.payment_status,
                payment_info=order.payment_info.model_dump(mode="json") if order.payment_info else None,
                version=order.version,
                updated_at=order.updated_at
            )
        )
        result = await self._session.execute(stmt)
        return result.rowcount == 1

    def _to_domain(self, row) -> Order:
        """Трансформация DB → Domain"""
        return Order(
            id=row.id,
            user_id=row.user_id,
            items=[OrderItem(**item) for item in row.items],
            total_amount=row.total_amount,
            shipping_address=ShippingAddress(**row.shipping_address),
            payment_method=PaymentMethod(row.payment_method),
            payment_status=PaymentStatus(row.payment_status),
            payment_info=PaymentInfo.model_validate(row.payment_info) if row.payment_info else None,
            version=row.version,
            created_at=row.created_at,
            updated_at=row.updated_at
        )


class SQLAlchemyCartRepository(CartRepository):
    def __init__(self, session: AsyncSession):
        self._session = session

    async def get(self, user_id: str) -> Optional[Cart]:
        result = await self._session.execute(
            select(carts_tbl).where(carts_tbl.c.user_id == user_id)
        )
        row = result.fetchone()
        if not row:
            return None
        return Cart(
            user_id=row.user_id,
            items=[CartItem(**item) for item in row.items],
            version=row.version,
            updated_at=row.updated_at
        )

    async def save(self, cart: Cart, expected_version: int) -> bool:
        """Сохраняет корзину с проверкой версии; новая корзина создается с версией 1"""
        items = [item.model_dump(mode="json") for item in cart.items]
        now = datetime.now(timezone.utc)

        result = await self._session.execute(
            update(carts_tbl)
            .where(
                carts_tbl.c.user_id == cart.user_id,
                carts_tbl.c.version == expected_version
            )
            .values(items=items, version=expected_version + 1, updated_at=now)
        )
        if result.rowcount == 1:
            return True
        if expected_version != 0:
            return False

        try:
            await self._session.execute(
                insert(carts_tbl).values(
                    user_id=cart.user_id,
                    items=items,
                    version=expected_version + 1,
                    updated_at=now
                )
            )
        except IntegrityError:
            return False
        return True
