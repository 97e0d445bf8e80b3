import logging
from typing import Optional
from pydantic import BaseModel

from storefront.domain.models import Cart
from storefront.domain.exceptions import (
    ProductNotFoundError, InvalidSizeError, CartItemNotFoundError, ConcurrentUpdateError
)
from storefront.application.interfaces import CatalogService

logger = logging.getLogger(__name__)

ALLOWED_SIZES = ("S", "M", "L", "XL", "XXL")


class AddToCartDTO(BaseModel):
    user_id: str
    product_id: str
    quantity: int
    size: str


async def _load_cart(uow, user_id: str) -> Cart:
    cart = await uow.carts.get(user_id)
    return cart or Cart(user_id=user_id)


async def _store_cart(uow, cart: Cart) -> Cart:
    if not await uow.carts.save(cart, expected_version=cart.version):
        raise ConcurrentUpdateError("Корзина изменилась, повторите запрос")
    await uow.commit()
    return cart.model_copy(update={"version": cart.version + 1})


class GetCartUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, user_id: str) -> Cart:
        async with self._uow() as uow:
            return await _load_cart(uow, user_id)


class AddToCartUseCase:
    def __init__(self, unit_of_work, catalog_service: CatalogService):
        self._uow = unit_of_work
        self._catalog = catalog_service

    async def __call__(self, dto: AddToCartDTO) -> Cart:
        logger.info(f"Добавление товара {dto.product_id} ({dto.size} x{dto.quantity}) в корзину {dto.user_id}")

        if dto.size not in ALLOWED_SIZES:
            raise InvalidSizeError(f"Size must be one of: {', '.join(ALLOWED_SIZES)}")

        product = await self._catalog.get_product(dto.product_id)
        if not product:
            raise ProductNotFoundError(f"Товар {dto.product_id} не найден")
        if product.sizes and dto.size not in product.sizes:
            raise InvalidSizeError("Selected size is not available for this product")

        async with self._uow() as uow:
            cart = await _load_cart(uow, dto.user_id)
            return await _store_cart(uow, cart.add_item(product, dto.quantity, dto.size))


class RemoveFromCartUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, user_id: str, product_id: str, size: Optional[str] = None) -> Cart:
        async with self._uow() as uow:
            cart = await uow.carts.get(user_id)
            if cart is None:
                raise CartItemNotFoundError("Cart not found")
            return await _store_cart(uow, cart.remove_item(product_id, size))


class ClearCartUseCase:
    def __init__(self, unit_of_work):
        self._uow = unit_of_work

    async def __call__(self, user_id: str) -> Cart:
        async with self._uow() as uow:
            cart = await uow.carts.get(user_id)
            if cart is None:
                raise CartItemNotFoundError("Cart not found")
            return await _store_cart(uow, cart.cleared())
