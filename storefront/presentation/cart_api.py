from typing import Optional
from fastapi import APIRouter, Depends, HTTPException

from storefront.config import settings
from storefront.database import get_session_factory
from storefront.presentation.auth import get_current_user_id
from storefront.presentation.schemas import AddToCartRequest, CartResponse, ErrorResponse
from storefront.application.cart import (
    GetCartUseCase, AddToCartUseCase, AddToCartDTO, RemoveFromCartUseCase, ClearCartUseCase
)
from storefront.domain.exceptions import (
    ProductNotFoundError, InvalidSizeError, CartItemNotFoundError, CatalogServiceError, ConcurrentUpdateError
)
from storefront.infrastructure.http_clients import HTTPCatalogClient
from storefront.infrastructure.unit_of_work import UnitOfWork

router = APIRouter(prefix="/cart", tags=["Cart"])


def get_catalog_service():
    return HTTPCatalogClient(settings.CATALOG_BASE_URL, settings.API_TOKEN)


def get_get_cart_use_case(session_factory=Depends(get_session_factory)):
    return GetCartUseCase(UnitOfWork(session_factory))


def get_add_to_cart_use_case(
    session_factory=Depends(get_session_factory),
    catalog=Depends(get_catalog_service)
):
    return AddToCartUseCase(UnitOfWork(session_factory), catalog)


def get_remove_from_cart_use_case(session_factory=Depends(get_session_factory)):
    return RemoveFromCartUseCase(UnitOfWork(session_factory))


def get_clear_cart_use_case(session_factory=Depends(get_session_factory)):
    return ClearCartUseCase(UnitOfWork(session_factory))


@router.get("", response_model=CartResponse)
async def get_cart(
    user_id: str = Depends(get_current_user_id),
    use_case: GetCartUseCase = Depends(get_get_cart_use_case)
):
    """Корзина текущего пользователя"""
    return CartResponse.from_domain(await use_case(user_id))


@router.post(
    "",
    response_model=CartResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 503: {"model": ErrorResponse}}
)
async def add_to_cart(
    request: AddToCartRequest,
    user_id: str = Depends(get_current_user_id),
    use_case: AddToCartUseCase = Depends(get_add_to_cart_use_case)
):
    """Добавить товар в корзину"""
    try:
        dto = AddToCartDTO(
            user_id=user_id,
            product_id=request.product_id,
            quantity=request.quantity,
            size=request.size
        )
        return CartResponse.from_domain(await use_case(dto))
    except ProductNotFoundError:
        raise HTTPException(status_code=404, detail="Product not found")
    except InvalidSizeError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConcurrentUpdateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except CatalogServiceError as e:
        raise HTTPException(status_code=503, detail=f"Service unavailable: {str(e)}")


@router.delete(
    "/items/{product_id}",
    response_model=CartResponse,
    responses={404: {"model": ErrorResponse}}
)
async def remove_from_cart(
    product_id: str,
    size: Optional[str] = None,
    user_id: str = Depends(get_current_user_id),
    use_case: RemoveFromCartUseCase = Depends(get_remove_from_cart_use_case)
):
    """Удалить товар из корзины"""
    try:
        return CartResponse.from_domain(await use_case(user_id, product_id, size))
    except CartItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConcurrentUpdateError as e:
        raise HTTPException(status_code=409, detail=str(e))


@router.delete("", responses={404: {"model": ErrorResponse}})
async def clear_cart(
    user_id: str = Depends(get_current_user_id),
    use_case: ClearCartUseCase = Depends(get_clear_cart_use_case)
):
    """Очистить корзину (сама корзина сохраняется)"""
    try:
        await use_case(user_id)
        return {"message": "Cart cleared successfully"}
    except CartItemNotFoundError as e:
        raise HTTPException(status_code=404, detail=str(e))
    except ConcurrentUpdateError as e:
        raise HTTPException(status_code=409, detail=str(e))
