from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel
from datetime import datetime
from typing import Optional, List

from storefront.domain.models import PaymentMethod, PaymentStatus, PaymentInfo, OrderItem


class CamelModel(BaseModel):
    """Внешний контракт API в camelCase"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ShippingAddressRequest(CamelModel):
    full_name: str
    address: str
    city: str
    phone: str

    @field_validator("full_name", "address", "city", "phone")
    @classmethod
    def not_blank(cls, value: str) -> str:
        value = value.strip()
        if not value:
            raise ValueError("must not be empty")
        return value


class CreatePaymentUrlRequest(CamelModel):
    shipping_address: ShippingAddressRequest
    payment_method: PaymentMethod = PaymentMethod.VNPAY


class CreatePaymentUrlResponse(CamelModel):
    order_id: str
    payment_url: Optional[str] = None


class OrderResponse(CamelModel):
    id: str
    user_id: str
    items: List[OrderItem]
    total_amount: int
    payment_method: PaymentMethod
    payment_status: PaymentStatus
    payment_info: Optional[PaymentInfo] = None
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_domain(cls, order):
        return cls(
            id=order.id,
            user_id=order.user_id,
            items=order.items,
            total_amount=order.total_amount,
            payment_method=order.payment_method,
            payment_status=order.payment_status,
            payment_info=order.payment_info,
            created_at=order.created_at,
            updated_at=order.updated_at
        )


class OrderListResponse(CamelModel):
    orders: List[OrderResponse]
    total_orders: int
    total_pages: int
    current_page: int

    @classmethod
    def from_page(cls, page):
        return cls(
            orders=[OrderResponse.from_domain(order) for order in page.orders],
            total_orders=page.total_orders,
            total_pages=page.total_pages,
            current_page=page.current_page
        )


class AddToCartRequest(BaseModel):
    product_id: str = Field(alias="_id")
    quantity: int = Field(ge=1)
    size: str

    model_config = ConfigDict(populate_by_name=True)


class CartItemResponse(CamelModel):
    product_id: str
    name: str
    price: int
    quantity: int
    size: str
    image: Optional[str] = None


class CartResponse(CamelModel):
    user_id: str
    items: List[CartItemResponse]
    total_amount: int

    @classmethod
    def from_domain(cls, cart):
        return cls(
            user_id=cart.user_id,
            items=[CartItemResponse(**item.model_dump()) for item in cart.items],
            total_amount=cart.total_amount
        )


class ErrorResponse(BaseModel):
    detail: str
