import uuid
from datetime import datetime
from enum import Enum
from typing import Optional, List
from pydantic import BaseModel, ConfigDict

from storefront.domain.exceptions import EmptyCartError, CartItemNotFoundError


class PaymentStatus(str, Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"


class PaymentMethod(str, Enum):
    VNPAY = "vnpay"
    MOMO = "momo"
    OTHER = "other"


class CallbackOutcome(str, Enum):
    SUCCESS = "success"
    FAILURE = "failure"
    UNKNOWN_ORDER = "unknown_order"


class IpnAck(str, Enum):
    """Результат обработки callback, который шлюз получает в теле ответа"""
    CONFIRMED = "confirmed"
    ALREADY_CONFIRMED = "already_confirmed"
    ORDER_NOT_FOUND = "order_not_found"
    INVALID_AMOUNT = "invalid_amount"
    INVALID_SIGNATURE = "invalid_signature"
    UNKNOWN_ERROR = "unknown_error"


# completed поглощающее: из него переходов нет
_TRANSITIONS = {
    PaymentStatus.PENDING: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.FAILED: {PaymentStatus.COMPLETED, PaymentStatus.FAILED},
    PaymentStatus.COMPLETED: set(),
}


class ShippingAddress(BaseModel):
    """Value Object: адрес доставки"""
    model_config = ConfigDict(frozen=True)

    full_name: str
    address: str
    city: str
    phone: str


class OrderItem(BaseModel):
    """Value Object: позиция заказа (снимок корзины на момент оформления)"""
    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    unit_price: int
    quantity: int
    size: Optional[str] = None
    image: Optional[str] = None

    @property
    def subtotal(self) -> int:
        return self.unit_price * self.quantity


class PaymentInfo(BaseModel):
    """Метаданные транзакции платежного шлюза"""
    model_config = ConfigDict(frozen=True)

    gateway: PaymentMethod
    transaction_id: Optional[str] = None
    paid_amount: Optional[int] = None
    paid_at: Optional[datetime] = None
    response_code: Optional[str] = None
    failure_reason: Optional[str] = None


class GatewayCallback(BaseModel):
    """Проверенный (подпись валидна) callback шлюза в нормализованном виде"""
    model_config = ConfigDict(frozen=True)

    gateway: PaymentMethod
    order_id: Optional[str]
    outcome: CallbackOutcome
    transaction_id: Optional[str] = None
    # сумма в единицах шлюза (VNPay передает сумму * 100)
    gateway_amount: Optional[int] = None
    amount_multiplier: int = 1
    paid_at: Optional[datetime] = None
    response_code: Optional[str] = None
    message: Optional[str] = None

    @property
    def paid_amount(self) -> Optional[int]:
        if self.gateway_amount is None:
            return None
        return self.gateway_amount // self.amount_multiplier

    def amount_matches(self, total_amount: int) -> bool:
        # успешная оплата без суммы не подтверждает заказ
        if self.gateway_amount is None:
            return self.outcome != CallbackOutcome.SUCCESS
        return self.gateway_amount == total_amount * self.amount_multiplier


class Product(BaseModel):
    """Value Object: товар из каталога"""
    id: str
    name: str
    price: int
    images: List[str] = []
    sizes: List[str] = []


class CartItem(BaseModel):
    model_config = ConfigDict(frozen=True)

    product_id: str
    name: str
    price: int
    quantity: int
    size: str
    image: Optional[str] = None


class Cart(BaseModel):
    """Domain Entity: корзина пользователя"""
    user_id: str
    items: List[CartItem] = []
    version: int = 0
    updated_at: Optional[datetime] = None

    @property
    def total_amount(self) -> int:
        return sum(item.price * item.quantity for item in self.items)

    def is_empty(self) -> bool:
        return not self.items

    def add_item(self, product: Product, quantity: int, size: str) -> "Cart":
        items = list(self.items)
        for index, item in enumerate(items):
            if item.product_id == product.id and item.size == size:
                items[index] = item.model_copy(update={"quantity": item.quantity + quantity})
                break
        else:
            items.append(CartItem(
                product_id=product.id,
                name=product.name,
                price=product.price,
                quantity=quantity,
                size=size,
                image=product.images[0] if product.images else None
            ))
        return self.model_copy(update={"items": items})

    def remove_item(self, product_id: str, size: Optional[str] = None) -> "Cart":
        items = [
            item for item in self.items
            if not (item.product_id == product_id and (size is None or item.size == size))
        ]
        if len(items) == len(self.items):
            raise CartItemNotFoundError(f"Товар {product_id} отсутствует в корзине")
        return self.model_copy(update={"items": items})

    def cleared(self) -> "Cart":
        return self.model_copy(update={"items": []})


class Order(BaseModel):
    """Domain Entity: заказ"""
    id: str
    user_id: str
    items: List[OrderItem]
    total_amount: int
    shipping_address: ShippingAddress
    payment_method: PaymentMethod
    payment_status: PaymentStatus = PaymentStatus.PENDING
    payment_info: Optional[PaymentInfo] = None
    version: int = 0
    created_at: datetime
    updated_at: datetime

    @classmethod
    def from_cart(
        cls,
        cart: Cart,
        shipping_address: ShippingAddress,
        payment_method: PaymentMethod,
        now: datetime
    ) -> "Order":
        """Снимок корзины: позиции копируются по значению, сумма считается заново"""
        if cart.is_empty():
            raise EmptyCartError("Корзина пуста")

        items = [
            OrderItem(
                product_id=item.product_id,
                name=item.name,
                unit_price=item.price,
                quantity=item.quantity,
                size=item.size,
                image=item.image
            )
            for item in cart.items
        ]
        return cls(
            id=str(uuid.uuid4()),
            user_id=cart.user_id,
            items=items,
            total_amount=sum(item.subtotal for item in items),
            shipping_address=shipping_address,
            payment_method=payment_method,
            payment_status=PaymentStatus.PENDING,
            created_at=now,
            updated_at=now
        )

    def is_settled(self) -> bool:
        """Бизнес-правило: оплаченный заказ изменить нельзя"""
        return self.payment_status == PaymentStatus.COMPLETED

    def can_transition_to(self, status: PaymentStatus) -> bool:
        return status in _TRANSITIONS[self.payment_status]

    def apply_callback(self, callback: GatewayCallback, now: datetime) -> "Order":
        """Возвращает новую версию заказа с примененным результатом оплаты"""
        if callback.outcome == CallbackOutcome.SUCCESS:
            status = PaymentStatus.COMPLETED
            failure_reason = None
        elif callback.outcome == CallbackOutcome.FAILURE:
            status = PaymentStatus.FAILED
            failure_reason = callback.message or f"код ответа {callback.response_code}"
        else:
            raise ValueError(f"Нельзя применить результат {callback.outcome} к заказу")

        if not self.can_transition_to(status):
            raise ValueError(f"Недопустимый переход {self.payment_status} -> {status}")

        payment_info = PaymentInfo(
            gateway=callback.gateway,
            transaction_id=callback.transaction_id,
            paid_amount=callback.paid_amount,
            paid_at=callback.paid_at,
            response_code=callback.response_code,
            failure_reason=failure_reason
        )
        return self.model_copy(update={
            "payment_status": status,
            "payment_info": payment_info,
            "version": self.version + 1,
            "updated_at": now
        })

