from typing import Optional


class DomainException(Exception):
    pass


class ConfigurationError(DomainException):
    pass


class EmptyCartError(DomainException):
    pass


class UnsupportedPaymentMethodError(DomainException):
    pass


class CatalogServiceError(DomainException):
    pass


class ProductNotFoundError(DomainException):
    pass


class InvalidSizeError(DomainException):
    pass


class CartItemNotFoundError(DomainException):
    pass


class PaymentGatewayError(DomainException):
    pass


class GatewayUnavailableError(PaymentGatewayError):
    pass


class InvalidSignatureError(DomainException):
    pass


class OrderNotFoundError(DomainException):
    pass


class UnknownOrderError(DomainException):
    pass


class AmountMismatchError(DomainException):
    def __init__(self, expected: int, received: Optional[int]):
        self.expected = expected
        self.received = received
        super().__init__(f"Сумма не совпадает. Ожидалось: {expected}, получено: {received}")


class AlreadySettledError(DomainException):
    """Заказ уже оплачен: повторный callback подтверждается без изменений"""

    def __init__(self, order):
        self.order = order
        super().__init__(f"Заказ {order.id} уже оплачен")


class ConcurrentUpdateError(DomainException):
    pass
