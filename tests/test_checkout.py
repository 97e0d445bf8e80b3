from urllib.parse import urlsplit, parse_qsl

import httpx
import pytest

from conftest import ADDRESS, JEANS, SHIRT, count_orders, fixed_clock, load_order, seed_cart
from storefront.application.checkout import CheckoutUseCase, CheckoutDTO
from storefront.config import VNPayConfig
from storefront.domain.exceptions import (
    ConfigurationError, EmptyCartError, PaymentGatewayError, UnsupportedPaymentMethodError
)
from storefront.domain.models import PaymentMethod, PaymentStatus
from storefront.infrastructure.gateways import VNPayGateway


def checkout_dto(method=PaymentMethod.VNPAY, user_id="user-1"):
    return CheckoutDTO(user_id=user_id, shipping_address=ADDRESS, payment_method=method, client_ip="10.0.0.1")


async def load_cart(uow, user_id="user-1"):
    async with uow() as u:
        return await u.carts.get(user_id)


async def test_checkout_creates_pending_order_and_empties_cart(uow, gateways):
    await seed_cart(uow)
    checkout = CheckoutUseCase(uow, gateways, clock=fixed_clock)

    result = await checkout(checkout_dto())

    order = await load_order(uow, result.order.id)
    assert order.total_amount == 680000
    assert order.payment_status == PaymentStatus.PENDING
    assert order.shipping_address == ADDRESS
    assert [i.product_id for i in order.items] == ["prod-a", "prod-b"]
    params = dict(parse_qsl(urlsplit(result.payment_url).query))
    assert params["vnp_Amount"] == "68000000"
    assert params["vnp_TxnRef"] == order.id

    cart = await load_cart(uow)
    assert cart is not None
    assert cart.items == []


async def test_checkout_with_empty_cart_creates_nothing(uow, session_factory, gateways):
    await seed_cart(uow, items=())

    with pytest.raises(EmptyCartError):
        await CheckoutUseCase(uow, gateways)(checkout_dto())

    assert await count_orders(session_factory) == 0


async def test_checkout_without_cart(uow, session_factory, gateways):
    with pytest.raises(EmptyCartError):
        await CheckoutUseCase(uow, gateways)(checkout_dto(user_id="nobody"))

    assert await count_orders(session_factory) == 0


async def test_checkout_with_missing_configuration_touches_nothing(uow, session_factory):
    await seed_cart(uow)
    gateways = {PaymentMethod.VNPAY: VNPayGateway(VNPayConfig())}

    with pytest.raises(ConfigurationError):
        await CheckoutUseCase(uow, gateways)(checkout_dto())

    assert await count_orders(session_factory) == 0
    assert len((await load_cart(uow)).items) == 2


async def test_checkout_with_unsupported_method(uow, gateways):
    await seed_cart(uow)

    with pytest.raises(UnsupportedPaymentMethodError):
        await CheckoutUseCase(uow, gateways)(checkout_dto(method=PaymentMethod.OTHER))


async def test_momo_timeout_keeps_order_pending(uow, gateways, momo_handler):
    def timeout(request):
        raise httpx.ReadTimeout("timed out", request=request)

    momo_handler["handler"] = timeout
    await seed_cart(uow)

    result = await CheckoutUseCase(uow, gateways)(checkout_dto(method=PaymentMethod.MOMO))

    assert result.payment_url is None
    order = await load_order(uow, result.order.id)
    assert order.payment_status == PaymentStatus.PENDING
    assert order.payment_method == PaymentMethod.MOMO
    assert (await load_cart(uow)).items == []


async def test_momo_rejection_rolls_back_checkout(uow, session_factory, gateways, momo_handler):
    momo_handler["handler"] = lambda request: httpx.Response(200, json={"resultCode": 13, "message": "fail"})
    await seed_cart(uow)

    with pytest.raises(PaymentGatewayError):
        await CheckoutUseCase(uow, gateways)(checkout_dto(method=PaymentMethod.MOMO))

    assert await count_orders(session_factory) == 0
    assert len((await load_cart(uow)).items) == 2


async def test_second_checkout_of_same_cart_finds_it_empty(uow, session_factory, gateways):
    await seed_cart(uow, items=(SHIRT, JEANS))
    checkout = CheckoutUseCase(uow, gateways)

    await checkout(checkout_dto())
    with pytest.raises(EmptyCartError):
        await checkout(checkout_dto())

    assert await count_orders(session_factory) == 1
