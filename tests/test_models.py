import pytest

from conftest import ADDRESS, FIXED_NOW, SHIRT, JEANS, make_order
from storefront.domain.exceptions import EmptyCartError, CartItemNotFoundError
from storefront.domain.models import (
    Cart, Order, Product, PaymentMethod, PaymentStatus, GatewayCallback, CallbackOutcome
)


def _callback(order_id, outcome=CallbackOutcome.SUCCESS, transaction_id="T1"):
    return GatewayCallback(
        gateway=PaymentMethod.VNPAY,
        order_id=order_id,
        outcome=outcome,
        transaction_id=transaction_id,
        gateway_amount=68000000,
        amount_multiplier=100,
        response_code="00" if outcome == CallbackOutcome.SUCCESS else "24"
    )


def test_order_from_cart_snapshots_items_and_total():
    cart = Cart(user_id="user-1", items=[SHIRT, JEANS])

    order = Order.from_cart(cart, ADDRESS, PaymentMethod.VNPAY, FIXED_NOW)

    assert order.total_amount == 680000
    assert order.payment_status == PaymentStatus.PENDING
    assert [(i.product_id, i.unit_price, i.quantity, i.size) for i in order.items] == [
        ("prod-a", 150000, 2, "M"),
        ("prod-b", 380000, 1, "L"),
    ]
    assert order.created_at == order.updated_at == FIXED_NOW


def test_order_items_do_not_follow_cart_changes():
    cart = Cart(user_id="user-1", items=[SHIRT])
    order = Order.from_cart(cart, ADDRESS, PaymentMethod.VNPAY, FIXED_NOW)

    cart.add_item(Product(id="prod-a", name="Ao thun moi", price=1), 5, "M")

    assert order.items[0].name == "Ao thun"
    assert order.items[0].unit_price == 150000
    assert order.total_amount == 300000


def test_empty_cart_cannot_become_order():
    with pytest.raises(EmptyCartError):
        Order.from_cart(Cart(user_id="user-1"), ADDRESS, PaymentMethod.VNPAY, FIXED_NOW)


def test_success_completes_pending_order():
    order = make_order()

    paid = order.apply_callback(_callback(order.id), FIXED_NOW)

    assert paid.payment_status == PaymentStatus.COMPLETED
    assert paid.payment_info.transaction_id == "T1"
    assert paid.payment_info.paid_amount == 680000
    assert paid.version == order.version + 1
    assert order.payment_status == PaymentStatus.PENDING


def test_late_success_completes_failed_order():
    order = make_order()
    failed = order.apply_callback(_callback(order.id, CallbackOutcome.FAILURE), FIXED_NOW)

    paid = failed.apply_callback(_callback(order.id), FIXED_NOW)

    assert failed.payment_status == PaymentStatus.FAILED
    assert failed.payment_info.failure_reason
    assert paid.payment_status == PaymentStatus.COMPLETED
    assert paid.payment_info.failure_reason is None


@pytest.mark.parametrize("outcome", [CallbackOutcome.SUCCESS, CallbackOutcome.FAILURE])
def test_completed_order_never_transitions(outcome):
    paid = make_order().apply_callback(_callback("x"), FIXED_NOW)

    assert not paid.can_transition_to(PaymentStatus.FAILED)
    assert not paid.can_transition_to(PaymentStatus.PENDING)
    with pytest.raises(ValueError):
        paid.apply_callback(_callback(paid.id, outcome), FIXED_NOW)


def test_cart_merges_same_product_and_size():
    product = Product(id="prod-a", name="Ao thun", price=150000, images=["a.jpg"])
    cart = Cart(user_id="user-1").add_item(product, 1, "M").add_item(product, 2, "M").add_item(product, 1, "L")

    assert [(i.size, i.quantity) for i in cart.items] == [("M", 3), ("L", 1)]
    assert cart.items[0].image == "a.jpg"
    assert cart.total_amount == 600000


def test_cart_remove_item():
    cart = Cart(user_id="user-1", items=[SHIRT, JEANS])

    assert cart.remove_item("prod-a").items == [JEANS]
    with pytest.raises(CartItemNotFoundError):
        cart.remove_item("missing")
