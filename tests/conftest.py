import hashlib
from datetime import datetime, timezone
from typing import Optional

import httpx
import jwt
import pytest
from httpx import AsyncClient, ASGITransport
from sqlalchemy import select, func
from sqlalchemy.ext.asyncio import create_async_engine, async_sessionmaker, AsyncSession

from storefront.config import settings, VNPayConfig, MoMoConfig
from storefront.database import get_session_factory
from storefront.domain.models import (
    Cart, CartItem, Order, Product, ShippingAddress, PaymentMethod
)
from storefront.application.interfaces import CatalogService
from storefront.infrastructure.db_schema import metadata, orders_tbl
from storefront.infrastructure.gateways import VNPayGateway, MoMoGateway
from storefront.infrastructure.signature import SignatureCodec
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.main import app
from storefront.presentation.api import get_gateways, get_result_url
from storefront.presentation.cart_api import get_catalog_service

JWT_SECRET = "test-jwt-secret-that-is-long-enough-for-hs256"
FIXED_NOW = datetime(2026, 10, 18, 3, 0, 0, tzinfo=timezone.utc)

VNPAY_CONFIG = VNPayConfig(
    tmn_code="TESTTMN1",
    hash_secret="VNPAYTESTSECRET0123456789",
    url="https://sandbox.vnpayment.vn/paymentv2/vpcpay.html",
    return_url="http://localhost:8000/api/payment/vnpay_return"
)

MOMO_CONFIG = MoMoConfig(
    partner_code="MOMOTEST",
    access_key="momo-access-key",
    secret_key="momo-secret-key",
    endpoint="https://test-payment.momo.vn/v2/gateway/api/create",
    redirect_url="http://localhost:8000/api/payment/momo_return",
    ipn_url="http://localhost:8000/api/payment/momo_ipn",
    timeout=2.0
)

MOMO_PAY_URL = "https://test-payment.momo.vn/v2/gateway/pay?t=abc"

ADDRESS = ShippingAddress(full_name="Nguyen Van A", address="12 Le Loi", city="Ho Chi Minh", phone="0901234567")

SHIRT = CartItem(product_id="prod-a", name="Ao thun", price=150000, quantity=2, size="M")
JEANS = CartItem(product_id="prod-b", name="Quan jean", price=380000, quantity=1, size="L")


def fixed_clock() -> datetime:
    return FIXED_NOW


def momo_ok_handler(request: httpx.Request) -> httpx.Response:
    return httpx.Response(200, json={"resultCode": 0, "message": "Thành công.", "payUrl": MOMO_PAY_URL})


class FakeCatalog(CatalogService):
    def __init__(self):
        self.products = {
            "prod-a": Product(id="prod-a", name="Ao thun", price=150000, images=["a.jpg"], sizes=["M", "L"]),
            "prod-b": Product(id="prod-b", name="Quan jean", price=380000, sizes=["L"]),
        }

    async def get_product(self, product_id: str) -> Optional[Product]:
        return self.products.get(product_id)


def signed_vnpay_params(order_id: str, amount: int, response_code: str = "00", **overrides) -> dict:
    params = {
        "vnp_Amount": str(amount * 100),
        "vnp_BankCode": "NCB",
        "vnp_CardType": "ATM",
        "vnp_OrderInfo": f"Thanh toan don hang {order_id}",
        "vnp_PayDate": "20261018103000",
        "vnp_ResponseCode": response_code,
        "vnp_TmnCode": VNPAY_CONFIG.tmn_code,
        "vnp_TransactionNo": "14123456",
        "vnp_TransactionStatus": response_code,
        "vnp_TxnRef": order_id,
    }
    hash_type = overrides.pop("vnp_SecureHashType", None)
    params.update(overrides)
    params["vnp_SecureHash"] = SignatureCodec(VNPAY_CONFIG.hash_secret).sign(params)
    # VNPay дописывает тип хеша после подписи
    if hash_type is not None:
        params["vnp_SecureHashType"] = hash_type
    return params


def signed_momo_params(order_id: str, amount: int, result_code: int = 0, **overrides) -> dict:
    params = {
        "partnerCode": MOMO_CONFIG.partner_code,
        "orderId": order_id,
        "requestId": order_id,
        "amount": amount,
        "orderInfo": f"Thanh toan don hang {order_id}",
        "orderType": "momo_wallet",
        "transId": 4088878653,
        "resultCode": result_code,
        "message": "Thành công." if result_code == 0 else "Giao dịch bị từ chối.",
        "payType": "qr",
        "responseTime": 1792299600000,
        "extraData": "",
    }
    params.update(overrides)
    signed = dict(params, accessKey=MOMO_CONFIG.access_key)
    params["signature"] = SignatureCodec(MOMO_CONFIG.secret_key, digest=hashlib.sha256).sign(signed)
    return params


def make_order(items=(SHIRT, JEANS), method: PaymentMethod = PaymentMethod.VNPAY) -> Order:
    cart = Cart(user_id="user-1", items=list(items))
    return Order.from_cart(cart, ADDRESS, method, FIXED_NOW)


def auth_headers(user_id: str = "user-1") -> dict:
    token = jwt.encode({"id": user_id}, JWT_SECRET, algorithm="HS256")
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
async def session_factory(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'storefront.db'}")
    async with engine.begin() as conn:
        await conn.run_sync(metadata.create_all)
    yield async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)
    await engine.dispose()


@pytest.fixture
def uow(session_factory):
    return UnitOfWork(session_factory)


@pytest.fixture
def vnpay():
    return VNPayGateway(VNPAY_CONFIG)


@pytest.fixture
def momo_handler():
    return {"handler": momo_ok_handler}


@pytest.fixture
def momo(momo_handler):
    transport = httpx.MockTransport(lambda request: momo_handler["handler"](request))
    return MoMoGateway(MOMO_CONFIG, transport=transport)


@pytest.fixture
def gateways(vnpay, momo):
    return {PaymentMethod.VNPAY: vnpay, PaymentMethod.MOMO: momo}


async def seed_cart(uow, user_id: str = "user-1", items=(SHIRT, JEANS)) -> None:
    async with uow() as u:
        await u.carts.save(Cart(user_id=user_id, items=list(items)), expected_version=0)
        await u.commit()


async def seed_order(uow, order: Order) -> Order:
    async with uow() as u:
        await u.orders.create(order)
        await u.commit()
    return order


async def load_order(uow, order_id: str) -> Optional[Order]:
    async with uow() as u:
        return await u.orders.get_by_id(order_id)


async def count_orders(session_factory) -> int:
    async with session_factory() as session:
        result = await session.execute(select(func.count()).select_from(orders_tbl))
        return result.scalar_one()


@pytest.fixture
def result_url():
    return {"value": ""}


@pytest.fixture
async def client(session_factory, gateways, result_url, monkeypatch):
    monkeypatch.setattr(settings, "JWT_SECRET", JWT_SECRET)
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_gateways] = lambda: gateways
    app.dependency_overrides[get_result_url] = lambda: result_url["value"]
    app.dependency_overrides[get_catalog_service] = lambda: FakeCatalog()

    async with AsyncClient(transport=ASGITransport(app=app), base_url="http://test") as ac:
        yield ac

    app.dependency_overrides.clear()
