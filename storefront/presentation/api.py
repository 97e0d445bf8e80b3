import logging
from typing import Mapping, Optional, Tuple
from urllib.parse import urlencode

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from fastapi.responses import JSONResponse, RedirectResponse

from storefront.config import settings
from storefront.database import get_session_factory
from storefront.presentation.auth import get_current_user_id
from storefront.presentation.schemas import (
    CreatePaymentUrlRequest, CreatePaymentUrlResponse, OrderResponse, OrderListResponse, ErrorResponse
)
from storefront.application.interfaces import PaymentGateway
from storefront.application.checkout import CheckoutUseCase, CheckoutDTO
from storefront.application.get_order import GetOrderUseCase, ListOrdersUseCase
from storefront.application.locks import KeyedLock
from storefront.application.reconcile_payment import ReconcilePaymentUseCase
from storefront.domain.models import Order, PaymentMethod, ShippingAddress, IpnAck, PaymentStatus
from storefront.domain.exceptions import (
    ConfigurationError, EmptyCartError, UnsupportedPaymentMethodError, PaymentGatewayError,
    ConcurrentUpdateError, OrderNotFoundError, InvalidSignatureError, UnknownOrderError,
    AlreadySettledError, AmountMismatchError
)
from storefront.infrastructure.unit_of_work import UnitOfWork
from storefront.infrastructure.gateways import VNPayGateway, MoMoGateway

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payment", tags=["Payment"])

# Общие для всех запросов процесса блокировки по id заказа
order_locks = KeyedLock()


# Фабрики для создания use cases
def get_gateways() -> Mapping[PaymentMethod, PaymentGateway]:
    return {
        PaymentMethod.VNPAY: VNPayGateway(settings.vnpay_config()),
        PaymentMethod.MOMO: MoMoGateway(settings.momo_config()),
    }


def get_result_url() -> str:
    return settings.PAYMENT_RESULT_URL


def get_checkout_use_case(
    session_factory=Depends(get_session_factory),
    gateways: Mapping[PaymentMethod, PaymentGateway] = Depends(get_gateways)
):
    return CheckoutUseCase(UnitOfWork(session_factory), gateways)


def get_get_order_use_case(session_factory=Depends(get_session_factory)):
    return GetOrderUseCase(UnitOfWork(session_factory))


def get_list_orders_use_case(session_factory=Depends(get_session_factory)):
    return ListOrdersUseCase(UnitOfWork(session_factory))


def get_reconcile_use_case(session_factory=Depends(get_session_factory)):
    return ReconcilePaymentUseCase(UnitOfWork(session_factory), order_locks)


def client_ip(request: Request) -> str:
    forwarded = request.headers.get("x-forwarded-for")
    if forwarded and settings.TRUST_PROXY:
        return forwarded.split(",")[0].strip()
    return request.client.host if request.client else "127.0.0.1"


async def reconcile_callback(
    gateway: PaymentGateway,
    params: Mapping[str, str],
    use_case: ReconcilePaymentUseCase
) -> Tuple[IpnAck, Optional[Order]]:
    """Проверка подписи -> применение результата. Ничего не поднимает наружу."""
    try:
        callback = gateway.verify_callback(params)
        order = await use_case(callback)
        return IpnAck.CONFIRMED, order
    except InvalidSignatureError:
        logger.warning(f"Неверная подпись callback {gateway.method.value}: {params.get('vnp_TxnRef') or params.get('orderId')}")
        return IpnAck.INVALID_SIGNATURE, None
    except UnknownOrderError:
        return IpnAck.ORDER_NOT_FOUND, None
    except AlreadySettledError as e:
        return IpnAck.ALREADY_CONFIRMED, e.order
    except AmountMismatchError:
        return IpnAck.INVALID_AMOUNT, None
    except Exception as e:
        logger.error(f"Ошибка обработки callback {gateway.method.value}: {e}", exc_info=True)
        return IpnAck.UNKNOWN_ERROR, None


_RETURN_STATUSES = {
    IpnAck.INVALID_SIGNATURE: (status.HTTP_400_BAD_REQUEST, "invalid_signature", "Invalid signature"),
    IpnAck.ORDER_NOT_FOUND: (status.HTTP_404_NOT_FOUND, "not_found", "Order not found"),
    IpnAck.INVALID_AMOUNT: (status.HTTP_400_BAD_REQUEST, "invalid_amount", "Invalid amount"),
    IpnAck.UNKNOWN_ERROR: (status.HTTP_500_INTERNAL_SERVER_ERROR, "error", "Error processing payment return"),
}


def return_response(ack: IpnAck, order: Optional[Order], result_url: str):
    """Ответ браузеру: редирект на страницу результата или JSON"""
    if order is not None:
        if order.payment_status == PaymentStatus.COMPLETED:
            code, result, message = status.HTTP_200_OK, "success", "Payment successful"
        else:
            code, result, message = status.HTTP_400_BAD_REQUEST, "failed", "Payment failed"
    else:
        code, result, message = _RETURN_STATUSES[ack]

    if result_url:
        query = {"status": result}
        if order is not None:
            query["orderId"] = order.id
        return RedirectResponse(f"{result_url}?{urlencode(query)}", status_code=status.HTTP_302_FOUND)

    body = {"success": result == "success", "message": message}
    if order is not None:
        info = order.payment_info
        body["data"] = {
            "orderId": order.id,
            "paymentStatus": order.payment_status.value,
            "transactionId": info.transaction_id if info else None,
            "amount": order.total_amount,
            "code": info.response_code if info else None,
        }
    return JSONResponse(status_code=code, content=body)


@router.post(
    "/create_payment_url",
    response_model=CreatePaymentUrlResponse,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse},
               500: {"model": ErrorResponse}, 502: {"model": ErrorResponse}},
    status_code=status.HTTP_201_CREATED
)
async def create_payment_url(
    body: CreatePaymentUrlRequest,
    request: Request,
    user_id: str = Depends(get_current_user_id),
    use_case: CheckoutUseCase = Depends(get_checkout_use_case)
):
    """Создать заказ из корзины и получить ссылку на оплату"""
    try:
        dto = CheckoutDTO(
            user_id=user_id,
            shipping_address=ShippingAddress(**body.shipping_address.model_dump()),
            payment_method=body.payment_method,
            client_ip=client_ip(request)
        )
        result = await use_case(dto)
        return CreatePaymentUrlResponse(order_id=result.order.id, payment_url=result.payment_url)

    except (EmptyCartError, UnsupportedPaymentMethodError) as e:
        raise HTTPException(status_code=400, detail=str(e))
    except ConcurrentUpdateError as e:
        raise HTTPException(status_code=409, detail=str(e))
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=str(e))
    except PaymentGatewayError as e:
        raise HTTPException(status_code=502, detail=str(e))
    except Exception as e:
        logger.error(f"Ошибка создания платежа: {e}", exc_info=True)
        raise HTTPException(status_code=500, detail="Error creating payment")


@router.get("/orders", response_model=OrderListResponse)
async def list_orders(
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100),
    user_id: str = Depends(get_current_user_id),
    use_case: ListOrdersUseCase = Depends(get_list_orders_use_case)
):
    """История заказов текущего пользователя, новые первыми"""
    return OrderListResponse.from_page(await use_case(user_id, page, limit))


@router.get(
    "/orders/{order_id}",
    response_model=OrderResponse,
    responses={404: {"model": ErrorResponse}}
)
async def get_order(
    order_id: str,
    user_id: str = Depends(get_current_user_id),
    use_case: GetOrderUseCase = Depends(get_get_order_use_case)
):
    """Получить заказ текущего пользователя по ID"""
    try:
        order = await use_case(order_id, user_id)
        return OrderResponse.from_domain(order)
    except OrderNotFoundError:
        raise HTTPException(status_code=404, detail="Order not found")


@router.get("/vnpay_return")
async def vnpay_return(
    request: Request,
    gateways: Mapping[PaymentMethod, PaymentGateway] = Depends(get_gateways),
    use_case: ReconcilePaymentUseCase = Depends(get_reconcile_use_case),
    result_url: str = Depends(get_result_url)
):
    """Возврат покупателя с VNPay (браузерный редирект)"""
    ack, order = await reconcile_callback(gateways[PaymentMethod.VNPAY], dict(request.query_params), use_case)
    return return_response(ack, order, result_url)


@router.get("/vnpay_ipn")
async def vnpay_ipn(
    request: Request,
    gateways: Mapping[PaymentMethod, PaymentGateway] = Depends(get_gateways),
    use_case: ReconcilePaymentUseCase = Depends(get_reconcile_use_case)
):
    """IPN от VNPay: всегда 200, результат в RspCode"""
    gateway = gateways[PaymentMethod.VNPAY]
    ack, _ = await reconcile_callback(gateway, dict(request.query_params), use_case)
    return gateway.ipn_response(ack)


@router.get("/momo_return")
async def momo_return(
    request: Request,
    gateways: Mapping[PaymentMethod, PaymentGateway] = Depends(get_gateways),
    use_case: ReconcilePaymentUseCase = Depends(get_reconcile_use_case),
    result_url: str = Depends(get_result_url)
):
    """Возврат покупателя с MoMo (браузерный редирект)"""
    ack, order = await reconcile_callback(gateways[PaymentMethod.MOMO], dict(request.query_params), use_case)
    return return_response(ack, order, result_url)


@router.post("/momo_ipn")
async def momo_ipn(
    request: Request,
    gateways: Mapping[PaymentMethod, PaymentGateway] = Depends(get_gateways),
    use_case: ReconcilePaymentUseCase = Depends(get_reconcile_use_case)
):
    """IPN от MoMo: всегда 200, результат в resultCode"""
    gateway = gateways[PaymentMethod.MOMO]
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("IPN MoMo: тело запроса не JSON")
        return gateway.ipn_response(IpnAck.UNKNOWN_ERROR)
    if not isinstance(payload, dict):
        return gateway.ipn_response(IpnAck.INVALID_SIGNATURE)

    ack, _ = await reconcile_callback(gateway, payload, use_case)
    return gateway.ipn_response(ack)
