import hashlib
import logging
from datetime import datetime, timedelta, timezone
from typing import Mapping, Optional

import httpx

from storefront.application.interfaces import PaymentGateway
from storefront.config import VNPayConfig, MoMoConfig
from storefront.domain.exceptions import PaymentGatewayError, GatewayUnavailableError
from storefront.domain.models import (
    Order, PaymentMethod, GatewayCallback, CallbackOutcome, IpnAck
)
from storefront.infrastructure.signature import SignatureCodec, canonicalize

logger = logging.getLogger(__name__)

# Вьетнам не переходит на летнее время
VN_TZ = timezone(timedelta(hours=7))
VNPAY_DATE_FORMAT = "%Y%m%d%H%M%S"


def _to_int(value) -> Optional[int]:
    try:
        return int(value)
    except (TypeError, ValueError):
        return None


class VNPayGateway(PaymentGateway):
    """
    Redirect-шлюз VNPay.

    Все параметры запроса подписываются HMAC-SHA512 и передаются в query string
    ссылки, куда перенаправляется браузер покупателя. Return и IPN приходят
    GET-запросом с тем же набором подписанных vnp_* параметров.
    """

    method = PaymentMethod.VNPAY

    VERSION = "2.1.0"
    COMMAND = "pay"
    LOCALE = "vn"
    CURRENCY = "VND"
    ORDER_TYPE = "other"
    # VNPay принимает сумму в сотых долях донга: ровно один множитель
    AMOUNT_MULTIPLIER = 100
    SUCCESS_CODE = "00"
    SIGNATURE_FIELD = "vnp_SecureHash"
    HASH_TYPE_FIELD = "vnp_SecureHashType"

    _ACKS = {
        IpnAck.CONFIRMED: ("00", "success"),
        IpnAck.ALREADY_CONFIRMED: ("02", "Order already confirmed"),
        IpnAck.ORDER_NOT_FOUND: ("01", "Order not found"),
        IpnAck.INVALID_AMOUNT: ("04", "Invalid amount"),
        IpnAck.INVALID_SIGNATURE: ("97", "Fail checksum"),
        IpnAck.UNKNOWN_ERROR: ("99", "Unknown error"),
    }

    def __init__(self, config: VNPayConfig):
        self._config = config
        self._codec = SignatureCodec(
            config.hash_secret,
            digest=hashlib.sha512,
            excluded_fields=(self.HASH_TYPE_FIELD,)
        )

    def ensure_configured(self) -> None:
        self._config.ensure_complete()

    def build_payment_params(self, order: Order, client_ip: str, now: datetime) -> dict:
        local_now = now.astimezone(VN_TZ)
        expire_at = local_now + timedelta(minutes=self._config.expire_minutes)
        return {
            "vnp_Version": self.VERSION,
            "vnp_Command": self.COMMAND,
            "vnp_TmnCode": self._config.tmn_code,
            "vnp_Locale": self.LOCALE,
            "vnp_CurrCode": self.CURRENCY,
            "vnp_TxnRef": order.id,
            "vnp_OrderInfo": f"Thanh toan don hang {order.id}",
            "vnp_OrderType": self.ORDER_TYPE,
            "vnp_Amount": order.total_amount * self.AMOUNT_MULTIPLIER,
            "vnp_ReturnUrl": self._config.return_url,
            "vnp_IpAddr": client_ip,
            "vnp_CreateDate": local_now.strftime(VNPAY_DATE_FORMAT),
            "vnp_ExpireDate": expire_at.strftime(VNPAY_DATE_FORMAT),
        }

    async def create_payment_url(self, order: Order, client_ip: str, now: datetime) -> str:
        self.ensure_configured()
        params = self.build_payment_params(order, client_ip, now)
        signature = self._codec.sign(params)
        logger.info(f"Сформирована ссылка VNPay для заказа {order.id}")
        return f"{self._config.url}?{canonicalize(params)}&{self.SIGNATURE_FIELD}={signature}"

    def verify_callback(self, params: Mapping[str, str]) -> GatewayCallback:
        self.ensure_configured()
        data = self._codec.verify(params, self.SIGNATURE_FIELD)

        order_id = data.get("vnp_TxnRef") or None
        response_code = data.get("vnp_ResponseCode")
        transaction_status = data.get("vnp_TransactionStatus")

        if not order_id:
            outcome = CallbackOutcome.UNKNOWN_ORDER
        elif response_code == self.SUCCESS_CODE and transaction_status in (None, self.SUCCESS_CODE):
            outcome = CallbackOutcome.SUCCESS
        else:
            outcome = CallbackOutcome.FAILURE

        return GatewayCallback(
            gateway=self.method,
            order_id=order_id,
            outcome=outcome,
            transaction_id=data.get("vnp_TransactionNo") or None,
            gateway_amount=_to_int(data.get("vnp_Amount")),
            amount_multiplier=self.AMOUNT_MULTIPLIER,
            paid_at=self._parse_pay_date(data.get("vnp_PayDate")),
            response_code=response_code,
            message=None if outcome == CallbackOutcome.SUCCESS else f"VNPay response code {response_code}"
        )

    def ipn_response(self, ack: IpnAck) -> dict:
        code, message = self._ACKS[ack]
        return {"RspCode": code, "Message": message}

    @staticmethod
    def _parse_pay_date(value: Optional[str]) -> Optional[datetime]:
        if not value:
            return None
        try:
            return datetime.strptime(value, VNPAY_DATE_FORMAT).replace(tzinfo=VN_TZ)
        except ValueError:
            logger.warning(f"Некорректная дата оплаты VNPay: {value}")
            return None


class MoMoGateway(PaymentGateway):
    """
    Callback-шлюз MoMo (captureWallet).

    Ссылку на оплату выдает сам шлюз в ответ на подписанный HMAC-SHA256
    POST-запрос. accessKey участвует в подписи, но в callback не передается.
    """

    method = PaymentMethod.MOMO

    REQUEST_TYPE = "captureWallet"
    LANG = "vi"
    AMOUNT_MULTIPLIER = 1
    SUCCESS_CODES = ("0", "9000")
    SIGNATURE_FIELD = "signature"

    _ACKS = {
        IpnAck.CONFIRMED: (0, "success"),
        IpnAck.ALREADY_CONFIRMED: (0, "Order already confirmed"),
        IpnAck.ORDER_NOT_FOUND: (42, "Order not found"),
        IpnAck.INVALID_AMOUNT: (22, "Invalid amount"),
        IpnAck.INVALID_SIGNATURE: (97, "Invalid signature"),
        IpnAck.UNKNOWN_ERROR: (99, "Unknown error"),
    }

    def __init__(self, config: MoMoConfig, transport: Optional[httpx.AsyncBaseTransport] = None):
        self._config = config
        self._transport = transport
        self._codec = SignatureCodec(config.secret_key, digest=hashlib.sha256)

    def ensure_configured(self) -> None:
        self._config.ensure_complete()

    def build_payment_params(self, order: Order) -> dict:
        return {
            "accessKey": self._config.access_key,
            "partnerCode": self._config.partner_code,
            "requestId": order.id,
            "orderId": order.id,
            "amount": order.total_amount * self.AMOUNT_MULTIPLIER,
            "orderInfo": f"Thanh toan don hang {order.id}",
            "redirectUrl": self._config.redirect_url,
            "ipnUrl": self._config.ipn_url,
            "requestType": self.REQUEST_TYPE,
            "extraData": "",
        }

    async def create_payment_url(self, order: Order, client_ip: str, now: datetime) -> str:
        self.ensure_configured()
        params = self.build_payment_params(order)
        body = {key: value for key, value in params.items() if key != "accessKey"}
        body["lang"] = self.LANG
        body["signature"] = self._codec.sign(params)

        try:
            async with httpx.AsyncClient(transport=self._transport) as client:
                response = await client.post(
                    self._config.endpoint,
                    json=body,
                    timeout=self._config.timeout
                )
        except httpx.TimeoutException as e:
            logger.warning(f"MoMo не ответил вовремя для заказа {order.id}: {e}")
            raise GatewayUnavailableError(f"MoMo не ответил за {self._config.timeout} с")
        except httpx.RequestError as e:
            logger.warning(f"MoMo ошибка подключения для заказа {order.id}: {e}")
            raise GatewayUnavailableError(f"MoMo не доступен: {str(e)}")

        if response.status_code != 200:
            raise PaymentGatewayError(f"MoMo ошибка: {response.status_code}")

        data = response.json()
        if str(data.get("resultCode")) != "0" or not data.get("payUrl"):
            raise PaymentGatewayError(f"MoMo отклонил запрос: {data.get('message')}")

        logger.info(f"Получена ссылка MoMo для заказа {order.id}")
        return data["payUrl"]

    def verify_callback(self, params: Mapping[str, str]) -> GatewayCallback:
        self.ensure_configured()
        signed = dict(params)
        signed["accessKey"] = self._config.access_key
        data = self._codec.verify(signed, self.SIGNATURE_FIELD)

        order_id = data.get("orderId") or None
        result_code = data.get("resultCode")
        result_code = None if result_code is None else str(result_code)

        if not order_id:
            outcome = CallbackOutcome.UNKNOWN_ORDER
        elif result_code in self.SUCCESS_CODES:
            outcome = CallbackOutcome.SUCCESS
        else:
            outcome = CallbackOutcome.FAILURE

        transaction_id = data.get("transId")
        return GatewayCallback(
            gateway=self.method,
            order_id=order_id,
            outcome=outcome,
            transaction_id=None if transaction_id is None else str(transaction_id),
            gateway_amount=_to_int(data.get("amount")),
            amount_multiplier=self.AMOUNT_MULTIPLIER,
            paid_at=self._parse_response_time(data.get("responseTime")),
            response_code=result_code,
            message=None if outcome == CallbackOutcome.SUCCESS else data.get("message")
        )

    def ipn_response(self, ack: IpnAck) -> dict:
        code, message = self._ACKS[ack]
        return {"resultCode": code, "message": message}

    @staticmethod
    def _parse_response_time(value) -> Optional[datetime]:
        millis = _to_int(value)
        if millis is None:
            return None
        return datetime.fromtimestamp(millis / 1000, tz=timezone.utc)
