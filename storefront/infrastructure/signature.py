import hashlib
import hmac
import logging
from typing import Mapping, Union, Iterable
from urllib.parse import quote_plus

from storefront.domain.exceptions import InvalidSignatureError

logger = logging.getLogger(__name__)

ParamValue = Union[str, int]
GatewayParams = Mapping[str, ParamValue]


def encode_component(value: ParamValue) -> str:
    """Percent-encoding как application/x-www-form-urlencoded: пробел -> '+'"""
    return quote_plus(str(value), safe="")


def canonicalize(params: GatewayParams) -> str:
    """
    Детерминированное представление параметров для подписи.

    Ключи и значения кодируются, пары сортируются по закодированному ключу
    и склеиваются через '&' без повторного экранирования. Значения None пропускаются.
    """
    encoded = [
        (encode_component(key), encode_component(value))
        for key, value in params.items()
        if value is not None
    ]
    encoded.sort(key=lambda pair: pair[0].encode("utf-8"))
    return "&".join(f"{key}={value}" for key, value in encoded)


class SignatureCodec:
    def __init__(self, secret: str, digest=hashlib.sha512, excluded_fields: Iterable[str] = ()):
        self._secret = secret.encode("utf-8")
        self._digest = digest
        self._excluded = frozenset(excluded_fields)

    def sign(self, params: GatewayParams) -> str:
        payload = canonicalize(params).encode("utf-8")
        return hmac.new(self._secret, payload, self._digest).hexdigest()

    def verify(self, params: GatewayParams, signature_field: str) -> dict:
        """
        Проверяет подпись входящего набора параметров.

        Возвращает параметры без полей подписи, при несовпадении
        поднимает InvalidSignatureError.
        """
        received = params.get(signature_field)
        unsigned = {
            key: value for key, value in params.items()
            if key != signature_field and key not in self._excluded
        }
        if not received or not isinstance(received, str):
            raise InvalidSignatureError("Fail checksum")

        expected = self.sign(unsigned)
        if not hmac.compare_digest(expected.encode("ascii"), received.lower().encode("utf-8")):
            raise InvalidSignatureError("Fail checksum")
        return unsigned
