"""
Provider Response Parser
Maps arbitrary provider JSON payloads into canonical records.

Optional fields are tagged: a field the provider did not send is UNKNOWN, which is
distinct from a field the provider sent as zero. Callers keep the previous value for
UNKNOWN fields.
"""

import json
import logging
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal
from typing import Any, Dict, List, Optional, Union

from services.provider_api_specification import ProviderApiSpecification
from services.provider_errors import ProviderApiError, ProviderResponseParseError
from services.provider_status_mapper import ProviderStatusMapper
from utils.helpers import to_decimal, to_non_negative_int, truncate

logger = logging.getLogger(__name__)

# Scale of orders.charge
CHARGE_QUANTUM = Decimal("0.00000001")


class _Unknown:
    """Marker for 'provider did not send this field'"""
    _instance = None

    def __new__(cls):
        if cls._instance is None:
            cls._instance = super().__new__(cls)
        return cls._instance

    def __repr__(self):
        return "UNKNOWN"

    def __bool__(self):
        return False


UNKNOWN = _Unknown()


def is_known(value: Any) -> bool:
    return value is not UNKNOWN


_FALSE_VALUES = (False, 0, "0", "false", "False", "no")
_TRUE_VALUES = (True, 1, "1", "true", "True", "yes")


@dataclass
class ParsedOrderStatus:
    """Canonical order status record: {status, startCount, remains, charge}"""
    status: Any = UNKNOWN                 # canonical status, UNKNOWN when absent
    raw_status: Optional[str] = None
    start_count: Any = UNKNOWN            # int | UNKNOWN
    remains: Any = UNKNOWN                # int | UNKNOWN
    charge: Any = UNKNOWN                 # Decimal | UNKNOWN
    currency: Any = UNKNOWN               # str | UNKNOWN
    refill_available: Optional[bool] = None
    raw: Dict[str, Any] = field(default_factory=dict)

    def known_fields(self) -> Dict[str, Any]:
        """Only the numeric fields the provider actually sent"""
        values = {
            "start_count": self.start_count,
            "remains": self.remains,
            "charge": self.charge,
        }
        return {k: v for k, v in values.items() if is_known(v)}


@dataclass
class ParsedSubmitResult:
    provider_order_id: str
    raw_status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ParsedRefillResult:
    provider_refill_id: str
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ParsedRefillStatus:
    status: Optional[str]                 # canonical refill status, None when unrecognised
    raw_status: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


@dataclass
class ParsedCancelResult:
    provider_order_id: Optional[str]
    provider_cancel_id: Optional[str] = None
    error: Optional[str] = None


@dataclass
class ParsedBalance:
    balance: Decimal
    currency: Optional[str] = None
    raw: Dict[str, Any] = field(default_factory=dict)


class ProviderResponseParser:
    """Parses provider payloads according to one ProviderApiSpecification"""

    def __init__(self, spec: ProviderApiSpecification):
        self.spec = spec

    # ------------------------------------------------------------------ decoding

    @staticmethod
    def decode(raw: Union[str, bytes, Dict, List, None], encoding: str = "utf-8") -> Any:
        """Decode a raw body; empty, undecodable or non-JSON bodies are parse failures"""
        if raw is None:
            raise ProviderResponseParseError("Empty response from provider")
        if isinstance(raw, bytes):
            try:
                raw = raw.decode(encoding)
            except (UnicodeDecodeError, LookupError):
                raise ProviderResponseParseError(
                    f"Undecodable {encoding} body from provider: {truncate(raw.decode('latin-1'))}"
                )
        if isinstance(raw, str):
            if not raw.strip():
                raise ProviderResponseParseError("Empty response from provider")
            try:
                return json.loads(raw)
            except ValueError:
                raise ProviderResponseParseError(f"Invalid JSON from provider: {truncate(raw)}")
        return raw

    def _decode_object(self, raw) -> Dict[str, Any]:
        data = self.decode(raw)
        if not isinstance(data, dict):
            raise ProviderResponseParseError(f"Unexpected response shape from provider: {type(data).__name__}")
        if not data:
            raise ProviderResponseParseError("Empty response from provider")
        self._raise_for_error(data)
        return data

    def _first(self, data: Dict[str, Any], concept: str) -> Any:
        for name in self.spec.fields_for(concept):
            if name in data and data[name] is not None and data[name] != "":
                return data[name]
        return UNKNOWN

    def _raise_for_error(self, data: Dict[str, Any]):
        error = self._first(data, "error")
        if is_known(error) and error:
            message = error if isinstance(error, str) else json.dumps(error, default=str)
            raise ProviderApiError(f"Provider error: {truncate(message)}", payload=data)

    # ------------------------------------------------------------------ order status

    def parse_order_status_response(self, raw) -> ParsedOrderStatus:
        data = self._decode_object(raw)

        raw_status = self._first(data, "status")
        start_count = self._first(data, "start_count")
        remains = self._first(data, "remains")
        charge = self._first(data, "charge")

        if not any(is_known(v) for v in (raw_status, start_count, remains, charge)):
            raise ProviderResponseParseError(f"Unrecognised provider response: {truncate(json.dumps(data, default=str))}")

        parsed = ParsedOrderStatus(raw=data)
        if is_known(raw_status):
            parsed.raw_status = str(raw_status)
            parsed.status = ProviderStatusMapper.map_order_status(parsed.raw_status)

        parsed.start_count = self._quantity(start_count, "start_count")
        parsed.remains = self._quantity(remains, "remains")
        if is_known(charge):
            value = to_decimal(charge)
            if value is None:
                logger.warning(f"⚠️ UNPARSEABLE_FIELD: charge={charge!r} ignored")
            else:
                parsed.charge = value.quantize(CHARGE_QUANTUM, rounding=ROUND_HALF_UP)

        currency = self._first(data, "currency")
        if is_known(currency):
            parsed.currency = str(currency)

        parsed.refill_available = self._tri_state(self._first(data, "refill_available"))
        return parsed

    @staticmethod
    def _quantity(value: Any, name: str) -> Any:
        if not is_known(value):
            return UNKNOWN
        number = to_non_negative_int(value)
        if number is None:
            logger.warning(f"⚠️ UNPARSEABLE_FIELD: {name}={value!r} ignored")
            return UNKNOWN
        return number

    @staticmethod
    def _tri_state(value: Any) -> Optional[bool]:
        if not is_known(value):
            return None
        if value in _FALSE_VALUES:
            return False
        if value in _TRUE_VALUES:
            return True
        return bool(value)

    # ------------------------------------------------------------------ write operations

    def parse_order_response(self, raw) -> ParsedSubmitResult:
        data = self._decode_object(raw)
        order_id = self._first(data, "order_id")
        if not is_known(order_id):
            raise ProviderResponseParseError("Provider response did not include an order id")
        raw_status = self._first(data, "status")
        return ParsedSubmitResult(
            provider_order_id=str(order_id),
            raw_status=str(raw_status) if is_known(raw_status) else None,
            raw=data,
        )

    def parse_refill_response(self, raw) -> ParsedRefillResult:
        data = self._decode_object(raw)
        refill_id = self._first(data, "refill_id")
        if isinstance(refill_id, dict):
            self._raise_for_error(refill_id)
            refill_id = self._first(refill_id, "refill_id")
        if not is_known(refill_id):
            raise ProviderResponseParseError("Provider response did not include a refill id")
        return ParsedRefillResult(provider_refill_id=str(refill_id), raw=data)

    def parse_refill_status_response(self, raw) -> ParsedRefillStatus:
        data = self._decode_object(raw)
        raw_status = self._first(data, "status")
        if not is_known(raw_status):
            raise ProviderResponseParseError("Provider response did not include a refill status")
        return ParsedRefillStatus(
            status=ProviderStatusMapper.map_refill_status(str(raw_status)),
            raw_status=str(raw_status),
            raw=data,
        )

    def parse_cancel_response(self, raw) -> List[ParsedCancelResult]:
        """Accepts a single object or the list-of-results shape"""
        data = self.decode(raw)
        if isinstance(data, dict):
            if not data:
                raise ProviderResponseParseError("Empty response from provider")
            self._raise_for_error(data)
            items = [data]
        elif isinstance(data, list) and data:
            items = data
        else:
            raise ProviderResponseParseError("Empty response from provider")

        results = []
        for item in items:
            if not isinstance(item, dict):
                raise ProviderResponseParseError(f"Unexpected cancel result: {truncate(str(item))}")
            order_id = self._first(item, "order_id")
            cancel = self._first(item, "cancel_id")
            error = None
            cancel_id = None
            if isinstance(cancel, dict):
                err = self._first(cancel, "error")
                error = str(err) if is_known(err) else None
                if error is None:
                    inner = self._first(cancel, "cancel_id")
                    cancel_id = str(inner) if is_known(inner) else None
            elif is_known(cancel):
                cancel_id = str(cancel)
            else:
                err = self._first(item, "error")
                error = str(err) if is_known(err) else "Provider response did not include a cancel id"
            results.append(ParsedCancelResult(
                provider_order_id=str(order_id) if is_known(order_id) else None,
                provider_cancel_id=cancel_id,
                error=error,
            ))
        return results

    def parse_balance_response(self, raw) -> ParsedBalance:
        data = self._decode_object(raw)
        value = self._first(data, "balance")
        balance = to_decimal(value) if is_known(value) else None
        if balance is None:
            raise ProviderResponseParseError("Provider response did not include a balance")
        currency = self._first(data, "currency")
        return ParsedBalance(balance=balance, currency=str(currency) if is_known(currency) else None, raw=data)
