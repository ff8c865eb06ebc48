"""
Provider Order Forwarder
Single-attempt forwarding of orders, refills and cancels to one provider.

Write operations never raise: every failure comes back as a result with ``error`` set,
and the caller decides what to persist. There is no retry here. Status queries raise
ProviderError subclasses so the reconciliation loop can record the failure per order.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Tuple, Union

from services.provider_api_specification import (
    ProviderApiSpecification,
    create_api_spec_from_provider,
)
from services.provider_errors import ProviderConfigurationError, ProviderError
from services.provider_http_client import ProviderHttpClient
from services.provider_request_builder import ProviderRequestBuilder
from services.provider_response_parser import (
    ParsedOrderStatus,
    ParsedRefillStatus,
    ProviderResponseParser,
)
from utils.data_sanitizer import mask_api_key_safe

logger = logging.getLogger(__name__)


@dataclass
class OrderSubmission:
    """What a new order sends upstream"""
    service: Union[str, int]
    link: str
    quantity: Optional[int] = None
    comments: Optional[str] = None
    runs: Optional[int] = None
    interval: Optional[int] = None


@dataclass
class ForwardResult:
    order: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    raw: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {"order": self.order, "status": self.status, "error": self.error}


@dataclass
class RefillForwardResult:
    refill: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    raw: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {"refill": self.refill, "status": self.status, "error": self.error}


@dataclass
class CancelForwardResult:
    cancel: Optional[str] = None
    status: Optional[str] = None
    error: Optional[str] = None
    raw: Any = None

    @property
    def ok(self) -> bool:
        return self.error is None

    def to_dict(self) -> Dict[str, Any]:
        return {"cancel": self.cancel, "status": self.status, "error": self.error}


@dataclass
class BalanceResult:
    balance: Optional[str] = None
    currency: Optional[str] = None
    error: Optional[str] = None
    raw: Any = field(default=None, repr=False)

    @property
    def ok(self) -> bool:
        return self.error is None


class ProviderOrderForwarder:
    """Talks to providers on behalf of order, refill and cancel handlers"""

    def __init__(self, http_client: Optional[Any] = None):
        # Anything with an async send(request, timeout_seconds) works as transport
        self.http_client = http_client or ProviderHttpClient()

    def _prepare(self, provider) -> Tuple[ProviderApiSpecification, ProviderRequestBuilder, ProviderResponseParser]:
        if provider is None:
            raise ProviderConfigurationError("Provider not found")
        if not provider.is_active:
            raise ProviderConfigurationError(f"Provider {provider.name} is not active")
        spec = create_api_spec_from_provider(provider)
        builder = ProviderRequestBuilder(spec, provider.api_url, provider.api_key, spec.http_method)
        return spec, builder, ProviderResponseParser(spec)

    async def _send(self, provider, spec: ProviderApiSpecification, request) -> Any:
        logger.debug(
            f"PROVIDER_REQUEST: provider={provider.id} key={mask_api_key_safe(provider.api_key)} "
            f"request={request.redacted()}"
        )
        return await self.http_client.send(request, spec.timeout_seconds)

    # ------------------------------------------------------------------ write operations

    async def forward_order_to_provider(self, provider, submission: OrderSubmission) -> ForwardResult:
        """Submit a new order; failures come back as ForwardResult(error=...)"""
        raw = None
        try:
            spec, builder, parser = self._prepare(provider)
            request = builder.build_order_request(
                service=submission.service,
                link=submission.link,
                quantity=submission.quantity,
                comments=submission.comments,
                runs=submission.runs,
                interval=submission.interval,
            )
            raw = await self._send(provider, spec, request)
            parsed = parser.parse_order_response(raw)
            logger.info(
                f"✅ FORWARD_ORDER_OK: provider={provider.id} service={submission.service} "
                f"provider_order={parsed.provider_order_id}"
            )
            return ForwardResult(order=parsed.provider_order_id, status=parsed.raw_status, raw=raw)
        except ProviderError as e:
            logger.error(f"❌ FORWARD_ORDER_FAILED: provider={getattr(provider, 'id', None)} error={e.message}")
            return ForwardResult(error=e.message, raw=raw)

    async def forward_refill_order_to_provider(self, provider, provider_order_id: str) -> RefillForwardResult:
        raw = None
        try:
            if not provider_order_id:
                raise ProviderConfigurationError("Order has no provider order id")
            spec, builder, parser = self._prepare(provider)
            raw = await self._send(provider, spec, builder.build_refill_request(provider_order_id))
            parsed = parser.parse_refill_response(raw)
            logger.info(
                f"✅ FORWARD_REFILL_OK: provider={provider.id} provider_order={provider_order_id} "
                f"refill={parsed.provider_refill_id}"
            )
            return RefillForwardResult(refill=parsed.provider_refill_id, status="success", raw=raw)
        except ProviderError as e:
            logger.error(
                f"❌ FORWARD_REFILL_FAILED: provider={getattr(provider, 'id', None)} "
                f"provider_order={provider_order_id} error={e.message}"
            )
            return RefillForwardResult(error=e.message, raw=raw)

    async def forward_cancel_to_provider(
        self, provider, provider_order_ids: Union[str, Iterable[str]]
    ) -> CancelForwardResult:
        """Cancel one or more provider orders; the result describes the first one"""
        raw = None
        try:
            spec, builder, parser = self._prepare(provider)
            raw = await self._send(provider, spec, builder.build_cancel_request(provider_order_ids))
            results = parser.parse_cancel_response(raw)
            first = results[0]
            if first.error:
                logger.error(f"❌ FORWARD_CANCEL_REJECTED: provider={provider.id} error={first.error}")
                return CancelForwardResult(error=first.error, raw=raw)
            logger.info(f"✅ FORWARD_CANCEL_OK: provider={provider.id} cancel={first.provider_cancel_id}")
            return CancelForwardResult(cancel=first.provider_cancel_id, status="success", raw=raw)
        except ProviderError as e:
            logger.error(f"❌ FORWARD_CANCEL_FAILED: provider={getattr(provider, 'id', None)} error={e.message}")
            return CancelForwardResult(error=e.message, raw=raw)

    async def check_provider_balance(self, provider) -> BalanceResult:
        try:
            spec, builder, parser = self._prepare(provider)
            raw = await self._send(provider, spec, builder.build_balance_request())
            parsed = parser.parse_balance_response(raw)
            return BalanceResult(balance=str(parsed.balance), currency=parsed.currency, raw=raw)
        except ProviderError as e:
            logger.error(f"❌ PROVIDER_BALANCE_FAILED: provider={getattr(provider, 'id', None)} error={e.message}")
            return BalanceResult(error=e.message)

    # ------------------------------------------------------------------ read operations

    async def fetch_order_status(self, provider, provider_order_id: str) -> ParsedOrderStatus:
        """Query one order's upstream status; raises ProviderError on any failure"""
        spec, builder, parser = self._prepare(provider)
        raw = await self._send(provider, spec, builder.build_order_status_request(provider_order_id))
        return parser.parse_order_status_response(raw)

    async def fetch_refill_status(self, provider, provider_refill_id: str) -> ParsedRefillStatus:
        spec, builder, parser = self._prepare(provider)
        raw = await self._send(provider, spec, builder.build_refill_status_request(provider_refill_id))
        return parser.parse_refill_status_response(raw)

    async def close(self):
        close = getattr(self.http_client, "close", None)
        if close is not None:
            await close()
