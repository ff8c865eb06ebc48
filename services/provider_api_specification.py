"""
Provider API Specification
Normalized description of one provider's API dialect, built from stored provider config.

Dialects are a closed set:
- standard:  classic SMM panel v2 API, one endpoint, key + action sent as form/query params
- json:      one endpoint, JSON body with action, key sent in an auth header
- legacy_v1: one path per operation (/order/add, /order/status, ...), JSON body, key in header
"""

import dataclasses
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, Optional, Tuple

from config import Config

logger = logging.getLogger(__name__)


class ApiDialect(Enum):
    STANDARD = "standard"
    JSON = "json"
    LEGACY_V1 = "legacy_v1"


class ProviderOperation(Enum):
    ADD_ORDER = "add_order"
    ORDER_STATUS = "order_status"
    REFILL = "refill"
    REFILL_STATUS = "refill_status"
    CANCEL = "cancel"
    BALANCE = "balance"
    SERVICES = "services"


# Legacy integer dialect codes stored by older admin screens
LEGACY_DIALECT_CODES = {
    "1": ApiDialect.STANDARD,
    "2": ApiDialect.JSON,
    "3": ApiDialect.LEGACY_V1,
}

LEGACY_V1_ENDPOINTS = {
    ProviderOperation.ADD_ORDER.value: "/order/add",
    ProviderOperation.ORDER_STATUS.value: "/order/status",
    ProviderOperation.REFILL.value: "/order/refill",
    ProviderOperation.REFILL_STATUS.value: "/refill/status",
    ProviderOperation.CANCEL.value: "/order/cancel",
    ProviderOperation.BALANCE.value: "/balance",
    ProviderOperation.SERVICES.value: "/services",
}

DEFAULT_AUTH_HEADER = "X-API-Key"

# Synonym field names per concept, checked in order
DEFAULT_RESPONSE_FIELDS: Dict[str, Tuple[str, ...]] = {
    "order_id": ("order", "order_id", "orderId", "id"),
    "status": ("status", "order_status", "orderStatus", "state"),
    "start_count": ("start_count", "startCount", "start"),
    "remains": ("remains", "remaining", "remain"),
    "charge": ("charge", "cost", "price"),
    "currency": ("currency",),
    "refill_id": ("refill", "refill_id", "refillId"),
    "refill_available": ("refill_available", "refillAvailable", "can_refill", "canRefill"),
    "cancel_id": ("cancel", "cancel_id", "cancelId"),
    "balance": ("balance", "funds"),
    "error": ("error", "error_message", "errorMessage"),
}


@dataclass(frozen=True)
class ProviderApiSpecification:
    """Everything needed to talk to one provider, with no I/O attached"""
    dialect: ApiDialect = ApiDialect.STANDARD
    http_method: str = "POST"
    timeout_seconds: int = 30

    # Credential placement
    api_key_param: str = "key"
    auth_header_name: Optional[str] = None

    # Action names
    action_param: str = "action"
    add_order_action: str = "add"
    status_action: str = "status"
    refill_action: str = "refill"
    refill_status_action: str = "refill_status"
    cancel_action: str = "cancel"
    balance_action: str = "balance"
    services_action: str = "services"

    # Request parameter names
    service_id_param: str = "service"
    link_param: str = "link"
    quantity_param: str = "quantity"
    runs_param: str = "runs"
    interval_param: str = "interval"
    comments_param: str = "comments"
    order_id_param: str = "order"
    orders_param: str = "orders"
    refill_id_param: str = "refill"
    refills_param: str = "refills"

    # Per-operation paths, only used by path-per-operation dialects
    endpoints: Dict[str, str] = field(default_factory=dict)

    response_fields: Dict[str, Tuple[str, ...]] = field(
        default_factory=lambda: dict(DEFAULT_RESPONSE_FIELDS)
    )

    @property
    def key_in_header(self) -> bool:
        return self.dialect in (ApiDialect.JSON, ApiDialect.LEGACY_V1)

    @property
    def uses_json_body(self) -> bool:
        return self.dialect in (ApiDialect.JSON, ApiDialect.LEGACY_V1)

    def action_for(self, operation: ProviderOperation) -> str:
        return {
            ProviderOperation.ADD_ORDER: self.add_order_action,
            ProviderOperation.ORDER_STATUS: self.status_action,
            ProviderOperation.REFILL: self.refill_action,
            ProviderOperation.REFILL_STATUS: self.refill_status_action,
            ProviderOperation.CANCEL: self.cancel_action,
            ProviderOperation.BALANCE: self.balance_action,
            ProviderOperation.SERVICES: self.services_action,
        }[operation]

    def fields_for(self, concept: str) -> Tuple[str, ...]:
        return self.response_fields.get(concept, ())


DEFAULT_SMM_API_SPEC = ProviderApiSpecification()

# Names a provider's param_overrides may set
_OVERRIDABLE_NAMES = {
    f.name for f in dataclasses.fields(ProviderApiSpecification)
    if f.name.endswith("_param") or f.name.endswith("_action")
}


def resolve_dialect(api_type: Any) -> ApiDialect:
    """Accept the enum value, its name or the legacy integer code; unknown -> standard"""
    if api_type is None or api_type == "":
        return ApiDialect.STANDARD
    if isinstance(api_type, ApiDialect):
        return api_type
    text = str(api_type).strip().lower()
    if text in LEGACY_DIALECT_CODES:
        return LEGACY_DIALECT_CODES[text]
    for dialect in ApiDialect:
        if text == dialect.value or text == dialect.name.lower():
            return dialect
    logger.warning(f"⚠️ UNKNOWN_API_DIALECT: '{api_type}' - falling back to standard")
    return ApiDialect.STANDARD


def _as_field_tuple(value: Any) -> Tuple[str, ...]:
    if isinstance(value, str):
        return (value,)
    return tuple(str(v) for v in value or ())


def create_api_spec_from_provider(provider) -> ProviderApiSpecification:
    """
    Build the dialect description for a provider row.

    Pure mapping from stored configuration: no I/O, no database access.
    """
    dialect = resolve_dialect(getattr(provider, "api_type", None))

    method = (getattr(provider, "http_method", None) or Config.PROVIDER_DEFAULT_HTTP_METHOD).upper()
    if method not in ("GET", "POST"):
        logger.warning(f"⚠️ UNSUPPORTED_HTTP_METHOD: provider {getattr(provider, 'id', '?')} uses {method}, using POST")
        method = "POST"
    # JSON dialects always carry a body
    if dialect != ApiDialect.STANDARD:
        method = "POST"

    timeout = getattr(provider, "timeout_seconds", None) or Config.PROVIDER_DEFAULT_TIMEOUT_SECONDS

    overrides: Dict[str, Any] = {}
    for name in ("api_key_param", "action_param"):
        value = getattr(provider, name, None)
        if value:
            overrides[name] = value
    for source in ("action_overrides", "param_overrides"):
        for name, value in (getattr(provider, source, None) or {}).items():
            if name in _OVERRIDABLE_NAMES and value:
                overrides[name] = str(value)
            else:
                logger.warning(f"⚠️ IGNORED_SPEC_OVERRIDE: {source}.{name}")

    auth_header = getattr(provider, "auth_header_name", None)
    if dialect != ApiDialect.STANDARD:
        auth_header = auth_header or DEFAULT_AUTH_HEADER

    endpoints = dict(LEGACY_V1_ENDPOINTS) if dialect == ApiDialect.LEGACY_V1 else {}
    endpoints.update(getattr(provider, "endpoint_overrides", None) or {})

    response_fields = dict(DEFAULT_RESPONSE_FIELDS)
    for concept, names in (getattr(provider, "field_overrides", None) or {}).items():
        # Provider-specific names win, the defaults stay as fallbacks
        custom = _as_field_tuple(names)
        response_fields[concept] = custom + tuple(
            n for n in response_fields.get(concept, ()) if n not in custom
        )

    return dataclasses.replace(
        DEFAULT_SMM_API_SPEC,
        dialect=dialect,
        http_method=method,
        timeout_seconds=int(timeout),
        auth_header_name=auth_header,
        endpoints=endpoints,
        response_fields=response_fields,
        **overrides,
    )
