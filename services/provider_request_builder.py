"""
Provider Request Builder
Turns a ProviderApiSpecification plus call arguments into a concrete outbound request.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Dict, Iterable, Optional, Union
from urllib.parse import urlencode

from services.provider_api_specification import (
    ApiDialect,
    ProviderApiSpecification,
    ProviderOperation,
)
from services.provider_errors import ProviderConfigurationError
from utils.data_sanitizer import DataSanitizer

logger = logging.getLogger(__name__)


class BodyEncoding:
    FORM = "form"
    JSON = "json"
    NONE = "none"


@dataclass
class ProviderRequest:
    """A fully built outbound call: {url, method, headers, body}"""
    url: str
    method: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[Dict[str, Any]] = None
    encoding: str = BodyEncoding.FORM
    operation: Optional[ProviderOperation] = None
    secret_keys: frozenset = frozenset()

    def redacted(self) -> Dict[str, Any]:
        """Loggable view with the credential masked wherever it was placed"""
        url = self.url
        if "?" in url:
            url = url.split("?", 1)[0] + "?[query redacted]"
        return {
            "url": url,
            "method": self.method,
            "headers": DataSanitizer.mask_mapping(self.headers, set(self.secret_keys)),
            "body": DataSanitizer.mask_mapping(self.body, set(self.secret_keys)),
        }


class ProviderRequestBuilder:
    """Builds submit / status / refill / cancel / balance requests for one provider"""

    def __init__(self, spec: ProviderApiSpecification, base_url: str, api_key: str, method: Optional[str] = None):
        if not base_url:
            raise ProviderConfigurationError("Provider API URL is not configured")
        if not api_key:
            raise ProviderConfigurationError("Provider API key is not configured")
        self.spec = spec
        self.base_url = base_url.rstrip("/") if spec.dialect == ApiDialect.LEGACY_V1 else base_url
        self.api_key = api_key
        self.method = (method or spec.http_method or "POST").upper()
        if spec.dialect != ApiDialect.STANDARD:
            self.method = "POST"

    # ------------------------------------------------------------------ builders

    def build_order_request(
        self,
        service: Union[str, int],
        link: str,
        quantity: Optional[int] = None,
        comments: Optional[str] = None,
        runs: Optional[int] = None,
        interval: Optional[int] = None,
    ) -> ProviderRequest:
        spec = self.spec
        params: Dict[str, Any] = {
            spec.service_id_param: str(service),
            spec.link_param: link,
        }
        if quantity is not None:
            # Arbitrary-size quantity travels as a decimal string, never as a float
            params[spec.quantity_param] = str(quantity)
        if comments:
            params[spec.comments_param] = comments
        if runs:
            params[spec.runs_param] = str(runs)
        if interval:
            params[spec.interval_param] = str(interval)
        return self._build(ProviderOperation.ADD_ORDER, params)

    def build_order_status_request(self, provider_order_id: str) -> ProviderRequest:
        return self._build(ProviderOperation.ORDER_STATUS, {self.spec.order_id_param: str(provider_order_id)})

    def build_refill_request(self, provider_order_id: str) -> ProviderRequest:
        return self._build(ProviderOperation.REFILL, {self.spec.order_id_param: str(provider_order_id)})

    def build_refill_status_request(self, provider_refill_id: str) -> ProviderRequest:
        return self._build(ProviderOperation.REFILL_STATUS, {self.spec.refill_id_param: str(provider_refill_id)})

    def build_cancel_request(self, provider_order_ids: Union[str, Iterable[str]]) -> ProviderRequest:
        if isinstance(provider_order_ids, (str, int)):
            ids = [str(provider_order_ids)]
        else:
            ids = [str(i) for i in provider_order_ids]
        if not ids:
            raise ProviderConfigurationError("No provider order ids to cancel")
        return self._build(ProviderOperation.CANCEL, {self.spec.orders_param: ",".join(ids)})

    def build_balance_request(self) -> ProviderRequest:
        return self._build(ProviderOperation.BALANCE, {})

    # ------------------------------------------------------------------ internals

    def _build(self, operation: ProviderOperation, params: Dict[str, Any]) -> ProviderRequest:
        if self.spec.dialect == ApiDialect.STANDARD:
            return self._build_standard(operation, params)
        return self._build_json(operation, params)

    def _build_standard(self, operation: ProviderOperation, params: Dict[str, Any]) -> ProviderRequest:
        spec = self.spec
        payload = {spec.api_key_param: self.api_key, spec.action_param: spec.action_for(operation)}
        payload.update(params)
        secret_keys = frozenset({spec.api_key_param})

        if self.method == "GET":
            separator = "&" if "?" in self.base_url else "?"
            return ProviderRequest(
                url=f"{self.base_url}{separator}{urlencode(payload)}",
                method="GET",
                headers={},
                body=None,
                encoding=BodyEncoding.NONE,
                operation=operation,
                secret_keys=secret_keys,
            )

        return ProviderRequest(
            url=self.base_url,
            method="POST",
            headers={"Content-Type": "application/x-www-form-urlencoded"},
            body=payload,
            encoding=BodyEncoding.FORM,
            operation=operation,
            secret_keys=secret_keys,
        )

    def _build_json(self, operation: ProviderOperation, params: Dict[str, Any]) -> ProviderRequest:
        spec = self.spec
        header_name = spec.auth_header_name or "X-API-Key"
        headers = {"Content-Type": "application/json", header_name: self.api_key}

        if spec.dialect == ApiDialect.LEGACY_V1:
            path = spec.endpoints.get(operation.value)
            if not path:
                raise ProviderConfigurationError(f"No endpoint configured for {operation.value}")
            url = f"{self.base_url}/{path.lstrip('/')}"
            body = dict(params)
        else:
            url = self.base_url
            body = {spec.action_param: spec.action_for(operation)}
            body.update(params)

        return ProviderRequest(
            url=url,
            method="POST",
            headers=headers,
            body=body,
            encoding=BodyEncoding.JSON,
            operation=operation,
            secret_keys=frozenset({header_name}),
        )
