"""
Tests for outbound request construction across the three provider dialects
"""

import json
from types import SimpleNamespace
from urllib.parse import parse_qs, urlparse

import pytest

from services.provider_api_specification import ApiDialect, create_api_spec_from_provider
from services.provider_errors import ProviderConfigurationError
from services.provider_request_builder import BodyEncoding, ProviderRequestBuilder


def builder_for(api_type=None, http_method=None, api_url="https://provider.example/api/v2", api_key="secret-key-abcdef", **extra):
    provider = SimpleNamespace(
        id=1, api_type=api_type, http_method=http_method, timeout_seconds=None,
        api_key_param=None, action_param=None, auth_header_name=None,
        endpoint_overrides=None, action_overrides=None, param_overrides=None, field_overrides=None,
    )
    for name, value in extra.items():
        setattr(provider, name, value)
    spec = create_api_spec_from_provider(provider)
    return ProviderRequestBuilder(spec, api_url, api_key, spec.http_method)


class TestStandardDialect:
    """Classic SMM v2 API: key + action as form fields"""

    def test_status_request_is_form_post(self):
        request = builder_for().build_order_status_request("9001")
        assert request.method == "POST"
        assert request.encoding == BodyEncoding.FORM
        assert request.url == "https://provider.example/api/v2"
        assert request.body == {"key": "secret-key-abcdef", "action": "status", "order": "9001"}

    def test_order_request_sends_quantity_as_string(self):
        """Quantities are arbitrary-size integers and must not lose precision"""
        request = builder_for().build_order_request(
            service=101, link="https://instagram.com/x", quantity=12345678901234567890, runs=5, interval=30,
        )
        assert request.body["action"] == "add"
        assert request.body["service"] == "101"
        assert request.body["quantity"] == "12345678901234567890"
        assert request.body["runs"] == "5"
        assert request.body["interval"] == "30"
        assert "comments" not in request.body

    def test_get_method_uses_query_string(self):
        request = builder_for(http_method="GET").build_order_status_request("77")
        assert request.method == "GET"
        assert request.body is None
        query = parse_qs(urlparse(request.url).query)
        assert query["key"] == ["secret-key-abcdef"]
        assert query["action"] == ["status"]
        assert query["order"] == ["77"]

    def test_cancel_joins_multiple_ids(self):
        request = builder_for().build_cancel_request(["1", "2", "3"])
        assert request.body["orders"] == "1,2,3"

    def test_redacted_view_masks_key(self):
        request = builder_for().build_order_status_request("1")
        preview = json.dumps(request.redacted())
        assert "secret-key-abcdef" not in preview, "API key must never appear in a log preview"

    def test_missing_credentials_rejected(self):
        with pytest.raises(ProviderConfigurationError):
            builder_for(api_key="")
        with pytest.raises(ProviderConfigurationError):
            builder_for(api_url="")


class TestJsonDialects:

    def test_json_dialect_puts_key_in_header(self):
        request = builder_for(api_type="json").build_refill_request("55")
        assert request.method == "POST"
        assert request.encoding == BodyEncoding.JSON
        assert request.headers["X-API-Key"] == "secret-key-abcdef"
        assert request.body == {"action": "refill", "order": "55"}
        assert "key" not in request.body

    def test_custom_auth_header(self):
        request = builder_for(api_type="json", auth_header_name="Authorization").build_balance_request()
        assert request.headers["Authorization"] == "secret-key-abcdef"
        assert "secret-key-abcdef" not in json.dumps(request.redacted())

    def test_legacy_v1_uses_operation_paths(self):
        builder = builder_for(api_type="legacy_v1", api_url="https://legacy.example/api/")
        assert builder.spec.dialect == ApiDialect.LEGACY_V1

        status = builder.build_order_status_request("9")
        assert status.url == "https://legacy.example/api/order/status"
        assert status.body == {"order": "9"}

        refill_status = builder.build_refill_status_request("r1")
        assert refill_status.url == "https://legacy.example/api/refill/status"
        assert refill_status.body == {"refill": "r1"}
