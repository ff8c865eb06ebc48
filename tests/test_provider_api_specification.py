"""
Tests for building a provider's API dialect description from its stored configuration
"""

from types import SimpleNamespace

from config import Config
from services.provider_api_specification import (
    DEFAULT_AUTH_HEADER,
    ApiDialect,
    ProviderOperation,
    create_api_spec_from_provider,
    resolve_dialect,
)


def make_provider(**kwargs):
    values = {
        "id": 1,
        "api_type": None,
        "http_method": None,
        "timeout_seconds": None,
        "api_key_param": None,
        "action_param": None,
        "auth_header_name": None,
        "endpoint_overrides": None,
        "action_overrides": None,
        "param_overrides": None,
        "field_overrides": None,
    }
    values.update(kwargs)
    return SimpleNamespace(**values)


class TestResolveDialect:

    def test_empty_is_standard(self):
        assert resolve_dialect(None) == ApiDialect.STANDARD
        assert resolve_dialect("") == ApiDialect.STANDARD

    def test_legacy_integer_codes(self):
        assert resolve_dialect("1") == ApiDialect.STANDARD
        assert resolve_dialect(2) == ApiDialect.JSON
        assert resolve_dialect("3") == ApiDialect.LEGACY_V1

    def test_names_and_unknown_values(self):
        assert resolve_dialect("JSON") == ApiDialect.JSON
        assert resolve_dialect("legacy_v1") == ApiDialect.LEGACY_V1
        assert resolve_dialect("soap") == ApiDialect.STANDARD, "Unknown dialects fall back to standard"


class TestCreateApiSpec:
    """create_api_spec_from_provider is a pure mapping"""

    def test_standard_defaults(self):
        spec = create_api_spec_from_provider(make_provider())
        assert spec.dialect == ApiDialect.STANDARD
        assert spec.http_method == "POST", "Method should default to POST"
        assert spec.timeout_seconds == Config.PROVIDER_DEFAULT_TIMEOUT_SECONDS
        assert spec.api_key_param == "key"
        assert spec.action_for(ProviderOperation.ORDER_STATUS) == "status"
        assert not spec.key_in_header
        assert spec.endpoints == {}

    def test_get_method_and_timeout_are_kept(self):
        spec = create_api_spec_from_provider(make_provider(http_method="get", timeout_seconds=12))
        assert spec.http_method == "GET"
        assert spec.timeout_seconds == 12

    def test_json_dialect_forces_post_and_header_auth(self):
        spec = create_api_spec_from_provider(make_provider(api_type="json", http_method="GET"))
        assert spec.http_method == "POST", "JSON dialects always send a body"
        assert spec.key_in_header
        assert spec.auth_header_name == DEFAULT_AUTH_HEADER

    def test_legacy_endpoints_with_override(self):
        spec = create_api_spec_from_provider(make_provider(
            api_type="3",
            endpoint_overrides={"order_status": "/v1/orders/status"},
        ))
        assert spec.endpoints["add_order"] == "/order/add"
        assert spec.endpoints["order_status"] == "/v1/orders/status"

    def test_param_and_action_overrides(self):
        spec = create_api_spec_from_provider(make_provider(
            api_key_param="api_token",
            action_overrides={"status_action": "order_status", "unknown_thing": "x"},
            param_overrides={"order_id_param": "id"},
        ))
        assert spec.api_key_param == "api_token"
        assert spec.status_action == "order_status"
        assert spec.order_id_param == "id"

    def test_field_overrides_take_priority_over_defaults(self):
        spec = create_api_spec_from_provider(make_provider(field_overrides={"remains": "left"}))
        fields = spec.fields_for("remains")
        assert fields[0] == "left", "Provider-specific field name should be checked first"
        assert "remains" in fields, "Default synonyms stay as fallbacks"
