"""
Data Sanitization for provider credentials
Keeps API keys and other secrets out of logs and stored request previews
"""

import logging
from typing import Any, Dict, Optional

logger = logging.getLogger(__name__)

SENSITIVE_KEYS = {"key", "api_key", "apikey", "token", "secret", "password", "authorization"}


class DataSanitizer:
    """Masking helpers for logging outbound provider traffic"""

    @classmethod
    def mask_api_key(cls, api_key: Optional[str], show_chars: int = 2) -> str:
        """
        Mask a provider API key for log lines and request previews.

        Keys too short to keep any characters are fully redacted.
        """
        if not api_key:
            return "[NO_API_KEY]"

        if len(api_key) <= show_chars * 2:
            return "[REDACTED]"

        return f"[API_KEY:{api_key[:show_chars]}***{api_key[-show_chars:]}]"

    @classmethod
    def mask_mapping(cls, data: Optional[Dict[str, Any]], extra_keys: Optional[set] = None) -> Dict[str, Any]:
        """Return a copy of a header/body mapping with credential values masked"""
        if not data:
            return {}
        sensitive = {k.lower() for k in SENSITIVE_KEYS | (extra_keys or set())}
        masked = {}
        for key, value in data.items():
            if key.lower() in sensitive:
                masked[key] = cls.mask_api_key(str(value) if value is not None else None)
            else:
                masked[key] = value
        return masked


data_sanitizer = DataSanitizer()


def mask_api_key_safe(api_key: Optional[str]) -> str:
    """Module-level shortcut used by the forwarder debug log"""
    return data_sanitizer.mask_api_key(api_key)
