"""
Provider integration errors

Every failure talking to an upstream provider is raised as a ProviderError subclass, so
callers can catch one type per order and record the message in the audit log.
"""

from typing import Optional


class ProviderError(Exception):
    """Base exception for provider API errors"""

    def __init__(self, message: str):
        super().__init__(message)
        self.message = message


class ProviderConfigurationError(ProviderError):
    """Provider or service linkage is missing, inactive or unusable"""
    pass


class ProviderTransportError(ProviderError):
    """Connection-level failure reaching the provider"""
    pass


class ProviderTimeoutError(ProviderTransportError):
    """Provider did not answer within the configured timeout"""
    pass


class ProviderHttpError(ProviderError):
    """Provider answered with a non-2xx HTTP status"""

    def __init__(self, status: int, message: str, body: Optional[str] = None):
        super().__init__(message)
        self.status = status
        self.body = body


class ProviderResponseParseError(ProviderError):
    """Empty, non-JSON or unrecognisable response body"""
    pass


class ProviderApiError(ProviderError):
    """Provider answered with an explicit error field"""

    def __init__(self, message: str, payload=None):
        super().__init__(message)
        self.payload = payload
