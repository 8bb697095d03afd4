"""
Access control gates applied before a request is routed.

CORS: the configured origin list decides which Access-Control-Allow-Origin
header (if any) goes on every response. An empty configuration emits no
header; there is no implicit wildcard.

Authentication: HTTP Basic credentials and/or a pluggable API-key
validator. When at least one scheme is configured a request must pass one
of them.
"""

import base64
import binascii
import hmac
from typing import Any, Callable, Dict, List, Mapping, Optional, Union

from common.logging import get_logger

logger = get_logger(__name__)

ApiKeyValidator = Callable[[str, Dict[str, Any]], bool]

# Sent with every HTTP response, errors and preflights included
SECURITY_HEADERS: Dict[str, str] = {
    "X-Content-Type-Options": "nosniff",
    "X-Frame-Options": "DENY",
    "X-XSS-Protection": "1; mode=block",
    "Referrer-Policy": "strict-origin-when-cross-origin",
    "Content-Security-Policy": "default-src 'none'; frame-ancestors 'none'",
    "Strict-Transport-Security": "max-age=31536000; includeSubDomains",
    "Permissions-Policy": "geolocation=(), microphone=(), camera=()",
}

CORS_ALLOW_METHODS = "POST, GET, OPTIONS"
CORS_ALLOW_HEADERS = "Content-Type, Authorization, X-API-Key, Mcp-Session-Id"


def header(headers: Optional[Mapping[str, str]], name: str) -> Optional[str]:
    """Case-insensitive header lookup."""
    if not headers:
        return None
    lowered = name.lower()
    for key, value in headers.items():
        if key.lower() == lowered:
            return value
    return None


class CorsPolicy:
    """Origin allow-list with `*` and `*.domain` wildcard support."""

    def __init__(self, cors: Union[str, List[str], None] = ""):
        if isinstance(cors, str):
            origins = cors.split(",")
        else:
            origins = list(cors or [])
        self.origins: List[str] = [origin.strip() for origin in origins if origin.strip()]

    @property
    def enabled(self) -> bool:
        return bool(self.origins)

    def is_allowed(self, origin: Optional[str]) -> bool:
        if not origin or not self.enabled:
            return False
        for allowed in self.origins:
            if allowed == "*" or allowed == origin:
                return True
            if allowed.startswith("*."):
                suffix = allowed[1:]  # ".example.com"
                host = origin.split("://", 1)[-1].split(":", 1)[0]
                if host.endswith(suffix) and len(host) > len(suffix):
                    return True
        return False

    def response_headers(self, request_origin: Optional[str] = None) -> Dict[str, str]:
        """Access-Control-Allow-Origin header for a response, if any."""
        if not self.enabled:
            return {}

        # A single literal origin is sent verbatim on every response
        if len(self.origins) == 1 and not self.origins[0].startswith("*."):
            return {"Access-Control-Allow-Origin": self.origins[0]}

        if "*" in self.origins:
            return {"Access-Control-Allow-Origin": "*"}

        if self.is_allowed(request_origin):
            return {"Access-Control-Allow-Origin": request_origin, "Vary": "Origin"}
        return {}

    def preflight_headers(self, request_origin: Optional[str] = None) -> Dict[str, str]:
        headers = self.response_headers(request_origin)
        if headers:
            headers["Access-Control-Allow-Methods"] = CORS_ALLOW_METHODS
            headers["Access-Control-Allow-Headers"] = CORS_ALLOW_HEADERS
            headers["Access-Control-Max-Age"] = "86400"
        return headers


class Authenticator:
    """Basic auth and API-key verification."""

    def __init__(
        self,
        basic_username: Optional[str] = None,
        basic_password: Optional[str] = None,
        api_key_validator: Optional[ApiKeyValidator] = None,
    ):
        self.basic_username = basic_username
        self.basic_password = basic_password
        self.api_key_validator = api_key_validator

    @property
    def has_basic_auth(self) -> bool:
        return bool(self.basic_username) and self.basic_password is not None

    @property
    def has_api_key_validator(self) -> bool:
        return self.api_key_validator is not None

    @property
    def enabled(self) -> bool:
        return self.has_basic_auth or self.has_api_key_validator

    def verify_basic_auth(self, authorization: Optional[str]) -> bool:
        """Check an `Authorization: Basic ...` header value."""
        if not self.has_basic_auth or not authorization:
            return False

        scheme, _, encoded = authorization.strip().partition(" ")
        if scheme.lower() != "basic" or not encoded:
            return False

        try:
            decoded = base64.b64decode(encoded.strip(), validate=True).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return False

        username, sep, password = decoded.partition(":")
        if not sep:
            return False

        user_ok = hmac.compare_digest(username.encode(), self.basic_username.encode())
        password_ok = hmac.compare_digest(password.encode(), self.basic_password.encode())
        return user_ok and password_ok

    def verify_api_key(self, api_key: Optional[str], request_data: Dict[str, Any]) -> bool:
        """Run the configured validator; a failing validator rejects the key."""
        if not self.has_api_key_validator or not api_key:
            return False
        try:
            return bool(self.api_key_validator(api_key, request_data))
        except Exception as e:
            logger.warning(event="api_key_validator_error", error=str(e))
            return False

    @staticmethod
    def extract_api_key(headers: Optional[Mapping[str, str]]) -> Optional[str]:
        api_key = header(headers, "X-API-Key")
        if api_key:
            return api_key.strip()
        authorization = header(headers, "Authorization") or ""
        scheme, _, token = authorization.strip().partition(" ")
        if scheme.lower() == "bearer" and token:
            return token.strip()
        return None

    def authenticate(
        self, headers: Optional[Mapping[str, str]], request_data: Dict[str, Any]
    ) -> bool:
        """True when no scheme is configured or one configured scheme accepts the request."""
        if not self.enabled:
            return True

        if self.has_basic_auth and self.verify_basic_auth(header(headers, "Authorization")):
            return True

        if self.has_api_key_validator:
            return self.verify_api_key(self.extract_api_key(headers), request_data)

        return False

    def challenge_headers(self) -> Dict[str, str]:
        if self.has_basic_auth:
            return {"WWW-Authenticate": 'Basic realm="MCP Server"'}
        return {}
