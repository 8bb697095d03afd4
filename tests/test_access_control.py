"""
Tests for CORS policy and authentication.
"""

import base64

from mcpserver.access_control import Authenticator, CorsPolicy, header


def basic(username: str, password: str) -> str:
    token = base64.b64encode(f"{username}:{password}".encode()).decode()
    return f"Basic {token}"


class TestCorsPolicy:
    def test_disabled_emits_nothing(self):
        policy = CorsPolicy("")

        assert not policy.enabled
        assert policy.response_headers("https://a.example.com") == {}
        assert not policy.is_allowed("https://a.example.com")

    def test_single_origin_is_sent_verbatim(self):
        policy = CorsPolicy("https://app.example.com")

        assert policy.response_headers() == {"Access-Control-Allow-Origin": "https://app.example.com"}
        assert policy.response_headers("https://evil.com") == {
            "Access-Control-Allow-Origin": "https://app.example.com"
        }

    def test_wildcard(self):
        policy = CorsPolicy("*")

        assert policy.is_allowed("https://anything.test")
        assert policy.response_headers("https://anything.test") == {"Access-Control-Allow-Origin": "*"}

    def test_multiple_origins_reflect_match(self):
        policy = CorsPolicy("https://a.example.com, https://b.example.com")

        assert policy.origins == ["https://a.example.com", "https://b.example.com"]
        assert policy.response_headers("https://b.example.com") == {
            "Access-Control-Allow-Origin": "https://b.example.com",
            "Vary": "Origin",
        }
        assert policy.response_headers("https://c.example.com") == {}

    def test_subdomain_wildcard(self):
        policy = CorsPolicy(["*.example.com"])

        assert policy.is_allowed("https://api.example.com")
        assert policy.is_allowed("https://deep.api.example.com:8443")
        assert not policy.is_allowed("https://example.com")
        assert not policy.is_allowed("https://notexample.com")

    def test_preflight_headers(self):
        headers = CorsPolicy("*").preflight_headers("https://x.test")

        assert headers["Access-Control-Allow-Methods"] == "POST, GET, OPTIONS"
        assert "Authorization" in headers["Access-Control-Allow-Headers"]

    def test_preflight_disabled(self):
        assert CorsPolicy("").preflight_headers("https://x.test") == {}


class TestAuthenticator:
    def test_disabled_allows_everything(self):
        auth = Authenticator()

        assert not auth.enabled
        assert auth.authenticate({}, {})

    def test_basic_auth(self):
        auth = Authenticator("admin", "secret")

        assert auth.verify_basic_auth(basic("admin", "secret"))
        assert not auth.verify_basic_auth(basic("admin", "wrong"))
        assert not auth.verify_basic_auth(basic("root", "secret"))
        assert not auth.verify_basic_auth("Bearer abc")
        assert not auth.verify_basic_auth("Basic !!!not-base64!!!")
        assert not auth.verify_basic_auth(None)

    def test_password_may_contain_colon(self):
        auth = Authenticator("admin", "a:b:c")
        assert auth.verify_basic_auth(basic("admin", "a:b:c"))

    def test_authenticate_with_basic_header(self):
        auth = Authenticator("admin", "secret")

        assert auth.authenticate({"authorization": basic("admin", "secret")}, {})
        assert not auth.authenticate({}, {})
        assert auth.challenge_headers() == {"WWW-Authenticate": 'Basic realm="MCP Server"'}

    def test_api_key_validator_receives_request_data(self):
        seen = []

        def validator(api_key, request_data):
            seen.append((api_key, request_data))
            return api_key == "key-123"

        auth = Authenticator(api_key_validator=validator)

        assert auth.authenticate({"X-API-Key": "key-123"}, {"method": "tools/list"})
        assert not auth.authenticate({"X-API-Key": "other"}, {"method": "tools/list"})
        assert seen[0] == ("key-123", {"method": "tools/list"})
        assert auth.challenge_headers() == {}

    def test_api_key_from_bearer_token(self):
        auth = Authenticator(api_key_validator=lambda key, data: key == "tok")
        assert auth.authenticate({"Authorization": "Bearer tok"}, {})

    def test_validator_exception_rejects(self):
        def validator(api_key, request_data):
            raise RuntimeError("backend down")

        auth = Authenticator(api_key_validator=validator)
        assert not auth.verify_api_key("key", {})

    def test_either_scheme_accepts(self):
        auth = Authenticator("admin", "secret", api_key_validator=lambda key, data: key == "k")

        assert auth.authenticate({"Authorization": basic("admin", "secret")}, {})
        assert auth.authenticate({"X-API-Key": "k"}, {})
        assert not auth.authenticate({"X-API-Key": "nope"}, {})


def test_header_lookup_is_case_insensitive():
    assert header({"Content-Type": "application/json"}, "content-type") == "application/json"
    assert header({}, "Origin") is None
    assert header(None, "Origin") is None
