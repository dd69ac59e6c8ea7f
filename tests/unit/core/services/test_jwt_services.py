"""Tests for bearer token verification and JWKS handling."""

import time
from dataclasses import replace

import httpx
import pytest
from authlib.jose import JsonWebKey

from src.cellar.core.errors import AuthError, UnexpectedError
from src.cellar.core.services.jwt import JWKSCacheInMemory, JwksService, JwtVerificationService
from src.cellar.core.services.jwt.jwt_utils import (
    create_principal,
    extract_roles,
    extract_scopes,
    lookup_config_by_issuer,
    preview_jwt,
)
from src.cellar.runtime.config.config_data import (
    ConfigData,
    JWTConfig,
    OIDCConfig,
    OIDCProviderConfig,
)
from src.cellar.runtime.context import get_context, reset_context, set_context
from tests.fixtures.auth import AUDIENCE, ISSUER, JWKS_URI, KID


class _JwksEndpoint:
    """Serves a sequence of JWKS documents and counts requests."""

    def __init__(self, *documents, status_code: int = 200):
        self.documents = list(documents)
        self.status_code = status_code
        self.calls = 0

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        document = self.documents[min(self.calls, len(self.documents)) - 1]
        return httpx.Response(self.status_code, json=document)


def _jwks_service(endpoint: _JwksEndpoint) -> JwksService:
    client = httpx.AsyncClient(transport=httpx.MockTransport(endpoint))
    return JwksService(JWKSCacheInMemory(ttl=60), client=client)


@pytest.fixture
def jwks_context():
    """Configuration whose only provider publishes its keys over JWKS."""
    config = ConfigData(
        oidc=OIDCConfig(providers={"test": OIDCProviderConfig(issuer=ISSUER, jwks_uri=JWKS_URI)}),
        jwt=JWTConfig(allowed_algorithms=["RS256"], audiences=[AUDIENCE], clock_skew=30),
    )
    token = set_context(replace(get_context(), config=config))
    try:
        yield config
    finally:
        reset_context(token)


class TestPreview:
    @pytest.mark.parametrize(
        "token",
        ["", "abc", "a.b", "a.b.c.d", "a..c", "héader.payload.sig", "x" * 9000],
    )
    def test_malformed_tokens(self, token):
        with pytest.raises(AuthError):
            preview_jwt(token)

    def test_segments_must_be_json_objects(self):
        with pytest.raises(AuthError, match="Invalid JSON"):
            preview_jwt("bm90LWpzb24.bm90LWpzb24.c2ln")

    def test_preview_reads_header_and_issuer(self, make_token):
        preview = preview_jwt(make_token(iss=ISSUER + "/"))

        assert preview.alg == "RS256"
        assert preview.kid == KID
        assert preview.iss == ISSUER


class TestClaimHelpers:
    def test_scopes_from_every_claim(self):
        claims = {"scope": "read write", "scp": ["write", "admin"]}
        assert extract_scopes(claims) == ["read", "write", "admin"]

    def test_roles_include_keycloak_realm_roles(self):
        claims = {"roles": ["buyer"], "realm_access": {"roles": ["buyer", "cellar-admin"]}}
        assert extract_roles(claims) == ["buyer", "cellar-admin"]

    def test_create_principal(self, config_context):
        principal = create_principal(
            {"iss": ISSUER, "sub": "u1", "aud": AUDIENCE, "exp": 10, "email": "a@b.c", "scope": "read"}
        )

        assert principal.uid == "u1"
        assert principal.email == "a@b.c"
        assert principal.has_scope("read")
        assert not principal.has_role("admin")

    def test_lookup_skips_disabled_providers(self, config_context):
        assert lookup_config_by_issuer(ISSUER + "/").issuer == ISSUER

        config_context.oidc.providers["test"].enabled = False
        assert lookup_config_by_issuer(ISSUER) is None


class TestVerifyWithStaticKey:
    """The test provider carries a PEM public key, so no JWKS is fetched."""

    @pytest.fixture
    def verifier(self) -> JwtVerificationService:
        return JwtVerificationService(_jwks_service(_JwksEndpoint({"keys": []})))

    async def test_valid_token(self, config_context, verifier, make_token):
        principal = await verifier.verify_jwt(make_token(roles=["buyer"]))

        assert principal.subject == "user-123"
        assert principal.issuer == ISSUER
        assert principal.email == "sommelier@example.com"
        assert principal.roles == ["buyer"]

    @pytest.mark.parametrize(
        "claims",
        [
            {"exp": int(time.time()) - 3600},
            {"aud": "someone-else"},
            {"iss": "https://unknown.test"},
            {"iat": int(time.time()) + 3600},
            {"sub": None},
        ],
        ids=["expired", "audience", "issuer", "issued-in-future", "no-subject"],
    )
    async def test_rejected_claims(self, config_context, verifier, make_token, claims):
        with pytest.raises(AuthError):
            await verifier.verify_jwt(make_token(**claims))

    async def test_wrong_signing_key(self, config_context, verifier, make_token):
        other = JsonWebKey.generate_key("RSA", 2048, is_private=True)

        with pytest.raises(AuthError, match="Invalid token"):
            await verifier.verify_jwt(make_token(key=other))

    async def test_disallowed_algorithm(self, config_context, verifier, make_token):
        token = make_token(alg="HS256", key=b"shared-secret-shared-secret-32b!")

        with pytest.raises(AuthError, match="Disallowed"):
            await verifier.verify_jwt(token)


class TestVerifyWithJwks:
    async def test_keys_are_fetched_once(self, jwks_context, jwks_data, make_token):
        endpoint = _JwksEndpoint(jwks_data)
        verifier = JwtVerificationService(_jwks_service(endpoint))

        await verifier.verify_jwt(make_token())
        await verifier.verify_jwt(make_token())

        assert endpoint.calls == 1

    async def test_rotated_key_triggers_refresh(self, jwks_context, jwks_data, make_token):
        """Should refetch once when the token's kid is not in the cached set."""
        stale = {"keys": [{**jwks_data["keys"][0], "kid": "old-key"}]}
        endpoint = _JwksEndpoint(stale, jwks_data)
        verifier = JwtVerificationService(_jwks_service(endpoint))

        principal = await verifier.verify_jwt(make_token())

        assert principal.subject == "user-123"
        assert endpoint.calls == 2

    async def test_unknown_kid(self, jwks_context, jwks_data, make_token):
        verifier = JwtVerificationService(_jwks_service(_JwksEndpoint(jwks_data)))

        with pytest.raises(AuthError, match="No signing key"):
            await verifier.verify_jwt(make_token(kid="unknown"))

    async def test_jwks_endpoint_failure(self, jwks_context, make_token):
        verifier = JwtVerificationService(_jwks_service(_JwksEndpoint({}, status_code=503)))

        with pytest.raises(UnexpectedError):
            await verifier.verify_jwt(make_token())

    async def test_provider_without_jwks_uri(self):
        service = _jwks_service(_JwksEndpoint({}))

        with pytest.raises(AuthError, match="no JWKS URI"):
            await service.fetch_jwks(OIDCProviderConfig(issuer=ISSUER))
