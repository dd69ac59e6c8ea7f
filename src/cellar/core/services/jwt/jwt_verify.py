"""Bearer token verification."""

import time
from typing import Any

from authlib.jose import JoseError, JsonWebKey, KeySet, jwt
from loguru import logger

from src.cellar.core.errors import AuthError
from src.cellar.core.models.principal import Principal
from src.cellar.core.services.jwt.jwks import JwksService
from src.cellar.core.services.jwt.jwt_utils import (
    JwtPreview,
    create_principal,
    lookup_config_by_issuer,
    preview_jwt,
)
from src.cellar.runtime.config.config_data import OIDCProviderConfig
from src.cellar.runtime.context import get_config


def _as_list(v: Any) -> list[str]:
    return [v] if isinstance(v, str) else list(v or ())


class JwtVerificationService:
    """Verify tokens issued by the configured identity providers.

    Checks, in order: algorithm allow-list, known issuer, signing key (JWKS by
    ``kid`` or the provider's static public key), signature, audience and the
    time claims with the configured clock skew. Every failure is an
    :class:`AuthError`.
    """

    def __init__(self, jwks_service: JwksService):
        self._jwks_service = jwks_service

    async def _verification_key(
        self, provider: OIDCProviderConfig, pv: JwtPreview
    ) -> KeySet | str:
        if provider.public_key:
            return provider.public_key

        jwks = await self._jwks_service.fetch_jwks(provider)
        if pv.kid:
            keys = [k for k in jwks.get("keys", []) if k.get("kid") == pv.kid]
            if not keys:
                # Provider may have rotated its keys since the cache was filled.
                jwks = await self._jwks_service.fetch_jwks(provider, force_refresh=True)
                keys = [k for k in jwks.get("keys", []) if k.get("kid") == pv.kid]
            if not keys:
                raise AuthError(f"No signing key matches kid={pv.kid}")
            jwks = {"keys": keys}
        if not jwks.get("keys"):
            raise AuthError("Issuer publishes no signing keys")
        return JsonWebKey.import_key_set(jwks)

    async def verify_jwt(self, token: str) -> Principal:
        cfg = get_config()
        pv = preview_jwt(token)

        if pv.alg not in cfg.jwt.allowed_algorithms:
            raise AuthError("Disallowed token algorithm")
        if not pv.iss:
            raise AuthError("Missing iss claim")

        provider = lookup_config_by_issuer(pv.iss)
        if provider is None:
            raise AuthError("Unknown token issuer")

        aud_values = _as_list(cfg.jwt.audiences or provider.client_id)
        if not aud_values:
            raise AuthError("No expected audience configured")

        claims_options = {
            "iss": {"essential": True, "values": [provider.issuer.rstrip("/"), provider.issuer]},
            "aud": {"essential": True, "values": aud_values},
            "exp": {"essential": True},
            "sub": {"essential": True},
        }
        key = await self._verification_key(provider, pv)

        try:
            claims = jwt.decode(token, key, claims_options=claims_options)
            claims.validate(leeway=cfg.jwt.clock_skew)
        except (JoseError, ValueError) as exc:
            logger.bind(issuer=pv.iss).info("Token rejected: {}", exc)
            raise AuthError(f"Invalid token: {exc}") from exc

        # authlib skips iat in the future; reject it explicitly
        iat = claims.get("iat")
        if iat is not None and int(iat) > int(time.time()) + cfg.jwt.clock_skew:
            raise AuthError("Invalid iat with skew")

        return create_principal(dict(claims))
