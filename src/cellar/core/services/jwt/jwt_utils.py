import base64
import json
from dataclasses import dataclass
from typing import Any, Final

from src.cellar.core.errors import AuthError
from src.cellar.core.models.principal import Principal
from src.cellar.runtime.config.config_data import OIDCProviderConfig
from src.cellar.runtime.context import get_config

# ---------------- limits ----------------
MAX_TOKEN_CHARS: Final = 8192
MAX_HEADER_BYTES: Final = 8 * 1024
MAX_PAYLOAD_BYTES: Final = 64 * 1024
_TOKEN_ALPHABET: Final = frozenset(
    "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789-_."
)


def _split_compact(token: str) -> tuple[str, str, str]:
    """Cheap structural checks before any base64 or JSON work."""
    if not token or len(token) > MAX_TOKEN_CHARS:
        raise AuthError("Invalid token size")
    if not set(token) <= _TOKEN_ALPHABET:
        raise AuthError("Invalid token characters")
    segments = token.split(".")
    if len(segments) != 3 or not all(segments):
        raise AuthError("Invalid token format")
    header, payload, signature = segments
    return header, payload, signature


def _decode_segment(segment: str, what: str, max_bytes: int) -> dict[str, Any]:
    padded = segment + "=" * (-len(segment) % 4)
    try:
        raw = base64.urlsafe_b64decode(padded.encode("ascii"))
    except ValueError as exc:
        raise AuthError(f"Invalid base64url in {what}") from exc
    if len(raw) > max_bytes:
        raise AuthError(f"{what} too large")
    try:
        obj = json.loads(raw.decode("utf-8"))
    except (UnicodeDecodeError, json.JSONDecodeError) as exc:
        raise AuthError(f"Invalid JSON in {what}") from exc
    if not isinstance(obj, dict):
        raise AuthError(f"{what} must be a JSON object")
    return obj


@dataclass(frozen=True)
class JwtPreview:
    header: dict[str, Any]
    claims: dict[str, Any]
    alg: str | None
    kid: str | None
    iss: str | None


def preview_jwt(token: str) -> JwtPreview:
    """Decode header and payload without verifying the signature.

    Used only to pick the algorithm, provider and key; nothing read here is
    trusted until :class:`JwtVerificationService` has checked the signature.
    """
    h_seg, p_seg, _ = _split_compact(token)
    header = _decode_segment(h_seg, "token header", MAX_HEADER_BYTES)
    claims = _decode_segment(p_seg, "token payload", MAX_PAYLOAD_BYTES)
    iss = claims.get("iss")
    return JwtPreview(
        header=header,
        claims=claims,
        alg=header.get("alg"),
        kid=header.get("kid"),
        iss=iss.rstrip("/") if isinstance(iss, str) and iss else None,
    )


def lookup_config_by_issuer(issuer: str) -> OIDCProviderConfig | None:
    """Find the enabled provider whose issuer matches ``issuer``."""
    wanted = issuer.rstrip("/")
    for provider in get_config().oidc.providers.values():
        if provider.enabled and provider.issuer.rstrip("/") == wanted:
            return provider
    return None


def extract_uid(claims: dict[str, Any]) -> str:
    uid_claim = get_config().jwt.claims.user_id
    if uid_claim and claims.get(uid_claim):
        return str(claims[uid_claim])
    return f"{claims.get('iss')}|{claims.get('sub')}"


def extract_scopes(claims: dict[str, Any]) -> list[str]:
    """Collect scopes from ``scope``, ``scp`` and ``scopes``, first occurrence wins."""
    found: list[str] = []
    for claim in ("scope", "scp", "scopes"):
        value = claims.get(claim)
        if isinstance(value, str):
            items = value.split()
        elif isinstance(value, (list, tuple)):
            items = [str(v) for v in value]
        else:
            continue
        found.extend(item for item in items if item not in found)
    return found


def extract_roles(claims: dict[str, Any]) -> list[str]:
    roles: list[str] = []

    def add(value: Any) -> None:
        if isinstance(value, str):
            items = value.split()
        elif isinstance(value, (list, tuple)):
            items = [str(v) for v in value]
        else:
            return
        roles.extend(item for item in items if item not in roles)

    for claim in ("role", "roles", "groups"):
        add(claims.get(claim))

    # Keycloak
    realm_access = claims.get("realm_access")
    if isinstance(realm_access, dict):
        add(realm_access.get("roles"))

    return roles


def create_principal(claims: dict[str, Any]) -> Principal:
    """Build the request principal from verified claims."""
    cfg = get_config().jwt.claims
    return Principal(
        uid=extract_uid(claims),
        issuer=str(claims.get("iss", "")),
        subject=str(claims["sub"]),
        audience=claims.get("aud", []),
        expires_at=int(claims["exp"]),
        issued_at=int(claims["iat"]) if claims.get("iat") is not None else None,
        email=claims.get(cfg.email),
        name=claims.get(cfg.name),
        scopes=extract_scopes(claims),
        roles=extract_roles(claims),
        claims=dict(claims),
    )
