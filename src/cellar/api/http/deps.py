"""FastAPI dependency implementations."""

from __future__ import annotations

from collections.abc import Iterator

from fastapi import Depends, Request
from sqlmodel import Session

from src.cellar.api.http.app_data import ApplicationDependencies
from src.cellar.core.errors import AuthError
from src.cellar.core.models.principal import Principal
from src.cellar.core.services.imports.uploads import UploadStore
from src.cellar.core.services.jwt import JwtVerificationService


def get_app_dependencies(request: Request) -> ApplicationDependencies:
    return request.app.state.app_dependencies


def get_db_session(
    app_deps: ApplicationDependencies = Depends(get_app_dependencies),
) -> Iterator[Session]:
    """One session per request, closed once the response is sent."""
    session = app_deps.database_service.get_session()
    try:
        yield session
    finally:
        session.close()


def get_upload_store(
    app_deps: ApplicationDependencies = Depends(get_app_dependencies),
) -> UploadStore:
    return app_deps.upload_store


def get_jwt_verify_service(
    app_deps: ApplicationDependencies = Depends(get_app_dependencies),
) -> JwtVerificationService:
    return app_deps.jwt_verify_service


def bearer_token(request: Request) -> str:
    auth_header = request.headers.get("Authorization")
    if not auth_header:
        raise AuthError("Missing Bearer token")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise AuthError("Authorization header must be 'Bearer <token>'")
    return token.strip()


async def get_current_principal(
    request: Request,
    jwt_verify: JwtVerificationService = Depends(get_jwt_verify_service),
) -> Principal:
    """Authenticate the request using a Bearer token."""
    principal = await jwt_verify.verify_jwt(bearer_token(request))
    request.state.principal = principal
    return principal
