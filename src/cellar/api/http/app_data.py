from dataclasses import dataclass

from src.cellar.core.services.database.db_session import DbSessionService
from src.cellar.core.services.imports.uploads import UploadStore
from src.cellar.core.services.jwt import JwksService, JwtVerificationService
from src.cellar.entities.registry import SchemaRegistry


@dataclass
class ApplicationDependencies:
    """Services built once in the lifespan and shared by every request."""

    database_service: DbSessionService
    jwks_service: JwksService
    jwt_verify_service: JwtVerificationService
    upload_store: UploadStore
    registry: SchemaRegistry

    async def aclose(self) -> None:
        await self.jwks_service.aclose()
        self.database_service.dispose()
