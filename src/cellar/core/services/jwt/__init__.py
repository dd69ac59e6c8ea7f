from src.cellar.core.services.jwt.jwks import JWKSCache, JWKSCacheInMemory, JwksService
from src.cellar.core.services.jwt.jwt_verify import JwtVerificationService

__all__ = ["JWKSCache", "JWKSCacheInMemory", "JwksService", "JwtVerificationService"]
