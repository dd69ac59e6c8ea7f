"""Authenticated principal built from verified token claims."""

from typing import Any

from pydantic import BaseModel, Field


class Principal(BaseModel):
    """Identity of the caller, attached to ``request.state.principal``."""

    uid: str = Field(description="Stable user identifier (configured claim or iss|sub)")
    issuer: str = Field(description="Issuer")
    subject: str = Field(description="Subject (user ID at the identity provider)")
    audience: str | list[str] = Field(default_factory=list, description="Audience")
    expires_at: int = Field(description="Expiration time")
    issued_at: int | None = Field(default=None, description="Issued at")
    email: str | None = Field(default=None, description="Email address")
    name: str | None = Field(default=None, description="Full name")
    scopes: list[str] = Field(default_factory=list, description="Granted OAuth scopes")
    roles: list[str] = Field(default_factory=list, description="User roles")
    claims: dict[str, Any] = Field(default_factory=dict, description="All verified claims")

    def has_scope(self, scope: str) -> bool:
        return scope in self.scopes

    def has_role(self, role: str) -> bool:
        return role in self.roles
