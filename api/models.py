"""
API request and response models for Gatehouse REST endpoints.

These Pydantic v2 models define the HTTP transport contract for the API layer.
They are intentionally separate from the dataclasses in auth/models.py, which
own the internal domain representation. Route handlers map between the two via
the from_* factory methods colocated with each response model.

No response model has a password field: hashes cannot leak through
serialization because there is nowhere to put them.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from auth.models import AuditEntry, Permission, ResolvedRole, User

# ---------------------------------------------------------------------------
# Request models -- authentication
# ---------------------------------------------------------------------------


class RegisterRequest(BaseModel):
    """Request body for POST /api/v1/auth/register."""

    username: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=320)
    first_name: str = Field(default="", max_length=255)
    last_name: str = Field(default="", max_length=255)
    password: str = Field(min_length=1, max_length=255)


class LoginRequest(BaseModel):
    """Request body for POST /api/v1/auth/login."""

    username: str = Field(max_length=255)
    password: str = Field(max_length=255)


class PasswordChange(BaseModel):
    """Request body for PUT /api/v1/auth/current/password."""

    old_password: str = Field(max_length=255)
    new_password: str = Field(min_length=1, max_length=255)


class AdminPasswordChange(BaseModel):
    """Request body for PUT /api/v1/users/{id}/password."""

    password: str = Field(min_length=1, max_length=255)


# ---------------------------------------------------------------------------
# Request models -- entities
# ---------------------------------------------------------------------------


class PermissionCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=1000)


class PermissionUpdate(BaseModel):
    """Only the description is editable; a permission's name is fixed at creation."""

    description: str = Field(default="", max_length=1000)


class RoleCreate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=255)
    description: str = Field(default="", max_length=1000)
    permissions: list[str] = Field(default_factory=list, description="Permission ids.")


class RoleUpdate(BaseModel):
    """Omitted fields are left unchanged. permissions replaces the whole list."""

    model_config = ConfigDict(str_strip_whitespace=True)

    name: Optional[str] = Field(default=None, min_length=1, max_length=255)
    description: Optional[str] = Field(default=None, max_length=1000)
    permissions: Optional[list[str]] = None


class UserCreate(BaseModel):
    """Names are trimmed by the directory. The password is stored as given."""

    username: str = Field(min_length=1, max_length=255)
    email: str = Field(min_length=3, max_length=320)
    first_name: str = Field(default="", max_length=255)
    last_name: str = Field(default="", max_length=255)
    password: str = Field(min_length=1, max_length=255)
    roles: list[str] = Field(default_factory=list, description="Role ids.")
    enabled: bool = True


class UserUpdate(BaseModel):
    """Omitted fields are left unchanged. Passwords have their own endpoints."""

    model_config = ConfigDict(str_strip_whitespace=True)

    username: Optional[str] = Field(default=None, min_length=1, max_length=255)
    email: Optional[str] = Field(default=None, min_length=3, max_length=320)
    first_name: Optional[str] = Field(default=None, max_length=255)
    last_name: Optional[str] = Field(default=None, max_length=255)
    roles: Optional[list[str]] = None
    enabled: Optional[bool] = None


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class LoginResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class PermissionResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    created_at: str
    updated_at: str

    @classmethod
    def from_permission(cls, p: Permission) -> "PermissionResponse":
        return cls(
            id=p.id or "",
            name=p.name,
            description=p.description,
            created_at=p.created_at or "",
            updated_at=p.updated_at or "",
        )


class RoleResponse(BaseModel):
    """A role with its permission ids expanded into the permissions that still exist."""

    model_config = ConfigDict(frozen=True)

    id: str
    name: str
    description: str
    permissions: list[PermissionResponse]
    created_at: str
    updated_at: str

    @classmethod
    def from_resolved(cls, resolved: ResolvedRole) -> "RoleResponse":
        role = resolved.role
        return cls(
            id=role.id or "",
            name=role.name,
            description=role.description,
            permissions=[PermissionResponse.from_permission(p) for p in resolved.permissions],
            created_at=role.created_at or "",
            updated_at=role.updated_at or "",
        )


class UserResponse(BaseModel):
    """A user with roles -> permissions expanded. Never carries the password hash."""

    model_config = ConfigDict(frozen=True)

    id: str
    username: str
    email: str
    first_name: str
    last_name: str
    roles: list[RoleResponse]
    enabled: bool
    created_at: str
    updated_at: str

    @classmethod
    def from_user(cls, user: User, roles: list[ResolvedRole]) -> "UserResponse":
        return cls(
            id=user.id or "",
            username=user.username,
            email=user.email,
            first_name=user.first_name,
            last_name=user.last_name,
            roles=[RoleResponse.from_resolved(r) for r in roles],
            enabled=user.enabled,
            created_at=user.created_at or "",
            updated_at=user.updated_at or "",
        )


class AuditResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str
    actor_id: str
    action: str
    resource_type: str
    resource_id: str
    outcome: str
    created_at: str
    expires_at: Optional[str] = None

    @classmethod
    def from_entry(cls, entry: AuditEntry) -> "AuditResponse":
        return cls(
            id=entry.id or "",
            actor_id=entry.actor_id,
            action=entry.action.value,
            resource_type=entry.resource_type.value,
            resource_id=entry.resource_id,
            outcome=entry.outcome.value,
            created_at=entry.created_at or "",
            expires_at=entry.expires_at,
        )


class _PageMeta(BaseModel):
    total: int
    skip: int
    limit: int


class PermissionPage(_PageMeta):
    items: list[PermissionResponse]


class RolePage(_PageMeta):
    items: list[RoleResponse]


class UserPage(_PageMeta):
    items: list[UserResponse]


class AuditPage(_PageMeta):
    items: list[AuditResponse]


# ---------------------------------------------------------------------------
# Error and health envelopes
# ---------------------------------------------------------------------------


class ErrorDetail(BaseModel):
    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Uniform error envelope returned by every exception handler."""

    error: ErrorDetail


class HealthResponse(BaseModel):
    status: str = "healthy"
    version: str
    components: dict[str, str] = Field(default_factory=dict)
