"""
Pydantic schemas for linked API keys.

Covers the caller permission snapshot consulted by the access policy, the
results of upstream key validation, and the request/response payloads of the
link, status, unlink and validate operations. Response models serialize with
camelCase aliases.
"""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from ..constants import Limits, ManagerRole, OwnerKind, SystemAdminLevel


class CamelModel(BaseModel):
    """Base for payloads exchanged with the dashboard frontend."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# ==================== CALLER SNAPSHOT ====================


class ManagerGrant(BaseModel):
    """An active or inactive alliance-manager assignment held by a caller."""

    manager_id: str = Field(..., description="AllianceManager record id")
    alliance_id: str = Field(..., description="Alliance record id")
    alliance_slug: Optional[str] = Field(None, description="Alliance route slug")
    alliance_name: Optional[str] = Field(None, description="Alliance display name")
    role: str = Field(default=ManagerRole.VIEWER.value, description="Role within the alliance")
    is_active: bool = Field(default=True)

    @property
    def is_admin(self) -> bool:
        return self.role == ManagerRole.ADMIN.value


class Caller(BaseModel):
    """Resolved permission snapshot of the requesting user."""

    model_config = ConfigDict(frozen=True)

    user_id: str
    discord_username: Optional[str] = None
    is_system_admin: bool = False
    system_admin_level: Optional[SystemAdminLevel] = None
    manager_grants: List[ManagerGrant] = Field(default_factory=list)

    def active_grant_for(self, alliance_id: str) -> Optional[ManagerGrant]:
        """Active manager grant for an alliance, if any."""
        for grant in self.manager_grants:
            if grant.is_active and grant.alliance_id == alliance_id:
                return grant
        return None


class CredentialOwner(BaseModel):
    """A resolved owner record a key can be linked to."""

    owner_kind: OwnerKind
    owner_id: str
    user_id: str = Field(..., description="User the owner record belongs to")
    alliance_id: Optional[str] = Field(None, description="Alliance of a manager record")
    alliance_slug: Optional[str] = None
    alliance_name: Optional[str] = None


class AccessDecision(BaseModel):
    """Outcome of the access policy: allow, or deny with a reason."""

    allowed: bool
    reason: Optional[str] = None

    @classmethod
    def allow(cls) -> "AccessDecision":
        return cls(allowed=True)

    @classmethod
    def deny(cls, reason: str = "insufficient privilege") -> "AccessDecision":
        return cls(allowed=False, reason=reason)


# ==================== UPSTREAM VALIDATION ====================


class NationIdentity(CamelModel):
    id: int
    name: str


class AllianceIdentity(CamelModel):
    id: int
    name: Optional[str] = None


class KeyPermissions(CamelModel):
    """Capability flags the upstream reports for a key."""

    can_view_nation_resources: bool = False
    can_view_alliance_bank: bool = False
    can_manage_alliance_bank: bool = False


class UsageCounters(CamelModel):
    used: int = 0
    max: int = Limits.DEFAULT_MAX_REQUESTS


class ValidationResult(CamelModel):
    """A live key's identity, capabilities and usage."""

    identity: NationIdentity
    alliance: Optional[AllianceIdentity] = None
    capabilities: KeyPermissions = Field(default_factory=KeyPermissions)
    usage: UsageCounters = Field(default_factory=UsageCounters)


class UsageSnapshot(CamelModel):
    """Result of the lightweight usage check."""

    used: int
    max: int
    percentage_used: float
    is_near_limit: bool

    @classmethod
    def from_counters(cls, used: int, max_requests: int) -> "UsageSnapshot":
        percentage = (used * 100) / max_requests if max_requests else 0.0
        return cls(
            used=used,
            max=max_requests,
            percentage_used=percentage,
            is_near_limit=percentage > Limits.NEAR_LIMIT_PERCENT,
        )


class PermissionSummary(CamelModel):
    """Display summary of what a key can do."""

    can_view_nation_data: bool = True
    can_view_nation_resources: bool = False
    can_view_alliance_data: bool = True
    can_view_alliance_bank: bool = False
    can_manage_alliance_bank: bool = False
    daily_requests: int = Limits.DEFAULT_MAX_REQUESTS
    is_vip: bool = False

    @classmethod
    def from_validation(cls, result: ValidationResult) -> "PermissionSummary":
        daily = result.usage.max or Limits.DEFAULT_MAX_REQUESTS
        return cls(
            can_view_nation_resources=result.capabilities.can_view_nation_resources,
            can_view_alliance_bank=result.capabilities.can_view_alliance_bank,
            can_manage_alliance_bank=result.capabilities.can_manage_alliance_bank,
            daily_requests=daily,
            is_vip=daily > Limits.DEFAULT_MAX_REQUESTS,
        )


# ==================== OPERATION PAYLOADS ====================


class ApiKeyRequest(CamelModel):
    """Request body carrying a plaintext API key."""

    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, str_strip_whitespace=True
    )

    api_key: str = Field(..., min_length=1, max_length=Limits.MAX_API_KEY_LENGTH)

    @field_validator("api_key")
    @classmethod
    def validate_no_inner_whitespace(cls, v):
        if any(ch.isspace() for ch in v):
            raise ValueError("API keys cannot contain whitespace")
        return v


class LinkRequest(ApiKeyRequest):
    """Body of ``POST /link``."""

    owner_kind: OwnerKind = OwnerKind.USER
    owner_id: Optional[str] = None
    alliance_slug: Optional[str] = None

    def __repr__(self) -> str:
        return f"LinkRequest(owner_kind={self.owner_kind.value!r}, owner_id={self.owner_id!r})"


class ValidateRequest(ApiKeyRequest):
    """Body of ``POST /validate``."""

    def __repr__(self) -> str:
        return "ValidateRequest(api_key=***)"


class LinkResult(CamelModel):
    """Success shape shared by link and validate."""

    success: bool = True
    message: Optional[str] = None
    identity: NationIdentity
    alliance: Optional[AllianceIdentity] = None
    capabilities: KeyPermissions
    usage: UsageCounters


class ValidationReport(LinkResult):
    """Validate result with the display permission summary."""

    summary: PermissionSummary


class StatusUsage(CamelModel):
    used: int
    max: int
    percentage: float
    is_near_limit: bool


class CredentialStatus(CamelModel):
    """Status of one owner's linked key. Never carries the plaintext."""

    owner_kind: OwnerKind
    owner_id: str
    is_linked: bool
    masked_view: Optional[str] = None
    identity: Optional[NationIdentity] = None
    usage: Optional[StatusUsage] = None
    error: Optional[str] = None
    alliance_slug: Optional[str] = None
    alliance_name: Optional[str] = None


class StatusOverview(CamelModel):
    """Personal status plus one entry per active alliance-manager grant."""

    personal: CredentialStatus
    alliances: List[CredentialStatus] = Field(default_factory=list)


class UnlinkResult(CamelModel):
    success: bool = True
    message: str
    was_linked: bool
