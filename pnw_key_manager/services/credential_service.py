"""
Service for linking, inspecting and removing PnW API keys.

This service provides:
- Link: authorize, validate upstream, refuse keys linked to another user,
  encrypt, store and audit in one transaction
- Status: decrypt, mask and refresh usage, degrading to an error marker
  instead of failing when the key cannot be checked
- Unlink: idempotent removal with an audit entry
- Validate: the link checks without any write

Plaintext keys only ever live in local variables of this module; what leaves it
is the masked view, the resolved identity and usage counters.
"""

from typing import Optional

from sqlalchemy.orm import Session

from ..constants import AuditAction, AuditResource, CredentialAction, OwnerKind
from ..exceptions import (
    DecryptionError,
    UsageCheckFailedError,
    duplicate,
    permission_denied,
    validation_failed,
)
from ..repositories.credential_store import SQLAlchemyCredentialStore, StoredCredential
from ..schemas.credential_schemas import (
    Caller,
    CredentialOwner,
    CredentialStatus,
    LinkRequest,
    LinkResult,
    PermissionSummary,
    StatusOverview,
    StatusUsage,
    UnlinkResult,
    ValidateRequest,
    ValidationReport,
    ValidationResult,
)
from ..utils.encryption_utils import CredentialCipher
from ..utils.pnw_api import PnWApiClient
from .access_policy import authorize
from .audit_service import AuditService, RequestMeta
from .base_service import SessionManagedService

STATUS_UNAVAILABLE = "Unable to verify API key status"


class CredentialService(SessionManagedService):
    """Credential lifecycle for personal and alliance-manager keys."""

    def __init__(
        self,
        cipher: CredentialCipher,
        validator: PnWApiClient,
        session: Session,
        store: Optional[SQLAlchemyCredentialStore] = None,
        audit: Optional[AuditService] = None,
    ):
        """
        Args:
            cipher: Cipher holding the master key
            validator: PnW API client used for validation and usage checks
            session: Session the operations run in (request scope or tests)
            store: Optional store; defaults to the SQLAlchemy store on ``session``
            audit: Optional audit sink; defaults to the audit log on ``session``
        """
        super().__init__(session)
        self.cipher = cipher
        self.validator = validator
        self.store = store or SQLAlchemyCredentialStore(self.session)
        self.audit = audit or AuditService(self.session)

    # ==================== TARGET RESOLUTION ====================

    def _authorized_target(
        self,
        caller: Caller,
        action: CredentialAction,
        owner_kind: OwnerKind,
        owner_id: Optional[str],
        alliance_slug: Optional[str],
    ) -> CredentialOwner:
        """
        Resolve the owner record an operation addresses and check access to it.

        Personal keys default to the caller's own record. Alliance keys are
        addressed by manager record id, or by alliance slug which resolves to
        the caller's own active manager record in that alliance. Personal keys
        are authorized before the owner lookup.
        """
        if owner_kind == OwnerKind.USER:
            owner_id = owner_id or caller.user_id
            self._require(caller, action, owner_kind, owner_id)
            return self.store.resolve_owner(owner_kind, owner_id)

        if owner_id is None:
            if not alliance_slug:
                raise validation_failed(
                    "ownerId", None, "ownerId or allianceSlug is required for alliance keys"
                )
            alliance = self.store.find_alliance(alliance_slug)
            grant = caller.active_grant_for(alliance.id)
            if grant is None:
                raise permission_denied(
                    "resolve",
                    owner_kind.value,
                    "You must be an alliance manager of this alliance",
                    alliance_slug=alliance_slug,
                )
            owner_id = grant.manager_id

        owner = self.store.resolve_owner(owner_kind, owner_id)
        self._require(caller, action, owner.owner_kind, owner.owner_id, owner.alliance_id)
        return owner

    def _require(
        self,
        caller: Caller,
        action: CredentialAction,
        owner_kind: OwnerKind,
        owner_id: str,
        alliance_id: Optional[str] = None,
    ) -> None:
        decision = authorize(caller, owner_kind, owner_id, action, alliance_id)
        if not decision.allowed:
            raise permission_denied(
                action.value,
                owner_kind.value,
                decision.reason,
                owner_id=owner_id,
                user_id=caller.user_id,
            )

    # ==================== LINK ====================

    def link(
        self, caller: Caller, request: LinkRequest, request_meta: Optional[RequestMeta] = None
    ) -> LinkResult:
        """
        Validate a key and link it to an owner, replacing any previous key.

        Raises:
            NotFoundError: Owner record or alliance does not exist
            AccessDeniedError: Caller may not link keys for the owner
            InvalidFormatError, InvalidOrExpiredKeyError, UpstreamRateLimitedError,
            UpstreamUnavailableError, UnknownUpstreamError: Validation failed
            AlreadyLinkedElsewhereError: Key is linked to another user's record
            EncryptionError: Master key missing
            StoreUnavailableError: The write could not be committed
        """
        owner = self._authorized_target(
            caller,
            CredentialAction.LINK,
            request.owner_kind,
            request.owner_id,
            request.alliance_slug,
        )

        result = self.validator.validate(request.api_key)

        fingerprint = self.cipher.fingerprint(request.api_key)
        elsewhere = [
            o for o in self.store.find_by_fingerprint(fingerprint) if o.user_id != owner.user_id
        ]
        if elsewhere:
            raise duplicate(
                "API key", owner_kind=owner.owner_kind.value, owner_id=owner.owner_id
            )

        ciphertext = self.cipher.encrypt(request.api_key)
        personal = owner.owner_kind == OwnerKind.USER

        with self.transaction():
            self.store.put(
                owner.owner_kind,
                owner.owner_id,
                ciphertext,
                fingerprint=fingerprint,
                identity=result.identity,
            )
            self.audit.record(
                caller.user_id,
                AuditAction.API_KEY_LINKED if personal else AuditAction.ALLIANCE_API_KEY_LINKED,
                AuditResource.USER if personal else AuditResource.ALLIANCE_MANAGER,
                resource_id=owner.owner_id,
                alliance_id=owner.alliance_id,
                new_values=self._audit_values(result),
                request_meta=request_meta,
            )

        self.logger.info(
            "API key linked",
            extra={
                "owner_kind": owner.owner_kind.value,
                "owner_id": owner.owner_id,
                "masked_key": self.cipher.mask(request.api_key),
                "nation_id": result.identity.id,
            },
        )
        return LinkResult(
            message=(
                "Personal API key linked successfully"
                if personal
                else "Alliance API key linked successfully"
            ),
            identity=result.identity,
            alliance=result.alliance,
            capabilities=result.capabilities,
            usage=result.usage,
        )

    @staticmethod
    def _audit_values(result: ValidationResult) -> dict:
        return {
            "nationId": result.identity.id,
            "nationName": result.identity.name,
            "allianceId": result.alliance.id if result.alliance else None,
            "allianceName": result.alliance.name if result.alliance else None,
            "permissions": result.capabilities.model_dump(by_alias=True),
        }

    # ==================== STATUS ====================

    def status(
        self,
        caller: Caller,
        owner_kind: OwnerKind,
        owner_id: Optional[str] = None,
        alliance_slug: Optional[str] = None,
    ) -> CredentialStatus:
        """
        Report whether an owner has a key linked, with its masked view and usage.

        "Not linked" is a normal result. A key that cannot be decrypted or whose
        usage cannot be fetched still yields a status, with ``error`` set.
        """
        owner = self._authorized_target(
            caller, CredentialAction.READ, owner_kind, owner_id, alliance_slug
        )
        return self._status_of(self.store.get_record(owner.owner_kind, owner.owner_id))

    def overview(self, caller: Caller) -> StatusOverview:
        """The caller's personal status plus one per active alliance-manager grant."""
        personal = self.status(caller, OwnerKind.USER, caller.user_id)
        alliances = [
            self.status(caller, OwnerKind.ALLIANCE_MANAGER, grant.manager_id)
            for grant in caller.manager_grants
            if grant.is_active
        ]
        return StatusOverview(personal=personal, alliances=alliances)

    def _status_of(self, record: StoredCredential) -> CredentialStatus:
        owner = record.owner
        fields = {
            "owner_kind": owner.owner_kind,
            "owner_id": owner.owner_id,
            "is_linked": record.is_linked,
            "identity": record.identity,
            "alliance_slug": owner.alliance_slug,
            "alliance_name": owner.alliance_name,
        }
        if not record.is_linked:
            return CredentialStatus(**fields)

        try:
            plaintext = self.cipher.decrypt(record.ciphertext)
        except DecryptionError:
            self.logger.warning(
                "Stored API key could not be decrypted",
                extra={"owner_kind": owner.owner_kind.value, "owner_id": owner.owner_id},
            )
            return CredentialStatus(**fields, error=STATUS_UNAVAILABLE)

        fields["masked_view"] = self.cipher.mask(plaintext)
        try:
            usage = self.validator.check_usage(plaintext)
        except UsageCheckFailedError:
            return CredentialStatus(**fields, error=STATUS_UNAVAILABLE)

        return CredentialStatus(
            **fields,
            usage=StatusUsage(
                used=usage.used,
                max=usage.max,
                percentage=usage.percentage_used,
                is_near_limit=usage.is_near_limit,
            ),
        )

    # ==================== UNLINK ====================

    def unlink(
        self,
        caller: Caller,
        owner_kind: OwnerKind,
        owner_id: Optional[str] = None,
        alliance_slug: Optional[str] = None,
        request_meta: Optional[RequestMeta] = None,
    ) -> UnlinkResult:
        """
        Remove an owner's key. Succeeds whether or not a key was linked.

        Raises:
            NotFoundError: Owner record or alliance does not exist
            AccessDeniedError: Caller may not unlink keys for the owner
            StoreUnavailableError: The removal could not be committed
        """
        owner = self._authorized_target(
            caller, CredentialAction.UNLINK, owner_kind, owner_id, alliance_slug
        )
        personal = owner.owner_kind == OwnerKind.USER

        with self.transaction():
            was_linked = self.store.remove(owner.owner_kind, owner.owner_id)
            self.audit.record(
                caller.user_id,
                AuditAction.API_KEY_REMOVED if personal else AuditAction.ALLIANCE_API_KEY_REMOVED,
                AuditResource.USER if personal else AuditResource.ALLIANCE_MANAGER,
                resource_id=owner.owner_id,
                alliance_id=owner.alliance_id,
                old_values={"hadApiKey": was_linked},
                request_meta=request_meta,
            )

        return UnlinkResult(
            message=(
                "Personal API key removed successfully"
                if personal
                else "Alliance API key removed successfully"
            ),
            was_linked=was_linked,
        )

    # ==================== VALIDATE ====================

    def validate(self, request: ValidateRequest) -> ValidationReport:
        """Run the link checks against the upstream without storing anything."""
        result = self.validator.validate(request.api_key)
        return ValidationReport(
            message="API key is valid",
            identity=result.identity,
            alliance=result.alliance,
            capabilities=result.capabilities,
            usage=result.usage,
            summary=PermissionSummary.from_validation(result),
        )
