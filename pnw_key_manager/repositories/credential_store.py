"""
Credential store adapter over the user and alliance-manager tables.

Personal keys live on ``users``, alliance keys on ``alliance_managers``. A write
replaces the stored blob wholesale and the last write wins; no optimistic
concurrency control is attempted. Reads on the same session observe earlier
writes because every write is flushed immediately.
"""

from typing import Any, List, NoReturn, Optional, Protocol

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..constants import OwnerKind
from ..db.db_alliance_models import Alliance, AllianceManager
from ..db.db_user_models import User
from ..exceptions import StoreUnavailableError, not_found
from ..schemas.credential_schemas import CredentialOwner, NationIdentity
from ..utils.logger import get_logger


class StoredCredential(BaseModel):
    """An encrypted key as persisted, with the owner and identity it resolved to."""

    owner: CredentialOwner
    ciphertext: Optional[str] = None
    identity: Optional[NationIdentity] = None

    @property
    def is_linked(self) -> bool:
        return bool(self.ciphertext)


class CredentialStore(Protocol):
    """Interface consumed by the credential service."""

    def get(self, owner_kind: OwnerKind, owner_id: str) -> Optional[str]: ...

    def put(
        self,
        owner_kind: OwnerKind,
        owner_id: str,
        ciphertext: str,
        fingerprint: Optional[str] = None,
        identity: Optional[NationIdentity] = None,
    ) -> None: ...

    def remove(self, owner_kind: OwnerKind, owner_id: str) -> bool: ...


class SQLAlchemyCredentialStore:
    """CredentialStore backed by the dashboard's SQLAlchemy models."""

    def __init__(self, session: Session):
        self.session = session
        self.logger = get_logger()

    def _handle_db_error(self, e: Exception, operation_name: str, **context: Any) -> NoReturn:
        """Surface storage failures as StoreUnavailableError; never swallow them."""
        self.logger.error(
            f"Credential store failure in {operation_name}",
            extra={"operation": operation_name, "error_type": type(e).__name__, **context},
        )
        raise StoreUnavailableError(
            f"Credential store unavailable during {operation_name}",
            cause=e,
            operation=operation_name,
            **context,
        ) from e

    # ==================== OWNER RESOLUTION ====================

    def _load_user(self, owner_id: str) -> Optional[User]:
        return self.session.get(User, owner_id)

    def _load_manager(self, owner_id: str) -> Optional[AllianceManager]:
        return self.session.get(AllianceManager, owner_id)

    def _load_row(self, owner_kind: OwnerKind, owner_id: str):
        row = (
            self._load_user(owner_id)
            if owner_kind == OwnerKind.USER
            else self._load_manager(owner_id)
        )
        if row is None:
            resource = "User" if owner_kind == OwnerKind.USER else "AllianceManager"
            raise not_found(resource, owner_id=owner_id)
        return row

    @staticmethod
    def _owner_of(owner_kind: OwnerKind, row) -> CredentialOwner:
        if owner_kind == OwnerKind.USER:
            return CredentialOwner(owner_kind=owner_kind, owner_id=row.id, user_id=row.id)
        alliance: Alliance = row.alliance
        return CredentialOwner(
            owner_kind=owner_kind,
            owner_id=row.id,
            user_id=row.user_id,
            alliance_id=row.alliance_id,
            alliance_slug=alliance.route_slug if alliance else None,
            alliance_name=alliance.alliance_name if alliance else None,
        )

    @staticmethod
    def _stored_of(owner_kind: OwnerKind, row) -> StoredCredential:
        if owner_kind == OwnerKind.USER:
            ciphertext, nation_id, nation_name = (
                row.pnw_api_key,
                row.pnw_nation_id,
                row.pnw_nation_name,
            )
        else:
            ciphertext, nation_id, nation_name = (
                row.manager_api_key,
                row.key_nation_id,
                row.key_nation_name,
            )
        identity = (
            NationIdentity(id=nation_id, name=nation_name or "") if nation_id is not None else None
        )
        return StoredCredential(
            owner=SQLAlchemyCredentialStore._owner_of(owner_kind, row),
            ciphertext=ciphertext,
            identity=identity,
        )

    def resolve_owner(self, owner_kind: OwnerKind, owner_id: str) -> CredentialOwner:
        """
        Resolve an owner record.

        Raises:
            NotFoundError: If the user or manager record does not exist
            StoreUnavailableError: On storage failure
        """
        try:
            return self._owner_of(owner_kind, self._load_row(owner_kind, owner_id))
        except SQLAlchemyError as e:
            self._handle_db_error(e, "resolve_owner", owner_kind=owner_kind.value, owner_id=owner_id)

    def find_alliance(self, route_slug: str) -> Alliance:
        try:
            alliance = (
                self.session.query(Alliance)
                .filter(Alliance.route_slug == route_slug, Alliance.is_active.is_(True))
                .first()
            )
        except SQLAlchemyError as e:
            self._handle_db_error(e, "find_alliance", alliance_slug=route_slug)
        if alliance is None:
            raise not_found("Alliance", alliance_slug=route_slug)
        return alliance

    # ==================== STORE INTERFACE ====================

    def get(self, owner_kind: OwnerKind, owner_id: str) -> Optional[str]:
        """Encrypted blob of an owner, or None when nothing is linked."""
        return self.get_record(owner_kind, owner_id).ciphertext

    def get_record(self, owner_kind: OwnerKind, owner_id: str) -> StoredCredential:
        try:
            return self._stored_of(owner_kind, self._load_row(owner_kind, owner_id))
        except SQLAlchemyError as e:
            self._handle_db_error(e, "get", owner_kind=owner_kind.value, owner_id=owner_id)

    def put(
        self,
        owner_kind: OwnerKind,
        owner_id: str,
        ciphertext: str,
        fingerprint: Optional[str] = None,
        identity: Optional[NationIdentity] = None,
    ) -> None:
        """Replace the owner's encrypted key and the identity it resolved to."""
        try:
            row = self._load_row(owner_kind, owner_id)
            nation_id = identity.id if identity else None
            nation_name = identity.name if identity else None
            if owner_kind == OwnerKind.USER:
                row.pnw_api_key = ciphertext
                row.pnw_api_key_fingerprint = fingerprint
                row.pnw_nation_id = nation_id
                row.pnw_nation_name = nation_name
            else:
                row.manager_api_key = ciphertext
                row.manager_api_key_fingerprint = fingerprint
                row.key_nation_id = nation_id
                row.key_nation_name = nation_name
            self.session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "put", owner_kind=owner_kind.value, owner_id=owner_id)

        self.logger.info(
            "Credential stored",
            extra={"owner_kind": owner_kind.value, "owner_id": owner_id},
        )

    def remove(self, owner_kind: OwnerKind, owner_id: str) -> bool:
        """
        Clear the owner's key. Idempotent.

        Returns:
            True if a key was linked before the call
        """
        try:
            row = self._load_row(owner_kind, owner_id)
            if owner_kind == OwnerKind.USER:
                was_linked = row.pnw_api_key is not None
                row.pnw_api_key = None
                row.pnw_api_key_fingerprint = None
                row.pnw_nation_id = None
                row.pnw_nation_name = None
            else:
                was_linked = row.manager_api_key is not None
                row.manager_api_key = None
                row.manager_api_key_fingerprint = None
                row.key_nation_id = None
                row.key_nation_name = None
            self.session.flush()
        except SQLAlchemyError as e:
            self._handle_db_error(e, "remove", owner_kind=owner_kind.value, owner_id=owner_id)

        self.logger.info(
            "Credential removed" if was_linked else "No credential to remove",
            extra={"owner_kind": owner_kind.value, "owner_id": owner_id},
        )
        return was_linked

    def find_by_fingerprint(self, fingerprint: str) -> List[CredentialOwner]:
        """Owners currently holding a key with this fingerprint."""
        try:
            users = (
                self.session.query(User).filter(User.pnw_api_key_fingerprint == fingerprint).all()
            )
            managers = (
                self.session.query(AllianceManager)
                .filter(AllianceManager.manager_api_key_fingerprint == fingerprint)
                .all()
            )
        except SQLAlchemyError as e:
            self._handle_db_error(e, "find_by_fingerprint")

        return [self._owner_of(OwnerKind.USER, u) for u in users] + [
            self._owner_of(OwnerKind.ALLIANCE_MANAGER, m) for m in managers
        ]
