"""
Audit trail for credential lifecycle events.
"""

from typing import Any, Dict, Optional

from pydantic import BaseModel
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from ..constants import AuditAction, AuditResource
from ..db.db_audit_models import AuditLog
from ..exceptions import StoreUnavailableError
from ..utils.logger import get_logger


class RequestMeta(BaseModel):
    """Where a request came from, for the audit trail."""

    ip_address: Optional[str] = None
    user_agent: Optional[str] = None


class AuditService:
    """Writes audit rows in the caller's transaction."""

    def __init__(self, session: Session):
        self.session = session
        self.logger = get_logger()

    def record(
        self,
        user_id: str,
        action: AuditAction,
        resource: AuditResource,
        resource_id: Optional[str] = None,
        alliance_id: Optional[str] = None,
        old_values: Optional[Dict[str, Any]] = None,
        new_values: Optional[Dict[str, Any]] = None,
        request_meta: Optional[RequestMeta] = None,
    ) -> AuditLog:
        """
        Record an audit event.

        Values must hold metadata only (ids, names, flags), never key material.

        Raises:
            StoreUnavailableError: If the row cannot be written
        """
        meta = request_meta or RequestMeta()
        entry = AuditLog(
            user_id=user_id,
            alliance_id=alliance_id,
            action=action.value,
            resource=resource.value,
            resource_id=resource_id,
            old_values=old_values,
            new_values=new_values,
            ip_address=meta.ip_address,
            user_agent=meta.user_agent[:512] if meta.user_agent else None,
        )
        try:
            self.session.add(entry)
            self.session.flush()
        except SQLAlchemyError as e:
            raise StoreUnavailableError(
                "Failed to write audit log", cause=e, action=action.value
            ) from e

        self.logger.info(
            "Audit event recorded",
            extra={
                "audit_action": action.value,
                "user_id": user_id,
                "resource": resource.value,
                "resource_id": resource_id,
            },
        )
        return entry
