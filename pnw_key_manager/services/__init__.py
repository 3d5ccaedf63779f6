"""Service layer for business logic."""

from .access_policy import authorize
from .audit_service import AuditService, RequestMeta
from .base_service import SessionManagedService
from .caller_service import load_caller
from .credential_service import CredentialService

__all__ = [
    "authorize",
    "AuditService",
    "RequestMeta",
    "SessionManagedService",
    "load_caller",
    "CredentialService",
]
