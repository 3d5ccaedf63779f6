"""Repository layer for data access."""

from .credential_store import CredentialStore, SQLAlchemyCredentialStore, StoredCredential

__all__ = [
    "CredentialStore",
    "SQLAlchemyCredentialStore",
    "StoredCredential",
]
