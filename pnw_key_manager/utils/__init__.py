"""Utility modules for the PnW key manager."""

from .encryption_utils import (
    CredentialCipher,
    decrypt_value,
    encrypt_value,
    generate_salt,
    mask_secret,
)
from .logger import (
    AzureQueueHandler,
    ContextAwareLogger,
    configure_logging,
    get_logger,
)
from .pnw_api import PnWApiClient, classify_upstream_error

__all__ = [
    # Encryption utilities
    "CredentialCipher",
    "encrypt_value",
    "decrypt_value",
    "generate_salt",
    "mask_secret",
    # Logging utilities
    "AzureQueueHandler",
    "ContextAwareLogger",
    "configure_logging",
    "get_logger",
    # PnW API
    "PnWApiClient",
    "classify_upstream_error",
]
