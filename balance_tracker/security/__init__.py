"""
Credential handling for tracked API keys.

Encryption at rest, stable fingerprints and display masking.
"""

from .vault import CredentialError, CredentialVault, mask_api_key

__all__ = ["CredentialError", "CredentialVault", "mask_api_key"]
