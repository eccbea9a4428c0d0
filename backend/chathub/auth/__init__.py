"""Credential collaborator for registration and login."""

from .service import CredentialStore, DuckDBCredentialStore

__all__ = ["CredentialStore", "DuckDBCredentialStore"]
