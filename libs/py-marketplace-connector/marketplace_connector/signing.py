"""Signed-header authentication for export (read) endpoints."""

import hashlib
import logging

from .catalog_types import Environment
from .config import MIN_CREDENTIAL_LENGTH, Credentials
from .exceptions import InvalidCredentialsError

logger = logging.getLogger(__name__)


class SignedHeaderAuthenticator:
    """
    Computes the Authorization header from static credentials.

    Sandbox:     "Authorization: {client_id}, {client_secret}"
    Production:  "Authorization: {client_id}, sha256(client_id + email + client_secret)"
    """

    def __init__(self, credentials: Credentials):
        self.credentials = credentials

    @staticmethod
    def generate_api_key(client_id: str, email: str, client_secret: str) -> str:
        """Derive the production API key."""
        return hashlib.sha256(f"{client_id}{email}{client_secret}".encode()).hexdigest()

    def sandbox_headers(self) -> dict[str, str]:
        creds = self.credentials
        return {"Authorization": f"{creds.client_id}, {creds.client_secret}"}

    def production_headers(self) -> dict[str, str]:
        creds = self.credentials
        if not creds.email:
            raise InvalidCredentialsError("email is required to sign production requests")

        api_key = self.generate_api_key(creds.client_id, creds.email, creds.client_secret)
        logger.debug("Generated production auth header for client %s...", creds.client_id[:8])
        return {"Authorization": f"{creds.client_id}, {api_key}"}

    def get_auth_headers(self) -> dict[str, str]:
        """Headers for the configured environment."""
        if self.credentials.environment == Environment.SANDBOX:
            return self.sandbox_headers()
        return self.production_headers()

    def validate_credentials(self) -> list[str]:
        """
        Check credential shape.

        Returns:
            List of problems; empty when the credentials look valid
        """
        creds = self.credentials
        errors: list[str] = []

        if not creds.client_id:
            errors.append("Client ID is required")
        elif len(creds.client_id) < MIN_CREDENTIAL_LENGTH:
            errors.append(f"Client ID is too short (minimum {MIN_CREDENTIAL_LENGTH} characters)")

        if not creds.client_secret:
            errors.append("Client secret is required")
        elif len(creds.client_secret) < MIN_CREDENTIAL_LENGTH:
            errors.append(
                f"Client secret is too short (minimum {MIN_CREDENTIAL_LENGTH} characters)"
            )

        if creds.environment == Environment.PRODUCTION and not creds.email:
            errors.append("Email is required in production")

        return errors
