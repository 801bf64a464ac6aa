"""
Authentication module — Supplies bearer tokens to the API client.
Uses MSAL certificate-based client credentials, or a pre-issued token.
"""

from __future__ import annotations

import base64
import logging
from typing import Optional

from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption
from cryptography.hazmat.primitives.hashes import SHA1
import msal

from ..config import AuthConfig, AUTHORITY_TEMPLATE

logger = logging.getLogger("m365_harvest.auth")


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


class Authenticator:
    """
    Callable token supplier for ApiClient.

    Supports:
      - "token": a pre-issued bearer token from config or M365_ACCESS_TOKEN
      - "certificate": app-only client credentials with a base64 PFX

    MSAL keeps its own in-memory token cache, so calling the supplier before
    every request only reaches the token endpoint when the token expires.
    """

    def __init__(self, config: AuthConfig):
        self.config = config
        self._app: Optional[msal.ConfidentialClientApplication] = None

    def __call__(self) -> str:
        return self.acquire_token()

    def acquire_token(self) -> str:
        """Acquire an access token based on configured auth mode."""
        if self.config.mode == "token":
            if not self.config.access_token:
                raise AuthenticationError("Token mode selected but no access token provided.")
            return self.config.access_token
        elif self.config.mode == "certificate":
            return self._acquire_certificate_token()
        else:
            raise AuthenticationError(f"Unknown auth mode: {self.config.mode}")

    def _acquire_certificate_token(self) -> str:
        if self._app is None:
            self._app = self._build_app()

        result = self._app.acquire_token_for_client(scopes=self.config.scopes)

        if "access_token" in result:
            return result["access_token"]
        error = result.get("error_description", result.get("error", "Unknown"))
        raise AuthenticationError(f"Certificate auth failed: {error}")

    def _build_app(self) -> msal.ConfidentialClientApplication:
        """Load the PFX and create the MSAL confidential client."""
        cfg = self.config
        if not (cfg.tenant_id and cfg.client_id and cfg.certificate_path):
            raise AuthenticationError(
                "Certificate auth requires tenant_id, client_id and certificate_path."
            )

        logger.info("Authenticating with certificate-based app credentials...")
        try:
            with open(cfg.certificate_path, "r") as f:
                cert_bytes = base64.b64decode(f.read().strip())
            password_bytes = cfg.certificate_password.encode("utf-8") if cfg.certificate_password else None

            private_key, certificate, _ = pkcs12.load_key_and_certificates(
                cert_bytes, password_bytes
            )
            private_key_pem = private_key.private_bytes(
                Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
            ).decode("utf-8")
            thumbprint = certificate.fingerprint(SHA1()).hex()
            logger.info(f"Certificate loaded. Thumbprint: {thumbprint}")

        except FileNotFoundError:
            raise AuthenticationError(f"Certificate file not found: {cfg.certificate_path}")
        except (ValueError, TypeError) as e:
            raise AuthenticationError(f"Failed to load certificate: {e}")

        return msal.ConfidentialClientApplication(
            client_id=cfg.client_id,
            authority=AUTHORITY_TEMPLATE.format(tenant_id=cfg.tenant_id),
            client_credential={
                "thumbprint": thumbprint,
                "private_key": private_key_pem,
            },
        )
