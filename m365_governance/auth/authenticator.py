"""
Authentication module — Supports managed identity, certificate-based and delegated auth.
Uses MSAL for token acquisition against Microsoft Identity Platform.
"""

from __future__ import annotations

import base64
import getpass
import logging
import os

import msal
import requests
from cryptography.hazmat.primitives.hashes import SHA1
from cryptography.hazmat.primitives.serialization import pkcs12, Encoding, PrivateFormat, NoEncryption

from ..config import (
    AppCertificate,
    AuthVariant,
    DeviceCode,
    DEFAULT_PUBLIC_CLIENT_ID,
    GRAPH_BASE_URL,
    SystemIdentity,
    UserIdentity,
)

logger = logging.getLogger("m365_governance.auth")


class AuthenticationError(Exception):
    """Raised when authentication fails."""
    pass


def normalize_thumbprint(value: str) -> str:
    return "".join(value.split()).replace(":", "").lower()


class Authenticator:
    """
    Handles MSAL-based authentication for Microsoft Graph and SharePoint.
    Supports:
      - System-assigned managed identity
      - User-assigned managed identity
      - Certificate-based app-only authentication
      - Delegated interactive authentication (device code flow)

    The auth variant is resolved once; token requests for different resources
    reuse the same MSAL client (and therefore its token cache).
    """

    def __init__(self, config: AuthVariant):
        self.config = config
        self._app = None

    async def acquire_token(self, resource: str = GRAPH_BASE_URL) -> str:
        """Acquire an access token for `resource` based on configured auth mode."""
        resource = resource.rstrip("/")
        if isinstance(self.config, (SystemIdentity, UserIdentity)):
            token = self._acquire_managed_identity_token(resource)
        elif isinstance(self.config, AppCertificate):
            token = self._acquire_certificate_token(resource)
        elif isinstance(self.config, DeviceCode):
            token = self._acquire_delegated_token()
        else:
            raise AuthenticationError(f"Unknown auth mode: {self.config!r}")
        return token

    # ── Managed identity ────────────────────────────────────────────────────

    def _acquire_managed_identity_token(self, resource: str) -> str:
        if self._app is None:
            if isinstance(self.config, UserIdentity):
                logger.info(f"Authenticating with user-assigned identity {self.config.client_id}...")
                identity = msal.UserAssignedManagedIdentity(client_id=self.config.client_id)
            else:
                logger.info("Authenticating with system-assigned identity...")
                identity = msal.SystemAssignedManagedIdentity()
            self._app = msal.ManagedIdentityClient(identity, http_client=requests.Session())

        result = self._app.acquire_token_for_client(resource=resource)
        return self._token_from_result(result, "Managed identity")

    # ── Certificate ─────────────────────────────────────────────────────────

    def _acquire_certificate_token(self, resource: str) -> str:
        """Acquire token using certificate-based client credentials."""
        if self._app is None:
            self._app = self._build_certificate_app(self.config)

        result = self._app.acquire_token_for_client(scopes=[f"{resource}/.default"])
        return self._token_from_result(result, "Certificate auth")

    def _build_certificate_app(self, cert_config: AppCertificate) -> msal.ConfidentialClientApplication:
        logger.info("Authenticating with certificate-based app credentials...")
        private_key_pem, thumbprint = load_certificate(
            cert_config.certificate_path, cert_config.certificate_password
        )

        if cert_config.thumbprint and (
            normalize_thumbprint(cert_config.thumbprint) != thumbprint
        ):
            raise AuthenticationError(
                f"Certificate thumbprint mismatch: expected {cert_config.thumbprint}, "
                f"loaded {thumbprint.upper()} from {cert_config.certificate_path}"
            )
        logger.info(f"Certificate loaded. Thumbprint: {thumbprint.upper()}")

        return msal.ConfidentialClientApplication(
            client_id=cert_config.client_id,
            authority=f"https://login.microsoftonline.com/{cert_config.tenant_id}",
            client_credential={
                "thumbprint": thumbprint,
                "private_key": private_key_pem,
            },
        )

    # ── Delegated ───────────────────────────────────────────────────────────

    def _acquire_delegated_token(self) -> str:
        """Acquire token using delegated (device code) flow."""
        deleg_config = self.config
        logger.info("Initiating device code authentication flow...")

        if self._app is None:
            self._app = msal.PublicClientApplication(
                client_id=deleg_config.client_id or DEFAULT_PUBLIC_CLIENT_ID,
                authority=f"https://login.microsoftonline.com/{deleg_config.tenant_id}",
            )

        flow = self._app.initiate_device_flow(scopes=list(deleg_config.scopes))
        if "user_code" not in flow:
            raise AuthenticationError(
                f"Device code flow failed: {flow.get('error_description', 'Unknown')}"
            )

        print(f"\n{'='*60}")
        print(f"  To sign in, open: {flow['verification_uri']}")
        print(f"  Enter code: {flow['user_code']}")
        print(f"{'='*60}\n")

        result = self._app.acquire_token_by_device_flow(flow)
        return self._token_from_result(result, "Delegated auth")

    @staticmethod
    def _token_from_result(result: dict, label: str) -> str:
        if "access_token" in result:
            logger.info(f"{label} successful.")
            return result["access_token"]
        error = result.get("error_description", result.get("error", "Unknown"))
        raise AuthenticationError(f"{label} failed: {error}")


def load_certificate(cert_path: str, password: str = "") -> tuple[str, str]:
    """
    Load a PFX certificate and return (private key PEM, lowercase SHA-1 thumbprint).

    `cert_path` is either a base64 text file holding the PFX or a binary
    .pfx/.p12 file. An empty password falls back to M365_CERT_PASSWORD and
    then to an interactive prompt.
    """
    if not password:
        password = os.environ.get("M365_CERT_PASSWORD", "")

    try:
        if cert_path.lower().endswith((".pfx", ".p12")):
            with open(cert_path, "rb") as f:
                cert_bytes = f.read()
        else:
            with open(cert_path, "r") as f:
                cert_bytes = base64.b64decode(f.read().strip())
    except FileNotFoundError:
        raise AuthenticationError(f"Certificate file not found: {cert_path}.")

    try:
        private_key, certificate, _ = _load_pkcs12(cert_bytes, password)
    except ValueError:
        if password:
            raise AuthenticationError(f"Failed to load certificate {cert_path}: bad password or format")
        # Unprotected load failed; the PFX is password-protected
        password = getpass.getpass("Enter the certificate password: ")
        try:
            private_key, certificate, _ = _load_pkcs12(cert_bytes, password)
        except ValueError as e:
            raise AuthenticationError(f"Failed to load certificate {cert_path}: {e}")

    if private_key is None or certificate is None:
        raise AuthenticationError(f"Certificate {cert_path} has no private key or certificate.")

    private_key_pem = private_key.private_bytes(
        Encoding.PEM, PrivateFormat.PKCS8, NoEncryption()
    ).decode("utf-8")
    thumbprint = certificate.fingerprint(SHA1()).hex()
    return private_key_pem, thumbprint


def _load_pkcs12(cert_bytes: bytes, password: str):
    password_bytes = password.encode("utf-8") if password else None
    return pkcs12.load_key_and_certificates(cert_bytes, password_bytes)
