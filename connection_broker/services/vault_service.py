"""
HTTP client for the external token vault.

The vault is the system of record for provider credentials: it runs the
provider OAuth handshake, stores and refreshes tokens, and tears them down.
Every request is bounded by the configured timeout. Upstream response bodies
are logged for operators but never placed in error messages.
"""

import hashlib
import hmac
from datetime import UTC, datetime
from typing import Any, Dict, List, Optional
from urllib.parse import quote, urlencode

import requests

from ..config import VaultConfig, get_config
from ..constants import CONNECT_ID_TAG, SCOPES_TAG
from ..exceptions import ErrorCode, ExternalServiceError, ServiceError, VaultTimeoutError
from ..schemas.vault_schemas import AccessMaterial, AuthorizationSession
from ..utils.logger import get_logger
from ..utils.scope_utils import scopes_to_string

SERVICE_NAME = "vault"


class VaultService:
    """
    Thin wrapper over the vault REST API.

    Constructed once per process with its configuration and shared by the
    services that need it.
    """

    def __init__(
        self,
        config: Optional[VaultConfig] = None,
        session: Optional[requests.Session] = None,
        logger=None,
    ):
        self.config = config or get_config().vault
        self.logger = logger or get_logger()

        if not self.config.secret_key:
            raise ServiceError(
                "Vault secret key is not configured",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="VaultService.__init__",
            )

        self.http = session or requests.Session()
        self.http.headers.update(
            {
                "Authorization": f"Bearer {self.config.secret_key}",
                "Content-Type": "application/json",
            }
        )

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.config.base_url}{path}"
        try:
            response = self.http.request(method, url, timeout=self.config.timeout_seconds, **kwargs)
        except requests.Timeout as e:
            raise VaultTimeoutError(path=path, cause=e) from e
        except requests.RequestException as e:
            raise ExternalServiceError(
                "Token vault is unreachable", service_name=SERVICE_NAME, path=path, cause=e
            ) from e

        if response.status_code >= 500 or response.status_code in (401, 403, 429):
            self.logger.error(
                "Vault request failed",
                extra={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                    "response_body": response.text[:500],
                },
            )
            raise ExternalServiceError(
                "Token vault request failed",
                service_name=SERVICE_NAME,
                path=path,
                upstream_status=response.status_code,
            )
        return response

    @staticmethod
    def _json(response: requests.Response) -> Dict[str, Any]:
        try:
            body = response.json()
        except ValueError as e:
            raise ExternalServiceError(
                "Token vault returned an invalid response", service_name=SERVICE_NAME, cause=e
            ) from e
        if not isinstance(body, dict):
            raise ExternalServiceError(
                "Token vault returned an invalid response", service_name=SERVICE_NAME
            )
        return body

    def _raise_for_client_error(self, response: requests.Response, action: str) -> None:
        if response.status_code >= 400:
            self.logger.warning(
                f"Vault rejected {action}",
                extra={"status_code": response.status_code, "response_body": response.text[:500]},
            )
            raise ExternalServiceError(
                f"Token vault rejected {action}",
                service_name=SERVICE_NAME,
                upstream_status=response.status_code,
            )

    def create_authorization_session(
        self,
        subject: str,
        tenant_id: str,
        provider: str,
        scopes: List[str],
        tags: Optional[Dict[str, str]] = None,
    ) -> AuthorizationSession:
        """Open a connect session for an end user; ``tags`` travel back on the activation event."""
        payload = {
            "end_user": {"id": subject, "tags": tags or {}},
            "organization": {"id": tenant_id},
            "allowed_integrations": [provider],
            "integrations_config_defaults": {
                provider: {"user_scopes": scopes_to_string(scopes)},
            },
        }
        response = self._request("POST", "/connect/sessions", json=payload)
        self._raise_for_client_error(response, "connect session")
        return self._session_from(response)

    def create_reconnect_session(
        self,
        provider: str,
        provider_connection_id: str,
        subject: str,
        tenant_id: str,
        scopes: List[str],
        connection_id: Optional[str] = None,
    ) -> AuthorizationSession:
        """Open a reconnect session for an existing vault connection."""
        tags = {SCOPES_TAG: scopes_to_string(scopes)}
        if connection_id:
            tags[CONNECT_ID_TAG] = connection_id
        payload = {
            "connection_id": provider_connection_id,
            "integration_id": provider,
            "end_user": {"id": subject, "tags": tags},
            "organization": {"id": tenant_id},
            "integrations_config_defaults": {
                provider: {"user_scopes": scopes_to_string(scopes)},
            },
        }
        response = self._request("POST", "/connect/sessions/reconnect", json=payload)
        self._raise_for_client_error(response, "reconnect session")
        return self._session_from(response)

    def _session_from(self, response: requests.Response) -> AuthorizationSession:
        data = self._json(response).get("data") or {}
        if not data.get("token"):
            raise ExternalServiceError(
                "Token vault returned no session token", service_name=SERVICE_NAME
            )
        return AuthorizationSession(token=data["token"], expires_at=data.get("expires_at"))

    def build_authorization_url(self, provider: str, session_token: str) -> str:
        query = urlencode({"connect_session_token": session_token})
        return f"{self.config.auth_url}/{quote(provider, safe='')}?{query}"

    def get_access_material(
        self, provider: str, provider_connection_id: str, force_refresh: bool = False
    ) -> Optional[AccessMaterial]:
        """
        Current access token for a vault connection.

        Returns:
            The material, or None when the vault has no credential for it
        """
        response = self._request(
            "GET",
            f"/connection/{quote(provider_connection_id, safe='')}",
            params={
                "provider_config_key": provider,
                "force_refresh": "true" if force_refresh else "false",
            },
        )
        if response.status_code == 404:
            return None
        self._raise_for_client_error(response, "access token lookup")

        credentials = self._json(response).get("credentials") or {}
        access_token = credentials.get("access_token")
        if not access_token:
            return None
        return AccessMaterial(
            access_token=access_token, expires_at=self._parse_expiry(credentials.get("expires_at"))
        )

    def refresh_access_material(
        self, provider: str, provider_connection_id: str
    ) -> Optional[AccessMaterial]:
        return self.get_access_material(provider, provider_connection_id, force_refresh=True)

    def delete_connection(self, provider: str, provider_connection_id: str) -> bool:
        """
        Tear down the provider credential held by the vault.

        Returns:
            True when the vault confirms deletion or no longer knows the connection
        """
        response = self._request(
            "DELETE",
            f"/connection/{quote(provider_connection_id, safe='')}",
            params={"provider_config_key": provider},
        )
        if response.status_code == 404 or response.ok:
            return True

        self.logger.warning(
            "Vault refused connection deletion",
            extra={
                "provider": provider,
                "status_code": response.status_code,
                "response_body": response.text[:500],
            },
        )
        return False

    def verify_webhook_signature(self, signature: Optional[str], raw_body: bytes) -> bool:
        """Constant-time check of the HMAC-SHA256 hex digest of the raw webhook body."""
        if not signature:
            return False
        if isinstance(raw_body, str):
            raw_body = raw_body.encode("utf-8")
        expected = hmac.new(
            self.config.effective_webhook_secret.encode("utf-8"), raw_body, hashlib.sha256
        ).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    @staticmethod
    def _parse_expiry(value: Any) -> Optional[datetime]:
        if not value:
            return None
        if isinstance(value, (int, float)):
            return datetime.fromtimestamp(value, tz=UTC)
        try:
            return datetime.fromisoformat(str(value).replace("Z", "+00:00"))
        except ValueError:
            return None
