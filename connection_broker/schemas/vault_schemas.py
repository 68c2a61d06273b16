"""
Schemas for data exchanged with the external token vault.
"""

from datetime import datetime
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..constants import CONNECT_ID_TAG, SCOPES_TAG


class AccessMaterial(BaseModel):
    """Current provider access token as reported by the vault."""

    access_token: str = Field(..., min_length=1, repr=False)
    expires_at: Optional[datetime] = None


class AuthorizationSession(BaseModel):
    """Short-lived session token used to build an end-user authorization link."""

    token: str = Field(..., repr=False)
    expires_at: Optional[datetime] = None


class VaultEndUser(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    end_user_id: Optional[str] = Field(None, alias="endUserId")
    organization_id: Optional[str] = Field(None, alias="organizationId")
    tags: Dict[str, Any] = Field(default_factory=dict)


class VaultEvent(BaseModel):
    """
    Webhook event delivered by the vault.

    ``auth`` events report a completed provider handshake (``creation``) or a
    scope change on an existing connection (``override``).
    """

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    type: str
    operation: Optional[str] = None
    success: bool = True
    connection_id: Optional[str] = Field(None, alias="connectionId")
    provider_config_key: Optional[str] = Field(None, alias="providerConfigKey")
    provider: Optional[str] = None
    end_user: VaultEndUser = Field(default_factory=VaultEndUser, alias="endUser")
    connection_config: Dict[str, Any] = Field(default_factory=dict, alias="connectionConfig")

    @property
    def integration(self) -> Optional[str]:
        """Provider key as stored on the connection."""
        return self.provider_config_key or self.provider

    @property
    def subject(self) -> Optional[str]:
        return self.end_user.end_user_id

    @property
    def tenant_id(self) -> Optional[str]:
        return self.end_user.organization_id

    @property
    def correlation_tag(self) -> Optional[str]:
        return self.end_user.tags.get(CONNECT_ID_TAG)

    @property
    def replacement_scopes(self) -> Optional[str]:
        return self.end_user.tags.get(SCOPES_TAG)
