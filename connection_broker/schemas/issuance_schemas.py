"""Issuance request and access artifact schemas."""

from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field

from ..constants import Limits


class IssuanceRequest(BaseModel):
    """Body of an issuance request."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    delegation_token: str = Field(..., min_length=1, alias="delegationToken")
    min_ttl_seconds: int = Field(
        default=Limits.DEFAULT_MIN_TTL_SECONDS, ge=0, alias="minTtlSeconds"
    )


class AccessArtifact(BaseModel):
    """Short-lived access material handed back to the caller. Never persisted."""

    access_token: str = Field(..., repr=False)
    expires_in: int = Field(..., ge=0)
    scopes: List[str]
    vendor: Dict[str, Any] = Field(default_factory=dict)

    def to_response(self) -> Dict[str, Any]:
        return {
            "access_token": self.access_token,
            "expires_in": self.expires_in,
            "scopes": list(self.scopes),
            "vendor": dict(self.vendor),
        }
