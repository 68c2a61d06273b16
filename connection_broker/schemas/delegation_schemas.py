"""Typed delegation token claims."""

from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, StrictInt, StrictStr


class DelegationClaims(BaseModel):
    """
    Claims of a verified delegation token.

    Built only after the validator has checked presence, identities and
    resource binding, so every instance is bound to one tenant and connection.
    """

    model_config = ConfigDict(frozen=True, strict=True, extra="ignore")

    aud: StrictStr
    azp: StrictStr
    iss: StrictStr
    exp: StrictInt
    jti: StrictStr = Field(..., min_length=1)
    tid: StrictStr
    cid: StrictStr
    sub: StrictStr
    scp: List[StrictStr]
    cver: Optional[StrictInt] = None

    @property
    def tenant_id(self) -> str:
        return self.tid

    @property
    def connection_id(self) -> str:
        return self.cid

    @property
    def subject(self) -> str:
        return self.sub

    @property
    def scopes(self) -> List[str]:
        return list(self.scp)

    @property
    def authorization_version(self) -> Optional[int]:
        return self.cver
