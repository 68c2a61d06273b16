"""
Delegation token validation.

A delegation token is minted by the trusted upstream for one tenant, one
connection and one subject. Validation verifies the signature against an
algorithm allow-list, then checks expiry, presence of every mandatory claim,
the fixed service identities, and finally the binding to the resource named
in the request path.
"""

from typing import Any, Dict, Optional

import jwt
from pydantic import ValidationError as PydanticValidationError

from ..config import DelegationConfig, get_config
from ..constants import DelegationClaim
from ..db.db_base import utc_now
from ..exceptions import (
    ClaimMismatchError,
    ErrorCode,
    ExpiredTokenError,
    InvalidTokenError,
    ServiceError,
)
from ..schemas.delegation_schemas import DelegationClaims
from ..utils.logger import get_logger


def _is_number(value: Any) -> bool:
    return isinstance(value, (int, float)) and not isinstance(value, bool)


class DelegationTokenValidator:
    """
    Stateless validator, constructed once with its configuration and shared.
    """

    def __init__(self, config: Optional[DelegationConfig] = None, logger=None):
        self.config = config or get_config().delegation
        self.logger = logger or get_logger()

        if not self.config.signing_key:
            raise ServiceError(
                "Delegation token signing key is not configured",
                error_code=ErrorCode.CONFIGURATION_ERROR,
                operation="DelegationTokenValidator.__init__",
            )

    def validate(self, token: str, path_tenant_id: str, path_connection_id: str) -> DelegationClaims:
        """
        Validate a delegation token and bind it to the addressed resource.

        Args:
            token: Compact JWS string
            path_tenant_id: Tenant id taken from the request path
            path_connection_id: Connection id taken from the request path

        Returns:
            The typed claims

        Raises:
            InvalidTokenError: Bad signature, format or algorithm
            ExpiredTokenError: Current time is at or past ``exp``
            ClaimMismatchError: Missing, malformed or mismatched claim
        """
        payload = self._decode(token)

        self._check_expiry(payload)
        self._check_required_claims(payload)
        self._check_identities(payload)
        self._check_binding(payload, path_tenant_id, path_connection_id)
        self._check_claim_types(payload)

        try:
            claims = DelegationClaims(**{**payload, "exp": int(payload[DelegationClaim.EXPIRY])})
        except PydanticValidationError as e:
            raise ClaimMismatchError("malformed delegation token claims", cause=e) from e

        self.logger.debug(
            "Delegation token validated",
            extra={
                "tenant_id": claims.tid,
                "connection_id": claims.cid,
                "jti": claims.jti,
            },
        )
        return claims

    def _decode(self, token: str) -> Dict[str, Any]:
        if not token or not isinstance(token, str):
            raise InvalidTokenError("Delegation token is required")

        try:
            # Expiry and identities are checked below so each failure maps to its own error
            payload = jwt.decode(
                token,
                self.config.signing_key,
                algorithms=self.config.algorithms,
                options={
                    "verify_signature": True,
                    "verify_exp": False,
                    "verify_aud": False,
                    "verify_iss": False,
                },
            )
        except jwt.PyJWTError as e:
            raise InvalidTokenError(cause=e) from e

        if not isinstance(payload, dict):
            raise InvalidTokenError("Delegation token payload must be a JSON object")
        return payload

    def _check_expiry(self, payload: Dict[str, Any]) -> None:
        exp = payload.get(DelegationClaim.EXPIRY)
        if exp is None:
            return
        if not _is_number(exp):
            raise ClaimMismatchError("exp must be a numeric date", claim=DelegationClaim.EXPIRY)
        if utc_now().timestamp() >= exp + self.config.leeway_seconds:
            raise ExpiredTokenError()

    @staticmethod
    def _check_required_claims(payload: Dict[str, Any]) -> None:
        for claim in DelegationClaim.REQUIRED:
            value = payload.get(claim)
            if value is None or value == "":
                raise ClaimMismatchError(f"missing required claim: {claim}", claim=claim)

    def _check_identities(self, payload: Dict[str, Any]) -> None:
        expected = (
            (DelegationClaim.AUDIENCE, self.config.audience, "invalid audience"),
            (DelegationClaim.AUTHORIZED_PARTY, self.config.authorized_party, "invalid authorized party"),
            (DelegationClaim.ISSUER, self.config.issuer, "invalid issuer"),
        )
        for claim, identity, reason in expected:
            if payload[claim] != identity:
                raise ClaimMismatchError(reason, claim=claim)

    @staticmethod
    def _check_binding(payload: Dict[str, Any], path_tenant_id: str, path_connection_id: str) -> None:
        if payload[DelegationClaim.TENANT_ID] != path_tenant_id:
            raise ClaimMismatchError(
                "token tenant does not match requested tenant", claim=DelegationClaim.TENANT_ID
            )
        if payload[DelegationClaim.CONNECTION_ID] != path_connection_id:
            raise ClaimMismatchError(
                "token connection does not match requested connection",
                claim=DelegationClaim.CONNECTION_ID,
            )

    @staticmethod
    def _check_claim_types(payload: Dict[str, Any]) -> None:
        scopes = payload[DelegationClaim.SCOPES]
        if not isinstance(scopes, list) or not all(isinstance(s, str) for s in scopes):
            raise ClaimMismatchError("scp must be a list of strings", claim=DelegationClaim.SCOPES)

        version = payload.get(DelegationClaim.AUTHORIZATION_VERSION)
        if version is not None and (not isinstance(version, int) or isinstance(version, bool)):
            raise ClaimMismatchError(
                "cver must be an integer", claim=DelegationClaim.AUTHORIZATION_VERSION
            )
