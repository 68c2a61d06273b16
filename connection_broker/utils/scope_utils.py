"""
Scope normalization and authorization.

Scopes are compared case-insensitively. They are lowercased when recorded on a
connection and again when compared against a request.
"""

import re
from typing import Iterable, List, Optional, Union

from ..constants import DEFAULT_SCOPES
from ..exceptions import ScopeViolationError

_SCOPE_SEPARATORS = re.compile(r"[\s,]+")


def normalize_scopes(scopes: Optional[Union[str, Iterable[str]]]) -> List[str]:
    """
    Lowercase, strip and de-duplicate scopes, keeping first-seen order.

    Accepts a list or a space/comma separated string as delivered by vault events.
    """
    if scopes is None:
        return []
    if isinstance(scopes, str):
        scopes = _SCOPE_SEPARATORS.split(scopes)

    normalized: List[str] = []
    for scope in scopes:
        value = scope.strip().lower()
        if value and value not in normalized:
            normalized.append(value)
    return normalized


def authorize_scopes(requested: List[str], authorized: Iterable[str]) -> List[str]:
    """
    Check that every requested scope is authorized on the connection.

    Returns ``requested`` unchanged when it is a subset of ``authorized``.

    Raises:
        ScopeViolationError: naming every requested scope outside the authorized set
    """
    allowed = set(normalize_scopes(list(authorized)))
    unauthorized: List[str] = []
    seen = set()
    for scope in requested:
        key = scope.strip().lower()
        if key not in allowed and key not in seen:
            unauthorized.append(scope)
            seen.add(key)

    if unauthorized:
        raise ScopeViolationError(unauthorized)
    return requested


def default_scopes_for(provider: str) -> List[str]:
    """Default scopes requested when a caller does not name any."""
    return list(DEFAULT_SCOPES.get(provider.lower(), []))


def scopes_to_string(scopes: Iterable[str]) -> str:
    return " ".join(scopes)
