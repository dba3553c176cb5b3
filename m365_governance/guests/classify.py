"""
Guest classification for SharePoint site users.

  B2B  login name carries the Entra B2B '#EXT#' marker
  SPO  login name carries the SharePoint-only guest URN (literal or URL-encoded)
"""

from __future__ import annotations

import re
from typing import Optional

B2B = "B2B"
SPO = "SPO"

EXT_MARKER = "#EXT#"

# SharePoint lower-cases claims, so both markers are matched case-insensitively
_EXT_RE = re.compile(re.escape(EXT_MARKER), re.IGNORECASE)
_SPO_GUEST_RE = re.compile(r"urn(?::|%3a)spo(?::|%3a)guest", re.IGNORECASE)
_SPO_GUEST_ADDRESS_RE = re.compile(r"urn(?::|%3a)spo(?::|%3a)guest#(?P<address>[^|]+)$", re.IGNORECASE)


def classify_user(login_name: Optional[str]) -> Optional[str]:
    """Return "B2B", "SPO" or None (not a guest)."""
    if not login_name:
        return None
    if _EXT_RE.search(login_name):
        return B2B
    if _SPO_GUEST_RE.search(login_name):
        return SPO
    return None


def address_from_login(login_name: str) -> str:
    """Recover the guest's e-mail address from a guest login name, or ''."""
    claim = login_name.rsplit("|", 1)[-1]

    match = _EXT_RE.search(claim)
    if match:
        # guest_contoso.com#EXT#@tenant.onmicrosoft.com -> guest@contoso.com
        local = claim[:match.start()]
        name, sep, domain = local.rpartition("_")
        return f"{name}@{domain}" if sep else ""

    match = _SPO_GUEST_ADDRESS_RE.search(login_name)
    if match:
        return match.group("address")
    return ""


def email_with_fallback(user: dict) -> str:
    return user.get("Email") or address_from_login(user.get("LoginName") or "")
