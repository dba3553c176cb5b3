"""
Site-scoped SharePoint REST client.

A client is bound to exactly one site URL; callers open a new client per
site, the same way the guest export reconnects for every site it visits.
Transport, throttling and safety checks are inherited from GraphClient.
"""

from __future__ import annotations

import logging
from typing import Optional

import httpx

from ..graph.client import GraphAPIError, GraphClient
from ..safety.guardian import SafetyGuardian

logger = logging.getLogger("m365_governance.sharepoint")

SITE_USER_FIELDS = (
    "Id,LoginName,Title,Email,IsHiddenInUI,IsSiteAdmin,PrincipalType,"
    "IsShareByEmailGuestUser,IsEmailAuthenticationGuestUser,UserPrincipalName,"
    "UserId,AadObjectId,Expiration,Groups/Title"
)


class SharePointAPIError(GraphAPIError):
    """Raised when SharePoint REST returns a non-recoverable error."""
    service = "SharePoint API"


class SharePointClient(GraphClient):
    """Async SharePoint REST client for a single site collection."""

    error_class = SharePointAPIError

    def __init__(
        self,
        site_url: str,
        access_token: str,
        guardian: SafetyGuardian,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        super().__init__(access_token, guardian, transport=transport)
        self.site_url = site_url.rstrip("/")

    def _default_headers(self) -> dict:
        headers = super()._default_headers()
        headers["Accept"] = "application/json;odata=nometadata"
        return headers

    def _build_url(self, endpoint: str) -> str:
        if endpoint.startswith("http"):
            return endpoint
        return f"{self.site_url}/{endpoint.lstrip('/')}"

    async def get_web(self) -> dict:
        """Return the root web's Title and Url."""
        return await self.get("_api/web", params={"$select": "Title,Url"})

    async def get_site_users(self) -> list[dict]:
        """List every user known to the site, with SharePoint group titles expanded."""
        return await self.get_all_pages(
            "_api/web/siteusers",
            params={"$select": SITE_USER_FIELDS, "$expand": "Groups"},
            skip_top=True,
        )
