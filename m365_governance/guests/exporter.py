"""
Guest-User Exporter
Walks SharePoint / OneDrive sites, lists each site's users and appends every
guest (Entra B2B or SharePoint-only) to GuestUsers_<timestamp>.csv.
A failing site is logged, written to Errors_<timestamp>.csv and skipped.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from pathlib import Path
from typing import Optional

import httpx

from ..auth.authenticator import Authenticator
from ..config import GRAPH_BASE_URL, GuestExportConfig
from ..graph.client import GraphClient
from ..reporting.csv_export import CsvAppender, GUEST_USER_FIELDS, SITE_ERROR_FIELDS
from ..safety.guardian import SafetyGuardian
from ..sharepoint.client import SharePointClient
from .classify import classify_user, email_with_fallback
from .sites import Site, enumerate_tenant_sites, load_sites_from_csv

logger = logging.getLogger("m365_governance.guests")


@dataclass
class ExportSummary:
    guests_path: Path
    errors_path: Path
    sites_total: int = 0
    sites_processed: int = 0
    sites_failed: int = 0
    guests_exported: int = 0
    failed_sites: list[str] = field(default_factory=list)


def guest_row(site_url: str, site_title: str, user_type: str, user: dict) -> dict:
    """Flatten one SharePoint site user into the export's column layout."""
    groups = user.get("Groups") or []
    if isinstance(groups, dict):
        groups = groups.get("results", [])
    return {
        "SiteUrl": site_url,
        "SiteTitle": site_title,
        "ExternalUserType": user_type,
        "Email": user.get("Email") or "",
        "EmailWithFallback": email_with_fallback(user),
        "LoginName": user.get("LoginName"),
        "Title": user.get("Title"),
        "Id": user.get("Id"),
        "UserId": (user.get("UserId") or {}).get("NameId", ""),
        "UserPrincipalName": user.get("UserPrincipalName"),
        "AadObjectId": (user.get("AadObjectId") or {}).get("NameId", ""),
        "IsShareByEmailGuestUser": user.get("IsShareByEmailGuestUser"),
        "IsEmailAuthenticationGuestUser": user.get("IsEmailAuthenticationGuestUser"),
        "IsHiddenInUI": user.get("IsHiddenInUI"),
        "IsSiteAdmin": user.get("IsSiteAdmin"),
        "Groups": "; ".join(g.get("Title", "") for g in groups),
        "Expiration": user.get("Expiration"),
    }


class GuestUserExporter:
    """Exports guest users of every resolved site, one site at a time."""

    def __init__(
        self,
        config: GuestExportConfig,
        authenticator: Authenticator,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.config = config
        self.authenticator = authenticator
        self.transport = transport
        self.guardian = SafetyGuardian()
        self.guests = CsvAppender(config.guests_path, GUEST_USER_FIELDS, config.delimiter)
        self.errors = CsvAppender(config.errors_path, SITE_ERROR_FIELDS, config.delimiter)

    async def resolve_sites(self) -> list[Site]:
        """Sites come from the input CSV when given, otherwise from the tenant."""
        if self.config.input_csv:
            return load_sites_from_csv(self.config.input_csv, self.config.delimiter)
        token = await self.authenticator.acquire_token(GRAPH_BASE_URL)
        async with GraphClient(token, self.guardian, transport=self.transport) as graph:
            return await enumerate_tenant_sites(graph, self.config.scope)

    async def run(self) -> ExportSummary:
        summary = ExportSummary(
            guests_path=self.config.guests_path,
            errors_path=self.config.errors_path,
        )
        sites = await self.resolve_sites()
        summary.sites_total = len(sites)
        print(f"\n  Exporting guest users from {len(sites)} sites...\n")

        for index, site in enumerate(sites, start=1):
            logger.info(f"[{index}/{len(sites)}] {site.url}")
            try:
                exported = await self.export_site(site)
            except Exception as e:
                logger.exception(f"Failed to export guests from {site.url}")
                self.errors.append({"SiteUrl": site.url, "Error": f"{type(e).__name__}: {e}"})
                summary.sites_failed += 1
                summary.failed_sites.append(site.url)
                continue
            summary.sites_processed += 1
            summary.guests_exported += exported

        logger.info(
            f"Guest export finished: {summary.guests_exported} guests from "
            f"{summary.sites_processed} sites, {summary.sites_failed} sites failed"
        )
        return summary

    async def export_site(self, site: Site) -> int:
        """Connect to one site and append its guests. Returns the number exported."""
        token = await self.authenticator.acquire_token(self.config.sharepoint_resource)
        exported = 0
        async with SharePointClient(site.url, token, self.guardian, transport=self.transport) as sp:
            web = await sp.get_web()
            title = web.get("Title") or site.title or ""
            for user in await sp.get_site_users():
                user_type = classify_user(user.get("LoginName"))
                if user_type is None:
                    continue
                self.guests.append(guest_row(site.url, title, user_type, user))
                exported += 1
        logger.info(f"{site.url}: {exported} guests")
        return exported
