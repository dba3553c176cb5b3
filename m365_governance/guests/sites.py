"""
Site resolution for the guest export: an explicit CSV list, or every site in
the tenant filtered to SharePoint sites, OneDrive sites, or both.
"""

from __future__ import annotations

import csv
import logging
from dataclasses import dataclass
from typing import Optional

from ..graph.client import GraphClient

logger = logging.getLogger("m365_governance.guests.sites")

PERSONAL_SITE_MARKER = "-my.sharepoint.com/personal/"


@dataclass(frozen=True)
class Site:
    url: str
    title: Optional[str] = None

    @property
    def is_personal(self) -> bool:
        return PERSONAL_SITE_MARKER in self.url.lower()


def load_sites_from_csv(path: str, delimiter: str = ",") -> list[Site]:
    """Read sites from a CSV with a 'Url' column and an optional 'Title' column."""
    with open(path, "r", newline="", encoding="utf-8-sig") as fh:
        reader = csv.DictReader(fh, delimiter=delimiter)
        if not reader.fieldnames or "Url" not in reader.fieldnames:
            raise ValueError(f"Input CSV {path} has no 'Url' column")
        sites = []
        for row in reader:
            url = (row.get("Url") or "").strip()
            if not url:
                continue
            sites.append(Site(url=url, title=(row.get("Title") or "").strip() or None))
    logger.info(f"Loaded {len(sites)} sites from {path}")
    return sites


def in_scope(site: Site, scope: str, personal: Optional[bool] = None) -> bool:
    is_personal = site.is_personal if personal is None else personal
    if scope == "SharePoint":
        return not is_personal
    if scope == "OneDrive":
        return is_personal
    return True


async def enumerate_tenant_sites(graph: GraphClient, scope: str) -> list[Site]:
    """List every site collection in the tenant that falls in `scope`."""
    sites = []
    async for item in graph.get_all_pages_stream(
        "sites/getAllSites",
        params={"$select": "webUrl,displayName,isPersonalSite"},
        skip_top=True,
    ):
        url = item.get("webUrl")
        if not url:
            continue
        site = Site(url=url, title=item.get("displayName"))
        personal = item.get("isPersonalSite")
        if personal is None:
            personal = site.is_personal
        if in_scope(site, scope, personal):
            sites.append(site)
    logger.info(f"Tenant returned {len(sites)} sites in scope {scope}")
    return sites
