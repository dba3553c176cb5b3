"""
Graph app-role assignment for the identity that runs access reviews.

Grants the fixed set of Microsoft Graph application permissions in
REQUIRED_APP_ROLES to one service principal. Roles the principal already
holds are left alone.
"""

from __future__ import annotations

import logging
from typing import Iterable

from .config import REQUIRED_APP_ROLES
from .graph.client import GraphAPIError, GraphClient

logger = logging.getLogger("m365_governance.permissions")

MICROSOFT_GRAPH_APP_ID = "00000003-0000-0000-c000-000000000000"


async def get_graph_service_principal(graph: GraphClient) -> dict:
    data = await graph.get(
        "servicePrincipals",
        params={
            "$filter": f"appId eq '{MICROSOFT_GRAPH_APP_ID}'",
            "$select": "id,appId,displayName,appRoles",
        },
    )
    matches = data.get("value", [])
    if not matches:
        raise GraphAPIError(404, "Microsoft Graph service principal not found", "servicePrincipals")
    return matches[0]


async def grant_graph_permissions(
    graph: GraphClient,
    principal_id: str,
    roles: Iterable[str] = tuple(REQUIRED_APP_ROLES),
) -> list[tuple[str, str]]:
    """
    Assign each Graph app role in `roles` to `principal_id`.

    Returns (role, status) pairs, status being "granted" or "already-assigned".
    Raises ValueError for a role Microsoft Graph does not define.
    """
    roles = list(roles)
    principal = await graph.get(f"servicePrincipals/{principal_id}", params={"$select": "id,displayName"})
    logger.info(f"Target principal: {principal.get('displayName')} ({principal_id})")

    resource = await get_graph_service_principal(graph)
    role_ids = {
        r.get("value"): r.get("id")
        for r in resource.get("appRoles", [])
        if "Application" in (r.get("allowedMemberTypes") or [])
    }
    unknown = [r for r in roles if r not in role_ids]
    if unknown:
        raise ValueError(f"Unknown Microsoft Graph application role(s): {', '.join(unknown)}")

    existing = await graph.get_all_pages(f"servicePrincipals/{principal_id}/appRoleAssignments")
    assigned = {
        a.get("appRoleId") for a in existing
        if a.get("resourceId") == resource["id"]
    }

    results = []
    for role in roles:
        role_id = role_ids[role]
        if role_id in assigned:
            logger.info(f"{role} already assigned")
            results.append((role, "already-assigned"))
            continue
        await graph.post(
            f"servicePrincipals/{principal_id}/appRoleAssignments",
            {
                "principalId": principal_id,
                "resourceId": resource["id"],
                "appRoleId": role_id,
            },
        )
        logger.info(f"Granted {role} to {principal_id}")
        results.append((role, "granted"))
    return results
