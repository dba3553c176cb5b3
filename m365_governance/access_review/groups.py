"""
Group Resolver
Resolves the Microsoft 365 groups an access-review run targets: one server-side
/groups query, then a fixed chain of client-side predicates.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Optional

from ..config import GroupFilterConfig
from ..graph.client import GraphClient
from .filters import GroupQueryBuilder

logger = logging.getLogger("m365_governance.access_review.groups")


@dataclass(frozen=True)
class Group:
    id: str
    display_name: str
    mail_nickname: str
    created: Optional[datetime] = None
    created_raw: str = ""
    visibility: Optional[str] = None
    membership_rule: Optional[str] = None
    is_assignable_to_role: Optional[bool] = None
    group_types: tuple[str, ...] = ()
    owners: Optional[tuple[str, ...]] = None   # Only populated when owners are expanded

    @classmethod
    def from_graph(cls, item: dict) -> "Group":
        created_raw = item.get("createdDateTime") or ""
        owners = item.get("owners")
        return cls(
            id=item.get("id", ""),
            display_name=item.get("displayName") or "",
            mail_nickname=item.get("mailNickname") or "",
            created=parse_graph_datetime(created_raw),
            created_raw=created_raw,
            visibility=item.get("visibility"),
            membership_rule=item.get("membershipRule"),
            is_assignable_to_role=item.get("isAssignableToRole"),
            group_types=tuple(item.get("groupTypes") or ()),
            owners=None if owners is None else tuple(o.get("id", "") for o in owners),
        )


def parse_graph_datetime(value: str) -> Optional[datetime]:
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (ValueError, TypeError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def prefix_pattern(prefixes) -> Optional[re.Pattern]:
    """Case-sensitive, start-anchored literal prefix match; None when no prefixes."""
    if not prefixes:
        return None
    return re.compile("^(?:" + "|".join(re.escape(p) for p in prefixes) + ")")


GroupPredicate = Callable[[Group], bool]


class GroupResolver:
    """
    Applies the group filters of one run.

    Client-side predicates run in a fixed order:
      role-assignable → dynamic membership → include prefixes → exclude prefixes
      → visibility → extra predicates (age, id, owners) → sort by display name
    """

    def __init__(self, graph: GraphClient, config: GroupFilterConfig, run_start: datetime):
        self.graph = graph
        self.config = config
        self.run_start = run_start
        self.query = GroupQueryBuilder(config).build()

    async def resolve(self) -> list[Group]:
        """Query the directory and filter. Query failures propagate."""
        params = self.query.to_params()
        logger.info(
            f"Querying groups: filter={params.get('$filter', '<none>')} "
            f"orderby={self.query.orderby} expand={self.query.expand} "
            f"advanced={self.query.advanced}"
        )
        items = await self.graph.get_all_pages(
            "groups", params=params, advanced=self.query.advanced
        )
        groups = [Group.from_graph(item) for item in items]
        logger.info(f"Directory returned {len(groups)} groups")

        resolved = self.apply_predicates(groups)
        logger.info(f"Resolved {len(resolved)} groups after client-side filtering")
        return resolved

    def predicates(self) -> list[tuple[str, GroupPredicate]]:
        cfg = self.config
        chain: list[tuple[str, GroupPredicate]] = [
            ("role-assignable", lambda g: g.is_assignable_to_role is not True),
            ("dynamic membership", lambda g: not g.membership_rule),
        ]
        if not cfg.group_id:
            include = prefix_pattern(cfg.include_prefixes)
            exclude = prefix_pattern(cfg.exclude_prefixes)
            if include is not None:
                chain.append(("include prefix", lambda g: bool(include.match(g.mail_nickname))))
            if exclude is not None:
                chain.append(("exclude prefix", lambda g: not exclude.match(g.mail_nickname)))
            if cfg.visibility:
                chain.append(("visibility", lambda g: g.visibility == cfg.visibility))
        chain.extend(self.extra_predicates())
        return chain

    def extra_predicates(self) -> list[tuple[str, GroupPredicate]]:
        cfg = self.config
        extra: list[tuple[str, GroupPredicate]] = []
        if cfg.group_id:
            extra.append(("group id", lambda g: g.id == cfg.group_id))
        elif cfg.min_age_days > 0:
            cutoff = self.run_start - timedelta(days=cfg.min_age_days)
            extra.append((
                f"younger than {cfg.min_age_days}d",
                lambda g: g.created is not None and g.created <= cutoff,
            ))
        if cfg.expand_owners:
            extra.append(("no owners", lambda g: bool(g.owners)))
        return extra

    def apply_predicates(self, groups: list[Group]) -> list[Group]:
        result = []
        chain = self.predicates()
        for group in groups:
            for reason, keep in chain:
                if not keep(group):
                    logger.debug(f"Skipping group {group.mail_nickname} ({group.id}): {reason}")
                    break
            else:
                result.append(group)

        if self.query.orderby is None:
            result.sort(key=lambda g: g.display_name)
        return result
