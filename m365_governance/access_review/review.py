"""
Access-Review Submitter
Builds one accessReviewScheduleDefinition per resolved group and submits it
(unless dry-run). Per-group failures become error records; the run continues.
"""

from __future__ import annotations

import asyncio
import json
import logging
from dataclasses import dataclass
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from ..config import AccessReviewConfig, SUBMISSION_DELAY_SECONDS
from ..graph.client import GraphAPIError, GraphClient
from .groups import Group

logger = logging.getLogger("m365_governance.access_review.review")

DEFINITIONS_ENDPOINT = "identityGovernance/accessReviews/definitions"


def run_start_utc(now: Optional[datetime] = None) -> datetime:
    """UTC midnight of the run's start day."""
    now = now or datetime.now(timezone.utc)
    now = now.astimezone(timezone.utc)
    return now.replace(hour=0, minute=0, second=0, microsecond=0)


def review_window(run_start: datetime, duration_days: int) -> tuple[date, date]:
    start = run_start.date()
    return start, start + timedelta(days=duration_days + 1)


@dataclass(frozen=True)
class ResultRecord:
    group_id: str
    mail_nickname: str
    created: str
    display_name: str = ""
    status: str = ""             # "Created", "DryRun" or "Error"
    review_id: str = ""
    start_date: str = ""
    end_date: str = ""
    error: str = ""

    @property
    def failed(self) -> bool:
        return self.status == "Error"

    def to_row(self) -> dict:
        if self.failed:
            return {
                "GroupId": self.group_id,
                "MailNickname": self.mail_nickname,
                "CreatedDateTime": self.created,
                "Error": self.error,
            }
        return {
            "GroupId": self.group_id,
            "DisplayName": self.display_name,
            "MailNickname": self.mail_nickname,
            "CreatedDateTime": self.created,
            "Status": self.status,
            "ReviewId": self.review_id,
            "StartDate": self.start_date,
            "EndDate": self.end_date,
        }


def describe_error(exc: BaseException) -> str:
    """Serialize an exception into a single-line JSON description."""
    detail = {"type": type(exc).__name__, "message": str(exc)}
    if isinstance(exc, GraphAPIError):
        detail.update({
            "status": exc.status_code,
            "code": exc.code,
            "message": exc.message,
            "url": exc.url,
        })
    if exc.__cause__ is not None:
        detail["cause"] = f"{type(exc.__cause__).__name__}: {exc.__cause__}"
    return json.dumps(detail, default=str)


def build_definition(group: Group, run_start: datetime, config: AccessReviewConfig) -> dict:
    """Build the accessReviewScheduleDefinition payload for one group."""
    start, end = review_window(run_start, config.duration_days)
    decision = config.default_decision
    auto_apply = decision != "None"
    query_scope = "#microsoft.graph.accessReviewQueryScope"

    return {
        "displayName": f"Access review - {group.display_name}",
        "descriptionForAdmins": (
            f"Review of members and guests of {group.display_name} ({group.mail_nickname})"
        ),
        "descriptionForReviewers": config.reviewer_text,
        "scope": {
            "@odata.type": "#microsoft.graph.principalResourceMembershipsScope",
            "principalScopes": [
                {
                    # Every member and guest, including nested groups
                    "@odata.type": query_scope,
                    "query": f"/groups/{group.id}/transitiveMembers",
                    "queryType": "MicrosoftGraph",
                },
                {
                    # B2B direct connect participants of the team's shared channels;
                    # included even when the group is not team-enabled
                    "@odata.type": query_scope,
                    "query": "./members",
                    "queryRoot": f"/teams/{group.id}/channels?$filter=(membershipType eq 'shared')",
                    "queryType": "MicrosoftGraph",
                },
            ],
            "resourceScopes": [
                {
                    "@odata.type": query_scope,
                    "query": f"/groups/{group.id}",
                    "queryType": "MicrosoftGraph",
                },
            ],
        },
        "reviewers": [
            {
                "query": f"/groups/{group.id}/owners",
                "queryType": "MicrosoftGraph",
            },
        ],
        "settings": {
            "mailNotificationsEnabled": True,
            "reminderNotificationsEnabled": True,
            "justificationRequiredOnApproval": True,
            "recommendationsEnabled": True,
            "instanceDurationInDays": config.duration_days,
            "defaultDecisionEnabled": auto_apply,
            "defaultDecision": decision,
            "autoApplyDecisionsEnabled": auto_apply,
            "recurrence": {
                "pattern": {"type": "weekly", "interval": 1},
                "range": {
                    "type": "numbered",
                    "numberOfOccurrences": 0,
                    "startDate": start.isoformat(),
                    "endDate": end.isoformat(),
                },
            },
        },
    }


class AccessReviewSubmitter:
    """Submits access-review definitions for resolved groups, one at a time."""

    def __init__(self, graph: GraphClient, config: AccessReviewConfig, run_start: datetime):
        self.graph = graph
        self.config = config
        self.run_start = run_start

    async def submit(self, group: Group) -> ResultRecord:
        """Build and submit one definition. Raises on failure."""
        payload = build_definition(group, self.run_start, self.config)
        start, end = review_window(self.run_start, self.config.duration_days)

        if self.config.dry_run:
            logger.info(f"[dry-run] Would create access review for {group.mail_nickname} ({group.id})")
            review_id = ""
            status = "DryRun"
        else:
            created = await self.graph.post(DEFINITIONS_ENDPOINT, payload)
            review_id = created.get("id", "")
            status = "Created"
            logger.info(f"Created access review {review_id} for {group.mail_nickname} ({group.id})")
            await asyncio.sleep(SUBMISSION_DELAY_SECONDS)

        return ResultRecord(
            group_id=group.id,
            mail_nickname=group.mail_nickname,
            created=group.created_raw,
            display_name=group.display_name,
            status=status,
            review_id=review_id,
            start_date=start.isoformat(),
            end_date=end.isoformat(),
        )

    async def process_groups(self, groups: list[Group]) -> list[ResultRecord]:
        """Submit for every group; a failing group never stops the others."""
        records = []
        for index, group in enumerate(groups, start=1):
            logger.info(f"[{index}/{len(groups)}] {group.display_name} ({group.mail_nickname})")
            try:
                records.append(await self.submit(group))
            except Exception as e:
                logger.exception(f"Access review failed for {group.mail_nickname} ({group.id})")
                records.append(ResultRecord(
                    group_id=group.id,
                    mail_nickname=group.mail_nickname,
                    created=group.created_raw,
                    display_name=group.display_name,
                    status="Error",
                    error=describe_error(e),
                ))
        return records
