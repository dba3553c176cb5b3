"""
Access-Review Launcher
Connects, resolves groups, submits one review per group and reports the results.
"""

from __future__ import annotations

import logging
from datetime import datetime
from typing import Optional

import httpx

from ..auth.authenticator import Authenticator
from ..config import AccessReviewConfig, GRAPH_BASE_URL
from ..graph.client import GraphClient
from ..safety.guardian import ACCESS_REVIEW_WRITES, SafetyGuardian
from .groups import GroupResolver
from .reporter import report_results
from .review import AccessReviewSubmitter, ResultRecord, run_start_utc

logger = logging.getLogger("m365_governance.access_review")


class AccessReviewRunError(Exception):
    """Raised after reporting when one or more groups failed."""

    def __init__(self, failed: int, total: int):
        self.failed = failed
        self.total = total
        super().__init__(f"{failed} of {total} access reviews failed")


async def run_access_reviews(
    config: AccessReviewConfig,
    authenticator: Authenticator,
    transport: Optional[httpx.AsyncBaseTransport] = None,
    now: Optional[datetime] = None,
) -> list[ResultRecord]:
    """
    Run one access-review launch.

    Setup and group resolution errors propagate unchanged. Per-group errors are
    reported first and then surfaced as AccessReviewRunError; reviews that were
    already created stay created.
    """
    guardian = SafetyGuardian(allowed_writes=ACCESS_REVIEW_WRITES, dry_run=config.dry_run)
    guardian.print_banner()

    run_start = run_start_utc(now)
    logger.info(f"Run start (UTC): {run_start.isoformat()}")

    token = await authenticator.acquire_token(GRAPH_BASE_URL)

    async with GraphClient(token, guardian, transport=transport) as graph:
        groups = await GroupResolver(graph, config.groups, run_start).resolve()
        print(f"\n  Resolved {len(groups)} groups for access review\n")

        submitter = AccessReviewSubmitter(graph, config, run_start)
        records = await submitter.process_groups(groups)
        stats = graph.get_stats()

    failed = report_results(records, config.report_batch_size)
    audit = guardian.get_audit_record()["safety_guardian"]
    logger.info(
        f"Requests: {stats['total_requests']} (throttled {stats['throttle_events']}), "
        f"writes: {audit['writes_performed']}, mode: {audit['mode']}"
    )

    if failed:
        raise AccessReviewRunError(failed, len(records))
    return records
