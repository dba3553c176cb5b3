"""
Safety Guardian — Enforces the write allow-list of a run.
Validates all HTTP methods, blocks unlisted writes (and every write in dry-run),
and logs safety events.
"""

from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Iterable, Optional

logger = logging.getLogger("m365_governance.safety")

# ─── HTTP Methods ────────────────────────────────────────────────────────────

READ_METHODS = {"GET", "HEAD", "OPTIONS"}
WRITE_METHODS = {"POST", "PUT", "PATCH", "DELETE"}

# Known read-only POST endpoints (Graph uses POST for some queries)
SAFE_POST_ENDPOINTS = [
    re.compile(r"/\$batch$"),                        # Batch read requests
    re.compile(r"/microsoft\.graph\.getByIds$"),     # Resolve IDs
]

# ─── Per-flow write allow-lists ──────────────────────────────────────────────

ACCESS_REVIEW_WRITES = [
    ("POST", re.compile(r"/identityGovernance/accessReviews/definitions$")),
]

PERMISSION_GRANT_WRITES = [
    ("POST", re.compile(r"/servicePrincipals/[^/]+/appRoleAssignments$")),
]

READ_ONLY: list = []


class SafetyViolation(Exception):
    """Raised when a write outside the run's allow-list is attempted."""
    pass


class SafetyGuardian:
    """
    Validates every outbound HTTP request against the run's write allow-list.
    Maintains an audit log of safety checks, permitted writes and violations.
    """

    def __init__(
        self,
        allowed_writes: Optional[Iterable[tuple[str, re.Pattern]]] = None,
        dry_run: bool = False,
    ):
        self.allowed_writes = list(allowed_writes or READ_ONLY)
        self.dry_run = dry_run
        self.violations: list[dict] = []
        self.writes: list[dict] = []
        self.checks_performed: int = 0
        self.started_at: str = datetime.now(timezone.utc).isoformat()

    @property
    def mode(self) -> str:
        if self.dry_run:
            return "DRY-RUN"
        return "READ-WRITE" if self.allowed_writes else "READ-ONLY"

    def validate_request(self, method: str, url: str, body: Optional[dict] = None) -> bool:
        """
        Validate a request against the allow-list.
        Returns True if permitted, raises SafetyViolation if not.
        """
        self.checks_performed += 1
        method_upper = method.upper()
        path = url.split("?", 1)[0]

        if method_upper in READ_METHODS:
            return True

        if method_upper == "POST":
            for pattern in SAFE_POST_ENDPOINTS:
                if pattern.search(path):
                    return True

        if method_upper in WRITE_METHODS:
            if self.dry_run:
                self._record_violation(method_upper, url, "Write blocked in dry-run mode")
                raise SafetyViolation(
                    f"SAFETY VIOLATION: Dry-run blocks write: {method_upper} {url}"
                )
            for allowed_method, pattern in self.allowed_writes:
                if allowed_method == method_upper and pattern.search(path):
                    self.writes.append({
                        "timestamp": datetime.now(timezone.utc).isoformat(),
                        "method": method_upper,
                        "url": url,
                    })
                    return True

        self._record_violation(method_upper, url, "Write not on allow-list")
        raise SafetyViolation(
            f"SAFETY VIOLATION: Write method blocked: {method_upper} {url}"
        )

    def _record_violation(self, method: str, url: str, reason: str):
        """Record a safety violation for audit."""
        violation = {
            "timestamp": datetime.now(timezone.utc).isoformat(),
            "method": method,
            "url": url,
            "reason": reason,
        }
        self.violations.append(violation)
        logger.critical(f"SAFETY VIOLATION: {reason} — {method} {url}")

    def get_audit_record(self) -> dict:
        """Return the full safety audit record."""
        return {
            "safety_guardian": {
                "mode": self.mode,
                "started_at": self.started_at,
                "checks_performed": self.checks_performed,
                "writes_performed": len(self.writes),
                "violations_detected": len(self.violations),
                "violations": self.violations,
                "status": "CLEAN" if not self.violations else "VIOLATIONS_DETECTED",
            }
        }

    def print_banner(self):
        """Print the run-mode banner."""
        print("=" * 75)
        if self.dry_run:
            print("  DRY-RUN -- every step runs except tenant writes")
            print("  * Groups are resolved and payloads are built as in a live run")
            print("  * Safety Guardian blocks all POST/PUT/PATCH/DELETE at the HTTP layer")
        elif self.allowed_writes:
            print("  LIVE RUN -- tenant writes limited to the allow-list below")
            for method, pattern in self.allowed_writes:
                print(f"  * {method} {pattern.pattern}")
        else:
            print("  READ-ONLY -- no changes will be made to the tenant")
            print("  * All API calls are GET/read-only")
        print("=" * 75)
