"""
Configuration module for M365 Tenant Governance Automation.
Defines auth variants, per-flow run settings, API endpoints and operational constants.

All run configuration objects are frozen: they are built once from the CLI or a
JSON file and passed explicitly to every resolver and submitter.
"""

from __future__ import annotations

import json
import os
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Optional, Union


class ConfigError(ValueError):
    """Raised when run parameters are missing or contradictory."""
    pass


# ─── Tenant Authentication ───────────────────────────────────────────────────

@dataclass(frozen=True)
class SystemIdentity:
    """System-assigned managed identity of the hosting resource."""
    kind: str = field(default="system", init=False)


@dataclass(frozen=True)
class UserIdentity:
    """User-assigned managed identity, selected by its client ID."""
    client_id: str
    kind: str = field(default="user", init=False)


@dataclass(frozen=True)
class AppCertificate:
    """Certificate-based app-only authentication configuration."""
    tenant_id: str
    client_id: str
    certificate_path: str = "./base64.txt"  # base64-encoded PFX, or a binary .pfx/.p12
    certificate_password: str = ""          # Falls back to M365_CERT_PASSWORD
    thumbprint: str = ""                    # Verified against the loaded certificate
    kind: str = field(default="certificate", init=False)


@dataclass(frozen=True)
class DeviceCode:
    """Delegated (interactive) device-code authentication configuration."""
    tenant_id: str
    client_id: str = ""
    scopes: tuple[str, ...] = (
        "https://graph.microsoft.com/AppRoleAssignment.ReadWrite.All",
        "https://graph.microsoft.com/Application.Read.All",
    )
    kind: str = field(default="device_code", init=False)


AuthVariant = Union[SystemIdentity, UserIdentity, AppCertificate, DeviceCode]

AUTH_MODES = ("system", "user", "certificate")

# Microsoft Graph Command Line Tools, a public client usable for device-code sign-in
DEFAULT_PUBLIC_CLIENT_ID = "14d82eec-204b-4c2f-b7e8-296a70dab67e"


def build_auth(
    mode: str,
    tenant_id: str = "",
    client_id: str = "",
    certificate_path: str = "",
    certificate_password: str = "",
    thumbprint: str = "",
) -> AuthVariant:
    """Resolve the three-way authentication switch into one auth variant."""
    mode = (mode or "").lower()
    if mode == "system":
        return SystemIdentity()
    if mode == "user":
        if not client_id:
            raise ConfigError("User-assigned identity requires --client-id.")
        return UserIdentity(client_id=client_id)
    if mode == "certificate":
        if not tenant_id or not client_id:
            raise ConfigError("Certificate auth requires --tenant-id and --client-id.")
        return AppCertificate(
            tenant_id=tenant_id,
            client_id=client_id,
            certificate_path=certificate_path or "./base64.txt",
            certificate_password=certificate_password,
            thumbprint=thumbprint,
        )
    raise ConfigError(f"Unknown auth mode: {mode!r} (expected one of {', '.join(AUTH_MODES)})")


# ─── Graph / SharePoint API Settings ─────────────────────────────────────────

GRAPH_BASE_URL = "https://graph.microsoft.com"
GRAPH_API_VERSION = "v1.0"

# Rate limiting / throttling (reads only; the HTTP layer honours Retry-After)
MAX_RETRIES = 5                   # Retry count for throttled requests
INITIAL_BACKOFF_SECONDS = 2.0     # First retry delay
MAX_BACKOFF_SECONDS = 120.0       # Cap on exponential backoff
BACKOFF_MULTIPLIER = 2.0          # Exponential factor

# Pagination
DEFAULT_PAGE_SIZE = 999           # Maximum items per page ($top)
MAX_PAGES_PER_ENDPOINT = 10000    # Safety cap on pagination loops

# Fixed pause after every live access-review submission
SUBMISSION_DELAY_SECONDS = 0.05

# Rows per logged CSV batch when reporting access-review results
DEFAULT_REPORT_BATCH_SIZE = 100

GROUP_SELECT_FIELDS = (
    "id,displayName,mailNickname,createdDateTime,visibility,"
    "membershipRule,isAssignableToRole,groupTypes"
)

# Microsoft 365 (unified) groups; Teams are unified groups too
DEFAULT_GROUP_FILTER = "groupTypes/any(c:c eq 'Unified')"

VISIBILITY_CHOICES = ("Private", "Public")
DEFAULT_DECISIONS = ("None", "Approve", "Deny", "Recommendation")
SITE_SCOPES = ("SharePoint", "OneDrive", "Both")


def parse_prefix_list(value: Optional[str]) -> tuple[str, ...]:
    """Split a semicolon-separated prefix list, dropping blank entries."""
    if not value:
        return ()
    return tuple(p.strip() for p in value.split(";") if p.strip())


# ─── Access-Review Settings ──────────────────────────────────────────────────

@dataclass(frozen=True)
class GroupFilterConfig:
    """Inputs to group resolution (server-side filter + client-side predicates)."""
    base_filter: str = DEFAULT_GROUP_FILTER
    include_prefixes: tuple[str, ...] = ()
    exclude_prefixes: tuple[str, ...] = ()
    visibility: Optional[str] = None      # "Private", "Public" or None (both)
    min_age_days: int = 0
    group_id: str = ""                    # Single-group override
    expand_owners: bool = False           # $expand=owners; drops ownerless groups

    def __post_init__(self):
        if self.visibility is not None and self.visibility not in VISIBILITY_CHOICES:
            raise ConfigError(
                f"Invalid visibility {self.visibility!r}; expected Private, Public or unset."
            )
        if self.min_age_days < 0:
            raise ConfigError("min_age_days must not be negative.")


@dataclass(frozen=True)
class AccessReviewConfig:
    """Top-level configuration for one access-review launch run."""
    auth: AuthVariant
    groups: GroupFilterConfig = field(default_factory=GroupFilterConfig)
    duration_days: int = 14
    default_decision: str = "None"
    reviewer_text: str = ""
    dry_run: bool = False
    report_batch_size: int = DEFAULT_REPORT_BATCH_SIZE

    def __post_init__(self):
        if self.default_decision not in DEFAULT_DECISIONS:
            raise ConfigError(
                f"Invalid default decision {self.default_decision!r}; "
                f"expected one of {', '.join(DEFAULT_DECISIONS)}."
            )
        if self.duration_days < 1:
            raise ConfigError("duration_days must be at least 1.")
        if self.report_batch_size < 1:
            raise ConfigError("report_batch_size must be at least 1.")

    @classmethod
    def from_file(cls, path: str) -> "AccessReviewConfig":
        """Load configuration from a JSON file."""
        with open(path, "r", encoding="utf-8") as f:
            data = json.load(f)
        return cls.from_dict(data)

    @classmethod
    def from_dict(cls, data: dict) -> "AccessReviewConfig":
        auth_data = data.get("auth", {})
        auth = build_auth(
            auth_data.get("mode", "system"),
            tenant_id=auth_data.get("tenant_id", data.get("tenant_id", "")),
            client_id=auth_data.get("client_id", ""),
            certificate_path=auth_data.get("certificate_path", ""),
            certificate_password=auth_data.get("certificate_password", ""),
            thumbprint=auth_data.get("thumbprint", ""),
        )
        g = data.get("groups", {})
        groups = GroupFilterConfig(
            base_filter=g.get("base_filter", DEFAULT_GROUP_FILTER),
            include_prefixes=parse_prefix_list(g.get("include_prefixes")),
            exclude_prefixes=parse_prefix_list(g.get("exclude_prefixes")),
            visibility=g.get("visibility") or None,
            min_age_days=int(g.get("min_age_days", 0)),
            group_id=g.get("group_id", ""),
            expand_owners=bool(g.get("expand_owners", False)),
        )
        return cls(
            auth=auth,
            groups=groups,
            duration_days=int(data.get("duration_days", 14)),
            default_decision=data.get("default_decision", "None"),
            reviewer_text=data.get("reviewer_text", ""),
            dry_run=bool(data.get("dry_run", False)),
            report_batch_size=int(data.get("report_batch_size", DEFAULT_REPORT_BATCH_SIZE)),
        )


# ─── Guest Export Settings ───────────────────────────────────────────────────

@dataclass(frozen=True)
class GuestExportConfig:
    """Settings for the SharePoint / OneDrive guest-user export."""
    tenant_name: str
    auth: AppCertificate
    scope: str = "Both"
    input_csv: Optional[str] = None
    output_dir: str = ""
    delimiter: str = ","
    timestamp: str = ""

    def __post_init__(self):
        if self.scope not in SITE_SCOPES:
            raise ConfigError(
                f"Invalid scope {self.scope!r}; expected one of {', '.join(SITE_SCOPES)}."
            )
        if len(self.delimiter) != 1:
            raise ConfigError("CSV delimiter must be a single character.")
        # frozen: assign derived defaults through object.__setattr__
        if not self.timestamp:
            object.__setattr__(self, "timestamp", datetime.now().strftime("%Y%m%d_%H%M%S"))
        if not self.output_dir:
            object.__setattr__(self, "output_dir", os.getcwd())

    @property
    def sharepoint_resource(self) -> str:
        return f"https://{self.tenant_name}.sharepoint.com"

    @property
    def guests_path(self) -> Path:
        return Path(self.output_dir) / f"GuestUsers_{self.timestamp}.csv"

    @property
    def errors_path(self) -> Path:
        return Path(self.output_dir) / f"Errors_{self.timestamp}.csv"


# ─── Required Graph API Permissions ─────────────────────────────────────────

# App roles granted to the access-review identity by `grant-permissions`
REQUIRED_APP_ROLES = {
    "Group.Read.All": "Enumerate Microsoft 365 groups and their owners",
    "AccessReview.ReadWrite.All": "Create access review schedule definitions",
}

# App roles the guest export needs (granted manually, with admin consent)
GUEST_EXPORT_PERMISSIONS = {
    "Sites.Read.All": "Enumerate SharePoint and OneDrive sites (Microsoft Graph)",
    "Sites.FullControl.All": "Read site users through SharePoint REST (SharePoint)",
}
