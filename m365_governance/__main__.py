"""
M365 Tenant Governance Automation — Command-line entry point

Usage:
    python -m m365_governance guest-export --tenant-name contoso \\
        --client-id <GUID> --thumbprint <HEX> --cert-path ./base64.txt
    python -m m365_governance access-review --auth system \\
        --include-prefixes "PRJ-;TEAM-" --visibility Private --dry-run
    python -m m365_governance access-review --config access_review.json
    python -m m365_governance grant-permissions --tenant-id <GUID> --principal-id <GUID>

Any fatal error or any per-site / per-group failure exits with status 1.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
from dataclasses import replace
from pathlib import Path

from . import __version__
from .access_review.runner import AccessReviewRunError, run_access_reviews
from .auth.authenticator import Authenticator
from .config import (
    AUTH_MODES,
    DEFAULT_DECISIONS,
    DEFAULT_GROUP_FILTER,
    DEFAULT_REPORT_BATCH_SIZE,
    SITE_SCOPES,
    VISIBILITY_CHOICES,
    AccessReviewConfig,
    AppCertificate,
    ConfigError,
    DeviceCode,
    GRAPH_BASE_URL,
    GroupFilterConfig,
    GuestExportConfig,
    REQUIRED_APP_ROLES,
    GUEST_EXPORT_PERMISSIONS,
    build_auth,
    parse_prefix_list,
)
from .graph.client import GraphClient
from .guests.exporter import GuestUserExporter
from .permissions import grant_graph_permissions
from .safety.guardian import PERMISSION_GRANT_WRITES, SafetyGuardian

logger = logging.getLogger("m365_governance")


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="m365_governance",
        description="M365 Tenant Governance Automation",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging")

    subparsers = parser.add_subparsers(dest="command", help="Automation flows")

    # --- guest-export ---
    ge = subparsers.add_parser(
        "guest-export",
        help="Export SharePoint / OneDrive guest users to CSV",
        epilog="Required application permissions: " + "; ".join(
            f"{name} ({purpose})" for name, purpose in GUEST_EXPORT_PERMISSIONS.items()
        ),
    )
    ge.add_argument("--tenant-name", required=True, help="Tenant short name (contoso for contoso.sharepoint.com)")
    ge.add_argument("--tenant-id", help="Tenant ID (default: <tenant-name>.onmicrosoft.com)")
    ge.add_argument("--client-id", required=True, help="App registration client ID (GUID)")
    ge.add_argument("--thumbprint", required=True, help="Certificate thumbprint of the app registration")
    ge.add_argument("--cert-path", default="./base64.txt", help="Path to base64-encoded PFX or .pfx file (default: ./base64.txt)")
    ge.add_argument("--scope", choices=SITE_SCOPES, default="Both", help="Sites to include (default: Both)")
    ge.add_argument("--input-csv", help="CSV with a 'Url' column listing the sites to scan")
    ge.add_argument("--output-dir", "-o", type=Path, default=Path("."), help="Directory for the CSV output")
    ge.add_argument("--delimiter", default=",", help="CSV delimiter for input and output (default: ',')")

    # --- access-review ---
    ar = subparsers.add_parser("access-review", help="Start access reviews on filtered Microsoft 365 groups")
    ar.add_argument("--config", "-c", type=Path, help="Path to JSON configuration file")
    ar.add_argument("--tenant-id", default="", help="Tenant ID (required for certificate auth)")
    ar.add_argument("--auth", choices=AUTH_MODES, default="system", help="Authentication mode (default: system)")
    ar.add_argument("--client-id", default="", help="Client ID of the user-assigned identity or app registration")
    ar.add_argument("--cert-path", default="", help="Certificate path for --auth certificate")
    ar.add_argument("--thumbprint", default="", help="Expected certificate thumbprint for --auth certificate")
    ar.add_argument("--group-filter", default=DEFAULT_GROUP_FILTER, help="Server-side OData filter on /groups")
    ar.add_argument("--include-prefixes", default="", help="Semicolon-separated mailNickname prefixes to include")
    ar.add_argument("--exclude-prefixes", default="", help="Semicolon-separated mailNickname prefixes to exclude")
    ar.add_argument("--visibility", choices=VISIBILITY_CHOICES, default=None, help="Only groups with this visibility")
    ar.add_argument("--min-age-days", type=int, default=0, help="Only groups created at least N days before the run")
    ar.add_argument("--duration-days", type=int, default=14, help="Review duration in days (default: 14)")
    ar.add_argument("--default-decision", choices=DEFAULT_DECISIONS, default="None", help="Decision applied when reviewers don't respond")
    ar.add_argument("--reviewer-text", default="", help="Additional text shown to reviewers")
    ar.add_argument("--group-id", default="", help="Review only this group (overrides the other filters)")
    ar.add_argument("--expand-owners", action="store_true", help="Expand owners and skip ownerless groups")
    ar.add_argument("--batch-size", type=int, default=DEFAULT_REPORT_BATCH_SIZE, help="Rows per logged result batch")
    ar.add_argument("--dry-run", action="store_true", help="Resolve and build everything but submit nothing")

    # --- grant-permissions ---
    gp = subparsers.add_parser("grant-permissions", help="Assign the Graph app roles access reviews need")
    gp.add_argument("--principal-id", required=True, help="Object ID of the service principal / managed identity")
    gp.add_argument("--tenant-id", required=True, help="Tenant ID to sign in to")
    gp.add_argument("--client-id", default="", help="Public client ID for device-code sign-in")

    return parser.parse_args(argv)


def build_access_review_config(args: argparse.Namespace) -> AccessReviewConfig:
    """Build the access-review configuration from a JSON file or CLI flags."""
    if args.config:
        config = AccessReviewConfig.from_file(str(args.config))
        if args.dry_run and not config.dry_run:
            # --dry-run on the CLI always wins over the file
            config = replace(config, dry_run=True)
        return config

    auth = build_auth(
        args.auth,
        tenant_id=args.tenant_id,
        client_id=args.client_id,
        certificate_path=args.cert_path,
        thumbprint=args.thumbprint,
    )
    return AccessReviewConfig(
        auth=auth,
        groups=GroupFilterConfig(
            base_filter=args.group_filter,
            include_prefixes=parse_prefix_list(args.include_prefixes),
            exclude_prefixes=parse_prefix_list(args.exclude_prefixes),
            visibility=args.visibility,
            min_age_days=args.min_age_days,
            group_id=args.group_id,
            expand_owners=args.expand_owners,
        ),
        duration_days=args.duration_days,
        default_decision=args.default_decision,
        reviewer_text=args.reviewer_text,
        dry_run=args.dry_run,
        report_batch_size=args.batch_size,
    )


def build_guest_export_config(args: argparse.Namespace) -> GuestExportConfig:
    return GuestExportConfig(
        tenant_name=args.tenant_name,
        auth=AppCertificate(
            tenant_id=args.tenant_id or f"{args.tenant_name}.onmicrosoft.com",
            client_id=args.client_id,
            certificate_path=args.cert_path,
            thumbprint=args.thumbprint,
        ),
        scope=args.scope,
        input_csv=args.input_csv,
        output_dir=str(args.output_dir),
        delimiter=args.delimiter,
    )


def _phase(title: str):
    print("\n" + "=" * 70)
    print(f" {title}")
    print("=" * 70)


async def cmd_guest_export(args: argparse.Namespace) -> int:
    config = build_guest_export_config(args)
    _phase("GUEST USER EXPORT")
    print(f"  Tenant:  {config.tenant_name}")
    print(f"  Scope:   {config.scope}" + (f" (from {config.input_csv})" if config.input_csv else ""))
    print(f"  Output:  {config.guests_path.resolve()}")

    exporter = GuestUserExporter(config, Authenticator(config.auth))
    summary = await exporter.run()

    _phase("EXPORT COMPLETE")
    print(f"  Sites:   {summary.sites_processed}/{summary.sites_total} exported")
    print(f"  Guests:  {summary.guests_exported}")
    if summary.sites_failed:
        print(f"  Errors:  {summary.sites_failed} sites failed, see {summary.errors_path.resolve()}")
        return 1
    return 0


async def cmd_access_review(args: argparse.Namespace) -> int:
    config = build_access_review_config(args)
    _phase("ACCESS REVIEW LAUNCH" + (" (DRY-RUN)" if config.dry_run else ""))
    try:
        records = await run_access_reviews(config, Authenticator(config.auth))
    except AccessReviewRunError as e:
        print(f"\n  ❌ {e}")
        return 1

    _phase("ACCESS REVIEW LAUNCH COMPLETE")
    print(f"  Groups:  {len(records)} processed, 0 failed")
    return 0


async def cmd_grant_permissions(args: argparse.Namespace) -> int:
    _phase("GRAPH PERMISSION ASSIGNMENT")
    authenticator = Authenticator(DeviceCode(tenant_id=args.tenant_id, client_id=args.client_id))
    token = await authenticator.acquire_token(GRAPH_BASE_URL)

    guardian = SafetyGuardian(allowed_writes=PERMISSION_GRANT_WRITES)
    guardian.print_banner()
    async with GraphClient(token, guardian) as graph:
        results = await grant_graph_permissions(graph, args.principal_id, REQUIRED_APP_ROLES)

    for role, status in results:
        marker = "✅" if status == "granted" else "•"
        print(f"  {marker} {role:<30s} {status}")
    return 0


COMMANDS = {
    "guest-export": cmd_guest_export,
    "access-review": cmd_access_review,
    "grant-permissions": cmd_grant_permissions,
}


async def main_async(argv=None) -> int:
    """Async entry point."""
    args = parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)-8s %(name)s: %(message)s",
    )
    # httpx logs every request at INFO
    logging.getLogger("httpx").setLevel(logging.DEBUG if args.verbose else logging.WARNING)

    handler = COMMANDS.get(args.command)
    if handler is None:
        print("Usage: python -m m365_governance {guest-export|access-review|grant-permissions} ...")
        return 2

    try:
        return await handler(args)
    except ConfigError as e:
        print(f"\n❌ Invalid configuration: {e}")
        return 1
    except Exception:
        logger.exception(f"{args.command} failed")
        return 1


def main():
    """Synchronous entry point for `python -m m365_governance`."""
    sys.exit(asyncio.run(main_async()))


if __name__ == "__main__":
    main()
