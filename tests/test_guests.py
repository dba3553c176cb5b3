"""
Tests for guest classification, site resolution and the guest-user export.
"""
import asyncio
import csv

import httpx
import pytest

from m365_governance.config import AppCertificate, ConfigError, GuestExportConfig
from m365_governance.guests.classify import B2B, SPO, address_from_login, classify_user, email_with_fallback
from m365_governance.guests.exporter import GuestUserExporter, guest_row
from m365_governance.guests.sites import Site, in_scope, load_sites_from_csv
from m365_governance.reporting.csv_export import GUEST_USER_FIELDS

B2B_LOGIN = "i:0#.f|membership|guest_contoso.com#EXT#@tenant.onmicrosoft.com"
SPO_LOGIN = "i:0#.f|membership|urn:spo:guest#partner@fabrikam.com"
MEMBER_LOGIN = "i:0#.f|membership|alice@tenant.onmicrosoft.com"

SITE_A = "https://tenant.sharepoint.com/sites/alpha"
SITE_B = "https://tenant.sharepoint.com/sites/beta"
ONEDRIVE = "https://tenant-my.sharepoint.com/personal/alice_tenant_onmicrosoft_com"


def site_user(user_id, login, email="", **extra):
    user = {
        "Id": user_id,
        "LoginName": login,
        "Title": f"User {user_id}",
        "Email": email,
        "IsHiddenInUI": False,
        "IsSiteAdmin": False,
        "IsShareByEmailGuestUser": False,
        "IsEmailAuthenticationGuestUser": False,
        "UserPrincipalName": None,
        "UserId": {"NameId": f"1003{user_id}", "NameIdIssuer": "urn:federation:microsoftonline"},
        "AadObjectId": {"NameId": f"obj-{user_id}", "NameIdIssuer": "urn:federation:microsoftonline"},
        "Expiration": "",
        "Groups": [{"Title": "Alpha Members"}, {"Title": "Alpha Visitors"}],
    }
    user.update(extra)
    return user


def read_csv(path):
    with open(path, newline="", encoding="utf-8-sig") as fh:
        return list(csv.DictReader(fh))


# =============================================================================
# Classification
# =============================================================================

def test_ext_marker_is_b2b():
    assert classify_user(B2B_LOGIN) == B2B


def test_ext_marker_matches_lowercase():
    assert classify_user(B2B_LOGIN.lower()) == B2B


@pytest.mark.parametrize("login", [
    SPO_LOGIN,
    "i:0#.f|membership|urn%3aspo%3aguest#partner@fabrikam.com",
    "i:0#.f|membership|URN:SPO:GUEST#partner@fabrikam.com",
])
def test_spo_guest_urn_literal_or_encoded(login):
    assert classify_user(login) == SPO


@pytest.mark.parametrize("login", [MEMBER_LOGIN, "", None, "c:0(.s|true"])
def test_non_guests_are_ignored(login):
    assert classify_user(login) is None


def test_address_from_b2b_login():
    assert address_from_login(B2B_LOGIN) == "guest@contoso.com"


def test_address_from_spo_login():
    assert address_from_login(SPO_LOGIN) == "partner@fabrikam.com"


def test_email_fallback_prefers_email_field():
    assert email_with_fallback({"Email": "x@y.com", "LoginName": B2B_LOGIN}) == "x@y.com"
    assert email_with_fallback({"Email": "", "LoginName": B2B_LOGIN}) == "guest@contoso.com"
    assert email_with_fallback({"Email": None, "LoginName": None}) == ""


def test_guest_row_flattens_nested_fields():
    row = guest_row(SITE_A, "Alpha", B2B, site_user(7, B2B_LOGIN))

    assert set(row) == set(GUEST_USER_FIELDS)
    assert row["UserId"] == "10037"
    assert row["AadObjectId"] == "obj-7"
    assert row["Groups"] == "Alpha Members; Alpha Visitors"
    assert row["EmailWithFallback"] == "guest@contoso.com"


# =============================================================================
# Sites
# =============================================================================

def test_personal_site_detection_and_scope():
    team, personal = Site(SITE_A), Site(ONEDRIVE)
    assert personal.is_personal and not team.is_personal
    assert in_scope(team, "SharePoint") and not in_scope(personal, "SharePoint")
    assert in_scope(personal, "OneDrive") and not in_scope(team, "OneDrive")
    assert in_scope(team, "Both") and in_scope(personal, "Both")


def test_load_sites_from_csv_skips_blank_urls(tmp_path):
    path = tmp_path / "sites.csv"
    path.write_text(f"Url;Title\n{SITE_A};Alpha\n;\n{SITE_B};\n", encoding="utf-8")

    sites = load_sites_from_csv(str(path), delimiter=";")

    assert sites == [Site(SITE_A, "Alpha"), Site(SITE_B, None)]


def test_load_sites_from_csv_requires_url_column(tmp_path):
    path = tmp_path / "sites.csv"
    path.write_text("Address\nhttps://x\n", encoding="utf-8")
    with pytest.raises(ValueError):
        load_sites_from_csv(str(path))


def test_invalid_scope_rejected():
    with pytest.raises(ConfigError):
        GuestExportConfig(tenant_name="tenant", auth=AppCertificate("t", "c"), scope="Teams")


# =============================================================================
# Export
# =============================================================================

@pytest.fixture
def export_config(tmp_path):
    return GuestExportConfig(
        tenant_name="tenant",
        auth=AppCertificate("tenant.onmicrosoft.com", "client"),
        output_dir=str(tmp_path),
        timestamp="20240601_120000",
    )


def add_site(tenant, url, title, users):
    path = url.split("sharepoint.com", 1)[1]
    tenant.add("GET", f"{path}/_api/web", {"Title": title, "Url": url})
    tenant.add("GET", f"{path}/_api/web/siteusers", {"value": users})


def run_export(tenant, config, authenticator):
    exporter = GuestUserExporter(config, authenticator, transport=tenant.transport)
    return asyncio.run(exporter.run())


def test_export_writes_only_guests(tenant, authenticator, export_config):
    tenant.add("GET", "/v1.0/sites/getAllSites", {"value": [
        {"webUrl": SITE_A, "displayName": "Alpha", "isPersonalSite": False},
    ]})
    add_site(tenant, SITE_A, "Alpha", [
        site_user(1, MEMBER_LOGIN, "alice@tenant.onmicrosoft.com"),
        site_user(2, B2B_LOGIN, "guest@contoso.com"),
        site_user(3, SPO_LOGIN),
    ])

    summary = run_export(tenant, export_config, authenticator)

    rows = read_csv(export_config.guests_path)
    assert [r["ExternalUserType"] for r in rows] == ["B2B", "SPO"]
    assert rows[0]["SiteTitle"] == "Alpha"
    assert rows[1]["EmailWithFallback"] == "partner@fabrikam.com"
    assert rows[1]["IsHiddenInUI"] == "False"
    assert summary.guests_exported == 2
    assert not export_config.errors_path.exists()
    authenticator.acquire_token.assert_any_await("https://tenant.sharepoint.com")


def test_site_users_request_expands_groups(tenant, authenticator, export_config):
    tenant.add("GET", "/v1.0/sites/getAllSites", {"value": [{"webUrl": SITE_A, "isPersonalSite": False}]})
    add_site(tenant, SITE_A, "Alpha", [])

    run_export(tenant, export_config, authenticator)

    request = tenant.requests_to("GET", "/sites/alpha/_api/web/siteusers")[0]
    assert request.url.params["$expand"] == "Groups"
    assert "$top" not in request.url.params
    assert request.headers["Accept"] == "application/json;odata=nometadata"


def test_failing_site_is_recorded_and_export_continues(tenant, authenticator, export_config):
    tenant.add("GET", "/v1.0/sites/getAllSites", {"value": [
        {"webUrl": SITE_A, "isPersonalSite": False},
        {"webUrl": SITE_B, "isPersonalSite": False},
    ]})
    tenant.add("GET", "/sites/alpha/_api/web", httpx.Response(
        403, json={"error": {"code": "-2147024891", "message": {"lang": "en-US", "value": "Access denied."}}}
    ))
    add_site(tenant, SITE_B, "Beta", [site_user(5, B2B_LOGIN)])

    summary = run_export(tenant, export_config, authenticator)

    assert summary.sites_failed == 1
    assert summary.failed_sites == [SITE_A]
    assert summary.sites_processed == 1
    errors = read_csv(export_config.errors_path)
    assert errors[0]["SiteUrl"] == SITE_A
    assert "Access denied." in errors[0]["Error"]
    assert [r["SiteUrl"] for r in read_csv(export_config.guests_path)] == [SITE_B]


def test_scope_filters_tenant_sites(tenant, authenticator, tmp_path):
    config = GuestExportConfig(
        tenant_name="tenant",
        auth=AppCertificate("t", "c"),
        scope="OneDrive",
        output_dir=str(tmp_path),
        timestamp="x",
    )
    tenant.add("GET", "/v1.0/sites/getAllSites", {"value": [
        {"webUrl": SITE_A, "isPersonalSite": False},
        {"webUrl": ONEDRIVE, "isPersonalSite": True},
    ]})
    add_site(tenant, ONEDRIVE, "Alice", [site_user(9, SPO_LOGIN)])

    summary = run_export(tenant, config, authenticator)

    assert summary.sites_total == 1
    assert tenant.requests_to("GET", "/sites/alpha/_api/web") == []


def test_input_csv_replaces_enumeration(tenant, authenticator, tmp_path):
    sites_csv = tmp_path / "input.csv"
    sites_csv.write_text(f"Url\n{SITE_B}\n", encoding="utf-8")
    config = GuestExportConfig(
        tenant_name="tenant",
        auth=AppCertificate("t", "c"),
        input_csv=str(sites_csv),
        output_dir=str(tmp_path / "out"),
        timestamp="x",
    )
    add_site(tenant, SITE_B, "Beta", [site_user(1, B2B_LOGIN)])

    summary = run_export(tenant, config, authenticator)

    assert summary.guests_exported == 1
    assert tenant.requests_to("GET", "/v1.0/sites/getAllSites") == []
    assert config.guests_path.exists()


def test_output_file_names_carry_timestamp(export_config):
    assert export_config.guests_path.name == "GuestUsers_20240601_120000.csv"
    assert export_config.errors_path.name == "Errors_20240601_120000.csv"
