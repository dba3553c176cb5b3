from .classify import B2B, SPO, classify_user, email_with_fallback
from .exporter import ExportSummary, GuestUserExporter
from .sites import Site, enumerate_tenant_sites, load_sites_from_csv

__all__ = [
    "B2B",
    "SPO",
    "classify_user",
    "email_with_fallback",
    "ExportSummary",
    "GuestUserExporter",
    "Site",
    "enumerate_tenant_sites",
    "load_sites_from_csv",
]
