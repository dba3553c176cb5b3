"""Reporting package — CSV output for the guest-user export."""

from .csv_export import CsvAppender, GUEST_USER_FIELDS, SITE_ERROR_FIELDS

__all__ = [
    "CsvAppender",
    "GUEST_USER_FIELDS",
    "SITE_ERROR_FIELDS",
]
