"""
CSV exporter — Append-per-row CSV files for the guest-user export.

Each row is written and closed immediately, so a run that dies half-way
still leaves every row it produced on disk.
"""

from __future__ import annotations

import csv
from pathlib import Path
from typing import Any

GUEST_USER_FIELDS = [
    "SiteUrl", "SiteTitle", "ExternalUserType", "Email", "EmailWithFallback",
    "LoginName", "Title", "Id", "UserId", "UserPrincipalName", "AadObjectId",
    "IsShareByEmailGuestUser", "IsEmailAuthenticationGuestUser",
    "IsHiddenInUI", "IsSiteAdmin", "Groups", "Expiration",
]

SITE_ERROR_FIELDS = ["SiteUrl", "Error"]


class CsvAppender:
    """Appends rows to a CSV file, writing the header when the file is first created."""

    def __init__(self, path: Path, fieldnames: list[str], delimiter: str = ","):
        self.path = Path(path)
        self.fieldnames = fieldnames
        self.delimiter = delimiter
        self.rows_written = 0

    def append(self, row: dict[str, Any]) -> None:
        new_file = not self.path.exists()
        if new_file:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        # BOM only at the head of the file so Excel opens it as UTF-8
        encoding = "utf-8-sig" if new_file else "utf-8"
        with open(self.path, "a", newline="", encoding=encoding) as fh:
            writer = csv.DictWriter(
                fh, fieldnames=self.fieldnames, delimiter=self.delimiter, extrasaction="ignore"
            )
            if new_file:
                writer.writeheader()
            writer.writerow({k: _cell(v) for k, v in row.items()})
        self.rows_written += 1


def _cell(value: Any) -> Any:
    if value is None:
        return ""
    if isinstance(value, bool):
        return str(value)
    return value
