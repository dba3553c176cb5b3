"""
Result reporter: splits per-group records into succeeded / errored partitions
and logs each partition as CSV text in bounded batches.
"""

from __future__ import annotations

import csv
import io
import logging

from .review import ResultRecord

logger = logging.getLogger("m365_governance.access_review.report")

SUCCESS_FIELDS = [
    "GroupId", "DisplayName", "MailNickname", "CreatedDateTime",
    "Status", "ReviewId", "StartDate", "EndDate",
]
ERROR_FIELDS = ["GroupId", "MailNickname", "CreatedDateTime", "Error"]


def partition(records: list[ResultRecord]) -> tuple[list[ResultRecord], list[ResultRecord]]:
    succeeded = [r for r in records if not r.failed]
    errored = [r for r in records if r.failed]
    return succeeded, errored


def to_csv_batches(
    records: list[ResultRecord],
    fieldnames: list[str],
    batch_size: int,
    delimiter: str = ",",
) -> list[str]:
    """
    Serialize records into CSV chunks of at most `batch_size` rows,
    each chunk carrying its own header line.
    """
    batches = []
    for i in range(0, len(records), batch_size):
        buffer = io.StringIO()
        writer = csv.DictWriter(
            buffer, fieldnames=fieldnames, delimiter=delimiter, lineterminator="\n"
        )
        writer.writeheader()
        for record in records[i:i + batch_size]:
            writer.writerow(record.to_row())
        batches.append(buffer.getvalue().rstrip("\n"))
    return batches


def report_results(records: list[ResultRecord], batch_size: int) -> int:
    """Log both partitions batch by batch. Returns the number of errored groups."""
    succeeded, errored = partition(records)
    logger.info(f"Access reviews: {len(succeeded)} succeeded, {len(errored)} failed")

    for n, batch in enumerate(to_csv_batches(succeeded, SUCCESS_FIELDS, batch_size), start=1):
        logger.info(f"Succeeded groups (batch {n}):\n{batch}")

    for n, batch in enumerate(to_csv_batches(errored, ERROR_FIELDS, batch_size), start=1):
        logger.error(f"Errored groups (batch {n}):\n{batch}")

    return len(errored)
