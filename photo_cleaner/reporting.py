import csv
import logging
from pathlib import Path
from typing import Union

from .models import ScanResult

ISSUE_HEADERS = [
    "Asset ID",
    "Issue Type",
    "Severity",
    "File Size",
    "Duplicate Group",
    "Recoverable",
    "Message",
    "Detected At",
]

GROUP_HEADERS = [
    "Group ID",
    "Kind",
    "Original",
    "Member",
    "Is Original",
    "Similarity",
    "Potential Savings",
]


class ReportGenerator:
    def __init__(self, result: ScanResult):
        self.result = result

    def write_issues_csv(self, output_csv: Union[str, Path]) -> int:
        """One row per issue, in the order the pass reported them."""
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(ISSUE_HEADERS)
            for issue in self.result.issues:
                writer.writerow([
                    issue.asset_id,
                    issue.issue_type.value,
                    issue.severity.name.lower(),
                    issue.file_size if issue.file_size is not None else "",
                    issue.duplicate_group_id or "",
                    "yes" if issue.can_recover else "no",
                    issue.error_message or "",
                    issue.detected_at.isoformat(),
                ])

        logging.info(f"Wrote {len(self.result.issues)} issues to {output_csv}")
        return len(self.result.issues)

    def write_groups_csv(self, output_csv: Union[str, Path]) -> int:
        """One row per group member, original first within each group."""
        rows = 0
        with open(output_csv, "w", newline="", encoding="utf-8") as f:
            writer = csv.writer(f)
            writer.writerow(GROUP_HEADERS)
            for group in self.result.duplicate_groups:
                for member in group.member_ids:
                    writer.writerow([
                        group.group_id,
                        "exact" if group.exact else "similar",
                        group.original_id,
                        member,
                        "yes" if member == group.original_id else "no",
                        f"{group.similarity:.3f}",
                        group.potential_savings_bytes,
                    ])
                    rows += 1

        logging.info(f"Wrote {len(self.result.duplicate_groups)} duplicate groups to {output_csv}")
        return rows

    def summary_lines(self) -> list[str]:
        """Human-readable recap for the console."""
        lines = [f"Scanned {self.result.processed_count}/{self.result.total_photos} photos, "
                 f"{self.result.total_issue_count} issues"]
        for summary in self.result.summaries:
            lines.append(f"  {summary.issue_type.value:<16} {summary.count:>6}  {_human_size(summary.total_size)}")
        groups, duplicates, savings = self.result.duplicate_summary
        lines.append(f"Duplicates: {groups} groups, {duplicates} removable copies, "
                     f"{_human_size(savings)} reclaimable")
        return lines


def _human_size(num_bytes: int) -> str:
    size = float(num_bytes)
    for unit in ("B", "KB", "MB", "GB"):
        if size < 1024:
            return f"{size:.1f} {unit}"
        size /= 1024
    return f"{size:.1f} TB"
