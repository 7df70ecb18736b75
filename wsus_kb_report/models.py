from __future__ import annotations

from dataclasses import dataclass, field, fields
from datetime import datetime
from typing import Any


@dataclass(slots=True)
class UpdateSummary:
    update_id: str
    installed_count: int = 0
    installed_pending_reboot_count: int = 0
    not_installed_count: int = 0
    downloaded_count: int = 0
    failed_count: int = 0


@dataclass(slots=True)
class UpdateRecord:
    update_id: str
    title: str
    knowledgebase_articles: list[str] = field(default_factory=list)


@dataclass(slots=True)
class InstallationInfo:
    """One computer's installation state for an update, with the computer already resolved."""

    update_installation_state: int
    update_approval_action: str
    full_domain_name: str = ""
    ip_address: str | None = None
    last_reported_status_time: datetime | None = None
    group_names: list[str] = field(default_factory=list)


# Output rows. Field order is column order and field names are CSV headers.


@dataclass(slots=True)
class ComputerDetailRow:
    FullDomainName: str
    IPAddress: str
    GroupOf: str
    LastReportedStatusTime: str
    UpdateInstallationState: str
    UpdateApprovalAction: str


@dataclass(slots=True)
class UpdateSummaryRow:
    Title: str
    KnowledgebaseArticles: str
    InstalledCount: int
    InstalledPendingRebootCount: int
    NotInstalledCount: int
    DownloadedCount: int
    FailedCount: int


def row_columns(row_type: type) -> list[str]:
    return [f.name for f in fields(row_type)]


def row_values(row: Any) -> list[Any]:
    return [getattr(row, name) for name in row_columns(type(row))]


@dataclass(slots=True)
class ServerResult:
    server: str
    summary_rows: list[UpdateSummaryRow] = field(default_factory=list)
    detail_row_count: int = 0
    files: list[str] = field(default_factory=list)
    error_type: str | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.error_type is None
