from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path

from tqdm import tqdm

from .client import WsusClient, WsusConnection, WsusConnectionError, WsusError
from .config import LocaleProfile
from .models import (
    ComputerDetailRow,
    InstallationInfo,
    ServerResult,
    UpdateRecord,
    UpdateSummary,
    UpdateSummaryRow,
)
from .output import ConsoleWriter, CsvReportWriter
from .utils import join_sorted

LOGGER = logging.getLogger(__name__)

INSTALL_ACTION = "Install"
LAST_REPORTED_OUTPUT_FORMAT = "%Y-%m-%d %H:%M:%S"


@dataclass(slots=True)
class ReportOptions:
    kb_number: int
    locale: LocaleProfile
    output_format: str = "CSV"
    architecture: str = ""
    output_path: Path | None = None
    secure_port: int = 8531
    fallback_port: int = 8530
    progress: bool = True


def matches_architecture(title: str, architecture: str) -> bool:
    if not architecture:
        return True
    return architecture.casefold() in (title or "").casefold()


def is_install_approval(info: InstallationInfo) -> bool:
    return info.update_approval_action == INSTALL_ACTION


def build_summary_row(update: UpdateRecord, summary: UpdateSummary) -> UpdateSummaryRow:
    return UpdateSummaryRow(
        Title=update.title,
        KnowledgebaseArticles=",".join(update.knowledgebase_articles),
        InstalledCount=summary.installed_count,
        InstalledPendingRebootCount=summary.installed_pending_reboot_count,
        NotInstalledCount=summary.not_installed_count,
        DownloadedCount=summary.downloaded_count,
        FailedCount=summary.failed_count,
    )


def build_detail_row(info: InstallationInfo, locale: LocaleProfile) -> ComputerDetailRow:
    reported = info.last_reported_status_time
    return ComputerDetailRow(
        FullDomainName=info.full_domain_name,
        IPAddress=info.ip_address or "",
        GroupOf=join_sorted(info.group_names),
        LastReportedStatusTime=reported.strftime(LAST_REPORTED_OUTPUT_FORMAT) if reported else "",
        UpdateInstallationState=locale.state_label(info.update_installation_state),
        UpdateApprovalAction=info.update_approval_action,
    )


def collect_detail_rows(
    conn: WsusConnection,
    update: UpdateRecord,
    locale: LocaleProfile,
    progress: bool = True,
) -> list[ComputerDetailRow]:
    infos = [info for info in conn.get_installation_info_per_computer(update.update_id) if is_install_approval(info)]
    rows: list[ComputerDetailRow] = []
    for info in tqdm(infos, desc=update.title[:40] or update.update_id, disable=not progress):
        rows.append(build_detail_row(info, locale))
    return rows


def connect_with_fallback(client: WsusClient, server: str, secure_port: int, fallback_port: int) -> WsusConnection:
    try:
        return client.connect(server, secure_port, True)
    except WsusError as exc:
        LOGGER.warning("Connection to %s:%s failed (%s), trying port %s", server, secure_port, exc, fallback_port)
    try:
        return client.connect(server, fallback_port, False)
    except WsusError as exc:
        raise WsusConnectionError(
            server, f"Unable to connect to {server} on ports {secure_port} and {fallback_port}: {exc}"
        ) from exc


def extract_server_report(
    client: WsusClient,
    server: str,
    options: ReportOptions,
    writer: CsvReportWriter | ConsoleWriter,
    result: ServerResult | None = None,
) -> ServerResult:
    """Produce the detail and summary output for one server.

    Errors propagate to the caller; whatever was written before the failure
    stays on disk.
    """
    if result is None:
        result = ServerResult(server=server)
    conn = connect_with_fallback(client, server, options.secure_port, options.fallback_port)

    summaries = conn.get_summaries_per_update(str(options.kb_number))
    LOGGER.info("%s: %s update summaries match KB%s", server, len(summaries), options.kb_number)

    for summary in summaries:
        update = conn.get_update(summary.update_id)
        if not matches_architecture(update.title, options.architecture):
            LOGGER.debug("%s: skipping %r (architecture %r)", server, update.title, options.architecture)
            continue

        rows = collect_detail_rows(conn, update, options.locale, progress=options.progress)
        target = writer.write_detail(server, options.kb_number, update, rows)
        if target:
            result.files.append(target)
        result.detail_row_count += len(rows)
        result.summary_rows.append(build_summary_row(update, summary))

    target = writer.write_summary(server, result.summary_rows)
    if target:
        result.files.append(target)
    return result


def _make_writer(options: ReportOptions, run_started: datetime) -> CsvReportWriter | ConsoleWriter:
    if options.output_format == "Console":
        return ConsoleWriter()
    if options.output_path is None:
        raise ValueError("An output path is required for CSV output")
    return CsvReportWriter(
        output_dir=options.output_path,
        timestamp=run_started.strftime(options.locale.date_format),
    )


def run_report(
    client: WsusClient,
    servers: list[str],
    options: ReportOptions,
    run_started: datetime | None = None,
) -> list[ServerResult]:
    """Run the report for every server in order.

    A failure on one server abandons the rest of that server's updates and
    moves on to the next server.
    """
    run_started = run_started or datetime.now()
    writer = _make_writer(options, run_started)
    results: list[ServerResult] = []

    for server in servers:
        result = ServerResult(server=server)
        try:
            extract_server_report(client, server, options, writer, result)
        except Exception as exc:  # noqa: BLE001
            LOGGER.error("%s: %s: %s", server, type(exc).__name__, exc)
            result.error_type = type(exc).__name__
            result.error_message = str(exc)
        else:
            LOGGER.info(
                "%s: %s matching updates, %s computer rows",
                server,
                len(result.summary_rows),
                result.detail_row_count,
            )
        results.append(result)
    return results
