"""Access to the WSUS administrative API.

The report code only talks to the ``WsusClient``/``WsusConnection``
contracts. ``PowerShellWsusClient`` fulfils them by running short
PowerShell snippets against ``Microsoft.UpdateServices.Administration``
and reading their ``ConvertTo-Json`` output.
"""

from __future__ import annotations

import base64
import json
import logging
import os
import subprocess
from datetime import datetime
from typing import Any, Protocol

from .models import InstallationInfo, UpdateRecord, UpdateSummary

LOGGER = logging.getLogger(__name__)

LAST_REPORTED_FORMAT = "%Y-%m-%dT%H:%M:%S"


class WsusError(Exception):
    """Base error for WSUS administrative API failures."""


class WsusConnectionError(WsusError):
    """Raised when no connection to a WSUS server could be established."""

    def __init__(self, server: str, message: str | None = None) -> None:
        self.server = server
        super().__init__(message or f"Unable to connect to {server}")


class WsusQueryError(WsusError):
    """Raised when an administrative call fails or returns unreadable output."""


class WsusConnection(Protocol):
    server: str
    port: int
    use_ssl: bool

    def get_summaries_per_update(self, kb_text: str) -> list[UpdateSummary]:
        """Summaries for all computers (including subgroups) and updates whose text contains kb_text."""
        ...

    def get_update(self, update_id: str) -> UpdateRecord:
        ...

    def get_installation_info_per_computer(self, update_id: str) -> list[InstallationInfo]:
        """Per-computer state for all computers, with identity and group names resolved."""
        ...


class WsusClient(Protocol):
    def connect(self, server: str, port: int, use_ssl: bool) -> WsusConnection:
        ...


_PRELUDE = """
$ErrorActionPreference = 'Stop'
[Console]::OutputEncoding = [Text.Encoding]::UTF8
[void][Reflection.Assembly]::LoadWithPartialName('Microsoft.UpdateServices.Administration')
$wsus = [Microsoft.UpdateServices.Administration.AdminProxy]::GetUpdateServer(
    $env:WSUS_SERVER, [bool]::Parse($env:WSUS_USE_SSL), [int]$env:WSUS_PORT)
function Get-AllComputersGroup {
    $wsus.GetComputerTargetGroup([Microsoft.UpdateServices.Administration.ComputerTargetGroupId]::AllComputers)
}
function Get-UpdateById([string]$id) {
    $revision = New-Object Microsoft.UpdateServices.Administration.UpdateRevisionId([Guid]$id)
    $wsus.GetUpdate($revision)
}
"""

_PROBE_SCRIPT = """
ConvertTo-Json -Compress -InputObject ([pscustomobject]@{ Name = $wsus.Name; Version = "$($wsus.Version)" })
"""

_SUMMARIES_SCRIPT = """
$updateScope = New-Object Microsoft.UpdateServices.Administration.UpdateScope
$updateScope.TextIncludes = $env:WSUS_KB_TEXT
$computerScope = New-Object Microsoft.UpdateServices.Administration.ComputerTargetScope
$computerScope.IncludeSubgroups = $true
[void]$computerScope.ComputerTargetGroups.Add((Get-AllComputersGroup))
$rows = @($wsus.GetSummariesPerUpdate($updateScope, $computerScope) | ForEach-Object {
    [pscustomobject]@{
        UpdateId = $_.UpdateId.ToString()
        InstalledCount = $_.InstalledCount
        InstalledPendingRebootCount = $_.InstalledPendingRebootCount
        NotInstalledCount = $_.NotInstalledCount
        DownloadedCount = $_.DownloadedCount
        FailedCount = $_.FailedCount
    }
})
ConvertTo-Json -Compress -Depth 3 -InputObject $rows
"""

_UPDATE_SCRIPT = """
$update = Get-UpdateById $env:WSUS_UPDATE_ID
ConvertTo-Json -Compress -Depth 3 -InputObject ([pscustomobject]@{
    UpdateId = $update.Id.UpdateId.ToString()
    Title = $update.Title
    KnowledgebaseArticles = @($update.KnowledgebaseArticles | ForEach-Object { "$_" })
})
"""

_INSTALLATION_INFO_SCRIPT = """
$update = Get-UpdateById $env:WSUS_UPDATE_ID
$groupNames = @{}
foreach ($group in $wsus.GetComputerTargetGroups()) {
    $groupNames[$group.Id.ToString()] = $group.Name
}
$computerScope = New-Object Microsoft.UpdateServices.Administration.ComputerTargetScope
$computerScope.IncludeDownstreamComputerTargets = $true
$computers = @{}
foreach ($computer in $wsus.GetComputerTargets($computerScope)) {
    $computers[$computer.Id] = $computer
}
$rows = @($update.GetUpdateInstallationInfoPerComputerTarget((Get-AllComputersGroup)) | ForEach-Object {
    $computer = $computers[$_.ComputerTargetId]
    if ($null -eq $computer) {
        $computer = $wsus.GetComputerTarget($_.ComputerTargetId)
    }
    $reported = $null
    if ($computer.LastReportedStatusTime -gt [DateTime]::MinValue) {
        $reported = $computer.LastReportedStatusTime.ToString('yyyy-MM-ddTHH:mm:ss')
    }
    [pscustomobject]@{
        UpdateInstallationState = [int]$_.UpdateInstallationState
        UpdateApprovalAction = $_.UpdateApprovalAction.ToString()
        FullDomainName = $computer.FullDomainName
        IPAddress = "$($computer.IPAddress)"
        LastReportedStatusTime = $reported
        GroupNames = @($computer.ComputerTargetGroupIds | ForEach-Object { $groupNames["$_"] } | Where-Object { $_ })
    }
})
ConvertTo-Json -Compress -Depth 3 -InputObject $rows
"""


def _as_list(payload: Any) -> list[Any]:
    if payload is None:
        return []
    if isinstance(payload, list):
        return payload
    return [payload]


def _parse_last_reported(value: Any) -> datetime | None:
    if not value:
        return None
    try:
        return datetime.strptime(str(value), LAST_REPORTED_FORMAT)
    except ValueError:
        LOGGER.debug("Unparseable LastReportedStatusTime %r", value)
        return None


class PowerShellWsusConnection:
    def __init__(self, client: PowerShellWsusClient, server: str, port: int, use_ssl: bool) -> None:
        self.client = client
        self.server = server
        self.port = port
        self.use_ssl = use_ssl

    def _run(self, script: str, **params: Any) -> Any:
        env = {
            "WSUS_SERVER": self.server,
            "WSUS_PORT": str(self.port),
            "WSUS_USE_SSL": "true" if self.use_ssl else "false",
        }
        env.update({f"WSUS_{key.upper()}": str(value) for key, value in params.items()})
        return self.client.run_script(_PRELUDE + script, env)

    def probe(self) -> dict[str, Any]:
        payload = self._run(_PROBE_SCRIPT)
        if not isinstance(payload, dict):
            raise WsusQueryError(f"Unexpected probe response from {self.server}:{self.port}")
        return payload

    def get_summaries_per_update(self, kb_text: str) -> list[UpdateSummary]:
        summaries: list[UpdateSummary] = []
        for item in _as_list(self._run(_SUMMARIES_SCRIPT, kb_text=kb_text)):
            summaries.append(
                UpdateSummary(
                    update_id=str(item["UpdateId"]),
                    installed_count=int(item.get("InstalledCount") or 0),
                    installed_pending_reboot_count=int(item.get("InstalledPendingRebootCount") or 0),
                    not_installed_count=int(item.get("NotInstalledCount") or 0),
                    downloaded_count=int(item.get("DownloadedCount") or 0),
                    failed_count=int(item.get("FailedCount") or 0),
                )
            )
        return summaries

    def get_update(self, update_id: str) -> UpdateRecord:
        item = self._run(_UPDATE_SCRIPT, update_id=update_id)
        if not isinstance(item, dict):
            raise WsusQueryError(f"Update {update_id} not found on {self.server}")
        return UpdateRecord(
            update_id=str(item.get("UpdateId") or update_id),
            title=str(item.get("Title") or ""),
            knowledgebase_articles=[str(kb) for kb in _as_list(item.get("KnowledgebaseArticles"))],
        )

    def get_installation_info_per_computer(self, update_id: str) -> list[InstallationInfo]:
        return [
            InstallationInfo(
                update_installation_state=int(item.get("UpdateInstallationState") or 0),
                update_approval_action=str(item.get("UpdateApprovalAction") or ""),
                full_domain_name=str(item.get("FullDomainName") or ""),
                ip_address=item.get("IPAddress") or None,
                last_reported_status_time=_parse_last_reported(item.get("LastReportedStatusTime")),
                group_names=[str(name) for name in _as_list(item.get("GroupNames"))],
            )
            for item in _as_list(self._run(_INSTALLATION_INFO_SCRIPT, update_id=update_id))
        ]


class PowerShellWsusClient:
    def __init__(self, powershell: str = "powershell.exe", timeout_sec: float | None = None) -> None:
        self.powershell = powershell
        self.timeout_sec = timeout_sec

    def connect(self, server: str, port: int, use_ssl: bool) -> PowerShellWsusConnection:
        conn = PowerShellWsusConnection(self, server, port, use_ssl)
        try:
            info = conn.probe()
        except WsusQueryError as exc:
            raise WsusConnectionError(server, f"Unable to connect to {server}:{port}: {exc}") from exc
        LOGGER.info("Connected to %s:%s (ssl=%s, version %s)", server, port, use_ssl, info.get("Version"))
        return conn

    def run_script(self, script: str, env: dict[str, str]) -> Any:
        encoded = base64.b64encode(script.encode("utf-16-le")).decode("ascii")
        cmd = [self.powershell, "-NoProfile", "-NonInteractive", "-ExecutionPolicy", "Bypass", "-EncodedCommand", encoded]
        try:
            result = subprocess.run(
                cmd,
                capture_output=True,
                text=True,
                encoding="utf-8",
                env={**os.environ, **env},
                timeout=self.timeout_sec,
            )
        except (OSError, subprocess.TimeoutExpired) as exc:
            raise WsusQueryError(f"{self.powershell} failed: {exc}") from exc

        if result.returncode != 0:
            stderr = (result.stderr or "").strip()
            raise WsusQueryError(stderr or f"{self.powershell} exited with code {result.returncode}")

        stdout = (result.stdout or "").strip()
        if not stdout:
            return None
        try:
            return json.loads(stdout)
        except json.JSONDecodeError as exc:
            raise WsusQueryError(f"{self.powershell} returned invalid JSON") from exc
