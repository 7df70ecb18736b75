from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime

import pytest

from wsus_kb_report.client import WsusConnectionError, WsusQueryError
from wsus_kb_report.config import LOCALE_PROFILES
from wsus_kb_report.models import InstallationInfo, UpdateRecord, UpdateSummary
from wsus_kb_report.report import ReportOptions


@dataclass
class FakeServer:
    summaries: list[UpdateSummary] = field(default_factory=list)
    updates: dict[str, UpdateRecord] = field(default_factory=dict)
    infos: dict[str, list[InstallationInfo]] = field(default_factory=dict)
    open_ports: tuple[int, ...] = (8531, 8530)
    fail_on_update: str | None = None


class FakeConnection:
    def __init__(self, client: "FakeWsusClient", server: str, port: int, use_ssl: bool) -> None:
        self.client = client
        self.server = server
        self.port = port
        self.use_ssl = use_ssl
        self.data = client.servers[server]

    def get_summaries_per_update(self, kb_text: str) -> list[UpdateSummary]:
        self.client.calls.append(("summaries", self.server, kb_text))
        return [s for s in self.data.summaries if kb_text in self.data.updates[s.update_id].title]

    def get_update(self, update_id: str) -> UpdateRecord:
        self.client.calls.append(("update", self.server, update_id))
        if update_id == self.data.fail_on_update:
            raise WsusQueryError(f"update {update_id} exploded")
        return self.data.updates[update_id]

    def get_installation_info_per_computer(self, update_id: str) -> list[InstallationInfo]:
        self.client.calls.append(("infos", self.server, update_id))
        return list(self.data.infos.get(update_id, []))


class FakeWsusClient:
    def __init__(self, servers: dict[str, FakeServer]) -> None:
        self.servers = servers
        self.calls: list[tuple] = []

    def connect(self, server: str, port: int, use_ssl: bool) -> FakeConnection:
        self.calls.append(("connect", server, port, use_ssl))
        data = self.servers.get(server)
        if data is None or port not in data.open_ports:
            raise WsusConnectionError(server, f"Unable to connect to {server}:{port}")
        return FakeConnection(self, server, port, use_ssl)


def make_server(kb: int = 123456) -> FakeServer:
    x64 = UpdateRecord("u-x64", f"Security Update for Windows (x64) KB{kb}", [str(kb)])
    x86 = UpdateRecord("u-x86", f"Security Update for Windows (x86) KB{kb}", [str(kb)])
    other = UpdateRecord("u-other", "Security Update for Windows KB999999", ["999999"])
    return FakeServer(
        summaries=[
            UpdateSummary("u-x64", installed_count=10, installed_pending_reboot_count=2, not_installed_count=3,
                          downloaded_count=1, failed_count=4),
            UpdateSummary("u-x86", installed_count=5, failed_count=1),
            UpdateSummary("u-other", installed_count=99),
        ],
        updates={u.update_id: u for u in (x64, x86, other)},
        infos={
            "u-x64": [
                InstallationInfo(4, "Install", "pc1.corp.local", "10.0.0.1", datetime(2024, 1, 2, 3, 4, 5),
                                 ["Workstations", "All Computers"]),
                InstallationInfo(5, "NotApproved", "pc2.corp.local", "10.0.0.2", None, ["Workstations"]),
                InstallationInfo(6, "Install", "pc3.corp.local"),
            ],
            "u-x86": [
                InstallationInfo(2, "Uninstall", "pc2.corp.local", "10.0.0.2", None, ["Workstations"]),
                InstallationInfo(3, "Install", "pc4.corp.local", "10.0.0.4", None,
                                 ["Pilot", "All Computers", "Workstations"]),
            ],
        },
    )


@pytest.fixture
def fake_client() -> FakeWsusClient:
    return FakeWsusClient({"wsus01": make_server(), "wsus02": make_server()})


@pytest.fixture
def options(tmp_path) -> ReportOptions:
    return ReportOptions(
        kb_number=123456,
        locale=LOCALE_PROFILES["en"],
        output_format="CSV",
        output_path=tmp_path,
        progress=False,
    )
