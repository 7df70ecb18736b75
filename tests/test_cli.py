import re

import pytest

from wsus_kb_report.cli import main

from conftest import FakeWsusClient, make_server


def test_invalid_format_aborts_before_any_call(tmp_path, capsys) -> None:
    client = FakeWsusClient({"wsus01": make_server()})
    with pytest.raises(SystemExit) as exc_info:
        main(["wsus01", "--kb-number", "123456", "--format", "HTML", "--output-path", str(tmp_path)], client=client)

    assert exc_info.value.code == 2
    assert client.calls == []
    assert list(tmp_path.iterdir()) == []
    assert "HTML" in capsys.readouterr().err


def test_console_run(capsys, tmp_path) -> None:
    client = FakeWsusClient({"wsus01": make_server()})
    code = main(
        ["wsus01", "-k", "KB123456", "-f", "console", "-a", "x64", "--locale", "en", "--no-progress",
         "-o", str(tmp_path)],
        client=client,
    )

    out = capsys.readouterr().out
    assert code == 0
    assert "Security Update for Windows (x64) KB123456" in out
    assert "(x86)" not in out
    assert list(tmp_path.iterdir()) == []


def test_csv_run_reports_failed_server(capsys, caplog, tmp_path) -> None:
    client = FakeWsusClient({"wsus01": make_server()})
    code = main(
        ["offline", "wsus01", "-k", "123456", "--locale", "ja", "--no-progress", "-o", str(tmp_path)],
        client=client,
    )

    captured = capsys.readouterr()
    assert code == 1
    assert caplog.text.count("offline: WsusConnectionError") == 1
    assert "offline" not in captured.out
    assert "wsus01: 2 updates, 3 computers" in captured.out
    summaries = list(tmp_path.glob("UpdateSummary-wsus01-*.csv"))
    assert len(summaries) == 1
    assert re.fullmatch(r"UpdateSummary-wsus01-20\d{12}\.csv", summaries[0].name)


def test_output_path_help_mentions_package_default(capsys) -> None:
    with pytest.raises(SystemExit):
        main(["--help"])

    help_text = " ".join(capsys.readouterr().out.split())
    assert "package directory" in help_text
    assert "may not be writable" in help_text
