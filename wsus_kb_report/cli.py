from __future__ import annotations

import argparse
import logging
from pathlib import Path
from typing import Any

from . import __version__
from .client import PowerShellWsusClient, WsusClient
from .config import apply_cli_overrides, load_config, normalize_format, resolve_locale_profile
from .models import ServerResult
from .report import ReportOptions, run_report
from .utils import package_dir, parse_kb_number, setup_logging

LOGGER = logging.getLogger(__name__)


def _create_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="wsus-kb-report",
        description="Report WSUS installation status of one KB across all computers",
    )
    parser.add_argument("--version", action="version", version=f"%(prog)s {__version__}")
    parser.add_argument("servers", nargs="+", metavar="SERVER", help="WSUS server name, FQDN or IP")
    parser.add_argument("--kb-number", "-k", required=True, help="KB number, e.g. 5034441 or KB5034441")
    parser.add_argument("--architecture", "-a", default=None, help="Only updates whose title contains this text")
    parser.add_argument("--format", "-f", dest="output_format", default=None, help="CSV (default) or Console")
    parser.add_argument(
        "--output-path",
        "-o",
        type=Path,
        default=None,
        help="Directory for CSV files (default: the installed wsus_kb_report package directory, "
        "which may not be writable; pass a directory for installed copies)",
    )
    parser.add_argument("--locale", default=None, help="Override the system locale (en or ja)")
    parser.add_argument("--config", type=Path)
    parser.add_argument("--no-progress", action="store_true")
    return parser


def _resolve_options(args: argparse.Namespace, cfg: dict[str, Any]) -> ReportOptions:
    report_cfg = cfg["report"]
    output_format = normalize_format(report_cfg.get("format"))
    locale = resolve_locale_profile(report_cfg.get("locale"))
    output_path = report_cfg.get("output_path")
    return ReportOptions(
        kb_number=parse_kb_number(args.kb_number),
        locale=locale,
        output_format=output_format,
        architecture=str(report_cfg.get("architecture") or ""),
        output_path=Path(str(output_path)) if output_path else package_dir(),
        secure_port=int(cfg["wsus"]["secure_port"]),
        fallback_port=int(cfg["wsus"]["fallback_port"]),
        progress=bool(cfg["runtime"].get("progress", True)),
    )


def _print_results(results: list[ServerResult]) -> None:
    # Failures were already logged by run_report.
    for result in results:
        if not result.ok:
            continue
        print(f"{result.server}: {len(result.summary_rows)} updates, {result.detail_row_count} computers")
        for path in result.files:
            print(f"  {path}")


def main(argv: list[str] | None = None, client: WsusClient | None = None) -> int:
    parser = _create_parser()
    args = parser.parse_args(argv)

    try:
        cfg = load_config(args.config)
        cfg = apply_cli_overrides(
            cfg,
            {
                "report": {
                    "format": args.output_format,
                    "architecture": args.architecture,
                    "output_path": str(args.output_path) if args.output_path else None,
                    "locale": args.locale,
                },
                "runtime": {"progress": False if args.no_progress else None},
            },
        )
        setup_logging(cfg["runtime"].get("log_level", "INFO"))
        options = _resolve_options(args, cfg)
    except (ValueError, FileNotFoundError) as exc:
        parser.error(str(exc))

    if client is None:
        client = PowerShellWsusClient(
            powershell=str(cfg["wsus"]["powershell"]),
            timeout_sec=cfg["wsus"].get("command_timeout_sec"),
        )

    LOGGER.info(
        "KB%s on %s server(s), format=%s, locale=%s",
        options.kb_number,
        len(args.servers),
        options.output_format,
        options.locale.name,
    )
    results = run_report(client, args.servers, options)
    if options.output_format == "CSV":
        _print_results(results)
    return 0 if all(r.ok for r in results) else 1


if __name__ == "__main__":
    raise SystemExit(main())
