from __future__ import annotations

import logging
import re
from pathlib import Path
from typing import Any


def setup_logging(level: str = "INFO") -> None:
    logging.basicConfig(
        level=getattr(logging, level.upper(), logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s %(message)s",
    )


def ensure_dir(path: Path) -> Path:
    path.mkdir(parents=True, exist_ok=True)
    return path


def package_dir() -> Path:
    return Path(__file__).resolve().parent


def server_to_path_segment(server: str) -> str:
    cleaned = server.strip()
    cleaned = re.sub(r"^[A-Za-z]+://", "", cleaned)
    cleaned = re.sub(r"[^A-Za-z0-9_.-]", "_", cleaned)
    return cleaned or "unknown"


def parse_kb_number(value: Any) -> int:
    text = str(value).strip()
    if text[:2].upper() == "KB":
        text = text[2:]
    if not text.isdigit():
        raise ValueError(f"Invalid KB number: {value!r}")
    return int(text)


def join_sorted(values: list[str], separator: str = ",") -> str:
    return separator.join(sorted((v for v in values if v), key=lambda v: (v.casefold(), v)))
