from __future__ import annotations

import json
from pathlib import Path
from typing import Any

DERIVED_SUFFIX = ".json"
ERROR_LOG_SUFFIX = "_error_log.txt"


def derived_name(file_name: str) -> str:
    return f"{Path(file_name).stem}{DERIVED_SUFFIX}"


def error_log_name(file_name: str) -> str:
    return f"{Path(file_name).stem}{ERROR_LOG_SUFFIX}"


def encode_document(document: Any) -> bytes:
    return json.dumps(document, ensure_ascii=False, separators=(",", ":")).encode("utf-8")


class LocalArtifactCache:
    """Writes derived JSON and error logs beside their source spreadsheets."""

    def write_derived(self, source: Path, document: Any) -> tuple[Path, int]:
        payload = encode_document(document)
        target = source.with_name(derived_name(source.name))
        target.write_bytes(payload)
        return target, len(payload)

    def write_error_log(self, source: Path, message: str) -> Path:
        target = source.with_name(error_log_name(source.name))
        target.write_text(message, encoding="utf-8")
        return target
