from __future__ import annotations

import re
from pathlib import Path


LOG_LINE_RE = re.compile(
    r"^(?P<ts>\d{4}-\d{2}-\d{2}\s+\S+)\s+\[(?P<level>[A-Z]+)\]\s+\[(?P<module>[^\]]+)\]\s*(?P<message>.*)$"
)


def _tail_lines(path: str, n: int = 200) -> list[str]:
    p = Path(path)
    if not p.exists():
        return []
    lines = p.read_text(encoding="utf-8", errors="replace").splitlines()
    return lines[-n:]


def parse_log_lines(lines: list[str]) -> list[dict[str, str]]:
    """Group raw log lines into entries.

    Lines that do not start a new record (traceback frames written by
    ``logger.exception``) are folded into the preceding entry's ``detail``.
    """
    entries: list[dict[str, str]] = []
    for line in lines:
        match = LOG_LINE_RE.match(line)
        if match:
            parsed = match.groupdict()
            entries.append(
                {
                    "raw": line,
                    "ts": parsed["ts"],
                    "level": parsed["level"],
                    "module": parsed["module"],
                    "message": parsed["message"],
                    "detail": "",
                }
            )
            continue
        if entries:
            prev = entries[-1]
            prev["raw"] = f"{prev['raw']}\n{line}"
            prev["detail"] = f"{prev['detail']}\n{line}" if prev["detail"] else line
        else:
            entries.append({"raw": line, "ts": "", "level": "", "module": "", "message": line, "detail": ""})
    return entries


def build_log_tail_payload(path: str, n: int = 200, level: str | None = None, module: str | None = None) -> dict:
    level_wanted = (level or "").strip().upper() or None
    module_wanted = (module or "").strip().lower() or None

    items: list[dict[str, str]] = []
    for item in parse_log_lines(_tail_lines(path, n=n)):
        if level_wanted and item["level"].upper() != level_wanted:
            continue
        if module_wanted and item["module"].strip().lower() != module_wanted:
            continue
        items.append(item)

    return {
        "path": path,
        "n": n,
        "level": level_wanted,
        "module": module_wanted,
        "count": len(items),
        "tail": "\n".join(item["raw"] for item in items),
        "items": items,
    }
