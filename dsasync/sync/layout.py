from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

logger = logging.getLogger("layout")


def _ensure_dir(path: Path, created: list[str], failed: list[str]):
    if path.exists():
        return
    try:
        logger.info("creating_local_folder path=%s", path)
        path.mkdir(parents=False)
        created.append(str(path))
    except OSError as e:
        logger.error("create_local_folder_failed path=%s error=%s", path, e)
        failed.append(str(path))


def _samples(value: Any) -> list[str]:
    if isinstance(value, dict):
        return [str(v) for v in value.values()]
    if isinstance(value, (list, tuple)):
        return [str(v) for v in value]
    return []


def create_folder_structure(root: Path, structure: dict[str, Any]) -> dict[str, list[str]]:
    """Create ``root/<lab>/<study>/<sample>`` directories.

    ``structure`` looks like ``{"labs": {lab: {"studies": {study: [sample, ...]}}}}``.
    Existing directories are kept. A directory that cannot be created is
    logged and its children are skipped.
    """
    created: list[str] = []
    failed: list[str] = []

    root = Path(root)
    root.mkdir(parents=True, exist_ok=True)

    labs = (structure or {}).get("labs") or {}
    for lab, lab_spec in labs.items():
        lab_dir = root / str(lab)
        _ensure_dir(lab_dir, created, failed)
        if not lab_dir.is_dir():
            continue

        studies = (lab_spec or {}).get("studies") or {}
        for study, samples in studies.items():
            study_dir = lab_dir / str(study)
            _ensure_dir(study_dir, created, failed)
            if not study_dir.is_dir():
                continue
            for sample in _samples(samples):
                _ensure_dir(study_dir / sample, created, failed)

    return {"created": created, "failed": failed}
