import json
import os
import traceback
from pathlib import Path
from typing import Any, Optional

from ..providers.dsa.client import AuthenticationError
from ..providers.dsa.models import ParentType, RemoteContainer, RemoteItem, SyncContext
from ..transform.spreadsheet import SpreadsheetTransformer
from .artifacts import DERIVED_SUFFIX, LocalArtifactCache, derived_name
from .history import finish_run, init_db, insert_run, now_iso

SPREADSHEET_SUFFIX = ".xlsx"
IGNORED_NAMES = {".DS_Store"}
LOCK_FILE_MARKER = "~$"
ERROR_LOG_MARKER = "_error_log"
STAIN_MARKER = "stain"
STAIN_METADATA = {"type": "tissue_microarray_stain"}


def is_ignored(name: str) -> bool:
    return (
        name in IGNORED_NAMES
        or LOCK_FILE_MARKER in name
        or DERIVED_SUFFIX in name
        or ERROR_LOG_MARKER in name
    )


def is_spreadsheet(name: str) -> bool:
    return Path(name).suffix.lower() == SPREADSHEET_SUFFIX


def _exact_matches(results: list[dict], name: str) -> list[dict]:
    return [r for r in results if isinstance(r, dict) and r.get("name") == name]


def new_summary(root: str) -> dict:
    return {
        "run_id": None,
        "root": root,
        "started_at": now_iso(),
        "finished_at": None,
        "collections_created": 0,
        "folders_created": 0,
        "containers_reused": 0,
        "uploaded": 0,
        "skipped_existing": 0,
        "derived_uploaded": 0,
        "derived_replaced": 0,
        "metadata_tagged": 0,
        "ignored": 0,
        "errors": 0,
    }


class TreeSynchronizer:
    def __init__(
        self,
        cfg: dict,
        db_path: Optional[str],
        client,
        log_func,
        transformer: Optional[SpreadsheetTransformer] = None,
        artifacts: Optional[LocalArtifactCache] = None,
    ):
        self.cfg = cfg
        self.db_path = db_path
        self.client = client
        self.log_func = log_func

        dsa_cfg = cfg.get("dsa", {})
        sync_cfg = cfg.get("sync", {})
        self.local_root = Path(sync_cfg.get("local_root") or dsa_cfg.get("folder_name") or "lcdr")
        self.base_collection_id = dsa_cfg.get("base_collection_id", "") or ""
        self.transformer = transformer or SpreadsheetTransformer(
            sync_cfg.get("structure_file_name") or "tma-structure.xlsx"
        )
        self.artifacts = artifacts or LocalArtifactCache()

    def _log(self, level: str, module: str, message: str, detail: Optional[dict] = None):
        self.log_func(level, module, message, json.dumps(detail, ensure_ascii=False, default=str) if detail else None)

    # -- entry points --------------------------------------------------------

    def run_once(self, run_type: str = "manual") -> dict:
        run_id = None
        if self.db_path:
            init_db(self.db_path)
            run_id = insert_run(self.db_path, run_type, str(self.local_root))

        try:
            summary = self.synchronize(self.local_root, run_id=run_id)
        except AuthenticationError as e:
            summary = new_summary(str(self.local_root))
            summary.update(run_id=run_id, finished_at=now_iso(), fatal_error=str(e))
            self._log("ERROR", "sync", "run_failed_authentication", {"error": str(e)})
            if self.db_path and run_id is not None:
                finish_run(self.db_path, run_id, "failed", summary)
            raise

        status = "completed_with_errors" if summary["errors"] else "success"
        if self.db_path and run_id is not None:
            finish_run(self.db_path, run_id, status, summary)
        self._log("INFO", "sync", "run_finished", {"status": status, **summary})
        return summary

    def synchronize(self, root_path, run_id: Optional[int] = None) -> dict:
        root = Path(root_path)
        summary = new_summary(str(root))
        summary["run_id"] = run_id

        # Fatal: nothing is synchronized without a session.
        self.client.authenticate()
        self._log("INFO", "sync", "run_started", {"root": str(root), "base_collection_id": self.base_collection_id})

        if not root.is_dir():
            summary["errors"] += 1
            self._log("ERROR", "sync", "local_root_missing", {"root": str(root)})
        else:
            ctx = SyncContext(
                parent_id=self.base_collection_id,
                parent_type=ParentType.COLLECTION,
                is_root_level=True,
            )
            self._sync_directory(root, ctx, summary)

        summary["finished_at"] = now_iso()
        return summary

    # -- traversal -----------------------------------------------------------

    def _list_entries(self, directory: Path) -> list[os.DirEntry]:
        with os.scandir(directory) as it:
            return sorted(it, key=lambda e: e.name)

    def _sync_directory(self, directory: Path, ctx: SyncContext, summary: dict):
        try:
            entries = self._list_entries(directory)
        except OSError as e:
            summary["errors"] += 1
            self._log("ERROR", "sync", "list_local_failed", {"dir": str(directory), "error": str(e)})
            return

        for entry in entries:
            path = Path(entry.path)
            try:
                is_dir = entry.is_dir()
            except OSError as e:
                summary["errors"] += 1
                self._log("ERROR", "sync", "stat_local_failed", {"path": str(path), "error": str(e)})
                continue

            if is_dir:
                try:
                    container = self._resolve_container(entry.name, ctx, summary)
                except Exception as e:
                    summary["errors"] += 1
                    self._log("ERROR", "sync", "resolve_container_failed", {"path": str(path), "error": str(e)})
                    continue
                self._sync_directory(path, ctx.child(container), summary)
                continue

            if is_ignored(entry.name):
                summary["ignored"] += 1
                continue

            if is_spreadsheet(entry.name):
                self._sync_spreadsheet(path, ctx, summary)
            else:
                self._sync_original(path, ctx, summary)

        self._log("DEBUG", "sync", "directory_done", {"dir": str(directory)})

    # -- containers ----------------------------------------------------------

    def _resolve_container(self, name: str, ctx: SyncContext, summary: dict) -> RemoteContainer:
        if ctx.is_root_level:
            return self._resolve_collection(name, summary)
        return self._resolve_folder(name, ctx, summary)

    def _resolve_collection(self, name: str, summary: dict) -> RemoteContainer:
        matches = _exact_matches(self.client.find_collection_by_name(name), name)
        if matches:
            self._warn_ambiguous("collection", name, matches)
            summary["containers_reused"] += 1
            return RemoteContainer.from_payload(matches[0], kind=ParentType.COLLECTION)

        created = self.client.create_collection(name)
        summary["collections_created"] += 1
        self._log("INFO", "sync", "collection_created", {"name": name})
        return RemoteContainer.from_payload(created, kind=ParentType.COLLECTION)

    def _resolve_folder(self, name: str, ctx: SyncContext, summary: dict) -> RemoteContainer:
        results = self.client.find_folder(ctx.parent_type, ctx.parent_id, name)
        matches = _exact_matches(results, name)
        if matches:
            self._warn_ambiguous("folder", name, matches)
            summary["containers_reused"] += 1
            return RemoteContainer.from_payload(matches[0], ctx.parent_id, ctx.parent_type, kind=ParentType.FOLDER)

        created = self.client.create_folder(ctx.parent_type, ctx.parent_id, name)
        summary["folders_created"] += 1
        self._log(
            "INFO",
            "sync",
            "folder_created",
            {"name": name, "parent_id": ctx.parent_id, "parent_type": ctx.parent_type.value},
        )
        return RemoteContainer.from_payload(created, ctx.parent_id, ctx.parent_type, kind=ParentType.FOLDER)

    def _warn_ambiguous(self, kind: str, name: str, matches: list[dict]):
        if len(matches) > 1:
            self._log(
                "WARNING",
                "sync",
                "ambiguous_match",
                {"kind": kind, "name": name, "count": len(matches), "using": matches[0].get("_id")},
            )

    # -- files ---------------------------------------------------------------

    @staticmethod
    def _is_stain_artifact(json_path: Path, root: Path) -> bool:
        try:
            rel = json_path.relative_to(root)
        except ValueError:
            rel = Path(json_path.name)
        return STAIN_MARKER in rel.as_posix()

    def _find_items(self, ctx: SyncContext, name: str) -> list[RemoteItem]:
        matches = _exact_matches(self.client.find_item(ctx.parent_id, name), name)
        return [RemoteItem.from_payload(m) for m in matches]

    def _sync_original(self, path: Path, ctx: SyncContext, summary: dict):
        try:
            if self._find_items(ctx, path.name):
                summary["skipped_existing"] += 1
                return
            size = path.stat().st_size
            self.client.upload_file(ctx.parent_id, ctx.parent_type, str(path), path.name, size)
            summary["uploaded"] += 1
            self._log("DEBUG", "sync", "file_uploaded", {"path": str(path), "size": size})
        except Exception as e:
            # Left for the next run: the presence check makes a retry safe.
            summary["errors"] += 1
            self._log("ERROR", "sync", "file_upload_failed", {"path": str(path), "error": str(e)})

    def _sync_spreadsheet(self, path: Path, ctx: SyncContext, summary: dict):
        json_name = derived_name(path.name)
        try:
            # Derived artifacts are always rebuilt; drop every stale copy.
            previous = self._find_items(ctx, json_name)
            for item in previous:
                self.client.delete_item(item.id)
            if previous:
                summary["derived_replaced"] += 1

            document = self.transformer.convert(str(path), path.name)
            json_path, size = self.artifacts.write_derived(path, document)

            self.client.upload_file(ctx.parent_id, ctx.parent_type, str(json_path), json_path.name, size)
            summary["derived_uploaded"] += 1

            if self._is_stain_artifact(json_path, Path(summary["root"])):
                self.client.set_folder_metadata(ctx.parent_id, dict(STAIN_METADATA))
                summary["metadata_tagged"] += 1

            self._log("DEBUG", "sync", "derived_uploaded", {"source": str(path), "json": json_path.name})
        except Exception as e:
            summary["errors"] += 1
            message = (
                f"Failed to process file: {path.name}\n"
                f"Error: {e}\n"
                f"Stack: {''.join(traceback.format_exception(type(e), e, e.__traceback__))}"
            )
            try:
                log_path = self.artifacts.write_error_log(path, message)
            except OSError as write_err:
                self._log(
                    "ERROR",
                    "sync",
                    "error_log_write_failed",
                    {"path": str(path), "error": str(e), "write_error": str(write_err)},
                )
                return
            self._log("ERROR", "sync", "spreadsheet_failed", {"path": str(path), "error": str(e), "error_log": str(log_path)})
