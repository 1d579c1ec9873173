# tablecraft/parity/inspector.py
import logging
import os
import platform
import re
import tempfile
import time
import traceback
import uuid
from concurrent.futures import Future, ThreadPoolExecutor
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional

import orjson
from pydantic import BaseModel

from tablecraft.core import feature_flags
from tablecraft.core.exceptions import DiagnosticIOError
from tablecraft.models.descriptor import ParityDiagnostic
from tablecraft.parity.diff import severity

logger = logging.getLogger(__name__)

INSPECTOR_VERSION = "1.0.0"
REDACTED = "[REDACTED]"
QUICK_DUMP_DIR = "quick-dumps"

SENSITIVE_PATTERNS = (
    "password", "passwd", "secret", "token", "key", "api_key", "auth",
    "credential", "private", "confidential", "_token", "csrf", "session", "cookie",
)

_FILENAME_UNSAFE = re.compile(r"[:/\\.]")

# One writer thread; artifacts are never awaited by the request path
_writer = ThreadPoolExecutor(max_workers=1, thread_name_prefix="inspector")


class InspectorConfig(BaseModel):
    enabled: bool = False
    storage_path: Path = Path("data/datatable-inspector")
    max_files: int = 100
    cleanup_days: int = 7
    max_file_size: int = 10 * 1024 * 1024
    include_trace: bool = True
    include_request_data: bool = True
    exclude_sensitive: bool = True
    debug: bool = False

    @classmethod
    def from_settings(cls, settings: Optional[Any] = None) -> "InspectorConfig":
        """Build from pydantic settings, falling back to TABLECRAFT_INSPECTOR_* variables"""
        if settings is None:
            settings = feature_flags._load_settings()

        def option(key, default):
            return feature_flags.inspector_option(key, default, settings)

        if settings is not None:
            storage = settings.inspector_storage_dir
        else:
            storage = Path(option("storage_path", "data/datatable-inspector"))

        return cls(
            enabled=feature_flags.inspector_enabled(settings),
            storage_path=storage,
            max_files=option("max_files", 100),
            cleanup_days=option("cleanup_days", 7),
            max_file_size=option("max_file_size", 10 * 1024 * 1024),
            include_trace=option("include_trace", True),
            include_request_data=option("include_request_data", True),
            exclude_sensitive=option("exclude_sensitive", True),
            debug=option("debug", False),
        )


def is_sensitive(key: Any) -> bool:
    lowered = str(key).lower()
    return any(pattern in lowered for pattern in SENSITIVE_PATTERNS)


def redact(data: Any) -> Any:
    """Replace values under sensitive keys, at any depth"""
    if isinstance(data, Mapping):
        return {
            key: (REDACTED if is_sensitive(key) else redact(value))
            for key, value in data.items()
        }
    if isinstance(data, (list, tuple)):
        return [redact(item) for item in data]
    return data


def safe_filename_part(value: str) -> str:
    return _FILENAME_UNSAFE.sub("-", value)


class Inspector:
    """Writes redacted parity diagnostics under the storage path. Every I/O failure is swallowed."""

    def __init__(self, config: Optional[InspectorConfig] = None):
        self.config = config or InspectorConfig.from_settings()

    @property
    def enabled(self) -> bool:
        return self.config.enabled

    def _debug(self, message: str) -> None:
        if self.config.debug:
            logger.debug(f"Inspector: {message}")

    def _ensure_directory(self, subdirectory: Optional[str] = None) -> Path:
        directory = self.config.storage_path / subdirectory if subdirectory else self.config.storage_path
        try:
            directory.mkdir(parents=True, exist_ok=True)
        except OSError as e:
            raise DiagnosticIOError(f"Failed to create directory: {directory}") from e
        if not os.access(directory, os.W_OK):
            raise DiagnosticIOError(f"Directory not writable: {directory}")
        return directory

    def _write(self, directory: Path, filename: str, payload: Mapping[str, Any]) -> Path:
        content = orjson.dumps(payload, option=orjson.OPT_INDENT_2 | orjson.OPT_NON_STR_KEYS, default=str)
        if len(content) > self.config.max_file_size:
            raise DiagnosticIOError(f"Data too large for storage ({len(content)} bytes)")

        target = directory / filename
        fd, tmp_path = tempfile.mkstemp(dir=directory, prefix=".tmp_", suffix=".json")
        try:
            with os.fdopen(fd, "wb") as handle:
                handle.write(content)
            os.replace(tmp_path, target)
        except OSError as e:
            try:
                os.unlink(tmp_path)
            except OSError:
                pass
            raise DiagnosticIOError(f"Failed to write file: {target}") from e
        return target

    def capture(self, diagnostic: ParityDiagnostic, extra: Optional[Mapping[str, Any]] = None) -> Dict[str, Any]:
        """Full artifact body for one dual run"""
        request = diagnostic.redacted_request_context
        if not self.config.include_request_data:
            request = {"included": False, "reason": "disabled_by_config"}
        elif self.config.exclude_sensitive:
            request = redact(request)

        payload: Dict[str, Any] = {
            "meta": {
                "timestamp": diagnostic.timestamp,
                "inspector_version": INSPECTOR_VERSION,
                "capture_id": f"capture_{uuid.uuid4().hex}",
            },
            "route": diagnostic.route,
            "table_name": diagnostic.table_name,
            "diff": diagnostic.diff_summary,
            "severity": severity(diagnostic.diff_summary),
            "request": request,
            "environment": {
                "app_env": os.getenv("APP_ENV", "unknown"),
                "python_version": platform.python_version(),
                "debug": self.config.debug,
            },
        }
        if extra:
            payload["pipeline"] = redact(dict(extra)) if self.config.exclude_sensitive else dict(extra)
        if self.config.include_trace:
            payload["trace"] = [
                f"{frame.filename}:{frame.lineno} {frame.name}"
                for frame in traceback.extract_stack(limit=6)[:-1]
            ]
        return payload

    def filename_for(self, table_name: str, route: Optional[str]) -> str:
        base = safe_filename_part(table_name or "unknown")
        if route:
            base += "_" + safe_filename_part(route)
        timestamp = datetime.now().strftime("%Y%m%d_%H%M%S")
        return f"{base}_{timestamp}_{uuid.uuid4().hex[:6]}.json"

    def store(self, diagnostic: ParityDiagnostic, extra: Optional[Mapping[str, Any]] = None) -> Optional[Path]:
        """Persist one diagnostic; returns its path or None"""
        if not self.enabled:
            return None
        try:
            directory = self._ensure_directory()
            payload = self.capture(diagnostic, extra)
            path = self._write(directory, self.filename_for(diagnostic.table_name, diagnostic.route), payload)
            if len(self.files()) > self.config.max_files:
                self.cleanup()
            return path
        except Exception as e:
            self._debug(f"storage error: {str(e)}")
            return None

    def store_in_background(self, diagnostic: ParityDiagnostic, extra: Optional[Mapping[str, Any]] = None) -> Optional[Future]:
        if not self.enabled:
            return None
        try:
            return _writer.submit(self.store, diagnostic, extra)
        except RuntimeError as e:
            self._debug(f"background writer unavailable: {str(e)}")
            return None

    def quick_dump(self, data: Mapping[str, Any], label: Optional[str] = None) -> Optional[Path]:
        """Ad-hoc dump under quick-dumps/, with the same redaction"""
        if not self.enabled:
            return None
        try:
            directory = self._ensure_directory(QUICK_DUMP_DIR)
            payload = {
                "timestamp": datetime.now(timezone.utc).isoformat(),
                "label": label or "quick_dump",
                "data": redact(dict(data)) if self.config.exclude_sensitive else dict(data),
            }
            filename = f"dump_{datetime.now().strftime('%Y%m%d_%H%M%S')}_{uuid.uuid4().hex[:13]}.json"
            return self._write(directory, filename, payload)
        except Exception as e:
            self._debug(f"quick dump error: {str(e)}")
            return None

    def files(self, pattern: str = "*.json") -> List[Path]:
        """Artifacts, newest first"""
        directory = self.config.storage_path
        if not directory.is_dir():
            return []
        try:
            found = [path for path in directory.glob(pattern) if path.is_file()]
            return sorted(found, key=lambda path: path.stat().st_mtime, reverse=True)
        except OSError as e:
            self._debug(f"listing error: {str(e)}")
            return []

    def read(self, path: Path) -> Optional[Dict[str, Any]]:
        try:
            data = orjson.loads(Path(path).read_bytes())
        except (OSError, orjson.JSONDecodeError) as e:
            self._debug(f"read error for {path}: {str(e)}")
            return None
        return data if isinstance(data, dict) else None

    def cleanup(self, days_old: Optional[int] = None) -> int:
        """Remove artifacts older than days_old, then the oldest beyond max_files"""
        days_old = self.config.cleanup_days if days_old is None else days_old
        removed = 0
        try:
            cutoff = time.time() - days_old * 86400
            files = self.files()
            for path in files:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    removed += 1
            removed += self.enforce_max_files()
        except OSError as e:
            self._debug(f"cleanup error: {str(e)}")
        return removed

    def enforce_max_files(self) -> int:
        files = self.files()
        if len(files) <= self.config.max_files:
            return 0
        removed = 0
        for path in files[self.config.max_files:]:
            try:
                path.unlink()
                removed += 1
            except OSError as e:
                self._debug(f"could not remove {path}: {str(e)}")
        return removed

    def summary(self, limit: int = 20, route: Optional[str] = None) -> List[Dict[str, Any]]:
        """One row per recent artifact: file, route, counts, data length, note"""
        rows = []
        for path in self.files():
            if len(rows) >= limit:
                break
            data = self.read(path)
            if data is None:
                continue
            if route and data.get("route") != route:
                continue
            diff = data.get("diff") or {}
            summary = diff.get("summary") or {}
            rows.append({
                "file": path.name,
                "route": data.get("route") or "n/a",
                "table_name": data.get("table_name"),
                "severity": data.get("severity"),
                "recordsTotal": summary.get("recordsTotal"),
                "recordsFiltered": summary.get("recordsFiltered"),
                "data_length": summary.get("data_length"),
                "note": diff.get("note", ""),
            })
        return rows

    def status(self) -> Dict[str, Any]:
        files = self.files()
        return {
            "enabled": self.enabled,
            "storage_path": str(self.config.storage_path),
            "debug_mode": self.config.debug,
            "total_files": len(files),
            "version": INSPECTOR_VERSION,
        }


def _cell(value: Any) -> str:
    if value is None:
        return "n/a"
    if isinstance(value, (dict, list)):
        return orjson.dumps(value).decode("utf-8")
    return str(value).replace("\n", " ").replace("\r", " ")


def summary_markdown(rows: List[Dict[str, Any]]) -> str:
    """Markdown table of inspector summary rows"""
    lines = [
        "# Datatable Inspector Summary (Top recent)",
        "",
        "| File | Route | Severity | Total | Filtered | Data len | Note |",
        "|---|---|---:|---:|---:|---:|---|",
    ]
    for row in rows:
        lines.append(
            f"| {row['file']} | {_cell(row['route'])} | {_cell(row.get('severity'))} | "
            f"{_cell(row.get('recordsTotal'))} | {_cell(row.get('recordsFiltered'))} | "
            f"{_cell(row.get('data_length'))} | {_cell(row.get('note'))} |"
        )
    return "\n".join(lines) + "\n"
