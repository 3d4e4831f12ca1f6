"""
Audit log: buffers log entries in memory, filters them and appends them to a rotating file.

Cycle per flush: log() buffers -> flush() swaps the buffer out -> collect() filters by
level bitmask and category -> export() appends one batch under an exclusive flock,
rotating ``<file>.1 .. <file>.<max_log_files>`` first when the file is over the size
threshold.

The same object is installed as a loguru sink (see ``sink``), so every component keeps
logging through loguru's global logger and the audit file receives the records.
Nothing is flushed implicitly at interpreter exit: the host calls flush() on shutdown.
"""
from __future__ import annotations

import fcntl
import os
import resource
import sys
import traceback
from dataclasses import dataclass, field
from datetime import datetime
from enum import IntFlag
from pathlib import Path
from typing import Any, Iterable, Sequence

from delivery.app.constants import DEFAULT_LOG_CATEGORY

_LOGGING_INTERNALS = (
    f"{os.sep}loguru{os.sep}",
    os.path.abspath(__file__),
)


class AuditLogError(OSError):
    """Raised when the log file or its directory cannot be written."""


class LogLevel(IntFlag):
    ERROR = 0x01
    WARNING = 0x02
    INFO = 0x04


LEVEL_ERROR = LogLevel.ERROR
LEVEL_WARNING = LogLevel.WARNING
LEVEL_INFO = LogLevel.INFO

_LEVEL_NAMES = {
    LogLevel.ERROR: "error",
    LogLevel.WARNING: "warning",
    LogLevel.INFO: "info",
}
_LEVELS_BY_NAME = {name: level for level, name in _LEVEL_NAMES.items()}
_ALL_LEVELS = LogLevel.ERROR | LogLevel.WARNING | LogLevel.INFO


@dataclass(frozen=True)
class TraceFrame:
    file: str
    line: int


@dataclass(frozen=True)
class LogEntry:
    text: str
    level: int
    category: str
    timestamp: float
    traces: tuple[TraceFrame, ...] = field(default_factory=tuple)
    # Peak resident set size of the process so far, in bytes.
    max_rss_bytes: int = 0


def get_level_name(level: int) -> str:
    try:
        return _LEVEL_NAMES.get(LogLevel(level), "unknown")
    except ValueError:
        return "unknown"


def _category_matches(category: str, patterns: Iterable[str]) -> bool:
    for pattern in patterns:
        if not pattern:
            continue
        if category == pattern:
            return True
        if pattern.endswith("*") and category.startswith(pattern[:-1]):
            return True
    return False


def filter_messages(
    entries: Sequence[LogEntry],
    levels: int = 0,
    categories: Sequence[str] = (),
    except_categories: Sequence[str] = (),
) -> list[LogEntry]:
    """Keep entries whose level is in the bitmask (0 = all) and whose category is allowed.

    An empty ``categories`` allows every category; ``except_categories`` is applied after.
    Patterns ending in ``*`` match by prefix.
    """
    kept: list[LogEntry] = []
    for entry in entries:
        if levels and not (levels & entry.level):
            continue
        if categories and not _category_matches(entry.category, categories):
            continue
        if except_categories and _category_matches(entry.category, except_categories):
            continue
        kept.append(entry)
    return kept


def format_message(entry: LogEntry) -> str:
    stamp = datetime.fromtimestamp(entry.timestamp).strftime("%Y-%m-%d %H:%M:%S")
    line = f"{stamp} [{get_level_name(entry.level)}][{entry.category}] {entry.text}"
    if entry.traces:
        line += "\n    " + "\n    ".join(f"in {t.file}:{t.line}" for t in entry.traces)
    return line


def create_directory(path: str | os.PathLike[str], mode: int = 0o775, recursive: bool = True) -> bool:
    """Create a directory and chmod it to ``mode`` so the umask does not apply."""
    target = Path(path)
    if target.is_dir():
        return True
    parent = target.parent
    if recursive and parent != target and not parent.is_dir():
        create_directory(parent, mode, True)
    try:
        target.mkdir(mode=mode)
    except FileExistsError:
        if not target.is_dir():
            raise AuditLogError(f'Failed to create directory "{target}": a file is in the way')
    except OSError as exc:
        raise AuditLogError(f'Failed to create directory "{target}": {exc}') from exc
    try:
        os.chmod(target, mode)
    except OSError as exc:
        raise AuditLogError(f'Failed to change permissions for directory "{target}": {exc}') from exc
    return True


def _max_rss_bytes() -> int:
    usage = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
    # ru_maxrss is reported in bytes on macOS and in kilobytes elsewhere.
    return usage if sys.platform == "darwin" else usage * 1024


class AuditLogger:
    def __init__(
        self,
        log_file: str | os.PathLike[str],
        *,
        max_file_size: int = 10 * 1024 * 1024,
        max_log_files: int = 5,
        trace_level: int = 10,
        levels: int | Sequence[str] = 0,
        categories: Sequence[str] = (),
        except_categories: Sequence[str] = (),
        flush_interval: int = 1,
        file_mode: int | None = None,
        dir_mode: int = 0o775,
    ) -> None:
        self.log_file = Path(log_file)
        self.max_file_size = max(1, int(max_file_size))
        self.max_log_files = max(1, int(max_log_files))
        self.trace_level = max(0, int(trace_level))
        self.categories = list(categories)
        self.except_categories = list(except_categories)
        self.flush_interval = max(1, int(flush_interval))
        self.file_mode = file_mode
        self.dir_mode = dir_mode
        self._levels = 0
        self.set_levels(levels)
        self._messages: list[LogEntry] = []
        self._export_buffer: list[LogEntry] = []
        create_directory(self.log_file.parent, self.dir_mode, True)

    @property
    def levels(self) -> int:
        return self._levels

    @property
    def pending(self) -> list[LogEntry]:
        return list(self._messages)

    def set_levels(self, levels: int | Sequence[str]) -> None:
        """Accept a bitmask (0 = all levels) or a list of level names."""
        if isinstance(levels, int):
            if levels != 0 and not (levels & _ALL_LEVELS):
                raise ValueError(f"Incorrect levels value: {levels}")
            self._levels = levels
            return
        mask = 0
        for name in levels:
            if name not in _LEVELS_BY_NAME:
                raise ValueError(f"Unrecognized level: {name}")
            mask |= _LEVELS_BY_NAME[name]
        self._levels = mask

    def log(self, text: str, level: int, category: str = DEFAULT_LOG_CATEGORY) -> None:
        self._append(
            LogEntry(
                text=text,
                level=int(level),
                category=category,
                timestamp=datetime.now().timestamp(),
                traces=self._capture_traces(),
                max_rss_bytes=_max_rss_bytes(),
            )
        )

    def _append(self, entry: LogEntry) -> None:
        self._messages.append(entry)
        if len(self._messages) >= self.flush_interval:
            self.flush()

    def flush(self) -> None:
        """Hand buffered entries to collect(). Safe to call repeatedly, including on shutdown."""
        messages, self._messages = self._messages, []
        self.collect(messages)

    def collect(self, entries: Sequence[LogEntry]) -> None:
        self._export_buffer.extend(
            filter_messages(entries, self._levels, self.categories, self.except_categories)
        )
        if self._export_buffer:
            # Kept on failure so the next flush retries the same entries.
            self.export()
            self._export_buffer = []

    def export(self) -> None:
        text = "\n".join(format_message(entry) for entry in self._export_buffer) + "\n"
        try:
            handle = open(self.log_file, "a", encoding="utf-8")
        except OSError as exc:
            raise AuditLogError(f"Unable to append to log file: {self.log_file}") from exc
        with handle:
            fcntl.flock(handle.fileno(), fcntl.LOCK_EX)
            try:
                if os.fstat(handle.fileno()).st_size > self.max_file_size:
                    self._rotate_files()
                    self._write_fresh(text)
                else:
                    handle.write(text)
                    handle.flush()
            finally:
                fcntl.flock(handle.fileno(), fcntl.LOCK_UN)
        if self.file_mode is not None:
            os.chmod(self.log_file, self.file_mode)

    def _write_fresh(self, text: str) -> None:
        with open(self.log_file, "a", encoding="utf-8") as fresh:
            fcntl.flock(fresh.fileno(), fcntl.LOCK_EX)
            try:
                fresh.write(text)
                fresh.flush()
            finally:
                fcntl.flock(fresh.fileno(), fcntl.LOCK_UN)

    def _rotate_files(self) -> None:
        base = str(self.log_file)
        for index in range(self.max_log_files, -1, -1):
            rotate_file = base if index == 0 else f"{base}.{index}"
            if not os.path.isfile(rotate_file):
                continue
            # Another process may be rotating the same files.
            try:
                if index == self.max_log_files:
                    os.unlink(rotate_file)
                else:
                    os.rename(rotate_file, f"{base}.{index + 1}")
            except FileNotFoundError:
                continue

    def _capture_traces(self) -> tuple[TraceFrame, ...]:
        if self.trace_level <= 0:
            return ()
        stack = traceback.extract_stack()[:-1]
        if stack:
            stack.pop(0)  # entry script
        traces: list[TraceFrame] = []
        for frame in reversed(stack):
            if any(marker in frame.filename for marker in _LOGGING_INTERNALS):
                continue
            if frame.lineno is None:
                continue
            traces.append(TraceFrame(file=frame.filename, line=frame.lineno))
            if len(traces) >= self.trace_level:
                break
        return tuple(traces)

    def sink(self, message: Any) -> None:
        """loguru sink: convert a record into a buffered entry."""
        record = message.record
        extra = record["extra"]
        text = record["message"]
        if not text:
            details = " ".join(
                f"{key}={value}"
                for key, value in extra.items()
                if key not in ("service_name", "event", "category")
            )
            text = " ".join(part for part in (str(extra.get("event", "")), details) if part)
        exception = record["exception"]
        if exception is not None and exception.type is not None:
            formatted = "".join(
                traceback.format_exception(exception.type, exception.value, exception.traceback)
            )
            text = f"{text}\n{formatted.rstrip()}"
        self._append(
            LogEntry(
                text=text,
                level=_level_from_record(record["level"].no),
                category=str(extra.get("category", DEFAULT_LOG_CATEGORY)),
                timestamp=record["time"].timestamp(),
                traces=self._capture_traces(),
                max_rss_bytes=_max_rss_bytes(),
            )
        )


def _level_from_record(level_no: int) -> int:
    if level_no >= 40:
        return LEVEL_ERROR
    if level_no >= 30:
        return LEVEL_WARNING
    return LEVEL_INFO
