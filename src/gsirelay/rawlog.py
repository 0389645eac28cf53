"""Rotating newline-delimited JSON log of accepted envelopes.

Envelopes are handed over through a bounded queue and written by a single
consumer task, so ingestion never waits on the disk. Files live under a
UTC-date directory chosen once at start-up and rotate into numbered part
files once a size threshold is reached::

    raw/2026-10-19/dota2_gsi_2026-10-19T08-15-02.123456Z_part0001.jsonl
    raw/2026-10-19/dota2_gsi_2026-10-19T08-15-02.123456Z_part0002.jsonl

A run that crosses midnight UTC keeps writing under the directory of the
day it started.
"""

from __future__ import annotations

import asyncio
import logging
import re
from collections.abc import Callable, Iterator
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import IO, Protocol

from gsirelay._constants import DEFAULT_RAW_QUEUE_SIZE, RAW_FILE_EXT, RAW_FILE_PREFIX
from gsirelay.config import RelayConfig
from gsirelay.exceptions import LogWriteError
from gsirelay.models.envelope import Envelope

_logger = logging.getLogger(__name__)

_PART_RE = re.compile(r"_part(\d+)$")


def _utcnow() -> datetime:
    return datetime.now(UTC)


def utc_date_dir(root: Path, now: datetime | None = None) -> Path:
    """``root/YYYY-MM-DD`` for the UTC calendar day of *now*."""
    now = (now or _utcnow()).astimezone(UTC)
    return root / now.strftime("%Y-%m-%d")


def default_base_path(raw_dir: Path, now: datetime | None = None) -> Path:
    """Base log path for a run starting at *now*.

    The RFC 3339 timestamp has ``:`` replaced by ``-`` to stay portable
    across filesystems.
    """
    now = (now or _utcnow()).astimezone(UTC)
    stamp = now.isoformat().replace("+00:00", "Z").replace(":", "-")
    return utc_date_dir(raw_dir, now) / f"{RAW_FILE_PREFIX}_{stamp}{RAW_FILE_EXT}"


def _split_name(base_path: Path) -> tuple[str, str]:
    file_name = base_path.name or f"{RAW_FILE_PREFIX}{RAW_FILE_EXT}"
    stem, dot, ext = file_name.rpartition(".")
    if not dot:
        return file_name, RAW_FILE_EXT
    return stem, f".{ext}"


def with_part_suffix(base_path: Path, part: int) -> Path:
    """``<stem>_partNNNN<ext>`` next to *base_path*."""
    stem, ext = _split_name(base_path)
    return base_path.with_name(f"{stem}_part{part:04d}{ext}")


def _glob_escape(text: str) -> str:
    return re.sub(r"([*?\[])", r"[\1]", text)


def iter_part_files(base_path: Path) -> list[Path]:
    """Existing part files of *base_path*, in part-index order."""
    stem, ext = _split_name(base_path)
    directory = base_path.parent
    if not directory.is_dir():
        return []

    indexed: list[tuple[int, Path]] = []
    for candidate in directory.glob(f"{_glob_escape(stem)}_part*{_glob_escape(ext)}"):
        name = candidate.name[: len(candidate.name) - len(ext)] if ext else candidate.name
        match = _PART_RE.search(name)
        if match is None or name[: match.start()] != stem:
            continue
        indexed.append((int(match.group(1)), candidate))
    return [path for _, path in sorted(indexed)]


def read_envelopes(base_path: Path) -> Iterator[Envelope]:
    """Yield every envelope stored under *base_path*, oldest part first."""
    for path in iter_part_files(base_path):
        with path.open("r", encoding="utf-8") as fh:
            for line in fh:
                line = line.strip()
                if line:
                    yield Envelope.from_json_line(line)


def _existing_size(path: Path) -> int:
    try:
        return path.stat().st_size
    except FileNotFoundError:
        return 0
    except OSError as exc:
        raise LogWriteError(f"stat {path} failed: {exc}") from exc


@dataclass
class LogFilePart:
    """Current rotation unit of the log."""

    path: Path
    part: int
    bytes_written: int = 0


class RotatingAppendLog:
    """Single-consumer writer behind a bounded, drop-when-full queue."""

    def __init__(
        self,
        base_path: Path,
        max_bytes: int,
        *,
        queue_size: int = DEFAULT_RAW_QUEUE_SIZE,
    ) -> None:
        if max_bytes <= 0:
            raise ValueError(f"max_bytes must be positive, got {max_bytes}")
        self._base_path = Path(base_path)
        self._max_bytes = max_bytes
        self._queue: asyncio.Queue[Envelope | None] = asyncio.Queue(maxsize=queue_size)
        self._part = LogFilePart(path=with_part_suffix(self._base_path, 1), part=1)
        self._fh: IO[bytes] | None = None
        self._task: asyncio.Task[None] | None = None
        self.written = 0
        self.dropped = 0
        self.failed = 0

    @classmethod
    def from_config(cls, config: RelayConfig, *, clock: Callable[[], datetime] = _utcnow) -> RotatingAppendLog:
        base_path = config.raw_path if config.raw_path is not None else default_base_path(config.raw_dir, clock())
        return cls(base_path, config.raw_max_bytes, queue_size=config.raw_queue_size)

    @property
    def base_path(self) -> Path:
        return self._base_path

    @property
    def current_part(self) -> LogFilePart:
        return LogFilePart(path=self._part.path, part=self._part.part, bytes_written=self._part.bytes_written)

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()

    def offer(self, envelope: Envelope) -> bool:
        """Enqueue *envelope* without waiting; drop it if the queue is full."""
        try:
            self._queue.put_nowait(envelope)
        except asyncio.QueueFull:
            self.dropped += 1
            _logger.warning("Raw log queue full, dropping envelope (dropped=%s)", self.dropped)
            return False
        return True

    def start(self) -> None:
        if self.is_running:
            return
        _logger.info("Raw log writing to %s (rotate at %s bytes)", self._base_path, self._max_bytes)
        self._task = asyncio.get_running_loop().create_task(self._run(), name="gsirelay-rawlog")

    async def stop(self) -> None:
        """Write everything already queued, then stop the writer."""
        task = self._task
        if task is None:
            return
        if not task.done():
            await self._queue.put(None)
            await task
        self._task = None

    async def join(self) -> None:
        """Wait until every queued envelope has been processed."""
        await self._queue.join()

    async def _run(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            while True:
                envelope = await self._queue.get()
                try:
                    if envelope is None:
                        return
                    await loop.run_in_executor(None, self._write_envelope, envelope)
                    self.written += 1
                except LogWriteError as exc:
                    self.failed += 1
                    _logger.error("Raw log write failed: %s", exc)
                except Exception:
                    self.failed += 1
                    _logger.exception("Raw log writer hit an unexpected error")
                finally:
                    self._queue.task_done()
        finally:
            await loop.run_in_executor(None, self._close_file)

    def _write_envelope(self, envelope: Envelope) -> None:
        try:
            line = envelope.to_json_line()
        except ValueError as exc:
            raise LogWriteError(f"serialize failed: {exc}") from exc
        self._write_line(line.encode("utf-8") + b"\n")

    def _write_line(self, data: bytes) -> None:
        part = self._part
        try:
            part.path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            raise LogWriteError(f"mkdir {part.path.parent} failed: {exc}") from exc

        if self._fh is None:
            # Explicit raw paths may point at files left by an earlier run.
            part.bytes_written = _existing_size(part.path)
        while part.bytes_written > 0 and part.bytes_written + len(data) >= self._max_bytes:
            self._rotate()
            part = self._part
            part.bytes_written = _existing_size(part.path)

        try:
            if self._fh is None:
                self._fh = part.path.open("ab")
            self._fh.write(data)
            self._fh.flush()
        except OSError as exc:
            self._close_file()
            raise LogWriteError(f"write {part.path} failed: {exc}") from exc
        part.bytes_written += len(data)

    def _rotate(self) -> None:
        self._close_file()
        next_part = self._part.part + 1
        self._part = LogFilePart(path=with_part_suffix(self._base_path, next_part), part=next_part)
        _logger.info("Raw log rotated to %s", self._part.path)

    def _close_file(self) -> None:
        fh = self._fh
        self._fh = None
        if fh is None:
            return
        try:
            fh.close()
        except OSError:
            _logger.debug("Raw log close failed", exc_info=True)


class LogSink(Protocol):
    """What the coordinator needs from an append log."""

    def offer(self, envelope: Envelope) -> bool:
        ...
