"""Cross-process advisory lock with cooldown, keyed by (project root, context).

Each key owns one JSON record ``{"pid": <int|null>, "timestamp": <epoch>}``:

- ``pid`` set, owner alive     -> a run is in flight (Busy)
- ``pid`` set, owner dead      -> abandoned by a crash, reclaimable at once
- ``pid`` null                 -> last run finished at ``timestamp``; Cooling
                                  until ``cooldown_seconds`` have passed

The read-check-write step is serialized by a sibling ``filelock`` mutex that is
taken without waiting. An unparsable record counts as absent; any other
failure to read or write state reports Busy.
"""

from __future__ import annotations

import hashlib
import json
import logging
import os
import tempfile
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from filelock import FileLock, Timeout

from guardrails_runtime.exclusion import Context

logger = logging.getLogger(__name__)

LOCK_DIRNAME = "python-guardrails"
RELEASE_TIMEOUT_SECONDS = 5.0

Clock = Callable[[], float]
LivenessProbe = Callable[[int], bool]


@dataclass(frozen=True)
class LockRecord:
    owner_pid: int | None
    timestamp: float

    @property
    def released(self) -> bool:
        return self.owner_pid is None

    def to_payload(self) -> dict[str, object]:
        return {"pid": self.owner_pid, "timestamp": self.timestamp}

    @classmethod
    def from_payload(cls, payload: object) -> LockRecord:
        if not isinstance(payload, dict):
            raise ValueError("lock record must be an object")
        pid = payload.get("pid")
        timestamp = payload.get("timestamp")
        if pid is not None and (isinstance(pid, bool) or not isinstance(pid, int)):
            raise ValueError(f"invalid pid in lock record: {pid!r}")
        if isinstance(timestamp, bool) or not isinstance(timestamp, (int, float)):
            raise ValueError(f"invalid timestamp in lock record: {timestamp!r}")
        return cls(owner_pid=pid, timestamp=float(timestamp))


@dataclass(frozen=True)
class Busy:
    owner_pid: int | None = None


@dataclass(frozen=True)
class Cooling:
    remaining_seconds: float


@dataclass(frozen=True)
class Acquired:
    guard: LockGuard


def pid_alive(pid: int) -> bool:
    if pid <= 0:
        return False
    try:
        os.kill(pid, 0)
        return True
    except ProcessLookupError:
        return False
    except PermissionError:
        return True
    except OSError:
        return True


def workspace_hash(project_root: Path) -> str:
    try:
        resolved = project_root.resolve()
    except OSError:
        resolved = project_root.absolute()
    return hashlib.sha256(str(resolved).encode("utf-8")).hexdigest()[:16]


def default_lock_dir() -> Path:
    return Path(tempfile.gettempdir()) / LOCK_DIRNAME


class ProcessLock:
    def __init__(
        self,
        project_root: Path,
        context: Context | str,
        *,
        cooldown_seconds: float,
        lock_dir: Path | None = None,
        is_alive: LivenessProbe = pid_alive,
        clock: Clock = time.time,
    ) -> None:
        self.project_root = project_root
        self.context = Context.parse(context)
        self.cooldown_seconds = max(0.0, float(cooldown_seconds))
        self.lock_dir = lock_dir or default_lock_dir()
        self.is_alive = is_alive
        self.clock = clock
        name = f"{self.context.value}-{workspace_hash(project_root)}"
        self.record_path = self.lock_dir / f"{name}.lock"
        self.mutex_path = self.lock_dir / f"{name}.mutex"

    def read_record(self) -> LockRecord | None:
        try:
            data = self.record_path.read_bytes()
        except FileNotFoundError:
            return None
        if not data.strip():
            return None
        try:
            return LockRecord.from_payload(json.loads(data.decode("utf-8")))
        except (UnicodeDecodeError, json.JSONDecodeError, ValueError) as exc:
            logger.warning("ignoring corrupt lock record %s: %s", self.record_path, exc)
            return None

    def try_acquire(self, self_pid: int | None = None) -> Acquired | Busy | Cooling:
        pid = os.getpid() if self_pid is None else self_pid
        try:
            self.lock_dir.mkdir(parents=True, exist_ok=True)
            with FileLock(str(self.mutex_path), timeout=0):
                state = self._check(self.read_record())
                if state is not None:
                    return state
                self._write(LockRecord(owner_pid=pid, timestamp=self.clock()))
        except Timeout:
            logger.debug("%s lock mutex held elsewhere, skipping", self.context.value)
            return Busy()
        except OSError as exc:
            logger.warning("%s lock unavailable (%s), skipping", self.context.value, exc)
            return Busy()
        logger.debug("acquired %s lock for %s (pid %s)", self.context.value, self.project_root, pid)
        return Acquired(LockGuard(self, pid))

    def release(self, pid: int) -> None:
        try:
            with FileLock(str(self.mutex_path), timeout=RELEASE_TIMEOUT_SECONDS):
                current = self.read_record()
                if current is not None and current.owner_pid not in (None, pid):
                    logger.warning(
                        "%s lock now owned by pid %s, leaving it in place",
                        self.context.value,
                        current.owner_pid,
                    )
                    return
                self._write(LockRecord(owner_pid=None, timestamp=self.clock()))
        except (Timeout, OSError) as exc:
            logger.warning("failed to release %s lock: %s", self.context.value, exc)
            return
        logger.debug("released %s lock for %s", self.context.value, self.project_root)

    def _check(self, record: LockRecord | None) -> Busy | Cooling | None:
        if record is None:
            return None
        if record.owner_pid is not None:
            if self.is_alive(record.owner_pid):
                logger.debug(
                    "%s already running (pid %s), skipping", self.context.value, record.owner_pid
                )
                return Busy(owner_pid=record.owner_pid)
            logger.debug("reclaiming %s lock from dead pid %s", self.context.value, record.owner_pid)
            return None
        elapsed = self.clock() - record.timestamp
        if elapsed < self.cooldown_seconds:
            remaining = min(self.cooldown_seconds, self.cooldown_seconds - elapsed)
            logger.debug(
                "%s completed %.1fs ago (cooldown %.1fs), skipping",
                self.context.value,
                max(elapsed, 0.0),
                self.cooldown_seconds,
            )
            return Cooling(remaining_seconds=remaining)
        return None

    def _write(self, record: LockRecord) -> None:
        tmp_path = self.record_path.with_suffix(f".{os.getpid()}.tmp")
        tmp_path.write_text(json.dumps(record.to_payload()), encoding="utf-8")
        tmp_path.replace(self.record_path)


class LockGuard:
    def __init__(self, lock: ProcessLock, pid: int) -> None:
        self.lock = lock
        self.pid = pid
        self._released = False

    @property
    def released(self) -> bool:
        return self._released

    def release(self) -> None:
        if self._released:
            return
        self._released = True
        self.lock.release(self.pid)

    def __enter__(self) -> LockGuard:
        return self

    def __exit__(self, exc_type, exc, tb) -> bool:
        self.release()
        return False


def try_acquire(
    project_root: Path,
    context: Context | str,
    *,
    self_pid: int | None = None,
    cooldown_seconds: float,
    lock_dir: Path | None = None,
    is_alive: LivenessProbe = pid_alive,
    clock: Clock = time.time,
) -> Acquired | Busy | Cooling:
    lock = ProcessLock(
        project_root,
        context,
        cooldown_seconds=cooldown_seconds,
        lock_dir=lock_dir,
        is_alive=is_alive,
        clock=clock,
    )
    return lock.try_acquire(self_pid)
