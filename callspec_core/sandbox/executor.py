"""
CallSpec Core - Sandbox Executor

Runs one Subcase against the real binary inside a fresh temporary directory and
reports what it did: exit code, bounded stdout/stderr, and the filesystem delta.

Isolation is directory-level only:
- a unique directory per run, seeded with the spec's fixtures
- environment built from an explicit allow-list (the host env never leaks implicitly)
- the child runs in its own process group; on timeout the whole group is
  terminated (SIGTERM, grace period, SIGKILL) so nothing is left orphaned
"""

from __future__ import annotations

import logging
import os
import shutil
import signal
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass, replace
from typing import Callable, Dict, IO, Iterable, List, Mapping, Optional, Sequence, Tuple

from .snapshot import DeltaEntry, diff, take_snapshot
from ..errors import ProcessSpawnFailure, SandboxSetupFailure
from ..spec.model import EntryKind, Fixture, Subcase

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_S = 10.0
DEFAULT_OUTPUT_LIMIT = 64 * 1024
DEFAULT_CONTENT_LIMIT = 1024 * 1024
TERM_GRACE_S = 0.5
READER_JOIN_S = 2.0


@dataclass(frozen=True)
class SandboxResult:
    """Observed behavior of one run."""
    argv: Tuple[str, ...]
    exit_code: Optional[int]
    stdout: str
    stderr: str
    delta: Tuple[DeltaEntry, ...]
    duration_ms: float
    timed_out: bool = False
    pid: Optional[int] = None
    sandbox_path: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return not self.timed_out and self.exit_code == 0

    def entry(self, path: str) -> Optional[DeltaEntry]:
        for e in self.delta:
            if e.path == path:
                return e
        return None

    def to_dict(self) -> dict:
        return {
            "argv": list(self.argv),
            "exit_code": self.exit_code,
            "stdout": self.stdout,
            "stderr": self.stderr,
            "delta": [e.to_dict() for e in self.delta],
            "duration_ms": round(self.duration_ms, 3),
            "timed_out": self.timed_out,
            "sandbox_path": self.sandbox_path,
        }


# ============================================================================
# FIXTURES
# ============================================================================

def materialize_fixtures(root: str, fixtures: Iterable[Fixture]):
    """Create fixture files/directories under `root`. Raises SandboxSetupFailure."""
    root_abs = os.path.abspath(root)
    for fx in fixtures:
        target = os.path.abspath(os.path.join(root_abs, fx.path))
        if os.path.commonpath([root_abs, target]) != root_abs or target == root_abs:
            raise SandboxSetupFailure(f"Fixture path escapes the sandbox: {fx.path!r}", path=fx.path)
        try:
            if fx.kind == EntryKind.DIR:
                os.makedirs(target, exist_ok=True)
            else:
                os.makedirs(os.path.dirname(target), exist_ok=True)
                with open(target, "wb") as f:
                    f.write(fx.data())
            if fx.mode is not None:
                os.chmod(target, fx.mode)
        except OSError as e:
            raise SandboxSetupFailure(f"Cannot create fixture {fx.path!r}: {e}", path=fx.path) from e


# ============================================================================
# OUTPUT CAPTURE
# ============================================================================

class _BoundedReader(threading.Thread):
    """Drains a pipe, keeping at most `limit` bytes and counting the rest."""

    def __init__(self, stream: IO[bytes], limit: int):
        super().__init__(daemon=True)
        self.stream = stream
        self.limit = limit
        self.kept = bytearray()
        self.dropped = 0

    def run(self):
        with self.stream:
            for chunk in iter(lambda: self.stream.read(8192), b""):
                room = self.limit - len(self.kept)
                if room > 0:
                    self.kept.extend(chunk[:room])
                self.dropped += max(0, len(chunk) - room)

    def text(self) -> str:
        out = self.kept.decode("utf-8", errors="replace")
        if self.dropped:
            out += f"...[truncated {self.dropped} bytes]"
        return out


def _coerce_env(allowlist: Sequence[str], extra: Mapping[str, str]) -> Dict[str, str]:
    env = {k: os.environ[k] for k in allowlist if k in os.environ}
    env.update({str(k): str(v) for k, v in extra.items()})
    return env


def _signal_group(pgid: int, sig: int) -> bool:
    """False when the group no longer exists."""
    try:
        os.killpg(pgid, sig)
    except ProcessLookupError:
        return False
    except PermissionError:
        # pgid recycled by a process we do not own
        return False
    return True


def _remove_tree(path: str):
    # the binary may have left read-only directories behind
    for dirpath, dirnames, _ in os.walk(path):
        for d in dirnames:
            full = os.path.join(dirpath, d)
            if not os.path.islink(full):
                os.chmod(full, 0o700)
    shutil.rmtree(path)


# ============================================================================
# EXECUTOR
# ============================================================================

class SandboxExecutor:
    """
    Usage:
        executor = SandboxExecutor(timeout_s=5)
        result = executor.run(subcase)

    retain_on_failure:
        keep the sandbox directory when `keep(result)` returns True; its path is
        reported in `result.sandbox_path`.
    """

    def __init__(
        self,
        *,
        timeout_s: float = DEFAULT_TIMEOUT_S,
        output_limit: int = DEFAULT_OUTPUT_LIMIT,
        content_limit: int = DEFAULT_CONTENT_LIMIT,
        env_allowlist: Sequence[str] = ("PATH",),
        retain_on_failure: bool = False,
        base_dir: Optional[str] = None,
        term_grace_s: float = TERM_GRACE_S,
    ):
        if timeout_s <= 0:
            raise ValueError("timeout_s must be > 0")
        self.timeout_s = float(timeout_s)
        self.output_limit = int(output_limit)
        self.content_limit = int(content_limit)
        self.env_allowlist = tuple(env_allowlist)
        self.retain_on_failure = retain_on_failure
        self.base_dir = base_dir
        self.term_grace_s = term_grace_s

        self._live: Dict[int, subprocess.Popen] = {}
        self._live_lock = threading.Lock()

    def run(
        self,
        subcase: Subcase,
        *,
        timeout_s: Optional[float] = None,
        keep: Optional[Callable[[SandboxResult], bool]] = None,
    ) -> SandboxResult:
        """Execute `subcase`. Raises SandboxSetupFailure / ProcessSpawnFailure."""
        # explicit argument > per-spec timeout > executor default
        if timeout_s is None:
            timeout_s = subcase.timeout_s if subcase.timeout_s is not None else self.timeout_s
        timeout = float(timeout_s)

        try:
            root = tempfile.mkdtemp(prefix="callspec-", dir=self.base_dir)
        except OSError as e:
            raise SandboxSetupFailure(f"Cannot create sandbox directory: {e}") from e
        logger.debug("sandbox %s for %s", root, subcase.label)

        retained = False
        try:
            materialize_fixtures(root, subcase.fixtures)
            cwd = os.path.normpath(os.path.join(root, subcase.workdir))
            try:
                os.makedirs(cwd, exist_ok=True)
            except OSError as e:
                raise SandboxSetupFailure(f"Cannot create working directory {subcase.workdir!r}: {e}") from e

            pre = take_snapshot(root)
            result = self._spawn(subcase, cwd, timeout)
            post = take_snapshot(root)
            result = replace(result, delta=diff(pre, post, root, content_limit=self.content_limit))

            if self.retain_on_failure and keep is not None and keep(result):
                retained = True
                result = replace(result, sandbox_path=root)
                logger.info("retained sandbox %s for %s", root, subcase.label)
            return result
        finally:
            if not retained:
                _remove_tree(root)

    def terminate_all(self) -> int:
        """Terminate every running process group (suite cancellation). Returns how many were signalled."""
        with self._live_lock:
            procs = list(self._live.values())
        n = 0
        for proc in procs:
            if _signal_group(proc.pid, signal.SIGKILL):
                n += 1
        return n

    # -----------------------------
    # Process lifecycle
    # -----------------------------
    def _spawn(self, subcase: Subcase, cwd: str, timeout: float) -> SandboxResult:
        env = _coerce_env(self.env_allowlist, subcase.env)
        started = time.perf_counter()
        try:
            proc = subprocess.Popen(
                list(subcase.argv),
                cwd=cwd,
                env=env,
                stdin=subprocess.DEVNULL,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                start_new_session=True,
            )
        except (FileNotFoundError, PermissionError, NotADirectoryError) as e:
            raise ProcessSpawnFailure(
                f"Cannot execute {subcase.argv[0]!r}: {e.strerror or e}", program=subcase.argv[0]
            ) from e
        except OSError as e:
            raise ProcessSpawnFailure(f"Cannot execute {subcase.argv[0]!r}: {e}", program=subcase.argv[0]) from e
        except ValueError as e:
            # e.g. an embedded NUL byte, which no argv or environment can carry
            raise ProcessSpawnFailure(f"Invalid command line for {subcase.argv[0]!r}: {e}", program=subcase.argv[0]) from e

        with self._live_lock:
            self._live[proc.pid] = proc
        readers: List[_BoundedReader] = [
            _BoundedReader(proc.stdout, self.output_limit),
            _BoundedReader(proc.stderr, self.output_limit),
        ]
        for r in readers:
            r.start()

        timed_out = False
        try:
            try:
                exit_code: Optional[int] = proc.wait(timeout=timeout)
            except subprocess.TimeoutExpired:
                timed_out = True
                exit_code = None
                logger.debug("%s timed out after %.3fs; terminating process group", subcase.label, timeout)
                self._terminate(proc)
            # stragglers left in the group by a finished leader
            _signal_group(proc.pid, signal.SIGKILL)
            for r in readers:
                r.join(READER_JOIN_S)
        finally:
            with self._live_lock:
                self._live.pop(proc.pid, None)

        duration_ms = (time.perf_counter() - started) * 1000.0
        return SandboxResult(
            argv=tuple(subcase.argv),
            exit_code=exit_code,
            stdout=readers[0].text(),
            stderr=readers[1].text(),
            delta=(),
            duration_ms=duration_ms,
            timed_out=timed_out,
            pid=proc.pid,
        )

    def _terminate(self, proc: subprocess.Popen):
        if not _signal_group(proc.pid, signal.SIGTERM):
            proc.wait()
            return
        try:
            proc.wait(timeout=self.term_grace_s)
        except subprocess.TimeoutExpired:
            _signal_group(proc.pid, signal.SIGKILL)
            proc.wait()
