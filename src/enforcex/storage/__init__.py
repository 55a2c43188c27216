from __future__ import annotations

import csv
import hashlib
import io
import logging
import os
import random
import tempfile
import threading
import time
from typing import TYPE_CHECKING, List, Optional, Sequence, Tuple

from ..core.errors import MutationError
from ..core.ports import PolicySource

if TYPE_CHECKING:  # pragma: no cover
    from ..core.enforcer import Enforcer

logger = logging.getLogger("enforcex.storage")


def atomic_write(path: str, data: str, *, encoding: str = "utf-8") -> None:
    """Write *data* to *path* through a temp file in the same directory and os.replace()."""
    directory = os.path.dirname(path) or "."
    fd, tmp = tempfile.mkstemp(prefix=".enforcex.tmp.", dir=directory)
    try:
        with os.fdopen(fd, "w", encoding=encoding, newline="") as f:
            f.write(data)
        os.replace(tmp, path)
    finally:
        try:
            os.unlink(tmp)
        except FileNotFoundError:
            pass


def parse_policy_lines(text: str) -> List[List[str]]:
    """Parse CSV policy text: one rule per line, ``#`` comments and blank lines skipped."""
    rows: List[List[str]] = []
    lines = [ln for ln in text.splitlines() if ln.strip() and not ln.lstrip().startswith("#")]
    try:
        for row in csv.reader(lines, skipinitialspace=True):
            rows.append([field.strip() for field in row])
    except csv.Error as e:
        raise ValueError(f"malformed policy line: {e}") from e
    return rows


def format_policy_lines(rows: Sequence[Sequence[str]]) -> str:
    buf = io.StringIO()
    writer = csv.writer(buf, lineterminator="\n")
    for row in rows:
        writer.writerow(row)
    return buf.getvalue()


class FilePolicySource(PolicySource):
    """
    Policy source backed by a local CSV file::

        p, alice, /data, GET
        g, alice, admin

    ETag semantics:
      - By default the ETag is the SHA-256 of the file content.
      - With include_mtime_in_etag=True the mtime (ns) is appended, so a bare
        "touch" also triggers a reload.

    The last SHA is cached by (size, mtime_ns) to avoid rehashing unchanged files.
    """

    def __init__(
        self,
        path: str,
        *,
        include_mtime_in_etag: bool = False,
        chunk_size: int = 512 * 1024,
    ) -> None:
        self.path = path
        self.include_mtime_in_etag = include_mtime_in_etag
        self._chunk_size = int(chunk_size)
        self._cached_stat_sig: Optional[Tuple[int, int]] = None  # (size, mtime_ns)
        self._cached_sha: Optional[str] = None

    # --- helpers -------------------------------------------------------------

    def _stat_sig(self) -> Tuple[int, int]:
        st = os.stat(self.path)
        return (st.st_size, st.st_mtime_ns)

    def _hash_file(self) -> str:
        h = hashlib.sha256()
        with open(self.path, "rb") as f:
            for chunk in iter(lambda: f.read(self._chunk_size), b""):
                h.update(chunk)
        return h.hexdigest()

    def _content_sha(self) -> Tuple[Optional[str], Optional[Tuple[int, int]]]:
        try:
            sig = self._stat_sig()
        except FileNotFoundError:
            self._cached_stat_sig = None
            self._cached_sha = None
            return None, None

        if self._cached_stat_sig != sig or self._cached_sha is None:
            self._cached_sha = self._hash_file()
            self._cached_stat_sig = sig
        return self._cached_sha, sig

    # --- PolicySource --------------------------------------------------------

    def etag(self) -> Optional[str]:
        sha, sig = self._content_sha()
        if sha is None:
            return None
        if self.include_mtime_in_etag and sig is not None:
            return f"{sha}:{sig[1]}"
        return sha

    def load(self) -> List[List[str]]:
        with open(self.path, "r", encoding="utf-8") as f:
            return parse_policy_lines(f.read())

    def save(self, rows: Sequence[Sequence[str]]) -> None:
        atomic_write(self.path, format_policy_lines(rows))
        logger.info("ENFORCEX: saved %d policy lines to %s", len(rows), self.path)


class HotReloader:
    """
    Polls a :class:`PolicySource` and swaps changed policy into an Enforcer.

    - ETag first: the source is only loaded when its etag() changes (or is None).
    - Failures are logged and suppressed for an exponential backoff window with
      jitter; the enforcer keeps its previous policy meanwhile.
    - Optional background thread with start()/stop().

    Thread-safe for concurrent check_and_reload() calls.
    """

    def __init__(
        self,
        enforcer: "Enforcer",
        source: Optional[PolicySource] = None,
        *,
        poll_interval: float | None = 5.0,
        backoff_min: float = 2.0,
        backoff_max: float = 30.0,
        jitter_ratio: float = 0.15,
        thread_daemon: bool = True,
    ) -> None:
        src = source if source is not None else enforcer.source
        if src is None:
            raise ValueError("HotReloader needs a policy source")
        self.enforcer = enforcer
        self.source: PolicySource = src
        self.poll_interval = poll_interval
        self.backoff_min = float(backoff_min)
        self.backoff_max = float(backoff_max)
        self.jitter_ratio = float(jitter_ratio)
        self.thread_daemon = bool(thread_daemon)

        try:
            self._last_etag: Optional[str] = self.source.etag()
        except OSError:
            self._last_etag = None
        self._suppress_until: float = 0.0
        self._backoff: float = self.backoff_min
        self._last_reload_at: float | None = None
        self._last_error: Exception | None = None

        self._lock = threading.RLock()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None

    # --------------------------------------------------------------------- #
    # Public API
    # --------------------------------------------------------------------- #

    def check_and_reload(self) -> bool:
        """Run one check; True if new policy was loaded and applied."""
        now = time.time()
        with self._lock:
            if now < self._suppress_until:
                return False

            try:
                etag = self.source.etag()
                if etag is not None and etag == self._last_etag:
                    return False

                rows = self.source.load()
                self.enforcer.set_policy_rows(rows)

                self._last_etag = etag
                self._last_reload_at = now
                self._last_error = None
                self._backoff = self.backoff_min
                logger.info("ENFORCEX: policy reloaded from %s", self._src_name())
                return True

            except FileNotFoundError as e:
                self._register_error(now, e, level="warning", msg="ENFORCEX: policy not found: %s")
            except (MutationError, ValueError) as e:
                self._register_error(now, e, level="error", msg="ENFORCEX: invalid policy in %s")
            except Exception as e:  # pragma: no cover
                self._register_error(now, e, level="error", msg="ENFORCEX: policy reload error")

            return False

    def poll_once(self) -> bool:
        return self.check_and_reload()

    def start(self, interval: float | None = None) -> None:
        """Start the background polling thread (no-op if already running)."""
        with self._lock:
            if self._thread and self._thread.is_alive():
                return
            poll_iv = float(interval if interval is not None else (self.poll_interval or 5.0))
            self._stop_event.clear()
            self._thread = threading.Thread(
                target=self._run_loop,
                args=(poll_iv,),
                daemon=self.thread_daemon,
                name="enforcex-reloader",
            )
            self._thread.start()

    def stop(self, timeout: float | None = 1.0) -> None:
        with self._lock:
            if not self._thread:
                return
            self._stop_event.set()
            self._thread.join(timeout=timeout)
            if not self._thread.is_alive():
                self._thread = None

    # --------------------------------------------------------------------- #
    # Diagnostics
    # --------------------------------------------------------------------- #

    @property
    def last_etag(self) -> Optional[str]:
        with self._lock:
            return self._last_etag

    @property
    def last_reload_at(self) -> float | None:
        with self._lock:
            return self._last_reload_at

    @property
    def last_error(self) -> Exception | None:
        with self._lock:
            return self._last_error

    @property
    def suppressed_until(self) -> float:
        with self._lock:
            return self._suppress_until

    # --------------------------------------------------------------------- #
    # Internals
    # --------------------------------------------------------------------- #

    def _src_name(self) -> str:
        path = getattr(self.source, "path", None)
        return path if isinstance(path, str) else self.source.__class__.__name__

    def _register_error(self, now: float, err: Exception, *, level: str, msg: str) -> None:
        self._last_error = err
        log_args: tuple[object, ...] = (self._src_name(),) if "%s" in msg else ()
        if level == "warning":
            logger.warning(msg, *log_args)
        else:
            logger.error(msg, *log_args, exc_info=err)

        self._backoff = min(self.backoff_max, max(self.backoff_min, self._backoff * 2.0))
        jitter = self._backoff * self.jitter_ratio * random.uniform(-1.0, 1.0)
        self._suppress_until = now + max(0.2, self._backoff + jitter)

    def _run_loop(self, base_interval: float) -> None:
        while not self._stop_event.is_set():
            try:
                self.check_and_reload()
            except Exception as e:  # pragma: no cover
                logger.exception("ENFORCEX: reloader loop error", exc_info=e)

            now = time.time()
            sleep_for = base_interval
            with self._lock:
                if now < self._suppress_until:
                    sleep_for = min(sleep_for, max(0.2, self._suppress_until - now))

            jitter = base_interval * self.jitter_ratio * random.uniform(-1.0, 1.0)
            sleep_for = max(0.01, sleep_for + jitter)
            # wait() returns early when stop() is called
            self._stop_event.wait(timeout=sleep_for)


__all__ = [
    "atomic_write",
    "parse_policy_lines",
    "format_policy_lines",
    "FilePolicySource",
    "HotReloader",
]
