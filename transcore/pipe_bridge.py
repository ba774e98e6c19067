"""
Named pipe plumbing between a backend process and the consuming server

On platforms without cheap named pipes the handle falls back to the
backend's standard output; callers use the same write_end/open_reader
contract either way.
"""

import itertools
import logging
import os
import sys
import tempfile
import threading
import time
from pathlib import Path
from typing import BinaryIO, List, Optional

from .errors import PipeSetupError

LOGGER = logging.getLogger(__name__)

_name_counter = itertools.count(1)

READ_END = 'read'
WRITE_END = 'write'


def named_pipes_supported() -> bool:
    return hasattr(os, 'mkfifo') and sys.platform != 'win32'


def unique_pipe_name(prefix: str) -> str:
    """Name from the calling thread, a timestamp and a process-wide counter"""
    return f'{prefix}_{threading.get_ident()}_{time.time_ns()}_{next(_name_counter)}'


class _PipeReader:
    """File wrapper that reports its close back to the handle"""

    def __init__(self, handle: 'PipeHandle', stream: BinaryIO):
        self._handle = handle
        self._stream = stream

    def read(self, size: int = -1) -> bytes:
        return self._stream.read(size)

    def close(self):
        try:
            self._stream.close()
        finally:
            self._handle.mark_closed(READ_END)

    @property
    def closed(self) -> bool:
        return self._stream.closed

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.close()

    def __getattr__(self, name):
        return getattr(self._stream, name)


class PipeHandle:
    """Rendezvous point: the backend writes, the server reads"""

    def __init__(self, name: str, directory: Path, stdio: Optional[bool] = None):
        self.name = name
        self.path = Path(directory) / name
        self.stdio = (not named_pipes_supported()) if stdio is None else stdio
        self.setup_error: Optional[str] = None
        self._settled = threading.Event()
        self._lock = threading.Lock()
        self._closed_ends = set()
        self._delete_requested = False
        self._removed = False
        self._stdout: Optional[BinaryIO] = None
        self._stdout_bound = threading.Event()
        if self.stdio:
            # nothing to create on the filesystem
            self._settled.set()

    def __repr__(self):
        mode = 'stdio' if self.stdio else str(self.path)
        return f'PipeHandle({self.name!r}, {mode})'

    def setup_command(self) -> Optional[List[str]]:
        """Command that creates the OS-level pipe, None in stdio mode"""
        if self.stdio:
            return None
        return ['mkfifo', '-m', '600', str(self.path)]

    def write_end(self, stdout_marker: str = 'pipe:1') -> str:
        if self.stdio:
            return stdout_marker
        return str(self.path)

    def read_end(self) -> Optional[str]:
        """Filesystem path to read from, None when bound to stdout"""
        if self.stdio:
            return None
        return str(self.path)

    def exists(self) -> bool:
        return self.stdio or self.path.exists()

    # Readiness

    def watch_setup(self, process):
        """Settle readiness when the setup process finishes"""
        process.add_done_callback(self._on_setup_done)

    def _on_setup_done(self, process):
        if self._settled.is_set():
            return
        if process.is_success and self.path.exists():
            LOGGER.debug("Created pipe %s", self.path)
        else:
            detail = '; '.join(process.results[-3:]) or f'exit code {process.returncode}'
            self.setup_error = f'setup process failed ({detail})'
        self._settled.set()

    def abort_setup(self, reason: str = 'cancelled'):
        if not self._settled.is_set():
            self.setup_error = reason
            self._settled.set()

    def wait_ready(self, timeout: float):
        """Block until the pipe exists; raises PipeSetupError on failure or timeout"""
        if not self._settled.wait(timeout):
            self.abort_setup(f'not created within {timeout}s')
        if self.setup_error:
            raise PipeSetupError(self.name, self.setup_error)

    @property
    def is_ready(self) -> bool:
        return self._settled.is_set() and not self.setup_error

    # Reading

    def bind_stdout(self, stream: BinaryIO):
        self._stdout = stream
        self._stdout_bound.set()

    def open_reader(self, timeout: float):
        """Open the read end, waiting at most timeout seconds for a writer"""
        if self.stdio:
            if not self._stdout_bound.wait(timeout) or self._stdout is None:
                raise PipeSetupError(self.name, 'backend output is not available')
            return _PipeReader(self, self._stdout)
        if not self.path.exists():
            raise PipeSetupError(self.name, 'pipe does not exist')

        opened = {}

        def _open():
            try:
                opened['stream'] = open(self.path, 'rb')
            except OSError as e:
                opened['error'] = e

        opener = threading.Thread(target=_open, name=f'open-{self.name}', daemon=True)
        opener.start()
        opener.join(timeout)
        if opener.is_alive():
            # release the blocked open by briefly acting as the writer
            try:
                fd = os.open(self.path, os.O_WRONLY | os.O_NONBLOCK)
                os.close(fd)
            except OSError:
                pass
            opener.join()
            if 'stream' in opened:
                opened['stream'].close()
            raise PipeSetupError(self.name, f'no writer within {timeout}s')
        if 'error' in opened:
            raise PipeSetupError(self.name, str(opened['error']))
        return _PipeReader(self, opened['stream'])

    # Cleanup

    def mark_closed(self, end: str):
        with self._lock:
            self._closed_ends.add(end)
            both_closed = {READ_END, WRITE_END} <= self._closed_ends
        if both_closed:
            self._remove_if_requested()

    def delete_later(self):
        """Remove the filesystem entry once both ends closed or the request completed"""
        with self._lock:
            self._delete_requested = True
            both_closed = {READ_END, WRITE_END} <= self._closed_ends
        if both_closed:
            self._remove_if_requested()

    def request_completed(self):
        self._remove_if_requested()

    def _remove_if_requested(self):
        with self._lock:
            if not self._delete_requested or self._removed:
                return
            self._removed = True
        if self.stdio:
            return
        try:
            self.path.unlink()
            LOGGER.debug("Removed pipe %s", self.path)
        except FileNotFoundError:
            pass
        except OSError as e:
            LOGGER.warning("Could not remove pipe %s: %s", self.path, e)

    @property
    def removed(self) -> bool:
        return self._removed


def create_pipe(name: str, directory: Optional[Path] = None, stdio: Optional[bool] = None) -> PipeHandle:
    """Create a handle; the OS object appears once its setup command has run"""
    if directory is None:
        directory = Path(tempfile.gettempdir())
    handle = PipeHandle(name, directory, stdio)
    LOGGER.debug("Pipe handle %r", handle)
    return handle
