"""
Backend process execution, output capture and teardown
"""

import itertools
import logging
import os
import signal
import subprocess
import sys
import threading
from enum import Enum
from pathlib import Path
from typing import Callable, Dict, List, Optional

LOGGER = logging.getLogger(__name__)

DEFAULT_BUFFER_SIZE = 5000000
READ_CHUNK_SIZE = 65536
STOP_TIMEOUT = 5

_process_counter = itertools.count(1)
_live_processes = set()
_live_lock = threading.Lock()


class ProcessState(Enum):
    PENDING = "pending"
    RUNNING = "running"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    STOPPED = "stopped"


class StdoutMode(Enum):
    LINES = "lines"    # diagnostics, kept as text lines
    BUFFER = "buffer"  # one-shot output, kept as bytes
    STREAM = "stream"  # left open for the consumer


class OutputBuffer:
    """Growable byte buffer preallocated from a size hint"""

    def __init__(self, size_hint: Optional[int] = None):
        capacity = size_hint if size_hint and size_hint > 0 else DEFAULT_BUFFER_SIZE
        self._data = bytearray(capacity)
        self._length = 0
        self.growths = 0

    @property
    def capacity(self) -> int:
        return len(self._data)

    def __len__(self):
        return self._length

    def write(self, chunk: bytes):
        end = self._length + len(chunk)
        if end > len(self._data):
            new_capacity = max(len(self._data) * 2, end)
            self._data.extend(bytes(new_capacity - len(self._data)))
            self.growths += 1
        self._data[self._length:end] = chunk
        self._length = end

    def getvalue(self) -> bytes:
        return bytes(self._data[:self._length])


def build_environment(overrides: Optional[Dict[str, str]] = None) -> Dict[str, str]:
    """Inherited environment plus overrides; a PATH override is prepended"""
    env = dict(os.environ)
    for key, value in (overrides or {}).items():
        if key == 'PATH' and env.get('PATH'):
            env['PATH'] = value + os.pathsep + env['PATH']
        else:
            env[key] = value
    return env


class ManagedProcess:
    """One supervised OS process and the dependent processes tied to it"""

    def __init__(self, cmd: List[str], params=None, stdout: StdoutMode = StdoutMode.LINES,
                 buffer_size_hint: Optional[int] = None):
        self.cmd = [str(c) for c in cmd]
        self.env = build_environment(params.env if params is not None else None)
        work_dir = params.work_dir if params is not None else None
        self.work_dir: Optional[Path] = work_dir if work_dir and Path(work_dir).is_dir() else None
        self.stdout_mode = stdout
        self.name = f'{Path(self.cmd[0]).stem if self.cmd else "process"}-{next(_process_counter)}'
        self.state = ProcessState.PENDING
        self.returncode: Optional[int] = None
        self.results: List[str] = []
        self.output_lines: List[str] = []
        self.buffer = OutputBuffer(buffer_size_hint) if stdout == StdoutMode.BUFFER else None
        self.process: Optional[subprocess.Popen] = None
        self.started = threading.Event()
        self.finished = threading.Event()
        self._attached: List['ManagedProcess'] = []
        self._callbacks: List[Callable[['ManagedProcess'], None]] = []
        self._lock = threading.Lock()
        self._stop_requested = False
        self._done = False
        self._thread: Optional[threading.Thread] = None

    def __repr__(self):
        return f'ManagedProcess({self.name}, {self.state.value})'

    @property
    def stdout(self):
        """Backend output stream in STREAM mode"""
        return self.process.stdout if self.process is not None else None

    @property
    def pid(self) -> Optional[int]:
        return self.process.pid if self.process is not None else None

    @property
    def is_success(self) -> bool:
        return self.state == ProcessState.SUCCEEDED

    @property
    def is_running(self) -> bool:
        return self.state == ProcessState.RUNNING

    @property
    def output_bytes(self) -> bytes:
        return self.buffer.getvalue() if self.buffer is not None else b''

    def attach_process(self, process: 'ManagedProcess'):
        """Tie a dependent process to this one's lifetime"""
        if process is not None:
            self._attached.append(process)
        return self

    @property
    def attached(self) -> List['ManagedProcess']:
        return list(self._attached)

    def add_done_callback(self, callback: Callable[['ManagedProcess'], None]):
        with self._lock:
            if not self._done:
                self._callbacks.append(callback)
                return
        callback(self)

    # Execution

    def run_detached(self) -> 'ManagedProcess':
        """Run on a new supervisory thread and return immediately"""
        self._thread = threading.Thread(target=self._run, name=self.name, daemon=True)
        self._thread.start()
        return self

    def run_blocking(self, timeout: Optional[float] = None) -> 'ManagedProcess':
        """Run on the caller's thread; stop the process after timeout seconds"""
        timer = None
        if timeout is not None:
            timer = threading.Timer(timeout, self.stop_process)
            timer.daemon = True
            timer.start()
        try:
            self._run()
        finally:
            if timer is not None:
                timer.cancel()
        return self

    def wait(self, timeout: Optional[float] = None) -> bool:
        return self.finished.wait(timeout)

    def _start(self) -> bool:
        with self._lock:
            if self._stop_requested:
                self.state = ProcessState.STOPPED
                self.results.append('stopped before start')
                return False
            stdout = subprocess.DEVNULL
            if self.stdout_mode in (StdoutMode.LINES, StdoutMode.BUFFER, StdoutMode.STREAM):
                stdout = subprocess.PIPE
            try:
                self.process = subprocess.Popen(
                    self.cmd,
                    stdin=subprocess.DEVNULL,
                    stdout=stdout,
                    stderr=subprocess.PIPE,
                    env=self.env,
                    cwd=str(self.work_dir) if self.work_dir else None,
                )
            except (OSError, ValueError, subprocess.SubprocessError) as e:
                LOGGER.error("Could not start %s: %s", self.cmd[0] if self.cmd else '<empty>', e)
                self.state = ProcessState.FAILED
                self.results.append(f'could not start process: {e}')
                return False
            self.state = ProcessState.RUNNING
        with _live_lock:
            _live_processes.add(self)
        LOGGER.debug("Started %s (pid=%s): %s", self.name, self.process.pid, ' '.join(self.cmd))
        return True

    def _read_stderr(self):
        for raw in iter(self.process.stderr.readline, b''):
            line = raw.decode('utf-8', errors='replace').rstrip('\r\n')
            if line:
                self.results.append(line)
                LOGGER.debug("[%s] %s", self.name, line)
        self.process.stderr.close()

    def _read_stdout(self):
        stream = self.process.stdout
        if self.stdout_mode == StdoutMode.BUFFER:
            for chunk in iter(lambda: stream.read(READ_CHUNK_SIZE), b''):
                self.buffer.write(chunk)
            stream.close()
        elif self.stdout_mode == StdoutMode.LINES:
            for raw in iter(stream.readline, b''):
                line = raw.decode('utf-8', errors='replace').rstrip('\r\n')
                if line:
                    self.output_lines.append(line)
            stream.close()

    def _run(self):
        try:
            if not self._start():
                return
            self.started.set()
            stderr_reader = threading.Thread(target=self._read_stderr, name=f'{self.name}-stderr', daemon=True)
            stderr_reader.start()
            try:
                self._read_stdout()
            except (OSError, ValueError) as e:
                LOGGER.debug("Output of %s ended early: %s", self.name, e)
            self.returncode = self.process.wait()
            stderr_reader.join()
            with self._lock:
                if self._stop_requested:
                    self.state = ProcessState.STOPPED
                elif self.returncode == 0:
                    self.state = ProcessState.SUCCEEDED
                else:
                    self.state = ProcessState.FAILED
            if self.state == ProcessState.FAILED:
                LOGGER.warning("%s exited with code %s", self.name, self.returncode)
            else:
                LOGGER.debug("%s finished (%s)", self.name, self.state.value)
        finally:
            self._stop_attached()
            with _live_lock:
                _live_processes.discard(self)
            self.started.set()
            self._finish()

    def _finish(self):
        with self._lock:
            self._done = True
            callbacks, self._callbacks = self._callbacks, []
        for callback in callbacks:
            try:
                callback(self)
            except Exception:
                LOGGER.exception("Completion callback failed for %s", self.name)
        self.finished.set()

    # Teardown

    def stop_process(self):
        """Stop the process and its dependents; safe to call repeatedly"""
        with self._lock:
            already = self._stop_requested
            self._stop_requested = True
            process = self.process
        if not already and process is not None and process.poll() is None:
            LOGGER.info("Stopping %s (pid=%s)", self.name, process.pid)
            try:
                process.terminate()
                try:
                    process.wait(timeout=STOP_TIMEOUT)
                except subprocess.TimeoutExpired:
                    LOGGER.warning("%s ignored SIGTERM, killing", self.name)
                    process.kill()
                    process.wait()
            except OSError as e:
                LOGGER.error("Error stopping %s: %s", self.name, e)
        self._stop_attached()

    def _stop_attached(self):
        for dependent in self._attached:
            dependent.stop_process()


def launch(cmd: List[str], params=None, attached: Optional[ManagedProcess] = None,
           stdout: StdoutMode = StdoutMode.LINES, buffer_size_hint: Optional[int] = None) -> ManagedProcess:
    """Create a ManagedProcess; run it with run_detached() or run_blocking()"""
    if buffer_size_hint is None and params is not None:
        buffer_size_hint = params.buffer_size_hint
    process = ManagedProcess(cmd, params, stdout=stdout, buffer_size_hint=buffer_size_hint)
    process.attach_process(attached)
    return process


def live_processes() -> List[ManagedProcess]:
    with _live_lock:
        return list(_live_processes)


def stop_all_processes():
    for process in live_processes():
        process.stop_process()


def signal_handler(signum, frame):
    """Stop every backend before exiting"""
    LOGGER.warning("Interrupted (signal %s), stopping %d backend process(es)", signum, len(live_processes()))
    stop_all_processes()
    sys.exit(1)


def setup_signal_handlers():
    """Set up signal handlers for graceful interruption"""
    signal.signal(signal.SIGINT, signal_handler)
    signal.signal(signal.SIGTERM, signal_handler)
