"""
Request orchestration: select, build, create the pipe, launch, cancel
"""

import logging
import threading
from typing import List, Optional

from .backend_profiles import profile_for
from .capability_matcher import select_engine
from .command_builder import build_command, format_command, make_context
from .config import EngineConfiguration
from .engine_ids import EngineId
from .engine_registry import EngineRegistry
from .errors import PipeSetupError, TranscodeError
from .models import EngineDescriptor, MediaInfo, OutputParameters, ResourceDescriptor
from .pipe_bridge import PipeHandle, create_pipe, unique_pipe_name
from .process_supervisor import ManagedProcess, ProcessState, StdoutMode, launch

LOGGER = logging.getLogger(__name__)


class TranscodeSession:
    """One streaming request: an optional pipe, its setup process and the backend"""

    def __init__(self, engine: EngineDescriptor, resource: ResourceDescriptor, media: MediaInfo,
                 params: OutputParameters, config: EngineConfiguration, registry: EngineRegistry):
        self.engine = engine
        self.resource = resource
        self.media = media
        self.params = params
        self.config = config
        self.registry = registry
        self.profile = profile_for(engine.id)
        self.command: Optional[List[str]] = None
        self.pipe: Optional[PipeHandle] = None
        self.setup_process: Optional[ManagedProcess] = None
        self.process: Optional[ManagedProcess] = None
        self.error: Optional[str] = None
        self._cancelled = threading.Event()
        self._lock = threading.Lock()

    def __repr__(self):
        return f'TranscodeSession({self.engine.id}, {self.state.value})'

    @property
    def state(self) -> ProcessState:
        if self.error is not None and self.process is None:
            return ProcessState.FAILED
        if self.process is None:
            return ProcessState.STOPPED if self._cancelled.is_set() else ProcessState.PENDING
        return self.process.state

    @property
    def is_launched(self) -> bool:
        return self.process is not None and self.error is None

    @property
    def results(self) -> List[str]:
        lines = []
        if self.error:
            lines.append(self.error)
        if self.setup_process is not None and not self.setup_process.is_success:
            lines.extend(self.setup_process.results)
        if self.process is not None:
            lines.extend(self.process.results)
        return lines

    def _fail(self, message: str) -> 'TranscodeSession':
        self.error = message
        LOGGER.error("Launch of %s failed: %s", self.engine.id, message)
        self._release_pipe()
        return self

    def _release_pipe(self):
        if self.pipe is not None:
            self.pipe.delete_later()
            self.pipe.request_completed()

    def _create_pipe(self):
        self.pipe = create_pipe(unique_pipe_name(self.profile.pipe_suffix), self.config.pipe_directory)
        self.params.write_pipe = self.pipe
        self.pipe.delete_later()

    def _run_setup(self):
        """Start the pipe's setup process and wait for its readiness signal"""
        self.setup_process = launch(self.pipe.setup_command())
        self.pipe.watch_setup(self.setup_process)
        self.setup_process.run_detached()
        self.pipe.wait_ready(self.config.pipe_setup_timeout)

    def launch(self) -> 'TranscodeSession':
        """Start the request; failures end in state FAILED, not an exception"""
        self.params.claim()
        ctx = make_context(self.engine, self.resource, self.media, self.params, self.config, self.registry)

        if self.profile.uses_named_pipe:
            self._create_pipe()
        self.profile.prepare(ctx)
        self.command = build_command(self.engine, self.resource, self.media, self.params,
                                     self.config, self.registry)
        LOGGER.info("Launching %s: %s", self.engine.id, format_command(self.command))

        if self.pipe is not None and not self.pipe.stdio:
            try:
                self._run_setup()
            except PipeSetupError as e:
                if self.setup_process is not None:
                    self.setup_process.stop_process()
                return self._fail(str(e))

        streams_stdout = self.pipe.stdio if self.pipe is not None else self.params.output_path is None
        with self._lock:
            if self._cancelled.is_set():
                return self._fail('cancelled before the backend started')
            self.process = launch(self.command, self.params, attached=self.setup_process,
                                  stdout=StdoutMode.STREAM if streams_stdout else StdoutMode.LINES)
            self.process.add_done_callback(self._on_backend_done)
            self.process.run_detached()

        if not self.process.started.wait(self.config.backend_startup_timeout):
            LOGGER.warning("%s did not start within %ss", self.engine.id, self.config.backend_startup_timeout)
        if self.pipe is not None and self.pipe.stdio:
            self.pipe.bind_stdout(self.process.stdout)
        return self

    def _on_backend_done(self, process: ManagedProcess):
        if self.pipe is not None:
            self.pipe.mark_closed('write')
            self.pipe.request_completed()
        LOGGER.info("%s finished: %s", self.engine.id, process.state.value)

    def open_output(self, timeout: Optional[float] = None):
        """Readable binary stream with the backend's output"""
        if self.process is None or self.error is not None:
            raise TranscodeError(f'{self.engine.id} is not running: {self.error or "not launched"}')
        if timeout is None:
            timeout = self.config.pipe_setup_timeout + self.config.backend_startup_timeout
        if self.pipe is not None:
            return self.pipe.open_reader(timeout)
        stream = self.process.stdout
        if stream is None:
            raise TranscodeError(f'{self.engine.id} has no output stream: {"; ".join(self.process.results)}')
        return stream

    def wait(self, timeout: Optional[float] = None) -> bool:
        if self.process is None:
            return True
        return self.process.wait(timeout)

    def cancel(self):
        """Stop the backend and setup process and clean up the pipe"""
        self._cancelled.set()
        if self.pipe is not None:
            self.pipe.abort_setup()
        with self._lock:
            process = self.process
        if process is not None:
            process.stop_process()
        if self.setup_process is not None:
            self.setup_process.stop_process()
        self._release_pipe()
        LOGGER.info("Cancelled %s", self.engine.id)


def launch_transcode(registry: EngineRegistry, resource: ResourceDescriptor, media: MediaInfo,
                     params: OutputParameters, config: Optional[EngineConfiguration] = None,
                     engine: Optional[EngineDescriptor] = None) -> Optional[TranscodeSession]:
    """Select an engine and start streaming; None when no engine qualifies"""
    config = (config or registry.config).for_renderer(params.renderer)
    if engine is None:
        engine = select_engine(registry, resource, media, params.renderer)
        if engine is None:
            return None
    return TranscodeSession(engine, resource, media, params, config, registry).launch()


def run_one_shot(registry: EngineRegistry, engine: EngineDescriptor, resource: ResourceDescriptor,
                 media: MediaInfo, params: OutputParameters,
                 config: Optional[EngineConfiguration] = None) -> ManagedProcess:
    """Run a one-shot backend on the caller's thread and capture its output bytes"""
    if not engine.is_one_shot:
        raise TranscodeError(f'{engine.id} streams its output, use launch_transcode')
    config = (config or registry.config).for_renderer(params.renderer)
    params.claim()
    profile = profile_for(engine.id)
    ctx = make_context(engine, resource, media, params, config, registry)
    cmd = build_command(engine, resource, media, params, config, registry)
    process = launch(cmd, params, stdout=StdoutMode.BUFFER,
                     buffer_size_hint=profile.buffer_size_hint(ctx)).run_blocking()

    no_thumbnail = not process.output_bytes or (
        bool(process.results) and 'has no thumbnail' in process.results[0])
    if engine.id == EngineId.DCRAW and params.thumbnail and media.has_embedded_thumbnail and no_thumbnail:
        # no embedded thumbnail, decode a half-size image instead
        LOGGER.debug("No embedded thumbnail in %s, decoding instead", resource.locator)
        fallback_media = media.model_copy(update={'has_embedded_thumbnail': False})
        ctx = make_context(engine, resource, fallback_media, params, config, registry)
        cmd = build_command(engine, resource, fallback_media, params, config, registry)
        process = launch(cmd, params, stdout=StdoutMode.BUFFER,
                         buffer_size_hint=profile.buffer_size_hint(ctx)).run_blocking()
    return process
