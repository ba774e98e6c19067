"""
Transcoding engine orchestration core

Selects an external backend for a media request, builds its command line,
and supervises the backend process and the named pipe it streams through.
"""

# Import all public interfaces for easy access
from .engine_ids import EngineId, MediaKind, Purpose, normalize_engine_id
from .errors import (
    CommandBuildError, EngineUnavailableError, ExecutableErrorType, PipeSetupError, TranscodeError,
)
from .models import (
    AudioStreamInfo, CaptureGeometry, EngineDescriptor, ExecutableInfo, MediaInfo,
    OutputParameters, RendererCapabilities, ResourceDescriptor,
)
from .config import EngineConfiguration
from .option_table import OptionScope, OptionTable, normalize_header, parse_options
from .backend_profiles import profile_for
from .command_builder import available_processors, build_command, format_command
from .pipe_bridge import PipeHandle, create_pipe, unique_pipe_name
from .process_supervisor import (
    ManagedProcess, OutputBuffer, ProcessState, StdoutMode, launch, setup_signal_handlers,
    stop_all_processes,
)
from .engine_registry import EngineRegistry
from .capability_matcher import compatible_engines, select_engine
from .parallel_checker import ParallelEngineChecker, create_engine_checker
from .transcode_session import TranscodeSession, launch_transcode, run_one_shot
from .file_utils import classify_path, format_file_size, resource_from_locator

__all__ = [
    'EngineId', 'MediaKind', 'Purpose', 'normalize_engine_id',
    'CommandBuildError', 'EngineUnavailableError', 'ExecutableErrorType', 'PipeSetupError', 'TranscodeError',
    'AudioStreamInfo', 'CaptureGeometry', 'EngineDescriptor', 'ExecutableInfo', 'MediaInfo',
    'OutputParameters', 'RendererCapabilities', 'ResourceDescriptor',
    'EngineConfiguration',
    'OptionScope', 'OptionTable', 'normalize_header', 'parse_options',
    'profile_for',
    'available_processors', 'build_command', 'format_command',
    'PipeHandle', 'create_pipe', 'unique_pipe_name',
    'ManagedProcess', 'OutputBuffer', 'ProcessState', 'StdoutMode', 'launch', 'setup_signal_handlers',
    'stop_all_processes',
    'EngineRegistry',
    'compatible_engines', 'select_engine',
    'ParallelEngineChecker', 'create_engine_checker',
    'TranscodeSession', 'launch_transcode', 'run_one_shot',
    'classify_path', 'format_file_size', 'resource_from_locator',
]
