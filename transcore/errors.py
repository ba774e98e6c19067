"""
Exception hierarchy for the orchestration core

Build-time defects raise loudly; runtime process faults are reported as
terminal process states instead of exceptions.
"""

from enum import Enum


class ExecutableErrorType(Enum):
    GENERAL = "general"    # engine unusable for every request
    SPECIFIC = "specific"  # only a particular feature is missing


class TranscodeError(Exception):
    """Base class for all orchestration errors"""


class CommandBuildError(TranscodeError, ValueError):
    """Malformed option table or invalid argument ordering"""


class PipeSetupError(TranscodeError):
    """The pipe object did not come into existence within the bounded wait"""

    def __init__(self, pipe_name: str, reason: str):
        super().__init__(f'pipe {pipe_name} could not be created: {reason}')
        self.pipe_name = pipe_name
        self.reason = reason


class EngineUnavailableError(TranscodeError):
    """Raised by helpers that require a usable engine"""

    def __init__(self, engine_id, error_type: ExecutableErrorType, message: str = ''):
        detail = f': {message}' if message else ''
        super().__init__(f'engine {engine_id} is unavailable ({error_type.value}){detail}')
        self.engine_id = engine_id
        self.error_type = error_type
