"""
Engine configuration snapshot

An EngineConfiguration is validated once and passed explicitly into every
registry, builder and session call.
"""

import logging
import os
import sys
import tempfile
from pathlib import Path
from typing import Dict, List, Optional

from pydantic import BaseModel, Field, field_validator

from .engine_ids import EngineId, normalize_engine_id

LOGGER = logging.getLogger(__name__)

_EXE_SUFFIX = '.exe' if sys.platform == 'win32' else ''

DEFAULT_EXECUTABLES = {
    EngineId.AVISYNTH_FFMPEG: f'ffmpeg{_EXE_SUFFIX}',
    EngineId.FFMPEG_AUDIO: f'ffmpeg{_EXE_SUFFIX}',
    EngineId.FFMPEG_VIDEO: f'ffmpeg{_EXE_SUFFIX}',
    EngineId.FFMPEG_WEB_VIDEO: f'ffmpeg{_EXE_SUFFIX}',
    EngineId.VLC_VIDEO: f'vlc{_EXE_SUFFIX}',
    EngineId.VLC_WEB_VIDEO: f'vlc{_EXE_SUFFIX}',
    EngineId.VLC_AUDIO_STREAMING: f'vlc{_EXE_SUFFIX}',
    EngineId.DCRAW: f'dcraw{_EXE_SUFFIX}',
}

BACKEND_LOG_LEVELS = ('quiet', 'error', 'warning', 'info', 'verbose', 'debug')


def _cpu_count() -> int:
    return os.cpu_count() or 1


def _normalize_engine_keys(mapping: Dict) -> Dict:
    normalized = {}
    for key, value in (mapping or {}).items():
        engine_id = normalize_engine_id(key)
        if engine_id is None:
            LOGGER.warning("Ignoring configuration for unknown transcoding engine: %s", key)
            continue
        normalized[engine_id] = value
    return normalized


def _normalize_engine_list(values: List) -> List[EngineId]:
    engines = []
    for value in values or []:
        engine_id = normalize_engine_id(value)
        if engine_id is None:
            LOGGER.warning("Unknown transcoding engine in configuration: %s", value)
            continue
        if engine_id not in engines:
            engines.append(engine_id)
    return engines


class EngineConfiguration(BaseModel):
    """Read-only configuration consumed by the orchestration core"""
    executable_paths: Dict[EngineId, str] = Field(default_factory=lambda: dict(DEFAULT_EXECUTABLES))
    custom_paths: Dict[EngineId, str] = Field(default_factory=dict)
    multithreading: bool = Field(default_factory=lambda: _cpu_count() > 1)
    thread_count: int = Field(default_factory=_cpu_count, ge=1)
    custom_options: Dict[EngineId, str] = Field(default_factory=dict)
    audio_resample: bool = True
    audio_bitrate: int = Field(default=640, gt=0)  # kbit/s
    audio_channels: int = Field(default=6, ge=1)
    maximum_bitrate: str = '110'  # Mbit/s, optionally "110(5000)" with a bufsize in kB
    gpu_acceleration: bool = False
    backend_log_level: str = 'warning'
    engine_priority: List[EngineId] = Field(default_factory=list)
    disabled_engines: List[EngineId] = Field(default_factory=list)
    pipe_setup_timeout: float = Field(default=2.0, gt=0)
    backend_startup_timeout: float = Field(default=1.0, gt=0)
    pipe_directory: Path = Field(default_factory=lambda: Path(tempfile.gettempdir()))
    web_filters_path: Optional[Path] = None

    @field_validator('executable_paths', 'custom_paths', 'custom_options', mode='before')
    @classmethod
    def normalize_keys(cls, v):
        return _normalize_engine_keys(v)

    @field_validator('executable_paths')
    @classmethod
    def fill_default_executables(cls, v):
        merged = dict(DEFAULT_EXECUTABLES)
        merged.update(v)
        return merged

    @field_validator('engine_priority', 'disabled_engines', mode='before')
    @classmethod
    def normalize_engine_lists(cls, v):
        return _normalize_engine_list(v)

    @field_validator('backend_log_level')
    @classmethod
    def validate_log_level(cls, v):
        if v not in BACKEND_LOG_LEVELS:
            raise ValueError(f'backend_log_level must be one of {", ".join(BACKEND_LOG_LEVELS)}')
        return v

    def executable_for(self, engine_id: EngineId) -> str:
        """Alternate path wins over the default executable"""
        custom = self.custom_paths.get(engine_id)
        if custom:
            return custom
        return self.executable_paths[engine_id]

    def custom_options_for(self, engine_id: EngineId) -> str:
        return self.custom_options.get(engine_id, '')

    def is_enabled(self, engine_id: EngineId) -> bool:
        return engine_id not in self.disabled_engines

    @property
    def max_bitrate_mbits(self) -> int:
        """Configured maximum bitrate in Mbit/s, 0 when unlimited"""
        value = self.maximum_bitrate.split('(')[0].strip()
        try:
            return max(0, int(value))
        except ValueError:
            LOGGER.warning("Invalid maximum bitrate '%s', treating as unlimited", self.maximum_bitrate)
            return 0

    @property
    def max_bitrate_bufsize(self) -> Optional[int]:
        """Explicit bufsize (kB) given as "rate(bufsize)", if any"""
        if '(' not in self.maximum_bitrate or not self.maximum_bitrate.endswith(')'):
            return None
        inner = self.maximum_bitrate[self.maximum_bitrate.index('(') + 1:-1]
        try:
            return int(inner)
        except ValueError:
            return None

    def for_renderer(self, renderer) -> 'EngineConfiguration':
        """Copy with the renderer's overrides applied"""
        updates = {}
        if renderer.audio_bitrate:
            updates['audio_bitrate'] = renderer.audio_bitrate
        if not updates:
            return self
        return self.model_copy(update=updates)
