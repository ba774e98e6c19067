"""
Fixed catalog of backend engines, ordered and filtered per platform
"""

import logging
import sys
import threading
from typing import Dict, List, Optional

from .backend_profiles import BackendProfile, profile_for
from .config import EngineConfiguration
from .engine_ids import EngineId, MediaKind, Purpose, normalize_engine_id
from .errors import EngineUnavailableError, ExecutableErrorType
from .executable_utils import probe_executable
from .models import EngineDescriptor, ExecutableInfo
from .web_filters import WebFilters, read_web_filters

LOGGER = logging.getLogger(__name__)

# Default preference order
ENGINE_CATALOG = [
    EngineDescriptor(id=EngineId.AVISYNTH_FFMPEG, name='AviSynth/FFmpeg', kind=MediaKind.VIDEO,
                     purpose=Purpose.VIDEO_SIMPLEFILE, platforms=['win32']),
    EngineDescriptor(id=EngineId.FFMPEG_AUDIO, name='FFmpeg Audio', kind=MediaKind.AUDIO,
                     purpose=Purpose.AUDIO_SIMPLEFILE),
    EngineDescriptor(id=EngineId.FFMPEG_VIDEO, name='FFmpeg', kind=MediaKind.VIDEO,
                     purpose=Purpose.VIDEO_SIMPLEFILE),
    EngineDescriptor(id=EngineId.VLC_VIDEO, name='VLC', kind=MediaKind.VIDEO,
                     purpose=Purpose.VIDEO_SIMPLEFILE),
    EngineDescriptor(id=EngineId.FFMPEG_WEB_VIDEO, name='FFmpeg Web Video', kind=MediaKind.VIDEO,
                     purpose=Purpose.VIDEO_WEBSTREAM, time_seekable=False),
    EngineDescriptor(id=EngineId.VLC_WEB_VIDEO, name='VLC Web Video', kind=MediaKind.VIDEO,
                     purpose=Purpose.VIDEO_WEBSTREAM, time_seekable=False),
    EngineDescriptor(id=EngineId.VLC_AUDIO_STREAMING, name='VLC Web Audio', kind=MediaKind.AUDIO,
                     purpose=Purpose.AUDIO_WEBSTREAM, time_seekable=False),
    EngineDescriptor(id=EngineId.DCRAW, name='DCRaw', kind=MediaKind.IMAGE,
                     purpose=Purpose.MISC, time_seekable=False),
]


def order_engines(engines: List[EngineDescriptor], priority: List[EngineId]) -> List[EngineDescriptor]:
    """Prioritized engines first, the rest keep catalog order"""
    rank = {engine_id: index for index, engine_id in enumerate(priority)}
    unlisted = len(priority)
    return sorted(engines, key=lambda engine: rank.get(engine.id, unlisted))


class EngineRegistry:
    """Catalog plus availability state for one configuration"""

    def __init__(self, config: Optional[EngineConfiguration] = None, platform: Optional[str] = None,
                 web_filters: Optional[WebFilters] = None):
        self.config = config or EngineConfiguration()
        self.platform = platform or sys.platform
        supported = [engine for engine in ENGINE_CATALOG if engine.supports_platform(self.platform)]
        self._engines = tuple(order_engines(supported, self.config.engine_priority))
        self._by_id = {engine.id: engine for engine in self._engines}
        self.web_filters = web_filters if web_filters is not None else read_web_filters(self.config.web_filters_path)
        self._status: Dict[EngineId, ExecutableInfo] = {}
        self._specific_errors: Dict[EngineId, Dict[str, str]] = {}
        self._lock = threading.Lock()

    def all_engines(self) -> List[EngineDescriptor]:
        return list(self._engines)

    def resolve(self, identifier) -> Optional[EngineDescriptor]:
        """Engine for a current or legacy identifier; None (logged) when unknown"""
        engine_id = normalize_engine_id(identifier)
        engine = self._by_id.get(engine_id) if engine_id is not None else None
        if engine is None:
            if engine_id is None:
                LOGGER.warning("Unknown transcoding engine: %s", identifier)
            else:
                LOGGER.warning("Transcoding engine %s is not supported on %s", engine_id, self.platform)
        return engine

    def profile_for(self, engine: EngineDescriptor) -> BackendProfile:
        return profile_for(engine.id)

    def executable_for(self, engine: EngineDescriptor) -> str:
        return engine.resolve_executable(self.config)

    def is_enabled(self, engine: EngineDescriptor) -> bool:
        return self.config.is_enabled(engine.id)

    def engines(self, only_enabled: bool = False, only_available: bool = False) -> List[EngineDescriptor]:
        result = []
        for engine in self._engines:
            if only_enabled and not self.is_enabled(engine):
                continue
            if only_available and not self.is_available(engine.id):
                continue
            result.append(engine)
        return result

    # Availability

    def executable_info(self, engine_id: EngineId) -> Optional[ExecutableInfo]:
        with self._lock:
            return self._status.get(engine_id)

    def record_executable_info(self, engine_id: EngineId, info: ExecutableInfo):
        with self._lock:
            self._status[engine_id] = info

    def mark_unavailable(self, engine_id: EngineId, error_type: ExecutableErrorType, message: str,
                         feature: Optional[str] = None):
        with self._lock:
            if error_type == ExecutableErrorType.SPECIFIC:
                if not feature:
                    raise ValueError('a specific error needs a feature key')
                self._specific_errors.setdefault(engine_id, {})[feature] = message
            else:
                info = self._status.get(engine_id) or ExecutableInfo(path=self.config.executable_for(engine_id))
                self._status[engine_id] = info.model_copy(update={
                    'available': False,
                    'error_type': ExecutableErrorType.GENERAL,
                    'error_text': message,
                })
        LOGGER.warning("Engine %s unavailable (%s): %s", engine_id, error_type.value, message)

    def is_available(self, engine_id: EngineId, feature: Optional[str] = None) -> bool:
        """Unchecked engines count as available"""
        with self._lock:
            info = self._status.get(engine_id)
            if info is not None and info.available is False:
                return False
            if feature and feature in self._specific_errors.get(engine_id, {}):
                return False
        return True

    def error_for(self, engine_id: EngineId, feature: Optional[str] = None) -> Optional[str]:
        with self._lock:
            if feature and feature in self._specific_errors.get(engine_id, {}):
                return self._specific_errors[engine_id][feature]
            info = self._status.get(engine_id)
            return info.error_text if info is not None else None

    def reset_status(self):
        """Forget availability results, e.g. after reconfiguration"""
        with self._lock:
            self._status.clear()
            self._specific_errors.clear()

    def require(self, identifier, feature: Optional[str] = None) -> EngineDescriptor:
        engine = self.resolve(identifier)
        if engine is None:
            raise EngineUnavailableError(identifier, ExecutableErrorType.GENERAL, 'unknown engine')
        if not self.is_available(engine.id, feature):
            error_type = ExecutableErrorType.SPECIFIC if feature and self.is_available(engine.id) else ExecutableErrorType.GENERAL
            raise EngineUnavailableError(engine.id, error_type, self.error_for(engine.id, feature) or '')
        return engine

    def check_engine(self, engine: EngineDescriptor) -> ExecutableInfo:
        """Probe the engine's executable and record the result"""
        profile = self.profile_for(engine)
        info = probe_executable(profile.family, self.executable_for(engine), detect_features=profile.family == 'ffmpeg')
        self.record_executable_info(engine.id, info)
        self.record_feature_errors(engine, info)
        return info

    def record_feature_errors(self, engine: EngineDescriptor, info: ExecutableInfo):
        if info.available and self.config.gpu_acceleration and self.profile_for(engine).family == 'ffmpeg' \
                and engine.kind == MediaKind.VIDEO and not info.hwaccels:
            self.mark_unavailable(engine.id, ExecutableErrorType.SPECIFIC,
                                  'no hardware acceleration methods reported', feature='hwaccel')
