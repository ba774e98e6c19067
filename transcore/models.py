"""
Pydantic models for engine descriptors, request data and executable state
"""

import re
from pathlib import Path
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, PrivateAttr, field_validator

from .engine_ids import EngineId, MediaKind, Purpose
from .errors import CommandBuildError, ExecutableErrorType

# Drive letters ("C:") are not protocols
_PROTOCOL_RE = re.compile(r'^([a-zA-Z][a-zA-Z0-9+.\-]+):')

LOCAL_PROTOCOLS = {'file'}
SCREEN_PROTOCOL = 'screen'


class EngineDescriptor(BaseModel):
    """Immutable identity of a registered backend"""
    model_config = ConfigDict(frozen=True)

    id: EngineId
    name: str
    kind: MediaKind
    purpose: Purpose
    time_seekable: bool = True
    platforms: Optional[List[str]] = None  # None means every platform

    @property
    def is_one_shot(self) -> bool:
        return self.purpose == Purpose.MISC

    def supports_platform(self, platform: str) -> bool:
        if self.platforms is None:
            return True
        return any(platform.startswith(p) for p in self.platforms)

    def resolve_executable(self, config) -> str:
        """Executable path for this engine under the given configuration"""
        return config.executable_for(self.id)


class ResourceDescriptor(BaseModel):
    """Logical identity of the media item being processed"""
    locator: str
    kind: MediaKind
    container: Optional[str] = None
    video_codec: Optional[str] = None
    audio_codec: Optional[str] = None
    size: Optional[int] = None
    attached_options: str = ''
    fed_internally: bool = False  # input arrives on the backend's stdin

    @field_validator('container', 'video_codec', 'audio_codec')
    @classmethod
    def lowercase_identifiers(cls, v):
        return v.lower() if v else v

    @property
    def protocol(self) -> Optional[str]:
        match = _PROTOCOL_RE.match(self.locator)
        return match.group(1).lower() if match else None

    @property
    def is_web(self) -> bool:
        protocol = self.protocol
        return protocol is not None and protocol not in LOCAL_PROTOCOLS and protocol != SCREEN_PROTOCOL

    @property
    def is_screen_capture(self) -> bool:
        return self.protocol == SCREEN_PROTOCOL


class AudioStreamInfo(BaseModel):
    """Audio track information"""
    codec_name: str
    channels: int = 2
    sample_rate: Optional[int] = None
    language: Optional[str] = None

    @field_validator('channels')
    @classmethod
    def validate_channels(cls, v):
        if v < 0:
            raise ValueError('Channels must be non-negative')
        return v


class MediaInfo(BaseModel):
    """Probed media metadata, supplied by the caller"""
    duration: Optional[float] = None
    container: Optional[str] = None
    video_codec: Optional[str] = None
    audio_streams: List[AudioStreamInfo] = Field(default_factory=list)
    width: int = 0
    height: int = 0
    size: Optional[int] = None
    bitrate: Optional[int] = None
    has_embedded_thumbnail: bool = True

    @property
    def is_hd(self) -> bool:
        return self.width > 1200 or self.height > 700

    @property
    def audio_codecs(self) -> List[str]:
        return [stream.codec_name for stream in self.audio_streams]


class RendererCapabilities(BaseModel):
    """What the requesting renderer can consume"""
    name: str = 'Generic renderer'
    video_containers: List[str] = Field(default_factory=lambda: ['mpegps', 'mpegts'])
    video_codecs: List[str] = Field(default_factory=lambda: ['mpeg2video'])
    audio_formats: List[str] = Field(default_factory=lambda: ['lpcm', 'wav', 'mp3'])
    accepts_images: bool = True
    transcode_to_wav: bool = False
    transcode_to_mp3: bool = False
    force_44khz: bool = False
    max_video_bitrate: Optional[int] = None  # Mbit/s
    max_width: int = 0
    max_height: int = 0
    max_image_size: int = 0  # longest edge in pixels, 0 is unlimited
    audio_bitrate: Optional[int] = None
    custom_ffmpeg_options: str = ''

    @field_validator('video_containers', 'video_codecs', 'audio_formats')
    @classmethod
    def lowercase_lists(cls, v):
        return [item.lower() for item in v]

    @property
    def preferred_audio_format(self) -> str:
        if self.transcode_to_wav:
            return 'wav'
        if self.transcode_to_mp3:
            return 'mp3'
        return 'lpcm'

    def exceeds_resolution(self, width: int, height: int) -> bool:
        if not self.max_width or not self.max_height:
            return False
        return width > self.max_width or height > self.max_height


class CaptureGeometry(BaseModel):
    """Screen area captured for the screen pseudo-protocol"""
    width: int = 1280
    height: int = 720
    x: int = 0
    y: int = 0
    framerate: int = 25
    display: str = ':0.0'


class OutputParameters(BaseModel):
    """Mutable per-request bag; never shared between requests"""
    model_config = ConfigDict(arbitrary_types_allowed=True)

    time_seek: float = 0.0
    time_end: float = 0.0
    min_buffer_size: float = 1.0
    max_buffer_size: float = 100.0
    wait_before_start: int = 1000  # ms
    hide_buffering: bool = False
    pipe_slots: List[Any] = Field(default_factory=lambda: [None])
    renderer: RendererCapabilities = Field(default_factory=RendererCapabilities)
    header: Optional[str] = None
    buffer_size_hint: Optional[int] = None
    output_path: Optional[Path] = None
    work_dir: Optional[Path] = None
    env: Dict[str, str] = Field(default_factory=dict)
    capture_geometry: Optional[CaptureGeometry] = None
    thumbnail: bool = False
    scratch: Dict[str, Any] = Field(default_factory=dict)
    _claimed: bool = PrivateAttr(default=False)

    @field_validator('time_seek', 'time_end')
    @classmethod
    def validate_offsets(cls, v):
        if v < 0:
            raise ValueError('Offsets must be non-negative')
        return v

    @property
    def write_pipe(self):
        return self.pipe_slots[0] if self.pipe_slots else None

    @write_pipe.setter
    def write_pipe(self, pipe):
        if self.pipe_slots:
            self.pipe_slots[0] = pipe
        else:
            self.pipe_slots.append(pipe)

    def claim(self):
        """Reserve this instance for one launch; a second claim is a defect"""
        if self._claimed:
            raise CommandBuildError('OutputParameters are already used by another request')
        self._claimed = True


class ExecutableInfo(BaseModel):
    """Result of testing an engine's executable"""
    path: str
    available: Optional[bool] = None
    version: Optional[str] = None
    error_type: Optional[ExecutableErrorType] = None
    error_text: Optional[str] = None
    protocols: List[str] = Field(default_factory=list)
    hwaccels: List[str] = Field(default_factory=list)

    @property
    def checked(self) -> bool:
        return self.available is not None
