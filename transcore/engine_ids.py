"""
Engine identities, media kinds and request purposes
"""

from enum import Enum
from typing import Optional


class EngineId(Enum):
    AVISYNTH_FFMPEG = "avisynthffmpeg"
    FFMPEG_AUDIO = "ffmpegaudio"
    FFMPEG_VIDEO = "ffmpegvideo"
    VLC_VIDEO = "vlctranscoder"
    FFMPEG_WEB_VIDEO = "ffmpegwebvideo"
    VLC_WEB_VIDEO = "vlcwebvideo"
    VLC_AUDIO_STREAMING = "vlcaudiostreaming"
    DCRAW = "dcraw"

    def __str__(self):
        return self.value


class MediaKind(Enum):
    AUDIO = "audio"
    VIDEO = "video"
    IMAGE = "image"


class Purpose(Enum):
    VIDEO_SIMPLEFILE = "video_simplefile"
    AUDIO_SIMPLEFILE = "audio_simplefile"
    VIDEO_WEBSTREAM = "video_webstream"
    AUDIO_WEBSTREAM = "audio_webstream"
    MISC = "misc"  # one-shot data producers


# Identifiers found in older configuration files
LEGACY_ENGINE_IDS = {
    'avsffmpeg': EngineId.AVISYNTH_FFMPEG,
    'vlcvideo': EngineId.VLC_VIDEO,
    'rawthumbs': EngineId.DCRAW,
    'ffmpeg': EngineId.FFMPEG_VIDEO,
    'ffmpegdvrmsremux': EngineId.FFMPEG_VIDEO,
    'vlcaudio': EngineId.VLC_AUDIO_STREAMING,
}

_BY_VALUE = {engine_id.value: engine_id for engine_id in EngineId}


def normalize_engine_id(identifier) -> Optional[EngineId]:
    """Map a textual identifier (current or legacy) to an EngineId, or None"""
    if isinstance(identifier, EngineId):
        return identifier
    if not identifier or not isinstance(identifier, str):
        return None
    key = ''.join(identifier.split()).lower()
    if key in _BY_VALUE:
        return _BY_VALUE[key]
    return LEGACY_ENGINE_IDS.get(key)
