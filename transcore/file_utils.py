"""
File classification and path helpers
"""

from pathlib import Path
from typing import Optional, Tuple

from .backend_profiles import RAW_CONTAINERS
from .engine_ids import MediaKind
from .models import ResourceDescriptor

# Extension -> container name used by the engines
VIDEO_EXTS = {
    '.mkv': 'matroska', '.mp4': 'mp4', '.m4v': 'mp4', '.mov': 'mov', '.avi': 'avi',
    '.wmv': 'asf', '.asf': 'asf', '.flv': 'flv', '.ts': 'mpegts', '.m2ts': 'm2ts',
    '.mpg': 'mpegps', '.mpeg': 'mpegps', '.vob': 'mpegps', '.webm': 'webm',
    '.ogv': 'ogg', '.3gp': '3gp', '.dvr-ms': 'dvr-ms', '.divx': 'divx',
}
AUDIO_EXTS = {
    '.mp3': 'mp3', '.flac': 'flac', '.ogg': 'ogg', '.oga': 'oga', '.wav': 'wav',
    '.aac': 'aac', '.m4a': 'm4a', '.wma': 'wma', '.ape': 'ape', '.aiff': 'aiff',
    '.aif': 'aiff', '.dts': 'dts', '.ac3': 'ac3', '.mka': 'mka', '.opus': 'opus',
    '.wv': 'wv', '.mpc': 'mpc', '.tta': 'tta',
}
IMAGE_EXTS = {f'.{container}': container for container in RAW_CONTAINERS}


def classify_path(path: Path) -> Tuple[Optional[MediaKind], Optional[str]]:
    """(kind, container) from the file extension"""
    suffix = path.suffix.lower()
    if suffix in VIDEO_EXTS:
        return MediaKind.VIDEO, VIDEO_EXTS[suffix]
    if suffix in AUDIO_EXTS:
        return MediaKind.AUDIO, AUDIO_EXTS[suffix]
    if suffix in IMAGE_EXTS:
        return MediaKind.IMAGE, IMAGE_EXTS[suffix]
    return None, None


def resource_from_locator(locator: str, kind: Optional[MediaKind] = None) -> ResourceDescriptor:
    """Resource for a local path or URL; URLs default to video"""
    probe = ResourceDescriptor(locator=locator, kind=kind or MediaKind.VIDEO)
    if probe.protocol and probe.protocol != 'file':
        return probe
    path = Path(locator[len('file://'):] if locator.startswith('file://') else locator)
    detected_kind, container = classify_path(path)
    size = path.stat().st_size if path.is_file() else None
    return ResourceDescriptor(
        locator=str(path),
        kind=kind or detected_kind or MediaKind.VIDEO,
        container=container,
        size=size,
    )


def format_file_size(size_bytes):
    """Convert bytes to human readable format"""
    for unit in ['B', 'KB', 'MB', 'GB']:
        if size_bytes < 1024.0:
            return f"{size_bytes:.1f} {unit}"
        size_bytes /= 1024.0
    return f"{size_bytes:.1f} TB"
