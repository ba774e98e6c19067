"""
Executable detection: file checks, versions, protocols and hardware acceleration
"""

import logging
import os
import re
import shutil
from pathlib import Path
from typing import List, Optional, Tuple

from .errors import ExecutableErrorType
from .models import ExecutableInfo
from .process_supervisor import launch

LOGGER = logging.getLogger(__name__)

PROBE_TIMEOUT = 15

VERSION_ARGS = {
    'ffmpeg': ['-version'],
    'vlc': ['--version'],
    'dcraw': [],  # prints its usage, including the version, when run bare
}

VERSION_PATTERNS = {
    'ffmpeg': re.compile(r'ffmpeg version (\S+)'),
    'vlc': re.compile(r'VLC (?:media player |version )?(\d[\w.\-]*)'),
    'dcraw': re.compile(r'"dcraw" v(\S+)'),
}


def resolve_executable_path(executable: str) -> Optional[str]:
    """Absolute path for an executable name or path, None if it cannot be found"""
    if not executable:
        return None
    if os.sep in executable or (os.altsep and os.altsep in executable):
        return executable if Path(executable).exists() else None
    return shutil.which(executable)


def check_executable_file(executable: str) -> Optional[str]:
    """Error text when the file is missing or not executable, else None"""
    path = resolve_executable_path(executable)
    if path is None:
        return f'executable not found: {executable}'
    p = Path(path)
    if not p.is_file():
        return f'not a regular file: {path}'
    if not os.access(path, os.R_OK | os.X_OK):
        return f'insufficient permissions to run {path}'
    return None


def _probe(executable: str, args: List[str]) -> Tuple[bool, List[str]]:
    process = launch([executable] + args).run_blocking(timeout=PROBE_TIMEOUT)
    return process.is_success, process.output_lines + process.results


def detect_version(family: str, executable: str) -> Optional[str]:
    pattern = VERSION_PATTERNS.get(family)
    if pattern is None:
        return None
    _, lines = _probe(executable, VERSION_ARGS[family])
    for line in lines:
        match = pattern.search(line)
        if match:
            return match.group(1)
    return None


def parse_protocols(lines: List[str]) -> List[str]:
    """Input protocols from `ffmpeg -protocols` output"""
    protocols = []
    in_input = False
    for line in lines:
        stripped = line.strip()
        if stripped.startswith('Input:'):
            in_input = True
            continue
        if stripped.startswith('Output:'):
            break
        if in_input and stripped:
            protocols.append(stripped)
    return protocols


def detect_protocols(executable: str) -> List[str]:
    ok, lines = _probe(executable, ['-hide_banner', '-protocols'])
    if not ok:
        return []
    return parse_protocols(lines)


def parse_hwaccels(lines: List[str]) -> List[str]:
    methods = []
    found = False
    for line in lines:
        stripped = line.strip()
        if stripped.startswith('Hardware acceleration methods'):
            found = True
            continue
        if found and stripped:
            methods.append(stripped)
    return methods


def detect_hwaccels(executable: str) -> List[str]:
    ok, lines = _probe(executable, ['-hide_banner', '-hwaccels'])
    if not ok:
        return []
    return parse_hwaccels(lines)


def probe_executable(family: str, executable: str, detect_features: bool = False) -> ExecutableInfo:
    """Check an executable the way the registry needs it"""
    info = ExecutableInfo(path=executable)
    error = check_executable_file(executable)
    if error:
        info.available = False
        info.error_type = ExecutableErrorType.GENERAL
        info.error_text = error
        LOGGER.warning("%s", error)
        return info

    version = detect_version(family, executable)
    if version is None:
        info.available = False
        info.error_type = ExecutableErrorType.GENERAL
        info.error_text = f'could not determine the version of {executable}'
        LOGGER.warning("Could not determine the version of %s", executable)
        return info

    info.available = True
    info.version = version
    if detect_features and family == 'ffmpeg':
        info.protocols = detect_protocols(executable)
        info.hwaccels = detect_hwaccels(executable)
        LOGGER.debug("FFmpeg supported protocols: %s", info.protocols)
    LOGGER.info("Found %s %s at %s", family, version, executable)
    return info
