"""
Order-preserving option model used to merge custom options into commands
"""

import re
import shlex
from enum import Enum
from typing import Dict, Iterable, List, Optional, Tuple

from .errors import CommandBuildError


class OptionScope(Enum):
    GLOBAL = "global"
    INPUT = "input"
    OUTPUT = "output"


GLOBAL_FLAGS = {
    '-y', '-n', '-loglevel', '-v', '-hide_banner', '-report', '-stats', '-nostats',
    '-nostdin', '-filter_threads', '-filter_complex_threads', '-benchmark',
    '-max_alloc', '-ignore_unknown', '-copy_unknown',
}

INPUT_FLAGS = {
    '-headers', '-user_agent', '-cookies', '-referer', '-reconnect',
    '-reconnect_streamed', '-reconnect_at_eof', '-reconnect_delay_max', '-rw_timeout',
    '-timeout', '-multiple_requests', '-seekable', '-icy', '-rtsp_transport',
    '-analyzeduration', '-probesize', '-fflags', '-re', '-hwaccel', '-hwaccel_device',
    '-itsoffset', '-stream_loop', '-live_start_index', '-http_proxy', '-auth_type',
    '-protocol_whitelist', '-allowed_media_types',
}

# Options whose value is an HTTP header blob
HEADER_FLAGS = {'-headers'}

HEADER_FIELDS = (
    'User-Agent', 'Cookie', 'Referer', 'Accept', 'Range',
    'Connection', 'Content-Length', 'Content-Type',
)
CRLF = '\r\n'

_FIELD_RE = re.compile(
    r'[ \t]*(?<![\w-])(' + '|'.join(re.escape(f) for f in HEADER_FIELDS) + r'):',
    re.IGNORECASE,
)
_NUMBER_RE = re.compile(r'^-\d+(\.\d+)?$')


def normalize_header(value: str) -> str:
    """Put each known header field on its own CRLF-terminated line"""
    text = re.sub(r'\r?\n', CRLF, value.strip())
    if not text:
        return text

    def _split(match):
        start = match.start()
        field = match.group(0).lstrip(' \t')
        if start == 0 or text.endswith(CRLF, 0, start):
            return field
        return CRLF + field

    text = _FIELD_RE.sub(_split, text)
    lines = [line.rstrip() for line in text.split(CRLF)]
    return CRLF.join(line for line in lines if line) + CRLF


def classify_flag(flag: str) -> OptionScope:
    if flag in GLOBAL_FLAGS:
        return OptionScope.GLOBAL
    if flag in INPUT_FLAGS:
        return OptionScope.INPUT
    return OptionScope.OUTPUT


def _is_flag(token: str) -> bool:
    return token.startswith('-') and len(token) > 1 and not _NUMBER_RE.match(token)


class OptionTable:
    """Flag -> optional value, kept in insertion order.

    Re-adding a flag replaces its value in place. Transferred entries are
    removed, so a flag can reach an argument list only once.
    """

    def __init__(self, options: Optional[Iterable[Tuple[str, Optional[str]]]] = None):
        self._values: Dict[str, Optional[str]] = {}
        self._scopes: Dict[str, OptionScope] = {}
        for flag, value in options or []:
            self.add(flag, value)

    def add(self, flag: str, value: Optional[str] = None, scope: Optional[OptionScope] = None):
        if not isinstance(flag, str) or not _is_flag(flag):
            raise CommandBuildError(f'invalid option flag: {flag!r}')
        if value is not None and flag in HEADER_FLAGS:
            value = normalize_header(value)
        self._values[flag] = value
        self._scopes[flag] = scope or self._scopes.get(flag) or classify_flag(flag)
        return self

    def update(self, other: 'OptionTable'):
        """Merge another table; its values win"""
        for flag, value in other.items():
            self.add(flag, value, other.scope_of(flag))
        return self

    def get(self, flag: str, default=None):
        return self._values.get(flag, default)

    def scope_of(self, flag: str) -> OptionScope:
        return self._scopes[flag]

    def items(self) -> List[Tuple[str, Optional[str]]]:
        return list(self._values.items())

    def __contains__(self, flag):
        return flag in self._values

    def __len__(self):
        return len(self._values)

    def is_empty(self) -> bool:
        return not self._values

    def _emit(self, flags: List[str], out: List[str]) -> List[str]:
        for flag in flags:
            if flag not in self._values:
                continue
            value = self._values.pop(flag)
            del self._scopes[flag]
            out.append(flag)
            if value is not None:
                out.append(value)
        return out

    def transfer(self, flags: Iterable[str], out: List[str]) -> List[str]:
        """Move the named flags (those still present) into out"""
        return self._emit(list(flags), out)

    def transfer_scope(self, scope: OptionScope, out: List[str]) -> List[str]:
        return self._emit([f for f in self._values if self._scopes[f] == scope], out)

    def transfer_globals(self, out: List[str]) -> List[str]:
        return self.transfer_scope(OptionScope.GLOBAL, out)

    def transfer_input_file_options(self, out: List[str]) -> List[str]:
        return self.transfer_scope(OptionScope.INPUT, out)

    def transfer_all(self, out: List[str]) -> List[str]:
        return self._emit(list(self._values), out)

    def __repr__(self):
        return f'OptionTable({self.items()!r})'


def tokenize_options(text: Optional[str]) -> List[str]:
    if not text or not text.strip():
        return []
    try:
        return shlex.split(text)
    except ValueError as e:
        raise CommandBuildError(f'cannot tokenize options {text!r}: {e}') from e


def parse_options(text: Optional[str]) -> OptionTable:
    """Parse "-flag value -switch" text into an OptionTable"""
    table = OptionTable()
    tokens = tokenize_options(text)
    i = 0
    while i < len(tokens):
        flag = tokens[i]
        if not _is_flag(flag):
            raise CommandBuildError(f'option value {flag!r} has no preceding flag in {text!r}')
        value = None
        if i + 1 < len(tokens) and not _is_flag(tokens[i + 1]):
            value = tokens[i + 1]
            i += 1
        table.add(flag, value)
        i += 1
    return table
