"""
URL filters for web streams: exclusions, automatic options and rewrites

Filter file layout:

    # comment
    EXCLUDE
    ^rtmp://.*\\.example\\.com
    OPTIONS
    youtube\\.com | -user_agent "Mozilla/5.0"
    REPLACE
    ^http://old\\.host/ | http://new.host/
"""

import logging
import re
from pathlib import Path
from typing import Any, Dict, Optional

from .option_table import OptionTable, parse_options
from .errors import CommandBuildError

LOGGER = logging.getLogger(__name__)

SECTIONS = ('EXCLUDE', 'OPTIONS', 'REPLACE')


class PatternMap:
    """Regex -> value map searched for the leftmost hit.

    Every regex is compiled on its own, so inline flags and group names
    never clash between lines. On ties the pattern added first wins.
    """

    def __init__(self):
        self._values: Dict[str, Any] = {}
        self._compiled: Dict[str, re.Pattern] = {}

    def add(self, regex: str, value: Any = None):
        # invalid patterns fail here, not at match time
        self._compiled[regex] = re.compile(regex)
        self._values[regex] = value

    def get(self, regex: str, default=None):
        return self._values.get(regex, default)

    def __len__(self):
        return len(self._values)

    def match(self, text: str) -> Optional[str]:
        """Return the regex that matches text, or None"""
        best: Optional[str] = None
        best_start = -1
        for regex, pattern in self._compiled.items():
            found = pattern.search(text)
            if found and (best is None or found.start() < best_start):
                best, best_start = regex, found.start()
        return best


class WebFilters:
    """Parsed contents of a web filter file"""

    def __init__(self):
        self.excludes = PatternMap()
        self.auto_options = PatternMap()
        self.replacements = PatternMap()

    def is_excluded(self, url: str) -> bool:
        return self.excludes.match(url) is not None

    def rewrite(self, url: str) -> str:
        regex = self.replacements.match(url)
        if regex is None:
            return url
        rewritten = re.sub(regex, self.replacements.get(regex) or '', url)
        LOGGER.debug("Modified url: %s", rewritten)
        return rewritten

    def options_for(self, url: str) -> OptionTable:
        regex = self.auto_options.match(url)
        table = OptionTable()
        if regex is not None and self.auto_options.get(regex) is not None:
            table.update(self.auto_options.get(regex))
        return table


def read_web_filters(path: Optional[Path]) -> WebFilters:
    """Load a filter file; a missing or unreadable file gives empty filters"""
    filters = WebFilters()
    if path is None:
        return filters
    sections = {
        'EXCLUDE': filters.excludes,
        'OPTIONS': filters.auto_options,
        'REPLACE': filters.replacements,
    }
    current = None
    try:
        with open(path, 'r', encoding='utf-8') as f:
            for line_number, raw in enumerate(f, 1):
                line = raw.strip()
                if not line or line.startswith('#'):
                    continue
                if line in sections:
                    current = line
                    continue
                if current is None:
                    continue
                regex, _, value = line.partition(' | ')
                try:
                    if current == 'OPTIONS':
                        sections[current].add(regex, parse_options(value) if value else None)
                    else:
                        sections[current].add(regex, value or None)
                except (re.error, CommandBuildError) as e:
                    LOGGER.warning("Skipping web filter %s:%d (%s)", path, line_number, e)
    except OSError as e:
        LOGGER.debug("Error reading web filters from %s: %s", path, e)
    return filters
