"""Key/value patching of line-oriented config files.

A file is parsed into an ordered list of lines, each tagged with the setting
key it declares (if any). Patching removes every line, commented or not, that
declares one of the managed keys and then adds one canonical line per key in
the order given. Unrelated lines are kept verbatim, so applying the same
settings again yields the same bytes.
"""

import enum
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional, Sequence

from hostprep.fileops import split_lines


class Dialect(enum.Enum):
    INI_EQUALS = "ini-equals"
    SPACE_DIRECTIVE = "space-separated-directive"
    SYSTEMD_DROPIN = "systemd-unit-dropin"


_INI_RE = re.compile(r"^\s*(?P<comment>#)?\s*(?P<key>[A-Za-z0-9_./-]+)\s*=\s*(?P<value>.*?)\s*$")
_DIRECTIVE_RE = re.compile(
    r"^\s*(?P<comment>#)?\s*(?P<key>[A-Za-z][A-Za-z0-9]*)(?:\s*=\s*|\s+)(?P<value>\S.*?)\s*$"
)
_SYSTEMD_RE = re.compile(r"^\s*(?P<comment>[#;])?\s*(?P<key>[A-Za-z][A-Za-z0-9]*)\s*=(?P<value>.*?)\s*$")
_MATCH_RE = re.compile(r"^\s*match\s", re.IGNORECASE)

_PATTERNS = {
    Dialect.INI_EQUALS: _INI_RE,
    Dialect.SPACE_DIRECTIVE: _DIRECTIVE_RE,
    Dialect.SYSTEMD_DROPIN: _SYSTEMD_RE,
}


@dataclass(frozen=True)
class ManagedSetting:
    key: str
    value: str

    def render(self, dialect: Dialect) -> str:
        if dialect is Dialect.SPACE_DIRECTIVE:
            return f"{self.key} {self.value}"
        return f"{self.key}={self.value}"


@dataclass
class ConfigLine:
    raw: str
    key: Optional[str] = None
    value: Optional[str] = None
    commented: bool = False


def _normalize(key: str, dialect: Dialect) -> str:
    # sshd keywords are case-insensitive
    return key.lower() if dialect is Dialect.SPACE_DIRECTIVE else key


def parse_line(raw: str, dialect: Dialect) -> ConfigLine:
    m = _PATTERNS[dialect].match(raw)
    if not m:
        return ConfigLine(raw)
    commented = m.group("comment") is not None
    value = m.group("value")
    if commented and dialect is Dialect.SPACE_DIRECTIVE and len(value.split()) != 1:
        # "# Port forwarding is disabled" is prose, not a disabled directive
        return ConfigLine(raw)
    return ConfigLine(raw, m.group("key"), value, commented)


class ConfigDocument:
    def __init__(self, lines: List[ConfigLine], dialect: Dialect, eol: str = ""):
        self.lines = lines
        self.dialect = dialect
        # "\r" for files with CRLF line endings; added lines follow suit
        self.eol = eol

    @classmethod
    def parse(cls, text: str, dialect: Dialect) -> "ConfigDocument":
        raws = split_lines(text)
        eol = "\r" if raws and raws[0].endswith("\r") else ""
        return cls([parse_line(raw, dialect) for raw in raws], dialect, eol)

    def _global_end(self) -> int:
        """Index of the first sshd ``Match`` line, or the end of the file."""
        if self.dialect is Dialect.SPACE_DIRECTIVE:
            for i, line in enumerate(self.lines):
                if _MATCH_RE.match(line.raw):
                    return i
        return len(self.lines)

    def get(self, key: str) -> Optional[str]:
        """Last active value for ``key`` in the global section."""
        wanted = _normalize(key, self.dialect)
        found = None
        for line in self.lines[: self._global_end()]:
            if line.key is not None and not line.commented:
                if _normalize(line.key, self.dialect) == wanted:
                    found = line.value
        return found

    def apply(self, settings: Sequence[ManagedSetting]) -> "ConfigDocument":
        managed = {_normalize(s.key, self.dialect) for s in settings}
        end = self._global_end()
        head = [
            line
            for line in self.lines[:end]
            if line.key is None or _normalize(line.key, self.dialect) not in managed
        ]
        new = []
        for setting in _dedupe(settings, self.dialect):
            raw = setting.render(self.dialect) + self.eol
            new.append(ConfigLine(raw, setting.key, setting.value))
        self.lines = head + new + self.lines[end:]
        return self

    def render(self) -> str:
        if not self.lines:
            return ""
        return "\n".join(line.raw for line in self.lines) + "\n"


def _dedupe(settings: Iterable[ManagedSetting], dialect: Dialect) -> List[ManagedSetting]:
    # last value wins; position follows the first mention
    order: List[str] = []
    latest = {}
    for s in settings:
        k = _normalize(s.key, dialect)
        if k not in latest:
            order.append(k)
        latest[k] = s
    return [latest[k] for k in order]


def patch_text(text: str, dialect: Dialect, settings: Sequence[ManagedSetting]) -> str:
    return ConfigDocument.parse(text, dialect).apply(settings).render()


def settings_from_pairs(pairs: Iterable[Sequence[str]]) -> List[ManagedSetting]:
    return [ManagedSetting(k, v) for k, v in pairs]
