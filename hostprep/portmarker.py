"""The custom SSH port recorded for other scripts to discover.

The marker is a one-line file holding a decimal port. An absent file is a
valid state meaning the default port 22 is in use. There is no locking: the
last writer wins. ``info()`` reports who wrote the marker last and when.
"""

import datetime
import os
import pwd
from dataclasses import dataclass
from typing import Optional

from hostprep.console import logger, print_warning
from hostprep.constants import CONFIG_MODE, PORT_MARKER
from hostprep.fileops import WriteResult, atomic_write


@dataclass
class MarkerInfo:
    port: int
    modified: datetime.datetime
    owner: str


class PortMarker:
    def __init__(self, path: str = PORT_MARKER):
        self.path = path

    def read(self) -> Optional[int]:
        try:
            with open(self.path) as f:
                raw = f.read().strip()
        except FileNotFoundError:
            return None
        if raw.isdigit() and 0 < int(raw) <= 65535:
            return int(raw)
        print_warning(f"Ignoring invalid port marker {self.path}: {raw!r}")
        return None

    def write(self, port: int) -> WriteResult:
        result = atomic_write(self.path, f"{port}\n", CONFIG_MODE)
        logger.info(f"Port marker {self.path} set to {port}")
        return result

    def info(self) -> Optional[MarkerInfo]:
        port = self.read()
        if port is None:
            return None
        st = os.stat(self.path)
        try:
            owner = pwd.getpwuid(st.st_uid).pw_name
        except KeyError:
            owner = str(st.st_uid)
        return MarkerInfo(port, datetime.datetime.fromtimestamp(st.st_mtime), owner)
