"""Marker-delimited blocks inside files that also hold user content."""

from dataclasses import dataclass
from typing import List, Optional

from hostprep.console import logger
from hostprep.fileops import split_lines


@dataclass(frozen=True)
class ManagedBlock:
    begin: str
    end: str
    body: str

    def render(self) -> str:
        return f"{self.begin}\n{self.body.strip(chr(10))}\n{self.end}\n"

    def present(self, text: str) -> bool:
        return any(line.rstrip("\r") == self.begin for line in split_lines(text))

    def strip(self, text: str) -> str:
        """Remove every begin..end region, markers included.

        A begin marker without a matching end marker is dropped on its own;
        the lines after it are kept.
        """
        kept: List[str] = []
        pending: Optional[List[str]] = None
        for line in split_lines(text):
            bare = line.rstrip("\r")
            if bare == self.begin:
                if pending is not None:
                    self._unterminated(kept, pending)
                pending = []
            elif bare == self.end:
                pending = None
            elif pending is not None:
                pending.append(line)
            else:
                kept.append(line)
        if pending is not None:
            self._unterminated(kept, pending)
        while kept and not kept[-1].strip():
            kept.pop()
        return "\n".join(kept) + "\n" if kept else ""

    def _unterminated(self, kept: List[str], pending: List[str]) -> None:
        logger.warning(f"'{self.begin}' has no matching end marker; keeping {len(pending)} lines after it")
        kept.extend(pending)

    def install(self, text: str) -> str:
        """Outside content followed by one fresh copy of the block."""
        outside = self.strip(text)
        if outside.strip():
            return f"{outside}\n{self.render()}"
        return self.render()


def remove_lines(text: str, lines: List[str]) -> str:
    unwanted = set(lines)
    kept = [line for line in split_lines(text) if line.rstrip("\r") not in unwanted]
    return "\n".join(kept) + "\n" if kept else ""
