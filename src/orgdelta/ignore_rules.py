"""`.forceignore` handling.

Each `.forceignore` applies to its own directory and everything below it.
Patterns follow the gitignore dialect the sf CLI accepts: `#` comments,
`!` negation, a leading `/` anchors to the file's directory, a trailing `/`
restricts the pattern to directories, and `**/` means any depth. The last
matching pattern wins, deeper files override shallower ones.
"""

from __future__ import annotations

from dataclasses import dataclass
from fnmatch import fnmatchcase
from pathlib import Path, PurePosixPath

from .config import FORCEIGNORE_NAME


@dataclass(frozen=True)
class ForceignorePattern:
    glob: str
    negate: bool = False
    dir_only: bool = False
    anchored: bool = False

    @classmethod
    def parse(cls, line: str) -> ForceignorePattern | None:
        text = line.strip()
        if not text or text.startswith("#"):
            return None
        negate = text.startswith("!")
        if negate:
            text = text[1:]
        dir_only = text.endswith("/")
        text = text.rstrip("/")
        while text.startswith("**/"):
            text = text[3:]
        anchored = text.startswith("/")
        text = text.lstrip("/")
        if not text:
            return None
        return cls(glob=text, negate=negate, dir_only=dir_only, anchored=anchored)

    def matches(self, parts: tuple[str, ...], is_dir: bool) -> bool:
        if self.dir_only and not is_dir:
            return False
        if self.anchored:
            return fnmatchcase("/".join(parts), self.glob)
        if "/" not in self.glob:
            return fnmatchcase(parts[-1], self.glob)
        return any(
            fnmatchcase("/".join(parts[start:]), self.glob) for start in range(len(parts))
        )


def _subjects(parts: tuple[str, ...], is_dir: bool):
    """Yield the path and each of its parent directories, shallowest first."""
    for end in range(1, len(parts) + 1):
        yield parts[:end], end < len(parts) or is_dir


class IgnoreRules:
    def __init__(self) -> None:
        self._by_base: dict[tuple[str, ...], tuple[ForceignorePattern, ...]] = {}

    def add_spec(self, base_relpath: PurePosixPath, lines: list[str]) -> None:
        patterns = tuple(
            pattern
            for pattern in (ForceignorePattern.parse(line) for line in lines)
            if pattern is not None
        )
        if patterns:
            self._by_base[base_relpath.parts] = patterns

    def load_if_exists(self, root: Path | str, dir_relpath: PurePosixPath) -> None:
        candidate = Path(root).joinpath(*dir_relpath.parts, FORCEIGNORE_NAME)
        if not candidate.is_file():
            return
        lines = candidate.read_text(encoding="utf-8", errors="replace").splitlines()
        self.add_spec(dir_relpath, lines)

    def is_ignored(self, relpath: PurePosixPath, is_dir: bool) -> bool:
        parts = relpath.parts
        ignored = False
        for depth in range(len(parts)):
            patterns = self._by_base.get(parts[:depth])
            if not patterns:
                continue
            local = parts[depth:]
            for pattern in patterns:
                if any(
                    pattern.matches(subject, subject_is_dir)
                    for subject, subject_is_dir in _subjects(local, is_dir)
                ):
                    ignored = not pattern.negate
        return ignored
