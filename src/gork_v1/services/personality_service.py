from __future__ import annotations

import re
from dataclasses import dataclass
from pathlib import Path


NAME_MARKER = "# NAME"
CONTENT_MARKER = "# CONTENT:\n"
_PERSONALITY_ID_RE = re.compile(r"^[A-Za-z0-9_\-]+$")


@dataclass(frozen=True)
class Personality:
    value: str
    name: str


class PersonalityService:
    """Reads personality prompt files from ``<prompts_dir>/personality/*.txt``.

    A file carries a display name on the line after ``# NAME`` and the prompt
    body after the ``# CONTENT:`` marker.
    """

    def __init__(self, prompts_dir: Path) -> None:
        self.personality_dir = prompts_dir / "personality"

    def list_personalities(self) -> list[Personality]:
        if not self.personality_dir.is_dir():
            return []
        out: list[Personality] = []
        for path in sorted(self.personality_dir.glob("*.txt")):
            try:
                lines = path.read_text(encoding="utf-8").splitlines()
            except OSError:
                continue
            for index, line in enumerate(lines):
                if line.strip() == NAME_MARKER and index + 1 < len(lines):
                    out.append(Personality(value=path.stem, name=lines[index + 1].strip()))
                    break
        return out

    def find(self, value: str) -> Personality | None:
        for personality in self.list_personalities():
            if personality.value == value:
                return personality
        return None

    def load_prompt_body(self, personality_id: str) -> str:
        """Return the prompt body for ``personality_id``.

        Raises ``OSError`` when the file cannot be read and ``ValueError`` for an
        id that is not a plain file stem.
        """
        if not _PERSONALITY_ID_RE.match(personality_id or ""):
            raise ValueError(f"Invalid personality id: {personality_id!r}")
        content = (self.personality_dir / f"{personality_id}.txt").read_text(encoding="utf-8")
        _, marker, body = content.partition(CONTENT_MARKER)
        if not marker:
            return ""
        return body.strip()
