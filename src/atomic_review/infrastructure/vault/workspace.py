"""Terminal stand-in for a note editor: "opening" a note prints it."""

import logging
from collections.abc import Callable
from pathlib import Path

import typer

from atomic_review.domain.ports import Workspace
from atomic_review.infrastructure.utils.text import parse_frontmatter

logger = logging.getLogger(__name__)

PREVIEW_LINES = 20


class TerminalWorkspace(Workspace):
    def __init__(
        self,
        root: Path,
        echo: Callable[[str], None] = typer.echo,
        preview_lines: int = PREVIEW_LINES,
    ):
        self.root = Path(root)
        self.echo = echo
        self.preview_lines = preview_lines
        self._active: str | None = None

    async def open_item(self, path: str) -> bool:
        file = self.root / path
        if not file.is_file():
            return False
        try:
            text = file.read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError) as e:
            logger.warning(f"Could not read {path}: {e}")
            return False

        self._active = path
        _, body = parse_frontmatter(text)
        lines = body.strip().splitlines()

        self.echo("")
        self.echo(f"=== {path} ===")
        for line in lines[: self.preview_lines]:
            self.echo(line)
        if len(lines) > self.preview_lines:
            self.echo(f"... ({len(lines) - self.preview_lines} more lines)")
        return True

    def active_item(self) -> str | None:
        return self._active
