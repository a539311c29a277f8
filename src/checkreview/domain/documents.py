"""Document content as handed to the language model."""

from __future__ import annotations

from dataclasses import dataclass, field

from checkreview.constants import ProcessMode


@dataclass(frozen=True)
class ReviewDocument:
    """Extracted content of one file, or one chunk of a file.

    Exactly one of ``text`` / ``images`` carries content, depending on
    ``process_mode``. Images are base64-encoded PNG pages.
    """

    id: str
    name: str
    process_mode: ProcessMode
    text: str = ""
    images: list[str] = field(default_factory=lambda: list[str]())
    # Set on chunks produced by split retry
    chunk_index: int = 0
    total_chunks: int = 1
    # ReviewDocumentCache row this content came from, if any
    cache_id: str | None = None

    @property
    def size(self) -> int:
        """Rough size used for split decisions (chars or pages)."""
        if self.process_mode == ProcessMode.IMAGE:
            return len(self.images)
        return len(self.text)
