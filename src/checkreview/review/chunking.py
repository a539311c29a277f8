"""Split oversized documents into chunks for the large review.

Text splits by character ranges with a small overlap so a sentence cut
at a boundary is still seen whole by one of the chunks. Images split
by contiguous page ranges.
"""

from __future__ import annotations

import math
from dataclasses import replace

from checkreview.constants import CHUNK_OVERLAP_CHARS, ProcessMode
from checkreview.domain.documents import ReviewDocument


def initial_parts(document: ReviewDocument, threshold_chars: int) -> int:
    """Number of chunks a document starts with before any split retry."""
    if document.process_mode == ProcessMode.IMAGE or threshold_chars <= 0:
        return 1
    return max(1, math.ceil(len(document.text) / threshold_chars))


def split_document(
    document: ReviewDocument,
    parts: int,
    *,
    overlap: int = CHUNK_OVERLAP_CHARS,
) -> list[ReviewDocument]:
    if parts <= 1:
        return [document]
    if document.process_mode == ProcessMode.IMAGE:
        return _split_images(document, parts)
    return _split_text(document, parts, overlap)


def _chunk_name(name: str, index: int, total: int) -> str:
    return f"{name} (part {index + 1}/{total})"


def _split_text(
    document: ReviewDocument, parts: int, overlap: int
) -> list[ReviewDocument]:
    text = document.text
    parts = min(parts, max(1, len(text)))
    if parts <= 1:
        return [document]
    base, remainder = divmod(len(text), parts)
    chunks: list[ReviewDocument] = []
    end = 0
    for i in range(parts):
        boundary = end
        end = boundary + base + (1 if i < remainder else 0)
        start = max(0, boundary - overlap) if i else 0
        chunks.append(
            replace(
                document,
                name=_chunk_name(document.name, i, parts),
                text=text[start:end],
                chunk_index=i,
                total_chunks=parts,
            )
        )
    return chunks


def _split_images(
    document: ReviewDocument, parts: int
) -> list[ReviewDocument]:
    pages = document.images
    parts = min(parts, max(1, len(pages)))
    if parts <= 1:
        return [document]
    base, remainder = divmod(len(pages), parts)
    chunks: list[ReviewDocument] = []
    start = 0
    for i in range(parts):
        size = base + (1 if i < remainder else 0)
        chunks.append(
            replace(
                document,
                name=_chunk_name(document.name, i, parts),
                images=pages[start : start + size],
                chunk_index=i,
                total_chunks=parts,
            )
        )
        start += size
    return chunks
