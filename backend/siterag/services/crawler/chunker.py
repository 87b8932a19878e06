"""Sentence-aware chunking of extracted pages into index records."""

import re
from typing import List

from .constants import (
    MIN_CHUNK_LENGTH,
    MIN_DESCRIPTION_LENGTH,
    PAGE_SUMMARY_SECTION,
)
from .models import ChunkRecord, PageDocument, PageSection

DEFAULT_CHUNK_SIZE = 600
FALLBACK_CHUNK_SIZE = 800

# Split after Japanese/English sentence terminators and line breaks
_SENTENCE_BOUNDARY = re.compile(r"(?<=[。．！!？?\n])")


def split_into_chunks(text: str, max_size: int = DEFAULT_CHUNK_SIZE) -> List[str]:
    """
    Split text into chunks of at most max_size characters on sentence boundaries.

    A single sentence longer than max_size is emitted as its own oversized chunk
    rather than cut mid-sentence.
    """
    text = (text or "").strip()
    if not text:
        return []
    if len(text) <= max_size:
        return [text]

    chunks: List[str] = []
    buffer = ""
    for sentence in _SENTENCE_BOUNDARY.split(text):
        if not sentence:
            continue
        if buffer and len(buffer) + len(sentence) > max_size:
            piece = buffer.strip()
            if piece:
                chunks.append(piece)
            buffer = sentence
        else:
            buffer += sentence
    piece = buffer.strip()
    if piece:
        chunks.append(piece)
    return chunks


def section_text(section: PageSection) -> str:
    lines = [f"【{section.section_title}】"]
    lines.extend(section.content_lines)
    lines.extend(section.link_lines)
    return "\n".join(lines)


def build_page_chunks(
    page: PageDocument,
    company_id: str,
    agent_id: str,
    chunk_size: int = DEFAULT_CHUNK_SIZE,
    fallback_chunk_size: int = FALLBACK_CHUNK_SIZE,
) -> List[ChunkRecord]:
    """Turn one extracted page into chunk records ready for embedding."""
    records: List[ChunkRecord] = []

    def _add(section_title: str, text: str) -> None:
        records.append(ChunkRecord(
            company_id=company_id,
            agent_id=agent_id,
            url=page.url,
            title=page.title,
            section_title=section_title,
            text=text,
        ))

    for section in page.sections:
        if section.unstructured:
            body = "\n".join(section.content_lines)
            parts = split_into_chunks(body, fallback_chunk_size)
            for index, part in enumerate(parts, start=1):
                if len(part) < MIN_CHUNK_LENGTH:
                    continue
                _add(f"{section.section_title} (part {index})", part)
            continue

        for part in split_into_chunks(section_text(section), chunk_size):
            if len(part) < MIN_CHUNK_LENGTH:
                continue
            _add(section.section_title, part)

    description = (page.description or "").strip()
    if len(description) > MIN_DESCRIPTION_LENGTH:
        _add(PAGE_SUMMARY_SECTION, f"{page.title}\n{description}")

    return records
