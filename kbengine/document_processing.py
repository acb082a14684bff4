"""Document loading and record-oriented text chunking."""

from __future__ import annotations

import re
from collections.abc import Iterable
from pathlib import Path

import pypdf

from .config import config
from .models import Chunk

logger = config.get_logger(__name__)

_NEWLINE_RUN = re.compile(r"\n+")


class DocumentLoader:
    """Handles loading of PDF and TXT documents."""

    @staticmethod
    def load_pdf(file_path: Path) -> str:
        """Load text content from a PDF file.

        Returns:
            The extracted text, one line group per page.
        """
        try:
            with file_path.open("rb") as file:
                pdf_reader = pypdf.PdfReader(file)
                pages = [page.extract_text() or "" for page in pdf_reader.pages]
        except Exception:
            logger.exception("Error loading PDF %s", file_path)
            raise
        else:
            return "\n".join(pages)

    @staticmethod
    def load_txt(file_path: Path) -> str:
        """Load text content from a TXT file.

        Returns:
            The file content as a string.
        """
        try:
            with file_path.open(encoding="utf-8") as file:
                text = file.read()
            logger.info("Successfully loaded TXT file %s", file_path.name)
        except Exception:
            logger.exception("Error loading TXT %s", file_path)
            raise
        else:
            return text

    @classmethod
    def load_document(cls, file_path: Path) -> str:
        """Load document based on file extension.

        Args:
            file_path: Path to the document file.

        Returns:
            The text content of the document as a string.

        Raises:
            ValueError: If the file type is not supported.
        """
        file_ext = file_path.suffix.lower()
        if file_ext == ".pdf":
            return cls.load_pdf(file_path)
        if file_ext == ".txt":
            return cls.load_txt(file_path)
        msg = f"Unsupported file type: {file_ext}"
        raise ValueError(msg)


def normalize_text(text: str) -> str:
    """Drop carriage returns and surrounding whitespace."""  # noqa: DOC201
    return text.replace("\r", "").strip()


def split_oversized(chunk: str, max_chunk_length: int) -> list[str]:
    """Slice a chunk into consecutive pieces of at most ``max_chunk_length``.

    Returns:
        The chunk itself when it fits, otherwise its fixed-size slices.
    """
    if len(chunk) <= max_chunk_length:
        return [chunk]
    return [
        chunk[start : start + max_chunk_length]
        for start in range(0, len(chunk), max_chunk_length)
    ]


def chunk_text(
    text: str,
    max_chunk_length: int,
    boundary_tokens: Iterable[str] = config.CHUNK_BOUNDARY_TOKENS,
    delimiter: str = config.CHUNK_DELIMITER,
) -> list[str]:
    """Split text into record-oriented chunks no longer than ``max_chunk_length``.

    A line starting with one of ``boundary_tokens`` opens a new record; every
    other line is appended to the current one. Records are joined with
    ``delimiter`` and then sliced when they exceed the length cap.

    Returns:
        Ordered list of chunk strings.

    Raises:
        ValueError: If ``max_chunk_length`` is not positive.
    """
    if max_chunk_length <= 0:
        msg = "max_chunk_length must be > 0"
        raise ValueError(msg)

    tokens = tuple(boundary_tokens)
    lines = [line.strip() for line in _NEWLINE_RUN.split(text)]

    records: list[str] = []
    buffer: list[str] = []
    for line in lines:
        if not line:
            continue
        if tokens and line.startswith(tokens) and buffer:
            records.append(delimiter.join(buffer))
            buffer = [line]
        else:
            buffer.append(line)
    if buffer:
        records.append(delimiter.join(buffer))

    return [
        piece for record in records for piece in split_oversized(record, max_chunk_length)
    ]


class RecordChunker:
    """Chunks documents on record boundaries with a hard length cap."""

    def __init__(
        self,
        max_chunk_length: int | None = None,
        boundary_tokens: Iterable[str] | None = None,
        delimiter: str | None = None,
    ) -> None:
        """Initialize the chunker.

        Args:
            max_chunk_length: Hard cap on chunk length. If None, uses
                config.MAX_CHUNK_LENGTH.
            boundary_tokens: Line prefixes that start a new record. If None,
                uses config.CHUNK_BOUNDARY_TOKENS.
            delimiter: String used to join the lines of a record. If None,
                uses config.CHUNK_DELIMITER.
        """
        self.max_chunk_length = (
            max_chunk_length if max_chunk_length is not None else config.MAX_CHUNK_LENGTH
        )
        self.boundary_tokens = tuple(
            boundary_tokens
            if boundary_tokens is not None
            else config.CHUNK_BOUNDARY_TOKENS
        )
        self.delimiter = delimiter if delimiter is not None else config.CHUNK_DELIMITER

    def chunk_text(self, text: str, source: str = "document") -> list[Chunk]:
        """Split text into ordered chunks owned by ``source``.

        Returns:
            A list of Chunk objects indexed from zero.
        """
        pieces = chunk_text(
            text,
            self.max_chunk_length,
            boundary_tokens=self.boundary_tokens,
            delimiter=self.delimiter,
        )
        chunks = [
            Chunk(index=index, content=content, document_name=source)
            for index, content in enumerate(pieces)
        ]
        logger.info("Text split into %d chunks", len(chunks))
        return chunks
