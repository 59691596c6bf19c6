"""Typed reader/writer for the PNG chunk stream.

A PNG file is an 8-byte signature followed by chunks, each laid out as::

    4-byte big-endian length | 4-byte ASCII type | payload | 4-byte CRC-32(type + payload)

The stream ends with an IEND chunk. Any error in length or CRC makes the file
unreadable for standard viewers, so every chunk is rebuilt through `PngChunk`.
"""

import struct
import zlib
from dataclasses import dataclass
from enum import Enum

from pixname.exceptions import CorruptContainerError


PNG_SIGNATURE = b"\x89PNG\r\n\x1a\n"

XMP_KEYWORD = "XML:com.adobe.xmp"

# Chunk length is a 31-bit unsigned value per the PNG specification
MAX_CHUNK_LENGTH = 2**31 - 1

# iTXt keywords are 1-79 Latin-1 bytes
MAX_KEYWORD_LENGTH = 79


class ChunkPlacement(str, Enum):
    """Where a new metadata chunk goes in the stream."""

    BEFORE_IEND = "before_iend"
    BEFORE_IDAT = "before_idat"


def crc32(data: bytes) -> int:
    """CRC-32 with the standard reflected polynomial 0xEDB88320, as required by PNG."""
    return zlib.crc32(data) & 0xFFFFFFFF


@dataclass(frozen=True)
class PngChunk:
    """A single chunk: type tag and payload. Length and CRC are derived."""

    chunk_type: bytes
    data: bytes = b""

    def __post_init__(self) -> None:
        if len(self.chunk_type) != 4 or not self.chunk_type.isalpha():
            raise ValueError(f"Invalid chunk type: {self.chunk_type!r}")
        if len(self.data) > MAX_CHUNK_LENGTH:
            raise ValueError(f"Chunk payload too large: {len(self.data)} bytes")

    @property
    def name(self) -> str:
        return self.chunk_type.decode("ascii")

    @property
    def crc(self) -> int:
        return crc32(self.chunk_type + self.data)

    def to_bytes(self) -> bytes:
        return struct.pack(">I", len(self.data)) + self.chunk_type + self.data + struct.pack(">I", self.crc)

    def __str__(self) -> str:
        return f"PngChunk({self.name}, {len(self.data)} bytes)"


def read_chunks(data: bytes, verify_crc: bool = True) -> list[PngChunk]:
    """Parse a PNG byte string into its chunks, up to and including IEND.

    Raises:
        CorruptContainerError: On a bad signature, truncated chunk, CRC mismatch or missing IEND.
    """
    if not data.startswith(PNG_SIGNATURE):
        raise CorruptContainerError("Invalid PNG signature")

    chunks: list[PngChunk] = []
    position = len(PNG_SIGNATURE)
    total = len(data)

    while position < total:
        if position + 12 > total:
            raise CorruptContainerError(f"Truncated chunk header at offset {position}")

        (length,) = struct.unpack_from(">I", data, position)
        if length > MAX_CHUNK_LENGTH:
            raise CorruptContainerError(f"Invalid chunk length {length} at offset {position}")

        end = position + 12 + length
        if end > total:
            raise CorruptContainerError(f"Truncated chunk at offset {position}")

        chunk_type = data[position + 4 : position + 8]
        payload = data[position + 8 : position + 8 + length]
        (stored_crc,) = struct.unpack_from(">I", data, position + 8 + length)

        try:
            chunk = PngChunk(chunk_type, payload)
        except ValueError as e:
            raise CorruptContainerError(f"{e} at offset {position}") from e

        if verify_crc and chunk.crc != stored_crc:
            raise CorruptContainerError(f"CRC mismatch in {chunk.name} chunk at offset {position}")

        chunks.append(chunk)
        position = end
        if chunk_type == b"IEND":
            break

    if not chunks or chunks[-1].chunk_type != b"IEND":
        raise CorruptContainerError("Missing IEND chunk")
    return chunks


def write_chunks(chunks: list[PngChunk]) -> bytes:
    """Serialize chunks back into a PNG byte string."""
    return PNG_SIGNATURE + b"".join(chunk.to_bytes() for chunk in chunks)


def build_itxt_chunk(keyword: str, text: str, language: str = "", translated_keyword: str = "") -> PngChunk:
    """Build an uncompressed iTXt chunk.

    Payload layout: keyword NUL, compression flag (0), compression method (0),
    language tag NUL, translated keyword NUL, UTF-8 text.
    """
    keyword_bytes = keyword.encode("latin-1")
    if not 1 <= len(keyword_bytes) <= MAX_KEYWORD_LENGTH:
        raise ValueError(f"iTXt keyword must be 1-{MAX_KEYWORD_LENGTH} bytes: {keyword!r}")

    payload = b"".join(
        [
            keyword_bytes,
            b"\x00",
            b"\x00",
            b"\x00",
            language.encode("ascii"),
            b"\x00",
            translated_keyword.encode("utf-8"),
            b"\x00",
            text.encode("utf-8"),
        ]
    )
    return PngChunk(b"iTXt", payload)


def itxt_keyword(chunk: PngChunk) -> str | None:
    """Leading keyword of an iTXt chunk, or None for other chunks."""
    if chunk.chunk_type != b"iTXt":
        return None
    separator = chunk.data.find(b"\x00", 0, MAX_KEYWORD_LENGTH + 1)
    if separator <= 0:
        return None
    return chunk.data[:separator].decode("latin-1")


def parse_itxt(chunk: PngChunk) -> tuple[str, str]:
    """Decode an iTXt chunk into (keyword, text).

    Raises:
        CorruptContainerError: If the payload layout is invalid.
    """
    data = chunk.data
    try:
        keyword_end = data.index(b"\x00")
        compressed = data[keyword_end + 1]
        language_end = data.index(b"\x00", keyword_end + 3)
        translated_end = data.index(b"\x00", language_end + 1)
    except (ValueError, IndexError) as e:
        raise CorruptContainerError("Malformed iTXt chunk") from e

    keyword = data[:keyword_end].decode("latin-1")
    text = data[translated_end + 1 :]
    if compressed:
        try:
            text = zlib.decompress(text)
        except zlib.error as e:
            raise CorruptContainerError(f"Malformed compressed iTXt chunk '{keyword}'") from e
    return keyword, text.decode("utf-8", errors="replace")


def find_itxt_text(chunks: list[PngChunk], keyword: str) -> str | None:
    """Text of the first iTXt chunk with the given keyword."""
    for chunk in chunks:
        if itxt_keyword(chunk) == keyword:
            return parse_itxt(chunk)[1]
    return None


def inject_chunk(
    chunks: list[PngChunk],
    new_chunk: PngChunk,
    placement: ChunkPlacement = ChunkPlacement.BEFORE_IEND,
) -> list[PngChunk]:
    """Insert `new_chunk`, replacing any iTXt chunk carrying the same keyword.

    Args:
        chunks: Existing chunk stream ending with IEND.
        new_chunk: Chunk to insert.
        placement: Before IEND, or before the first IDAT chunk.

    Returns:
        A new chunk list.
    """
    keyword = itxt_keyword(new_chunk)
    if keyword is not None:
        chunks = [chunk for chunk in chunks if itxt_keyword(chunk) != keyword]
    else:
        chunks = list(chunks)

    anchor = b"IDAT" if placement is ChunkPlacement.BEFORE_IDAT else b"IEND"
    index = next((i for i, chunk in enumerate(chunks) if chunk.chunk_type == anchor), None)
    if index is None:
        index = next((i for i, chunk in enumerate(chunks) if chunk.chunk_type == b"IEND"), len(chunks))

    chunks.insert(index, new_chunk)
    return chunks
