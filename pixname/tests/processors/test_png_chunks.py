"""Unit tests for the PNG chunk reader/writer."""

import struct

import pytest
from PIL import Image

from pixname.exceptions import CorruptContainerError
from pixname.processors.png_chunks import (
    PNG_SIGNATURE,
    XMP_KEYWORD,
    ChunkPlacement,
    PngChunk,
    build_itxt_chunk,
    find_itxt_text,
    inject_chunk,
    itxt_keyword,
    parse_itxt,
    read_chunks,
    write_chunks,
)


@pytest.fixture
def png_bytes(make_image) -> bytes:
    return make_image("sample.png").read_bytes()


class TestPngChunk:
    """Tests for PngChunk."""

    def test_iend_serialization(self):
        """IEND has an empty payload and the well-known CRC AE 42 60 82."""
        chunk = PngChunk(b"IEND")

        assert chunk.crc == 0xAE426082
        assert chunk.to_bytes() == b"\x00\x00\x00\x00IEND\xaeB`\x82"

    def test_length_prefix(self):
        chunk = PngChunk(b"tEXt", b"Title\x00Hello")

        assert struct.unpack(">I", chunk.to_bytes()[:4])[0] == 11

    @pytest.mark.parametrize("chunk_type", [b"IEN", b"IEND!", b"12AB"])
    def test_invalid_type(self, chunk_type):
        with pytest.raises(ValueError):
            PngChunk(chunk_type)


class TestReadWriteChunks:
    """Tests for read_chunks and write_chunks."""

    def test_reads_pillow_png(self, png_bytes):
        chunks = read_chunks(png_bytes)

        assert chunks[0].name == "IHDR"
        assert chunks[-1].name == "IEND"
        assert any(chunk.name == "IDAT" for chunk in chunks)

    def test_rewrite_is_byte_identical(self, png_bytes):
        assert write_chunks(read_chunks(png_bytes)) == png_bytes

    def test_bad_signature(self, png_bytes):
        with pytest.raises(CorruptContainerError, match="signature"):
            read_chunks(b"GIF89a" + png_bytes[6:])

    def test_crc_mismatch(self, png_bytes):
        corrupted = bytearray(png_bytes)
        # First byte of the IHDR payload (image width)
        corrupted[len(PNG_SIGNATURE) + 8] ^= 0xFF

        with pytest.raises(CorruptContainerError, match="CRC mismatch in IHDR"):
            read_chunks(bytes(corrupted))

    def test_crc_check_can_be_disabled(self, png_bytes):
        corrupted = bytearray(png_bytes)
        corrupted[len(PNG_SIGNATURE) + 8] ^= 0xFF

        assert read_chunks(bytes(corrupted), verify_crc=False)[0].name == "IHDR"

    def test_truncated_file(self, png_bytes):
        with pytest.raises(CorruptContainerError, match="Truncated"):
            read_chunks(png_bytes[:-6])

    def test_missing_iend(self, png_bytes):
        without_iend = png_bytes[: -len(PngChunk(b"IEND").to_bytes())]

        with pytest.raises(CorruptContainerError, match="Missing IEND"):
            read_chunks(without_iend)


class TestItxt:
    """Tests for iTXt chunk helpers."""

    def test_payload_layout(self):
        chunk = build_itxt_chunk("Comment", "héllo")

        assert chunk.chunk_type == b"iTXt"
        assert chunk.data == b"Comment\x00\x00\x00\x00\x00" + "héllo".encode("utf-8")

    def test_keyword_and_text(self):
        chunk = build_itxt_chunk(XMP_KEYWORD, "<x:xmpmeta/>", language="en", translated_keyword="XMP")

        assert itxt_keyword(chunk) == XMP_KEYWORD
        assert parse_itxt(chunk) == (XMP_KEYWORD, "<x:xmpmeta/>")

    def test_keyword_of_other_chunks(self):
        assert itxt_keyword(PngChunk(b"tEXt", b"Title\x00x")) is None

    @pytest.mark.parametrize("keyword", ["", "k" * 80])
    def test_invalid_keyword(self, keyword):
        with pytest.raises(ValueError):
            build_itxt_chunk(keyword, "text")

    def test_malformed_itxt(self):
        with pytest.raises(CorruptContainerError):
            parse_itxt(PngChunk(b"iTXt", b"keyword-without-terminator"))


class TestInjectChunk:
    """Tests for inject_chunk."""

    def test_before_iend(self, png_bytes):
        chunks = inject_chunk(read_chunks(png_bytes), build_itxt_chunk(XMP_KEYWORD, "one"))

        assert chunks[-1].name == "IEND"
        assert itxt_keyword(chunks[-2]) == XMP_KEYWORD

    def test_before_idat(self, png_bytes):
        chunks = inject_chunk(
            read_chunks(png_bytes),
            build_itxt_chunk(XMP_KEYWORD, "one"),
            ChunkPlacement.BEFORE_IDAT,
        )

        names = [chunk.name for chunk in chunks]
        assert names.index("iTXt") == names.index("IDAT") - 1

    def test_replaces_existing_packet(self, png_bytes):
        chunks = inject_chunk(read_chunks(png_bytes), build_itxt_chunk(XMP_KEYWORD, "one"))
        chunks = inject_chunk(chunks, build_itxt_chunk(XMP_KEYWORD, "two"))

        assert sum(1 for chunk in chunks if itxt_keyword(chunk) == XMP_KEYWORD) == 1
        assert find_itxt_text(chunks, XMP_KEYWORD) == "two"

    def test_other_itxt_chunks_are_kept(self, png_bytes):
        chunks = inject_chunk(read_chunks(png_bytes), build_itxt_chunk("Comment", "keep me"))
        chunks = inject_chunk(chunks, build_itxt_chunk(XMP_KEYWORD, "packet"))

        assert find_itxt_text(chunks, "Comment") == "keep me"

    def test_injected_file_still_decodes(self, png_bytes, tmp_path):
        chunks = inject_chunk(read_chunks(png_bytes), build_itxt_chunk(XMP_KEYWORD, "packet"))
        path = tmp_path / "injected.png"
        path.write_bytes(write_chunks(chunks))

        with Image.open(path) as image:
            image.load()
            assert image.size == (32, 24)
