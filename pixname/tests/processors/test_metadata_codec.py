"""Unit tests for MetadataCodec."""

import os

import piexif
import pytest
from PIL import Image, features

from pixname.exceptions import CorruptContainerError, UnsupportedFormatError
from pixname.models.metadata import MetadataFields
from pixname.processors.metadata_codec import MetadataCodec, _encode_xp
from pixname.processors.png_chunks import XMP_KEYWORD, ChunkPlacement, itxt_keyword, read_chunks


FULL_FIELDS = MetadataFields(
    title="Red Square",
    comment="Geometry - A red square on a plain background\n\nNo people visible",
    tags=["red", "square", "minimal"],
    author="Ann Example",
    copyright="© 2024 Ann Example",
)


@pytest.fixture
def codec() -> MetadataCodec:
    return MetadataCodec()


class TestJpeg:
    """Tests for EXIF writing into JPEG files."""

    def test_round_trip(self, codec, make_image):
        path = make_image("photo.jpg")

        assert codec.write_fields(path, FULL_FIELDS) is True
        assert codec.read(path) == FULL_FIELDS

    def test_written_record(self, codec, make_image, make_record):
        path = make_image("photo.jpeg")
        record = make_record(path, title="Red Square", subject="Geometry", description="A red square", tags=["red"])

        codec.write(path, record)
        fields = codec.read(path)

        assert fields.title == "Red Square"
        assert fields.comment == "Geometry - A red square"
        assert fields.tags == ["red"]

    def test_user_tag_edits_are_written(self, codec, make_image, make_record):
        path = make_image("photo.jpg")
        record = make_record(path, tags=["red"]).with_edits(tags=["crimson", "block"])

        codec.write(path, record)

        assert codec.read(path).tags == ["crimson", "block"]

    def test_tags_containing_separator_keep_their_count(self, codec, make_image, make_record):
        path = make_image("photo.jpg")
        record = make_record(path, tags=["black; white", "cat"])

        codec.write(path, record)

        assert codec.read(path).tags == ["black, white", "cat"]

    def test_existing_exif_is_preserved(self, codec, tmp_path):
        path = tmp_path / "camera.jpg"
        exif = piexif.dump({"0th": {piexif.ImageIFD.Make: b"Canon"}})
        Image.new("RGB", (16, 16), (0, 0, 255)).save(path, exif=exif)

        codec.write_fields(path, MetadataFields(title="Blue"))

        assert piexif.load(str(path))["0th"][piexif.ImageIFD.Make] == b"Canon"

    def test_windows_tags_are_utf16(self, codec, make_image):
        path = make_image("photo.jpg")

        codec.write_fields(path, MetadataFields(title="Été", tags=["a", "b"]))

        zeroth = piexif.load(str(path))["0th"]
        assert bytes(zeroth[piexif.ImageIFD.XPTitle]) == "Été".encode("utf-16-le") + b"\x00\x00"
        assert bytes(zeroth[piexif.ImageIFD.XPKeywords]) == "a;b".encode("utf-16-le") + b"\x00\x00"

    def test_image_still_decodes(self, codec, make_image):
        path = make_image("photo.jpg")

        codec.write_fields(path, FULL_FIELDS)

        with Image.open(path) as image:
            image.load()
            assert image.size == (32, 24)

    def test_permissions_are_preserved(self, codec, make_image):
        path = make_image("photo.jpg")
        os.chmod(path, 0o640)

        codec.write_fields(path, FULL_FIELDS)

        assert path.stat().st_mode & 0o777 == 0o640

    def test_no_temporary_files_left(self, codec, make_image, tmp_path):
        path = make_image("photo.jpg")

        codec.write_fields(path, FULL_FIELDS)

        assert [p.name for p in tmp_path.iterdir()] == ["photo.jpg"]


class TestPng:
    """Tests for XMP injection into PNG files."""

    def test_round_trip(self, codec, make_image):
        path = make_image("graphic.png")

        assert codec.write_fields(path, FULL_FIELDS) is True
        assert codec.read(path) == FULL_FIELDS

    def test_rewrite_keeps_a_single_packet(self, codec, make_image):
        path = make_image("graphic.png")

        codec.write_fields(path, MetadataFields(title="First"))
        codec.write_fields(path, MetadataFields(title="Second", tags=["x"]))

        chunks = read_chunks(path.read_bytes())
        assert sum(1 for chunk in chunks if itxt_keyword(chunk) == XMP_KEYWORD) == 1
        assert codec.read(path) == MetadataFields(title="Second", tags=["x"])

    def test_packet_goes_before_iend(self, codec, make_image):
        path = make_image("graphic.png")

        codec.write_fields(path, FULL_FIELDS)

        chunks = read_chunks(path.read_bytes())
        assert chunks[-1].name == "IEND"
        assert itxt_keyword(chunks[-2]) == XMP_KEYWORD

    def test_packet_before_idat(self, make_image):
        path = make_image("graphic.png")

        MetadataCodec(png_placement=ChunkPlacement.BEFORE_IDAT).write_fields(path, FULL_FIELDS)

        names = [chunk.name for chunk in read_chunks(path.read_bytes())]
        assert names.index("iTXt") < names.index("IDAT")

    def test_image_still_decodes(self, codec, make_image):
        path = make_image("graphic.png")

        codec.write_fields(path, FULL_FIELDS)

        with Image.open(path) as image:
            image.load()
            assert image.getpixel((0, 0)) == (200, 30, 30)

    def test_untagged_png_reads_empty(self, codec, make_image):
        assert codec.read(make_image("plain.png")).is_empty

    def test_corrupt_png(self, codec, tmp_path):
        path = tmp_path / "broken.png"
        path.write_bytes(b"\x89PNG\r\n\x1a\n" + b"\x00\x00\x00\x0dIHDR" + b"short")

        with pytest.raises(CorruptContainerError):
            codec.write_fields(path, FULL_FIELDS)
        assert not codec.has_existing_tags(path)


class TestWebp:
    """Tests for the partial WebP strategy."""

    @pytest.mark.skipif(not features.check("webp"), reason="Pillow built without WebP support")
    def test_writes_supported_subset(self, codec, make_image, monkeypatch):
        path = make_image("image.webp")
        captured = {}

        def fake_insert(exif_bytes, image_bytes, output):
            captured["exif"] = exif_bytes
            output.write(image_bytes)

        monkeypatch.setattr(piexif, "insert", fake_insert)

        assert codec.write_fields(path, FULL_FIELDS) is True

        exif_bytes = captured["exif"]
        assert _encode_xp("Red Square")[:-2] in exif_bytes
        assert _encode_xp("red;square;minimal")[:-2] in exif_bytes
        assert "Ann Example".encode("utf-16-le") not in exif_bytes


class TestDispatch:
    """Tests for format dispatch and empty writes."""

    def test_empty_fields_leave_file_untouched(self, codec, make_image, make_record):
        path = make_image("photo.jpg")
        before = path.read_bytes()

        assert codec.write(path, make_record(path)) is False
        assert path.read_bytes() == before

    @pytest.mark.parametrize("name", ["anim.gif", "scan.tiff", "noextension"])
    def test_unsupported_format(self, codec, tmp_path, name):
        path = tmp_path / name
        path.write_bytes(b"data")

        with pytest.raises(UnsupportedFormatError):
            codec.write_fields(path, FULL_FIELDS)
        with pytest.raises(UnsupportedFormatError):
            codec.read(path)

    def test_has_existing_tags(self, codec, make_image, tmp_path):
        tagged = make_image("tagged.png")
        codec.write_fields(tagged, MetadataFields(tags=["cat"]))
        titled = make_image("titled.jpg")
        codec.write_fields(titled, MetadataFields(title="Only a title"))
        other = tmp_path / "anim.gif"
        other.write_bytes(b"GIF89a")

        assert codec.has_existing_tags(tagged)
        assert not codec.has_existing_tags(titled)
        assert not codec.has_existing_tags(other)
