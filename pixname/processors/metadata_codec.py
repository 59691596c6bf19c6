"""Embedding analysis metadata into image files.

JPEG files get native EXIF tags through piexif. PNG files have no convenient
tag-writing API, so an XMP packet is injected as an iTXt chunk through the
chunk layer in `png_chunks`. WebP support is partial and best-effort.
"""

import io
import os
import shutil
import struct
import tempfile
from pathlib import Path

import piexif
import piexif.helper
from rich.console import Console

from pixname.exceptions import CorruptContainerError, MetadataError, MetadataVerificationError, UnsupportedFormatError
from pixname.models.analysis import AnalysisRecord
from pixname.models.metadata import MetadataFields
from pixname.processors.png_chunks import (
    XMP_KEYWORD,
    ChunkPlacement,
    build_itxt_chunk,
    find_itxt_text,
    inject_chunk,
    read_chunks,
    write_chunks,
)
from pixname.processors.xmp import build_xmp_packet, parse_xmp_packet


console = Console()

JPEG_EXTENSIONS = frozenset({".jpg", ".jpeg"})
PNG_EXTENSIONS = frozenset({".png"})
WEBP_EXTENSIONS = frozenset({".webp"})

# Windows Explorer splits XPKeywords on semicolons
KEYWORD_SEPARATOR = ";"

# Exif SceneType; piexif.load returns it as int but piexif.dump expects bytes
_SCENE_TYPE_TAG = 41729

_EXIF_IFDS = ("0th", "Exif", "GPS", "1st", "Interop")


def _save_inplace(temp_file: str, target_file: str) -> None:
    """Replace target_file with temp_file, keeping the target's permissions."""
    shutil.copymode(target_file, temp_file)
    os.replace(temp_file, target_file)


def _write_atomically(path: Path, data: bytes) -> None:
    """Write `data` over `path` through a temporary file in the same directory."""
    fd, temp_name = tempfile.mkstemp(prefix=f".{path.stem}_", suffix=".tmp", dir=path.parent)
    try:
        with os.fdopen(fd, "wb") as handle:
            handle.write(data)
            handle.flush()
            os.fsync(handle.fileno())
        _save_inplace(temp_name, str(path))
    except BaseException:
        Path(temp_name).unlink(missing_ok=True)
        raise


def _encode_xp(text: str) -> bytes:
    """Encode text for the Windows XP* tags (UTF-16LE, NUL terminated)."""
    return text.encode("utf-16-le") + b"\x00\x00"


def _decode_xp(value) -> str:
    return bytes(value).decode("utf-16-le", errors="ignore").rstrip("\x00").strip()


def _decode_ascii(value) -> str:
    if isinstance(value, str):
        return value.rstrip("\x00").strip()
    return bytes(value).decode("utf-8", errors="replace").rstrip("\x00").strip()


def _decode_user_comment(value) -> str:
    raw = bytes(value)
    try:
        return piexif.helper.UserComment.load(raw).rstrip("\x00").strip()
    except ValueError:
        # Undeclared encoding prefix; treat the payload after the 8-byte header as text
        return raw[8:].decode("utf-8", errors="ignore").rstrip("\x00").strip()


class MetadataCodec:
    """Writes and reads back embedded metadata, dispatching on file extension."""

    def __init__(self, png_placement: ChunkPlacement = ChunkPlacement.BEFORE_IEND, verify: bool = True) -> None:
        self.png_placement = png_placement
        self.verify = verify

    def write(self, path: Path, record: AnalysisRecord) -> bool:
        """Write the record's metadata into the image at `path`.

        Args:
            path: Image to modify (the renamed file when called after a rename).
            record: Analysis providing the fields to write.

        Returns:
            False when there is nothing to write (the file is left untouched), True otherwise.

        Raises:
            UnsupportedFormatError: For extensions without a metadata strategy.
            CorruptContainerError: If the container cannot be parsed.
            MetadataVerificationError: If the written fields cannot be read back.
        """
        return self.write_fields(path, MetadataFields.from_record(record))

    def write_fields(self, path: Path, fields: MetadataFields) -> bool:
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix not in JPEG_EXTENSIONS | PNG_EXTENSIONS | WEBP_EXTENSIONS:
            raise UnsupportedFormatError(f"Metadata writing is not supported for '{suffix or path.name}' files")
        if fields.is_empty:
            return False

        if suffix in JPEG_EXTENSIONS:
            self._write_jpeg(path, fields)
        elif suffix in PNG_EXTENSIONS:
            self._write_png(path, fields)
        else:
            self._write_webp(path, fields)

        if self.verify and suffix not in WEBP_EXTENSIONS:
            written = self.read(path)
            if not fields.shares_any_field(written):
                raise MetadataVerificationError(f"Metadata written to {path.name} could not be read back")
        return True

    def read(self, path: Path) -> MetadataFields:
        """Read back the fields this codec writes.

        Raises:
            UnsupportedFormatError: For extensions without a metadata strategy.
            CorruptContainerError: If the container cannot be parsed.
        """
        path = Path(path)
        suffix = path.suffix.lower()
        if suffix in JPEG_EXTENSIONS:
            return self._read_exif(path)
        if suffix in WEBP_EXTENSIONS:
            return self._read_exif(path, missing_ok=True)
        if suffix in PNG_EXTENSIONS:
            return self._read_png(path)
        raise UnsupportedFormatError(f"Metadata reading is not supported for '{suffix or path.name}' files")

    def has_existing_tags(self, path: Path) -> bool:
        """Whether the image already carries keywords. Unreadable files count as untagged."""
        try:
            return bool(self.read(path).tags)
        except (MetadataError, OSError):
            return False

    # EXIF (JPEG and WebP)

    def _load_exif(self, path: Path, missing_ok: bool = False) -> dict:
        try:
            exif = piexif.load(str(path))
        except piexif.InvalidImageDataError as e:
            raise CorruptContainerError(f"Cannot read EXIF from {path.name}: {e}") from e
        except (ValueError, struct.error) as e:
            if not missing_ok:
                raise CorruptContainerError(f"Cannot read EXIF from {path.name}: {e}") from e
            # piexif reports a WebP file without an EXIF chunk as an error
            exif = {}

        for ifd in _EXIF_IFDS:
            if exif.get(ifd) is None:
                exif[ifd] = {}

        scene_type = exif["Exif"].get(_SCENE_TYPE_TAG)
        if isinstance(scene_type, int):
            exif["Exif"][_SCENE_TYPE_TAG] = bytes([scene_type])
        return exif

    def _dump_exif(self, path: Path, exif: dict) -> bytes:
        try:
            return piexif.dump(exif)
        except (ValueError, struct.error) as e:
            raise MetadataError(f"Cannot encode EXIF for {path.name}: {e}") from e

    def _insert_exif(self, path: Path, exif_bytes: bytes) -> None:
        output = io.BytesIO()
        try:
            piexif.insert(exif_bytes, path.read_bytes(), output)
        except (piexif.InvalidImageDataError, ValueError, struct.error) as e:
            raise CorruptContainerError(f"Cannot insert EXIF into {path.name}: {e}") from e
        _write_atomically(path, output.getvalue())

    def _write_jpeg(self, path: Path, fields: MetadataFields) -> None:
        exif = self._load_exif(path)
        zeroth = exif["0th"]

        if fields.title:
            zeroth[piexif.ImageIFD.ImageDescription] = fields.title.encode("utf-8")
            zeroth[piexif.ImageIFD.XPTitle] = _encode_xp(fields.title)
        if fields.comment:
            exif["Exif"][piexif.ExifIFD.UserComment] = piexif.helper.UserComment.dump(
                fields.comment, encoding="unicode"
            )
            zeroth[piexif.ImageIFD.XPComment] = _encode_xp(fields.comment)
        if fields.tags:
            zeroth[piexif.ImageIFD.XPKeywords] = _encode_xp(KEYWORD_SEPARATOR.join(fields.tags))
        if fields.author:
            zeroth[piexif.ImageIFD.Artist] = fields.author.encode("utf-8")
            zeroth[piexif.ImageIFD.XPAuthor] = _encode_xp(fields.author)
        if fields.copyright:
            zeroth[piexif.ImageIFD.Copyright] = fields.copyright.encode("utf-8")

        self._insert_exif(path, self._dump_exif(path, exif))

    def _write_webp(self, path: Path, fields: MetadataFields) -> None:
        # Only title, comment and keywords; many WebP readers ignore EXIF entirely
        exif = self._load_exif(path, missing_ok=True)
        zeroth = exif["0th"]
        if fields.title:
            zeroth[piexif.ImageIFD.ImageDescription] = fields.title.encode("utf-8")
            zeroth[piexif.ImageIFD.XPTitle] = _encode_xp(fields.title)
        if fields.comment:
            zeroth[piexif.ImageIFD.XPComment] = _encode_xp(fields.comment)
        if fields.tags:
            zeroth[piexif.ImageIFD.XPKeywords] = _encode_xp(KEYWORD_SEPARATOR.join(fields.tags))

        self._insert_exif(path, self._dump_exif(path, exif))
        console.print(f"  [dim]{path.name}: WebP metadata support is partial; some fields may not persist[/dim]")

    def _read_exif(self, path: Path, missing_ok: bool = False) -> MetadataFields:
        exif = self._load_exif(path, missing_ok)
        zeroth = exif["0th"]
        exif_ifd = exif["Exif"]

        def tag(ifd: dict, key: int, decode) -> str:
            value = ifd.get(key)
            return decode(value) if value else ""

        keywords = tag(zeroth, piexif.ImageIFD.XPKeywords, _decode_xp)
        return MetadataFields(
            title=tag(zeroth, piexif.ImageIFD.XPTitle, _decode_xp)
            or tag(zeroth, piexif.ImageIFD.ImageDescription, _decode_ascii),
            comment=tag(exif_ifd, piexif.ExifIFD.UserComment, _decode_user_comment)
            or tag(zeroth, piexif.ImageIFD.XPComment, _decode_xp),
            tags=[keyword.strip() for keyword in keywords.split(KEYWORD_SEPARATOR) if keyword.strip()],
            author=tag(zeroth, piexif.ImageIFD.XPAuthor, _decode_xp)
            or tag(zeroth, piexif.ImageIFD.Artist, _decode_ascii),
            copyright=tag(zeroth, piexif.ImageIFD.Copyright, _decode_ascii),
        )

    # PNG

    def _write_png(self, path: Path, fields: MetadataFields) -> None:
        chunks = read_chunks(path.read_bytes())
        packet = build_xmp_packet(fields)
        chunks = inject_chunk(chunks, build_itxt_chunk(XMP_KEYWORD, packet), self.png_placement)
        _write_atomically(path, write_chunks(chunks))

    def _read_png(self, path: Path) -> MetadataFields:
        packet = find_itxt_text(read_chunks(path.read_bytes()), XMP_KEYWORD)
        if packet is None:
            return MetadataFields()
        return parse_xmp_packet(packet)
