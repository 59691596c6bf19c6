"""Shared fixtures."""

import struct
import zlib
from datetime import datetime
from pathlib import Path

import pytest
from PIL import Image

from pixname.models.analysis import AnalysisRecord, AnalysisStatus
from pixname.processors.png_chunks import PNG_SIGNATURE, PngChunk


@pytest.fixture
def make_image(tmp_path: Path):
    """Factory writing a small solid-color image; the format follows the extension."""

    def _make(name: str, size: tuple[int, int] = (32, 24), color=(200, 30, 30), directory: Path | None = None) -> Path:
        directory = directory or tmp_path
        directory.mkdir(parents=True, exist_ok=True)
        path = directory / name
        Image.new("RGB", size, color).save(path)
        return path

    return _make


@pytest.fixture
def make_record():
    """Factory for SUCCESS analysis records pointing at a path."""

    def _make(path: Path, suggested_filename: str = "red_square", **fields) -> AnalysisRecord:
        values = {
            "source_path": path,
            "original_name": path.name,
            "extension": path.suffix.lower(),
            "suggested_filename": suggested_filename,
            "status": AnalysisStatus.SUCCESS,
            "analyzed_at": datetime(2024, 5, 1, 12, 0, 0),
        }
        values.update(fields)
        return AnalysisRecord(**values)

    return _make


@pytest.fixture
def make_oversized_png(tmp_path: Path):
    """Factory writing a tiny PNG whose header claims dimensions past Pillow's decompression bomb limit."""

    def _make(name: str, width: int = 20000, height: int = 20000) -> Path:
        header = struct.pack(">IIBBBBB", width, height, 8, 2, 0, 0, 0)
        chunks = [PngChunk(b"IHDR", header), PngChunk(b"IDAT", zlib.compress(b"")), PngChunk(b"IEND")]
        path = tmp_path / name
        path.write_bytes(PNG_SIGNATURE + b"".join(chunk.to_bytes() for chunk in chunks))
        return path

    return _make
