"""Downscaling of large images before they are sent to the vision model."""

import os
import tempfile
import threading
from pathlib import Path
from typing import NamedTuple

from PIL import Image, UnidentifiedImageError
from rich.console import Console
from rich.markup import escape

from pixname.exceptions import ImagePreparationError
from pixname.processors.scanner import get_mime_type


console = Console()

# JPEG quality for resized copies
RESIZED_IMAGE_QUALITY = 85

TEMP_FILE_PREFIX = "pixname_resize_"


class PreparedImage(NamedTuple):
    """Image payload ready to be sent to the model."""

    data: bytes
    mime_type: str
    temp_path: Path | None = None


def calculate_new_dimensions(width: int, height: int, max_dimension: int) -> tuple[int, int]:
    """Scale (width, height) so the longest side fits `max_dimension`, keeping the aspect ratio."""
    if width <= max_dimension and height <= max_dimension:
        return width, height
    ratio = max_dimension / max(width, height)
    return max(1, int(width * ratio)), max(1, int(height * ratio))


class ImagePreprocessor:
    """Creates downscaled JPEG copies of oversized images and tracks them for cleanup.

    Temporary copies are deleted on `release()`, `cleanup()`, or when the
    preprocessor is used as a context manager and exits.
    """

    def __init__(
        self,
        max_dimension: int = 1024,
        max_bytes: int = 4 * 1024 * 1024,
        temp_dir: Path | None = None,
    ) -> None:
        self.max_dimension = max_dimension
        self.max_bytes = max_bytes
        self.temp_dir = temp_dir
        self._temp_files: set[Path] = set()
        self._lock = threading.Lock()

    def __enter__(self) -> "ImagePreprocessor":
        return self

    def __exit__(self, *exc_info) -> None:
        self.cleanup()

    @property
    def temp_files(self) -> list[Path]:
        with self._lock:
            return sorted(self._temp_files)

    def needs_resizing(self, path: Path) -> bool:
        """Whether the file is too large in bytes or in pixels."""
        path = Path(path)
        if path.stat().st_size > self.max_bytes:
            return True
        try:
            with Image.open(path) as image:
                width, height = image.size
        except Image.DecompressionBombError as e:
            raise ImagePreparationError(f"Cannot open {path.name}: {e}") from e
        except (UnidentifiedImageError, OSError):
            return False
        return width > self.max_dimension or height > self.max_dimension

    def prepare(self, path: Path) -> PreparedImage:
        """Return the bytes to send for `path`, downscaling when needed."""
        path = Path(path)
        if not self.needs_resizing(path):
            return PreparedImage(data=path.read_bytes(), mime_type=get_mime_type(path))

        temp_path = self.create_resized_copy(path)
        return PreparedImage(data=temp_path.read_bytes(), mime_type="image/jpeg", temp_path=temp_path)

    def create_resized_copy(self, path: Path) -> Path:
        """Write a downscaled JPEG copy of `path` to a tracked temporary file.

        Animated images contribute their first frame only.

        Raises:
            ImagePreparationError: If Pillow cannot decode or convert the image.
        """
        try:
            with Image.open(path) as image:
                image.seek(0)
                new_size = calculate_new_dimensions(image.width, image.height, self.max_dimension)
                converted = image.convert("RGB")
            resized = converted.resize(new_size, Image.Resampling.LANCZOS) if new_size != converted.size else converted
        except (Image.DecompressionBombError, UnidentifiedImageError, ValueError, OSError) as e:
            raise ImagePreparationError(f"Cannot downscale {path.name}: {e}") from e

        fd, name = tempfile.mkstemp(prefix=TEMP_FILE_PREFIX, suffix=".jpg", dir=self.temp_dir)
        temp_path = Path(name)
        with self._lock:
            self._temp_files.add(temp_path)

        with os.fdopen(fd, "wb") as handle:
            resized.save(handle, format="JPEG", quality=RESIZED_IMAGE_QUALITY)

        console.print(
            f"  [dim]Resized {path.name} to {new_size[0]}x{new_size[1]} "
            f"({path.stat().st_size:,} -> {temp_path.stat().st_size:,} bytes)[/dim]"
        )
        return temp_path

    def release(self, temp_path: Path) -> None:
        """Delete one temporary copy."""
        with self._lock:
            self._temp_files.discard(temp_path)
        temp_path.unlink(missing_ok=True)

    def cleanup(self) -> None:
        """Delete every tracked temporary copy."""
        with self._lock:
            files = list(self._temp_files)
            self._temp_files.clear()

        for temp_path in files:
            try:
                temp_path.unlink(missing_ok=True)
            except OSError as e:
                console.print(f"  [yellow]Failed to delete temporary file {temp_path}: {escape(str(e))}[/yellow]")
