"""Folder enumeration and content hashing."""

import hashlib
import os
import stat
from pathlib import Path

from rich.console import Console
from rich.markup import escape


console = Console()

SUPPORTED_EXTENSIONS = frozenset({".jpg", ".jpeg", ".png", ".webp"})

MIME_TYPES = {
    ".jpg": "image/jpeg",
    ".jpeg": "image/jpeg",
    ".png": "image/png",
    ".webp": "image/webp",
}

# Read size for hashing; keeps memory flat on large RAW-sized JPEGs
HASH_BLOCK_SIZE = 1024 * 1024

# Windows attribute bits, exposed through os.stat_result.st_file_attributes
_FILE_ATTRIBUTE_HIDDEN = getattr(stat, "FILE_ATTRIBUTE_HIDDEN", 0x2)
_FILE_ATTRIBUTE_SYSTEM = getattr(stat, "FILE_ATTRIBUTE_SYSTEM", 0x4)
_UF_HIDDEN = getattr(stat, "UF_HIDDEN", 0x8000)


def compute_content_hash(path: Path) -> str:
    """Compute the SHA-256 fingerprint of a file's full content.

    Args:
        path: File to hash.

    Returns:
        Lower-case hex digest. Independent of the file's name and location.
    """
    digest = hashlib.sha256()
    with open(path, "rb") as handle:
        for block in iter(lambda: handle.read(HASH_BLOCK_SIZE), b""):
            digest.update(block)
    return digest.hexdigest()


def get_mime_type(path: Path) -> str:
    """MIME type for a supported image, by extension."""
    return MIME_TYPES.get(Path(path).suffix.lower(), "application/octet-stream")


def is_hidden_or_system(entry: os.DirEntry | Path) -> bool:
    """Whether a file or directory is hidden or marked as a system file."""
    name = entry.name
    if name.startswith("."):
        return True

    try:
        info = entry.stat(follow_symlinks=False) if isinstance(entry, os.DirEntry) else Path(entry).lstat()
    except OSError:
        return False

    attributes = getattr(info, "st_file_attributes", 0)
    if attributes & (_FILE_ATTRIBUTE_HIDDEN | _FILE_ATTRIBUTE_SYSTEM):
        return True

    flags = getattr(info, "st_flags", 0)
    return bool(flags & _UF_HIDDEN)


class FolderScanner:
    """Finds candidate image files under a directory."""

    def __init__(self, extensions: frozenset[str] = SUPPORTED_EXTENSIONS) -> None:
        self.extensions = frozenset(ext.lower() for ext in extensions)

    def scan_directory(self, path: Path, recursive: bool = False) -> list[Path]:
        """List supported images under a directory.

        Args:
            path: Root directory.
            recursive: Whether to descend into subdirectories.

        Returns:
            Absolute paths sorted lexicographically, without duplicates.

        Raises:
            FileNotFoundError: If the directory does not exist.
            NotADirectoryError: If the path is not a directory.
        """
        root = Path(path).expanduser().absolute()
        if not root.exists():
            raise FileNotFoundError(f"Directory not found: {root}")
        if not root.is_dir():
            raise NotADirectoryError(f"Not a directory: {root}")

        found: set[Path] = set()
        pending = [root]

        while pending:
            directory = pending.pop()
            try:
                entries = list(os.scandir(directory))
            except OSError as e:
                reason = escape(str(e.strerror or e))
                console.print(f"  [yellow]Skipping unreadable directory {directory}: {reason}[/yellow]")
                continue

            for entry in entries:
                if is_hidden_or_system(entry):
                    continue
                try:
                    if entry.is_dir(follow_symlinks=False):
                        if recursive:
                            pending.append(Path(entry.path))
                        continue
                    if not entry.is_file():
                        continue
                except OSError:
                    continue

                if Path(entry.name).suffix.lower() in self.extensions:
                    found.add(Path(entry.path))

        return sorted(found, key=str)

    def is_supported_image(self, path: Path) -> bool:
        """Check whether a single path is an existing, supported image."""
        path = Path(path)
        return path.is_file() and path.suffix.lower() in self.extensions
