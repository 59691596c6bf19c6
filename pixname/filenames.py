"""Filename sanitization shared by the response parser and user edits."""

import re

from pixname.config import MAX_FILENAME_LENGTH, FilenameStyle


FALLBACK_FILENAME = "unnamed_image"

# Characters rejected by Windows, macOS or Linux file systems, plus ASCII control characters
_ILLEGAL_CHARS = re.compile(r'[<>:"/\\|?*\x00-\x1f\x7f]')
_WHITESPACE = re.compile(r"\s+")
_REPEATED_SEPARATORS = re.compile(r"_+")
_ECHOED_EXTENSION = re.compile(r"\.[A-Za-z0-9]{1,5}$")

_RESERVED_NAMES = frozenset(
    {"con", "prn", "aux", "nul"} | {f"com{i}" for i in range(1, 10)} | {f"lpt{i}" for i in range(1, 10)}
)


def sanitize_filename(
    name: str | None,
    style: FilenameStyle | None = FilenameStyle.LOWERCASE,
    max_length: int = MAX_FILENAME_LENGTH,
) -> str:
    """Turn arbitrary text into a safe filename stem.

    Args:
        name: Raw name, typically suggested by the model.
        style: Case style to apply. None keeps the original casing.
        max_length: Maximum length of the returned stem.

    Returns:
        A non-empty stem containing no path separators, illegal characters or whitespace.
    """
    if name is None or not name.strip():
        return FALLBACK_FILENAME

    name = name.strip()

    # Models like to echo an extension back ("sunset_beach.jpg")
    dot_index = name.rfind(".")
    if dot_index > 0 and _ECHOED_EXTENSION.search(name):
        name = name[:dot_index]

    name = _ILLEGAL_CHARS.sub("_", name)
    name = _WHITESPACE.sub("_", name)
    name = _REPEATED_SEPARATORS.sub("_", name)
    name = name.strip("_.")

    if len(name) > max_length:
        name = name[:max_length].rstrip("_.")

    if not name:
        return FALLBACK_FILENAME

    if style is FilenameStyle.LOWERCASE:
        name = name.lower()
    elif style is FilenameStyle.TITLE_CASE:
        name = "_".join(part[:1].upper() + part[1:].lower() for part in name.split("_"))

    if name.lower() in _RESERVED_NAMES:
        name = f"{name}_"

    return name


def is_legal_filename(name: str) -> bool:
    """Check that a stem can be used as-is on any supported file system."""
    if not name or name != name.strip() or name in {".", ".."}:
        return False
    if _ILLEGAL_CHARS.search(name) or _WHITESPACE.search(name):
        return False
    return name.lower() not in _RESERVED_NAMES


def clean_tag(tag: str) -> str:
    """Collapse whitespace in a tag and replace ";", which separates keywords in EXIF XPKeywords."""
    return " ".join(tag.replace(";", ",").split())
