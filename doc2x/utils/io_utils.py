"""
Basic file-system utilities shared by the Doc2X CLI.

Provides helpers for creating parent directories, deriving output
filenames, and writing JSON payloads in UTF-8.
"""

from __future__ import annotations

import json
import posixpath
from pathlib import Path
from typing import Any
from urllib.parse import urlsplit

from doc2x.core.config import DEFAULT_DOWNLOAD_EXT


def ensure_parent(path: str | Path) -> None:
    """
    Ensure that the parent directory for the given path exists.

    Creates all missing parents with `exist_ok=True` and does not
    touch the file itself.

    Args:
      path: Target file path whose parent should be created.
    """
    path_obj = Path(path)
    path_obj.parent.mkdir(parents=True, exist_ok=True)


def write_json(path: str | Path, obj: Any) -> None:
    """
    Write a JSON value to disk using UTF-8 encoding.

    Ensures the parent directory exists and writes the value with
    `ensure_ascii=False` and indentation.

    Args:
      path: Destination file path.
      obj: JSON-serializable value to persist.
    """
    ensure_parent(path)
    with open(path, "w", encoding="utf-8") as f:
        json.dump(obj, f, ensure_ascii=False, indent=2)


def change_ext(name: str, ext: str) -> str:
    """Replace the extension of a file name, e.g. ``a.pdf`` -> ``a.json``."""
    return str(Path(name).with_suffix(ext))


def default_download_name(url: str, uid: str) -> str:
    """
    Name a downloaded file after its task uid.

    The extension is taken from the URL path and defaults to `.zip`.

    Example:
      >>> default_download_name("https://cdn/x/out.docx?sig=1", "abc")
      'abc.docx'
    """
    try:
        ext = posixpath.splitext(urlsplit(url).path)[1]
    except ValueError:
        ext = ""
    return f"{uid}{ext or DEFAULT_DOWNLOAD_EXT}"
