"""Mapping of user-supplied identifiers onto single path segments."""

from __future__ import annotations

from urllib.parse import quote


def safe_file_name(value: str) -> str:
    """Percent-encode ``value`` so distinct ids never share a file name.

    Dots are encoded too, which keeps ``.`` and ``..`` from naming a directory.
    """
    return quote(value, safe="").replace(".", "%2E")
