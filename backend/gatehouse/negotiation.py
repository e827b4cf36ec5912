"""
Gatehouse — Representation Negotiation
=======================================

What:  Decides which of four response shapes a request expects.
Why:   Denials, feed problems and rescued errors are rendered differently
       for browsers, API clients, XHR callers and archive downloads.
How:   Checked in order, first match wins:
         1. API path (/api/v1/...) → JSON, always
         2. explicit `format` query parameter
         3. path suffix (.json, .zip, .txt, .html)
         4. Accept header (application/json, text/plain)
         5. default → PAGE
       An XHR request that would otherwise get a full page is answered as
       TEXT unless it passes `html_xhr`.
"""

import re
from enum import Enum
from typing import Optional

from starlette.requests import Request

from gatehouse.config import settings

_api_path = re.compile(settings.api_path_pattern)

_SUFFIXES = {
    ".json": "json",
    ".zip": "zip",
    ".txt": "text",
    ".html": "html",
}


class Representation(str, Enum):
    PAGE = "html"
    JSON = "json"
    TEXT = "text"
    ARCHIVE = "zip"


def is_api_path(path: str) -> bool:
    return bool(_api_path.match(path))


def is_xhr(request: Request) -> bool:
    return request.headers.get("X-Requested-With", "").lower() == "xmlhttprequest"


def path_format(path: str) -> Optional[str]:
    for suffix, fmt in _SUFFIXES.items():
        if path.endswith(suffix):
            return fmt
    return None


def strip_format(path: str) -> str:
    """'/courses/5/files.zip' → '/courses/5/files'"""
    for suffix in _SUFFIXES:
        if path.endswith(suffix):
            return path[: -len(suffix)]
    return path


def negotiate(request: Request) -> Representation:
    if is_api_path(request.url.path):
        return Representation.JSON

    fmt = request.query_params.get("format") or path_format(request.url.path)
    if fmt:
        try:
            representation = Representation(fmt)
        except ValueError:
            representation = Representation.PAGE
    else:
        accept = request.headers.get("accept", "")
        if "application/json" in accept:
            representation = Representation.JSON
        elif accept.startswith("text/plain"):
            representation = Representation.TEXT
        else:
            representation = Representation.PAGE

    if (
        representation is Representation.PAGE
        and is_xhr(request)
        and "html_xhr" not in request.query_params
    ):
        return Representation.TEXT
    return representation
