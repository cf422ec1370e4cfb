"""URL assembly for client-server API endpoints."""

from __future__ import annotations

import posixpath
from collections.abc import Mapping, Sequence
from urllib.parse import parse_qsl, quote, urlencode, urlsplit, urlunsplit

# Characters that appear unescaped in Matrix identifiers inside a path
_PATH_SAFE = "/:@!$&'()*+,;=~"


def join_path(*parts: str) -> str:
    """Join path segments, dropping empty ones and resolving '.' and '..'.

    A trailing slash on the last segment is kept, since some endpoints
    (e.g. account data listings) distinguish it.
    """
    segments = [seg for part in parts for seg in part.split("/") if seg]
    path = posixpath.normpath("/" + "/".join(segments)) if segments else "/"
    if parts and parts[-1].endswith("/") and not path.endswith("/"):
        path += "/"
    return path


def build_base_url(
    homeserver_url: str,
    *parts: str,
    app_service_user_id: str = "",
    query: Mapping[str, str] | None = None,
) -> str:
    """Build an absolute URL under the homeserver root.

    Args:
        homeserver_url: Homeserver base URL, may carry its own path or query
        *parts: Path segments appended to the homeserver path
        app_service_user_id: Added as ``user_id`` query parameter when set
        query: Extra query parameters (override existing ones)

    Returns:
        The URL with its query keys in sorted order
    """
    scheme, netloc, base_path, base_query, _ = urlsplit(homeserver_url)
    path = join_path(base_path, *parts)

    params = dict(parse_qsl(base_query, keep_blank_values=True))
    if app_service_user_id:
        params["user_id"] = app_service_user_id
    if query:
        params.update(query)

    encoded = urlencode(sorted(params.items()))
    return urlunsplit((scheme, netloc, quote(path, safe=_PATH_SAFE), encoded, ""))


def build_url(
    homeserver_url: str,
    prefix: str,
    parts: Sequence[str],
    *,
    app_service_user_id: str = "",
    query: Mapping[str, str] | None = None,
) -> str:
    """Build an absolute URL under the client API prefix."""
    return build_base_url(
        homeserver_url,
        prefix,
        *parts,
        app_service_user_id=app_service_user_id,
        query=query,
    )
