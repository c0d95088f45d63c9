"""Redirect targets for access denials.

Only same-origin relative paths are ever echoed back to the browser, so a
crafted ``redirect`` parameter cannot send a user to another site after
signing in.
"""

from __future__ import annotations

import re
from urllib.parse import quote, urlsplit


SAFE_DEFAULT = "/"

_CONTROL_CHARS = re.compile(r"[\x00-\x1f\x7f]")


def sanitize_redirect_path(path: str | None, default: str = SAFE_DEFAULT) -> str:
    """Return ``path`` if it is a same-origin relative path, else ``default``.

    Accepted paths start with a single ``/``, have no scheme or host, no
    backslashes and no control characters.
    """
    if not path or not path.startswith("/") or path.startswith("//"):
        return default
    if "\\" in path or _CONTROL_CHARS.search(path):
        return default

    parts = urlsplit(path)
    if parts.scheme or parts.netloc:
        return default
    return path


def build_login_redirect(login_path: str, original_path: str | None) -> str:
    """Login URL carrying the sanitized original path, URL-encoded.

    Example:
        >>> build_login_redirect("/auth", "/orders/42?tab=items")
        '/auth?redirect=%2Forders%2F42%3Ftab%3Ditems'
    """
    target = sanitize_redirect_path(original_path)
    return f"{login_path}?redirect={quote(target, safe='')}"


__all__ = ["SAFE_DEFAULT", "build_login_redirect", "sanitize_redirect_path"]
