# This project was developed with assistance from AI tools.
"""Pure auth utility functions with no FastAPI or HTTP dependencies.

Used by the middleware layer to pull a Supabase access token out of the
browser session cookie and to normalise caller emails before they are
compared against Salesforce records.
"""

import base64
import binascii
import json
import re
from collections.abc import Mapping
from urllib.parse import unquote, urlsplit

_AUTH_COOKIE = re.compile(r"^sb-([A-Za-z0-9_-]+?)-auth-token(?:\.(\d+))?$")
_BASE64_PREFIX = "base64-"


def normalize_email(email: str | None) -> str:
    """Lower-case and trim an email; ``None`` becomes the empty string."""
    return (email or "").strip().lower()


def emails_match(left: str | None, right: str | None) -> bool:
    """Case-insensitive email comparison. Empty values never match."""
    a = normalize_email(left)
    return bool(a) and a == normalize_email(right)


def supabase_project_ref(url: str) -> str:
    """Project ref Supabase clients use in cookie names: the first label of the URL host."""
    return (urlsplit(url).hostname or "").split(".")[0]


def _join_chunks(cookies: Mapping[str, str], project_ref: str | None) -> str | None:
    """Reassemble the Supabase auth cookie, which may be split into ``.0``, ``.1``... chunks."""
    whole: str | None = None
    chunks: dict[int, str] = {}
    for name, value in cookies.items():
        match = _AUTH_COOKIE.match(name)
        if not match or (project_ref is not None and match.group(1) != project_ref):
            continue
        if match.group(2) is None:
            whole = value
        else:
            chunks[int(match.group(2))] = value
    if whole is not None:
        return whole
    if not chunks:
        return None
    return "".join(chunks[i] for i in sorted(chunks))


def _decode_session(raw: str) -> object | None:
    value = unquote(raw)
    if value.startswith(_BASE64_PREFIX):
        encoded = value[len(_BASE64_PREFIX) :]
        try:
            value = base64.urlsafe_b64decode(encoded + "=" * (-len(encoded) % 4)).decode("utf-8")
        except (binascii.Error, UnicodeDecodeError):
            return None
    try:
        return json.loads(value)
    except json.JSONDecodeError:
        return None


def extract_cookie_token(cookies: Mapping[str, str], project_ref: str | None = None) -> str | None:
    """Return the access token stored in a Supabase session cookie, if any.

    With ``project_ref`` set, only ``sb-<project_ref>-auth-token`` cookies are read.

    Handles both the current object form (``{"access_token": ...}``) and the
    older array form (``[access_token, refresh_token, ...]``).
    """
    raw = _join_chunks(cookies, project_ref)
    if not raw:
        return None

    session = _decode_session(raw)
    if isinstance(session, dict):
        token = session.get("access_token")
    elif isinstance(session, list) and session:
        token = session[0]
    else:
        return None
    return token if isinstance(token, str) and token else None
