# auth/session.py

"""
Request actor helper for the feature flag API.

There is no real authentication in this service. Flag changes are
attributed in the change log to whatever the caller puts in the
X-Actor header, or to "api" when the header is missing.
"""

from typing import Any

DEFAULT_ACTOR = "api"
MAX_ACTOR_LENGTH = 64


def get_request_actor(request: Any) -> str:
    """
    Return the name to record in the change log for this request.

    The header value is stripped, cut to MAX_ACTOR_LENGTH characters and
    limited to one line so it cannot forge extra change-log entries.
    """
    raw = request.headers.get("x-actor") or ""
    actor = raw.splitlines()[0].strip() if raw.strip() else ""
    return actor[:MAX_ACTOR_LENGTH] or DEFAULT_ACTOR
