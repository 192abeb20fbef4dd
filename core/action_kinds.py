"""Registry of action kinds that may be queued for offline replay."""
from __future__ import annotations

import string
from typing import Any, Dict, List, Mapping, Tuple
from urllib.parse import quote

# Each kind maps to exactly one endpoint of the progress API. ``{name}`` segments
# in the path are filled from the payload and removed from the request body.
# Each value is percent-encoded as exactly one path segment.
ACTION_KIND_META: Dict[str, Dict[str, Any]] = {
    "progress-update": {
        "method": "POST",
        "path": "/api/lessons/{lessonId}/progress",
        "label": "Lesson watch progress",
    },
    "lesson-complete": {
        "method": "POST",
        "path": "/api/lessons/{lessonId}/complete",
        "label": "Lesson completion",
    },
    "mood-entry": {
        "method": "POST",
        "path": "/api/mood",
        "label": "Mood journal entry",
    },
    "activity-time": {
        "method": "POST",
        "path": "/api/user/track-activity",
        "label": "Time spent on the platform",
    },
    "quiz-submit": {
        "method": "POST",
        "path": "/api/quizzes/{quizId}/submit",
        "label": "Quiz result",
    },
    "chat-message": {
        "method": "POST",
        "path": "/api/ai/chat",
        "label": "Chatbot message",
    },
}


def normalize_kind(value: str | None) -> str:
    """Lower-case the tag and accept ``snake_case`` spellings."""
    if value is None:
        return ""
    return str(value).strip().lower().replace("_", "-")


def is_known_kind(value: str | None) -> bool:
    return normalize_kind(value) in ACTION_KIND_META


def kind_label(kind: str) -> str:
    meta = ACTION_KIND_META.get(normalize_kind(kind))
    return meta["label"] if meta else kind


def path_params(kind: str) -> List[str]:
    template = ACTION_KIND_META[normalize_kind(kind)]["path"]
    return [name for _, name, _, _ in string.Formatter().parse(template) if name]


def resolve_endpoint(kind: str, payload: Mapping[str, Any]) -> Tuple[str, str, Dict[str, Any]]:
    """Return ``(method, path, body)`` for a queued action.

    Path values are escaped so a payload can never point the request at another
    endpoint. Raises ``KeyError`` naming the first path parameter missing from
    ``payload``.
    """
    meta = ACTION_KIND_META[normalize_kind(kind)]
    params = path_params(kind)
    values = {}
    for name in params:
        value = payload.get(name)
        if value is None or value == "":
            raise KeyError(name)
        values[name] = quote(str(value), safe="")
    body = {key: value for key, value in payload.items() if key not in values}
    return meta["method"], meta["path"].format(**values), body


def kind_options() -> Dict[str, str]:
    """Return mapping of kind tag -> human readable label."""
    return {kind: meta["label"] for kind, meta in ACTION_KIND_META.items()}


__all__ = [
    "ACTION_KIND_META",
    "is_known_kind",
    "kind_label",
    "kind_options",
    "normalize_kind",
    "path_params",
    "resolve_endpoint",
]
