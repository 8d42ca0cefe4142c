from __future__ import annotations

import json
import logging
from typing import Any, Callable, List, Optional, Tuple


logger = logging.getLogger("geminichat.provider")


def _dig(node: Any, *path: Any) -> Any:
    """Walk dict keys / list indexes, returning None as soon as the shape breaks."""
    for key in path:
        if isinstance(key, int):
            if not isinstance(node, list) or key >= len(node):
                return None
            node = node[key]
        else:
            if not isinstance(node, dict):
                return None
            node = node.get(key)
        if node is None:
            return None
    return node


def _first_part_text(root: Any) -> Optional[str]:
    text = _dig(root, "candidates", 0, "content", "parts", 0, "text")
    return text if isinstance(text, str) else None


def _joined_parts_text(root: Any) -> Optional[str]:
    parts = _dig(root, "candidates", 0, "content", "parts")
    if not isinstance(parts, list):
        return None
    texts = [_dig(part, "text") for part in parts]
    return "\n".join(text for text in texts if isinstance(text, str) and text)


def _unwrapped(response: Any) -> Any:
    return _dig(response, "response")


def _as_is(response: Any) -> Any:
    return response


# Tried in order; the provider's response shape has changed between SDK versions.
_STRATEGIES: List[Tuple[Callable[[Any], Any], Callable[[Any], Optional[str]]]] = [
    (_unwrapped, _first_part_text),
    (_as_is, _first_part_text),
    (_unwrapped, _joined_parts_text),
    (_as_is, _joined_parts_text),
]


def _dump(response: Any) -> str:
    try:
        return json.dumps(response, indent=2, ensure_ascii=False, default=str)
    except (TypeError, ValueError):
        return str(response)


def extract_text(response: Any) -> str:
    """Pull a flat reply string out of an opaque provider response.

    Falls back to the JSON rendering of the whole response when none of the
    known shapes match. Never raises.
    """
    try:
        for select_root, read_text in _STRATEGIES:
            text = read_text(select_root(response))
            if text is not None:
                return text
    except Exception:
        logger.exception("Error extracting text from provider response")
    return _dump(response)
