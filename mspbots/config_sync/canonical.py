"""Canonical form and content digest for JSON-like configuration.

Canonicalization sorts object keys at every level so two configurations
that differ only in key order hash the same. Traversal uses an explicit
stack; cycles and excessive nesting raise ``CanonicalizationError``.
"""

from __future__ import annotations

import hashlib
import json
from typing import Any

from mspbots.utils.exceptions import CanonicalizationError

MAX_DEPTH = 512

_ENTER = 0
_EXIT = 1


def canonicalize(value: Any, *, max_depth: int = MAX_DEPTH) -> Any:
    """Return a copy of ``value`` with every dict's keys in sorted order.

    Lists keep their order. Tuples become lists. Scalars are returned as is.
    Shared (non-cyclic) sub-objects are allowed and copied per occurrence.
    """
    root: list[Any] = [None]
    # (op, node, parent container, slot in parent)
    stack: list[tuple[int, Any, Any, Any]] = [(_ENTER, value, root, 0)]
    path: set[int] = set()

    while stack:
        op, node, parent, slot = stack.pop()
        if op == _EXIT:
            path.discard(node)
            continue

        if isinstance(node, dict):
            children = sorted(node.items(), key=lambda kv: str(kv[0]))
            out: Any = {str(k): None for k, _ in children}
        elif isinstance(node, (list, tuple)):
            children = list(enumerate(node))
            out = [None] * len(children)
        else:
            parent[slot] = node
            continue

        node_id = id(node)
        if node_id in path:
            raise CanonicalizationError("cyclic reference in configuration payload")
        if len(path) >= max_depth:
            raise CanonicalizationError(f"configuration nesting exceeds {max_depth} levels")
        parent[slot] = out
        path.add(node_id)
        stack.append((_EXIT, node_id, None, None))
        for key, child in reversed(children):
            stack.append((_ENTER, child, out, str(key) if isinstance(out, dict) else key))

    return root[0]


def canonical_json(value: Any) -> str:
    """Compact JSON text of the canonical form."""
    return json.dumps(canonicalize(value), ensure_ascii=False, separators=(",", ":"))


def content_hash(value: Any) -> str:
    """MD5 hex digest of the canonical JSON text.

    Raises:
        CanonicalizationError: the structure is cyclic, too deep, or holds
            text that is not valid UTF-8 (lone surrogates from JSON escapes).
    """
    try:
        data = canonical_json(value).encode("utf-8")
    except UnicodeEncodeError as e:
        raise CanonicalizationError(f"configuration payload is not valid UTF-8: {e.reason}") from e
    return hashlib.md5(data).hexdigest()
