"""Pack identical media queries into single blocks.

Rules inside ``@media`` blocks with the same query are merged into one block,
and all media blocks move after the plain rules. With sorting on, blocks are
ordered mobile-first: queries without a ``min-width`` keep their relative
order, followed by the rest by ascending ``min-width``.
"""

from __future__ import annotations

import re
from typing import Optional

from .tree import AtBlock, Node

_MIN_WIDTH_RE = re.compile(r"min-width\s*:\s*(-?\d*\.?\d+)\s*(px|em|rem)?", re.I)
_WS_RE = re.compile(r"\s+")

# em/rem breakpoints against the browser default font size
_EM_PX = 16.0


def query_key(prelude: str) -> str:
    return _WS_RE.sub(" ", prelude.strip().lower())


def min_width(prelude: str) -> Optional[float]:
    m = _MIN_WIDTH_RE.search(prelude)
    if not m:
        return None
    value = float(m.group(1))
    unit = (m.group(2) or "px").lower()
    return value * _EM_PX if unit in ("em", "rem") else value


def pack(nodes: list[Node], sort: bool = True) -> list[Node]:
    plain: list[Node] = []
    blocks: dict[str, AtBlock] = {}
    for node in nodes:
        if isinstance(node, AtBlock) and node.keyword == "media":
            key = query_key(node.prelude)
            if key in blocks:
                blocks[key].rules.extend(node.rules)
            else:
                blocks[key] = AtBlock(node.keyword, node.prelude, list(node.rules), node.line, node.column)
        else:
            plain.append(node)

    media = list(blocks.values())
    if sort:
        # stable: ties and width-less queries keep source order
        media.sort(key=lambda b: (min_width(b.prelude) is not None, min_width(b.prelude) or 0.0))
    return plain + media
