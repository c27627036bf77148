"""Source Map v3 support.

Covers what the build steps need: decoding and encoding the base64-VLQ
``mappings`` field, position lookup, composing a map with the map of its
input, embedding maps as ``sourceMappingURL`` comments, and remapping through
minifiers that only delete characters (whitespace and comments).

All line and column numbers are 0-based, as in the format itself.
"""

from __future__ import annotations

import base64
import bisect
import json
import re
from dataclasses import dataclass
from typing import Any, Iterable, Optional

_B64 = "ABCDEFGHIJKLMNOPQRSTUVWXYZabcdefghijklmnopqrstuvwxyz0123456789+/"
_B64_INDEX = {c: i for i, c in enumerate(_B64)}

_DATA_URL_PREFIX = "data:application/json;charset=utf8;base64,"
_CSS_URL_RE = re.compile(r"\n?/\*# sourceMappingURL=(\S+?) ?\*/\s*$")
_JS_URL_RE = re.compile(r"\n?//# sourceMappingURL=(\S+)\s*$")


# ---------------------------------------------------------------------------
# VLQ codec
# ---------------------------------------------------------------------------

def vlq_encode(value: int) -> str:
    vlq = ((-value) << 1) | 1 if value < 0 else value << 1
    out: list[str] = []
    while True:
        digit = vlq & 31
        vlq >>= 5
        if vlq:
            digit |= 32
        out.append(_B64[digit])
        if not vlq:
            return "".join(out)


def vlq_decode(segment: str) -> list[int]:
    values: list[int] = []
    value = shift = 0
    for ch in segment:
        try:
            digit = _B64_INDEX[ch]
        except KeyError:
            raise ValueError(f"Invalid base64 VLQ character {ch!r}") from None
        value += (digit & 31) << shift
        if digit & 32:
            shift += 5
            continue
        negative = value & 1
        value >>= 1
        values.append(-value if negative else value)
        value = shift = 0
    if shift:
        raise ValueError(f"Truncated VLQ segment {segment!r}")
    return values


# ---------------------------------------------------------------------------
# Map model
# ---------------------------------------------------------------------------

@dataclass(frozen=True)
class Mapping:
    generated_line: int
    generated_column: int
    source: Optional[str] = None
    original_line: int = 0
    original_column: int = 0
    name: Optional[str] = None


class SourceMap:
    """An immutable-by-convention Source Map v3."""

    def __init__(
        self,
        file: str = "",
        mappings: Iterable[Mapping] = (),
        sources_content: Optional[dict[str, Optional[str]]] = None,
        source_root: str = "",
        sources: Iterable[str] = (),
    ) -> None:
        self.file = file
        self.source_root = source_root
        self.mappings = sorted(mappings, key=lambda m: (m.generated_line, m.generated_column))
        self.sources_content = dict(sources_content or {})
        order: list[str] = list(dict.fromkeys(sources))
        for m in self.mappings:
            if m.source is not None and m.source not in order:
                order.append(m.source)
        self.sources = order
        self._by_line: dict[int, list[Mapping]] = {}
        for m in self.mappings:
            self._by_line.setdefault(m.generated_line, []).append(m)

    def __repr__(self) -> str:
        return f"SourceMap(file={self.file!r}, sources={self.sources!r}, mappings={len(self.mappings)})"

    # -- query ---------------------------------------------------------------

    def lookup(self, line: int, column: int) -> Optional[Mapping]:
        """Return the mapping covering (line, column), or None."""
        row = self._by_line.get(line)
        if not row:
            return None
        cols = [m.generated_column for m in row]
        idx = bisect.bisect_right(cols, column) - 1
        if idx < 0:
            return None
        return row[idx]

    # -- transforms ----------------------------------------------------------

    def compose(self, upstream: Optional["SourceMap"]) -> "SourceMap":
        """Trace this map's original positions back through *upstream*.

        This map describes output -> intermediate; *upstream* describes
        intermediate -> original. Mappings with no upstream counterpart are
        dropped.
        """
        if upstream is None:
            return self
        composed: list[Mapping] = []
        for m in self.mappings:
            if m.source is None:
                continue
            hit = upstream.lookup(m.original_line, m.original_column)
            if hit is None or hit.source is None:
                continue
            composed.append(Mapping(
                generated_line=m.generated_line,
                generated_column=m.generated_column,
                source=hit.source,
                original_line=hit.original_line,
                original_column=hit.original_column,
                name=hit.name or m.name,
            ))
        return SourceMap(
            file=self.file,
            mappings=composed,
            sources_content=upstream.sources_content,
            source_root=upstream.source_root,
            sources=upstream.sources,
        )

    def with_file(self, file: str) -> "SourceMap":
        return SourceMap(file, self.mappings, self.sources_content, self.source_root, self.sources)

    def with_source_root(self, source_root: str) -> "SourceMap":
        return SourceMap(self.file, self.mappings, self.sources_content, source_root, self.sources)

    # -- serialization -------------------------------------------------------

    def to_dict(self, include_content: bool = True) -> dict[str, Any]:
        names: list[str] = list(dict.fromkeys(m.name for m in self.mappings if m.name))
        source_index = {s: i for i, s in enumerate(self.sources)}
        name_index = {n: i for i, n in enumerate(names)}

        lines: list[str] = []
        prev_source = prev_line = prev_col = prev_name = 0
        last_line = self.mappings[-1].generated_line if self.mappings else -1
        for line_no in range(last_line + 1):
            segments: list[str] = []
            prev_gen_col = 0
            for m in self._by_line.get(line_no, []):
                seg = vlq_encode(m.generated_column - prev_gen_col)
                prev_gen_col = m.generated_column
                if m.source is not None:
                    idx = source_index[m.source]
                    seg += vlq_encode(idx - prev_source)
                    seg += vlq_encode(m.original_line - prev_line)
                    seg += vlq_encode(m.original_column - prev_col)
                    prev_source, prev_line, prev_col = idx, m.original_line, m.original_column
                    if m.name:
                        seg += vlq_encode(name_index[m.name] - prev_name)
                        prev_name = name_index[m.name]
                segments.append(seg)
            lines.append(",".join(segments))

        data: dict[str, Any] = {
            "version": 3,
            "file": self.file,
            "sources": list(self.sources),
            "names": names,
            "mappings": ";".join(lines),
        }
        if self.source_root:
            data["sourceRoot"] = self.source_root
        if include_content:
            data["sourcesContent"] = [self.sources_content.get(s) for s in self.sources]
        return data

    def to_json(self, include_content: bool = True) -> str:
        return json.dumps(self.to_dict(include_content=include_content), separators=(",", ":"))

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "SourceMap":
        if data.get("version") != 3:
            raise ValueError(f"Unsupported source map version: {data.get('version')!r}")
        sources: list[str] = list(data.get("sources") or [])
        names: list[str] = list(data.get("names") or [])
        contents = data.get("sourcesContent") or []

        mappings: list[Mapping] = []
        src = line = col = name = 0
        for gen_line, raw_line in enumerate((data.get("mappings") or "").split(";")):
            gen_col = 0
            for raw in raw_line.split(","):
                if not raw:
                    continue
                fields = vlq_decode(raw)
                gen_col += fields[0]
                if len(fields) == 1:
                    mappings.append(Mapping(gen_line, gen_col))
                    continue
                if len(fields) < 4:
                    raise ValueError(f"Malformed mapping segment {raw!r}")
                src += fields[1]
                line += fields[2]
                col += fields[3]
                mapped_name = None
                if len(fields) >= 5:
                    name += fields[4]
                    mapped_name = names[name]
                mappings.append(Mapping(gen_line, gen_col, sources[src], line, col, mapped_name))

        return cls(
            file=data.get("file") or "",
            mappings=mappings,
            sources_content={s: contents[i] for i, s in enumerate(sources) if i < len(contents)},
            source_root=data.get("sourceRoot") or "",
            sources=sources,
        )

    @classmethod
    def from_json(cls, text: str) -> "SourceMap":
        return cls.from_dict(json.loads(text))


# ---------------------------------------------------------------------------
# sourceMappingURL comments
# ---------------------------------------------------------------------------

def _is_css(filename: str) -> bool:
    return filename.endswith(".css")


def url_comment(url: str, filename: str) -> str:
    if _is_css(filename):
        return f"\n/*# sourceMappingURL={url} */\n"
    return f"\n//# sourceMappingURL={url}\n"


def inline_comment(smap: SourceMap, filename: str, include_content: bool = True) -> str:
    payload = base64.b64encode(smap.to_json(include_content).encode("utf-8")).decode("ascii")
    return url_comment(_DATA_URL_PREFIX + payload, filename)


def split_url_comment(text: str) -> tuple[str, Optional[str]]:
    """Strip a trailing sourceMappingURL comment; return (text, url)."""
    for regex in (_CSS_URL_RE, _JS_URL_RE):
        m = regex.search(text)
        if m:
            return text[: m.start()] + ("\n" if text.endswith("\n") else ""), m.group(1)
    return text, None


def decode_data_url(url: str) -> Optional[SourceMap]:
    if not url.startswith("data:application/json"):
        return None
    _, _, payload = url.partition(",")
    raw = base64.b64decode(payload).decode("utf-8") if ";base64" in url.split(",", 1)[0] else payload
    return SourceMap.from_json(raw)


# ---------------------------------------------------------------------------
# Remapping helpers
# ---------------------------------------------------------------------------

class _LineIndex:
    """Offset -> (line, column) for a text."""

    def __init__(self, text: str) -> None:
        self._starts = [0] + [i + 1 for i, ch in enumerate(text) if ch == "\n"]

    def position(self, offset: int) -> tuple[int, int]:
        line = bisect.bisect_right(self._starts, offset) - 1
        return line, offset - self._starts[line]


def identity_map(text: str, source: str, file: str = "") -> SourceMap:
    """Map every line start of *text* to the same line of *source*."""
    mappings = [Mapping(i, 0, source, i, 0) for i, _ in enumerate(text.split("\n"))]
    return SourceMap(file=file, mappings=mappings)


def remap_deletions(
    before: str,
    after: str,
    upstream: Optional[SourceMap],
    *,
    source: str = "",
    file: str = "",
) -> SourceMap:
    """Build a map for *after*, produced from *before* by deleting characters.

    Each output character is matched greedily to the next equal character of
    the input. A mapping is emitted wherever the input skipped characters or a
    new output line starts, which is where minifiers drop whitespace and
    comments. Positions are then traced through *upstream* when given;
    otherwise they point into *before* under the name *source*.
    """
    index = _LineIndex(before)
    mappings: list[Mapping] = []
    last_original: Optional[tuple[Optional[str], int, int]] = None

    i = 0
    out_line = out_col = 0
    n = len(before)
    for j, ch in enumerate(after):
        start = i
        while i < n and before[i] != ch:
            i += 1
        if i >= n:
            break
        if j == 0 or i != start or out_col == 0:
            line, col = index.position(i)
            if upstream is not None:
                hit = upstream.lookup(line, col)
                target = (hit.source, hit.original_line, hit.original_column) if hit and hit.source else None
            else:
                target = (source, line, col)
            if target is not None and target != last_original:
                mappings.append(Mapping(out_line, out_col, target[0], target[1], target[2]))
                last_original = target
        i += 1
        if ch == "\n":
            out_line += 1
            out_col = 0
            last_original = None
        else:
            out_col += 1

    return SourceMap(
        file=file,
        mappings=mappings,
        sources_content=upstream.sources_content if upstream else None,
        source_root=upstream.source_root if upstream else "",
        sources=upstream.sources if upstream else (),
    )
