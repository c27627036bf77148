"""Vendor prefixing driven by browser targets.

Targets use a subset of the browserslist query language:

    last 10 versions        the last N releases of every known browser
    last 2 Chrome versions  the last N releases of one browser
    IE 8                    one exact release
    Safari >= 9             every known release from a version on

Support data is a compact snapshot: for each property, which prefix a browser
needed and for which range of versions. A declaration gets a prefixed copy
when at least one targeted version falls inside such a range and the rule
does not already carry that copy. The same data for ``animation`` decides
which vendor copies of ``@keyframes`` blocks are emitted.
"""

from __future__ import annotations

import copy
import re
from dataclasses import dataclass
from typing import Iterable, Optional

from .tree import AtBlock, Declaration, Node, Rule

INF = float("inf")


def _versions(*chunks: Iterable[float]) -> tuple[float, ...]:
    out: list[float] = []
    for chunk in chunks:
        out.extend(float(v) for v in chunk)
    return tuple(sorted(set(out)))


BROWSER_VERSIONS: dict[str, tuple[float, ...]] = {
    "ie": _versions([5.5, 6, 7, 8, 9, 10, 11]),
    "edge": _versions(range(12, 19), range(79, 122)),
    "firefox": _versions([2, 3, 3.5, 3.6], range(4, 122)),
    "chrome": _versions(range(4, 122)),
    "safari": _versions([3.1, 3.2, 4, 5, 5.1, 6, 6.1, 7, 7.1, 8, 9, 9.1, 10, 10.1, 11, 11.1,
                         12, 12.1, 13, 13.1, 14, 14.1, 15, 15.1, 15.2, 15.4, 15.5, 15.6,
                         16, 16.1, 16.2, 16.3, 16.4, 16.5, 16.6, 17, 17.1, 17.2]),
    "opera": _versions([9, 9.5, 10, 10.5, 10.6, 11, 11.1, 11.5, 11.6, 12, 12.1], range(15, 107)),
    "ios_saf": _versions([3.2, 4, 4.2, 5, 6, 7, 8, 9, 10, 11, 12, 13, 14, 15, 16, 17]),
    "android": _versions([2.1, 2.2, 2.3, 3, 4, 4.1, 4.2, 4.3, 4.4, 120]),
}

BROWSER_ALIASES = {
    "ie": "ie", "explorer": "ie", "internetexplorer": "ie",
    "edge": "edge",
    "firefox": "firefox", "ff": "firefox",
    "chrome": "chrome",
    "safari": "safari",
    "opera": "opera",
    "ios": "ios_saf", "ios_saf": "ios_saf", "iossafari": "ios_saf",
    "android": "android",
}

PREFIX_ORDER = ("-webkit-", "-moz-", "-ms-", "-o-")


@dataclass(frozen=True)
class PrefixRange:
    prefix: str
    family: str
    since: float  # first version understanding the prefixed form
    until: float  # first version understanding the unprefixed form


def _webkit(chrome: tuple[float, float], safari: tuple[float, float], *, opera=None, android=None, ios=None):
    ranges = [
        PrefixRange("-webkit-", "chrome", *chrome),
        PrefixRange("-webkit-", "safari", *safari),
        PrefixRange("-webkit-", "ios_saf", *(ios or safari)),
    ]
    if opera:
        ranges.append(PrefixRange("-webkit-", "opera", *opera))
    if android:
        ranges.append(PrefixRange("-webkit-", "android", *android))
    return ranges


_COLUMNS = _webkit((4, 50), (3.1, 9), opera=(15, 37), android=(2.1, 120)) + [
    PrefixRange("-moz-", "firefox", 2, 52),
]
_FLEX = _webkit((21, 29), (6.1, 9), opera=(15, 16), android=(4.4, 120), ios=(7, 9))

PROPERTY_PREFIXES: dict[str, list[PrefixRange]] = {
    "transform": _webkit((4, 36), (3.1, 9), opera=(15, 23), android=(2.1, 120)) + [
        PrefixRange("-moz-", "firefox", 3.5, 16),
        PrefixRange("-ms-", "ie", 9, 10),
        PrefixRange("-o-", "opera", 10.5, 12.1),
    ],
    "transform-origin": _webkit((4, 36), (3.1, 9), opera=(15, 23), android=(2.1, 120)) + [
        PrefixRange("-moz-", "firefox", 3.5, 16),
        PrefixRange("-ms-", "ie", 9, 10),
        PrefixRange("-o-", "opera", 10.5, 12.1),
    ],
    "transition": _webkit((4, 26), (3.1, 7), android=(2.1, 4.4)) + [
        PrefixRange("-moz-", "firefox", 4, 16),
        PrefixRange("-o-", "opera", 10.5, 12.1),
    ],
    "animation": _webkit((4, 43), (4, 9), opera=(15, 30), android=(2.1, 120)) + [
        PrefixRange("-moz-", "firefox", 5, 16),
        PrefixRange("-o-", "opera", 12, 12.1),
    ],
    "user-select": _webkit((6, 54), (3.1, INF), opera=(15, 41), android=(2.1, 120)) + [
        PrefixRange("-moz-", "firefox", 2, 69),
        PrefixRange("-ms-", "ie", 10, INF),
        PrefixRange("-ms-", "edge", 12, 79),
    ],
    "appearance": _webkit((4, 84), (3.1, 15.4), opera=(15, 70), android=(2.1, 120)) + [
        PrefixRange("-moz-", "firefox", 2, 80),
    ],
    "box-sizing": _webkit((4, 10), (3.1, 5.1), android=(2.1, 4)) + [
        PrefixRange("-moz-", "firefox", 2, 29),
    ],
    "border-radius": _webkit((4, 5), (3.1, 5), android=(2.1, 2.2)) + [
        PrefixRange("-moz-", "firefox", 2, 4),
    ],
    "box-shadow": _webkit((4, 10), (3.1, 5.1), android=(2.1, 4)) + [
        PrefixRange("-moz-", "firefox", 3.5, 4),
    ],
    "backface-visibility": _webkit((12, 36), (4, 15.4), opera=(15, 23), android=(3, 120)) + [
        PrefixRange("-moz-", "firefox", 10, 16),
    ],
    "hyphens": [
        PrefixRange("-webkit-", "safari", 5.1, 17),
        PrefixRange("-webkit-", "ios_saf", 4.2, 17),
        PrefixRange("-moz-", "firefox", 6, 43),
        PrefixRange("-ms-", "ie", 10, INF),
        PrefixRange("-ms-", "edge", 12, 79),
    ],
    "filter": _webkit((18, 53), (6, 9.1), opera=(15, 40), android=(4.4, 120)),
    "columns": _COLUMNS,
    "column-count": _COLUMNS,
    "column-gap": _COLUMNS,
    "column-rule": _COLUMNS,
    "column-width": _COLUMNS,
    "flex": _FLEX + [PrefixRange("-ms-", "ie", 10, 11)],
    "flex-direction": _FLEX + [PrefixRange("-ms-", "ie", 10, 11)],
    "flex-wrap": _FLEX + [PrefixRange("-ms-", "ie", 10, 11)],
    "flex-flow": _FLEX + [PrefixRange("-ms-", "ie", 10, 11)],
    "flex-grow": _FLEX,
    "flex-shrink": _FLEX,
    "flex-basis": _FLEX,
    "order": _FLEX,
    "justify-content": _FLEX,
    "align-items": _FLEX,
    "align-self": _FLEX,
    "align-content": _FLEX,
}

# Shorthand sub-properties share their parent's support data
for _name in ("transition-property", "transition-duration", "transition-timing-function", "transition-delay"):
    PROPERTY_PREFIXES[_name] = PROPERTY_PREFIXES["transition"]
for _name in ("animation-name", "animation-duration", "animation-timing-function", "animation-delay",
              "animation-iteration-count", "animation-direction", "animation-fill-mode",
              "animation-play-state"):
    PROPERTY_PREFIXES[_name] = PROPERTY_PREFIXES["animation"]

# display values: (value, prefixed value, ranges)
DISPLAY_VALUES: dict[str, list[tuple[str, PrefixRange]]] = {
    "flex": [("-webkit-flex", r) for r in _FLEX] + [("-ms-flexbox", PrefixRange("-ms-", "ie", 10, 11))],
    "inline-flex": [("-webkit-inline-flex", r) for r in _FLEX]
    + [("-ms-inline-flexbox", PrefixRange("-ms-", "ie", 10, 11))],
}


# ---------------------------------------------------------------------------
# Target queries
# ---------------------------------------------------------------------------

_LAST_ALL_RE = re.compile(r"^last\s+(\d+)\s+versions?$", re.I)
_LAST_ONE_RE = re.compile(r"^last\s+(\d+)\s+(\w+)\s+versions?$", re.I)
_EXACT_RE = re.compile(r"^(\w+)\s+(\d+(?:\.\d+)?)$", re.I)
_FROM_RE = re.compile(r"^(\w+)\s*>=\s*(\d+(?:\.\d+)?)$", re.I)


def _family(name: str) -> str:
    key = name.lower().replace(" ", "")
    if key not in BROWSER_ALIASES:
        raise ValueError(f"Unknown browser '{name}'")
    return BROWSER_ALIASES[key]


def resolve_targets(queries: Iterable[str]) -> dict[str, set[float]]:
    """Expand browser queries into ``{family: {versions}}``.

    Raises:
        ValueError: For unknown browsers or query forms.
    """
    targets: dict[str, set[float]] = {}
    for raw in queries:
        query = raw.strip()
        last_all = _LAST_ALL_RE.match(query)
        last_one = _LAST_ONE_RE.match(query)
        from_version = _FROM_RE.match(query)
        exact = _EXACT_RE.match(query)
        if last_all:
            n = int(last_all.group(1))
            for family, versions in BROWSER_VERSIONS.items():
                targets.setdefault(family, set()).update(versions[-n:])
        elif last_one:
            family = _family(last_one.group(2))
            targets.setdefault(family, set()).update(BROWSER_VERSIONS[family][-int(last_one.group(1)):])
        elif from_version:
            family = _family(from_version.group(1))
            floor = float(from_version.group(2))
            targets.setdefault(family, set()).update(v for v in BROWSER_VERSIONS[family] if v >= floor)
        elif exact:
            targets.setdefault(_family(exact.group(1)), set()).add(float(exact.group(2)))
        else:
            raise ValueError(f"Unsupported browser query '{raw}'")
    return targets


# ---------------------------------------------------------------------------
# Prefixer
# ---------------------------------------------------------------------------

def _prefix_rank(prefix: str) -> int:
    return PREFIX_ORDER.index(prefix) if prefix in PREFIX_ORDER else len(PREFIX_ORDER)


def _keyframes_prefix(keyword: str) -> Optional[str]:
    if keyword.startswith("-") and keyword.endswith("keyframes"):
        return keyword[: -len("keyframes")]
    return None


class Prefixer:
    """Add vendor-prefixed copies of declarations for the configured targets."""

    def __init__(self, browsers: Iterable[str], cascade: bool = False) -> None:
        self.browsers = tuple(browsers)
        self.cascade = cascade
        self.targets = resolve_targets(self.browsers)

    def _needed(self, ranges: Iterable[PrefixRange]) -> bool:
        for r in ranges:
            if any(r.since <= v < r.until for v in self.targets.get(r.family, ())):
                return True
        return False

    def prefixes_for(self, prop: str) -> list[str]:
        ranges = PROPERTY_PREFIXES.get(prop.lower(), [])
        found = {r.prefix for r in ranges if self._needed([r])}
        return sorted(found, key=_prefix_rank)

    def display_values_for(self, value: str) -> list[str]:
        out: list[str] = []
        for prefixed, r in DISPLAY_VALUES.get(value.lower(), []):
            if prefixed not in out and self._needed([r]):
                out.append(prefixed)
        return sorted(out, key=lambda v: _prefix_rank("-" + v.split("-")[1] + "-"))

    def process(self, nodes: list[Node]) -> list[Node]:
        """Prefix every rule in place and return *nodes*.

        Each ``@keyframes`` block gets a vendor copy for every prefix that
        ``animation`` needs. Declarations inside a vendor copy only take that
        vendor's prefix.
        """
        self._walk(nodes, None)
        return nodes

    def _walk(self, nodes: list[Node], only: Optional[str]) -> None:
        self._add_keyframes(nodes)
        for node in nodes:
            if isinstance(node, Rule):
                self._prefix_rule(node, only)
            elif isinstance(node, AtBlock):
                self._walk(node.rules, _keyframes_prefix(node.keyword) or only)

    def _add_keyframes(self, nodes: list[Node]) -> None:
        prefixes = self.prefixes_for("animation")
        if not prefixes:
            return
        present = {(n.keyword, n.prelude) for n in nodes if isinstance(n, AtBlock)}
        out: list[Node] = []
        for node in nodes:
            if isinstance(node, AtBlock) and node.keyword == "keyframes":
                for prefix in prefixes:
                    if (prefix + "keyframes", node.prelude) in present:
                        continue
                    clone = copy.deepcopy(node)
                    clone.keyword = prefix + "keyframes"
                    out.append(clone)
            out.append(node)
        nodes[:] = out

    def _prefix_rule(self, rule: Rule, only: Optional[str]) -> None:
        existing = {(d.lower_name, d.value) for d in rule.declarations}
        names = {d.lower_name for d in rule.declarations}
        out: list[Declaration] = []
        for decl in rule.declarations:
            if decl.lower_name.startswith("-"):
                out.append(decl)
                continue
            if decl.lower_name == "display":
                for value in self.display_values_for(decl.value):
                    if only is not None and not value.startswith(only):
                        continue
                    if ("display", value) not in existing:
                        out.append(Declaration("display", value, decl.important, decl.line, decl.column))
                out.append(decl)
                continue
            clones = [
                Declaration(prefix + decl.name, decl.value, decl.important, decl.line, decl.column)
                for prefix in self.prefixes_for(decl.lower_name)
                if prefix + decl.lower_name not in names and only in (None, prefix)
            ]
            if self.cascade and clones:
                width = max(len(c.name) - len(decl.name) for c in clones)
                for clone in clones:
                    clone.pad = width - (len(clone.name) - len(decl.name))
                decl.pad = width
            out.extend(clones)
            out.append(decl)
        rule.declarations = out
