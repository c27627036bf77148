"""A small CSS rule tree on top of tinycss2.

Post-processors rewrite declarations and move whole media blocks around, so
every node keeps the position it was parsed from. Serializing the tree
reports where each node landed in the output, which is enough to carry a
source map across the rewrite.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from typing import Optional, Union

import tinycss2
from loguru import logger

from ..sourcemap import Mapping, SourceMap

_WS_RE = re.compile(r"\s+")

# At-rules whose body is a list of rules we descend into
BLOCK_AT_RULES = {"media", "supports", "keyframes", "-webkit-keyframes", "-moz-keyframes", "-o-keyframes"}


@dataclass
class Declaration:
    name: str
    value: str
    important: bool = False
    line: int = 0
    column: int = 0
    pad: int = 0  # extra leading spaces (prefix cascade alignment)

    @property
    def lower_name(self) -> str:
        return self.name.lower()


@dataclass
class Rule:
    selector: str
    declarations: list[Declaration] = field(default_factory=list)
    line: int = 0
    column: int = 0


@dataclass
class AtBlock:
    keyword: str
    prelude: str
    rules: list["Node"] = field(default_factory=list)
    line: int = 0
    column: int = 0


@dataclass
class RawNode:
    """Any at-rule kept verbatim (@import, @font-face, @page, ...)."""
    text: str
    line: int = 0
    column: int = 0


Node = Union[Rule, AtBlock, RawNode]


def _pos(node) -> tuple[int, int]:
    return max(node.source_line - 1, 0), max(node.source_column - 1, 0)


def _convert(nodes) -> list[Node]:
    out: list[Node] = []
    for node in nodes:
        if node.type == "qualified-rule":
            line, col = _pos(node)
            rule = Rule(
                selector=_WS_RE.sub(" ", tinycss2.serialize(node.prelude)).strip(),
                line=line,
                column=col,
            )
            for item in tinycss2.parse_declaration_list(node.content, skip_comments=True, skip_whitespace=True):
                if item.type != "declaration":
                    continue
                dline, dcol = _pos(item)
                rule.declarations.append(Declaration(
                    name=item.name,
                    value=tinycss2.serialize(item.value).strip(),
                    important=item.important,
                    line=dline,
                    column=dcol,
                ))
            out.append(rule)
        elif node.type == "at-rule":
            line, col = _pos(node)
            if node.lower_at_keyword in BLOCK_AT_RULES and node.content is not None:
                children = tinycss2.parse_rule_list(node.content, skip_comments=True, skip_whitespace=True)
                out.append(AtBlock(
                    keyword=node.lower_at_keyword,
                    prelude=_WS_RE.sub(" ", tinycss2.serialize(node.prelude)).strip(),
                    rules=_convert(children),
                    line=line,
                    column=col,
                ))
            else:
                out.append(RawNode(text=node.serialize().strip(), line=line, column=col))
        elif node.type == "error":
            logger.debug("Ignoring unparsable CSS at {}:{}: {}", node.source_line, node.source_column, node.message)
    return out


def parse(css: str) -> list[Node]:
    """Parse a stylesheet into a rule tree, dropping comments."""
    return _convert(tinycss2.parse_stylesheet(css, skip_comments=True, skip_whitespace=True))


@dataclass
class SerializedCss:
    text: str
    # (output line, output column, input line, input column)
    origins: list[tuple[int, int, int, int]]

    def to_sourcemap(self, upstream: Optional[SourceMap], *, source: str = "", file: str = "") -> SourceMap:
        """Map output positions to the input, traced through *upstream* if given."""
        mappings: list[Mapping] = []
        for out_line, out_col, in_line, in_col in self.origins:
            if upstream is None:
                mappings.append(Mapping(out_line, out_col, source, in_line, in_col))
                continue
            hit = upstream.lookup(in_line, in_col)
            if hit is not None and hit.source is not None:
                mappings.append(Mapping(out_line, out_col, hit.source, hit.original_line, hit.original_column))
        return SourceMap(
            file=file,
            mappings=mappings,
            sources_content=upstream.sources_content if upstream else None,
            source_root=upstream.source_root if upstream else "",
            sources=upstream.sources if upstream else [source],
        )


class _Writer:
    def __init__(self, indent: str) -> None:
        self.indent = indent
        self.lines: list[str] = []
        self.origins: list[tuple[int, int, int, int]] = []

    def emit(self, depth: int, text: str, origin: Optional[tuple[int, int]] = None) -> None:
        prefix = self.indent * depth
        if origin is not None:
            self.origins.append((len(self.lines), len(prefix), origin[0], origin[1]))
        self.lines.append(prefix + text)

    def node(self, node: Node, depth: int) -> None:
        if isinstance(node, Rule):
            self.emit(depth, f"{node.selector} {{", (node.line, node.column))
            for decl in node.declarations:
                bang = " !important" if decl.important else ""
                self.emit(
                    depth + 1,
                    " " * decl.pad + f"{decl.name}: {decl.value}{bang};",
                    (decl.line, decl.column),
                )
            self.emit(depth, "}")
        elif isinstance(node, AtBlock):
            self.emit(depth, f"@{node.keyword} {node.prelude} {{", (node.line, node.column))
            for child in node.rules:
                self.node(child, depth + 1)
            self.emit(depth, "}")
        else:
            first, *rest = node.text.split("\n")
            self.emit(depth, first, (node.line, node.column))
            for extra in rest:
                self.lines.append(extra)


def serialize(nodes: list[Node], indent: str = "  ") -> SerializedCss:
    """Write the tree in expanded style (one declaration per line)."""
    writer = _Writer(indent)
    for i, node in enumerate(nodes):
        if i:
            writer.lines.append("")
        writer.node(node, 0)
    text = "\n".join(writer.lines)
    return SerializedCss(text=text + "\n" if text else "", origins=writer.origins)
