"""CSS post-processing: rule tree, vendor prefixer, media-query packer."""

from .mqpacker import pack
from .prefixer import Prefixer, resolve_targets
from .tree import parse, serialize

__all__ = ["Prefixer", "pack", "parse", "resolve_targets", "serialize"]
