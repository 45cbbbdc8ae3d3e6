# Copyright (c) 2025 Arne Deutsch, itemis AG, MIT License
"""Variable keys shared between the scene graph and the optimizer.

Summary
-------
A key packs a one-character category into the top byte of a 64-bit integer
and a running index into the remaining 56 bits. Node ids in the graph are
these keys, so a solved-variable set can be matched against graph nodes
without any translation table.

Examples
--------
>>> NodeSymbol("p", 12).key == NodeSymbol.from_key(NodeSymbol("p", 12).key).key
True
>>> str(NodeSymbol("p", 12))
'p12'
"""

from __future__ import annotations

from dataclasses import dataclass

_CHAR_BITS = 8
_INDEX_BITS = 64 - _CHAR_BITS
_INDEX_MASK = (1 << _INDEX_BITS) - 1


@dataclass(frozen=True, order=True)
class NodeSymbol:
    """Category character plus index."""

    category: str
    index: int

    def __post_init__(self) -> None:
        if len(self.category) != 1 or ord(self.category) >= 0x80:
            raise ValueError(f"category must be a single ASCII character, got {self.category!r}")
        if not 0 <= self.index <= _INDEX_MASK:
            raise ValueError(f"index out of range: {self.index}")

    @property
    def key(self) -> int:
        return (ord(self.category) << _INDEX_BITS) | self.index

    @classmethod
    def from_key(cls, key: int) -> "NodeSymbol":
        """Decode ``key`` into category and index."""

        return cls(chr((int(key) >> _INDEX_BITS) & 0xFF), int(key) & _INDEX_MASK)

    def __int__(self) -> int:
        return self.key

    def __str__(self) -> str:
        return f"{self.category}{self.index}"


def key_category(key: int) -> str:
    """Return the category character encoded in ``key``."""

    return chr((int(key) >> _INDEX_BITS) & 0xFF)


def format_key(key: int) -> str:
    """Human readable form of ``key`` used in log messages."""

    sym = NodeSymbol.from_key(key)
    return str(sym) if ord(sym.category) else str(int(key))


__all__ = ["NodeSymbol", "key_category", "format_key"]
