"""
Mismatch Index

For every position of the shared reference span and every concrete base
(A, C, G, T), the index records which references do NOT support that base.
A reference supports a base when its own (possibly ambiguous) base expands to
it, so an R in a reference supports both A and G.

The index is stored as a read-only numpy boolean array of shape
(span_length, 4, n_references). It is built once per reference catalog and is
safe to share across concurrent queries.

Example Usage:
    >>> index = MismatchIndex(catalog)
    >>> index.unsupported_references(2253, "A")
    (0, 4, 17)
"""

from __future__ import annotations
from typing import Iterable, Tuple
import logging

import numpy as np

from .references import ReferenceCatalog
from .utils import BASES, BASE_INDEX, expand_ambiguity

logger = logging.getLogger(__name__)


def _support_table() -> np.ndarray:
    """Lookup table: byte value -> boolean support for each of A, C, G, T."""
    table = np.zeros((256, len(BASES)), dtype=bool)
    for code in range(256):
        for base in expand_ambiguity(chr(code)):
            table[code, BASE_INDEX[base]] = True
    return table


_SUPPORT = _support_table()


class MismatchIndex:
    """
    Per-position, per-base lookup of references that fail to support a base.

    Parameters
    ----------
    catalog : ReferenceCatalog
        References sharing one span; an empty catalog yields an empty index

    Attributes
    ----------
    first_na, last_na : int or None
        Indexed span (None for an empty catalog)
    num_references : int
        Number of indexed references
    """

    def __init__(self, catalog: ReferenceCatalog):
        self.num_references = len(catalog)
        self.first_na = catalog.first_na
        self.last_na = catalog.last_na

        span_length = 0
        if self.num_references:
            span_length = self.last_na - self.first_na + 1

        unsupported = np.zeros((span_length, len(BASES), self.num_references), dtype=bool)
        for ref_idx, ref in enumerate(catalog):
            codes = np.frombuffer(ref.sequence.upper().encode("ascii", "replace"), dtype=np.uint8)
            unsupported[:, :, ref_idx] = ~_SUPPORT[codes]

        unsupported.flags.writeable = False
        self._unsupported = unsupported

        logger.info(
            f"Built mismatch index over {self.num_references} references "
            f"({span_length} positions)"
        )

    def __len__(self) -> int:
        return self._unsupported.shape[0]

    def __contains__(self, position: object) -> bool:
        return (
            isinstance(position, (int, np.integer))
            and self.num_references > 0
            and self.first_na <= position <= self.last_na
        )

    def _offset(self, position: int) -> int:
        if position not in self:
            raise IndexError(f"Position {position} is outside the indexed span")
        return position - self.first_na

    def unsupported_references(self, position: int, base: str) -> Tuple[int, ...]:
        """
        References whose base at `position` does not support concrete `base`.

        Parameters
        ----------
        position : int
            Absolute NA position inside the indexed span
        base : str
            One of A, C, G, T

        Returns
        -------
        Tuple[int, ...]
            Ascending reference indices
        """
        column = self._unsupported[self._offset(position), BASE_INDEX[base.upper()]]
        return tuple(int(i) for i in np.flatnonzero(column))

    def discordant_references(self, position: int, base_indices: Iterable[int]) -> np.ndarray:
        """
        References that support none of the given base interpretations.

        An empty set of interpretations (gaps, unknown symbols) is never
        discordant.

        Parameters
        ----------
        position : int
            Absolute NA position inside the indexed span
        base_indices : Iterable[int]
            Indices into ACGT of every interpretation of the query base

        Returns
        -------
        np.ndarray
            Ascending reference indices
        """
        base_indices = list(base_indices)
        if not base_indices:
            return np.empty(0, dtype=np.intp)
        rows = self._unsupported[self._offset(position), base_indices]
        return np.flatnonzero(rows.all(axis=0))
