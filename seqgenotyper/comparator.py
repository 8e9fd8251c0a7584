"""
Sequence Comparator

Scans an aligned query sequence against every indexed reference at once and
reports, per reference, the absolute positions where the query is discordant.

The scan:
1. Leading/trailing placeholder runs are trimmed; trimmed bases are never
   compared.
2. Only the intersection of the query span and the reference span is scanned.
3. A position is discordant for a reference only when no interpretation of the
   (possibly ambiguous) query base is supported by that reference. Placeholder
   and gap characters are never discordant.
4. Each key p of the drug-resistance codon map marks the codon [p, p + 2].
   Inside such a codon discordances are held back until the codon ends (or the
   compared span does). If the observed codon is one of the listed resistance
   codons they are dropped; otherwise they are kept.

Example Usage:
    >>> comparator = SequenceComparator(MismatchIndex(catalog), codon_map)
    >>> comparator.compare("ACGTTGCA", first_na=2253)
    {3: [2255], 7: [2254, 2255]}
"""

from __future__ import annotations
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional
import logging

from .mismatch_index import MismatchIndex
from .utils import base_indices, trim_placeholders

logger = logging.getLogger(__name__)

CODON_LENGTH = 3


class SequenceComparator:
    """
    Compare query sequences against a MismatchIndex.

    Parameters
    ----------
    index : MismatchIndex
        Index built over the reference catalog
    resistance_codons : Mapping[int, Iterable[str]], optional
        Codon start NA position -> codons encoding resistance-associated
        amino acids. Discordances inside such a codon are ignored when the
        query codon is one of these (default: no exemptions)
    placeholders : str, optional
        "No information" characters, trimmed from both ends and skipped
        inside the sequence (default: ".N")

    Raises
    ------
    ValueError
        If two codons of `resistance_codons` overlap
    """

    def __init__(
        self,
        index: MismatchIndex,
        resistance_codons: Optional[Mapping[int, Iterable[str]]] = None,
        placeholders: str = ".N",
    ):
        self.index = index
        self.resistance_codons: Dict[int, FrozenSet[str]] = {
            int(pos): frozenset(codon.upper() for codon in codons)
            for pos, codons in (resistance_codons or {}).items()
        }
        self.placeholders = placeholders
        self._skipped = frozenset(placeholders.upper() + placeholders.lower())

        starts = sorted(self.resistance_codons)
        for previous, current in zip(starts, starts[1:]):
            if current - previous < CODON_LENGTH:
                raise ValueError(
                    f"Resistance codons starting at {previous} and {current} overlap"
                )

    def compare(self, sequence: str, first_na: int) -> Dict[int, List[int]]:
        """
        Find discordant positions of `sequence` for every reference.

        Parameters
        ----------
        sequence : str
            Aligned query sequence
        first_na : int
            Absolute position of the first character of `sequence`

        Returns
        -------
        Dict[int, List[int]]
            Reference index -> ascending discordant absolute positions.
            References without discordance are omitted.
        """
        sequence, first_na, last_na = trim_placeholders(
            sequence.upper(), first_na, self.placeholders
        )
        return self._scan(sequence, first_na, last_na)

    def _mapped_codon_at(self, position: int) -> Optional[int]:
        """Start of the resistance codon covering `position`, if any."""
        for start in range(position, position - CODON_LENGTH, -1):
            if start in self.resistance_codons:
                return start
        return None

    def _scan(self, sequence: str, first_na: int, last_na: int) -> Dict[int, List[int]]:
        discordance: Dict[int, List[int]] = {}
        if not self.index.num_references or not sequence:
            return discordance

        start = max(first_na, self.index.first_na)
        end = min(last_na, self.index.last_na)

        # per-reference discordance held back for the current resistance codon
        pending: Dict[int, List[int]] = {}
        codon_chars: List[str] = []
        current_codon = None

        for position in range(start, end + 1):
            if current_codon is not None and position >= current_codon + CODON_LENGTH:
                self._commit_codon(current_codon, "".join(codon_chars), pending, discordance)
                current_codon = None
            if current_codon is None:
                current_codon = self._mapped_codon_at(position)
                codon_chars = []
                pending = {}

            na = sequence[position - first_na]
            if current_codon is not None:
                codon_chars.append(na)
            if na in self._skipped:
                continue

            refs = self.index.discordant_references(position, base_indices(na))
            if not len(refs):
                continue

            target = pending if current_codon is not None else discordance
            for ref_idx in refs.tolist():
                target.setdefault(ref_idx, []).append(position)

        if current_codon is not None:
            self._commit_codon(current_codon, "".join(codon_chars), pending, discordance)

        logger.debug(
            f"Compared positions {start}-{end} against {self.index.num_references} references"
        )
        return discordance

    def _commit_codon(
        self,
        codon_start_na: int,
        codon: str,
        pending: Dict[int, List[int]],
        discordance: Dict[int, List[int]],
    ) -> None:
        if not pending:
            return
        if codon in self.resistance_codons.get(codon_start_na, ()):
            logger.debug(f"Ignored discordance in resistance codon {codon} at {codon_start_na}")
            return
        for ref_idx, positions in pending.items():
            discordance.setdefault(ref_idx, []).extend(positions)
