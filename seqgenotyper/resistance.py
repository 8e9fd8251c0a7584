"""
Drug-Resistance Codon Map

Positions under drug selection pressure can carry resistance mutations that
say nothing about the genotype. The comparator exempts a codon from
discordance when the query's codon at that position encodes a known
resistance-associated amino acid.

This module turns a list of resistance mutations (amino-acid position plus
amino acids) into the map consumed by the comparator:

    {codon start NA position: frozenset of codons}

Amino-acid positions are counted from `first_na`, the NA position of the
first base of codon 1 (e.g. 2253 for HIV-1 protease in HXB2 coordinates).

Codons are back-translated with the standard genetic code from Biopython.

Example Usage:
    >>> build_resistance_codon_map([(41, "L")])[121]
    frozenset({'CTA', 'CTC', 'CTG', 'CTT', 'TTA', 'TTG'})
    >>> sorted(build_resistance_codon_map([(1, "K")], first_na=2253).items())
    [(2253, frozenset({'AAA', 'AAG'}))]
"""

from __future__ import annotations
from pathlib import Path
from typing import Dict, FrozenSet, Iterable, List, Mapping, Set, Tuple, Union
import logging

import pandas as pd
from Bio.Data.CodonTable import standard_dna_table

logger = logging.getLogger(__name__)

# Insertion/deletion notations that have no codon
INDEL_SYMBOLS = frozenset("-_#")


def _back_translation_table() -> Dict[str, FrozenSet[str]]:
    table: Dict[str, Set[str]] = {}
    for codon, aa in standard_dna_table.forward_table.items():
        table.setdefault(aa, set()).add(codon)
    table["*"] = set(standard_dna_table.stop_codons)
    return {aa: frozenset(codons) for aa, codons in table.items()}


AA_TO_CODONS = _back_translation_table()


def codon_start_position(aa_position: int, first_na: int = 1) -> int:
    """First NA position of the 1-based codon `aa_position`, counted from `first_na`."""
    return first_na + (aa_position - 1) * 3


def build_resistance_codon_map(
    mutations: Iterable[Tuple[int, str]],
    first_na: int = 1,
) -> Dict[int, FrozenSet[str]]:
    """
    Build the codon exemption map from resistance mutations.

    Parameters
    ----------
    mutations : Iterable[Tuple[int, str]]
        (1-based amino-acid position, amino acids) pairs, e.g. (184, "VI").
        Entries for the same position are merged.
    first_na : int, optional
        NA position of the first base of codon 1 (default: 1)

    Returns
    -------
    Dict[int, FrozenSet[str]]
        Codon start NA position -> codons encoding any listed amino acid

    Raises
    ------
    ValueError
        If a position is not positive or an amino acid is unknown
    """
    codon_map: Dict[int, Set[str]] = {}
    for aa_position, amino_acids in mutations:
        aa_position = int(aa_position)
        if aa_position < 1:
            raise ValueError(f"Amino acid position must be positive, got {aa_position}")
        codons = codon_map.setdefault(codon_start_position(aa_position, first_na), set())
        for aa in str(amino_acids).upper():
            if aa in INDEL_SYMBOLS:
                continue
            if aa not in AA_TO_CODONS:
                raise ValueError(f"Unknown amino acid {aa!r} at position {aa_position}")
            codons.update(AA_TO_CODONS[aa])

    return {pos: frozenset(codons) for pos, codons in codon_map.items() if codons}


def load_resistance_mutations(path: Union[str, Path]) -> List[Tuple[int, str]]:
    """
    Read resistance mutations from a TSV file.

    The file needs `position` (1-based amino-acid position) and
    `amino_acids` columns; other columns are ignored.

    Raises
    ------
    FileNotFoundError
        If the file doesn't exist
    ValueError
        If required columns are missing
    """
    path = Path(path)
    if not path.exists():
        raise FileNotFoundError(f"Resistance mutation file not found: {path}")

    df = pd.read_csv(path, sep='\t', dtype={'amino_acids': str})
    missing = {'position', 'amino_acids'} - set(df.columns)
    if missing:
        raise ValueError(
            f"Resistance mutation file {path} is missing required columns: {sorted(missing)}"
        )

    mutations = [
        (int(row.position), row.amino_acids)
        for row in df.dropna(subset=['position', 'amino_acids']).itertuples(index=False)
    ]
    logger.info(f"Loaded {len(mutations)} resistance mutations from {path}")
    return mutations


def load_resistance_codon_map(
    path: Union[str, Path], first_na: int = 1
) -> Mapping[int, FrozenSet[str]]:
    """Convenience wrapper: read mutations from `path` and build the codon map."""
    return build_resistance_codon_map(load_resistance_mutations(path), first_na)
