"""
Genotype Assignment Module

This module turns per-reference discordance into genotype calls. Each query
sequence is compared against every reference of the catalog at once; every
reference yields a BoundMatch (distance + display genotype) and the matches
are ranked into a MatchResult, whose best match applies parent/child fallback.

The assignment workflow:
1. Load reference sequences and genotype definitions (once)
2. Build the mismatch index and comparator (once)
3. For each query, find discordant positions for every reference
4. Score each reference: discordant / (compared length - placeholders)
5. Rank the matches and resolve the best call

Key Concepts:
- Distance: fraction of informative compared positions that are discordant

- Unknown Cutoff: Any match farther than 11% is displayed as "Unknown"

- Regional Call: A partial sequence of a recombinant (CRF) reference that lies
  >= 90% inside one breakpoint region is reported as that region's genotype

- Parent Downgrade: A reference failing its genotype's distance limit reports
  its parent genotypes instead

- Fallback: The closest match may be replaced by a parent match (when it
  fails its own limit) or a child match (when one is within 1%)

Example Usage:
    >>> from seqgenotyper.genotype_assignment import assign_genotypes
    >>> stats = assign_genotypes(
    ...     query_fasta="aligned_queries.fasta",
    ...     references_path="genotype_references.json",
    ...     genotypes_path="genotypes.json",
    ...     output_path="genotypes.tsv",
    ...     first_na=2253,
    ...     n_threads=4
    ... )
"""

from __future__ import annotations
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Sequence, Tuple
from itertools import groupby
from multiprocessing.pool import ThreadPool
from pathlib import Path
import logging
import re

import pandas as pd

from .comparator import SequenceComparator
from .config import GenotypingConfig
from .genotypes import Genotype, GenotypeCatalog, GenotypeCatalogError, RegionalMatch, load_genotypes_json
from .mismatch_index import MismatchIndex
from .references import ReferenceCatalog, ReferenceSequence, load_references_json
from .resistance import load_resistance_codon_map
from .utils import format_percent, read_fasta, trim_placeholders

logger = logging.getLogger(__name__)

# Optional "first_na=2253" token in FASTA descriptions
FIRST_NA_REGEX = re.compile(r"\bfirst_?na=(?P<first_na>\d+)\b", re.IGNORECASE)


class GenotypeResolutionError(LookupError):
    """A match refers to a genotype that cannot be looked up."""
    pass


class BoundMatch:
    """
    Comparison of one query sequence with one reference.

    Parameters
    ----------
    reference : ReferenceSequence
        Compared reference
    sequence : str
        Trimmed query sequence
    first_na, last_na : int
        Span of `sequence`; the compared span is its intersection with the
        reference span
    discordant_positions : List[int]
        Discordant absolute positions found by the comparator
    genotypes : GenotypeCatalog
        Catalog the reference's genotype is resolved in
    config : GenotypingConfig, optional
        Thresholds (default: GenotypingConfig())
    """

    def __init__(
        self,
        reference: ReferenceSequence,
        sequence: str,
        first_na: int,
        last_na: int,
        discordant_positions: Sequence[int],
        genotypes: GenotypeCatalog,
        config: Optional[GenotypingConfig] = None,
    ):
        self.reference = reference
        self.sequence = sequence
        self.first_na = max(first_na, reference.first_na)
        self.last_na = min(last_na, reference.last_na)
        self.discordant_positions: Tuple[int, ...] = tuple(discordant_positions)
        self.genotypes = genotypes
        self.config = config or GenotypingConfig()

        excerpt = sequence[self.first_na - first_na:self.last_na - first_na + 1]
        placeholders = set(self.config.placeholder_bases.upper())
        self.wildcard_count = sum(1 for na in excerpt.upper() if na in placeholders)

        informative = self.last_na - self.first_na + 1 - self.wildcard_count
        if informative > 0:
            self.distance = len(self.discordant_positions) / informative
        else:
            # nothing was compared
            self.distance = 1.0

    @property
    def span_length(self) -> int:
        return max(0, self.last_na - self.first_na + 1)

    @property
    def reference_accession(self) -> str:
        return self.reference.accession

    @property
    def reference_country(self) -> Optional[str]:
        return self.reference.country

    @property
    def reference_year(self) -> Optional[int]:
        return self.reference.year

    @property
    def genotype(self) -> Genotype:
        genotype = self.genotypes.get(self.reference.genotype_name)
        if genotype is None:
            raise GenotypeResolutionError(
                f"Cannot find genotype {self.reference.genotype_name!r} "
                f"of reference {self.reference.accession}"
            )
        return genotype

    @property
    def parent_genotypes(self) -> Tuple[Genotype, ...]:
        return self.genotype.parent_genotypes

    @property
    def distance_pcnt(self) -> str:
        """Distance as a percentage string, e.g. "1.40%" or "12.5%"."""
        return format_percent(self.distance)

    def check_distance(self) -> bool:
        """Whether the distance is below the reference genotype's upper limit."""
        return self.genotype.check_distance(self.distance)

    def should_display_unknown(self) -> bool:
        """
        Check if "Unknown" should be reported.

        A universal distance cutoff (11% by default) applies to all genotypes.
        """
        return self.distance > self.config.unknown_distance_cutoff

    def regional_matches(self) -> List[RegionalMatch]:
        return self.genotypes.regional_matches(self.genotype, self.first_na, self.last_na)

    def primary_regional_match(self) -> RegionalMatch:
        """
        Get the genotype for the compared span of a recombinant reference.

        Returns the reference genotype itself when no single breakpoint
        region covers enough of the span.
        """
        return self.genotypes.primary_regional_match(self.genotype, self.first_na, self.last_na)

    def display_genotypes(self) -> List[Genotype]:
        """
        Genotype(s) to report for this match.

        - The "Unknown" sentinel when the distance exceeds the universal cutoff
        - The parent genotypes when the reference's own genotype stands (no
          regional call) but fails its distance limit
        - Otherwise the primary regional genotype
        """
        if self.should_display_unknown():
            return [self.genotypes.unknown]

        genotype = self.genotype
        regional = self.primary_regional_match().genotype
        if regional is genotype and not self.check_distance() and genotype.has_parent_genotypes():
            return list(genotype.parent_genotypes)
        return [regional]

    def display_without_distance(self) -> str:
        return " + ".join(g.display_name for g in self.display_genotypes())

    def display(self) -> str:
        """
        Human-friendly call, e.g. "B (1.40%)".

        A recombinant reference may display as one of its constituents
        ("B (2.50%)" for CRF51_01B over a B region), and a sub-subtype failing
        its limit displays as its parents. "Unknown" carries no distance.
        """
        genotypes = self.display_without_distance()
        if self.should_display_unknown():
            return genotypes
        return f"{genotypes} ({self.distance_pcnt})"

    def should_fallback_to(self, fallback: "BoundMatch") -> bool:
        """Whether this match fails its own limit and `fallback` is nearly as close."""
        if self.check_distance():
            return False
        return fallback.distance - self.distance <= self.config.fallback_distance_margin

    def __repr__(self) -> str:
        return f"BoundMatch({self.reference_accession!r}, distance={self.distance:.4f})"

    def __str__(self) -> str:
        return self.display()


class MatchResult:
    """
    All matches of one query, ranked by distance.

    Matches with equal distance keep their input (reference) order, except
    that a match is moved ahead of any tied match whose genotype is one of
    its ancestors, so children precede their parents.
    """

    def __init__(self, matches: Iterable[BoundMatch]):
        self._matches: Tuple[BoundMatch, ...] = tuple(_rank_matches(matches))

    @property
    def all_matches(self) -> Tuple[BoundMatch, ...]:
        return self._matches

    def __len__(self) -> int:
        return len(self._matches)

    def __iter__(self) -> Iterator[BoundMatch]:
        return iter(self._matches)

    def first_match(self) -> Optional[BoundMatch]:
        """Closest match, or None when there are no references."""
        return self._matches[0] if self._matches else None

    def parent_fallback_match(self) -> Optional[BoundMatch]:
        """Closest other match whose genotype is a parent of the first match's."""
        first = self.first_match()
        if first is None:
            return None
        parents = first.genotype.parent_genotypes
        return next((m for m in self._matches[1:] if m.genotype in parents), None)

    def child_fallback_match(self) -> Optional[BoundMatch]:
        """Closest other match whose genotype lists the first match's as a parent."""
        first = self.first_match()
        if first is None:
            return None
        genotype = first.genotype
        return next((m for m in self._matches[1:] if genotype.is_parent_of(m.genotype)), None)

    def best_match(self) -> Optional[BoundMatch]:
        """
        Resolve the final call.

        1. The parent fallback, if the first match fails its own distance
           limit and the parent is within the fallback margin
        2. The child fallback, if it passes its own limit and is within the
           fallback margin of the first match
        3. The first match otherwise
        """
        first = self.first_match()
        if first is None:
            return None

        parent = self.parent_fallback_match()
        if parent is not None and first.should_fallback_to(parent):
            return parent

        child = self.child_fallback_match()
        if (
            child is not None
            and child.check_distance()
            and child.distance - first.distance <= first.config.fallback_distance_margin
        ):
            return child

        return first


def _rank_matches(matches: Iterable[BoundMatch]) -> List[BoundMatch]:
    """Stable sort by distance; within a tie, descendants before ancestors."""
    # resolving every genotype up front raises GenotypeResolutionError
    # naming the reference accession
    keyed = sorted(((m, m.genotype) for m in matches), key=lambda pair: pair[0].distance)

    ranked: List[BoundMatch] = []
    for _, group in groupby(keyed, key=lambda pair: pair[0].distance):
        remaining = list(group)
        while remaining:
            # first tied match that is not an ancestor of another tied match;
            # parent cycles are rejected by GenotypeCatalog, so one exists
            pick = next(
                pair for pair in remaining
                if not any(pair[1].is_ancestor_of(other[1]) for other in remaining)
            )
            remaining.remove(pick)
            ranked.append(pick[0])
    return ranked


class Genotyper:
    """
    Genotype caller over a fixed reference panel.

    The mismatch index and comparator are built once; compare_all() touches
    no shared mutable state and may be called from many threads.

    Parameters
    ----------
    references : ReferenceCatalog
        Reference panel
    genotypes : GenotypeCatalog
        Genotype definitions; must resolve every reference's genotype
    resistance_codons : Mapping[int, Iterable[str]], optional
        Codon exemption map (see seqgenotyper.resistance)
    config : GenotypingConfig, optional
        Thresholds (default: GenotypingConfig())

    Raises
    ------
    GenotypeCatalogError
        If a reference names a genotype missing from `genotypes`
    """

    def __init__(
        self,
        references: ReferenceCatalog,
        genotypes: GenotypeCatalog,
        resistance_codons: Optional[Mapping[int, Iterable[str]]] = None,
        config: Optional[GenotypingConfig] = None,
    ):
        self.references = references
        self.genotypes = genotypes
        self.config = config or GenotypingConfig()

        for ref in references:
            if ref.genotype_name not in genotypes:
                raise GenotypeCatalogError(
                    f"Reference {ref.accession} refers to unknown genotype {ref.genotype_name!r}"
                )

        self.index = MismatchIndex(references)
        self.comparator = SequenceComparator(
            self.index,
            resistance_codons,
            placeholders=self.config.placeholder_bases,
        )
        logger.info(
            f"Genotyper ready: {len(references)} references, {len(genotypes)} genotypes, "
            f"{len(self.comparator.resistance_codons)} resistance codons"
        )

    def compare_all(self, sequence: str, first_na: int) -> MatchResult:
        """
        Compare an aligned query with every reference.

        Parameters
        ----------
        sequence : str
            Aligned query sequence
        first_na : int
            Absolute position of the first character of `sequence`

        Returns
        -------
        MatchResult
            Ranked matches (empty for an empty reference catalog)
        """
        sequence, first_na, last_na = trim_placeholders(
            sequence.upper(), first_na, self.config.placeholder_bases
        )
        discordance = self.comparator.compare(sequence, first_na)
        return MatchResult(
            BoundMatch(
                ref, sequence, first_na, last_na,
                discordance.get(ref_idx, []),
                self.genotypes, self.config,
            )
            for ref_idx, ref in enumerate(self.references)
        )

    def _compare_task(self, query: Tuple[str, int]) -> MatchResult:
        sequence, first_na = query
        return self.compare_all(sequence, first_na)

    def compare_many(
        self, queries: Iterable[Tuple[str, int]], n_threads: int = 1
    ) -> List[MatchResult]:
        """
        Run compare_all over (sequence, first_na) pairs, preserving order.

        Parameters
        ----------
        queries : Iterable[Tuple[str, int]]
            Aligned query sequences with their first NA positions
        n_threads : int, optional
            Worker threads (default: 1, sequential)
        """
        if n_threads < 1:
            raise ValueError(f"n_threads must be >= 1, got {n_threads}")
        queries = list(queries)
        if n_threads > 1:
            with ThreadPool(processes=n_threads) as pool:
                return pool.map(self._compare_task, queries)
        return [self._compare_task(query) for query in queries]


def summarize_result(sequence_id: str, result: MatchResult) -> Dict[str, Any]:
    """
    Flatten a MatchResult into one output record.

    Parameters
    ----------
    sequence_id : str
        Identifier of the query
    result : MatchResult
        Ranked matches for the query

    Returns
    -------
    Dict[str, Any]
        Keys: sequence_id, genotype, display, distance, distance_pcnt,
        reference_accession, first_na, last_na, discordant_positions,
        first_match_genotype, first_match_distance, is_fallback, status
    """
    record: Dict[str, Any] = {
        'sequence_id': sequence_id,
        'genotype': None,
        'display': None,
        'distance': None,
        'distance_pcnt': None,
        'reference_accession': None,
        'first_na': None,
        'last_na': None,
        'discordant_positions': '',
        'first_match_genotype': None,
        'first_match_distance': None,
        'is_fallback': False,
        'status': 'no_references',
    }

    best = result.best_match()
    if best is None:
        return record

    first = result.first_match()
    record.update({
        'genotype': best.display_without_distance(),
        'display': best.display(),
        'distance': round(best.distance, 6),
        'distance_pcnt': best.distance_pcnt,
        'reference_accession': best.reference_accession,
        'first_na': best.first_na,
        'last_na': best.last_na,
        'discordant_positions': ",".join(str(p) for p in best.discordant_positions),
        'first_match_genotype': first.display_without_distance(),
        'first_match_distance': round(first.distance, 6),
        'is_fallback': best is not first,
    })

    if best.span_length - best.wildcard_count <= 0:
        record['status'] = 'no_overlap'
    elif best.should_display_unknown():
        record['status'] = 'unknown'
    else:
        record['status'] = 'assigned'
    return record


def _first_na_from_description(description: str, default: int) -> int:
    match = FIRST_NA_REGEX.search(description)
    if match:
        return int(match.group("first_na"))
    return default


def assign_genotypes(
    query_fasta: str,
    references_path: str,
    genotypes_path: str,
    output_path: str,
    resistance_path: Optional[str] = None,
    first_na: int = 1,
    resistance_first_na: Optional[int] = None,
    n_threads: int = 1,
    config: Optional[GenotypingConfig] = None,
) -> Dict[str, Any]:
    """
    Assign genotypes to aligned query sequences and write a TSV report.

    Parameters
    ----------
    query_fasta : str
        FASTA of aligned queries. A "first_na=<int>" token in a description
        overrides `first_na` for that record
    references_path : str
        Reference catalog JSON
    genotypes_path : str
        Genotype definitions JSON
    output_path : str
        Output TSV path (one row per query)
    resistance_path : str, optional
        TSV of resistance mutations (position, amino_acids)
    first_na : int, optional
        Default absolute position of the first query base (default: 1)
    resistance_first_na : int, optional
        NA position of the first base of codon 1 for the resistance mutation
        positions (default: first NA of the reference span)
    n_threads : int, optional
        Worker threads (default: 1)
    config : GenotypingConfig, optional
        Thresholds (default: GenotypingConfig())

    Returns
    -------
    Dict[str, Any]
        Summary statistics: total, assigned, unknown, no_overlap, fallback

    Raises
    ------
    FileNotFoundError
        If input files don't exist
    ReferenceCatalogError, GenotypeCatalogError
        If the datasets fail validation
    """
    logger.info("=" * 70)
    logger.info("Starting genotype assignment workflow")
    logger.info("=" * 70)

    config = config or GenotypingConfig()

    logger.info(f"Step 1/4: Loading datasets")
    references = load_references_json(references_path)
    genotypes = load_genotypes_json(
        genotypes_path,
        unknown_name=config.unknown_genotype_name,
        min_primary_regional_proportion=config.min_primary_regional_proportion,
    )
    resistance_codons = None
    if resistance_path:
        if resistance_first_na is None:
            resistance_first_na = references.first_na or 1
        resistance_codons = load_resistance_codon_map(resistance_path, resistance_first_na)

    logger.info(f"Step 2/4: Building genotyper")
    genotyper = Genotyper(references, genotypes, resistance_codons, config)

    logger.info(f"Step 3/4: Comparing queries from {query_fasta} (using {n_threads} threads)")
    records = read_fasta(query_fasta)
    queries = [(seq, _first_na_from_description(desc, first_na)) for desc, seq in records]
    results = genotyper.compare_many(queries, n_threads=n_threads)

    logger.info(f"Step 4/4: Writing outputs")
    rows = [
        summarize_result(desc.split()[0] if desc else "", result)
        for (desc, _), result in zip(records, results)
    ]
    df = pd.DataFrame(rows)
    output_path = Path(output_path)
    output_path.parent.mkdir(parents=True, exist_ok=True)
    df.to_csv(output_path, sep='\t', index=False)
    logger.info(f"Wrote {len(df)} genotype calls to {output_path}")

    stats = {
        'total': len(rows),
        'assigned': sum(1 for r in rows if r['status'] == 'assigned'),
        'unknown': sum(1 for r in rows if r['status'] == 'unknown'),
        'no_overlap': sum(1 for r in rows if r['status'] == 'no_overlap'),
        'fallback': sum(1 for r in rows if r['is_fallback']),
    }

    logger.info("=" * 70)
    logger.info("Genotype assignment summary:")
    logger.info(f"  Total sequences: {stats['total']}")
    logger.info(f"  Assigned: {stats['assigned']}")
    logger.info(f"  Unknown: {stats['unknown']}")
    logger.info(f"  No overlap with references: {stats['no_overlap']}")
    logger.info(f"  Resolved via parent/child fallback: {stats['fallback']}")
    logger.info("=" * 70)

    return stats
