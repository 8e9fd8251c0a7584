"""
Reference Sequence Catalog

Reference sequences are the labelled panel every query is compared against.
All references in a catalog are aligned to one shared coordinate span
[first_na, last_na] (1-based, inclusive); a reference with a different span is a
fatal load-time error.

Example Usage:
    >>> from seqgenotyper.references import load_references_json
    >>> catalog = load_references_json("genotype_references.json")
    >>> catalog.first_na, catalog.last_na
    (2253, 3870)
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Optional, Tuple, Union
import json
import logging

logger = logging.getLogger(__name__)


class ReferenceCatalogError(ValueError):
    """Reference catalog failed validation while loading."""
    pass


@dataclass(frozen=True)
class ReferenceSequence:
    """
    One labelled reference sequence.

    Attributes
    ----------
    genotype_name : str
        Name of the genotype this reference represents
    accession : str
        GenBank accession (display-only)
    first_na, last_na : int
        Absolute span covered by `sequence`, 1-based inclusive
    sequence : str
        Aligned reference bases
    country, author_year : str, optional
        Display-only metadata
    year : int, optional
        Sampling year (display-only)
    """
    genotype_name: str
    accession: str
    first_na: int
    last_na: int
    sequence: str
    country: Optional[str] = None
    author_year: Optional[str] = None
    year: Optional[int] = None

    def __post_init__(self):
        span_length = self.last_na - self.first_na + 1
        if span_length != len(self.sequence):
            raise ReferenceCatalogError(
                f"Reference {self.accession} covers {self.first_na}-{self.last_na} "
                f"({span_length} positions) but its sequence has {len(self.sequence)} bases"
            )

    def __str__(self) -> str:
        return f"{self.accession} ({self.genotype_name})"


class ReferenceCatalog:
    """
    Immutable, ordered set of references sharing one coordinate span.

    The position of a reference in the catalog is its reference index, the
    identifier used by the mismatch index and the comparator.
    """

    def __init__(self, references: Iterable[ReferenceSequence]):
        self._references: Tuple[ReferenceSequence, ...] = tuple(references)
        self._span: Optional[Tuple[int, int]] = None

        for ref in self._references:
            if self._span is None:
                self._span = (ref.first_na, ref.last_na)
            elif (ref.first_na, ref.last_na) != self._span:
                raise ReferenceCatalogError(
                    f"Reference {ref.accession} has a different NA boundary "
                    f"({ref.first_na} - {ref.last_na}) than other references "
                    f"({self._span[0]} - {self._span[1]})."
                )

        logger.debug(f"Reference catalog holds {len(self._references)} references")

    @property
    def references(self) -> Tuple[ReferenceSequence, ...]:
        return self._references

    @property
    def span(self) -> Optional[Tuple[int, int]]:
        """Shared (first_na, last_na), or None for an empty catalog."""
        return self._span

    @property
    def first_na(self) -> Optional[int]:
        return self._span[0] if self._span else None

    @property
    def last_na(self) -> Optional[int]:
        return self._span[1] if self._span else None

    def __len__(self) -> int:
        return len(self._references)

    def __iter__(self) -> Iterator[ReferenceSequence]:
        return iter(self._references)

    def __getitem__(self, index: int) -> ReferenceSequence:
        return self._references[index]


def _reference_from_record(record: Dict[str, Any]) -> ReferenceSequence:
    year = record.get("year")
    return ReferenceSequence(
        genotype_name=record["genotypeName"],
        accession=record["accession"],
        first_na=int(record["firstNA"]),
        last_na=int(record["lastNA"]),
        sequence=str(record["sequence"]).upper(),
        country=record.get("country"),
        author_year=record.get("authorYear"),
        year=int(year) if year is not None else None,
    )


def load_references_json(
    source: Union[str, Path, List[Dict[str, Any]]]
) -> ReferenceCatalog:
    """
    Load a reference catalog from JSON.

    Parameters
    ----------
    source : str, Path or list
        Path to a JSON file, or the already-parsed list. Each record holds
        genotypeName, accession, firstNA, lastNA, sequence and optionally
        country, authorYear, year.

    Returns
    -------
    ReferenceCatalog
        Validated catalog

    Raises
    ------
    FileNotFoundError
        If the JSON file doesn't exist
    ReferenceCatalogError
        If records are malformed or spans disagree
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Reference file not found: {path}")
        with open(path, 'r') as f:
            records = json.load(f)
        logger.info(f"Loaded {len(records)} reference records from {path}")
    else:
        records = source

    try:
        references = [_reference_from_record(record) for record in records]
    except ReferenceCatalogError:
        raise
    except (KeyError, TypeError, ValueError) as e:
        raise ReferenceCatalogError(f"Malformed reference record: {e}") from e

    return ReferenceCatalog(references)
