"""
Genotype Catalog: Hierarchy, Recombination Breakpoints and Regional Calls

A genotype may declare parent genotypes (sub-subtypes and some recombinant
forms belong to one or more broader genotypes) and, for simple recombinant
forms (CRFs), an ordered list of breakpoint regions each attributed to a
constituent genotype. A partial sequence lying (almost) entirely inside one
region can be reported as that region's genotype instead of the recombinant.

All name-based cross-references are resolved once when the catalog is built;
an unresolved name, a duplicate definition, a parent cycle or malformed
breakpoint regions abort construction with GenotypeCatalogError.

Example Usage:
    >>> from seqgenotyper.genotypes import load_genotypes_json
    >>> catalog = load_genotypes_json("genotypes.json")
    >>> crf = catalog["CRF01_AE"]
    >>> catalog.primary_regional_match(crf, 2253, 2549)
    RegionalMatch(genotype=Genotype('E'), proportion=1.0)
"""

from __future__ import annotations
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Iterable, Iterator, List, Mapping, Optional, Tuple, Union
from types import MappingProxyType
import json
import logging

from .utils import format_percent

logger = logging.getLogger(__name__)

MIN_PRIMARY_REGIONAL_PROPORTION = 0.9


class GenotypeCatalogError(ValueError):
    """Genotype definitions failed validation while loading."""
    pass


@dataclass(frozen=True)
class BreakpointRegion:
    """Span [start, end] of a recombinant attributed to one constituent genotype."""
    genotype_name: str
    start: int
    end: int


@dataclass(frozen=True)
class GenotypeDefinition:
    """
    Unresolved genotype definition as read from a dataset.

    A non-empty `parent_genotype_names` marks the genotype as a sub-form of
    those parents; non-empty `regions` marks it as a simple recombinant form.
    """
    name: str
    display_name: str
    distance_upper_limit: float
    classification_level: Optional[str] = None
    parent_genotype_names: Tuple[str, ...] = ()
    regions: Tuple[BreakpointRegion, ...] = ()


class Genotype:
    """
    A resolved genotype.

    Instances are created by GenotypeCatalog only; parent genotypes and
    breakpoint regions refer directly to other Genotype objects of the same
    catalog. All attributes are read-only once the catalog is built.
    """

    __slots__ = (
        "_name", "_display_name", "_classification_level", "_distance_upper_limit",
        "_parent_genotypes", "_regions", "_depth",
    )

    def __init__(self, definition: GenotypeDefinition):
        self._name = definition.name
        self._display_name = definition.display_name
        self._classification_level = definition.classification_level
        self._distance_upper_limit = definition.distance_upper_limit
        self._parent_genotypes: Tuple[Genotype, ...] = ()
        self._regions: Tuple[ResolvedRegion, ...] = ()
        self._depth = 0

    @property
    def name(self) -> str:
        return self._name

    @property
    def display_name(self) -> str:
        return self._display_name

    @property
    def classification_level(self) -> Optional[str]:
        return self._classification_level

    @property
    def distance_upper_limit(self) -> float:
        return self._distance_upper_limit

    @property
    def parent_genotypes(self) -> Tuple["Genotype", ...]:
        return self._parent_genotypes

    @property
    def regions(self) -> Tuple["ResolvedRegion", ...]:
        return self._regions

    @property
    def depth(self) -> int:
        """Length of the longest parent chain (0 for top-level genotypes)."""
        return self._depth

    @property
    def is_simple_crf(self) -> bool:
        return bool(self._regions)

    def has_parent_genotypes(self) -> bool:
        return bool(self._parent_genotypes)

    def is_parent_of(self, other: "Genotype") -> bool:
        return self in other.parent_genotypes

    def is_ancestor_of(self, other: "Genotype") -> bool:
        """Whether this genotype is a parent, grandparent, ... of `other`."""
        return any(
            parent is self or self.is_ancestor_of(parent)
            for parent in other.parent_genotypes
        )

    def check_distance(self, distance: float) -> bool:
        """
        Check whether `distance` is acceptable for this genotype.

        The comparison is strict: a distance equal to the upper limit is
        rejected.
        """
        return distance < self.distance_upper_limit

    def regional_matches(self, first_na: int, last_na: int) -> List["RegionalMatch"]:
        """
        Attribute the span [first_na, last_na] to constituent genotypes.

        For each breakpoint region intersecting the span the overlap length
        (inclusive) divided by the span length is added to the constituent's
        proportion; a constituent named by several regions accumulates.
        Genotypes without regions attribute the whole span to themselves.
        """
        if not self.regions:
            return [RegionalMatch(self, 1.0)]

        length = last_na - first_na + 1
        proportions: Dict[Genotype, float] = {}
        if length > 0:
            for region in self.regions:
                if last_na >= region.start and first_na <= region.end:
                    start = max(first_na, region.start)
                    end = min(last_na, region.end)
                    proportions[region.genotype] = (
                        proportions.get(region.genotype, 0.0) + (end - start + 1) / length
                    )
        return [RegionalMatch(genotype, proportion)
                for genotype, proportion in proportions.items()]

    def primary_regional_match(
        self,
        first_na: int,
        last_na: int,
        min_proportion: float = MIN_PRIMARY_REGIONAL_PROPORTION,
    ) -> "RegionalMatch":
        """
        Get the regional genotype covering most of the span.

        Returns the constituent with the highest proportion when it reaches
        `min_proportion`; otherwise the span cannot be attributed to one
        region and this genotype itself is returned with proportion 1.0.
        """
        results = self.regional_matches(first_na, last_na)
        if results:
            primary = max(results, key=lambda r: r.proportion)
            if primary.proportion >= min_proportion:
                return primary
        return RegionalMatch(self, 1.0)

    def __repr__(self) -> str:
        return f"Genotype({self.name!r})"

    def __str__(self) -> str:
        return self.display_name


@dataclass(frozen=True)
class ResolvedRegion:
    genotype: Genotype
    start: int
    end: int


@dataclass(frozen=True)
class RegionalMatch:
    """Fraction of a query span attributable to one genotype."""
    genotype: Genotype
    proportion: float

    def __str__(self) -> str:
        return f"{self.genotype} ({format_percent(self.proportion)})"


class GenotypeCatalog:
    """
    Immutable set of resolved genotypes.

    Parameters
    ----------
    definitions : Iterable[GenotypeDefinition]
        Genotype definitions; names must be unique
    unknown_name : str, optional
        Name of the "Unknown" sentinel genotype. If no definition carries
        this name a sentinel is created (default: "Unknown")
    min_primary_regional_proportion : float, optional
        Threshold used by primary_regional_match (default: 0.9)

    Raises
    ------
    GenotypeCatalogError
        On duplicate names, unresolved parent/region names, parent cycles or
        malformed breakpoint regions
    """

    def __init__(
        self,
        definitions: Iterable[GenotypeDefinition],
        unknown_name: str = "Unknown",
        min_primary_regional_proportion: float = MIN_PRIMARY_REGIONAL_PROPORTION,
    ):
        definitions = list(definitions)
        self.min_primary_regional_proportion = min_primary_regional_proportion

        genotypes: Dict[str, Genotype] = {}
        for definition in definitions:
            if definition.name in genotypes:
                raise GenotypeCatalogError(f"Duplicate genotype definition: {definition.name}")
            genotypes[definition.name] = Genotype(definition)

        for definition in definitions:
            genotype = genotypes[definition.name]
            genotype._parent_genotypes = tuple(
                self._resolve(genotypes, name, definition.name, "parent genotype")
                for name in definition.parent_genotype_names
            )
            _validate_regions(definition)
            genotype._regions = tuple(
                ResolvedRegion(
                    self._resolve(genotypes, region.genotype_name, definition.name, "region genotype"),
                    region.start,
                    region.end,
                )
                for region in definition.regions
            )

        _assign_depths(genotypes.values())

        if unknown_name not in genotypes:
            genotypes[unknown_name] = Genotype(GenotypeDefinition(
                name=unknown_name, display_name=unknown_name, distance_upper_limit=1.0,
            ))
        self._unknown = genotypes[unknown_name]
        self._genotypes: Mapping[str, Genotype] = MappingProxyType(genotypes)

        logger.debug(f"Genotype catalog holds {len(definitions)} genotypes")

    @staticmethod
    def _resolve(genotypes: Dict[str, Genotype], name: str, owner: str, role: str) -> Genotype:
        try:
            return genotypes[name]
        except KeyError:
            raise GenotypeCatalogError(
                f"Genotype {owner} refers to unknown {role} {name!r}"
            ) from None

    @property
    def unknown(self) -> Genotype:
        """Sentinel reported for sequences too distant from every reference."""
        return self._unknown

    def get(self, name: str) -> Optional[Genotype]:
        return self._genotypes.get(name)

    def __getitem__(self, name: str) -> Genotype:
        return self._genotypes[name]

    def __contains__(self, name: object) -> bool:
        return name in self._genotypes

    def __iter__(self) -> Iterator[Genotype]:
        return iter(self._genotypes.values())

    def __len__(self) -> int:
        return len(self._genotypes)

    def _as_genotype(self, genotype: Union[str, Genotype]) -> Genotype:
        if isinstance(genotype, Genotype):
            return genotype
        return self._genotypes[genotype]

    def regional_matches(
        self, genotype: Union[str, Genotype], first_na: int, last_na: int
    ) -> List[RegionalMatch]:
        return self._as_genotype(genotype).regional_matches(first_na, last_na)

    def primary_regional_match(
        self, genotype: Union[str, Genotype], first_na: int, last_na: int
    ) -> RegionalMatch:
        return self._as_genotype(genotype).primary_regional_match(
            first_na, last_na, self.min_primary_regional_proportion
        )

    def check_distance(self, genotype: Union[str, Genotype], distance: float) -> bool:
        return self._as_genotype(genotype).check_distance(distance)


def _validate_regions(definition: GenotypeDefinition) -> None:
    """Breakpoint regions must be well-formed, sorted and non-overlapping."""
    previous_end = None
    for region in definition.regions:
        if region.start > region.end:
            raise GenotypeCatalogError(
                f"Genotype {definition.name} has an inverted region "
                f"{region.genotype_name} ({region.start} - {region.end})"
            )
        if previous_end is not None and region.start <= previous_end:
            raise GenotypeCatalogError(
                f"Genotype {definition.name} has overlapping or unsorted regions "
                f"at {region.genotype_name} ({region.start} - {region.end})"
            )
        previous_end = region.end


def _assign_depths(genotypes: Iterable[Genotype]) -> None:
    """Set the depth of each genotype (longest parent chain), rejecting parent cycles."""
    done = set()
    visiting = set()

    def visit(genotype: Genotype) -> int:
        if genotype in done:
            return genotype.depth
        if genotype in visiting:
            raise GenotypeCatalogError(f"Parent genotype cycle involving {genotype.name}")
        visiting.add(genotype)
        genotype._depth = max((visit(p) + 1 for p in genotype.parent_genotypes), default=0)
        visiting.discard(genotype)
        done.add(genotype)
        return genotype.depth

    for genotype in genotypes:
        visit(genotype)


def _split_names(value: Union[None, str, List[str]]) -> Tuple[str, ...]:
    if not value:
        return ()
    if isinstance(value, str):
        return tuple(name for name in value.split("|") if name)
    return tuple(value)


def _definition_from_record(name: str, record: Dict[str, Any]) -> GenotypeDefinition:
    regions = tuple(
        BreakpointRegion(r["genotypeName"], int(r["start"]), int(r["end"]))
        for r in (record.get("regions") or [])
    )
    return GenotypeDefinition(
        name=record.get("name", name),
        display_name=record.get("displayName", name),
        distance_upper_limit=float(record["distanceUpperLimit"]),
        classification_level=record.get("classificationLevel"),
        parent_genotype_names=_split_names(record.get("parentGenotypes")),
        regions=regions,
    )


def load_genotypes_json(
    source: Union[str, Path, Dict[str, Dict[str, Any]]],
    unknown_name: str = "Unknown",
    min_primary_regional_proportion: float = MIN_PRIMARY_REGIONAL_PROPORTION,
) -> GenotypeCatalog:
    """
    Load a genotype catalog from JSON.

    Parameters
    ----------
    source : str, Path or dict
        Path to a JSON file, or the already-parsed mapping of genotype name to
        {displayName, distanceUpperLimit, classificationLevel,
        parentGenotypes ("A|B" or a list), regions [{genotypeName, start, end}]}
    unknown_name : str, optional
        Name of the "Unknown" sentinel genotype (default: "Unknown")
    min_primary_regional_proportion : float, optional
        Threshold for confident regional calls (default: 0.9)

    Returns
    -------
    GenotypeCatalog
        Resolved, validated catalog

    Raises
    ------
    FileNotFoundError
        If the JSON file doesn't exist
    GenotypeCatalogError
        If a record is malformed or names fail to resolve
    """
    if isinstance(source, (str, Path)):
        path = Path(source)
        if not path.exists():
            raise FileNotFoundError(f"Genotype file not found: {path}")
        with open(path, 'r') as f:
            records = json.load(f)
        logger.info(f"Loaded {len(records)} genotype definitions from {path}")
    else:
        records = source

    try:
        definitions = [_definition_from_record(name, record) for name, record in records.items()]
    except (KeyError, TypeError, ValueError) as e:
        raise GenotypeCatalogError(f"Malformed genotype record: {e}") from e

    return GenotypeCatalog(
        definitions,
        unknown_name=unknown_name,
        min_primary_regional_proportion=min_primary_regional_proportion,
    )
