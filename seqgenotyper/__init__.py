"""
seqgenotyper: Reference-Panel Genotyping of Aligned Nucleotide Sequences

seqgenotyper classifies a pre-aligned query nucleotide sequence against a
curated panel of reference sequences labelled with genotypes, including
recombinant forms made of breakpoint regions, and produces a ranked,
confidence-aware genotype call.

Core functionality includes:
- A per-position, per-base mismatch index built once over all references
- Ambiguity-aware discordance scanning with drug-resistance codon exemption
- Regional calls for recombinant genotypes and parent/child fallback
"""

__version__ = "0.1.0"

from . import config
from . import utils
from . import references
from . import genotypes
from . import mismatch_index
from . import resistance
from . import comparator
from . import genotype_assignment

from .genotype_assignment import BoundMatch, Genotyper, MatchResult

__all__ = [
    "config",
    "utils",
    "references",
    "genotypes",
    "mismatch_index",
    "resistance",
    "comparator",
    "genotype_assignment",
    "BoundMatch",
    "Genotyper",
    "MatchResult",
]
