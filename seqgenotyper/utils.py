"""
Utility Functions for seqgenotyper

This module provides the shared helpers used across the package:

- Logging configuration
- Nucleotide ambiguity expansion (IUPAC codes)
- Placeholder trimming of aligned query sequences
- Percentage formatting with half-up rounding
- FASTA reading via Bio.SeqIO

Example Usage:
    >>> from seqgenotyper.utils import setup_logging, expand_ambiguity
    >>> logger = setup_logging(log_level="DEBUG")
    >>> expand_ambiguity("R")
    'AG'
"""

from __future__ import annotations
from typing import List, Optional, Tuple, Union
from decimal import Decimal, ROUND_HALF_UP
from pathlib import Path
import logging
import sys

from Bio import SeqIO
from Bio.Data.IUPACData import ambiguous_dna_values

logger = logging.getLogger(__name__)

# Concrete bases in index order
BASES = "ACGT"
BASE_INDEX = {base: idx for idx, base in enumerate(BASES)}


# ============================================================================
# Logging Configuration
# ============================================================================

def setup_logging(
    log_level: str = "INFO",
    log_file: Optional[str] = None,
    format_string: Optional[str] = None,
) -> logging.Logger:
    """
    Configure logging for seqgenotyper.

    Sets up the package logger with console and optional file output.

    Parameters
    ----------
    log_level : str, optional
        Logging level: DEBUG, INFO, WARNING, ERROR, or CRITICAL (default: INFO)
    log_file : str, optional
        Path to log file. If None, logs only to console (default: None)
    format_string : str, optional
        Custom format string for log messages. If None, uses default format

    Returns
    -------
    logging.Logger
        Configured logger instance

    Notes
    -----
    The default format includes timestamp, level, and message:
    [2025-11-03 10:30:45] INFO: Built mismatch index
    """
    package_logger = logging.getLogger("seqgenotyper")
    package_logger.setLevel(getattr(logging, log_level.upper()))

    # Remove existing handlers to avoid duplicates
    package_logger.handlers.clear()

    if format_string is None:
        format_string = "[%(asctime)s] %(levelname)s: %(message)s"

    formatter = logging.Formatter(format_string, datefmt="%Y-%m-%d %H:%M:%S")

    console_handler = logging.StreamHandler(sys.stdout)
    console_handler.setLevel(getattr(logging, log_level.upper()))
    console_handler.setFormatter(formatter)
    package_logger.addHandler(console_handler)

    if log_file is not None:
        log_path = Path(log_file)
        log_path.parent.mkdir(parents=True, exist_ok=True)

        file_handler = logging.FileHandler(log_file, mode='a', encoding='utf-8')
        file_handler.setLevel(getattr(logging, log_level.upper()))
        file_handler.setFormatter(formatter)
        package_logger.addHandler(file_handler)

        package_logger.info(f"Logging to file: {log_file}")

    return package_logger


# ============================================================================
# Nucleotide Helpers
# ============================================================================

def expand_ambiguity(base: str) -> str:
    """
    Expand a nucleotide (possibly an IUPAC ambiguity code) to concrete bases.

    Parameters
    ----------
    base : str
        Single nucleotide character, case-insensitive. 'U' is read as 'T'.

    Returns
    -------
    str
        Concrete bases in ACGT order; empty for gaps and unknown symbols

    Examples
    --------
    >>> expand_ambiguity("A")
    'A'
    >>> expand_ambiguity("y")
    'CT'
    >>> expand_ambiguity("N")
    'ACGT'
    >>> expand_ambiguity("-")
    ''
    """
    base = base.upper()
    if base == "U":
        base = "T"
    values = ambiguous_dna_values.get(base, "")
    return "".join(b for b in BASES if b in values)


def base_indices(base: str) -> Tuple[int, ...]:
    """Return the ACGT indices a nucleotide can stand for."""
    return tuple(BASE_INDEX[b] for b in expand_ambiguity(base))


def trim_placeholders(
    sequence: str,
    first_na: int,
    placeholders: str = ".N",
) -> Tuple[str, int, int]:
    """
    Strip leading and trailing runs of placeholder bases.

    Parameters
    ----------
    sequence : str
        Aligned query sequence
    first_na : int
        Absolute 1-based position of the first character of `sequence`
    placeholders : str, optional
        Characters treated as "no information" (default: ".N")

    Returns
    -------
    Tuple[str, int, int]
        (trimmed sequence, first_na, last_na) of the trimmed sequence. A
        sequence made only of placeholders yields an empty string with
        last_na == first_na - 1.

    Examples
    --------
    >>> trim_placeholders("NNACGTNN", 100)
    ('ACGT', 102, 105)
    """
    chars = placeholders + placeholders.lower()
    leading = len(sequence) - len(sequence.lstrip(chars))
    trimmed = sequence.strip(chars)
    first_na = first_na + leading
    return trimmed, first_na, first_na + len(trimmed) - 1


def format_percent(fraction: float) -> str:
    """
    Format a fraction as a percentage string with half-up rounding.

    Uses 0 decimals at or above 100%, 1 decimal above 10%, otherwise 2.

    Examples
    --------
    >>> format_percent(0.0)
    '0.00%'
    >>> format_percent(0.125)
    '12.5%'
    >>> format_percent(1.0)
    '100%'
    """
    if fraction + 1e-8 > 1.0:
        quantum = Decimal("1")
    elif fraction > 0.1:
        quantum = Decimal("0.1")
    else:
        quantum = Decimal("0.01")
    pcnt = Decimal(fraction * 100).quantize(quantum, rounding=ROUND_HALF_UP)
    return f"{pcnt:f}%"


# ============================================================================
# File I/O
# ============================================================================

def read_fasta(fasta_path: Union[str, Path]) -> List[Tuple[str, str]]:
    """
    Read FASTA file and return list of (description, sequence) tuples.

    Parameters
    ----------
    fasta_path : Union[str, Path]
        Path to FASTA file

    Returns
    -------
    List[Tuple[str, str]]
        List of (description, sequence) tuples; sequences are uppercased

    Raises
    ------
    FileNotFoundError
        If FASTA file doesn't exist
    ValueError
        If the file holds no FASTA records
    """
    path = Path(fasta_path)

    if not path.exists():
        raise FileNotFoundError(f"FASTA file not found: {path}")

    records = [
        (record.description, str(record.seq).upper())
        for record in SeqIO.parse(str(path), "fasta")
    ]

    if not records:
        raise ValueError(f"No FASTA records found in {path}")

    logger.debug(f"Read {len(records)} sequences from {path}")
    return records
