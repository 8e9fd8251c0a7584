#!/usr/bin/env python3
"""
seqgenotyper Command-Line Interface

Genotype pre-aligned query sequences against a reference panel and write one
call per sequence to a TSV file.
"""

import argparse
import logging
import sys
from pathlib import Path

from . import __version__, config, genotype_assignment, utils
from .genotypes import GenotypeCatalogError
from .references import ReferenceCatalogError

logger = logging.getLogger(__name__)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='seqgenotyper',
        description='seqgenotyper: reference-panel genotyping of aligned nucleotide sequences',
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  # Genotype aligned queries starting at NA position 2253
  seqgenotyper queries.fasta --references refs.json --genotypes genotypes.json --first-na 2253

  # Exempt drug-resistance codons and use 4 threads
  seqgenotyper queries.fasta --references refs.json --genotypes genotypes.json \\
      --resistance-mutations sdrms.tsv --threads 4 --output calls.tsv

Notes:
  - Query sequences must already be aligned to the reference coordinates
  - A "first_na=<int>" token in a FASTA description overrides --first-na
        """
    )

    parser.add_argument(
        'fasta',
        type=Path,
        help='FASTA file of aligned query sequences'
    )

    parser.add_argument(
        '--references',
        type=Path,
        required=True,
        help='Reference catalog JSON'
    )

    parser.add_argument(
        '--genotypes',
        type=Path,
        required=True,
        help='Genotype definitions JSON'
    )

    parser.add_argument(
        '--resistance-mutations',
        type=Path,
        default=None,
        help='TSV of drug-resistance mutations (position, amino_acids) whose codons '
             'are exempt from discordance'
    )

    parser.add_argument(
        '--resistance-first-na',
        type=int,
        default=None,
        help='NA position of the first base of codon 1 for resistance mutation positions '
             '(default: first NA of the reference span)'
    )

    parser.add_argument(
        '--first-na',
        type=int,
        default=1,
        help='Absolute position of the first query base (default: 1)'
    )

    parser.add_argument(
        '--output',
        type=Path,
        default=None,
        help='Output TSV (default: {fasta stem}_genotypes.tsv in the output directory)'
    )

    parser.add_argument(
        '--config',
        type=Path,
        default=None,
        help='YAML or JSON configuration file'
    )

    parser.add_argument(
        '--threads',
        type=int,
        default=None,
        help='Number of worker threads (default: from config, 1)'
    )

    parser.add_argument(
        '--log-level',
        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'],
        default=None,
        help='Logging verbosity (default: from config, INFO)'
    )

    parser.add_argument(
        '--version',
        action='version',
        version=f'seqgenotyper {__version__}'
    )

    return parser


def main(argv=None) -> int:
    """Main CLI entry point."""
    args = build_parser().parse_args(argv)

    try:
        cfg = config.load_config_from_file(args.config) if args.config else config.get_default_config()
        cfg = cfg.update(**config.load_config_from_env())
        overrides = {}
        if args.threads is not None:
            overrides['n_threads'] = args.threads
        if args.log_level is not None:
            overrides['log_level'] = args.log_level
        cfg = cfg.update(**overrides)
    except (FileNotFoundError, ValueError, TypeError) as e:
        print(f"Error: Invalid configuration: {e}", file=sys.stderr)
        return 1

    utils.setup_logging(cfg.log_level)
    for warning in config.validate_config(cfg):
        logger.warning(warning)

    if not args.fasta.exists():
        print(f"Error: Query FASTA file not found: {args.fasta}", file=sys.stderr)
        return 1

    output = args.output
    if output is None:
        output = (cfg.output_dir or Path('.')) / f"{args.fasta.stem}_genotypes.tsv"

    try:
        stats = genotype_assignment.assign_genotypes(
            query_fasta=str(args.fasta),
            references_path=str(args.references),
            genotypes_path=str(args.genotypes),
            output_path=str(output),
            resistance_path=str(args.resistance_mutations) if args.resistance_mutations else None,
            first_na=args.first_na,
            resistance_first_na=args.resistance_first_na,
            n_threads=cfg.n_threads,
            config=cfg.genotyping,
        )
    except (FileNotFoundError, ReferenceCatalogError, GenotypeCatalogError, ValueError) as e:
        logger.error(str(e))
        print(f"Error: {e}", file=sys.stderr)
        return 1

    print(f"Genotyped {stats['total']} sequences: {stats['assigned']} assigned, "
          f"{stats['unknown']} unknown -> {output}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
