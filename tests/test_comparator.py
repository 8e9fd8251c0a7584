"""
Unit tests for sequence comparison and the drug-resistance codon exemption.

Tests cover:
- Exact matches and simple substitutions
- Ambiguity handling, placeholders and gaps
- Leading/trailing placeholder trimming
- Span intersection
- Resistance codon exemption and codon map construction
"""

import shutil
import tempfile
import unittest
from pathlib import Path

import pandas as pd

from seqgenotyper.comparator import SequenceComparator
from seqgenotyper.mismatch_index import MismatchIndex
from seqgenotyper.references import ReferenceCatalog, ReferenceSequence
from seqgenotyper.resistance import (
    build_resistance_codon_map,
    codon_start_position,
    load_resistance_codon_map,
    load_resistance_mutations,
)

REF_A = "ACGTACGTACGTACGT"
REF_B = "TTGTACCTACGAACGA"


def make_comparator(resistance_codons=None, first_na=100):
    catalog = ReferenceCatalog([
        ReferenceSequence("A", "REF_A", first_na, first_na + len(REF_A) - 1, REF_A),
        ReferenceSequence("B", "REF_B", first_na, first_na + len(REF_B) - 1, REF_B),
    ])
    return SequenceComparator(MismatchIndex(catalog), resistance_codons)


class TestCompare(unittest.TestCase):
    """Test discordance scanning."""

    def setUp(self):
        self.comparator = make_comparator()

    def test_exact_match(self):
        """Test that a reference compared with itself has no discordance."""
        result = self.comparator.compare(REF_A, 100)
        self.assertNotIn(0, result)
        self.assertIn(1, result)

    def test_discordant_positions(self):
        """Test that REF_B differs from REF_A at the expected positions."""
        result = self.comparator.compare(REF_B, 100)
        self.assertEqual(result[0], [100, 101, 106, 111, 115])
        self.assertNotIn(1, result)

    def test_lowercase_query(self):
        self.assertEqual(self.comparator.compare(REF_B.lower(), 100)[0], [100, 101, 106, 111, 115])

    def test_ambiguous_query_benefit_of_doubt(self):
        """Test that an ambiguity code matching one interpretation is not discordant."""
        # W = A/T matches REF_A (A) and REF_B (T) at 100
        result = self.comparator.compare("W" + REF_A[1:], 100)
        self.assertNotIn(0, result)
        self.assertNotIn(100, result[1])

    def test_ambiguous_query_no_interpretation_matches(self):
        # S = C/G matches neither A nor T at 100
        result = self.comparator.compare("S" + REF_A[1:], 100)
        self.assertEqual(result[0], [100])
        self.assertIn(100, result[1])

    def test_wildcard_and_gap_never_discordant(self):
        query = "A.GTA-GTACGTACGT"
        result = self.comparator.compare(query, 100)
        self.assertNotIn(0, result)

    def test_placeholder_trimming(self):
        """Test that NN + core + NN compares like core alone."""
        core = REF_B[2:14]
        padded = self.comparator.compare("NN" + core + "NN", 100)
        bare = self.comparator.compare(core, 102)
        self.assertEqual(padded, bare)
        for positions in padded.values():
            for trimmed in (100, 101, 114, 115):
                self.assertNotIn(trimmed, positions)

    def test_dot_placeholder_trimming(self):
        core = REF_B[3:10]
        self.assertEqual(
            self.comparator.compare("..." + core, 100),
            self.comparator.compare(core, 103),
        )

    def test_span_intersection(self):
        """Test that positions outside the reference span are ignored."""
        # query starts 4 bases before the references
        result = self.comparator.compare("GGGG" + REF_B[:4], 96)
        self.assertEqual(result[0], [100, 101])

    def test_no_overlap(self):
        self.assertEqual(self.comparator.compare("TTTT", 1), {})

    def test_all_placeholders(self):
        self.assertEqual(self.comparator.compare("NNNN", 100), {})

    def test_empty_catalog(self):
        comparator = SequenceComparator(MismatchIndex(ReferenceCatalog([])))
        self.assertEqual(comparator.compare("ACGT", 1), {})

    def test_interior_placeholders_skipped_against_gapped_reference(self):
        """Test that N and . are not compared even where a reference has gaps."""
        catalog = ReferenceCatalog([
            ReferenceSequence("A", "GAPPED", 1, 4, "A--T"),
            ReferenceSequence("B", "FULL", 1, 4, "ACGT"),
        ])
        comparator = SequenceComparator(MismatchIndex(catalog))
        self.assertEqual(comparator.compare("ANNT", 1), {})
        self.assertEqual(comparator.compare("A.NT", 1), {})
        self.assertEqual(comparator.compare("ACNT", 1), {0: [2]})


class TestResistanceExemption(unittest.TestCase):
    """Test suppression of discordance in resistance codons."""

    def setUp(self):
        reference = "CAGCAGCAG"
        catalog = ReferenceCatalog([ReferenceSequence("A", "REF", 1, 9, reference)])
        self.index = MismatchIndex(catalog)

    def test_resistance_codon_is_exempt(self):
        """Test that AAG at a configured codon is not counted but is elsewhere."""
        comparator = SequenceComparator(self.index, {1: {"AAA", "AAG"}})
        result = comparator.compare("AAGAAGCAG", 1)
        self.assertEqual(result[0], [4])

    def test_other_codon_is_committed(self):
        """Test that a codon not in the resistance set is still discordant."""
        comparator = SequenceComparator(self.index, {1: {"AAA", "AAG"}})
        result = comparator.compare("TAGCAGCAG", 1)
        self.assertEqual(result[0], [1])

    def test_partial_codon_is_committed(self):
        """Test that a codon cut by the sequence start cannot be exempt."""
        comparator = SequenceComparator(self.index, {1: {"CAG", "AAG"}})
        # the query starts at position 2, so codon 1 is observed as "TG"
        result = comparator.compare("TGCAG", 2)
        self.assertEqual(result[0], [2])

    def test_codon_map_from_mutations(self):
        """Test exemption driven by a back-translated mutation list."""
        codon_map = build_resistance_codon_map([(3, "K")])
        comparator = SequenceComparator(self.index, codon_map)
        result = comparator.compare("AAGCAGAAG", 1)
        self.assertEqual(result[0], [1])

    def test_codon_frame_taken_from_map(self):
        """Test exemption for a codon whose start is not 1 modulo 3."""
        catalog = ReferenceCatalog([ReferenceSequence("A", "REF", 2253, 2261, "CAGCAGCAG")])
        comparator = SequenceComparator(MismatchIndex(catalog), {2253: {"AAA", "AAG"}})
        self.assertEqual(comparator.compare("AAGCAGCAG", 2253), {})
        self.assertEqual(comparator.compare("AAGAAGCAG", 2253), {0: [2256]})
        self.assertEqual(comparator.compare("TAGCAGCAG", 2253), {0: [2253]})

    def test_codon_map_with_gene_origin(self):
        """Test a back-translated map anchored at the gene's first NA."""
        catalog = ReferenceCatalog([ReferenceSequence("A", "REF", 2253, 2261, "CAGCAGCAG")])
        codon_map = build_resistance_codon_map([(2, "K")], first_na=2253)
        comparator = SequenceComparator(MismatchIndex(catalog), codon_map)
        self.assertEqual(comparator.compare("AAGAAGCAG", 2253), {0: [2253]})

    def test_codon_cut_by_span_end_is_committed(self):
        comparator = SequenceComparator(self.index, {7: {"AAG"}})
        result = comparator.compare("CAGCAGAA", 1)
        self.assertEqual(result[0], [7])

    def test_overlapping_codons_rejected(self):
        with self.assertRaises(ValueError):
            SequenceComparator(self.index, {1: {"AAG"}, 3: {"AAG"}})

    def test_without_map_all_committed(self):
        comparator = SequenceComparator(self.index)
        self.assertEqual(comparator.compare("AAGAAGCAG", 1)[0], [1, 4])


class TestResistanceCodonMap(unittest.TestCase):
    """Test building the codon exemption map."""

    def setUp(self):
        self.tmpdir = tempfile.mkdtemp()

    def tearDown(self):
        shutil.rmtree(self.tmpdir)

    def test_codon_start_position(self):
        self.assertEqual(codon_start_position(1), 1)
        self.assertEqual(codon_start_position(41), 121)
        self.assertEqual(codon_start_position(1, first_na=2253), 2253)
        self.assertEqual(codon_start_position(41, first_na=2253), 2373)

    def test_back_translation(self):
        codon_map = build_resistance_codon_map([(1, "K")])
        self.assertEqual(codon_map, {1: frozenset({"AAA", "AAG"})})

    def test_multiple_amino_acids_union(self):
        """Test that every listed amino acid contributes codons."""
        codon_map = build_resistance_codon_map([(184, "VI"), (184, "M")])
        codons = codon_map[550]
        self.assertIn("GTG", codons)
        self.assertIn("ATA", codons)
        self.assertIn("ATG", codons)
        self.assertEqual(len(codons), 4 + 3 + 1)

    def test_stop_and_indels(self):
        codon_map = build_resistance_codon_map([(2, "*"), (3, "-_")])
        self.assertEqual(codon_map[4], frozenset({"TAA", "TAG", "TGA"}))
        self.assertNotIn(7, codon_map)

    def test_invalid_input(self):
        with self.assertRaises(ValueError):
            build_resistance_codon_map([(0, "K")])
        with self.assertRaises(ValueError):
            build_resistance_codon_map([(5, "Z")])

    def test_load_from_tsv(self):
        path = Path(self.tmpdir) / "sdrms.tsv"
        pd.DataFrame({
            'gene': ['RT', 'RT'],
            'position': [41, 184],
            'amino_acids': ['L', 'VI'],
        }).to_csv(path, sep='\t', index=False)

        self.assertEqual(load_resistance_mutations(path), [(41, 'L'), (184, 'VI')])
        codon_map = load_resistance_codon_map(path)
        self.assertEqual(set(codon_map), {121, 550})
        shifted = load_resistance_codon_map(path, first_na=2253)
        self.assertEqual(set(shifted), {2373, 2802})

    def test_load_missing_columns(self):
        path = Path(self.tmpdir) / "bad.tsv"
        pd.DataFrame({'pos': [41]}).to_csv(path, sep='\t', index=False)
        with self.assertRaises(ValueError):
            load_resistance_mutations(path)

    def test_load_missing_file(self):
        with self.assertRaises(FileNotFoundError):
            load_resistance_mutations(Path(self.tmpdir) / "missing.tsv")


if __name__ == "__main__":
    unittest.main()
