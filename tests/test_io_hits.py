"""Tests for reading tabular homology search results."""

import pytest

from projforge.core.hits import Hit
from projforge.io.hits import HitParseError, parse_hit_line, read_search_hits


def replace_column(line, column, value):
    fields = line.split("\t")
    fields[column] = value
    return "\t".join(fields)


class TestParseHitLine:
    """Tests for parse_hit_line."""

    def test_forward_hit(self, forward_gene, hit_formatter):
        hit = forward_gene.hits[0]
        parsed, evalue = parse_hit_line(hit_formatter(hit))
        assert parsed == hit
        assert evalue == pytest.approx(1e-20)

    def test_reverse_hit_normalised(self, reverse_gene, hit_formatter):
        """Test a target start after the target end marks the reverse strand."""
        hit = reverse_gene.hits[0]
        line = hit_formatter(hit)
        assert int(line.split("\t")[8]) > int(line.split("\t")[9])
        parsed, _ = parse_hit_line(line)
        assert parsed.strand == "-"
        assert (parsed.start, parsed.end) == (hit.start, hit.end)

    def test_ambiguous_residues_become_x(self, forward_gene, hit_formatter):
        line = replace_column(hit_formatter(forward_gene.hits[0]), 21, "bjzK" + "A" * 36)
        parsed, _ = parse_hit_line(line)
        assert parsed.target_aligned.startswith("XXXK")

    def test_score_column(self, forward_gene, hit_formatter):
        line = replace_column(hit_formatter(forward_gene.hits[0]), 11, "77.5")
        parsed, _ = parse_hit_line(line, score_column=11)
        assert parsed.score == 77

    def test_too_few_columns(self):
        with pytest.raises(HitParseError, match="line 3"):
            parse_hit_line("geneA_0\tchr1\t100", 3)

    def test_non_numeric(self, forward_gene, hit_formatter):
        line = replace_column(hit_formatter(forward_gene.hits[0]), 6, "one")
        with pytest.raises(HitParseError):
            parse_hit_line(line)

    def test_fragment_id_without_part(self, forward_gene, hit_formatter):
        line = replace_column(hit_formatter(forward_gene.hits[0]), 0, "geneA")
        with pytest.raises(HitParseError):
            parse_hit_line(line)

    def test_aligned_length_mismatch(self, forward_gene, hit_formatter):
        line = replace_column(hit_formatter(forward_gene.hits[0]), 21, "MK")
        with pytest.raises(HitParseError, match="differ in length"):
            parse_hit_line(line)


class TestReadSearchHits:
    """Tests for read_search_hits."""

    def test_grouped_by_gene(self, project_files, forward_gene, reverse_gene):
        hits = read_search_hits(project_files["hits"])
        assert set(hits) == {"geneA", "geneB"}
        assert hits["geneA"] == forward_gene.hits
        assert hits["geneB"] == sorted(reverse_gene.hits, key=Hit.sort_key)

    def test_evalue_cutoff(self, tmp_path, forward_gene, hit_formatter):
        path = tmp_path / "hits.tsv"
        with open(path, "w") as f:
            f.write("# comment\n\n")
            f.write(hit_formatter(forward_gene.hits[0], evalue=1e-5) + "\n")
            f.write(hit_formatter(forward_gene.hits[1], evalue=500) + "\n")
        hits = read_search_hits(path, evalue_cutoff=100)
        assert hits["geneA"] == [forward_gene.hits[0]]
        assert read_search_hits(path, evalue_cutoff=1e-10) == {}

    def test_error_reports_line(self, tmp_path, forward_gene, hit_formatter):
        path = tmp_path / "hits.tsv"
        path.write_text(hit_formatter(forward_gene.hits[0]) + "\nbroken line\n")
        with pytest.raises(HitParseError, match="line 2"):
            read_search_hits(path)
