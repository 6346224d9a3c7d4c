"""Tests for the projforge command-line interface."""

import logging
from pathlib import Path

import pytest
from click.testing import CliRunner

from projforge import __version__
from projforge.cli import main


def attribute_map(column: str) -> dict[str, str]:
    """Split a GFF3 attribute column into its key/value pairs."""
    return dict(item.split("=", 1) for item in column.split(";"))


@pytest.fixture(autouse=True)
def restore_logging():
    logger = logging.getLogger("projforge")
    level, handlers = logger.level, list(logger.handlers)
    yield
    logger.setLevel(level)
    logger.handlers[:] = handlers


def predict_args(files: dict[str, Path], output: Path) -> list[str]:
    return [
        "predict",
        "--genome", str(files["genome"]),
        "--fragments", str(files["fragments"]),
        "--assignment", str(files["assignment"]),
        "--hits", str(files["hits"]),
        "-o", str(output),
    ]  # fmt: skip


# =============================================================================
# Top-level options
# =============================================================================


class TestMain:
    """Tests for the command group."""

    def test_version(self):
        result = CliRunner().invoke(main, ["--version"])
        assert result.exit_code == 0
        assert __version__ in result.output

    def test_help_lists_predict(self):
        result = CliRunner().invoke(main, ["--help"])
        assert result.exit_code == 0
        assert "predict" in result.output

    def test_predict_help(self):
        """Predict --help shows the input options."""
        result = CliRunner().invoke(main, ["predict", "--help"])
        assert result.exit_code == 0
        for option in ("--genome", "--hits", "--introns", "--coverage", "--timeout"):
            assert option in result.output


# =============================================================================
# predict
# =============================================================================


class TestPredict:
    """Tests for the predict command."""

    def test_writes_predictions(self, tmp_path: Path, project_files, forward_gene, reverse_gene) -> None:
        output = tmp_path / "out.gff3"
        report = tmp_path / "report.tsv"
        result = CliRunner().invoke(main, predict_args(project_files, output) + ["-r", str(report), "-j", "2"])
        assert result.exit_code == 0, result.output

        lines = output.read_text().splitlines()
        assert lines[0] == "##gff-version 3"
        records = [line.split("\t") for line in lines if not line.startswith("#")]
        predictions = [r for r in records if r[2] == "prediction"]
        assert [attribute_map(r[8])["ID"] for r in predictions] == ["geneA.t1_R1", "geneB.t1_R1"]

        cds = {}
        for r in records:
            if r[2] == "CDS":
                parent = attribute_map(r[8])["Parent"]
                cds.setdefault(parent, []).append((int(r[3]), int(r[4])))
        assert cds["geneA.t1_R1"] == forward_gene.exons
        assert cds["geneB.t1_R1"] == reverse_gene.exons

        rows = [line.split("\t") for line in report.read_text().splitlines()[1:]]
        assert [(r[0], r[1]) for r in rows] == [("geneA.t1", "completed"), ("geneB.t1", "completed")]

    def test_quiet(self, tmp_path: Path, project_files) -> None:
        output = tmp_path / "out.gff3"
        result = CliRunner().invoke(main, ["-q"] + predict_args(project_files, output))
        assert result.exit_code == 0, result.output
        assert "Prediction Summary" not in result.output
        assert output.read_text().count("\tprediction\t") == 2

    def test_config_file(self, tmp_path: Path, project_files) -> None:
        """Test a configuration file is read and validated."""
        config = tmp_path / "bad.toml"
        config.write_text("[search]\nunknown_key = 1\n")
        output = tmp_path / "out.gff3"
        result = CliRunner().invoke(main, predict_args(project_files, output) + ["-c", str(config)])
        assert result.exit_code == 1
        assert "unknown_key" in result.output

    def test_missing_required_option(self, tmp_path: Path, project_files) -> None:
        args = predict_args(project_files, tmp_path / "out.gff3")
        index = args.index("--hits")
        del args[index : index + 2]
        result = CliRunner().invoke(main, args)
        assert result.exit_code == 2
        assert "--hits" in result.output

    def test_malformed_hits(self, tmp_path: Path, project_files) -> None:
        """Test an unreadable hit table exits with an error."""
        project_files["hits"].write_text("not\ta\thit\n")
        result = CliRunner().invoke(main, predict_args(project_files, tmp_path / "out.gff3"))
        assert result.exit_code == 1
        assert "Error" in result.output
