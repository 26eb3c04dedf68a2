"""
Tests for the command-line entry point.
"""

import json
import os

import pytest

from credverify import __version__
from credverify.app import build_parser, main
from credverify.config import ENV_PREFIX

from conftest import IIT_CERTIFICATE


@pytest.fixture(autouse=True)
def isolated_env(tmp_path, monkeypatch):
    for key in list(os.environ):
        if key.startswith(ENV_PREFIX):
            monkeypatch.delenv(key)
    monkeypatch.chdir(tmp_path)
    monkeypatch.setenv("CREDVERIFY_DB_PATH", str(tmp_path / "cv.db"))
    monkeypatch.setenv("CREDVERIFY_DOCUMENT_DIR", str(tmp_path / "docs"))
    monkeypatch.setenv("CREDVERIFY_LOG_DIR", str(tmp_path / "logs"))


class TestCli:
    """Subcommands."""

    def test_version(self, capsys):
        """--version prints the package version."""
        main(["--version"])
        assert capsys.readouterr().out.strip() == __version__

    def test_parser_submit_arguments(self):
        """submit parses years as integers."""
        args = build_parser().parse_args(
            [
                "submit", "--user", "u1", "--name", "Ananya Rao", "--institution", "IIT Delhi",
                "--program", "B.Tech", "--start-year", "2016", "--end-year", "2020", "--document", "d.pdf",
            ]
        )
        assert args.start_year == 2016
        assert args.func.__name__ == "cmd_submit"

    def test_extract(self, tmp_path, capsys):
        """extract prints the classification and extracted fields as JSON."""
        text_file = tmp_path / "ocr.txt"
        text_file.write_text(IIT_CERTIFICATE, encoding="utf-8")

        main(["extract", "--input", str(text_file)])

        output = json.loads(capsys.readouterr().out)
        assert output["classification"]["document_type"] == "DEGREE_CERTIFICATE"
        assert output["record"]["full_name"]["value"] == "Ananya Rao"
        assert output["record"]["roll_number"]["value"] == "2016CS10234"

    def test_init_and_check(self, tmp_path, capsys):
        """A new database has no violations."""
        main(["init-db"])
        main(["check"])

        out = capsys.readouterr().out
        assert (tmp_path / "cv.db").exists()
        assert "No violations found." in out

    def test_unknown_request_exits_with_code(self, capsys):
        """Domain errors print their code and exit 2."""
        with pytest.raises(SystemExit) as exc:
            main(["status", "--user", "u1", "missing"])

        assert exc.value.code == 2
        assert "[VERIFICATION_NOT_FOUND]" in capsys.readouterr().err

    def test_submit_needs_ocr_endpoint(self, tmp_path):
        """Submitting without an OCR endpoint is a configuration error."""
        document = tmp_path / "degree.pdf"
        document.write_bytes(b"%PDF-1.4 scan")

        with pytest.raises(SystemExit) as exc:
            main(
                [
                    "submit", "--user", "u1", "--name", "Ananya Rao", "--institution", "IIT Delhi",
                    "--program", "B.Tech", "--start-year", "2016", "--end-year", "2020",
                    "--document", str(document),
                ]
            )
        assert "CREDVERIFY_OCR_ENDPOINT" in str(exc.value.code)

    def test_bad_configuration(self, monkeypatch):
        """Invalid settings stop the CLI with a readable message."""
        monkeypatch.setenv("CREDVERIFY_MAX_ATTEMPTS", "many")
        with pytest.raises(SystemExit) as exc:
            main(["queue"])
        assert str(exc.value.code).startswith("Configuration error")

    def test_empty_queue(self, capsys):
        """An empty review queue says so."""
        main(["queue"])
        assert "Review queue is empty." in capsys.readouterr().out
