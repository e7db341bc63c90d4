"""Tests for the knowledge-notation command-line interface."""

import io
import json
import logging

import pytest

from knowledge_notation import main, read_input, write_output


@pytest.fixture
def notation_file(tmp_path):
    def write(text: str, name: str = "input.kn") -> str:
        path = tmp_path / name
        path.write_text(text, encoding="utf-8")
        return str(path)

    return write


class TestOutput:
    """Tests for writing compiled triples."""

    def test_tsv_to_stdout(self, notation_file, capsys):
        assert main([notation_file("a => b: c"), "-"]) == 0
        assert capsys.readouterr().out == "_:auto_expr/0\t_:user/a\t_:user/b\t_:user/c\n"

    def test_nt_format(self, notation_file, capsys):
        assert main([notation_file("a => b: c => d: e"), "-", "--format", "nt"]) == 0
        lines = capsys.readouterr().out.splitlines()
        assert lines[0] == "_:user/a _:user/b _:user/c ."
        assert lines[1] == "_:auto_expr/0 reif:subject _:user/a ."
        assert lines[-1] == "_:auto_expr/0 _:user/d _:user/e ."
        assert len(lines) == 5

    def test_json_records_carry_positions(self, notation_file, capsys):
        assert main([notation_file("a => b: c\n"), "-", "--format", "json"]) == 0
        records = json.loads(capsys.readouterr().out)
        assert records == [
            {
                "id": "_:auto_expr/0",
                "subject": "_:user/a",
                "predicate": "_:user/b",
                "object": "_:user/c",
                "line": 1,
                "column": 2,
            }
        ]

    def test_empty_input_writes_nothing(self, notation_file, capsys):
        assert main([notation_file(""), "-"]) == 0
        assert capsys.readouterr().out == ""

    def test_write_to_file(self, notation_file, tmp_path):
        output = tmp_path / "out.tsv"
        assert main([notation_file("a => (b: c d: e)"), str(output)]) == 0
        assert output.read_text(encoding="utf-8").splitlines() == [
            "_:auto_expr/0\t_:user/a\t_:user/b\t_:user/c",
            "_:auto_expr/1\t_:user/a\t_:user/d\t_:user/e",
        ]

    def test_read_from_stdin(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("a => b: c"))
        assert main(["-", "-", "--format", "nt"]) == 0
        assert capsys.readouterr().out == "_:user/a _:user/b _:user/c .\n"

    def test_subject_filter(self, notation_file, capsys):
        assert main([notation_file("a => b: c\nd => e: f"), "-", "--subject", "d"]) == 0
        assert capsys.readouterr().out == "_:auto_expr/1\t_:user/d\t_:user/e\t_:user/f\n"

    def test_subject_filter_with_rendered_id(self, notation_file, capsys):
        text = "a => b: c => d: e"
        assert main([notation_file(text), "-", "--subject", "_:auto_expr/0", "--format", "nt"]) == 0
        assert capsys.readouterr().out.splitlines() == [
            "_:auto_expr/0 reif:subject _:user/a .",
            "_:auto_expr/0 reif:predicate _:user/b .",
            "_:auto_expr/0 reif:object _:user/c .",
            "_:auto_expr/0 _:user/d _:user/e .",
        ]


class TestInputOutput:
    """Tests for the input and output helpers."""

    def test_read_file_uses_the_path_as_source_name(self, notation_file):
        path = notation_file("a => b: c")
        assert read_input(path) == ("a => b: c", path)

    def test_read_stdin_is_named_stdin(self, monkeypatch):
        monkeypatch.setattr("sys.stdin", io.StringIO("x => y: z"))
        assert read_input("-") == ("x => y: z", "<stdin>")

    def test_write_file_keeps_newlines(self, tmp_path):
        path = tmp_path / "out.nt"
        write_output(str(path), "a b c .\nd e f .\n")
        assert path.read_bytes() == b"a b c .\nd e f .\n"

    def test_write_stdout(self, capsys):
        write_output("-", "a b c .\n")
        assert capsys.readouterr().out == "a b c .\n"


class TestValidation:
    """Tests for --validate-only and --stats."""

    def test_validate_only_with_stats(self, notation_file, capsys):
        assert main([notation_file("a => b: c"), "--validate-only", "--stats"]) == 0
        captured = capsys.readouterr()
        assert captured.out == ""
        assert "stats:" in captured.err
        assert "triples: 1" in captured.err.splitlines()

    def test_stats_with_output(self, notation_file, capsys):
        assert main([notation_file("a => b: c ! s"), "-", "--stats"]) == 0
        captured = capsys.readouterr()
        assert len(captured.out.splitlines()) == 4
        assert "labelled_statements: 1" in captured.err.splitlines()


class TestErrors:
    """Tests for error reporting and exit status."""

    def test_output_required(self, notation_file, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([notation_file("a => b: c")])
        assert exc_info.value.code == 1
        assert "Error: output path is required" in capsys.readouterr().err

    def test_parse_error_names_file_and_position(self, notation_file, capsys):
        path = notation_file("a => b", name="bad.kn")
        with pytest.raises(SystemExit) as exc_info:
            main([path, "-"])
        assert exc_info.value.code == 1
        captured = capsys.readouterr()
        assert captured.out == ""
        assert captured.err.startswith(f"Error: {path}:1:6: Invalid target")

    def test_stdin_source_name(self, monkeypatch, capsys):
        monkeypatch.setattr("sys.stdin", io.StringIO("a => *x"))
        with pytest.raises(SystemExit):
            main(["-", "--validate-only"])
        assert "Error: <stdin>:1:6: variable 'x' is not defined" in capsys.readouterr().err

    def test_invalid_max_depth(self, notation_file, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([notation_file("a => b: c"), "--validate-only", "--max-depth", "0"])
        assert exc_info.value.code == 1
        assert "max_depth must be a positive integer" in capsys.readouterr().err

    def test_max_depth_applies_to_parsing(self, notation_file, capsys):
        path = notation_file("((((a)))) => b: c")
        assert main([path, "--validate-only", "--max-depth", "10"]) == 0
        with pytest.raises(SystemExit):
            main([path, "--validate-only", "--max-depth", "3"])
        assert "nested deeper than 3 levels" in capsys.readouterr().err

    def test_unknown_subject_namespace(self, notation_file, capsys):
        with pytest.raises(SystemExit) as exc_info:
            main([notation_file("a => b: c"), "-", "--subject", "_:nope/a"])
        assert exc_info.value.code == 1
        assert "unknown identifier namespace 'nope'" in capsys.readouterr().err

    def test_unknown_format_is_rejected_by_argparse(self, notation_file):
        with pytest.raises(SystemExit) as exc_info:
            main([notation_file("a => b: c"), "-", "--format", "xml"])
        assert exc_info.value.code == 2


class TestVerbose:
    """Tests for --verbose logging setup."""

    def test_verbose_configures_debug_logging(self, notation_file, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        assert main([notation_file("a => b: c"), "--validate-only", "-v"]) == 0
        assert calls and calls[0]["level"] == logging.DEBUG

    def test_quiet_by_default(self, notation_file, monkeypatch):
        calls = []
        monkeypatch.setattr(logging, "basicConfig", lambda **kwargs: calls.append(kwargs))
        assert main([notation_file("a => b: c"), "--validate-only"]) == 0
        assert calls == []

    def test_parser_trace(self, notation_file, caplog):
        caplog.set_level(logging.DEBUG, logger="knowledge_notation")
        assert main([notation_file("a => b: c"), "--validate-only"]) == 0
        messages = [record.getMessage() for record in caplog.records]
        assert any("infix =>" in message for message in messages)
        assert any(message.startswith("compiled ") for message in messages)
