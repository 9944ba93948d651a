"""Unit tests for the doc2x command-line tool."""

import argparse
import itertools
import json
import logging
import re

import httpx
import pytest

from doc2x.cli import convert_cmd, helpers, parse_cmd
from doc2x.cli.failure_log import log_failure, record_failure
from doc2x.cli.helpers import parse_convert_format, parse_duration, parse_formula_mode
from doc2x.cli.main import build_parser, main
from doc2x.cli.parse_cmd import collect_input_files
from doc2x.clients.doc2x_client import Doc2XClient
from doc2x.core.exceptions import TaskFailedError, ValidationError
from doc2x.models.dto import ConvertFormat, FormulaMode
from doc2x.utils.io_utils import change_ext, default_download_name

FAIL_LINE = re.compile(
    r"^\d{4}-\d{2}-\d{2}T\d{2}:\d{2}:\d{2}[+-]\d{2}:\d{2}\tlevel=ERROR\t"
    r"trace-id=(?P<trace>[^\t]+)\ttarget=(?P<target>[^\t]*)\tmessage=(?P<message>.*)$"
)


@pytest.fixture(autouse=True)
def restore_logging():
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers[:] = handlers
    root.setLevel(level)


def ok(data=None, trace_id="trace-1"):
    body = {"code": "success"}
    if data is not None:
        body["data"] = data
    return httpx.Response(200, json=body, headers={"trace-id": trace_id})


class FakeDoc2X:
    """In-memory Doc2X API and object storage.

    Each preupload hands out the next uid; uids listed in ``failing`` finish
    parsing with status ``failed``.
    """

    def __init__(self, failing=(), download_url="https://cdn.test/files/{uid}.md?sig=x"):
        self.counter = itertools.count(1)
        self.failing = set(failing)
        self.download_url = download_url
        self.uploads = {}
        self.converted = []

    def api(self, request):
        path = request.url.path
        if path == "/api/v2/parse/preupload":
            uid = f"u-{next(self.counter)}"
            return ok({"uid": uid, "url": f"https://oss.test/put/{uid}"})
        if path == "/api/v2/parse/status":
            uid = request.url.params["uid"]
            if uid in self.failing:
                return ok({"status": "failed", "detail": "bad formula"}, trace_id=f"t-{uid}")
            return ok(
                {
                    "progress": 100,
                    "status": "success",
                    "result": {"version": "v2", "pages": [{"page_idx": 0, "md": "# Title"}]},
                }
            )
        if path == "/api/v2/convert/parse":
            self.converted.append(json.loads(request.content))
            return ok({"status": "processing", "url": ""})
        if path == "/api/v2/convert/parse/result":
            uid = request.url.params["uid"]
            return ok({"status": "success", "url": self.download_url.format(uid=uid)})
        return httpx.Response(404)

    def transfer(self, request):
        if request.method == "PUT":
            self.uploads[request.url.path.rsplit("/", 1)[-1]] = request.content
            return httpx.Response(200)
        return httpx.Response(200, content=b"# Title\n")

    def builder(self):
        def build(args, api_key):
            return Doc2XClient(
                api_key,
                base_url=args.base_url,
                timeout=args.timeout,
                processing_timeout=args.processing_timeout,
                transport=httpx.MockTransport(self.api),
                transfer_transport=httpx.MockTransport(self.transfer),
            )

        return build


@pytest.fixture
def fake(monkeypatch):
    server = FakeDoc2X()
    monkeypatch.setattr(parse_cmd, "build_client", server.builder())
    monkeypatch.setattr(convert_cmd, "build_client", server.builder())
    return server


def fail_lines(path):
    return [FAIL_LINE.match(line) for line in path.read_text(encoding="utf-8").splitlines()]


class TestHelpers:
    """Tests for argument parsing helpers."""

    @pytest.mark.parametrize(
        "value,expected",
        [("3", 3.0), ("3s", 3.0), ("500ms", 0.5), ("5m", 300.0), ("1h", 3600.0), ("0.25s", 0.25)],
    )
    def test_parse_duration(self, value, expected):
        assert parse_duration(value) == pytest.approx(expected)

    @pytest.mark.parametrize("value", ["", "abc", "5 minutes", "-1s"])
    def test_parse_duration_invalid(self, value):
        with pytest.raises(argparse.ArgumentTypeError):
            parse_duration(value)

    def test_parse_convert_format(self):
        assert parse_convert_format("DOCX") is ConvertFormat.DOCX
        with pytest.raises(ValidationError, match="unsupported target format: pdf"):
            parse_convert_format("pdf")

    def test_parse_formula_mode(self):
        assert parse_formula_mode("Dollar") is FormulaMode.DOLLAR
        with pytest.raises(ValidationError, match="unsupported formula mode"):
            parse_formula_mode("mathml")

    def test_resolve_api_key_order(self, monkeypatch):
        """Test the flag is used and a missing key is rejected."""
        monkeypatch.setattr(helpers.doc2x_settings, "DOC2X_APIKEY", None)
        monkeypatch.setattr(helpers.doc2x_settings, "DOC2X_API_KEY", None)

        with pytest.raises(ValidationError, match="api key is required"):
            helpers.resolve_api_key("")

        assert helpers.resolve_api_key("from-flag") == "from-flag"

    def test_default_download_name(self):
        assert default_download_name("https://cdn.test/a/out.docx?sig=1", "u-1") == "u-1.docx"
        assert default_download_name("https://cdn.test/a/out?sig=1", "u-1") == "u-1.zip"
        assert default_download_name("", "u-1") == "u-1.zip"

    def test_change_ext(self):
        assert change_ext("report.pdf", ".json") == "report.json"


class TestArgumentParser:
    """Tests for flag defaults."""

    def test_parse_defaults(self):
        args = build_parser().parse_args(["parse", "-f", "a.pdf"])

        assert args.file == "a.pdf"
        assert args.wait is True
        assert args.convert is True
        assert args.interval == 3.0
        assert args.concurrency == 3
        assert args.convert_to == "md"
        assert args.convert_formula_mode == "normal"
        assert args.download_dir == "."

    def test_negated_flags(self):
        args = build_parser().parse_args(
            ["--timeout", "10s", "parse", "-p", "docs", "--no-wait", "--no-convert", "--interval", "500ms"]
        )

        assert args.timeout == 10.0
        assert args.wait is False
        assert args.convert is False
        assert args.interval == 0.5

    def test_convert_defaults(self):
        args = build_parser().parse_args(["convert", "--uid", "u-1"])

        assert args.to == "md"
        assert args.formula_mode == "normal"
        assert args.wait is True
        assert args.download is False

    def test_subcommand_required(self):
        with pytest.raises(SystemExit):
            build_parser().parse_args([])


class TestCollectInputFiles:
    """Tests for input discovery."""

    def test_single_pdf(self, tmp_path):
        pdf = tmp_path / "a.PDF"
        pdf.write_bytes(b"%PDF")
        assert collect_input_files(str(pdf)) == [str(pdf)]

    def test_directory(self, tmp_path):
        for name in ("b.pdf", "a.pdf", "notes.txt"):
            (tmp_path / name).write_bytes(b"x")
        (tmp_path / "nested").mkdir()
        (tmp_path / "nested" / "c.pdf").write_bytes(b"x")

        assert collect_input_files(str(tmp_path)) == [
            str(tmp_path / "a.pdf"),
            str(tmp_path / "b.pdf"),
        ]

    def test_non_pdf_file(self, tmp_path):
        txt = tmp_path / "notes.txt"
        txt.write_text("x")
        with pytest.raises(ValidationError, match="file is not a pdf"):
            collect_input_files(str(txt))

    def test_missing_path(self, tmp_path):
        with pytest.raises(ValidationError):
            collect_input_files(str(tmp_path / "missing.pdf"))


class TestFailureLog:
    """Tests for the fail log format."""

    def test_line_format(self, tmp_path):
        path = tmp_path / "logs" / "fail.log"

        log_failure(str(path), None, "a.pdf", ValueError("boom"))
        log_failure(str(path), "t-1", "u-1", ValueError("again"))

        first, second = fail_lines(path)
        assert first and first["trace"] == "unknown"
        assert first["target"] == "a.pdf" and first["message"] == "boom"
        assert second and second["trace"] == "t-1"

    def test_disabled(self, tmp_path):
        log_failure("", None, "a.pdf", ValueError("boom"))
        assert list(tmp_path.iterdir()) == []

    def test_record_prefers_error_trace(self, tmp_path):
        path = tmp_path / "fail.log"
        error = TaskFailedError("parse", "bad formula", trace_id="t-err")

        record_failure(str(path), "a.pdf", error, trace_id="t-fallback")
        record_failure(str(path), "b.pdf", ValueError("x"), trace_id="t-fallback")

        first, second = fail_lines(path)
        assert first["trace"] == "t-err"
        assert second["trace"] == "t-fallback"


class TestParseCommand:
    """End-to-end tests for ``doc2x parse``."""

    def test_single_file_with_auto_convert(self, fake, tmp_path):
        pdf = tmp_path / "paper.pdf"
        pdf.write_bytes(b"%PDF-1.7 paper")
        out_json = tmp_path / "out" / "paper.json"
        download_dir = tmp_path / "dl"

        code = main(
            [
                "--api-key", "k",
                "--fail-log", str(tmp_path / "fail.log"),
                "parse", "-f", str(pdf),
                "--interval", "10ms",
                "-o", str(out_json),
                "--convert-to", "md",
                "--download-dir", str(download_dir),
            ]
        )

        assert code == 0
        assert fake.uploads == {"u-1": b"%PDF-1.7 paper"}
        assert json.loads(out_json.read_text(encoding="utf-8"))["pages"][0]["md"] == "# Title"
        assert fake.converted == [{"uid": "u-1", "to": "md", "formula_mode": "normal"}]
        assert (download_dir / "u-1.md").read_bytes() == b"# Title\n"
        assert not (tmp_path / "fail.log").exists()

    def test_no_wait_only_submits(self, fake, tmp_path):
        pdf = tmp_path / "paper.pdf"
        pdf.write_bytes(b"%PDF")

        code = main(["--api-key", "k", "parse", "-f", str(pdf), "--no-wait"])

        assert code == 0
        assert fake.uploads == {"u-1": b"%PDF"}
        assert fake.converted == []

    def test_batch_reports_failures(self, fake, tmp_path, capsys):
        docs = tmp_path / "docs"
        docs.mkdir()
        for name in ("a.pdf", "b.pdf", "c.pdf"):
            (docs / name).write_bytes(b"%PDF " + name.encode())
        fake.failing = {"u-2"}
        fail_log = tmp_path / "fail.log"

        code = main(
            [
                "--api-key", "k",
                "--fail-log", str(fail_log),
                "parse", "-p", str(docs),
                "--interval", "10ms",
                "--no-convert",
                "--output-dir", str(tmp_path / "results"),
                "--concurrency", "2",
            ]
        )

        assert code == 1
        assert "batch completed with 1 errors, first: parse failed: bad formula" in capsys.readouterr().err
        assert len(fake.uploads) == 3
        assert len(list((tmp_path / "results").glob("*.json"))) == 2

        (line,) = fail_lines(fail_log)
        assert line["trace"] == "t-u-2"
        assert line["target"].startswith(str(docs))
        assert "bad formula" in line["message"]

    def test_missing_target_is_logged(self, tmp_path, capsys):
        fail_log = tmp_path / "fail.log"

        code = main(["--api-key", "k", "--fail-log", str(fail_log), "parse"])

        assert code == 1
        assert "flag --file or --path is required" in capsys.readouterr().err
        (line,) = fail_lines(fail_log)
        assert line["trace"] == "unknown"

    def test_empty_directory(self, tmp_path):
        code = main(["--api-key", "k", "--fail-log", "", "parse", "-p", str(tmp_path)])
        assert code == 1


class TestConvertCommand:
    """End-to-end tests for ``doc2x convert``."""

    def test_convert_and_download(self, fake, tmp_path):
        target = tmp_path / "converted.docx"
        fake.download_url = "https://cdn.test/files/{uid}.docx"

        code = main(
            [
                "--api-key", "k",
                "convert", "--uid", "u-9",
                "--to", "docx",
                "--formula-mode", "dollar",
                "--filename", "paper",
                "--merge-cross-page-forms",
                "--interval", "10ms",
                "--download", "-o", str(target),
            ]
        )

        assert code == 0
        assert fake.converted == [
            {
                "uid": "u-9",
                "to": "docx",
                "formula_mode": "dollar",
                "filename": "paper",
                "merge_cross_page_forms": True,
            }
        ]
        assert target.read_bytes() == b"# Title\n"

    def test_uid_required(self, tmp_path, capsys):
        code = main(["--api-key", "k", "--fail-log", str(tmp_path / "fail.log"), "convert"])

        assert code == 1
        assert "flag --uid is required" in capsys.readouterr().err
        assert not (tmp_path / "fail.log").exists()

    def test_unsupported_format_logged(self, tmp_path):
        fail_log = tmp_path / "fail.log"

        code = main(["--api-key", "k", "--fail-log", str(fail_log), "convert", "--uid", "u-1", "--to", "pdf"])

        assert code == 1
        (line,) = fail_lines(fail_log)
        assert line["target"] == "u-1"
        assert "unsupported target format: pdf" in line["message"]

    def test_missing_api_key(self, tmp_path, monkeypatch):
        monkeypatch.setattr(helpers.doc2x_settings, "DOC2X_APIKEY", None)
        monkeypatch.setattr(helpers.doc2x_settings, "DOC2X_API_KEY", None)
        fail_log = tmp_path / "fail.log"

        code = main(["--fail-log", str(fail_log), "convert", "--uid", "u-1"])

        assert code == 1
        (line,) = fail_lines(fail_log)
        assert "api key is required" in line["message"]
