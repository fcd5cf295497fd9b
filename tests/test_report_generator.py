"""
Tests — Report Generator (CSV / Excel / HTML rendering and file output).
"""

import io
from datetime import datetime

import pytest
from openpyxl import load_workbook

from tfd_reports.core.exceptions import GenerationError
from tfd_reports.services.report_generator import (
    ReportDataset,
    TabularReportGenerator,
    get_row_providers,
    render_csv,
)


def _dataset(params=None):
    return ReportDataset(
        title="TFD Requests",
        columns=[("protocol", "Protocol"), ("patient", "Patient"), ("urgent", "Urgent"),
                 ("requested_at", "Requested at")],
        rows=[
            {"protocol": "P-001", "patient": "Ana Souza", "urgent": True,
             "requested_at": datetime(2024, 3, 5, 14, 30)},
            {"protocol": "P-002", "patient": "<b>João</b>", "urgent": False,
             "requested_at": None},
        ],
    )


@pytest.fixture()
def tabular(tmp_path):
    return TabularReportGenerator(output_dir=tmp_path, providers={"tfd_requests": _dataset})


class TestProviders:

    def test_every_report_type_has_a_default_provider(self):
        assert set(get_row_providers()) == {"users", "municipalities", "tfd_requests", "access_logs"}

    def test_default_provider_renders_header_only(self, tmp_path):
        report = TabularReportGenerator(output_dir=tmp_path).generate("users", {}, "csv")
        assert report.row_count == 0
        assert report.content.decode("utf-8-sig").strip() == (
            "Name;E-mail;Profile;Municipality;Active;Created at"
        )


class TestCsv:

    def test_semicolon_delimited_with_bom(self, tabular):
        report = tabular.generate("tfd_requests", {}, "csv")
        assert report.content.startswith(b"\xef\xbb\xbf")
        lines = report.content.decode("utf-8-sig").splitlines()
        assert lines[0] == "Protocol;Patient;Urgent;Requested at"
        assert lines[1] == "P-001;Ana Souza;Yes;05/03/2024 14:30"
        assert lines[2] == "P-002;<b>João</b>;No;"
        assert report.mimetype == "text/csv"
        assert report.row_count == 2

    def test_quotes_values_containing_delimiter(self):
        dataset = ReportDataset(title="X", columns=[("a", "A")], rows=[{"a": "x;y"}])
        assert render_csv(dataset).decode("utf-8-sig").splitlines()[1] == '"x;y"'


class TestExcel:

    def test_workbook_layout(self, tabular):
        report = tabular.generate("tfd_requests", {}, "excel")
        assert report.filename.endswith(".xlsx")

        ws = load_workbook(io.BytesIO(report.content)).active
        assert ws.title == "TFD Requests"
        assert [c.value for c in ws[1]] == ["Protocol", "Patient", "Urgent", "Requested at"]
        assert ws["A2"].value == "P-001"
        assert ws["C3"].value == "No"
        assert ws.freeze_panes == "A2"
        assert ws["A1"].font.bold


class TestHtml:

    def test_pdf_format_renders_escaped_html(self, tabular):
        report = tabular.generate(
            "tfd_requests", {"start_date": "2024-01-01", "end_date": "2024-01-31"}, "pdf",
        )
        text = report.content.decode("utf-8")
        assert report.mimetype == "text/html"
        assert report.filename.endswith(".html")
        assert "<h1>TFD Requests Report</h1>" in text
        assert "&lt;b&gt;João&lt;/b&gt;" in text
        assert "Period: 01/01/2024 to 31/01/2024" in text

    def test_empty_dataset_message(self, tmp_path):
        report = TabularReportGenerator(output_dir=tmp_path).generate("access_logs", None, "pdf")
        assert "No records found" in report.content.decode("utf-8")


class TestGenerate:

    def test_writes_file_to_output_dir(self, tabular, tmp_path):
        report = tabular.generate("tfd_requests", {}, "csv")
        assert report.reference == report.filename
        assert report.filename.startswith("report_tfd_requests_")
        assert (tmp_path / report.filename).read_bytes() == report.content

    def test_unique_filenames(self, tabular):
        first = tabular.generate("tfd_requests", {}, "csv")
        second = tabular.generate("tfd_requests", {}, "csv")
        assert first.filename != second.filename

    def test_uses_configured_output_dir(self, app):
        generator = TabularReportGenerator(providers={"tfd_requests": _dataset})
        report = generator.generate("tfd_requests", {}, "csv")
        assert str(generator.output_dir) == app.config["REPORT_OUTPUT_DIR"]
        assert (generator.output_dir / report.filename).exists()

    def test_provider_receives_parsed_parameters(self, tmp_path):
        seen = []

        def provider(params):
            seen.append(params)
            return _dataset()

        generator = TabularReportGenerator(output_dir=tmp_path, providers={"tfd_requests": provider})
        generator.generate("tfd_requests", {"status": "approved"}, "csv")
        assert seen[0].status == "approved"

    @pytest.mark.parametrize("report_type,parameters,output_format,message", [
        ("tfd_requests", {}, "docx", "Unsupported output format"),
        ("tfd_requests", {"status": "lost"}, "csv", "Invalid stored parameters"),
        ("users", {}, "csv", "No data provider"),
    ])
    def test_failures_raise_generation_error(self, tabular, report_type, parameters,
                                             output_format, message):
        with pytest.raises(GenerationError, match=message):
            tabular.generate(report_type, parameters, output_format)

    def test_unwritable_output_dir(self, tmp_path):
        blocker = tmp_path / "file"
        blocker.write_text("x")
        generator = TabularReportGenerator(output_dir=blocker / "reports",
                                           providers={"tfd_requests": _dataset})
        with pytest.raises(GenerationError, match="Could not store report file"):
            generator.generate("tfd_requests", {}, "csv")
