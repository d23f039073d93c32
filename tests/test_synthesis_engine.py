"""Tests for the synthesis engine: per-sheet and columnar-merge generation."""

import pytest

from backend.core.synthesis_engine import (
    EmptyResultError,
    GenerationMode,
    NoMappingError,
    SynthesisError,
    SynthesisLimitError,
    build_column_buffer,
    generate,
    live_entries,
    output_filename,
    resolve_source_sheet,
    synthesize,
    synthesize_columnar,
    synthesize_per_sheet,
)
from backend.core.workbook import SourceKey, TemplateKey
from backend.core.workbook_codec import decode
from tests.conftest import make_template, make_workbook


def _rows(sheet) -> list[list]:
    return [list(r) for r in sheet.rows]


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class TestLiveEntries:
    def test_stale_entries_filtered(self):
        template = make_template({"T": ["Name"]})
        mapping = {
            TemplateKey("T", "Removed"): SourceKey("S", "X"),
            TemplateKey("T", "Name"): SourceKey("S", "Name"),
        }
        assert live_entries(template, mapping) == [
            (TemplateKey("T", "Name"), SourceKey("S", "Name")),
        ]


class TestResolveSourceSheet:
    def test_unscoped_key_takes_first_source(self):
        a = make_workbook({"S": (["A"], [])}, workbook_id="wb_a")
        b = make_workbook({"S": (["A"], [])}, workbook_id="wb_b")
        assert resolve_source_sheet(SourceKey("S", "A"), [a, b]).source_id == "wb_a"

    def test_scoped_key_uses_its_workbook(self):
        a = make_workbook({"S": (["A"], [])}, workbook_id="wb_a")
        b = make_workbook({"S": (["A"], [])}, workbook_id="wb_b")
        assert resolve_source_sheet(SourceKey("S", "A", "wb_b"), [a, b]).source_id == "wb_b"

    def test_scoped_key_for_absent_workbook(self):
        a = make_workbook({"S": (["A"], [])}, workbook_id="wb_a")
        assert resolve_source_sheet(SourceKey("S", "A", "wb_x"), [a]) is None


class TestOutputFilename:
    def test_first_source_base_name(self):
        assert output_filename(["people.xlsx", "other.xlsx"]) == "people_mapped.xlsx"

    def test_keeps_inner_dots(self):
        assert output_filename(["q1.report.xlsx"]) == "q1.report_mapped.xlsx"

    def test_fallback_without_names(self):
        assert output_filename([]) == "Output.xlsx"
        assert output_filename([None]) == "Output.xlsx"


# ---------------------------------------------------------------------------
# PER_SHEET
# ---------------------------------------------------------------------------

class TestPerSheet:
    def test_maps_source_field_to_template_field(self):
        template = make_template({"Contacts": ["Name"]})
        source = make_workbook({"People": (["FullName"], [["Alice"], ["Bob"]])})
        mapping = {TemplateKey("Contacts", "Name"): SourceKey("People", "FullName")}

        output = synthesize_per_sheet(template, [source], mapping)

        sheet = output.sheet("Contacts")
        assert sheet.field_names == ["Name"]
        assert _rows(sheet) == [["Alice"], ["Bob"]]

    def test_only_mapped_template_sheets_emitted(self):
        template = make_template({"S1": ["A"], "S2": ["B"]})
        source = make_workbook({"Src": (["A", "B"], [[1, 2]])})
        mapping = {TemplateKey("S1", "A"): SourceKey("Src", "A")}

        output = synthesize_per_sheet(template, [source], mapping)

        assert output.sheet_names == ["S1"]

    def test_unmapped_fields_render_empty(self):
        template = make_template({"T": ["Name", "Notes", "Email"]})
        source = make_workbook({"S": (["Name", "Email"], [["Alice", "a@x.io"]])})
        mapping = {
            TemplateKey("T", "Name"): SourceKey("S", "Name"),
            TemplateKey("T", "Email"): SourceKey("S", "Email"),
        }
        output = synthesize_per_sheet(template, [source], mapping)
        assert _rows(output.sheet("T")) == [["Alice", None, "a@x.io"]]

    def test_header_uses_template_names(self):
        template = make_template({"T": ["Customer", "Mail"]})
        source = make_workbook({"S": (["name", "email"], [["x", "y"]])})
        mapping = {
            TemplateKey("T", "Customer"): SourceKey("S", "name"),
            TemplateKey("T", "Mail"): SourceKey("S", "email"),
        }
        assert synthesize_per_sheet(template, [source], mapping).sheet("T").field_names == [
            "Customer", "Mail",
        ]

    def test_primary_sheet_is_first_mapped_field_in_header_order(self):
        template = make_template({"T": ["A", "B"]})
        source = make_workbook({
            "Long": (["B"], [["b1"], ["b2"], ["b3"]]),
            "Short": (["A"], [["a1"], ["a2"]]),
        })
        mapping = {
            TemplateKey("T", "B"): SourceKey("Long", "B"),
            TemplateKey("T", "A"): SourceKey("Short", "A"),
        }
        output = synthesize_per_sheet(template, [source], mapping)
        assert _rows(output.sheet("T")) == [["a1", "b1"], ["a2", "b2"]]

    def test_secondary_sheet_aligned_by_position_with_gaps(self):
        template = make_template({"T": ["A", "B"]})
        source = make_workbook({
            "Main": (["A"], [["a1"], ["a2"], ["a3"]]),
            "Side": (["B"], [["b1"]]),
        })
        mapping = {
            TemplateKey("T", "A"): SourceKey("Main", "A"),
            TemplateKey("T", "B"): SourceKey("Side", "B"),
        }
        output = synthesize_per_sheet(template, [source], mapping)
        assert _rows(output.sheet("T")) == [["a1", "b1"], ["a2", None], ["a3", None]]

    def test_short_rows_render_missing_cells_empty(self):
        template = make_template({"T": ["A", "B"]})
        source = make_workbook({"S": (["A", "B"], [["a1"], ["a2", "b2"]])})
        mapping = {
            TemplateKey("T", "A"): SourceKey("S", "A"),
            TemplateKey("T", "B"): SourceKey("S", "B"),
        }
        output = synthesize_per_sheet(template, [source], mapping)
        assert _rows(output.sheet("T")) == [["a1", None], ["a2", "b2"]]

    def test_falsy_values_preserved(self):
        template = make_template({"T": ["Qty"]})
        source = make_workbook({"S": (["Qty"], [[0], [False]])})
        mapping = {TemplateKey("T", "Qty"): SourceKey("S", "Qty")}
        output = synthesize_per_sheet(template, [source], mapping)
        assert _rows(output.sheet("T")) == [[0], [False]]

    def test_missing_source_field_renders_empty(self):
        template = make_template({"T": ["A", "B"]})
        source = make_workbook({"S": (["A"], [["a1"]])})
        mapping = {
            TemplateKey("T", "A"): SourceKey("S", "A"),
            TemplateKey("T", "B"): SourceKey("S", "Gone"),
        }
        output = synthesize_per_sheet(template, [source], mapping)
        assert _rows(output.sheet("T")) == [["a1", None]]

    def test_sheet_with_unresolvable_source_sheets_skipped(self):
        template = make_template({"T1": ["A"], "T2": ["A"]})
        source = make_workbook({"S": (["A"], [["a1"]])})
        mapping = {
            TemplateKey("T1", "A"): SourceKey("Missing", "A"),
            TemplateKey("T2", "A"): SourceKey("S", "A"),
        }
        output = synthesize_per_sheet(template, [source], mapping)
        assert output.sheet_names == ["T2"]

    def test_nothing_resolvable_is_empty_result(self):
        template = make_template({"T": ["A"]})
        source = make_workbook({"S": (["A"], [["a1"]])})
        mapping = {TemplateKey("T", "A"): SourceKey("Missing", "A")}
        with pytest.raises(EmptyResultError):
            synthesize_per_sheet(template, [source], mapping)

    def test_empty_mapping_is_no_mapping_error(self):
        template = make_template({"T": ["A"]})
        source = make_workbook({"S": (["A"], [["a1"]])})
        with pytest.raises(NoMappingError):
            synthesize_per_sheet(template, [source], {})

    def test_only_stale_entries_is_no_mapping_error(self):
        template = make_template({"T": ["A"]})
        source = make_workbook({"S": (["A"], [["a1"]])})
        mapping = {TemplateKey("Old", "A"): SourceKey("S", "A")}
        with pytest.raises(NoMappingError):
            synthesize_per_sheet(template, [source], mapping)

    def test_primary_sheet_without_rows_gives_header_only_sheet(self):
        template = make_template({"T": ["A"]})
        source = make_workbook({"S": (["A"], [])})
        mapping = {TemplateKey("T", "A"): SourceKey("S", "A")}
        output = synthesize_per_sheet(template, [source], mapping)
        assert output.sheet("T").field_names == ["A"]
        assert output.sheet("T").rows == ()


# ---------------------------------------------------------------------------
# COLUMNAR_MERGE
# ---------------------------------------------------------------------------

class TestColumnarMerge:
    def test_buffer_compacts_sparse_columns_across_files(self):
        first = make_workbook({"Data": (["V"], [["X"], [""], ["Y"]])}, workbook_id="wb_1")
        second = make_workbook({"Data": (["V"], [[""], ["Z"]])}, workbook_id="wb_2")
        assert build_column_buffer(SourceKey("Data", "V"), [first, second]) == ["X", "Y", "Z"]

    def test_buffer_skips_files_without_sheet_or_field(self):
        first = make_workbook({"Other": (["V"], [["no"]])}, workbook_id="wb_1")
        second = make_workbook({"Data": (["W"], [["no"]])}, workbook_id="wb_2")
        third = make_workbook({"Data": (["V"], [["yes"]])}, workbook_id="wb_3")
        assert build_column_buffer(SourceKey("Data", "V"), [first, second, third]) == ["yes"]

    def test_buffer_ignores_source_scope(self):
        first = make_workbook({"Data": (["V"], [["a"]])}, workbook_id="wb_1")
        second = make_workbook({"Data": (["V"], [["b"]])}, workbook_id="wb_2")
        assert build_column_buffer(SourceKey("Data", "V", "wb_1"), [first, second]) == ["a", "b"]

    def test_rows_realigned_by_position(self):
        template = make_template({"T": ["Name", "City"]})
        first = make_workbook(
            {"S": (["Name", "City"], [["Ann", None], [None, "Oslo"], ["Bo", None]])},
            workbook_id="wb_1",
        )
        second = make_workbook({"S": (["Name", "City"], [["Cy", "Rome"]])}, workbook_id="wb_2")
        mapping = {
            TemplateKey("T", "Name"): SourceKey("S", "Name"),
            TemplateKey("T", "City"): SourceKey("S", "City"),
        }

        output = synthesize_columnar(template, [first, second], mapping)

        sheet = output.sheets[0]
        assert sheet.name == "Output"
        assert sheet.field_names == ["Name", "City"]
        assert _rows(sheet) == [["Ann", "Oslo"], ["Bo", "Rome"], ["Cy", None]]

    def test_row_count_equals_longest_buffer(self):
        template = make_template({"T": ["A", "B"]})
        source = make_workbook({"S": (["A", "B"], [["a1", "b1"], ["a2"], ["a3"], ["a4"]])})
        mapping = {
            TemplateKey("T", "A"): SourceKey("S", "A"),
            TemplateKey("T", "B"): SourceKey("S", "B"),
        }
        output = synthesize_columnar(template, [source], mapping)
        assert len(output.sheets[0].rows) == 4

    def test_header_follows_mapping_order_across_template_sheets(self):
        template = make_template({"T1": ["A"], "T2": ["B"]})
        source = make_workbook({"S": (["A", "B"], [["a", "b"]])})
        mapping = {
            TemplateKey("T2", "B"): SourceKey("S", "B"),
            TemplateKey("T1", "A"): SourceKey("S", "A"),
        }
        output = synthesize_columnar(template, [source], mapping)
        assert output.sheet_names == ["Output"]
        assert output.sheets[0].field_names == ["B", "A"]
        assert _rows(output.sheets[0]) == [["b", "a"]]

    def test_stale_entries_not_surfaced(self):
        template = make_template({"T": ["A"]})
        source = make_workbook({"S": (["A", "Z"], [["a", "z"]])})
        mapping = {
            TemplateKey("T", "Removed"): SourceKey("S", "Z"),
            TemplateKey("T", "A"): SourceKey("S", "A"),
        }
        output = synthesize_columnar(template, [source], mapping)
        assert output.sheets[0].field_names == ["A"]

    def test_all_empty_columns_is_empty_result(self):
        template = make_template({"T": ["A"]})
        source = make_workbook({"S": (["A"], [[None], [""]])})
        mapping = {TemplateKey("T", "A"): SourceKey("S", "A")}
        with pytest.raises(EmptyResultError):
            synthesize_columnar(template, [source], mapping)

    def test_custom_sheet_name(self):
        template = make_template({"T": ["A"]})
        source = make_workbook({"S": (["A"], [["a"]])})
        mapping = {TemplateKey("T", "A"): SourceKey("S", "A")}
        output = synthesize_columnar(template, [source], mapping, sheet_name="Merged")
        assert output.sheet_names == ["Merged"]


# ---------------------------------------------------------------------------
# Entry points
# ---------------------------------------------------------------------------

class TestSynthesize:
    def _inputs(self):
        template = make_template({"T": ["A"]})
        source = make_workbook({"S": (["A"], [["a1"], ["a2"], ["a3"]])}, name="src.xlsx")
        mapping = {TemplateKey("T", "A"): SourceKey("S", "A")}
        return template, source, mapping

    def test_mode_selection(self):
        template, source, mapping = self._inputs()
        per_sheet = synthesize(template, [source], mapping, GenerationMode.PER_SHEET)
        merged = synthesize(template, [source], mapping, GenerationMode.COLUMNAR_MERGE)
        assert per_sheet.sheet_names == ["T"]
        assert merged.sheet_names == ["Output"]

    def test_row_limit_enforced_before_synthesis(self):
        template, source, mapping = self._inputs()
        with pytest.raises(SynthesisLimitError):
            synthesize(template, [source], mapping, max_rows=2)

    def test_row_limit_at_boundary_allowed(self):
        template, source, mapping = self._inputs()
        assert synthesize(template, [source], mapping, max_rows=3).row_count == 3

    def test_no_sources(self):
        template, _, mapping = self._inputs()
        with pytest.raises(SynthesisError):
            synthesize(template, [], mapping)

    def test_no_mapping_checked_first(self):
        template, source, _ = self._inputs()
        with pytest.raises(NoMappingError):
            synthesize(template, [source], {}, max_rows=0)

    def test_does_not_mutate_inputs(self):
        template, source, mapping = self._inputs()
        before = dict(mapping)
        synthesize(template, [source], mapping)
        assert mapping == before
        assert source.sheet("S").rows == (("a1",), ("a2",), ("a3",))


class TestGenerate:
    def test_artifact_is_encoded_workbook(self):
        template = make_template({"Contacts": ["Name"]})
        source = make_workbook(
            {"People": (["FullName"], [["Alice"], ["Bob"]])},
            name="people.xlsx",
        )
        mapping = {TemplateKey("Contacts", "Name"): SourceKey("People", "FullName")}

        artifact = generate(template, [source], mapping)

        assert artifact.filename == "people_mapped.xlsx"
        assert artifact.sheet_count == 1
        assert artifact.row_count == 2
        decoded = decode(artifact.content)
        assert decoded.sheet_names == ["Contacts"]
        assert decoded.sheet("Contacts").rows == (("Alice",), ("Bob",))

    def test_fallback_filename(self):
        template = make_template({"T": ["A"]})
        source = make_workbook({"S": (["A"], [["a"]])})
        artifact = generate(
            template, [source], {TemplateKey("T", "A"): SourceKey("S", "A")},
            mode=GenerationMode.COLUMNAR_MERGE,
        )
        assert artifact.filename == "Output.xlsx"
