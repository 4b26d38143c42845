"""Tests for schoolsheets.lib.headers module."""

import pytest

from schoolsheets.lib.errors import ConfigurationError
from schoolsheets.lib.headers import (
    cell_text,
    column_index,
    flatten_headers,
    is_key_label,
    locate_key_column,
    parse_column_range,
)


class TestCellText:
    """Tests for cell value rendering."""

    def test_none_is_empty(self):
        assert cell_text(None) == ""

    def test_integral_float_has_no_decimal(self):
        assert cell_text(2021.0) == "2021"
        assert cell_text(0.5) == "0.5"

    def test_booleans_render_like_the_sheet(self):
        assert cell_text(True) == "TRUE"
        assert cell_text(False) == "FALSE"

    def test_strings_are_not_trimmed(self):
        """Trailing whitespace is part of the value."""
        assert cell_text("7 ") == "7 "
        assert cell_text("7") != cell_text("7 ")


class TestFlattenHeaders:
    """Tests for flatten_headers()."""

    def test_three_row_composite_labels(self):
        """Three parallel rows join with ' | '."""
        rows = [["A", "B"], ["x", "y"], [2021, 2022]]
        assert flatten_headers(rows) == ["A | x | 2021", "B | y | 2022"]

    def test_all_empty_column_gets_placeholder(self):
        rows = [["A", "", "C"], ["x", "", "z"], ["1", "", "3"]]
        assert flatten_headers(rows) == ["A | x | 1", "col_1", "C | z | 3"]

    def test_whitespace_only_column_gets_placeholder(self):
        rows = [["A", "  "], ["x", ""], ["1", " "]]
        assert flatten_headers(rows)[1] == "col_1"

    def test_ragged_rows_pad_to_widest(self):
        """Shorter rows contribute empty cells beyond their length."""
        rows = [["Category", "Reading", "Math"], ["Field"], []]
        labels = flatten_headers(rows)
        assert len(labels) == 3
        assert labels == ["Category | Field | ", "Reading |  | ", "Math |  | "]

    def test_partially_empty_column_keeps_separators(self):
        """Only fully blank columns fall back to a placeholder."""
        rows = [["School ID", "Math"], ["", "Proficient"], ["", "2022"]]
        assert flatten_headers(rows) == ["School ID |  | ", "Math | Proficient | 2022"]

    def test_single_row_uses_cell_text(self):
        assert flatten_headers([["School ID", "Name", ""]]) == ["School ID", "Name", "col_2"]

    def test_length_equals_widest_row(self):
        rows = [["a"], ["b", "c", "d"], ["e", "f"]]
        assert len(flatten_headers(rows)) == 3

    def test_stable_across_calls(self):
        rows = [["A", ""], ["x", ""], ["1", ""]]
        assert flatten_headers(rows) == flatten_headers(rows)

    def test_duplicate_labels_are_not_renamed(self):
        rows = [["Math", "Math"], ["Score", "Score"], ["2023", "2023"]]
        assert flatten_headers(rows) == ["Math | Score | 2023", "Math | Score | 2023"]

    def test_rejects_more_than_three_rows(self):
        with pytest.raises(ValueError):
            flatten_headers([["a"], ["b"], ["c"], ["d"]])

    def test_rejects_no_rows(self):
        with pytest.raises(ValueError):
            flatten_headers([])


class TestKeyColumnLocator:
    """Tests for is_key_label() and locate_key_column()."""

    def test_exact_label(self):
        assert locate_key_column(["Name", "School ID", "Region"]) == 1

    def test_compact_label(self):
        assert locate_key_column(["schoolid", "name"]) == 0

    def test_id_without_school_is_not_a_key(self):
        assert locate_key_column(["id", "name"]) is None

    def test_case_and_whitespace_insensitive(self):
        assert is_key_label("  SCHOOL id ")

    def test_substrings_in_any_order(self):
        assert is_key_label("ID of school")
        assert is_key_label("School ID |  | ")

    def test_school_alone_is_not_a_key(self):
        assert not is_key_label("School Name")

    def test_leftmost_match_wins(self):
        headers = ["Region", "School ID", "Parent School ID"]
        assert locate_key_column(headers) == 1

    def test_empty_headers(self):
        assert locate_key_column([]) is None


class TestColumnLetters:
    """Tests for spreadsheet column letter helpers."""

    def test_column_index(self):
        assert column_index("A") == 0
        assert column_index("Z") == 25
        assert column_index("AA") == 26
        assert column_index("ab") == 27

    def test_invalid_letters(self):
        with pytest.raises(ConfigurationError):
            column_index("A1")
        with pytest.raises(ConfigurationError):
            column_index("")

    def test_inclusive_range(self):
        columns = parse_column_range("AB:AU")
        assert columns[0] == 27
        assert columns[-1] == 46
        assert len(columns) == 20

    def test_single_column(self):
        assert list(parse_column_range("C")) == [2]

    def test_reversed_range(self):
        with pytest.raises(ConfigurationError):
            parse_column_range("D:B")
