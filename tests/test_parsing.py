"""Unit tests for spreadsheet row parsing."""

from datetime import date, datetime
from io import BytesIO

import pandas as pd
import pytest

from agency_import.parsing import (
    parse_date, parse_amount, parse_policy_type, canonical_policy_type,
    resolve_columns, parse_row, is_blank_row, read_rows,
    POLICY_COLUMNS, POLICY_FIELDS, CLAIM_COLUMNS,
)


class TestParseDate:

    @pytest.mark.parametrize("value", [
        "15.01.2024", "15/01/2024", "15-01-2024", "2024-01-15",
        "2024-01-15 00:00:00", 45306, "45306", 45306.0,
        datetime(2024, 1, 15, 10, 30), date(2024, 1, 15), pd.Timestamp("2024-01-15"),
    ])
    def test_accepted_formats(self, value):
        parsed, issues = parse_date(value, 'start_date')
        assert parsed == date(2024, 1, 15)
        assert issues == []

    def test_two_digit_year_is_rejected_not_guessed(self):
        parsed, issues = parse_date("15.01.24", 'claim_date')
        assert parsed is None
        assert issues[0]['code'] == 'AMBIGUOUS_DATE'
        assert issues[0]['field'] == 'claim_date'

    def test_invalid_calendar_date(self):
        parsed, issues = parse_date("31.02.2024", 'end_date')
        assert parsed is None
        assert issues[0]['code'] == 'INVALID_DATE'

    def test_garbage_cites_field(self):
        parsed, issues = parse_date("next tuesday", 'end_date')
        assert parsed is None
        assert 'end_date' in issues[0]['message']

    def test_missing_required_vs_optional(self):
        assert parse_date(None, 'start_date')[1][0]['code'] == 'MISSING_DATE'
        assert parse_date("", 'start_date', required=False) == (None, [])


class TestParseAmount:

    def test_turkish_and_english_formats_agree(self):
        """Test that '1.234,56' and '1234.56' both parse to 1234.56."""
        assert parse_amount("1.234,56", 'premium') == (1234.56, [])
        assert parse_amount("1234.56", 'premium') == (1234.56, [])
        assert parse_amount("1,234.56", 'premium') == (1234.56, [])

    @pytest.mark.parametrize("value, expected", [
        ("5000", 5000.0),
        ("5.000.000", 5000000.0),
        ("12,5", 12.5),
        ("15.000", 15000.0),
        ("15.000 TL", 15000.0),
        ("1,250", 1250.0),
        ("1234.5", 1234.5),
        ("0,75", 0.75),
        ("₺ 2.500,75 TL", 2500.75),
        (3500, 3500.0),
        (1250.5, 1250.5),
    ])
    def test_values(self, value, expected):
        assert parse_amount(value, 'amount')[0] == expected

    @pytest.mark.parametrize("value", ["-100", "(100)", "100-", -5])
    def test_negative_fails(self, value):
        parsed, issues = parse_amount(value, 'premium')
        assert parsed is None
        assert issues[0]['code'] == 'NEGATIVE_AMOUNT'

    def test_negative_allowed_on_request(self):
        assert parse_amount("-750,00", 'premium', allow_negative=True) == (-750.0, [])

    def test_non_numeric_fails(self):
        parsed, issues = parse_amount("bedelsiz", 'premium')
        assert parsed is None
        assert issues[0]['code'] == 'INVALID_AMOUNT'

    def test_absent_optional_amount_is_zero(self):
        assert parse_amount(None, 'premium') == (0.0, [])
        assert parse_amount("  ", 'premium') == (0.0, [])


class TestPolicyType:

    @pytest.mark.parametrize("value, expected", [
        ("Kasko", "kasko"),
        ("TRAFİK", "trafik"),
        ("Konut", "residence"),
        ("İşyeri", "workplace"),
        ("Sağlık", "health"),
        ("Bireysel Sağlık", "health"),
        ("Grup Sağlık", "group_health"),
        ("Ferdi Kaza", "group_accident"),
        ("group_health", "group_health"),
        ("DASK", "dask"),
    ])
    def test_aliases(self, value, expected):
        assert parse_policy_type(value) == (expected, [])

    def test_unknown_type_lists_accepted_values(self):
        parsed, issues = parse_policy_type("nakliyat")
        assert parsed is None
        assert 'kasko' in issues[0]['message']

    def test_canonical_of_unknown_is_normalized_text(self):
        assert canonical_policy_type("Nakliyat ") == "nakliyat"


class TestColumns:

    def test_header_variants_resolve(self):
        headers = ['Police No', 'SIGORTA ŞİRKETİ', 'policy_type', 'Baslangic Tarihi', 'Bitiş Tarihi', 'Prim']
        columns = resolve_columns(headers, POLICY_COLUMNS)
        assert columns['policy_number'] == 'Police No'
        assert columns['company'] == 'SIGORTA ŞİRKETİ'
        assert columns['policy_type'] == 'policy_type'
        assert columns['start_date'] == 'Baslangic Tarihi'
        assert columns['premium'] == 'Prim'
        assert 'plate' not in columns

    def test_header_claimed_once(self):
        columns = resolve_columns(['Poliçe No', 'Tutar'], CLAIM_COLUMNS)
        assert columns == {'policy_number': 'Poliçe No', 'amount': 'Tutar'}


class TestParseRow:

    def test_blank_row(self):
        raw = {'Poliçe No': None, 'Sigorta Şirketi': '  ', 'Prim Tutarı': float('nan')}
        assert is_blank_row(raw)
        row = parse_row(raw, resolve_columns(list(raw), POLICY_COLUMNS), POLICY_FIELDS, 3)
        assert row.blank
        assert row.issues == []

    def test_typed_values_and_issues(self):
        raw = {
            'Poliçe No': 123456789.0, 'Poliçe Tipi': 'Trafik', 'Plaka': '06 xyz 456',
            'Başlangıç Tarihi': '01.01.2024', 'Bitiş Tarihi': '01.01.24', 'Prim Tutarı': '-5',
        }
        row = parse_row(raw, resolve_columns(list(raw), POLICY_COLUMNS), POLICY_FIELDS, 2)
        assert row.get('policy_number') == '123456789'
        assert row.get('policy_type') == 'trafik'
        assert row.get('plate') == '06XYZ456'
        assert row.get('start_date') == date(2024, 1, 1)
        assert [i['field'] for i in row.errors_for('end_date', 'premium')] == ['end_date', 'premium']
        assert row.get('company') is None

    def test_missing_date_column_is_missing_date(self):
        raw = {'Poliçe No': 'P1', 'Poliçe Tipi': 'kasko'}
        row = parse_row(raw, resolve_columns(list(raw), POLICY_COLUMNS), POLICY_FIELDS, 2)
        codes = {i['code'] for i in row.errors_for('start_date', 'end_date')}
        assert codes == {'MISSING_DATE'}


class TestReadRows:

    def test_csv_keeps_leading_zeros_and_blank_lines(self):
        content = "Poliçe No,TC Kimlik No,Prim Tutarı\nP1,01234567890,\"1.234,56\"\n,,\n".encode("utf-8")
        rows = read_rows(content, "policeler.csv")
        assert rows[0] == {'Poliçe No': 'P1', 'TC Kimlik No': '01234567890', 'Prim Tutarı': '1.234,56'}
        assert is_blank_row(rows[1])

    def test_xlsx_first_sheet(self):
        buffer = BytesIO()
        with pd.ExcelWriter(buffer, engine="openpyxl") as writer:
            pd.DataFrame([{"Poliçe No": "P1", "Prim Tutarı": 100}, {"Poliçe No": "P2", "Prim Tutarı": 250.5}]) \
                .to_excel(writer, sheet_name='Poliçeler', index=False)
            pd.DataFrame([{'x': 1}]).to_excel(writer, sheet_name='Other', index=False)
        rows = read_rows(buffer.getvalue(), "policeler.xlsx")
        assert len(rows) == 2
        assert rows[0]['Poliçe No'] == 'P1'
        assert rows[1] == {"Poliçe No": "P2", "Prim Tutarı": 250.5}

    def test_unsupported_extension(self):
        with pytest.raises(ValueError):
            read_rows(b"x", "policeler.txt")
