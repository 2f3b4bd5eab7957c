"""
Spreadsheet row parsing for bulk imports.

Handles:
- Decoding uploaded .xlsx/.xls/.csv files into row dicts (pandas)
- Column resolution through declarative alias tables
- Date, amount and policy-type parsing
- Blank row detection

Parsers follow the (value, issues) convention: problems are returned as
issue dicts {'field', 'code', 'message', 'severity'} and the caller decides
what an 'error' issue means for the row.
"""

import re
import math
import numbers
from io import BytesIO
from pathlib import Path
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Optional, List, Dict, Any, Tuple

import pandas as pd

from .normalize import normalize_header, normalize_text, normalize_plate, to_text


# =============================================================================
# CONSTANTS
# =============================================================================

# Spreadsheet serial day 0
SERIAL_EPOCH = date(1899, 12, 30)
# 9999-12-31 in serial days
MAX_SERIAL = 2958465

POLICY_TYPES = [
    'kasko', 'trafik', 'dask', 'residence', 'workplace',
    'health', 'group_health', 'group_accident',
]

MOTOR_TYPES = {'kasko', 'trafik'}

# Keys are normalize_text() output
POLICY_TYPE_ALIASES = {
    'kasko': 'kasko',
    'trafik': 'trafik',
    'traffic': 'trafik',
    'zorunlu trafik': 'trafik',
    'dask': 'dask',
    'konut': 'residence',
    'residence': 'residence',
    'saglik': 'health',
    'health': 'health',
    'saglik sigortasi': 'health',
    'bireysel saglik': 'health',
    'bireysel saglik sigortasi': 'health',
    'bireyselsaglik': 'health',
    'isyeri': 'workplace',
    'is yeri': 'workplace',
    'workplace': 'workplace',
    'grup saglik': 'group_health',
    'grupsaglik': 'group_health',
    'group health': 'group_health',
    'grup ferdi kaza': 'group_accident',
    'grupferdikaza': 'group_accident',
    'ferdi kaza': 'group_accident',
    'ferdikaza': 'group_accident',
    'group accident': 'group_accident',
}

ACCEPTED_TYPES_HINT = (
    "kasko, trafik, konut, isyeri, saglik, bireysel saglik, dask, "
    "grup saglik, grup ferdi kaza"
)


# =============================================================================
# COLUMN ALIASES
# =============================================================================

# logical_field -> accepted header variants, most specific first
POLICY_COLUMNS: Dict[str, List[str]] = {
    'customer_name': ['Müşteri Adı', 'Müşteri', 'Musteri Adi', 'customer_name', 'client_name'],
    'tc_number': ['TC Kimlik No', 'TC No', 'TCKN', 'Kimlik No', 'tc_number'],
    'tax_number': ['Vergi No', 'Vergi Numarası', 'VKN', 'tax_number'],
    'phone': ['Telefon', 'Tel', 'Cep Telefonu', 'phone'],
    'email': ['Email', 'E-mail', 'E-posta', 'Mail', 'email'],
    'company': ['Sigorta Şirketi', 'Şirket', 'Şirket Adı', 'insurance_company', 'company'],
    'policy_number': ['Poliçe No', 'Police No', 'Poliçe Numarası', 'policy_number', 'policy_no'],
    'policy_type': ['Poliçe Tipi', 'Poliçe Türü', 'Police Tipi', 'Branş', 'policy_type'],
    'insured_name': ['Sigortalı Adı', 'Sigortalı', 'insured_name'],
    'plate': ['Plaka', 'Araç Plakası', 'license_plate', 'plate'],
    'vehicle': ['Marka Model', 'Araç Marka Model', 'Araç', 'vehicle_brand_model'],
    'address_1': ['Riziko Adresi 1', 'Riziko Adresi', 'address_1'],
    'address_2': ['Riziko Adresi 2', 'address_2'],
    'start_date': ['Başlangıç Tarihi', 'Baslangic Tarihi', 'Tanzim Tarihi', 'start_date'],
    'end_date': ['Bitiş Tarihi', 'Bitis Tarihi', 'Vade Sonu', 'end_date'],
    'premium': ['Prim Tutarı', 'Brüt Prim', 'Net Prim', 'Prim', 'Tutar', 'premium_amount', 'premium'],
    'description': ['Açıklama', 'İşlem Tipi', 'İşlem', 'description'],
}

CLAIM_COLUMNS: Dict[str, List[str]] = {
    'claim_number': ['Dosya No', 'Hasar Dosya No', 'Hasar No', 'claim_number'],
    'policy_number': ['Poliçe No', 'Police No', 'Poliçe Numarası', 'policy_number'],
    'plate': ['Plaka', 'license_plate', 'plate'],
    'company': ['Sigorta Şirketi', 'Şirket', 'insurance_company', 'company'],
    'policy_type': ['Poliçe Türü', 'Poliçe Tipi', 'Branş', 'policy_type'],
    'claim_date': ['Hasar Tarihi', 'Olay Tarihi', 'claim_date'],
    'amount': ['Ödeme Tutarı', 'Hasar Tutarı', 'Tutar', 'payment_amount', 'amount'],
    'claim_type': ['Hasar Nedeni', 'Hasar Türü', 'claim_type'],
    'status': ['Durum', 'Hasar Durumu', 'status'],
    'description': ['Açıklama', 'description'],
    'tc_number': ['TC Kimlik No', 'TC No', 'TCKN', 'tc_number'],
    'tax_number': ['Vergi No', 'VKN', 'tax_number'],
}

POLICY_UPDATE_COLUMNS: Dict[str, List[str]] = {
    'policy_number': ['Poliçe No', 'Police No', 'Poliçe Numarası', 'policy_number'],
    'company': ['Sigorta Şirketi', 'Şirket', 'insurance_company', 'company'],
}


# =============================================================================
# FIELD SCHEMAS
# =============================================================================

@dataclass(frozen=True)
class FieldSpec:
    """How one logical field is parsed. kind: text, date, amount, policy_type, plate."""
    kind: str = 'text'
    required: bool = False


POLICY_FIELDS: Dict[str, FieldSpec] = {
    'customer_name': FieldSpec(),
    'tc_number': FieldSpec(),
    'tax_number': FieldSpec(),
    'phone': FieldSpec(),
    'email': FieldSpec(),
    'company': FieldSpec(),
    'policy_number': FieldSpec(),
    'policy_type': FieldSpec('policy_type', required=True),
    'insured_name': FieldSpec(),
    'plate': FieldSpec('plate'),
    'vehicle': FieldSpec(),
    'address_1': FieldSpec(),
    'address_2': FieldSpec(),
    'start_date': FieldSpec('date', required=True),
    'end_date': FieldSpec('date', required=True),
    'premium': FieldSpec('amount'),
    'description': FieldSpec(),
}

CLAIM_FIELDS: Dict[str, FieldSpec] = {
    'claim_number': FieldSpec(),
    'policy_number': FieldSpec(),
    'plate': FieldSpec('plate'),
    'company': FieldSpec(),
    'policy_type': FieldSpec(),
    'claim_date': FieldSpec('date', required=True),
    'amount': FieldSpec('amount'),
    'claim_type': FieldSpec(),
    'status': FieldSpec(),
    'description': FieldSpec(),
    'tc_number': FieldSpec(),
    'tax_number': FieldSpec(),
}

POLICY_UPDATE_FIELDS: Dict[str, FieldSpec] = {
    'policy_number': FieldSpec(),
    'company': FieldSpec(),
}


def _issue(field_name: str, code: str, message: str, severity: str = 'error') -> dict:
    return {'field': field_name, 'code': code, 'message': message, 'severity': severity}


def is_blank(value: Any) -> bool:
    """True for None, NaN and whitespace-only cells."""
    if value is None:
        return True
    if isinstance(value, float) and math.isnan(value):
        return True
    if value is pd.NaT:
        return True
    return isinstance(value, str) and not value.strip()


def is_blank_row(raw: Dict[str, Any]) -> bool:
    """A row with no non-empty cell."""
    return all(is_blank(v) for v in raw.values())


# =============================================================================
# COLUMN RESOLUTION
# =============================================================================

def resolve_columns(headers: List[str], aliases: Dict[str, List[str]]) -> Dict[str, str]:
    """
    Map logical fields to the file's actual headers.

    Headers and aliases are compared after normalize_header(), so case,
    Turkish letters and underscores do not matter. Aliases are tried in
    order; a header is claimed by at most one field.

    Returns: {logical_field: source_header}
    """
    by_normalized: Dict[str, str] = {}
    for header in headers:
        key = normalize_header(header)
        if key and key not in by_normalized:
            by_normalized[key] = header

    # Same key without spaces catches "PoliceNo" / "Police No" style variants
    by_compact = {k.replace(' ', ''): v for k, v in by_normalized.items()}

    mapping: Dict[str, str] = {}
    claimed = set()
    for logical_field, alias_list in aliases.items():
        for alias in alias_list:
            alias_key = normalize_header(alias)
            source = by_normalized.get(alias_key) or by_compact.get(alias_key.replace(' ', ''))
            if source and source not in claimed:
                mapping[logical_field] = source
                claimed.add(source)
                break

    return mapping


# =============================================================================
# VALUE PARSERS
# =============================================================================

_DMY = re.compile(r'^(\d{1,2})[./-](\d{1,2})[./-](\d{1,4})$')
_YMD = re.compile(r'^(\d{4})[./-](\d{1,2})[./-](\d{1,2})(?:[ T]\d{1,2}:\d{2}(?::\d{2}(?:\.\d+)?)?)?$')
_SERIAL = re.compile(r'^\d+(?:\.\d+)?$')


def _from_serial(serial: float) -> Optional[date]:
    if serial < 1 or serial > MAX_SERIAL:
        return None
    return SERIAL_EPOCH + timedelta(days=int(serial))


def _build_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(value: Any, field_name: str, required: bool = True) -> Tuple[Optional[date], List[dict]]:
    """
    Parse a date cell.

    Accepts DD.MM.YYYY / DD/MM/YYYY / DD-MM-YYYY, YYYY-MM-DD (optionally with
    a time part), spreadsheet serial numbers and datetime objects. Two-digit
    years are rejected rather than guessed.

    Returns: (date, issues)
    """
    if is_blank(value):
        if required:
            return None, [_issue(field_name, 'MISSING_DATE', f'{field_name} is empty')]
        return None, []

    if isinstance(value, datetime):
        return value.date(), []
    if isinstance(value, date):
        return value, []

    if isinstance(value, numbers.Real) and not isinstance(value, bool):
        parsed = _from_serial(float(value))
        if parsed is None:
            return None, [_issue(field_name, 'INVALID_DATE', f'{field_name} serial out of range: {value}')]
        return parsed, []

    text = to_text(value)

    match = _DMY.match(text)
    if match:
        day, month, year = match.group(1), match.group(2), match.group(3)
        if len(year) != 4:
            return None, [_issue(field_name, 'AMBIGUOUS_DATE',
                                 f'{field_name} needs a four-digit year (DD.MM.YYYY): {text}')]
        parsed = _build_date(int(year), int(month), int(day))
        if parsed is None:
            return None, [_issue(field_name, 'INVALID_DATE', f'{field_name} is not a valid date: {text}')]
        return parsed, []

    match = _YMD.match(text)
    if match:
        parsed = _build_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))
        if parsed is None:
            return None, [_issue(field_name, 'INVALID_DATE', f'{field_name} is not a valid date: {text}')]
        return parsed, []

    if _SERIAL.match(text):
        parsed = _from_serial(float(text))
        if parsed is not None:
            return parsed, []

    return None, [_issue(field_name, 'INVALID_DATE',
                         f'Cannot parse {field_name} (expected DD.MM.YYYY): {text}')]


def _canonical_decimal(digits: str) -> str:
    """Rewrite '1.234,56' / '1,234.56' / '15.000' / '12,5' into a float() literal."""
    last_dot = digits.rfind('.')
    last_comma = digits.rfind(',')

    if last_dot >= 0 and last_comma >= 0:
        decimal_sep = '.' if last_dot > last_comma else ','
        thousands_sep = ',' if decimal_sep == '.' else '.'
        return digits.replace(thousands_sep, '').replace(decimal_sep, '.')

    sep = '.' if last_dot >= 0 else ',' if last_comma >= 0 else None
    if sep is None:
        return digits
    whole, _, tail = digits.rpartition(sep)
    if digits.count(sep) > 1 or (len(tail) == 3 and whole):
        return digits.replace(sep, '')
    return digits.replace(sep, '.')


def parse_amount(
    value: Any,
    field_name: str,
    required: bool = False,
    allow_negative: bool = False,
) -> Tuple[Optional[float], List[dict]]:
    """
    Parse a currency cell.

    Keeps digits and separators only. When both ',' and '.' appear, the one
    appearing last is the decimal separator. A lone separator followed by
    exactly three digits groups thousands ('15.000' is 15000). Non-numeric
    values are errors, as are negative ones unless allow_negative is set; an
    absent optional amount is 0.

    Returns: (amount, issues)
    """
    if is_blank(value):
        if required:
            return None, [_issue(field_name, 'MISSING_AMOUNT', f'{field_name} is empty')]
        return 0.0, []

    if isinstance(value, bool):
        return None, [_issue(field_name, 'INVALID_AMOUNT', f'Cannot parse {field_name}: {value}')]

    if isinstance(value, numbers.Real):
        number = float(value)
    else:
        text = to_text(value)
        negative = text.startswith('-') or text.endswith('-') or (text.startswith('(') and text.endswith(')'))
        digits = re.sub(r'[^\d.,]', '', text)
        if not re.search(r'\d', digits):
            return None, [_issue(field_name, 'INVALID_AMOUNT', f'Cannot parse {field_name}: {text}')]
        try:
            number = float(_canonical_decimal(digits))
        except ValueError:
            return None, [_issue(field_name, 'INVALID_AMOUNT', f'Cannot parse {field_name}: {text}')]
        if negative:
            number = -number

    if number < 0 and not allow_negative:
        return None, [_issue(field_name, 'NEGATIVE_AMOUNT', f'{field_name} cannot be negative: {value}')]

    return round(number, 2), []


def canonical_policy_type(value: Any) -> str:
    """Map a policy type to its canonical name, or its normalized text when unknown."""
    key = normalize_text(to_text(value).replace('_', ' '))
    return POLICY_TYPE_ALIASES.get(key) or POLICY_TYPE_ALIASES.get(key.replace(' ', '')) or key


def parse_policy_type(value: Any, field_name: str = 'policy_type') -> Tuple[Optional[str], List[dict]]:
    """Parse a policy type into one of POLICY_TYPES."""
    if is_blank(value):
        return None, [_issue(field_name, 'MISSING_POLICY_TYPE', 'Policy type is empty')]

    policy_type = canonical_policy_type(value)
    if policy_type not in POLICY_TYPES:
        return None, [_issue(field_name, 'INVALID_POLICY_TYPE',
                             f'Invalid policy type "{to_text(value)}". Accepted: {ACCEPTED_TYPES_HINT}')]
    return policy_type, []


# =============================================================================
# ROWS
# =============================================================================

@dataclass
class ParsedRow:
    """One spreadsheet line during a single reconciliation pass."""
    row_number: int
    raw: Dict[str, Any]
    values: Dict[str, Any] = field(default_factory=dict)
    issues: List[dict] = field(default_factory=list)
    magnitudes: Dict[str, float] = field(default_factory=dict)
    blank: bool = False

    def get(self, name: str, default: Any = None) -> Any:
        value = self.values.get(name)
        return default if value is None or value == '' else value

    def errors_for(self, *names: str) -> List[dict]:
        """Error issues raised while parsing the given fields."""
        return [i for i in self.issues if i['severity'] == 'error' and i['field'] in names]

    def magnitude(self, name: str) -> float:
        """Unsigned value of an amount field, even when the sign made it invalid."""
        return self.magnitudes.get(name, 0.0)


def parse_row(
    raw: Dict[str, Any],
    columns: Dict[str, str],
    fields: Dict[str, FieldSpec],
    row_number: int,
) -> ParsedRow:
    """
    Parse a raw row into typed values.

    Fields whose column is missing from the file are parsed as blank cells,
    so a required date with no column yields the same MISSING_DATE issue as
    an empty cell.
    """
    row = ParsedRow(row_number=row_number, raw=raw, blank=is_blank_row(raw))
    if row.blank:
        return row

    for name, spec in fields.items():
        source = columns.get(name)
        cell = raw.get(source) if source else None

        if spec.kind == 'date':
            value, issues = parse_date(cell, name, required=spec.required)
        elif spec.kind == 'amount':
            signed, _ = parse_amount(cell, name, allow_negative=True)
            if signed is not None:
                row.magnitudes[name] = abs(signed)
            value, issues = parse_amount(cell, name, required=spec.required)
        elif spec.kind == 'policy_type':
            value, issues = parse_policy_type(cell, name)
        elif spec.kind == 'plate':
            value, issues = (normalize_plate(cell) or None), []
        else:
            value, issues = (to_text(cell) or None), []

        row.values[name] = value
        row.issues.extend(issues)

    return row


# =============================================================================
# FILE DECODING
# =============================================================================

def read_rows(file_content: bytes, filename: str, sheet_name: Optional[str] = None) -> List[Dict[str, Any]]:
    """
    Decode an uploaded spreadsheet into row dicts.

    Excel cells keep their native types (numbers, datetimes); CSV cells stay
    strings so leading zeros in IDs survive. Empty cells become None.
    Fully empty rows are kept so the engine can count them as blank.
    """
    file_ext = Path(filename).suffix.lower()

    if file_ext in ['.xlsx', '.xls']:
        xl = pd.ExcelFile(BytesIO(file_content))
        if sheet_name is None:
            sheet_name = xl.sheet_names[0]
        df = pd.read_excel(xl, sheet_name=sheet_name, dtype=object)
    elif file_ext == '.csv':
        df = pd.read_csv(BytesIO(file_content), dtype=str, keep_default_na=False)
    else:
        raise ValueError(f"Unsupported file type: {file_ext}")

    # Clean column names
    df.columns = [str(col).strip() for col in df.columns]
    df = df.astype(object).where(pd.notna(df), None)

    return df.to_dict(orient='records')
