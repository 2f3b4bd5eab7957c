"""Shared fixtures: an in-memory stand-in for the Supabase client."""

import copy
import itertools
from io import BytesIO
from datetime import datetime, timedelta
from types import SimpleNamespace
from typing import Any, Dict, List, Optional

import pytest
from postgrest.exceptions import APIError
from pypdf import PdfWriter

from agency_import.config import ImportConfig
from agency_import.import_service import ImportService
from agency_import.models import ImportContext


# Column defaults the database would fill in
TABLE_DEFAULTS = {
    'policies': {'is_deleted': False, 'status': 'active'},
}

# created_at of the first stored row; later rows are a second apart
CREATED_EPOCH = datetime(2024, 1, 1)


class FakeQuery:
    """Records a PostgREST-style query chain and runs it against FakeSupabase."""

    def __init__(self, store: "FakeSupabase", table: str):
        self.store = store
        self.table = table
        self.op = 'select'
        self.payload: Any = None
        self.filters: List = []
        self.eqs: Dict[str, Any] = {}
        self._order = None
        self._range = None
        self._limit = None

    def select(self, *columns, **kwargs):
        self.op = 'select'
        return self

    def insert(self, payload):
        self.op = 'insert'
        self.payload = payload
        return self

    def update(self, payload):
        self.op = 'update'
        self.payload = payload
        return self

    def eq(self, column, value):
        self.eqs[column] = value
        self.filters.append(lambda row: row.get(column) == value)
        return self

    def in_(self, column, values):
        values = list(values)
        self.filters.append(lambda row: row.get(column) in values)
        return self

    def like(self, column, pattern):
        prefix = pattern.rstrip('%')
        self.filters.append(lambda row: str(row.get(column) or '').startswith(prefix))
        return self

    def order(self, column, desc=False):
        self._order = (column, desc)
        return self

    def range(self, start, end):
        self._range = (start, end)
        return self

    def limit(self, count):
        self._limit = count
        return self

    def _matching(self) -> List[dict]:
        return [row for row in self.store.tables.setdefault(self.table, [])
                if all(f(row) for f in self.filters)]

    def execute(self):
        self.store.calls.append((self.table, self.op, copy.deepcopy(self.payload), dict(self.eqs)))
        self.store.check_failure(self.table, self.op, self.eqs)

        if self.op == 'insert':
            items = self.payload if isinstance(self.payload, list) else [self.payload]
            created = [self.store.add(self.table, item) for item in items]
            return SimpleNamespace(data=copy.deepcopy(created))

        if self.op == 'update':
            rows = self._matching()
            for row in rows:
                row.update(copy.deepcopy(self.payload))
            return SimpleNamespace(data=copy.deepcopy(rows))

        rows = self._matching()
        if self._order:
            column, desc = self._order
            rows = sorted(rows, key=lambda r: (r.get(column) is None, r.get(column) or ''), reverse=desc)
        if self._range:
            start, end = self._range
            rows = rows[start:end + 1]
        if self._limit is not None:
            rows = rows[:self._limit]
        return SimpleNamespace(data=copy.deepcopy(rows))


class FakeAuth:
    def __init__(self):
        self.users: Dict[str, SimpleNamespace] = {}

    def get_user(self, token):
        user = self.users.get(token)
        return SimpleNamespace(user=user) if user else None


class FakeSupabase:
    """
    Minimal in-memory Supabase client.

    fail(table, op, where=...) makes matching calls raise APIError, the way
    postgrest-py surfaces an error response.
    """

    def __init__(self):
        self.tables: Dict[str, List[dict]] = {}
        self.calls: List[tuple] = []
        self.failures: List[dict] = []
        self.auth = FakeAuth()
        self._ids = itertools.count(1)
        self._clock = itertools.count(1)

    def table(self, name: str) -> FakeQuery:
        return FakeQuery(self, name)

    def add(self, table: str, row: dict) -> dict:
        record = dict(TABLE_DEFAULTS.get(table, {}))
        record.update(copy.deepcopy(row))
        record.setdefault('id', f"{table}-{next(self._ids)}")
        record.setdefault('created_at', (CREATED_EPOCH + timedelta(seconds=next(self._clock))).isoformat())
        self.tables.setdefault(table, []).append(record)
        return record

    def seed(self, table: str, rows: List[dict]):
        for row in rows:
            self.add(table, row)

    def rows(self, table: str) -> List[dict]:
        return self.tables.get(table, [])

    def get(self, table: str, record_id: str) -> Optional[dict]:
        for row in self.rows(table):
            if row['id'] == record_id:
                return row
        return None

    def fail(self, table: str, op: str, message: str = "simulated failure", where: Optional[dict] = None):
        self.failures.append({'table': table, 'op': op, 'message': message, 'where': where or {}})

    def check_failure(self, table: str, op: str, eqs: Dict[str, Any]):
        for failure in self.failures:
            if failure['table'] != table or failure['op'] != op:
                continue
            if all(eqs.get(k) == v for k, v in failure['where'].items()):
                raise APIError({'message': failure['message'], 'code': 'XX000', 'hint': None, 'details': None})

    def writes(self, table: str, op: str) -> List[tuple]:
        return [c for c in self.calls if c[0] == table and c[1] == op]


COMPANIES = [
    {'id': 'co-anadolu', 'name': 'Anadolu Sigorta'},
    {'id': 'co-allianz', 'name': 'Allianz Sigorta'},
    {'id': 'co-turkiye', 'name': 'Türkiye Sigorta'},
    {'id': 'co-quick', 'name': 'Quick Sigorta'},
    {'id': 'co-abc', 'name': 'ABC Sigorta'},
]

OPERATOR_ID = 'agent-1'


@pytest.fixture
def store():
    fake = FakeSupabase()
    fake.seed('insurance_companies', COMPANIES)
    fake.seed('clients', [
        {'id': 'client-ahmet', 'name': 'Ahmet Yılmaz', 'tc_number': '12345678901',
         'tax_number': None, 'agent_id': OPERATOR_ID},
        {'id': 'client-acme', 'name': 'Acme Ltd', 'tc_number': None,
         'tax_number': '1234567890', 'agent_id': OPERATOR_ID},
        {'id': 'client-other', 'name': 'Someone Else', 'tc_number': '55555555555',
         'tax_number': None, 'agent_id': 'agent-2'},
    ])
    return fake


@pytest.fixture
def config():
    return ImportConfig()


@pytest.fixture
def service(store, config):
    return ImportService(client=store, config=config)


@pytest.fixture
def context():
    return ImportContext(operator_id=OPERATOR_ID)


@pytest.fixture
def make_pdf():
    def _make(pages: int = 1) -> bytes:
        writer = PdfWriter()
        for _ in range(pages):
            writer.add_blank_page(width=72, height=72)
        buffer = BytesIO()
        writer.write(buffer)
        return buffer.getvalue()
    return _make


def policy_row(**overrides) -> dict:
    """A valid multi-client policy row using the Turkish template headers."""
    row = {
        'Müşteri Adı': 'Ahmet Yılmaz',
        'TC Kimlik No': '12345678901',
        'Vergi No': None,
        'Telefon': '05321234567',
        'Email': 'ahmet@example.com',
        'Sigorta Şirketi': 'Anadolu Sigorta',
        'Poliçe No': 'POL123456',
        'Poliçe Tipi': 'kasko',
        'Sigortalı Adı': 'Ahmet Yılmaz',
        'Plaka': '34 ABC 123',
        'Riziko Adresi 1': None,
        'Riziko Adresi 2': None,
        'Başlangıç Tarihi': '01.01.2024',
        'Bitiş Tarihi': '01.01.2025',
        'Prim Tutarı': '5.000,00',
    }
    row.update(overrides)
    return row


def blank_policy_row() -> dict:
    return {key: None for key in policy_row()}


def claim_row(**overrides) -> dict:
    row = {
        'Dosya No': 'HS-2024-001',
        'Poliçe No': 'POL123456',
        'Plaka': '34ABC123',
        'Sigorta Şirketi': 'Anadolu Sigorta',
        'Poliçe Türü': 'Kasko',
        'Hasar Tarihi': '15.01.2024',
        'Ödeme Tutarı': 5000,
        'Hasar Nedeni': 'Çarpma hasarı',
    }
    row.update(overrides)
    return row
