"""Unit tests for company, client, policy and claim resolution."""

import pytest

from agency_import.models import ImportContext
from agency_import.resolver import (
    CompanyResolver, ClientResolver, PolicyIndex, ClaimIndex, ResolutionError,
)
from conftest import COMPANIES, OPERATOR_ID


class TestCompanyResolver:

    @pytest.fixture
    def resolver(self):
        return CompanyResolver(COMPANIES, suffix="sigorta")

    def test_exact_after_normalization(self, resolver):
        assert resolver.resolve("TURKIYE SIGORTA.") == "co-turkiye"
        assert resolver.resolve("Türkiye Sigorta") == "co-turkiye"

    def test_suffix_pass(self, resolver):
        assert resolver.resolve("Allianz") == "co-allianz"

    def test_containment_pass(self, resolver):
        assert resolver.resolve("Anadolu Sigorta A.Ş.") == "co-anadolu"
        assert resolver.resolve("quick") == "co-quick"

    def test_no_match(self, resolver):
        assert resolver.resolve("Nonexistent Co") is None
        assert resolver.resolve("") is None
        assert resolver.resolve(None) is None

    def test_bare_suffix_matches_nothing(self, resolver):
        assert resolver.resolve("Sigorta") is None

    def test_containment_tie_break_is_sorted_name_order(self):
        companies = [
            {'id': 'z', 'name': 'Zurich Ray Sigorta'},
            {'id': 'r', 'name': 'Ray Sigorta'},
        ]
        # "ray sig" is contained in both; "ray sigorta" sorts first
        assert CompanyResolver(companies).resolve("Ray Sig") == "r"
        assert CompanyResolver(list(reversed(companies))).resolve("ray sig") == "r"


class TestClientResolver:

    @pytest.fixture
    def resolver(self, store):
        clients = [c for c in store.rows('clients') if c['agent_id'] == OPERATOR_ID]
        return ClientResolver(store, ImportContext(operator_id=OPERATOR_ID), clients)

    def test_lookup_by_tc_then_tax(self, resolver):
        assert resolver.lookup("12345678901") == "client-ahmet"
        assert resolver.lookup(None, "1234567890") == "client-acme"
        assert resolver.lookup(None, None) is None

    def test_tc_wins_when_both_present(self, resolver):
        assert resolver.lookup("99999999999", "1234567890") is None

    def test_other_agents_clients_are_invisible(self, resolver):
        assert resolver.lookup("55555555555") is None

    def test_resolve_existing_does_not_write(self, resolver, store):
        assert resolver.resolve("Ahmet", tc_number="12345678901") == ("client-ahmet", False)
        assert store.writes('clients', 'insert') == []

    def test_resolve_creates_and_indexes(self, resolver, store):
        client_id, created = resolver.resolve("Ayşe Demir", tc_number="111 222 333 44", phone="0532")
        assert created
        record = store.get('clients', client_id)
        assert record['tc_number'] == "11122233344"
        assert record['agent_id'] == OPERATOR_ID
        assert record['tax_number'] is None

        assert resolver.resolve("Ayşe Demir", tc_number="11122233344") == (client_id, False)
        assert resolver.created == 1
        assert len(store.writes('clients', 'insert')) == 1

    def test_resolve_requires_an_id(self, resolver):
        with pytest.raises(ResolutionError, match="TC Kimlik No or Vergi No"):
            resolver.resolve("Ayşe Demir")

    def test_resolve_requires_name_to_create(self, resolver):
        with pytest.raises(ResolutionError, match="name"):
            resolver.resolve(None, tax_number="9999999999")

    def test_store_failure_is_resolution_error(self, resolver, store):
        store.fail('clients', 'insert', message="duplicate key")
        with pytest.raises(ResolutionError, match="duplicate key"):
            resolver.resolve("Ayşe Demir", tc_number="11122233344")


class TestPolicyIndex:

    def _policy(self, id, end, status='active', number='POL1', company='co-anadolu', type='kasko'):
        return {'id': id, 'policy_number': number, 'insurance_company_id': company,
                'policy_type': type, 'status': status, 'end_date': end, 'client_id': 'client-ahmet'}

    def test_find_prefers_active(self):
        index = PolicyIndex([
            self._policy('old', '2025-01-01', status='archived'),
            self._policy('current', '2024-01-01'),
        ])
        assert index.find('pol1', 'co-anadolu', 'kasko')['id'] == 'current'

    def test_find_latest_end_when_none_active(self):
        index = PolicyIndex([
            self._policy('a', '2023-01-01', status='archived'),
            self._policy('b', '2024-01-01', status='archived'),
        ])
        assert index.find('POL1', 'co-anadolu', 'kasko')['id'] == 'b'

    def test_find_is_composite(self):
        index = PolicyIndex([self._policy('p', '2024-01-01')])
        assert index.find('POL1', 'co-allianz', 'kasko') is None
        assert index.find('POL1', 'co-anadolu', 'trafik') is None

    def test_stored_type_aliases_match(self):
        index = PolicyIndex([self._policy('p', '2024-01-01', type='Konut')])
        assert index.find('POL1', 'co-anadolu', 'residence')['id'] == 'p'

    def test_find_by_number_first_in_fetch_order(self):
        index = PolicyIndex([
            self._policy('first', '2024-01-01', company='co-allianz'),
            self._policy('second', '2024-01-01'),
        ])
        assert index.find_by_number('POL1')['id'] == 'first'
        assert index.find_by_number('POL1', 'co-anadolu')['id'] == 'second'
        assert index.find_by_number('POL2') is None

    def test_find_by_number_prefers_active(self):
        index = PolicyIndex([
            self._policy('old', '2024-01-01', status='archived'),
            self._policy('new', '2025-01-01'),
        ])
        assert index.find_by_number('POL1')['id'] == 'new'

        index = PolicyIndex([self._policy('old', '2024-01-01', status='archived')])
        assert index.find_by_number('POL1')['id'] == 'old'

    def test_pending_and_archive(self):
        index = PolicyIndex([])
        payload = {'policy_number': 'POL9', 'insurance_company_id': 'co-quick',
                   'policy_type': 'trafik', 'status': 'active', 'end_date': '2025-01-01'}
        index.add_pending(payload)
        assert index.is_pending(index.find('POL9', 'co-quick', 'trafik'))
        index.archive(payload, '2024-06-01T00:00:00+00:00')
        assert payload['status'] == 'archived'
        assert payload['archived_at'] == '2024-06-01T00:00:00+00:00'
        assert len(index) == 1


class TestClaimIndex:

    def test_stored_and_pending_numbers(self):
        index = ClaimIndex([{'id': 'c1', 'claim_number': 'HS-2024-001'}])
        assert index.get('hs-2024-001')['id'] == 'c1'
        assert not index.seen_in_file('HS-2024-001')
        index.add_pending('HS-2024-002')
        assert index.seen_in_file('hs-2024-002')
        assert index.contains('HS-2024-002')
        assert index.contains('HS-2024-001')
