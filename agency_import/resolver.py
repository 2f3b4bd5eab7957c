"""
Entity resolution against the operator's stored records.

Reference data (companies, clients, policies, claims) is fetched once at the
start of a run and indexed here. Indexes evolve during the run as the engine
schedules inserts, so a later row in the same file sees the records an
earlier row will create.
"""

import logging
from datetime import date, datetime, timezone
from typing import Optional, List, Dict, Tuple, Any

from postgrest.exceptions import APIError

from .models import ImportContext
from .normalize import normalize_text, to_text, mask_id
from .parsing import canonical_policy_type
from .supabase_client import create_client_record

logger = logging.getLogger(__name__)


class ResolutionError(Exception):
    """A row references an entity that cannot be found or created."""
    pass


def as_date(value: Any) -> Optional[date]:
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = to_text(value)
    if len(text) < 10:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


# =============================================================================
# INSURANCE COMPANIES
# =============================================================================

class CompanyResolver:
    """
    Resolve free-text company names to insurance company ids.

    Passes, first hit wins:
        1. exact normalized name
        2. normalized name + " sigorta" ("Allianz" -> "allianz sigorta")
        3. containment either way, in (normalized name, id) order

    Companies are never created from an import file.
    """

    def __init__(self, companies: List[dict], suffix: str = "sigorta"):
        entries = []
        for company in companies:
            name = normalize_text(company.get("name"))
            if name:
                entries.append((name, str(company["id"])))
        entries.sort()

        self._ordered = entries
        self._exact: Dict[str, str] = {}
        for name, company_id in entries:
            self._exact.setdefault(name, company_id)

        self._suffix = normalize_text(suffix)
        self._cache: Dict[str, Optional[str]] = {}

    def resolve(self, text: Any) -> Optional[str]:
        key = normalize_text(text)
        if not key:
            return None
        if key in self._cache:
            return self._cache[key]

        company_id = self._exact.get(key)
        if company_id is None and self._suffix:
            company_id = self._exact.get(f"{key} {self._suffix}")
        # A bare "sigorta" would otherwise be contained in every name
        if company_id is None and key != self._suffix:
            for name, candidate in self._ordered:
                if key in name or name in key:
                    company_id = candidate
                    break

        if company_id is None:
            logger.info(f"No insurance company matches '{to_text(text)}'")
        self._cache[key] = company_id
        return company_id


# =============================================================================
# CLIENTS
# =============================================================================

def _id_key(value: Any) -> str:
    return "".join(to_text(value).split())


class ClientResolver:
    """
    Find or create the agency client a row belongs to.

    Clients are matched by TC Kimlik No when the row has one, otherwise by
    Vergi No. Only resolve() writes; lookup() is read-only.
    """

    def __init__(self, client, context: ImportContext, clients: List[dict]):
        self.client = client
        self.context = context
        self.created = 0
        self._by_tc: Dict[str, str] = {}
        self._by_tax: Dict[str, str] = {}
        for record in clients:
            self._index(record)

    def _index(self, record: dict):
        tc_number = _id_key(record.get("tc_number"))
        tax_number = _id_key(record.get("tax_number"))
        if tc_number:
            self._by_tc.setdefault(tc_number, record["id"])
        if tax_number:
            self._by_tax.setdefault(tax_number, record["id"])

    def lookup(self, tc_number: Any = None, tax_number: Any = None) -> Optional[str]:
        tc_key = _id_key(tc_number)
        if tc_key:
            return self._by_tc.get(tc_key)
        tax_key = _id_key(tax_number)
        if tax_key:
            return self._by_tax.get(tax_key)
        return None

    def resolve(
        self,
        name: Any,
        tc_number: Any = None,
        tax_number: Any = None,
        phone: Any = None,
        email: Any = None,
    ) -> Tuple[str, bool]:
        """
        Returns: (client_id, created)

        Raises:
            ResolutionError: name or both IDs missing, or the insert failed
        """
        tc_key = _id_key(tc_number)
        tax_key = _id_key(tax_number)
        if not tc_key and not tax_key:
            raise ResolutionError("TC Kimlik No or Vergi No is required")

        existing = self.lookup(tc_key, tax_key)
        if existing:
            return existing, False

        name_text = to_text(name)
        if not name_text:
            raise ResolutionError("Customer name is required to create a new client")

        record = {
            "name": name_text,
            "tc_number": tc_key or None,
            "tax_number": tax_key or None,
            "phone": to_text(phone) or None,
            "email": to_text(email) or None,
            "agent_id": self.context.operator_id,
        }
        try:
            created = create_client_record(record, client=self.client)
        except APIError as e:
            logger.error(f"Client insert failed for ID {mask_id(tc_key or tax_key)}: {e.message}")
            raise ResolutionError(f"Could not create client '{name_text}': {e.message}") from e
        if not created:
            raise ResolutionError(f"Could not create client '{name_text}'")

        self._index(created)
        self.created += 1
        logger.info(f"Created client {created['id']} for ID {mask_id(tc_key or tax_key)}")
        return created["id"], True


# =============================================================================
# POLICIES
# =============================================================================

class PolicyIndex:
    """
    Policies in scope for a run, keyed by normalized policy number.

    Holds stored rows and, once scheduled, the payloads of policies this run
    will insert. Lists keep fetch order so ties resolve to the first record.
    """

    def __init__(self, policies: List[dict]):
        self._by_number: Dict[str, List[dict]] = {}
        self._pending: Dict[int, dict] = {}
        for policy in policies:
            self._add(policy)

    def _add(self, record: dict):
        key = normalize_text(record.get("policy_number"))
        if key:
            self._by_number.setdefault(key, []).append(record)

    def __len__(self):
        return sum(len(records) for records in self._by_number.values())

    def find(self, policy_number: Any, company_id: Optional[str], policy_type: Optional[str]) -> Optional[dict]:
        """
        Composite natural-key lookup.

        Prefers the active record; otherwise the one with the latest end date.
        """
        candidates = [
            p for p in self._by_number.get(normalize_text(policy_number), [])
            if str(p.get("insurance_company_id")) == str(company_id)
            and canonical_policy_type(p.get("policy_type")) == policy_type
        ]
        if not candidates:
            return None
        for policy in candidates:
            if policy.get("status", "active") == "active":
                return policy
        return max(candidates, key=lambda p: as_date(p.get("end_date")) or date.min)

    def find_by_number(self, policy_number: Any, company_id: Optional[str] = None) -> Optional[dict]:
        """
        Policy with this number (and company, when given).

        Prefers the active record so renewal chains resolve to the live
        policy; otherwise the first one in fetch order.
        """
        candidates = [
            p for p in self._by_number.get(normalize_text(policy_number), [])
            if company_id is None or str(p.get("insurance_company_id")) == str(company_id)
        ]
        for policy in candidates:
            if policy.get("status", "active") == "active":
                return policy
        return candidates[0] if candidates else None

    def add_pending(self, payload: dict):
        self._pending[id(payload)] = payload
        self._add(payload)

    def is_pending(self, record: dict) -> bool:
        return id(record) in self._pending

    def archive(self, record: dict, archived_at: Optional[str] = None):
        record["status"] = "archived"
        record["archived_at"] = archived_at or datetime.now(timezone.utc).isoformat()

    @staticmethod
    def end_date(record: dict) -> Optional[date]:
        return as_date(record.get("end_date"))


# =============================================================================
# CLAIMS
# =============================================================================

class ClaimIndex:
    """Claims of the operator keyed by normalized claim number."""

    def __init__(self, claims: List[dict]):
        self._by_number: Dict[str, dict] = {}
        self._pending = set()
        for claim in claims:
            key = normalize_text(claim.get("claim_number"))
            if key:
                self._by_number.setdefault(key, claim)

    def get(self, claim_number: Any) -> Optional[dict]:
        return self._by_number.get(normalize_text(claim_number))

    def seen_in_file(self, claim_number: Any) -> bool:
        return normalize_text(claim_number) in self._pending

    def contains(self, claim_number: Any) -> bool:
        key = normalize_text(claim_number)
        return key in self._by_number or key in self._pending

    def add_pending(self, claim_number: Any):
        self._pending.add(normalize_text(claim_number))
