"""
Row-by-row reconciliation decisions.

Each matcher takes a ParsedRow and returns exactly one Decision:

    blank row            -> Skip("blank")
    transactional row    -> Skip("transactional-row")
    invalid row          -> Fail
    natural key matched  -> Update, Skip("duplicate"/"unchanged") or a
                            renewal Insert that archives its predecessor
    otherwise            -> Insert

Matchers never write to the store themselves, except that ClientResolver
may create a missing client for a policy row. Writes are left to the
BatchExecutor.
"""

import re
import base64
import random
import string
import logging
from io import BytesIO
from pathlib import Path
from datetime import datetime, timezone
from typing import Optional, Callable, Any

from pypdf import PdfReader
from pypdf.errors import PdfReadError

from .models import (
    Decision, ImportContext,
    SKIP_BLANK, SKIP_TRANSACTIONAL, SKIP_DUPLICATE, SKIP_UNCHANGED,
)
from .normalize import normalize_text
from .parsing import ParsedRow, MOTOR_TYPES, canonical_policy_type
from .resolver import (
    CompanyResolver, ClientResolver, PolicyIndex, ClaimIndex, ResolutionError,
)

logger = logging.getLogger(__name__)


# Endorsement, cancellation, refund and renewal lines in agency production
# reports. They describe a change to a policy, not a policy.
TRANSACTION_MARKERS = ("zeyl", "zeyil", "iptal", "iade", "yenileme")
_TRANSACTION_RE = re.compile(r"\b(" + "|".join(TRANSACTION_MARKERS) + r")")

_REJECTED_RE = re.compile(r"^(red|ret|rejected|reject)")

_LONG_DIGITS = re.compile(r"\d{9,}")

DEFAULT_CLAIM_TYPE = "Belirtilmemiş"

_BASE36 = string.digits + string.ascii_lowercase


def transaction_marker(*texts: Any) -> Optional[str]:
    """Return the marker found at a word start in any of the texts."""
    for text in texts:
        match = _TRANSACTION_RE.search(normalize_text(text))
        if match:
            return match.group(1)
    return None


def _first_error(row: ParsedRow, *names: str) -> Optional[str]:
    errors = row.errors_for(*names)
    return errors[0]["message"] if errors else None


def _utcnow_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


# =============================================================================
# POLICIES
# =============================================================================

class PolicyMatcher:
    """
    Decide policy rows.

    Natural key: (policy number, insurance company, policy type). A row
    whose end date is later than the stored record's is a renewal; anything
    else matching the key is a duplicate.
    """

    def __init__(
        self,
        context: ImportContext,
        companies: CompanyResolver,
        policies: PolicyIndex,
        clients: Optional[ClientResolver] = None,
        now: Callable[[], str] = _utcnow_iso,
    ):
        self.context = context
        self.companies = companies
        self.policies = policies
        self.clients = clients
        self.now = now

    def decide(self, row: ParsedRow) -> Decision:
        n = row.row_number
        if row.blank:
            return Decision.skip(n, SKIP_BLANK)

        company_text = row.get("company")
        description = row.get("description")
        marker = transaction_marker(company_text, description)
        if marker:
            amount = row.magnitude("premium")
            return Decision.skip(
                n, SKIP_TRANSACTIONAL,
                f"Row {n}: transaction row skipped - {company_text or description} (premium: {amount:.2f} TL)",
                amount=amount,
            )

        if not company_text:
            return Decision.fail(n, "Insurance company column is empty or missing")
        company_id = self.companies.resolve(company_text)
        if company_id is None:
            return Decision.fail(n, f'Insurance company not found: "{company_text}"', reason="company-not-found")

        problem = _first_error(row, "start_date", "end_date")
        if problem:
            return Decision.fail(n, problem)
        start_date, end_date = row.get("start_date"), row.get("end_date")
        if end_date < start_date:
            return Decision.fail(n, f"End date {end_date:%d.%m.%Y} is before start date {start_date:%d.%m.%Y}")

        problem = _first_error(row, "policy_type")
        if problem:
            return Decision.fail(n, problem)
        policy_type = row.get("policy_type")

        policy_number = row.get("policy_number")
        if not policy_number:
            return Decision.fail(n, "Policy number is empty")

        problem = _first_error(row, "premium")
        if problem:
            return Decision.fail(n, problem)
        premium = row.get("premium", 0.0)

        existing = self.policies.find(policy_number, company_id, policy_type)
        if existing is not None:
            existing_end = PolicyIndex.end_date(existing)
            if existing_end is not None and end_date <= existing_end:
                logger.debug(f"Row {n}: policy {policy_number} already stored")
                return Decision.skip(n, SKIP_DUPLICATE, f"Row {n}: duplicate policy skipped - {policy_number}")

        if self.context.client_id:
            client_id = self.context.client_id
        elif self.clients is None:
            return Decision.fail(n, "No client selected")
        else:
            try:
                client_id, _ = self.clients.resolve(
                    row.get("customer_name"),
                    tc_number=row.get("tc_number"),
                    tax_number=row.get("tax_number"),
                    phone=row.get("phone"),
                    email=row.get("email"),
                )
            except ResolutionError as e:
                return Decision.fail(n, str(e), reason="client")

        payload = self._payload(row, client_id, company_id, policy_number, policy_type, premium)

        archive_id = None
        warning = None
        if existing is not None:
            if self.policies.is_pending(existing):
                # Predecessor comes from this file; it is inserted already archived
                self.policies.archive(existing, self.now())
                warning = f"Row {n}: earlier row of this file archived, renewal added - {policy_number}"
            else:
                payload["renewed_policy_id"] = existing["id"]
                if existing.get("status", "active") != "archived":
                    archive_id = existing["id"]
                    self.policies.archive(existing, self.now())
                warning = f"Row {n}: previous policy archived, renewal added - {policy_number}"

        self.policies.add_pending(payload)
        return Decision.insert(
            n, payload,
            archive_id=archive_id, amount=premium, label=policy_type, warning=warning,
        )

    def _payload(self, row, client_id, company_id, policy_number, policy_type, premium) -> dict:
        start_date, end_date = row.get("start_date"), row.get("end_date")
        plate = row.get("plate")
        address = " ".join(a for a in (row.get("address_1"), row.get("address_2")) if a) or None

        payload = {
            "client_id": client_id,
            "insured_name": row.get("insured_name") or row.get("customer_name"),
            "insurance_company_id": company_id,
            "policy_number": policy_number,
            "policy_type": policy_type,
            "start_date": start_date.isoformat(),
            "end_date": end_date.isoformat(),
            "premium_amount": premium,
            "plate_number": plate,
            "address": address,
            "agent_id": self.context.operator_id,
            "status": "active",
            "policy_year": start_date.year,
            "renewed_policy_id": None,
        }
        if policy_type in MOTOR_TYPES:
            payload["license_plate"] = plate
            payload["vehicle_brand_model"] = row.get("vehicle")
        return payload


# =============================================================================
# CLAIMS
# =============================================================================

def synthesize_claim_number(prefix: str, rng: random.Random = None) -> str:
    """HS-<epoch ms>-<9 base36 chars>"""
    rng = rng or random
    millis = int(datetime.now(timezone.utc).timestamp() * 1000)
    suffix = "".join(rng.choice(_BASE36) for _ in range(9))
    return f"{prefix}-{millis}-{suffix}"


class ClaimMatcher:
    """
    Decide claim rows.

    Claims attach to a policy when one matches the policy number; the client
    comes from the run context, the matched policy or the row's national ID,
    in that order. Claims are matched to stored claims by claim number.
    """

    def __init__(
        self,
        context: ImportContext,
        companies: CompanyResolver,
        policies: PolicyIndex,
        claims: ClaimIndex,
        clients: Optional[ClientResolver] = None,
        claim_number_prefix: str = "HS",
        number_factory: Callable[[str], str] = synthesize_claim_number,
    ):
        self.context = context
        self.companies = companies
        self.policies = policies
        self.claims = claims
        self.clients = clients
        self.claim_number_prefix = claim_number_prefix
        self.number_factory = number_factory

    def decide(self, row: ParsedRow) -> Decision:
        n = row.row_number
        if row.blank:
            return Decision.skip(n, SKIP_BLANK)

        company_text = row.get("company")
        description = row.get("description")
        if transaction_marker(company_text, description):
            amount = row.magnitude("amount")
            return Decision.skip(
                n, SKIP_TRANSACTIONAL,
                f"Row {n}: transaction row skipped - {company_text or description}",
                amount=amount,
            )

        problem = _first_error(row, "amount")
        if problem:
            return Decision.fail(n, problem)
        amount = row.get("amount", 0.0)

        problem = _first_error(row, "claim_date")
        if problem:
            return Decision.fail(n, problem)
        claim_date = row.get("claim_date")

        company_id = None
        if company_text:
            company_id = self.companies.resolve(company_text)
            if company_id is None:
                return Decision.fail(n, f'Insurance company not found: "{company_text}"', reason="company-not-found")

        policy_number = row.get("policy_number")
        policy_type = canonical_policy_type(row.get("policy_type")) if row.get("policy_type") else None
        policy = self._find_policy(policy_number, company_id, policy_type)

        client_id = self.context.client_id or (policy or {}).get("client_id")
        if not client_id and self.clients is not None:
            client_id = self.clients.lookup(row.get("tc_number"), row.get("tax_number"))
        if not client_id:
            identifier = row.get("claim_number") or policy_number or "unknown"
            return Decision.fail(
                n, f"Client not found for {identifier} - select a client or match a valid policy",
                reason="client",
            )

        claim_number = row.get("claim_number")
        existing = None
        if claim_number:
            if self.claims.seen_in_file(claim_number):
                return Decision.skip(n, SKIP_DUPLICATE, f"Row {n}: claim {claim_number} appears twice in the file")
            existing = self.claims.get(claim_number)
        else:
            claim_number = self.number_factory(self.claim_number_prefix)
            while self.claims.contains(claim_number):
                claim_number = self.number_factory(self.claim_number_prefix)
        self.claims.add_pending(claim_number)

        payload = {
            "claim_number": claim_number,
            "policy_id": policy["id"] if policy else None,
            "client_id": client_id,
            "agent_id": self.context.operator_id,
            "insurance_company_id": company_id,
            "claim_date": claim_date.isoformat(),
            "payment_amount": amount,
            "license_plate": row.get("plate"),
            "policy_type": policy_type,
            "description": description or (
                None if policy else f"Old policy - Policy No: {policy_number or 'none'}"
            ),
            "claim_type": row.get("claim_type") or DEFAULT_CLAIM_TYPE,
            "status": self._status(row.get("status"), amount),
        }

        if existing is not None:
            return Decision.update(n, existing["id"], payload, amount=amount)
        return Decision.insert(n, payload, amount=amount)

    def _find_policy(self, policy_number, company_id, policy_type) -> Optional[dict]:
        if not policy_number:
            return None
        if company_id is None:
            return self.policies.find_by_number(policy_number)
        policy = None
        if policy_type:
            policy = self.policies.find(policy_number, company_id, policy_type)
        return policy or self.policies.find_by_number(policy_number, company_id)

    @staticmethod
    def _status(status_text: Any, amount: float) -> str:
        if _REJECTED_RE.match(normalize_text(status_text)):
            return "rejected"
        return "closed" if amount > 0 else "open"


# =============================================================================
# POLICY COMPANY UPDATES
# =============================================================================

class PolicyCompanyMatcher:
    """Re-point existing policies to a different insurance company."""

    def __init__(self, companies: CompanyResolver, policies: PolicyIndex):
        self.companies = companies
        self.policies = policies

    def decide(self, row: ParsedRow) -> Decision:
        n = row.row_number
        if row.blank:
            return Decision.skip(n, SKIP_BLANK)

        policy_number = row.get("policy_number")
        company_text = row.get("company")
        if not policy_number or not company_text:
            return Decision.fail(n, "Policy number and insurance company are both required")

        policy = self.policies.find_by_number(policy_number)
        if policy is None:
            return Decision.fail(n, f"Policy not found: {policy_number}", reason="policy-not-found")

        company_id = self.companies.resolve(company_text)
        if company_id is None:
            return Decision.fail(n, f'Insurance company not found: "{company_text}"', reason="company-not-found")

        if str(policy.get("insurance_company_id")) == company_id:
            return Decision.skip(n, SKIP_UNCHANGED)

        policy["insurance_company_id"] = company_id
        return Decision.update(n, policy["id"], {"insurance_company_id": company_id})


# =============================================================================
# POLICY PDFS
# =============================================================================

def policy_number_from_filename(filename: str) -> str:
    """First run of 9+ digits in the file name, else the bare stem."""
    stem = Path(filename).stem
    match = _LONG_DIGITS.search(stem)
    return match.group(0) if match else stem.strip()


class PolicyPdfMatcher:
    """Attach uploaded PDF documents to the policies named by their files."""

    def __init__(self, policies: PolicyIndex):
        self.policies = policies

    def decide(self, row_number: int, filename: str, content: bytes) -> Decision:
        if Path(filename).suffix.lower() != ".pdf":
            return Decision.fail(row_number, f"{filename}: only PDF files are accepted")

        policy_number = policy_number_from_filename(filename)
        policy = self.policies.find_by_number(policy_number)
        if policy is None:
            return Decision.fail(row_number, f"{filename}: policy not found ({policy_number})",
                                 reason="policy-not-found")

        try:
            page_count = len(PdfReader(BytesIO(content)).pages)
        except PdfReadError as e:
            return Decision.fail(row_number, f"{filename}: not a readable PDF ({e})")
        logger.debug(f"{filename}: {page_count} pages for policy {policy_number}")

        encoded = base64.b64encode(content).decode("ascii")
        return Decision.update(row_number, policy["id"], {
            "pdf_data": f"data:application/pdf;base64,{encoded}",
            "pdf_filename": filename,
        })
