"""
Bulk import service for the agency back-office.

Handles:
- Policy imports (with client creation and renewal archiving)
- Claim imports (with policy and client attachment)
- Bulk insurance-company corrections on existing policies
- Bulk PDF attachment to policies
- Activity logging of every run

Each flow is stateless: reference data is fetched once when the run starts,
rows are decided in file order, then the decisions are written.
"""

import logging
from pathlib import Path
from typing import Optional, List, Dict, Any, Tuple, Callable

from postgrest.exceptions import APIError

from .config import ImportConfig, load_config
from .executor import BatchExecutor, BatchWriteError
from .matching import PolicyMatcher, ClaimMatcher, PolicyCompanyMatcher, PolicyPdfMatcher
from .models import ImportContext, ImportOutcome
from .parsing import (
    read_rows, resolve_columns, parse_row,
    POLICY_COLUMNS, POLICY_FIELDS,
    CLAIM_COLUMNS, CLAIM_FIELDS,
    POLICY_UPDATE_COLUMNS, POLICY_UPDATE_FIELDS,
)
from .resolver import CompanyResolver, ClientResolver, PolicyIndex, ClaimIndex
from .supabase_client import (
    get_supabase_client, log_activity,
    get_insurance_companies, get_agent_client, get_agent_clients, get_agent_policies, get_agent_claims,
)

logger = logging.getLogger(__name__)


FLOWS = ('policies', 'claims', 'policy-companies')


class ImportRunError(Exception):
    """The run as a whole cannot start or continue."""
    pass


def _headers(rows: List[Dict[str, Any]]) -> List[str]:
    headers: List[str] = []
    for row in rows:
        for key in row:
            if key not in headers:
                headers.append(key)
    return headers


class ImportService:
    """Service for bulk spreadsheet imports into the agency's records."""

    def __init__(self, client=None, config: Optional[ImportConfig] = None):
        self.client = client or get_supabase_client()
        self.config = config or load_config()
        self.executor = BatchExecutor(self.client, self.config)

    # =========================================================================
    # RUN PLUMBING
    # =========================================================================

    def _start_run(self, context: Optional[ImportContext]):
        if context is None or not context.operator_id:
            raise ImportRunError("No authenticated user; sign in again and retry the import")
        if context.client_id:
            owned = self._fetch(
                "selected client",
                lambda: get_agent_client(context.operator_id, context.client_id, client=self.client),
            )
            if not owned:
                raise ImportRunError(f"Client {context.client_id} not found for this user")

    def _fetch(self, what: str, fetch: Callable[[], List[dict]]) -> List[dict]:
        try:
            return fetch()
        except APIError as e:
            logger.error(f"Loading {what} failed: {e.message}")
            raise ImportRunError(f"Could not load {what}: {e.message}") from e

    def _companies(self) -> CompanyResolver:
        companies = self._fetch('insurance companies', lambda: get_insurance_companies(client=self.client))
        return CompanyResolver(companies, self.config.company_suffix)

    def _policies(self, context: ImportContext, client_id: Optional[str] = None) -> PolicyIndex:
        return PolicyIndex(self._fetch(
            'policies',
            lambda: get_agent_policies(context.operator_id, client_id=client_id, client=self.client),
        ))

    def _clients(self, context: ImportContext) -> ClientResolver:
        clients = self._fetch('clients', lambda: get_agent_clients(context.operator_id, client=self.client))
        return ClientResolver(self.client, context, clients)

    def _run(
        self,
        decisions,
        table: str,
        flow: str,
        context: ImportContext,
        on_success: Optional[Callable[[], None]],
        details: Optional[Dict[str, Any]] = None,
        created_clients: int = 0,
    ) -> ImportOutcome:
        try:
            outcome = self.executor.execute(decisions, table, flow, on_success)
        except BatchWriteError as e:
            e.outcome.created_clients = created_clients
            self._log_run(flow, table, context, e.outcome, details, error=str(e))
            raise

        outcome.created_clients = created_clients
        self._log_run(flow, table, context, outcome, details)
        return outcome

    def _log_run(
        self,
        flow: str,
        table: str,
        context: ImportContext,
        outcome: ImportOutcome,
        details: Optional[Dict[str, Any]] = None,
        error: Optional[str] = None,
    ):
        logger.info(
            f"Import '{flow}' finished: {outcome.inserted} inserted, {outcome.updated} updated, "
            f"{outcome.skipped} skipped, {outcome.failed} failed, {outcome.blank_rows} blank"
        )
        entry = {
            'total_rows': outcome.total_rows,
            'inserted': outcome.inserted,
            'updated': outcome.updated,
            'skipped': outcome.skipped,
            'failed': outcome.failed,
            'client_id': context.client_id,
        }
        entry.update(details or {})
        if error:
            entry['error'] = error

        log_activity(
            action=f"bulk_import_{flow.replace('-', '_')}",
            entity_type=table,
            details=entry,
            user_id=context.operator_id,
            client=self.client,
        )

    # =========================================================================
    # FLOWS
    # =========================================================================

    def import_policies(
        self,
        rows: List[Dict[str, Any]],
        context: ImportContext,
        on_success: Optional[Callable[[], None]] = None,
        filename: Optional[str] = None,
    ) -> ImportOutcome:
        """
        Import policy rows.

        Rows are matched on (policy number, company, policy type). Without a
        selected client, each row's client is found or created from its TC
        Kimlik No / Vergi No.

        Raises:
            ImportRunError: no operator, or reference data could not be loaded
            BatchWriteError: the policy insert failed
        """
        self._start_run(context)
        logger.info(f"Policy import started: {len(rows)} rows, operator {context.operator_id}")

        companies = self._companies()
        policies = self._policies(context)
        clients = None if context.client_id else self._clients(context)
        matcher = PolicyMatcher(context, companies, policies, clients)

        columns = resolve_columns(_headers(rows), POLICY_COLUMNS)
        decisions = []
        for idx, raw in enumerate(rows):
            decision = matcher.decide(parse_row(raw, columns, POLICY_FIELDS, idx + 2))
            logger.debug(f"Row {decision.row_number}: {decision.kind.value} {decision.reason or ''}")
            decisions.append(decision)

        return self._run(
            decisions, 'policies', 'policies', context, on_success,
            details={'filename': filename},
            created_clients=clients.created if clients else 0,
        )

    def import_claims(
        self,
        rows: List[Dict[str, Any]],
        context: ImportContext,
        on_success: Optional[Callable[[], None]] = None,
        filename: Optional[str] = None,
    ) -> ImportOutcome:
        """
        Import claim rows.

        Existing claims (same claim number) are updated in place. Claims are
        never attached to a client the operator does not own.
        """
        self._start_run(context)
        logger.info(f"Claim import started: {len(rows)} rows, operator {context.operator_id}")

        companies = self._companies()
        policies = self._policies(context, client_id=context.client_id)
        claims = ClaimIndex(self._fetch('claims', lambda: get_agent_claims(context.operator_id, client=self.client)))
        clients = None if context.client_id else self._clients(context)
        matcher = ClaimMatcher(
            context, companies, policies, claims, clients,
            claim_number_prefix=self.config.claim_number_prefix,
        )

        columns = resolve_columns(_headers(rows), CLAIM_COLUMNS)
        decisions = [
            matcher.decide(parse_row(raw, columns, CLAIM_FIELDS, idx + 2))
            for idx, raw in enumerate(rows)
        ]
        return self._run(decisions, 'claims', 'claims', context, on_success, details={'filename': filename})

    def update_policy_companies(
        self,
        rows: List[Dict[str, Any]],
        context: ImportContext,
        on_success: Optional[Callable[[], None]] = None,
        filename: Optional[str] = None,
    ) -> ImportOutcome:
        """Set the insurance company of existing policies, matched by policy number."""
        self._start_run(context)
        logger.info(f"Policy company update started: {len(rows)} rows, operator {context.operator_id}")

        matcher = PolicyCompanyMatcher(self._companies(), self._policies(context))
        columns = resolve_columns(_headers(rows), POLICY_UPDATE_COLUMNS)
        decisions = [
            matcher.decide(parse_row(raw, columns, POLICY_UPDATE_FIELDS, idx + 2))
            for idx, raw in enumerate(rows)
        ]
        return self._run(decisions, 'policies', 'policy-companies', context, on_success,
                         details={'filename': filename})

    def attach_policy_pdfs(
        self,
        files: List[Tuple[str, bytes]],
        context: ImportContext,
        on_success: Optional[Callable[[], None]] = None,
    ) -> ImportOutcome:
        """
        Attach PDF files to policies.

        The policy is identified from the file name (e.g. "123456789.pdf" or
        "Kasko_123456789_2024.pdf").
        """
        self._start_run(context)
        logger.info(f"PDF attachment started: {len(files)} files, operator {context.operator_id}")

        matcher = PolicyPdfMatcher(self._policies(context))
        decisions = [
            matcher.decide(idx + 1, filename, content)
            for idx, (filename, content) in enumerate(files)
        ]
        return self._run(decisions, 'policies', 'pdfs', context, on_success,
                         details={'files': len(files)})

    def import_file(
        self,
        file_content: bytes,
        filename: str,
        flow: str,
        context: ImportContext,
        on_success: Optional[Callable[[], None]] = None,
        sheet_name: Optional[str] = None,
    ) -> ImportOutcome:
        """Decode an uploaded spreadsheet and run the given flow on its rows."""
        if flow not in FLOWS:
            raise ImportRunError(f"Unknown import flow: {flow}")

        file_ext = Path(filename).suffix.lower()
        if file_ext not in self.config.allowed_extensions:
            raise ImportRunError(
                f"Unsupported file type {file_ext or '(none)'}; "
                f"upload one of {', '.join(self.config.allowed_extensions)}"
            )

        try:
            rows = read_rows(file_content, filename, sheet_name=sheet_name)
        except Exception as e:
            logger.warning(f"Could not read '{filename}': {e}")
            raise ImportRunError(f"Could not read spreadsheet '{filename}': {e}") from e

        if not rows:
            raise ImportRunError(f"The spreadsheet '{filename}' has no rows")

        handler = {
            'policies': self.import_policies,
            'claims': self.import_claims,
            'policy-companies': self.update_policy_companies,
        }[flow]
        return handler(rows, context, on_success=on_success, filename=filename)
