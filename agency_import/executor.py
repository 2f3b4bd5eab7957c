"""
Applies a run's decisions to the store and tallies the outcome.

Two write strategies:
    IndividualUpdate - archivals and updates, one request per row. A failed
                       row is counted and the run continues.
    BatchInsert      - every insert of the run in a single request. If it
                       fails, all of those rows fail together.

Updates run before the batch insert, so a failed insert does not undo
updates already committed.
"""

import logging
from datetime import datetime, timezone
from typing import Optional, List, Callable

from postgrest.exceptions import APIError

from .config import ImportConfig
from .models import Decision, DecisionKind, ImportOutcome, SKIP_BLANK
from .supabase_client import update_by_id, insert_many

logger = logging.getLogger(__name__)


class BatchWriteError(Exception):
    """The grouped insert for a table failed; outcome holds the partial counts."""

    def __init__(self, table: str, message: str, outcome: ImportOutcome):
        super().__init__(f"Batch insert into {table} failed: {message}")
        self.table = table
        self.outcome = outcome


class BatchExecutor:
    """Write decisions for one entity table."""

    def __init__(self, client, config: Optional[ImportConfig] = None):
        self.client = client
        self.config = config or ImportConfig()

    def execute(
        self,
        decisions: List[Decision],
        table: str,
        flow: str,
        on_success: Optional[Callable[[], None]] = None,
    ) -> ImportOutcome:
        """
        Tally skips and failures, then write.

        Raises:
            BatchWriteError: the insert request failed
        """
        outcome = ImportOutcome(flow=flow, max_diagnostics=self.config.max_diagnostics)
        inserts: List[Decision] = []
        updates: List[Decision] = []

        for decision in decisions:
            outcome.total_rows += 1
            if decision.kind is DecisionKind.SKIP:
                if decision.reason == SKIP_BLANK:
                    outcome.blank_rows += 1
                    continue
                outcome.skipped += 1
                outcome.skipped_amount += decision.amount or 0.0
                if decision.message:
                    outcome.add_warning(decision.message)
            elif decision.kind is DecisionKind.FAIL:
                outcome.failed += 1
                outcome.add_error(decision.message)
            elif decision.kind is DecisionKind.INSERT:
                inserts.append(decision)
            else:
                updates.append(decision)

        inserts = self._archive_predecessors(inserts, table, outcome)
        self._apply_updates(updates, table, outcome)

        try:
            self._insert_batch(inserts, table, outcome)
        finally:
            if outcome.succeeded and on_success is not None:
                on_success()

        return outcome

    def _archive_predecessors(self, inserts: List[Decision], table: str, outcome: ImportOutcome) -> List[Decision]:
        """Archive the records renewals replace. A renewal whose archival fails is dropped."""
        kept = []
        for decision in inserts:
            if not decision.archive_id:
                kept.append(decision)
                continue
            data = {"status": "archived", "archived_at": datetime.now(timezone.utc).isoformat()}
            try:
                result = update_by_id(table, decision.archive_id, data, client=self.client)
            except APIError as e:
                logger.error(f"Archiving {table} {decision.archive_id} failed: {e.message}")
                outcome.failed += 1
                outcome.add_error(f"Row {decision.row_number}: could not archive previous record - {e.message}")
                continue
            if result is None:
                outcome.failed += 1
                outcome.add_error(f"Row {decision.row_number}: previous record {decision.archive_id} no longer exists")
                continue
            kept.append(decision)
        return kept

    def _apply_updates(self, updates: List[Decision], table: str, outcome: ImportOutcome):
        for decision in updates:
            try:
                result = update_by_id(table, decision.target_id, decision.payload, client=self.client)
            except APIError as e:
                logger.error(f"Updating {table} {decision.target_id} failed: {e.message}")
                outcome.failed += 1
                outcome.add_error(f"Row {decision.row_number}: update failed - {e.message}")
                continue
            if result is None:
                outcome.failed += 1
                outcome.add_error(f"Row {decision.row_number}: record {decision.target_id} no longer exists")
                continue

            outcome.updated += 1
            outcome.total_amount += decision.amount or 0.0
            if decision.warning:
                outcome.add_warning(decision.warning)

    def _insert_batch(self, inserts: List[Decision], table: str, outcome: ImportOutcome):
        if not inserts:
            return

        try:
            insert_many(table, [d.payload for d in inserts], client=self.client)
        except APIError as e:
            logger.error(f"Batch insert of {len(inserts)} rows into {table} failed: {e.message}")
            outcome.failed += len(inserts)
            outcome.add_error(f"Batch insert into {table} failed ({len(inserts)} rows): {e.message}")
            raise BatchWriteError(table, e.message, outcome) from e

        outcome.inserted += len(inserts)
        for decision in inserts:
            outcome.total_amount += decision.amount or 0.0
            if decision.label:
                outcome.type_counts[decision.label] = outcome.type_counts.get(decision.label, 0) + 1
            if decision.warning:
                outcome.add_warning(decision.warning)
        logger.info(f"Inserted {len(inserts)} rows into {table}")
