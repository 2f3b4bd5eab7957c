"""
Agency Bulk Import

Reconciles spreadsheet exports from insurers and back-office tools against
an agency's stored policies, claims and clients.

Modules:
    config: Import settings via environment variables
    supabase_client: Store access (Supabase / PostgREST)
    normalize: Text canonicalization for matching
    parsing: Spreadsheet decoding and typed row parsing
    resolver: Company, client, policy and claim lookup
    matching: Per-row decisions
    executor: Writes decisions and tallies the outcome
    import_service: The import flows

Usage:
    from agency_import import ImportService, ImportContext

    service = ImportService()
    outcome = service.import_file(content, "policeler.xlsx", "policies",
                                  ImportContext(operator_id=user_id))
    print(outcome.to_dict())
"""

from .config import ImportConfig, load_config, load_config_from_dotenv
from .models import Decision, DecisionKind, ImportContext, ImportOutcome
from .resolver import ResolutionError
from .executor import BatchExecutor, BatchWriteError
from .import_service import ImportService, ImportRunError, FLOWS

__all__ = [
    # Config
    "ImportConfig",
    "load_config",
    "load_config_from_dotenv",
    # Models
    "Decision",
    "DecisionKind",
    "ImportContext",
    "ImportOutcome",
    # Service
    "ImportService",
    "ImportRunError",
    "BatchExecutor",
    "BatchWriteError",
    "ResolutionError",
    "FLOWS",
]

__version__ = "0.1.0"
