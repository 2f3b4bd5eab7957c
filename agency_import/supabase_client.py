"""
Supabase client for the agency import engine.

Provides database access through the Supabase REST API.

IMPORTANT: get_supabase_client() uses the SERVICE ROLE key for backend operations.
This key bypasses Row Level Security, so every query issued by the engine
must scope itself to the operator (agent_id) explicitly.
"""

import os
import logging
from typing import Optional, Any, Dict, List, Callable
from dataclasses import dataclass
from dotenv import load_dotenv

from supabase import create_client, Client
from postgrest.exceptions import APIError

# Load environment variables
load_dotenv()

logger = logging.getLogger(__name__)

# PostgREST caps a single response; larger reads are paged with range()
PAGE_SIZE = 1000


@dataclass(frozen=True)
class SupabaseConfig:
    """Configuration for Supabase connection."""
    url: str
    service_role_key: str

    @classmethod
    def from_env(cls) -> "SupabaseConfig":
        """Load configuration from environment variables."""
        url = os.getenv("SUPABASE_URL")
        service_role_key = os.getenv("SUPABASE_SERVICE_ROLE_KEY")

        if not url:
            raise ValueError("SUPABASE_URL environment variable is required")
        if not service_role_key:
            raise ValueError("SUPABASE_SERVICE_ROLE_KEY environment variable is required")

        return cls(url=url, service_role_key=service_role_key)


# Lazily created on first use
_service_client: Optional[Client] = None


def get_supabase_client() -> Client:
    """
    Get the Supabase client with SERVICE ROLE privileges.

    This client bypasses RLS and should only be used in backend code.
    NEVER expose this client or its key to the frontend.
    """
    global _service_client

    if _service_client is None:
        config = SupabaseConfig.from_env()
        _service_client = create_client(config.url, config.service_role_key)

    return _service_client


def fetch_all(build_query: Callable[[], Any], page_size: int = PAGE_SIZE) -> List[dict]:
    """
    Read every row of a query, page by page.

    build_query must return a fresh, ordered query builder on each call so the
    pages are stable. Raises APIError from the first failing page.
    """
    rows: List[dict] = []
    offset = 0
    while True:
        page = build_query().range(offset, offset + page_size - 1).execute().data or []
        rows.extend(page)
        if len(page) < page_size:
            return rows
        offset += page_size


# =============================================================================
# REFERENCE DATA
# =============================================================================

def get_insurance_companies(client: Optional[Client] = None) -> List[dict]:
    """Get all insurance companies ordered by name."""
    client = client or get_supabase_client()
    return fetch_all(
        lambda: client.table("insurance_companies").select("id, name").order("name")
    )


def get_agent_clients(agent_id: str, client: Optional[Client] = None) -> List[dict]:
    """Get every client owned by an agent."""
    client = client or get_supabase_client()
    return fetch_all(
        lambda: client.table("clients")
        .select("id, name, tc_number, tax_number")
        .eq("agent_id", agent_id)
        .order("created_at")
    )


def get_agent_client(agent_id: str, client_id: str, client: Optional[Client] = None) -> Optional[dict]:
    """Get one client, only if the agent owns it."""
    client = client or get_supabase_client()
    response = (
        client.table("clients")
        .select("id, name")
        .eq("id", client_id)
        .eq("agent_id", agent_id)
        .execute()
    )
    return response.data[0] if response.data else None


def get_agent_policies(
    agent_id: str,
    client_id: Optional[str] = None,
    client: Optional[Client] = None,
) -> List[dict]:
    """
    Get the non-deleted policies of an agent, oldest first.

    When client_id is given the result is narrowed to that client.
    """
    client = client or get_supabase_client()

    def build():
        query = (
            client.table("policies")
            .select(
                "id, policy_number, insurance_company_id, policy_type, client_id, "
                "license_plate, status, start_date, end_date, premium_amount"
            )
            .eq("agent_id", agent_id)
            .eq("is_deleted", False)
        )
        if client_id:
            query = query.eq("client_id", client_id)
        return query.order("created_at")

    return fetch_all(build)


def get_agent_claims(agent_id: str, client: Optional[Client] = None) -> List[dict]:
    """Get the claims of an agent, oldest first."""
    client = client or get_supabase_client()
    return fetch_all(
        lambda: client.table("claims")
        .select("id, claim_number, policy_id, claim_date, payment_amount")
        .eq("agent_id", agent_id)
        .order("created_at")
    )


# =============================================================================
# WRITES
# =============================================================================

def create_client_record(client_data: dict, client: Optional[Client] = None) -> Optional[dict]:
    """Create a new agency client (customer)."""
    client = client or get_supabase_client()
    response = client.table("clients").insert(client_data).execute()
    return response.data[0] if response.data else None


def update_by_id(table: str, record_id: str, data: dict, client: Optional[Client] = None) -> Optional[dict]:
    """Update a single row by primary key."""
    client = client or get_supabase_client()
    response = client.table(table).update(data).eq("id", record_id).execute()
    return response.data[0] if response.data else None


def insert_many(table: str, rows: List[dict], client: Optional[Client] = None) -> List[dict]:
    """Insert several rows in one request."""
    client = client or get_supabase_client()
    response = client.table(table).insert(rows).execute()
    return response.data or []


# =============================================================================
# ACTIVITY LOG
# =============================================================================

def log_activity(
    action: str,
    entity_type: Optional[str] = None,
    entity_id: Optional[str] = None,
    details: Optional[Dict[str, Any]] = None,
    user_id: Optional[str] = None,
    client: Optional[Client] = None,
):
    """
    Log an activity to the activity log.

    Failures are logged and swallowed; the activity log is an audit trail and
    must never turn a finished import into a failed one.
    """
    client = client or get_supabase_client()

    log_entry = {
        "action": action,
        "entity_type": entity_type,
        "entity_id": entity_id,
        "details": details,
        "user_id": user_id,
    }

    # Remove None values
    log_entry = {k: v for k, v in log_entry.items() if v is not None}

    try:
        response = client.table("activity_log").insert(log_entry).execute()
    except APIError as e:
        logger.warning(f"Could not write activity log entry '{action}': {e.message}")
        return None
    return response.data[0] if response.data else None


def get_recent_activity(
    limit: int = 50,
    user_id: Optional[str] = None,
    action_prefix: Optional[str] = None,
    client: Optional[Client] = None,
):
    """Get recent activity log entries."""
    client = client or get_supabase_client()
    query = client.table("activity_log").select("*").order("created_at", desc=True).limit(limit)

    if user_id:
        query = query.eq("user_id", user_id)
    if action_prefix:
        query = query.like("action", f"{action_prefix}%")

    response = query.execute()
    return response.data
