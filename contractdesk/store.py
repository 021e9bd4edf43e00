"""
Relational store client for Contract Desk.

Talks to the Supabase PostgREST API over HTTP. Responsible for:
- Contracts (read, create, update)
- Tickets and ticket messages (count, insert, conditional insert, delete)
- Tenant directory lookups (profiles, tenant names)
- Activity log rows

Every tenant-owned query is scoped by ``tenant_id`` here; callers never
receive rows that belong to another tenant.
"""

import logging
from datetime import datetime
from typing import Any, Optional

import httpx
from pydantic import TypeAdapter
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from .config import StoreConfig
from .models import Contract, Ticket, TicketMessage


logger = logging.getLogger(__name__)

# Only reads are retried; replaying a write could duplicate it
IDEMPOTENT_METHODS = frozenset({"GET", "HEAD"})

# Postgres "invalid_text_representation", e.g. a non-UUID id in a uuid filter
INVALID_INPUT_CODE = "22P02"

TIMESTAMP_ADAPTER = TypeAdapter(datetime)


class StoreError(Exception):
    """Error when communicating with the relational store."""

    code = "STORE_ERROR"
    status_code = 502

    def __init__(self, message: str, http_status: Optional[int] = None, pg_code: Optional[str] = None):
        super().__init__(message)
        self.http_status = http_status
        self.pg_code = pg_code


def parse_content_range_total(header: Optional[str]) -> int:
    """
    Extract the total row count from a PostgREST ``Content-Range`` header.

    Args:
        header: Header value such as ``"0-9/42"`` or ``"*/0"``.

    Returns:
        Total row count.

    Raises:
        StoreError: If the header is missing or has no exact total.
    """
    if not header or "/" not in header:
        raise StoreError(f"Missing count in Content-Range header: {header!r}")
    total = header.rsplit("/", 1)[1].strip()
    if not total.isdigit():
        raise StoreError(f"Inexact count in Content-Range header: {header!r}")
    return int(total)


class SupabaseStore:
    """
    Client for the Supabase PostgREST API.

    Must be used as a context manager, which owns the underlying HTTP
    connection pool.
    """

    def __init__(self, config: StoreConfig):
        """
        Initialize the store client.

        Args:
            config: Store configuration with endpoint and credentials.
        """
        self._config = config
        self._client: Optional[httpx.Client] = None

    def __enter__(self) -> "SupabaseStore":
        """Context manager entry."""
        self._client = httpx.Client(
            base_url=self._config.rest_url,
            timeout=self._config.request_timeout,
            headers={
                "apikey": self._config.supabase_service_key,
                "Authorization": f"Bearer {self._config.supabase_service_key}",
                "Content-Type": "application/json",
            },
        )
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        """Context manager exit."""
        if self._client:
            self._client.close()
            self._client = None

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _send(
        self,
        method: str,
        path: str,
        params: Optional[dict[str, str]] = None,
        json: Any = None,
        headers: Optional[dict[str, str]] = None,
    ) -> httpx.Response:
        if not self._client:
            raise RuntimeError("Store must be used within a context manager")

        attempts = self._config.max_retries if method in IDEMPOTENT_METHODS else 1
        retrying = Retrying(
            stop=stop_after_attempt(max(attempts, 1)),
            wait=wait_exponential(multiplier=0.5, min=0.5, max=4),
            retry=retry_if_exception_type(httpx.TransportError),
            reraise=True,
            before_sleep=lambda retry_state: logger.warning(
                f"Retrying {method} {path} after error: {retry_state.outcome.exception()}"
            ),
        )

        try:
            for attempt in retrying:
                with attempt:
                    response = self._client.request(
                        method,
                        path,
                        params=params,
                        json=json,
                        headers=headers,
                    )
                    response.raise_for_status()
                    return response
        except httpx.HTTPStatusError as e:
            pg_code = None
            try:
                body = e.response.json()
                if isinstance(body, dict):
                    pg_code = body.get("code")
            except ValueError:
                pass
            logger.error(f"HTTP error on {method} {path}: {e}")
            raise StoreError(
                f"HTTP error: {e.response.status_code}",
                http_status=e.response.status_code,
                pg_code=pg_code,
            ) from e
        except httpx.RequestError as e:
            logger.error(f"Request error on {method} {path}: {e}")
            raise StoreError(f"Request failed: {str(e)}") from e

    def _rows(self, response: httpx.Response) -> list[dict]:
        try:
            data = response.json()
        except ValueError as e:
            raise StoreError(f"Malformed response: {e}") from e
        if data is None:
            return []
        if isinstance(data, dict):
            return [data]
        if not isinstance(data, list):
            raise StoreError(f"Unexpected response payload type: {type(data).__name__}")
        return data

    def _select(self, table: str, params: dict[str, str]) -> list[dict]:
        return self._rows(self._send("GET", f"/{table}", params=params))

    def _insert(self, table: str, row: dict, returning: bool = True) -> Optional[dict]:
        prefer = "return=representation" if returning else "return=minimal"
        response = self._send("POST", f"/{table}", json=row, headers={"Prefer": prefer})
        if not returning:
            return None
        rows = self._rows(response)
        if not rows:
            raise StoreError(f"Insert into {table} returned no row")
        return rows[0]

    # ------------------------------------------------------------------
    # Contracts
    # ------------------------------------------------------------------

    def list_contracts(self, tenant_id: str) -> list[Contract]:
        """
        Fetch all contracts of a tenant, most recent first.

        Args:
            tenant_id: Tenant identifier.

        Returns:
            List of Contract objects.

        Raises:
            StoreError: If the query fails.
        """
        rows = self._select("contracts", {
            "select": "*",
            "tenant_id": f"eq.{tenant_id}",
            "order": "created_at.desc",
        })
        logger.debug(f"Fetched {len(rows)} contracts for tenant {tenant_id}")
        return [self._to_contract(row) for row in rows]

    def get_contract(self, contract_id: str, tenant_id: Optional[str] = None) -> Optional[Contract]:
        """
        Fetch one contract, optionally scoped to a tenant.

        Returns:
            The Contract, or None if it does not exist (or is not the
            tenant's).
        """
        params = {"select": "*", "id": f"eq.{contract_id}", "limit": "1"}
        if tenant_id is not None:
            params["tenant_id"] = f"eq.{tenant_id}"
        try:
            rows = self._select("contracts", params)
        except StoreError as e:
            # A malformed id can never match a row
            if e.pg_code == INVALID_INPUT_CODE:
                return None
            raise
        return self._to_contract(rows[0]) if rows else None

    def create_contract(self, row: dict) -> Contract:
        """Insert a contract row and return the stored contract."""
        return self._to_contract(self._insert("contracts", row))

    def update_contract(self, contract_id: str, changes: dict) -> Contract:
        """
        Apply a partial update to a contract.

        Raises:
            StoreError: If the update fails or matched no row.
        """
        response = self._send(
            "PATCH",
            "/contracts",
            params={"id": f"eq.{contract_id}"},
            json=changes,
            headers={"Prefer": "return=representation"},
        )
        rows = self._rows(response)
        if not rows:
            raise StoreError(f"Contract {contract_id} was not updated")
        return self._to_contract(rows[0])

    def _to_contract(self, row: dict) -> Contract:
        try:
            return Contract(**row)
        except ValueError as e:
            raise StoreError(f"Malformed contract row {row.get('id')}: {e}") from e

    # ------------------------------------------------------------------
    # Tickets
    # ------------------------------------------------------------------

    def count_tickets(self, tenant_id: str, contract_item_ref: str, since: datetime) -> int:
        """
        Count tickets created against a contract item since a timestamp.

        Counting is by creation time: closed tickets still count.

        Args:
            tenant_id: Tenant identifier.
            contract_item_ref: Serialized contract item reference.
            since: Inclusive lower bound on ``created_at``.

        Returns:
            Number of matching tickets.
        """
        response = self._send(
            "HEAD",
            "/tickets",
            params={
                "select": "id",
                "tenant_id": f"eq.{tenant_id}",
                "contract_item_id": f"eq.{contract_item_ref}",
                "created_at": f"gte.{since.isoformat()}",
            },
            headers={"Prefer": "count=exact"},
        )
        return parse_content_range_total(response.headers.get("content-range"))

    def list_ticket_timestamps(
        self,
        tenant_id: str,
        contract_item_ref: str,
        since: datetime,
    ) -> list[datetime]:
        """Get creation timestamps of tickets against an item, oldest first."""
        rows = self._select("tickets", {
            "select": "created_at",
            "tenant_id": f"eq.{tenant_id}",
            "contract_item_id": f"eq.{contract_item_ref}",
            "created_at": f"gte.{since.isoformat()}",
            "order": "created_at.asc",
        })
        try:
            return [TIMESTAMP_ADAPTER.validate_python(row["created_at"]) for row in rows]
        except (KeyError, ValueError) as e:
            raise StoreError(f"Malformed ticket timestamp: {e}") from e

    def insert_ticket(self, row: dict) -> Ticket:
        """Insert a ticket row and return the stored ticket."""
        return self._to_ticket(self._insert("tickets", row))

    def insert_ticket_within_limit(self, row: dict, since: datetime, limit: int) -> Optional[Ticket]:
        """
        Insert a ticket only if its contract item is still under its limit.

        The count and the insert run as one statement inside the database
        (see ``sql/insert_ticket_within_limit.sql``), so concurrent callers
        cannot overshoot the limit.

        Args:
            row: Ticket row; must carry ``tenant_id`` and ``contract_item_id``.
            since: Start of the item's current period.
            limit: Maximum tickets allowed in the period.

        Returns:
            The stored Ticket, or None if the limit was already reached.
        """
        response = self._send(
            "POST",
            "/rpc/insert_ticket_within_limit",
            json={
                "p_tenant_id": row["tenant_id"],
                "p_created_by": row["created_by"],
                "p_title": row["title"],
                "p_priority": row["priority"],
                "p_contract_item_id": row["contract_item_id"],
                "p_since": since.isoformat(),
                "p_limit": limit,
            },
        )
        rows = self._rows(response)
        return self._to_ticket(rows[0]) if rows else None

    def delete_ticket(self, ticket_id: str, tenant_id: str) -> None:
        """Delete a ticket of a tenant."""
        self._send(
            "DELETE",
            "/tickets",
            params={"id": f"eq.{ticket_id}", "tenant_id": f"eq.{tenant_id}"},
        )

    def insert_message(self, row: dict) -> TicketMessage:
        """Insert a ticket message row and return the stored message."""
        data = self._insert("ticket_messages", row)
        try:
            return TicketMessage(**data)
        except ValueError as e:
            raise StoreError(f"Malformed message row: {e}") from e

    def get_ticket(self, ticket_id: str, tenant_id: str) -> Optional[Ticket]:
        """Fetch one ticket of a tenant, or None."""
        try:
            rows = self._select("tickets", {
                "select": "*",
                "id": f"eq.{ticket_id}",
                "tenant_id": f"eq.{tenant_id}",
                "limit": "1",
            })
        except StoreError as e:
            if e.pg_code == INVALID_INPUT_CODE:
                return None
            raise
        return self._to_ticket(rows[0]) if rows else None

    def _to_ticket(self, row: dict) -> Ticket:
        try:
            return Ticket(**row)
        except ValueError as e:
            raise StoreError(f"Malformed ticket row: {e}") from e

    # ------------------------------------------------------------------
    # Directory and activity
    # ------------------------------------------------------------------

    def list_tenant_user_emails(self, tenant_id: str, exclude_user_id: Optional[str] = None) -> list[str]:
        """Get emails of all users in a tenant, optionally excluding one user."""
        params = {"select": "email", "tenant_id": f"eq.{tenant_id}"}
        if exclude_user_id:
            params["id"] = f"neq.{exclude_user_id}"
        rows = self._select("profiles", params)
        return [row["email"] for row in rows if row.get("email")]

    def get_user_email(self, user_id: str) -> Optional[str]:
        """Get the email of a user, or None."""
        rows = self._select("profiles", {"select": "email", "id": f"eq.{user_id}", "limit": "1"})
        return rows[0].get("email") if rows else None

    def get_tenant_name(self, tenant_id: str) -> Optional[str]:
        """Get the display name of a tenant, or None."""
        rows = self._select("tenants", {"select": "name", "id": f"eq.{tenant_id}", "limit": "1"})
        return rows[0].get("name") if rows else None

    def insert_activity(self, row: dict) -> None:
        """Append an activity log row."""
        self._insert("activity_logs", row, returning=False)
