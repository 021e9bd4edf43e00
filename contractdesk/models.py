"""
Data models for Contract Desk.

Uses Pydantic for robust data validation and serialization.
Store rows are parsed into these models at the store boundary, so the rest of
the package only ever sees validated, typed values.
"""

import logging
import re
from datetime import date, datetime
from typing import Any, Literal, Optional

from pydantic import BaseModel, Field, ValidationError as PydanticValidationError, field_validator

from .errors import InvalidReferenceError


logger = logging.getLogger(__name__)


ItemType = Literal["text", "toggle", "limit", "unlimited", "location"]
LimitPeriod = Literal["monthly", "quarterly", "half_yearly", "yearly"]
LocationMode = Literal["remote", "on-site", "both"]
TicketStatus = Literal["open", "in_progress", "waiting", "closed"]
TicketPriority = Literal["low", "medium", "high", "urgent"]

ACTIONABLE_TYPES: frozenset[str] = frozenset({"toggle", "limit", "unlimited", "location"})
DEFAULT_LIMIT_PERIOD: LimitPeriod = "monthly"
SUMMARY_VERSION = "1.0"

# Sentinel a caller sends when a ticket is not tied to any contract item
OTHERS = "others"

_UUID_PREFIX = re.compile(
    r"^([0-9a-fA-F]{8}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{4}-[0-9a-fA-F]{12})-(.*)$",
    re.DOTALL,
)


class ContractItem(BaseModel):
    """
    One line of a contract's entitlement summary.

    Attributes:
        id: Identifier, unique within its contract
        text: Human-readable description
        type: Item kind; only non-text kinds can be consumed by tickets
        enabled: Switch state, meaningful only for toggle items
        value: Limit magnitude, meaningful only for limit items
        location: Service location, meaningful only for location items
        limit_period: Accounting window, meaningful only for limit items
    """

    id: str = Field(..., min_length=1, description="Item identifier")
    text: str = Field(default="", description="Item description")
    type: ItemType = Field(default="text", description="Item kind")
    enabled: Optional[bool] = Field(default=None, description="Toggle state")
    value: Optional[int] = Field(default=None, description="Numeric limit")
    location: Optional[LocationMode] = Field(default=None, description="Service location")
    limit_period: Optional[LimitPeriod] = Field(default=None, description="Limit period")

    model_config = {"frozen": True}

    @field_validator("value", mode="before")
    @classmethod
    def coerce_value(cls, v: Any) -> Optional[int]:
        """Accept numeric strings and floats; anything unparseable means no limit."""
        if v is None or isinstance(v, bool):
            return None
        if isinstance(v, (int, float)):
            return int(v)
        try:
            return int(str(v).strip())
        except ValueError:
            return None

    @field_validator("limit_period", mode="before")
    @classmethod
    def blank_period_is_unset(cls, v: Any) -> Any:
        if isinstance(v, str) and not v.strip():
            return None
        return v

    @property
    def is_actionable(self) -> bool:
        """Check if a ticket may be filed against this item."""
        return self.type in ACTIONABLE_TYPES

    @property
    def enforceable_limit(self) -> Optional[int]:
        """Positive limit for limit items, otherwise None (never enforced)."""
        if self.type == "limit" and self.value and self.value > 0:
            return self.value
        return None

    @property
    def effective_limit_period(self) -> LimitPeriod:
        return self.limit_period or DEFAULT_LIMIT_PERIOD


class ContractSummary(BaseModel):
    """Versioned JSON document stored in ``contracts.summary``."""

    version: str = Field(default=SUMMARY_VERSION, description="Summary schema version")
    items: list[ContractItem] = Field(default_factory=list, description="Ordered items")

    model_config = {"frozen": True}

    @classmethod
    def from_raw(cls, raw: Any) -> "ContractSummary":
        """
        Parse a stored summary blob.

        Implements graceful handling of:
        - Missing or non-object summaries (empty item list)
        - Non-list ``items`` (empty item list)
        - Malformed entries (skipped with warning)

        Args:
            raw: Decoded JSON value of the summary column.

        Returns:
            Parsed ContractSummary.
        """
        if isinstance(raw, ContractSummary):
            return raw
        if not isinstance(raw, dict):
            return cls(items=[])

        items_data = raw.get("items")
        if not isinstance(items_data, list):
            return cls(version=str(raw.get("version") or SUMMARY_VERSION), items=[])

        items = []
        for idx, item_data in enumerate(items_data):
            if not isinstance(item_data, dict):
                logger.warning(f"Skipping non-object contract item at index {idx}")
                continue
            try:
                items.append(ContractItem(**item_data))
            except PydanticValidationError as e:
                logger.warning(f"Skipping malformed contract item at index {idx}: {e}")

        return cls(version=str(raw.get("version") or SUMMARY_VERSION), items=items)

    def to_json(self) -> dict:
        """Serialize for the summary column, omitting unset item fields."""
        return {
            "version": self.version,
            "items": [item.model_dump(exclude_none=True) for item in self.items],
        }


class ContractItemRef(BaseModel):
    """
    Structured reference from a ticket to the contract item it consumed.

    Serialized as ``"{contract_id}-{item_id}"`` only when written to the
    ``tickets.contract_item_id`` column. UUID contract ids are recognised as a
    fixed-width prefix, so the encoding stays reversible even though UUIDs
    contain hyphens.
    """

    contract_id: str = Field(..., min_length=1)
    item_id: str = Field(..., min_length=1)

    model_config = {"frozen": True}

    @classmethod
    def parse(cls, value: str) -> "ContractItemRef":
        """
        Parse a serialized reference.

        Raises:
            InvalidReferenceError: If the string does not split into two
                non-empty parts.
        """
        if not isinstance(value, str) or not value:
            raise InvalidReferenceError("Invalid contract item ID format")

        match = _UUID_PREFIX.match(value)
        if match:
            contract_id, item_id = match.group(1), match.group(2)
        else:
            contract_id, _, item_id = value.partition("-")

        if not contract_id or not item_id:
            raise InvalidReferenceError(f"Invalid contract item ID format: '{value}'")
        return cls(contract_id=contract_id, item_id=item_id)

    def __str__(self) -> str:
        return f"{self.contract_id}-{self.item_id}"


class Contract(BaseModel):
    """A tenant's contract with its entitlement summary."""

    id: str = Field(..., description="Contract identifier")
    tenant_id: str = Field(..., description="Owning tenant")
    title: str = Field(default="", description="Contract title")
    start_date: date = Field(..., description="First day the contract is active")
    end_date: date = Field(..., description="Last day the contract is active")
    summary: ContractSummary = Field(default_factory=ContractSummary)
    pdf_url: Optional[str] = None
    created_by: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    model_config = {"frozen": True}

    @field_validator("summary", mode="before")
    @classmethod
    def parse_summary(cls, v: Any) -> ContractSummary:
        return ContractSummary.from_raw(v)

    @property
    def items(self) -> list[ContractItem]:
        return self.summary.items

    def is_active(self, today: date) -> bool:
        """Check if ``today`` falls inside the contract term (inclusive)."""
        return self.start_date <= today <= self.end_date

    def find_item(self, item_id: str) -> Optional[ContractItem]:
        """Find an item by id."""
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def ref_for(self, item: ContractItem) -> ContractItemRef:
        """Build the reference a ticket stores for one of this contract's items."""
        return ContractItemRef(contract_id=self.id, item_id=item.id)


class Ticket(BaseModel):
    """A support ticket as persisted in the store."""

    id: str
    tenant_id: str
    created_by: str
    title: str
    status: TicketStatus = "open"
    priority: TicketPriority = "medium"
    contract_item_id: Optional[str] = Field(
        default=None,
        description="Serialized ContractItemRef this ticket consumed, if any"
    )
    created_at: datetime
    updated_at: Optional[datetime] = None
    resolved_at: Optional[datetime] = None

    model_config = {"frozen": True}

    @property
    def contract_item_ref(self) -> Optional[ContractItemRef]:
        if not self.contract_item_id:
            return None
        return ContractItemRef.parse(self.contract_item_id)


class TicketMessage(BaseModel):
    """A message posted on a ticket."""

    id: str
    ticket_id: str
    author_id: str
    content: str
    is_internal_note: bool = False
    created_at: Optional[datetime] = None

    model_config = {"frozen": True}


class CreateTicketInput(BaseModel):
    """Caller input for the ticket creation gate."""

    title: str = Field(default="", description="Ticket title")
    priority: Optional[TicketPriority] = Field(default=None, description="Defaults to medium")
    initial_message: Optional[str] = Field(default=None, description="First message body")
    contract_item_id: Optional[str] = Field(
        default=None,
        description=f"Serialized contract item reference, or '{OTHERS}'"
    )

    def item_reference(self) -> Optional[ContractItemRef]:
        """
        Get the structured reference, if the ticket consumes a contract item.

        Raises:
            InvalidReferenceError: If the reference string is malformed.
        """
        if not self.contract_item_id or self.contract_item_id == OTHERS:
            return None
        return ContractItemRef.parse(self.contract_item_id)


class CatalogEntry(BaseModel):
    """A contract item a tenant user may attach a new ticket to."""

    id: str = Field(..., description="Serialized ContractItemRef")
    text: str
    contract_id: str
    contract_title: str
    has_limit: bool
    limit_value: Optional[int] = None
    limit_period: LimitPeriod = DEFAULT_LIMIT_PERIOD

    model_config = {"frozen": True}


class LimitCheckResult(BaseModel):
    """Outcome of evaluating one more ticket against a contract item."""

    allowed: bool
    current_count: int = Field(default=0, ge=0)
    limit: int = Field(default=0, ge=0)
    period: LimitPeriod = DEFAULT_LIMIT_PERIOD
    message: Optional[str] = None

    model_config = {"frozen": True}


class ContractItemUsage(BaseModel):
    """Usage of one actionable contract item in its current period."""

    contract_item_id: str
    contract_id: str
    contract_title: str
    item_text: str
    item_type: ItemType
    ticket_count: int = Field(default=0, ge=0)
    limit: Optional[int] = None
    limit_period: LimitPeriod = DEFAULT_LIMIT_PERIOD
    usage_percentage: float = 0.0
    is_at_limit: bool = False
    is_near_limit: bool = False

    model_config = {"frozen": True}


class UsageStats(BaseModel):
    """Dashboard snapshot across all of a tenant's active contract items."""

    total_items: int = 0
    items_with_limits: int = 0
    items_at_limit: int = 0
    items_near_limit: int = 0
    total_tickets: int = 0
    usage_by_item: list[ContractItemUsage] = Field(default_factory=list)

    model_config = {"frozen": True}


class UsageTrendPoint(BaseModel):
    """Ticket count for one calendar day."""

    date: str
    count: int = 0

    model_config = {"frozen": True}


class ContractInput(BaseModel):
    """Super-admin input for creating a contract."""

    tenant_id: str = Field(..., min_length=1)
    title: str = Field(default="")
    start_date: date
    end_date: date
    items: list[ContractItem] = Field(default_factory=list)
    pdf_url: Optional[str] = None


class ContractUpdate(BaseModel):
    """
    Super-admin input for updating a contract.

    Only explicitly set fields are applied. ``items`` replaces the whole item
    list; there is no partial item patch.
    """

    title: Optional[str] = None
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    items: Optional[list[ContractItem]] = None
    pdf_url: Optional[str] = None
