"""Domain models for gf_funding — pure dataclasses, no SQLAlchemy dependency."""

from dataclasses import dataclass
from datetime import datetime


@dataclass
class FundingAccount:
    id: int
    name: str
    available_balance: int   # cents, spendable by new dispatches
    reserved_balance: int    # cents, held for in-flight dispatches
    safety_margin: int       # cents, never spent
    version: int
    is_default: bool = True
    is_active: bool = True
    updated_at: datetime | None = None


@dataclass
class FundingLedgerEntry:
    id: int                          # BIGSERIAL
    account_id: int
    entry_type: str                  # FundingEntryType value
    amount: int                      # cents, positive=credit negative=debit of available
    balance_after: int               # cents, available_balance snapshot after op
    reference_type: str | None = None
    reference_id: str | None = None
    description: str | None = None
    created_at: datetime | None = None


@dataclass(frozen=True)
class AdmissionDecision:
    """A granted admission; a refusal is raised as InsufficientFundsError."""

    required: int    # cents; 0 when the funding check was bypassed
    available: int   # cents, balance the decision was made against
