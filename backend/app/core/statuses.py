# app/core/statuses.py

import enum


class DealStage(str, enum.Enum):
    OPEN = "open"
    CLOSED_WON = "closed_won"
    CLOSED_LOST = "closed_lost"


class ContractStatus(str, enum.Enum):
    DRAFT = "draft"
    SENT = "sent"
    SIGNED = "signed"
    VOID = "void"


class EmploymentType(str, enum.Enum):
    COMMISSION = "commission"
    SALARY = "salary"


class CommissionStatus(str, enum.Enum):
    """What the agency owes: pending -> paid, or pending -> overdue -> paid."""

    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class AgencyChargeStatus(str, enum.Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"


class PayoutStatus(str, enum.Enum):
    """
    SDR payout state.

    pending    -> waiting on the agency charge (commissions only)
    scheduled  -> due on sdr_payout_date; retryable
    processing -> claimed by a batch run
    paid | failed -> terminal
    held       -> destination missing/disabled; re-enters scheduled once fixed
    """

    PENDING = "pending"
    SCHEDULED = "scheduled"
    PROCESSING = "processing"
    PAID = "paid"
    HELD = "held"
    FAILED = "failed"


class ConnectStatus(str, enum.Enum):
    NOT_CONNECTED = "not_connected"
    PENDING = "pending"
    ACTIVE = "active"
    DISABLED = "disabled"
