"""Test doubles and row builders shared by the test modules."""
from __future__ import annotations

import uuid
from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from app.core.errors import ChargeDeclined, ChargeRequiresAction, ProviderError
from app.core.security import create_access_token
from app.integrations.payments import AccountStatus, ChargeResult, TransferResult
from app.models.commission import Commission
from app.models.contract import Contract
from app.models.deal import Deal
from app.models.job import Job
from app.models.salary_payment import SalaryPayment
from app.models.user import User
from app.models.workspace import Workspace
from app.models.workspace_membership import WorkspaceMembership


# ---------------------------------------------------------
# Payment provider double
# ---------------------------------------------------------
class FakePaymentProvider:
    """
    In-memory PaymentProvider.

    - Honors idempotency keys the way Stripe does: a repeated key returns the
      original object (or replays the original decline) and moves no extra
      money. Reusing a key with a different payment method or amount is a
      ProviderError, as Stripe rejects it with an IdempotencyError.
    - ``transfer_errors[destination]`` is a queue of exceptions raised (one per
      call) before any transfer is made to that destination.
    - ``account_statuses[account_id]`` overrides the default "active" account.
    - ``charge_status`` / ``charge_error`` script the next charges;
      ``settle_intent`` moves an existing PaymentIntent to a final status.
    """

    def __init__(self) -> None:
        self.transfer_calls: list[dict] = []
        self.transfers: dict[str, TransferResult] = {}
        self.transfer_errors: dict[str, list[Exception]] = {}
        self.account_statuses: dict[str, AccountStatus] = {}
        self.account_lookups: list[str] = []

        self.charge_calls: list[dict] = []
        self.charges: dict[str, ChargeResult] = {}
        self.charge_params: dict[str, tuple[str, int]] = {}
        self.charge_failures: dict[str, Exception] = {}
        self.intents: dict[str, ChargeResult] = {}
        self.intent_lookups: list[str] = []
        self.charge_status = "succeeded"
        self.charge_error: Optional[Exception] = None

    async def create_transfer(
        self,
        *,
        destination: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        description: str = "",
        metadata: Optional[dict] = None,
    ) -> TransferResult:
        self.transfer_calls.append(
            {
                "destination": destination,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
                "description": description,
                "metadata": dict(metadata or {}),
            }
        )
        queued = self.transfer_errors.get(destination) or []
        if queued:
            raise queued.pop(0)

        if idempotency_key in self.transfers:
            return self.transfers[idempotency_key]

        result = TransferResult(
            id=f"tr_{uuid.uuid4().hex[:16]}",
            amount=amount,
            currency=currency,
            destination=destination,
        )
        self.transfers[idempotency_key] = result
        return result

    async def get_account_status(self, account_id: str) -> AccountStatus:
        self.account_lookups.append(account_id)
        return self.account_statuses.get(
            account_id,
            AccountStatus(account_id=account_id, payouts_enabled=True, details_submitted=True),
        )

    async def charge_customer(
        self,
        *,
        customer_id: str,
        payment_method_id: str,
        amount: int,
        currency: str,
        idempotency_key: str,
        description: str = "",
        metadata: Optional[dict] = None,
    ) -> ChargeResult:
        self.charge_calls.append(
            {
                "customer_id": customer_id,
                "payment_method_id": payment_method_id,
                "amount": amount,
                "currency": currency,
                "idempotency_key": idempotency_key,
                "metadata": dict(metadata or {}),
            }
        )
        params = (payment_method_id, amount)
        if idempotency_key in self.charge_params and self.charge_params[idempotency_key] != params:
            raise ProviderError(
                "Keys for idempotent requests can only be used with the same parameters they were first used with.",
                provider_code="idempotency_error",
            )
        self.charge_params[idempotency_key] = params

        if idempotency_key in self.charge_failures:
            raise self.charge_failures[idempotency_key]
        if idempotency_key in self.charges:
            return self.intents[self.charges[idempotency_key].id]

        if self.charge_error is not None:
            self.charge_failures[idempotency_key] = self.charge_error
            raise self.charge_error

        result = ChargeResult(id=f"pi_{uuid.uuid4().hex[:16]}", status=self.charge_status, amount=amount)
        self.charges[idempotency_key] = result
        self.intents[result.id] = result
        return result

    async def get_payment_intent(self, intent_id: str) -> ChargeResult:
        self.intent_lookups.append(intent_id)
        if intent_id not in self.intents:
            raise ProviderError(f"No such payment_intent: '{intent_id}'", provider_code="resource_missing")
        return self.intents[intent_id]

    def settle_intent(self, intent_id: str, status: str) -> None:
        current = self.intents[intent_id]
        self.intents[intent_id] = ChargeResult(id=intent_id, status=status, amount=current.amount)

    def decline_charges(self, message: str = "Your card was declined.") -> None:
        self.charge_error = ChargeDeclined(message, provider_code="card_declined")

    def require_authentication(self) -> None:
        self.charge_error = ChargeRequiresAction(
            "Authentication required", provider_code="authentication_required"
        )


def auth_headers(user: User, workspace: Optional[Workspace] = None) -> dict[str, str]:
    headers = {"Authorization": f"Bearer {create_access_token(subject=str(user.id))}"}
    if workspace is not None:
        headers["X-Workspace-Id"] = str(workspace.id)
    return headers


# ---------------------------------------------------------
# Builders (flush only; callers commit when another session must see rows)
# ---------------------------------------------------------
def utcnow() -> datetime:
    return datetime.now(timezone.utc)


async def create_user(
    db,
    email: Optional[str] = None,
    *,
    connect_account: Optional[str] = None,
    connect_status: str = "not_connected",
    sdr_level: int = 1,
    total_closed: Decimal = Decimal("0"),
    is_platform_admin: bool = False,
) -> User:
    user = User(
        email=(email or f"user-{uuid.uuid4().hex[:8]}@example.com").lower(),
        full_name="Test User",
        is_active=True,
        is_platform_admin=is_platform_admin,
        sdr_level=sdr_level,
        total_deals_closed_value=total_closed,
        stripe_connect_account_id=connect_account,
        stripe_connect_status=connect_status,
    )
    db.add(user)
    await db.flush()
    return user


async def create_sdr(db, email: Optional[str] = None, **kwargs) -> User:
    """SDR with an active Connect account unless told otherwise."""
    kwargs.setdefault("connect_account", f"acct_{uuid.uuid4().hex[:12]}")
    kwargs.setdefault("connect_status", "active")
    return await create_user(db, email, **kwargs)


async def create_workspace(
    db,
    owner: User,
    *,
    tier: str = "omega",
    rake_percentage: Optional[Decimal] = None,
    with_payment_method: bool = True,
    is_locked: bool = False,
) -> Workspace:
    workspace = Workspace(
        name=f"Agency {uuid.uuid4().hex[:6]}",
        owner_id=owner.id,
        subscription_tier=tier,
        rake_percentage=rake_percentage,
        is_locked=is_locked,
        stripe_customer_id="cus_test" if with_payment_method else None,
        stripe_default_payment_method="pm_test" if with_payment_method else None,
    )
    db.add(workspace)
    await db.flush()
    db.add(WorkspaceMembership(workspace_id=workspace.id, user_id=owner.id, role="OWNER", is_active=True))
    await db.flush()
    return workspace


async def add_membership(db, workspace: Workspace, user: User, role: str = "SDR", is_active: bool = True):
    m = WorkspaceMembership(workspace_id=workspace.id, user_id=user.id, role=role, is_active=is_active)
    db.add(m)
    await db.flush()
    return m


async def create_job(
    db,
    workspace: Workspace,
    *,
    commission_percentage: Decimal = Decimal("10"),
    employment_type: str = "commission",
    salary_amount: Optional[Decimal] = None,
) -> Job:
    job = Job(
        workspace_id=workspace.id,
        title="Outbound SDR",
        employment_type=employment_type,
        commission_percentage=commission_percentage,
        salary_amount=salary_amount,
    )
    db.add(job)
    await db.flush()
    return job


async def create_deal(
    db,
    workspace: Workspace,
    *,
    value: Decimal = Decimal("10000.00"),
    assigned_to: Optional[User] = None,
    job: Optional[Job] = None,
    stage: str = "open",
) -> Deal:
    deal = Deal(
        workspace_id=workspace.id,
        job_id=job.id if job is not None else None,
        title="Acme Corp annual plan",
        value=value,
        assigned_to=assigned_to.id if assigned_to is not None else None,
        stage=stage,
    )
    db.add(deal)
    await db.flush()
    return deal


async def create_contract(db, deal: Deal, *, status: str = "sent") -> Contract:
    contract = Contract(
        workspace_id=deal.workspace_id,
        deal_id=deal.id,
        title="Master Services Agreement",
        content="Terms...",
        status=status,
    )
    db.add(contract)
    await db.flush()
    return contract


async def create_paid_commission(
    db,
    workspace: Workspace,
    sdr: User,
    *,
    payout_amount: Decimal = Decimal("950.00"),
    payout_status: str = "scheduled",
    payout_date=None,
    retry_count: int = 0,
) -> Commission:
    """A commission the agency already paid, with the SDR payout due."""
    deal = await create_deal(db, workspace, assigned_to=sdr, stage="closed_won")
    commission = Commission(
        workspace_id=workspace.id,
        deal_id=deal.id,
        sdr_id=sdr.id,
        deal_value=deal.value,
        amount=Decimal("1000.00"),
        rake_amount=Decimal("250.00"),
        agency_rake_percentage=Decimal("2"),
        agency_rake_amount=Decimal("200.00"),
        commission_percentage=Decimal("10"),
        platform_cut_percentage=Decimal("5"),
        platform_cut_amount=Decimal("50.00"),
        is_agency_self_closed=False,
        status="paid",
        paid_at=utcnow(),
        sdr_payout_amount=payout_amount,
        sdr_payout_status=payout_status,
        sdr_payout_date=payout_date or utcnow().date(),
        retry_count=retry_count,
    )
    db.add(commission)
    await db.flush()
    return commission


async def create_salary_payment(
    db,
    workspace: Workspace,
    sdr: User,
    *,
    amount: Decimal = Decimal("4000.00"),
    charge_status: str = "paid",
    payout_status: str = "scheduled",
    payout_date=None,
) -> SalaryPayment:
    job = await create_job(db, workspace, employment_type="salary", salary_amount=amount)
    payment = SalaryPayment(
        workspace_id=workspace.id,
        sdr_id=sdr.id,
        job_id=job.id,
        salary_amount=amount,
        agency_charge_status=charge_status,
        hired_at=utcnow(),
        sdr_payout_amount=amount,
        sdr_payout_status=payout_status,
        sdr_payout_date=payout_date or utcnow().date(),
        retry_count=0,
    )
    db.add(payment)
    await db.flush()
    return payment
