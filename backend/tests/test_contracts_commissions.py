# tests/test_contracts_commissions.py
from __future__ import annotations

from decimal import Decimal

import pytest
from sqlalchemy import func, select

from app.core.errors import DuplicateCommission, InvalidSettlementInput, InvalidStateTransition
from app.models.commission import Commission
from app.models.contract import ContractSignature
from app.models.notification import Notification
from app.services.commissions import create_commission_for_deal
from app.services.contracts import ContractNotSignable, sign_contract

from factories import (
    add_membership,
    create_contract,
    create_deal,
    create_job,
    create_sdr,
    create_user,
    create_workspace,
)


async def notifications_for(db, user_id) -> list[Notification]:
    rows = await db.execute(
        select(Notification).where(Notification.user_id == user_id).order_by(Notification.created_at)
    )
    return list(rows.scalars().all())


async def commission_count(db, deal_id) -> int:
    return int((await db.execute(select(func.count(Commission.id)).where(Commission.deal_id == deal_id))).scalar())


async def sdr_deal_setup(db, *, sdr_kwargs=None, tier="omega", rake=None, value=Decimal("10000.00")):
    owner = await create_user(db, "owner@agency.test")
    workspace = await create_workspace(db, owner, tier=tier, rake_percentage=rake)
    sdr = await create_sdr(db, "sdr@closer.test", **(sdr_kwargs or {}))
    await add_membership(db, workspace, sdr, role="SDR")
    job = await create_job(db, workspace, commission_percentage=Decimal("10"))
    deal = await create_deal(db, workspace, value=value, assigned_to=sdr, job=job)
    contract = await create_contract(db, deal)
    return owner, workspace, sdr, deal, contract


@pytest.mark.asyncio
async def test_signing_closes_deal_and_writes_commission(db, dispatcher):
    owner, workspace, sdr, deal, contract = await sdr_deal_setup(db)

    result = await sign_contract(
        db,
        contract,
        signer_name="  Jane   Client ",
        signer_email="Jane@Client.TEST",
        agreed=True,
        ip_address="203.0.113.9",
        user_agent="pytest",
        dispatcher=dispatcher,
    )

    assert result.commission_created is True
    assert result.commission_error is None
    assert contract.status == "signed"
    assert deal.stage == "closed_won"
    assert deal.closed_at is not None

    sig = (await db.execute(select(ContractSignature).where(ContractSignature.contract_id == contract.id))).scalar_one()
    assert sig.signer_name == "Jane Client"
    assert sig.signer_email == "jane@client.test"
    assert sig.ip_address == "203.0.113.9"

    c = result.commission
    await db.refresh(c)
    assert c.deal_value == Decimal("10000.00")
    assert c.agency_rake_amount == Decimal("200.00")
    assert c.amount == Decimal("1000.00")
    assert c.platform_cut_amount == Decimal("50.00")
    assert c.sdr_payout_amount == Decimal("950.00")
    assert c.rake_amount == Decimal("250.00")
    assert c.total_agency_owed == Decimal("1200.00")
    assert c.status == "pending"
    assert c.sdr_payout_status == "pending"
    assert c.is_agency_self_closed is False
    assert c.sdr_id == sdr.id

    owner_notes = await notifications_for(db, owner.id)
    assert [n.type for n in owner_notes] == ["commission_created"]
    assert owner_notes[0].title == "New Commission Due"
    assert "$1,200.00" in owner_notes[0].message

    sdr_notes = await notifications_for(db, sdr.id)
    assert [n.type for n in sdr_notes] == ["commission_created"]
    assert "$950.00" in sdr_notes[0].message
    assert sdr_notes[0].data["commission_amount"] == "950.00"


@pytest.mark.asyncio
async def test_closing_a_deal_accumulates_sdr_total_and_levels_up(db, dispatcher):
    owner, workspace, sdr, deal, contract = await sdr_deal_setup(
        db, sdr_kwargs={"total_closed": Decimal("25000.00"), "sdr_level": 1}
    )

    result = await sign_contract(
        db, contract, signer_name="Client", signer_email="c@client.test", agreed=True, dispatcher=dispatcher
    )

    await db.refresh(sdr)
    assert sdr.total_deals_closed_value == Decimal("35000.00")
    assert sdr.sdr_level == 2
    # The closing deal is settled at the level the SDR held before it.
    assert result.commission.platform_cut_percentage == Decimal("5")

    types = [n.type for n in await notifications_for(db, sdr.id)]
    assert types.count("level_up") == 1
    level_up = next(n for n in await notifications_for(db, sdr.id) if n.type == "level_up")
    assert "Level 2 (Silver)" in level_up.message
    assert "4%" in level_up.message


@pytest.mark.asyncio
async def test_owner_closed_deal_is_self_closed(db, dispatcher):
    owner = await create_user(db, "owner@agency.test")
    workspace = await create_workspace(db, owner)
    job = await create_job(db, workspace)
    deal = await create_deal(db, workspace, assigned_to=owner, job=job)
    contract = await create_contract(db, deal)

    result = await sign_contract(
        db, contract, signer_name="Client", signer_email="c@client.test", agreed=True, dispatcher=dispatcher
    )

    c = result.commission
    assert c.is_agency_self_closed is True
    assert c.amount == Decimal("0.00")
    assert c.platform_cut_amount == Decimal("0.00")
    assert c.sdr_payout_amount == Decimal("0.00")
    assert c.agency_rake_amount == Decimal("200.00")
    assert c.sdr_payout_status is None

    await db.refresh(owner)
    assert owner.total_deals_closed_value == Decimal("0.00")

    notes = await notifications_for(db, owner.id)
    assert [n.type for n in notes] == ["commission_created"]


@pytest.mark.asyncio
async def test_unassigned_deal_is_treated_as_self_closed(db):
    owner = await create_user(db, "owner@agency.test")
    workspace = await create_workspace(db, owner, tier="beta")
    deal = await create_deal(db, workspace, assigned_to=None, stage="closed_won")

    c = await create_commission_for_deal(db, deal, workspace)

    assert c.is_agency_self_closed is True
    assert c.agency_rake_percentage == Decimal("1.5")
    assert c.agency_rake_amount == Decimal("150.00")


@pytest.mark.asyncio
async def test_workspace_rake_override_wins_over_tier(db):
    owner, workspace, sdr, deal, contract = await sdr_deal_setup(db, tier="alpha", rake=Decimal("3"))
    deal.stage = "closed_won"
    await db.flush()

    c = await create_commission_for_deal(db, deal, workspace)

    assert c.agency_rake_percentage == Decimal("3")
    assert c.agency_rake_amount == Decimal("300.00")


@pytest.mark.asyncio
async def test_deal_without_job_settles_zero_commission(db):
    owner = await create_user(db, "owner@agency.test")
    workspace = await create_workspace(db, owner)
    sdr = await create_sdr(db)
    deal = await create_deal(db, workspace, assigned_to=sdr, job=None, stage="closed_won")

    c = await create_commission_for_deal(db, deal, workspace)

    assert c.is_agency_self_closed is False
    assert c.amount == Decimal("0.00")
    assert c.sdr_payout_amount == Decimal("0.00")
    assert c.agency_rake_amount == Decimal("200.00")


@pytest.mark.asyncio
async def test_second_commission_for_same_deal_is_rejected(db):
    owner, workspace, sdr, deal, contract = await sdr_deal_setup(db)
    deal.stage = "closed_won"
    await db.flush()

    first = await create_commission_for_deal(db, deal, workspace)

    with pytest.raises(DuplicateCommission) as exc:
        await create_commission_for_deal(db, deal, workspace)

    assert exc.value.context["commission_id"] == str(first.id)
    assert await commission_count(db, deal.id) == 1

    # The SDR's running total only moved once.
    await db.refresh(sdr)
    assert sdr.total_deals_closed_value == Decimal("10000.00")


@pytest.mark.asyncio
async def test_commission_requires_closed_won_deal(db):
    owner, workspace, sdr, deal, contract = await sdr_deal_setup(db)

    with pytest.raises(InvalidStateTransition):
        await create_commission_for_deal(db, deal, workspace)


@pytest.mark.asyncio
async def test_commission_failure_does_not_undo_signature(db, dispatcher):
    owner, workspace, sdr, deal, contract = await sdr_deal_setup(db)
    # Stray commission already recorded for this open deal.
    db.add(
        Commission(
            workspace_id=workspace.id,
            deal_id=deal.id,
            sdr_id=sdr.id,
            deal_value=Decimal("10000.00"),
            amount=Decimal("0"),
            agency_rake_percentage=Decimal("2"),
            agency_rake_amount=Decimal("200.00"),
        )
    )
    await db.flush()

    result = await sign_contract(
        db, contract, signer_name="Client", signer_email="c@client.test", agreed=True, dispatcher=dispatcher
    )

    assert result.commission_created is False
    assert result.commission_error == "DUPLICATE_COMMISSION"

    await db.refresh(contract)
    await db.refresh(deal)
    assert contract.status == "signed"
    assert deal.stage == "closed_won"
    assert await commission_count(db, deal.id) == 1


@pytest.mark.asyncio
async def test_contract_that_is_not_sent_cannot_be_signed(db):
    owner = await create_user(db, "owner@agency.test")
    workspace = await create_workspace(db, owner)
    deal = await create_deal(db, workspace, assigned_to=owner)
    contract = await create_contract(db, deal, status="draft")

    with pytest.raises(ContractNotSignable) as exc:
        await sign_contract(db, contract, signer_name="Client", signer_email="c@client.test", agreed=True)

    assert exc.value.code == "CONTRACT_NOT_SIGNABLE"


@pytest.mark.asyncio
async def test_closed_deal_cannot_be_signed_again(db):
    owner = await create_user(db, "owner@agency.test")
    workspace = await create_workspace(db, owner)
    deal = await create_deal(db, workspace, assigned_to=owner, stage="closed_won")
    contract = await create_contract(db, deal)

    with pytest.raises(ContractNotSignable):
        await sign_contract(db, contract, signer_name="Client", signer_email="c@client.test", agreed=True)


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "name, email, agreed",
    [
        ("", "c@client.test", True),
        ("Client", "   ", True),
        ("Client", "c@client.test", False),
    ],
)
async def test_signing_validates_signer(db, name, email, agreed):
    owner = await create_user(db, "owner@agency.test")
    workspace = await create_workspace(db, owner)
    deal = await create_deal(db, workspace, assigned_to=owner)
    contract = await create_contract(db, deal)

    with pytest.raises(InvalidSettlementInput):
        await sign_contract(db, contract, signer_name=name, signer_email=email, agreed=agreed)

    assert contract.status == "sent"
