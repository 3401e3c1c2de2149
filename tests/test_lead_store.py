import json

import pytest
from sqlalchemy import func, select

from supportbot.core.errors import NotFoundError, ValidationError
from supportbot.models.lead import Lead
from supportbot.services.lead_service import (
    LeadCaptureDispatcher,
    LeadStore,
    PersistLeadParams,
    derive_name_company,
    truncate_conversation,
)

from conftest import make_tenant


def params(tenant_id, **overrides) -> PersistLeadParams:
    fields = dict(
        tenant_id=tenant_id,
        source_bot_id=tenant_id,
        first_message="Hi, what does it cost?",
        last_message="Hi, what does it cost?",
        conversation=[{"role": "user", "content": "Hi, what does it cost?"}],
        intent_keywords=["cost"],
    )
    fields.update(overrides)
    return PersistLeadParams(**fields)


async def lead_count(db, tenant_id) -> int:
    return await db.scalar(select(func.count()).select_from(Lead).where(Lead.tenant_id == tenant_id))


# ── Pure helpers ──────────────────────────────────────────────────────────────

def test_truncate_keeps_last_turns():
    turns = [{"role": "user", "content": f"m{i}"} for i in range(20)]
    kept = truncate_conversation(turns, max_turns=12, max_chars=4000)
    assert len(kept) == 12
    assert kept[0]["content"] == "m8"
    assert kept[-1]["content"] == "m19"


def test_truncate_drops_oldest_until_it_fits():
    turns = [{"role": "user", "content": "x" * 500} for _ in range(12)]
    kept = truncate_conversation(turns, max_turns=12, max_chars=4000)
    assert len(json.dumps(kept)) <= 4000
    assert len(kept) < 12


def test_truncate_cuts_an_oversized_newest_turn():
    kept = truncate_conversation([{"role": "user", "content": "y" * 10000}], max_turns=12, max_chars=4000)
    assert len(kept) == 1
    assert len(json.dumps(kept, ensure_ascii=False)) <= 4000
    assert kept[0]["content"].startswith("yyy")


def test_derive_name_and_company():
    name, company = derive_name_company(["Hello! My name is Priya Shah and I work at Northwind Traders."])
    assert name == "Priya Shah"
    assert company == "Northwind Traders"


def test_company_rejected_when_it_is_pricing_vocabulary():
    _, company = derive_name_company(["I'm asking from Pricing Page."])
    assert company is None


# ── Store ─────────────────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_no_signal_writes_nothing(db):
    user = await make_tenant(db)
    result = await LeadStore.persist_lead_if_any(db, params(user.tenant_id, intent_keywords=[]))
    assert result.created is False and result.id is None
    assert await lead_count(db, user.tenant_id) == 0


@pytest.mark.asyncio
async def test_demo_or_missing_tenant_is_skipped(db):
    assert (await LeadStore.persist_lead_if_any(db, params("demo", email="a@b.io"))).id is None
    assert (await LeadStore.persist_lead_if_any(db, params(None, email="a@b.io"))).id is None
    assert await db.scalar(select(func.count()).select_from(Lead)) == 0


@pytest.mark.asyncio
async def test_intent_only_lead_is_incomplete(db):
    user = await make_tenant(db)
    result = await LeadStore.persist_lead_if_any(db, params(user.tenant_id))
    lead = await LeadStore.get_lead(db, user.tenant_id, result.id)
    assert result.created
    assert lead.status == "incomplete"
    assert lead.meta == {"intent_prompt": False, "follow_up_request": False}


@pytest.mark.asyncio
async def test_same_email_twice_gives_one_row(db):
    user = await make_tenant(db)
    first = await LeadStore.persist_lead_if_any(db, params(user.tenant_id, email="Sam@Example.com"))
    second = await LeadStore.persist_lead_if_any(
        db,
        params(user.tenant_id, email="sam@example.com", phone="(555) 123-4567",
               last_message="call me at (555) 123-4567"),
    )
    assert first.created and not second.created
    assert first.id == second.id
    assert await lead_count(db, user.tenant_id) == 1

    lead = await LeadStore.get_lead(db, user.tenant_id, first.id)
    assert lead.email == "sam@example.com"
    assert lead.phone == "(555) 123-4567"
    assert lead.status == "new"
    assert lead.last_message == "call me at (555) 123-4567"


@pytest.mark.asyncio
async def test_update_keeps_existing_phone_and_promotes_incomplete(db):
    user = await make_tenant(db)
    created = await LeadStore.persist_lead_if_any(db, params(user.tenant_id, phone="555-123-4567"))
    lead = await LeadStore.get_lead(db, user.tenant_id, created.id)
    lead.status = "incomplete"
    await db.flush()

    await LeadStore.persist_lead_if_any(db, params(user.tenant_id, phone="555-123-4567", intent_keywords=["demo"]))
    await db.refresh(lead)
    assert lead.status == "new"
    assert lead.phone == "555-123-4567"
    assert lead.intent_keywords == ["demo"]


@pytest.mark.asyncio
async def test_leads_are_not_shared_across_tenants(db):
    a = await make_tenant(db, "Alpha")
    b = await make_tenant(db, "Beta")
    await LeadStore.persist_lead_if_any(db, params(a.tenant_id, email="x@y.io"))
    await LeadStore.persist_lead_if_any(db, params(b.tenant_id, email="x@y.io"))
    assert await lead_count(db, a.tenant_id) == 1
    assert await lead_count(db, b.tenant_id) == 1


@pytest.mark.asyncio
async def test_insert_race_falls_back_to_update(db, monkeypatch):
    user = await make_tenant(db)
    winner = await LeadStore.persist_lead_if_any(db, params(user.tenant_id, email="race@example.com"))

    real_find = LeadStore._find_existing
    calls = {"n": 0}

    async def stale_first_lookup(*args):
        calls["n"] += 1
        if calls["n"] == 1:
            return None
        return await real_find(*args)

    monkeypatch.setattr(LeadStore, "_find_existing", staticmethod(stale_first_lookup))
    loser = await LeadStore.persist_lead_if_any(
        db, params(user.tenant_id, email="race@example.com", last_message="second")
    )
    assert loser.created is False
    assert loser.id == winner.id
    assert await lead_count(db, user.tenant_id) == 1


@pytest.mark.asyncio
async def test_name_and_company_derived_from_user_turns(db):
    user = await make_tenant(db)
    result = await LeadStore.persist_lead_if_any(
        db,
        params(
            user.tenant_id,
            email="ana@contoso.io",
            conversation=[
                {"role": "user", "content": "I am Ana Lima from Contoso."},
                {"role": "assistant", "content": "Nice to meet you! I am Bot."},
            ],
        ),
    )
    lead = await LeadStore.get_lead(db, user.tenant_id, result.id)
    assert lead.name == "Ana Lima"
    assert lead.company == "Contoso"


# ── Dashboard queries ─────────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_list_update_delete_are_tenant_scoped(db):
    a = await make_tenant(db, "Alpha")
    b = await make_tenant(db, "Beta")
    created = await LeadStore.persist_lead_if_any(db, params(a.tenant_id, email="lead@alpha.io"))
    await LeadStore.persist_lead_if_any(db, params(a.tenant_id, email="other@alpha.io"))

    total, items = await LeadStore.list_leads(db, a.tenant_id, search="lead@")
    assert total == 1 and items[0].id == created.id

    total, _ = await LeadStore.list_leads(db, b.tenant_id)
    assert total == 0

    with pytest.raises(NotFoundError):
        await LeadStore.get_lead(db, b.tenant_id, created.id)

    updated = await LeadStore.update_lead(db, a.tenant_id, created.id, status="qualified", notes="hot")
    assert updated.status == "qualified" and updated.notes == "hot"

    with pytest.raises(ValidationError):
        await LeadStore.update_lead(db, a.tenant_id, created.id, status="won")

    await LeadStore.delete_lead(db, a.tenant_id, created.id)
    total, _ = await LeadStore.list_leads(db, a.tenant_id)
    assert total == 1


# ── Background dispatch ───────────────────────────────────────────────────────

@pytest.mark.asyncio
async def test_dispatcher_persists_in_its_own_session(session_factory):
    async with session_factory() as setup:
        user = await make_tenant(setup)
        await setup.commit()

    dispatcher = LeadCaptureDispatcher(session_factory)
    task = dispatcher.dispatch(params(user.tenant_id, email="bg@example.com"))
    await dispatcher.drain()

    assert task.result().created
    assert dispatcher.completed == 1 and dispatcher.failures == 0
    async with session_factory() as check:
        assert await lead_count(check, user.tenant_id) == 1


@pytest.mark.asyncio
async def test_dispatcher_logs_and_counts_failures(session_factory, monkeypatch):
    async def boom(db, p):
        raise RuntimeError("db unavailable")

    monkeypatch.setattr(LeadStore, "persist_lead_if_any", staticmethod(boom))
    dispatcher = LeadCaptureDispatcher(session_factory)
    task = dispatcher.dispatch(params("tenant-x", email="bg@example.com"))
    await dispatcher.drain()

    assert task.result() is None
    assert dispatcher.failures == 1
    assert dispatcher.pending == 0
