import asyncio
from unittest.mock import AsyncMock, patch

import pytest
from sqlalchemy.exc import OperationalError
from sqlalchemy.future import select

from models.credit_transaction import CreditTransaction
from services.credits import (
    CreditLedger,
    InsufficientCreditsError,
    LedgerUnavailableError,
    PromoCodeError,
)


USER_ID = "ledger-user"


async def _transactions(session, user_id=USER_ID):
    result = await session.execute(
        select(CreditTransaction).where(CreditTransaction.user_id == user_id).order_by(CreditTransaction.created_at)
    )
    return list(result.scalars().all())


@pytest.mark.asyncio
async def test_get_balance_creates_empty_row_once(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)

    first = await ledger.get_balance(USER_ID)
    second = await ledger.get_balance(USER_ID)

    assert first.id == second.id
    assert (first.credits_total, first.credits_used, first.credits_available) == (0, 0, 0)
    assert await _transactions(db_session) == []


@pytest.mark.asyncio
async def test_charge_and_refund_keep_available_equal_total_minus_used(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)
    await ledger.add_credits(USER_ID, 20)

    charge = await ledger.reserve_and_charge(USER_ID, 5, "scan", reference_id="scan-1")
    assert charge.charged == 5
    assert charge.credits_remaining == 15

    refund = await ledger.refund(USER_ID, 5, "scan refund", reference_id="scan-1")
    assert refund.credits_remaining == 20

    balance = await ledger.get_balance(USER_ID)
    assert balance.credits_total == 20
    assert balance.credits_used == 0
    assert balance.credits_available == balance.credits_total - balance.credits_used

    entries = await _transactions(db_session)
    assert sorted(entry.transaction_type for entry in entries) == ["purchase", "refund", "usage"]
    usage = next(entry for entry in entries if entry.transaction_type == "usage")
    assert usage.amount == -5
    assert (usage.credits_before, usage.credits_after) == (20, 15)
    assert usage.reference_id == "scan-1"


@pytest.mark.asyncio
async def test_insufficient_credits_never_charges_partially(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)
    await ledger.add_credits(USER_ID, 3)

    with pytest.raises(InsufficientCreditsError) as exc_info:
        await ledger.reserve_and_charge(USER_ID, 5, "scan")

    assert exc_info.value.required == 5
    assert exc_info.value.available == 3
    balance = await ledger.get_balance(USER_ID)
    assert balance.credits_used == 0
    assert [entry.transaction_type for entry in await _transactions(db_session)] == ["purchase"]


@pytest.mark.asyncio
async def test_exact_balance_can_be_spent(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)
    await ledger.add_credits(USER_ID, 5)

    charge = await ledger.reserve_and_charge(USER_ID, 5, "scan")

    assert charge.credits_remaining == 0
    with pytest.raises(InsufficientCreditsError):
        await ledger.reserve_and_charge(USER_ID, 1, "scan")


@pytest.mark.asyncio
async def test_concurrent_charges_cannot_overdraw(session_maker, db_session, make_user):
    await make_user(USER_ID)
    await CreditLedger(db_session).add_credits(USER_ID, 7)

    async def _attempt():
        async with session_maker() as session:
            try:
                return await CreditLedger(session).reserve_and_charge(USER_ID, 5, "scan")
            except (InsufficientCreditsError, LedgerUnavailableError) as exc:
                return exc

    outcomes = await asyncio.gather(*(_attempt() for _ in range(3)))

    charged = [item for item in outcomes if not isinstance(item, Exception)]
    assert len(charged) == 1
    async with session_maker() as session:
        balance = await CreditLedger(session).get_balance(USER_ID)
        assert balance.credits_used == 5
        assert balance.credits_available == 2
        usage = [entry for entry in await _transactions(session) if entry.transaction_type == "usage"]
        assert len(usage) == 1


@pytest.mark.asyncio
async def test_refund_floors_used_at_zero_and_records_applied_amount(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)
    await ledger.add_credits(USER_ID, 10)
    await ledger.reserve_and_charge(USER_ID, 2, "scan")

    refund = await ledger.refund(USER_ID, 5, "over-refund")

    assert refund.refunded == 2
    assert refund.credits_remaining == 10
    balance = await ledger.get_balance(USER_ID)
    assert balance.credits_used == 0
    assert balance.credits_available == 10

    entries = await _transactions(db_session)
    assert sum(entry.amount for entry in entries) == balance.credits_available
    refund_row = next(entry for entry in entries if entry.transaction_type == "refund")
    assert refund_row.amount == 2
    assert (refund_row.credits_before, refund_row.credits_after) == (8, 10)
    assert refund_row.metadata_json["requested_credits"] == 5


@pytest.mark.asyncio
async def test_refund_with_nothing_outstanding_releases_nothing(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)
    await ledger.add_credits(USER_ID, 10)

    refund = await ledger.refund(USER_ID, 5, "stray refund")

    assert refund.refunded == 0
    assert refund.credits_remaining == 10
    entries = await _transactions(db_session)
    assert sum(entry.amount for entry in entries) == 10


@pytest.mark.asyncio
async def test_non_positive_amounts_are_rejected(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)

    with pytest.raises(ValueError):
        await ledger.reserve_and_charge(USER_ID, 0, "scan")
    with pytest.raises(ValueError):
        await ledger.refund(USER_ID, -1, "refund")
    with pytest.raises(ValueError):
        await ledger.add_credits(USER_ID, 0)


@pytest.mark.asyncio
async def test_store_failure_surfaces_as_ledger_unavailable(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)
    await ledger.add_credits(USER_ID, 10)

    failing_execute = AsyncMock(side_effect=OperationalError("UPDATE", {}, Exception("disk I/O error")))
    with patch.object(type(db_session), "execute", new=failing_execute):
        with pytest.raises(LedgerUnavailableError):
            await ledger.reserve_and_charge(USER_ID, 5, "scan")

    assert (await ledger.get_balance(USER_ID)).credits_used == 0


@pytest.mark.asyncio
async def test_purchase_with_package_bonus_and_promo(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)

    payload = await ledger.purchase_credits(USER_ID, "growth", promo_code="launch25", payment_reference="pi_123")

    assert payload["credits"] == 200
    assert payload["bonus_credits"] == 20 + 25
    assert payload["balance"]["credits_total"] == 245
    assert payload["balance"]["bonus_credits"] == 45
    assert payload["balance"]["credits_available"] == 245

    entries = {entry.transaction_type: entry for entry in await _transactions(db_session)}
    assert set(entries) == {"purchase", "promo"}
    assert entries["purchase"].amount == 220
    assert entries["purchase"].reference_id == "pi_123"
    assert entries["purchase"].metadata_json["promo_code"] == "LAUNCH25"
    assert entries["promo"].amount == 25

    with pytest.raises(PromoCodeError):
        await ledger.redeem_promo_code(USER_ID, "LAUNCH25")


@pytest.mark.asyncio
async def test_purchase_rejects_unknown_package_and_promo(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)

    with pytest.raises(ValueError):
        await ledger.purchase_credits(USER_ID, "enterprise-plus")
    with pytest.raises(PromoCodeError):
        await ledger.purchase_credits(USER_ID, "starter", promo_code="NOPE")
    assert await _transactions(db_session) == []


@pytest.mark.asyncio
async def test_promo_code_redeems_once_per_user(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)

    balance = await ledger.redeem_promo_code(USER_ID, " launch25 ")
    assert balance.credits_total == 25
    assert balance.bonus_credits == 25

    with pytest.raises(PromoCodeError):
        await ledger.redeem_promo_code(USER_ID, "LAUNCH25")

    entries = await _transactions(db_session)
    assert [entry.transaction_type for entry in entries] == ["promo"]


@pytest.mark.asyncio
async def test_bonus_credits_are_recorded_as_bonus(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)

    balance = await ledger.add_bonus_credits(USER_ID, 10, "referral")

    assert balance.credits_total == 10
    assert balance.bonus_credits == 10
    [entry] = await _transactions(db_session)
    assert entry.transaction_type == "bonus"
    assert entry.metadata_json["bonus_type"] == "referral"


@pytest.mark.asyncio
async def test_history_filters_and_usage_stats(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)
    await ledger.add_credits(USER_ID, 50)
    await ledger.reserve_and_charge(USER_ID, 5, "scan one")
    await ledger.reserve_and_charge(USER_ID, 5, "scan two")
    await ledger.refund(USER_ID, 5, "scan two failed")

    usage_only = await ledger.get_transaction_history(USER_ID, transaction_type="usage")
    assert len(usage_only) == 2
    assert all(entry.transaction_type == "usage" for entry in usage_only)
    assert len(await ledger.get_transaction_history(USER_ID, limit=2)) == 2

    stats = await ledger.get_usage_stats(USER_ID)
    assert stats["total_charged"] == 10
    assert stats["total_refunded"] == 5
    assert stats["net_used"] == 5
    assert stats["total_added"] == 50
    assert stats["charge_count"] == 2
    assert stats["refund_count"] == 1
    assert stats["net_used_by_feature"] == {"ai_visibility_scan": 5}


@pytest.mark.asyncio
async def test_history_and_usage_store_failures_surface_as_ledger_unavailable(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)
    await ledger.add_credits(USER_ID, 10)

    failing_execute = AsyncMock(side_effect=OperationalError("SELECT", {}, Exception("connection reset")))
    with patch.object(type(db_session), "execute", new=failing_execute):
        with pytest.raises(LedgerUnavailableError):
            await ledger.get_transaction_history(USER_ID)
        with pytest.raises(LedgerUnavailableError):
            await ledger.get_usage_stats(USER_ID)

    assert len(await ledger.get_transaction_history(USER_ID)) == 1


@pytest.mark.asyncio
async def test_promo_redemption_is_enforced_by_the_store(db_session, make_user):
    await make_user(USER_ID)
    ledger = CreditLedger(db_session)
    await ledger.redeem_promo_code(USER_ID, "LAUNCH25")

    # Both requests passed the early lookup before either committed.
    raced_check = AsyncMock(return_value=("LAUNCH25", 25))
    with patch.object(CreditLedger, "_check_promo_code", new=raced_check):
        with pytest.raises(PromoCodeError):
            await ledger.redeem_promo_code(USER_ID, "LAUNCH25")
        with pytest.raises(PromoCodeError):
            await ledger.purchase_credits(USER_ID, "starter", promo_code="LAUNCH25")

    balance = await ledger.get_balance(USER_ID)
    assert balance.credits_total == 25
    assert [entry.transaction_type for entry in await _transactions(db_session)] == ["promo"]


@pytest.mark.asyncio
async def test_concurrent_promo_redemptions_grant_once(session_maker, db_session, make_user):
    await make_user(USER_ID)
    await CreditLedger(db_session).get_balance(USER_ID)

    async def _attempt():
        async with session_maker() as session:
            try:
                return await CreditLedger(session).redeem_promo_code(USER_ID, "LAUNCH25")
            except (PromoCodeError, LedgerUnavailableError) as exc:
                return exc

    outcomes = await asyncio.gather(*(_attempt() for _ in range(3)))

    granted = [item for item in outcomes if not isinstance(item, Exception)]
    assert len(granted) == 1
    async with session_maker() as session:
        balance = await CreditLedger(session).get_balance(USER_ID)
        assert balance.credits_total == 25
        promos = [entry for entry in await _transactions(session) if entry.transaction_type == "promo"]
        assert len(promos) == 1
