"""Credit ledger: prepaid balance, atomic charge/refund, purchases and usage accounting."""

from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional, Tuple

from sqlalchemy import case, func, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.future import select

from config import settings
from models.credit_balance import CreditBalance
from models.credit_transaction import TRANSACTION_TYPES, CreditTransaction

logger = logging.getLogger(__name__)

SCAN_FEATURE = "ai_visibility_scan"
REFUND_SETTLE_ATTEMPTS = 5


class InsufficientCreditsError(Exception):
    """Raised when a charge would overdraw the available balance."""

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(
            f"Insufficient credits. Required: {required}, available: {available}. "
            "Top up credits to continue."
        )


class LedgerUnavailableError(RuntimeError):
    """Raised when the backing store fails during a ledger operation."""


class PromoCodeError(ValueError):
    """Raised for unknown or already-redeemed promo codes."""


@dataclass(frozen=True)
class ChargeResult:
    charged: int
    credits_remaining: int
    transaction_id: str


@dataclass(frozen=True)
class RefundResult:
    refunded: int
    credits_remaining: int
    transaction_id: str


def promo_reference(code: str) -> str:
    return f"promo:{code}"


def balance_snapshot(balance: CreditBalance) -> Dict[str, int]:
    return {
        "credits_total": int(balance.credits_total or 0),
        "credits_used": int(balance.credits_used or 0),
        "credits_available": int(balance.credits_available or 0),
        "bonus_credits": int(balance.bonus_credits or 0),
    }


def transaction_snapshot(entry: CreditTransaction) -> Dict[str, Any]:
    return {
        "id": entry.id,
        "transaction_type": entry.transaction_type,
        "amount": entry.amount,
        "credits_before": entry.credits_before,
        "credits_after": entry.credits_after,
        "feature": entry.feature,
        "description": entry.description,
        "reference_id": entry.reference_id,
        "metadata": entry.metadata_json or {},
        "created_at": entry.created_at.isoformat() if entry.created_at else None,
    }


class CreditLedger:
    """All balance mutations go through a single conditional UPDATE plus one ledger row.

    No method reads a balance, computes a new value in Python and writes it
    back unguarded; the check and the increment happen in the same statement
    so two concurrent charges for one user cannot both pass the balance check.
    Promo redemptions are backed by a partial unique index on
    (user_id, reference_id).
    """

    def __init__(self, db: AsyncSession) -> None:
        self.db = db

    # ------------------------------------------------------------------ balance

    async def _select_balance(self, user_id: str) -> Optional[CreditBalance]:
        result = await self.db.execute(
            select(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one_or_none()

    async def _ensure_balance_row(self, user_id: str) -> CreditBalance:
        balance = await self._select_balance(user_id)
        if balance is not None:
            return balance

        balance = CreditBalance(user_id=user_id, credits_total=0, credits_used=0, bonus_credits=0)
        self.db.add(balance)
        try:
            await self.db.flush()
        except IntegrityError:
            # Another request created the row first.
            await self.db.rollback()
            balance = await self._select_balance(user_id)
            if balance is None:
                raise
        return balance

    async def get_balance(self, user_id: str) -> CreditBalance:
        """Return the user's balance, creating an empty one on first access."""
        try:
            balance = await self._ensure_balance_row(user_id)
            await self.db.commit()
            return balance
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Credit balance lookup failed for user %s: %s", user_id, exc)
            raise LedgerUnavailableError("Credit balance is temporarily unavailable.") from exc

    def _record(
        self,
        *,
        user_id: str,
        transaction_type: str,
        amount: int,
        credits_after: int,
        feature: Optional[str],
        description: Optional[str],
        reference_id: Optional[str],
        metadata: Optional[Dict[str, Any]],
    ) -> CreditTransaction:
        if transaction_type not in TRANSACTION_TYPES:
            raise ValueError(f"Invalid transaction type: {transaction_type}")
        entry = CreditTransaction(
            id=str(uuid.uuid4()),
            user_id=user_id,
            transaction_type=transaction_type,
            amount=int(amount),
            credits_before=int(credits_after) - int(amount),
            credits_after=int(credits_after),
            feature=feature,
            description=description,
            reference_id=reference_id,
            metadata_json=metadata or {},
        )
        self.db.add(entry)
        return entry

    # --------------------------------------------------------------- usage side

    async def reserve_and_charge(
        self,
        user_id: str,
        amount: int,
        reason: str,
        *,
        feature: str = SCAN_FEATURE,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> ChargeResult:
        """Atomically charge `amount` credits or raise InsufficientCreditsError; never charges partially."""
        cost = int(amount)
        if cost <= 0:
            raise ValueError("amount must be greater than 0")

        try:
            await self._ensure_balance_row(user_id)
            stmt = (
                update(CreditBalance)
                .where(
                    CreditBalance.user_id == user_id,
                    CreditBalance.credits_available >= cost,
                )
                .values(credits_used=CreditBalance.credits_used + cost, updated_at=func.now())
                .returning(CreditBalance.credits_total, CreditBalance.credits_used)
                .execution_options(synchronize_session=False)
            )
            row = (await self.db.execute(stmt)).first()
            if row is None:
                current = await self._select_balance(user_id)
                available = int(current.credits_available) if current is not None else 0
                await self.db.commit()
                raise InsufficientCreditsError(required=cost, available=available)

            credits_after = int(row[0]) - int(row[1])
            entry = self._record(
                user_id=user_id,
                transaction_type="usage",
                amount=-cost,
                credits_after=credits_after,
                feature=feature,
                description=reason,
                reference_id=reference_id,
                metadata=metadata,
            )
            await self.db.commit()
        except InsufficientCreditsError:
            raise
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Credit charge failed for user %s (%s credits): %s", user_id, cost, exc)
            raise LedgerUnavailableError("Credit charge failed; the ledger is unavailable.") from exc

        logger.info("Charged %s credits to user %s (remaining=%s, ref=%s)", cost, user_id, credits_after, reference_id)
        return ChargeResult(charged=cost, credits_remaining=credits_after, transaction_id=entry.id)

    async def _release_usage(self, user_id: str, credits: int) -> Tuple[int, Any]:
        """Lower `credits_used` by min(credits_used, credits); returns (applied, (total, used))."""
        row = (
            await self.db.execute(
                update(CreditBalance)
                .where(CreditBalance.user_id == user_id, CreditBalance.credits_used >= credits)
                .values(credits_used=CreditBalance.credits_used - credits, updated_at=func.now())
                .returning(CreditBalance.credits_total, CreditBalance.credits_used)
                .execution_options(synchronize_session=False)
            )
        ).first()
        if row is not None:
            return credits, row

        # Less usage outstanding than requested: release exactly what is there,
        # guarded on the value just read so a concurrent charge forces a re-read.
        for _ in range(REFUND_SETTLE_ATTEMPTS):
            current = await self._select_balance(user_id)
            if current is None:
                raise LedgerUnavailableError(f"No credit balance row for user {user_id}")
            outstanding = int(current.credits_used or 0)
            applied = min(outstanding, credits)
            row = (
                await self.db.execute(
                    update(CreditBalance)
                    .where(CreditBalance.user_id == user_id, CreditBalance.credits_used == outstanding)
                    .values(credits_used=CreditBalance.credits_used - applied, updated_at=func.now())
                    .returning(CreditBalance.credits_total, CreditBalance.credits_used)
                    .execution_options(synchronize_session=False)
                )
            ).first()
            if row is not None:
                return applied, row
        raise LedgerUnavailableError("Credit refund could not settle against a changing balance.")

    async def refund(
        self,
        user_id: str,
        amount: int,
        reason: str,
        *,
        feature: str = SCAN_FEATURE,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> RefundResult:
        """Undo up to `amount` of prior usage; `credits_used` never drops below 0 and no new credits are added.

        The ledger row records the amount actually released, so summing
        transaction amounts always reproduces `credits_available`.
        """
        requested = int(amount)
        if requested <= 0:
            raise ValueError("amount must be greater than 0")

        try:
            await self._ensure_balance_row(user_id)
            applied, row = await self._release_usage(user_id, requested)
            credits_after = int(row[0]) - int(row[1])
            entry_metadata = dict(metadata or {})
            if applied != requested:
                entry_metadata["requested_credits"] = requested
            entry = self._record(
                user_id=user_id,
                transaction_type="refund",
                amount=applied,
                credits_after=credits_after,
                feature=feature,
                description=reason,
                reference_id=reference_id,
                metadata=entry_metadata,
            )
            await self.db.commit()
        except LedgerUnavailableError:
            await self.db.rollback()
            raise
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Credit refund failed for user %s (%s credits): %s", user_id, requested, exc)
            raise LedgerUnavailableError("Credit refund failed; the ledger is unavailable.") from exc

        if applied != requested:
            logger.warning("Refund for user %s capped at %s of %s requested credits (ref=%s)", user_id, applied, requested, reference_id)
        logger.info("Refunded %s credits to user %s (remaining=%s, ref=%s)", applied, user_id, credits_after, reference_id)
        return RefundResult(refunded=applied, credits_remaining=credits_after, transaction_id=entry.id)

    # ------------------------------------------------------------ purchase side

    async def _apply_grant(
        self,
        user_id: str,
        credits: int,
        bonus_credits: int = 0,
        *,
        transaction_type: str,
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
    ) -> CreditTransaction:
        """Stage one grant (balance update plus ledger row) and flush it; the caller commits."""
        base = int(credits)
        bonus = int(bonus_credits)
        if base < 0 or bonus < 0:
            raise ValueError("credits must not be negative")
        grant = base + bonus
        if grant <= 0:
            raise ValueError("credits must be greater than 0")

        await self._ensure_balance_row(user_id)
        stmt = (
            update(CreditBalance)
            .where(CreditBalance.user_id == user_id)
            .values(
                credits_total=CreditBalance.credits_total + grant,
                bonus_credits=CreditBalance.bonus_credits + bonus,
                updated_at=func.now(),
            )
            .returning(CreditBalance.credits_total, CreditBalance.credits_used)
            .execution_options(synchronize_session=False)
        )
        row = (await self.db.execute(stmt)).first()
        if row is None:
            raise LedgerUnavailableError(f"No credit balance row for user {user_id}")

        entry = self._record(
            user_id=user_id,
            transaction_type=transaction_type,
            amount=grant,
            credits_after=int(row[0]) - int(row[1]),
            feature=None,
            description=description or f"Added {base} credits" + (f" + {bonus} bonus" if bonus else ""),
            reference_id=reference_id,
            metadata={**(metadata or {}), "credits": base, "bonus_credits": bonus},
        )
        await self.db.flush()
        logger.info("Added %s credits (+%s bonus) to user %s via %s", base, bonus, user_id, transaction_type)
        return entry

    async def _commit_grants(
        self,
        user_id: str,
        grants: List[Dict[str, Any]],
        *,
        promo_code: Optional[str] = None,
    ) -> CreditBalance:
        """Apply every grant in one transaction; either all are recorded or none."""
        try:
            for grant in grants:
                await self._apply_grant(user_id, **grant)
            await self.db.commit()
            return await self._select_balance(user_id)
        except LedgerUnavailableError:
            await self.db.rollback()
            raise
        except IntegrityError as exc:
            await self.db.rollback()
            if promo_code:
                logger.info("Promo code %s was redeemed concurrently by user %s", promo_code, user_id)
                raise PromoCodeError(f"Promo code {promo_code} was already redeemed.") from exc
            logger.error("Adding credits failed for user %s: %s", user_id, exc)
            raise LedgerUnavailableError("Adding credits failed; the ledger is unavailable.") from exc
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Adding credits failed for user %s: %s", user_id, exc)
            raise LedgerUnavailableError("Adding credits failed; the ledger is unavailable.") from exc

    async def add_credits(
        self,
        user_id: str,
        credits: int,
        bonus_credits: int = 0,
        *,
        transaction_type: str = "purchase",
        description: Optional[str] = None,
        reference_id: Optional[str] = None,
        metadata: Optional[Dict[str, Any]] = None,
        commit: bool = True,
    ) -> CreditBalance:
        """Grow `credits_total` by credits + bonus (and `bonus_credits` by bonus).

        With ``commit=False`` the grant is only flushed; the caller owns the
        transaction and sees raw SQLAlchemy errors.
        """
        grant = {
            "credits": credits,
            "bonus_credits": bonus_credits,
            "transaction_type": transaction_type,
            "description": description,
            "reference_id": reference_id,
            "metadata": metadata,
        }
        if not commit:
            await self._apply_grant(user_id, **grant)
            return await self._select_balance(user_id)
        return await self._commit_grants(user_id, [grant])

    async def add_bonus_credits(
        self,
        user_id: str,
        credits: int,
        bonus_type: str,
        *,
        commit: bool = True,
    ) -> CreditBalance:
        """Welcome/referral/loyalty style grants."""
        return await self.add_credits(
            user_id,
            0,
            credits,
            transaction_type="bonus",
            description=f"{bonus_type} bonus: {int(credits)} credits",
            metadata={"bonus_type": bonus_type},
            commit=commit,
        )

    async def purchase_credits(
        self,
        user_id: str,
        package_id: str,
        *,
        promo_code: Optional[str] = None,
        payment_reference: Optional[str] = None,
    ) -> Dict[str, Any]:
        """Credit a configured package; a promo code is redeemed alongside as its own `promo` entry.

        The purchase and the promo grant commit together, so a rejected promo
        leaves no purchase behind.
        """
        package = settings.CREDIT_PACKAGES.get(str(package_id or "").strip().lower())
        if not package:
            raise ValueError(f"Unknown credit package: {package_id}")

        credits = max(int(package.get("credits", 0)), 0)
        bonus = max(int(package.get("bonus", 0)), 0)
        code, promo_bonus = None, 0
        if promo_code:
            code, promo_bonus = await self._check_promo_code(user_id, promo_code)

        grants = [
            {
                "credits": credits,
                "bonus_credits": bonus,
                "transaction_type": "purchase",
                "description": f"Purchased {credits} credits"
                + (f" + {bonus} bonus" if bonus else "")
                + f" ({package_id} package)",
                "reference_id": payment_reference,
                "metadata": {"package_id": package_id, "promo_code": code},
            }
        ]
        if code:
            grants.append(self._promo_grant(code, promo_bonus))
        balance = await self._commit_grants(user_id, grants, promo_code=code)
        return {
            "package_id": package_id,
            "credits": credits,
            "bonus_credits": bonus + promo_bonus,
            "balance": balance_snapshot(balance),
        }

    async def _check_promo_code(self, user_id: str, promo_code: str) -> Tuple[str, int]:
        """Early rejection; the unique redemption index is what enforces once per user."""
        code = str(promo_code or "").strip().upper()
        bonus = settings.PROMO_CODES.get(code)
        if not code or bonus is None:
            raise PromoCodeError(f"Unknown promo code: {promo_code}")

        try:
            existing = await self.db.execute(
                select(CreditTransaction.id).where(
                    CreditTransaction.user_id == user_id,
                    CreditTransaction.transaction_type == "promo",
                    CreditTransaction.reference_id == promo_reference(code),
                )
            )
            already_redeemed = existing.first() is not None
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Promo code lookup failed for user %s: %s", user_id, exc)
            raise LedgerUnavailableError("Promo code lookup failed; the ledger is unavailable.") from exc
        if already_redeemed:
            raise PromoCodeError(f"Promo code {code} was already redeemed.")
        return code, max(int(bonus), 0)

    @staticmethod
    def _promo_grant(code: str, bonus: int) -> Dict[str, Any]:
        return {
            "credits": 0,
            "bonus_credits": bonus,
            "transaction_type": "promo",
            "description": f"Promo code {code}: {bonus} credits",
            "reference_id": promo_reference(code),
            "metadata": {"promo_code": code},
        }

    async def redeem_promo_code(self, user_id: str, promo_code: str) -> CreditBalance:
        """Once per user per code."""
        code, bonus = await self._check_promo_code(user_id, promo_code)
        return await self._commit_grants(user_id, [self._promo_grant(code, bonus)], promo_code=code)

    # ----------------------------------------------------------------- history

    async def get_transaction_history(
        self,
        user_id: str,
        *,
        limit: int = 20,
        offset: int = 0,
        transaction_type: Optional[str] = None,
    ) -> List[CreditTransaction]:
        stmt = select(CreditTransaction).where(CreditTransaction.user_id == user_id)
        if transaction_type:
            stmt = stmt.where(CreditTransaction.transaction_type == transaction_type)
        stmt = (
            stmt.order_by(CreditTransaction.created_at.desc(), CreditTransaction.id.desc())
            .offset(max(int(offset), 0))
            .limit(max(min(int(limit), 100), 1))
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.db.execute(stmt)
            return list(result.scalars().all())
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Transaction history lookup failed for user %s: %s", user_id, exc)
            raise LedgerUnavailableError("Transaction history is temporarily unavailable.") from exc

    async def get_usage_stats(self, user_id: str) -> Dict[str, Any]:
        try:
            totals_result = await self.db.execute(
                select(
                    CreditTransaction.transaction_type,
                    func.coalesce(func.sum(CreditTransaction.amount), 0),
                    func.count(CreditTransaction.id),
                )
                .where(CreditTransaction.user_id == user_id)
                .group_by(CreditTransaction.transaction_type)
            )
            totals = totals_result.all()
            feature_result = await self.db.execute(
                select(
                    CreditTransaction.feature,
                    func.coalesce(func.sum(CreditTransaction.amount), 0),
                )
                .where(
                    CreditTransaction.user_id == user_id,
                    CreditTransaction.transaction_type.in_(("usage", "refund")),
                )
                .group_by(CreditTransaction.feature)
            )
            features = feature_result.all()
        except SQLAlchemyError as exc:
            await self.db.rollback()
            logger.error("Usage stats lookup failed for user %s: %s", user_id, exc)
            raise LedgerUnavailableError("Usage statistics are temporarily unavailable.") from exc

        by_type: Dict[str, Dict[str, int]] = {}
        for transaction_type, total, count in totals:
            by_type[str(transaction_type)] = {"amount": int(total or 0), "count": int(count or 0)}

        by_feature: Dict[str, int] = {}
        for feature, net_amount in features:
            by_feature[str(feature or "unknown")] = -int(net_amount or 0)

        usage = by_type.get("usage", {"amount": 0, "count": 0})
        refund = by_type.get("refund", {"amount": 0, "count": 0})
        added = sum(by_type.get(kind, {}).get("amount", 0) for kind in ("purchase", "bonus", "promo"))
        return {
            "total_charged": -int(usage["amount"]),
            "total_refunded": int(refund["amount"]),
            "net_used": -int(usage["amount"]) - int(refund["amount"]),
            "total_added": int(added),
            "charge_count": int(usage["count"]),
            "refund_count": int(refund["count"]),
            "net_used_by_feature": by_feature,
            "by_type": by_type,
        }

    async def get_credit_summary(self, user_id: str) -> Dict[str, Any]:
        balance = await self.get_balance(user_id)
        recent = await self.get_transaction_history(user_id, limit=30)
        return {
            **balance_snapshot(balance),
            "costs": {SCAN_FEATURE: max(int(settings.SCAN_CREDIT_COST), 0)},
            "recent_entries": [transaction_snapshot(entry) for entry in recent],
        }
