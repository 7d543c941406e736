"""FundingService — admission decisions and reservation bookkeeping.

The shared funding account is the only contended resource in the system.
Admission and reservation happen in one conditional UPDATE, so two
concurrent dispatches cannot both pass the check on the same money. A
reservation is settled when the provider accepts the request and released
when submission fails; the amount held is tracked on the order as
`reserved_amount`.

Methods that take an order run inside the caller's transaction. Only
record_transfer owns its unit of work.
"""

import logging

from sqlalchemy.ext.asyncio import AsyncSession

from config.settings import settings
from src.gf_admin.infrastructure.alerts import resolve_alerts, write_alert
from src.gf_common.cents import apply_bps_ceil, cents_to_display
from src.gf_common.datetime_utils import hours_from_now
from src.gf_common.enums import (
    AlertSeverity,
    AlertType,
    FundingStatus,
    OrderStatus,
    TransitionCause,
)
from src.gf_common.errors import FundingAccountNotFoundError, InsufficientFundsError
from src.gf_funding.application.schemas import FundingStatusResponse, TransferResponse
from src.gf_funding.domain.admission import hold_reason, recommended_transfer, required_funds
from src.gf_funding.domain.models import AdmissionDecision, FundingAccount
from src.gf_funding.domain.repository import FundingRepositoryProtocol
from src.gf_funding.infrastructure.persistence import FundingRepository
from src.gf_ledger.application.service import LedgerService
from src.gf_ledger.domain.models import Order

logger = logging.getLogger(__name__)


class FundingService:
    def __init__(
        self,
        repo: FundingRepositoryProtocol | None = None,
        ledger: LedgerService | None = None,
    ) -> None:
        self._repo: FundingRepositoryProtocol = repo or FundingRepository()
        self._ledger = ledger or LedgerService()

    async def get_account(self, db: AsyncSession) -> FundingAccount:
        account = await self._repo.get_default_account(db)
        if account is None:
            raise FundingAccountNotFoundError()
        return account

    def required_for(self, order: Order, account: FundingAccount) -> int:
        return required_funds(
            order.estimated_cost, account.safety_margin, settings.FUNDING_BUFFER_BPS
        )

    # ------------------------------------------------------------------
    # Admission (caller's transaction)
    # ------------------------------------------------------------------

    async def reserve_for(
        self, order: Order, db: AsyncSession, *, bypass: bool = False
    ) -> AdmissionDecision:
        """Admit `order` against the live balance and reserve its cost.

        Raises InsufficientFundsError when the balance does not cover the
        requirement. With bypass=True the balance check is skipped (admin
        force-process) but the cost is still reserved so later admissions
        see it.
        """
        account = await self.get_account(db)
        required = 0 if bypass else self.required_for(order, account)
        updated = await self._repo.try_reserve(
            account.id, order.estimated_cost, None if bypass else required, order.id, db
        )
        if updated is None:
            logger.info(
                "Order %s not admitted: required %d, available %d",
                order.id,
                required,
                account.available_balance,
            )
            raise InsufficientFundsError(required, account.available_balance)

        order.reserved_amount = order.estimated_cost
        return AdmissionDecision(
            required=required,
            available=updated.available_balance + order.estimated_cost,
        )

    async def hold(
        self, order: Order, refusal: InsufficientFundsError, db: AsyncSession
    ) -> Order:
        """Park `order` in awaiting_funds with a reason and an ETA.

        An order that is already waiting only gets its reason and ETA
        refreshed; the alert is written on the first hold.
        """
        order.funding_status = FundingStatus.AWAITING_FUNDS.value
        order.funding_hold_reason = hold_reason(refusal)
        order.expected_funding_date = hours_from_now(settings.FUNDING_RETRY_ETA_HOURS)

        if order.status == OrderStatus.AWAITING_FUNDS.value:
            return await self._ledger.save(order, db)

        await self._ledger.transition(
            order,
            OrderStatus.AWAITING_FUNDS,
            TransitionCause.ADMISSION,
            db,
            message=order.funding_hold_reason,
            data={"required": refusal.required, "available": refusal.available},
        )
        await write_alert(
            AlertType.INSUFFICIENT_FUNDS,
            AlertSeverity.WARNING,
            order.funding_hold_reason,
            db,
            order_id=order.id,
            data={
                "required": refusal.required,
                "available": refusal.available,
                "shortfall": refusal.shortfall,
            },
        )
        return order

    @staticmethod
    def clear_hold(order: Order) -> None:
        order.funding_status = None
        order.funding_hold_reason = None
        order.expected_funding_date = None

    async def settle(self, order: Order, db: AsyncSession) -> None:
        if order.reserved_amount <= 0:
            return
        account = await self.get_account(db)
        await self._repo.settle(account.id, order.reserved_amount, order.id, db)
        order.reserved_amount = 0

    async def release(self, order: Order, db: AsyncSession) -> None:
        if order.reserved_amount <= 0:
            return
        account = await self.get_account(db)
        await self._repo.release(account.id, order.reserved_amount, order.id, db)
        logger.info("Released %d cents reserved for order %s", order.reserved_amount, order.id)
        order.reserved_amount = 0

    # ------------------------------------------------------------------
    # Operator views / top-ups
    # ------------------------------------------------------------------

    async def get_status(self, db: AsyncSession) -> FundingStatusResponse:
        account = await self.get_account(db)
        count, pending_value = await self._ledger.sum_awaiting_funds(db)
        required_total = (
            apply_bps_ceil(pending_value, settings.FUNDING_BUFFER_BPS) + account.safety_margin
            if count
            else 0
        )
        shortfall = max(required_total - account.available_balance, 0)
        return FundingStatusResponse.build(
            account_name=account.name,
            available=account.available_balance,
            reserved=account.reserved_balance,
            safety_margin=account.safety_margin,
            orders_awaiting=count,
            pending_value=pending_value,
            required_total=required_total,
            recommended=recommended_transfer(shortfall, settings.FUNDING_RECOMMENDED_TRANSFER_BPS),
        )

    async def record_transfer(
        self,
        amount: int,
        reference: str,
        description: str | None,
        actor: str,
        db: AsyncSession,
    ) -> TransferResponse:
        try:
            account = await self.get_account(db)
            account, entry = await self._repo.record_transfer(
                account.id, amount, reference, description, db
            )
            resolved = await resolve_alerts(AlertType.INSUFFICIENT_FUNDS, actor, db)
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.info(
            "Funding transfer %s of %s recorded by %s, balance now %s",
            reference,
            cents_to_display(amount),
            actor,
            cents_to_display(account.available_balance),
        )
        return TransferResponse(
            entry_id=entry.id,
            amount_cents=amount,
            available_balance_cents=account.available_balance,
            available_balance_display=cents_to_display(account.available_balance),
            alerts_resolved=resolved,
        )
