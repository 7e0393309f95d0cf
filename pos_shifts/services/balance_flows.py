"""Recalculation of carrier balance flows from their sales."""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
import logging

from sqlalchemy import func
from sqlalchemy.exc import SQLAlchemyError

from pos_shifts.core.db import db_session
from pos_shifts.core.models import BalanceFlow, BalanceSale, PhoneLine
from pos_shifts.services.assignments import NotFound, ShiftServiceError
from pos_shifts.utils.formatting import to_money

logger = logging.getLogger(__name__)

# Flows named like this are never recalculated.
EXCLUDED_FLOW_NAME = "flujo claro"
BONUS_CARRIER_NAME = "tigo"
BONUS_RATE = Decimal("0.055")


@dataclass
class RecalculationResult:
    updated: int = 0
    errors: int = 0
    failed_ids: list[int] = field(default_factory=list)


def is_excluded(flow_name: str | None) -> bool:
    return EXCLUDED_FLOW_NAME in (flow_name or "").lower()


def adjusted_purchase(purchased, carrier_name: str | None) -> Decimal:
    """Purchased balance plus the carrier bonus, if the carrier earns one."""
    amount = Decimal(str(purchased or 0))
    if BONUS_CARRIER_NAME in (carrier_name or "").lower():
        return amount * (Decimal("1") + BONUS_RATE)
    return amount


def compute_final_balance(initial, purchased, sold, carrier_name: str | None) -> Decimal:
    """final = initial + adjusted purchase - sold."""
    return to_money(
        Decimal(str(initial or 0))
        + adjusted_purchase(purchased, carrier_name)
        - Decimal(str(sold or 0))
    )


def _sold_total(local, flow_id: int) -> Decimal:
    total = (
        local.query(func.coalesce(func.sum(BalanceSale.amount), 0))
        .filter(
            BalanceSale.flow_id == flow_id,
            BalanceSale.active.is_(True),
        )
        .scalar()
    )
    return to_money(total)


def _recompute(local, flow: BalanceFlow) -> None:
    carrier = local.get(PhoneLine, flow.phone_line_id)
    if carrier is None:
        raise NotFound(f"Carrier {flow.phone_line_id} of balance flow {flow.id} not found.")
    sold = _sold_total(local, flow.id)
    flow.sold_balance = sold
    flow.final_balance = compute_final_balance(
        flow.initial_balance,
        flow.purchased_balance,
        sold,
        carrier.name,
    )
    local.flush()


def recompute_flow(flow_id: int, session=None) -> BalanceFlow:
    """Recalculate one flow; excluded flows are returned unchanged.

    :raises NotFound: if the flow or its carrier is missing
    """
    with db_session(session=session) as local:
        flow = local.get(BalanceFlow, flow_id)
        if flow is None:
            raise NotFound(f"Balance flow {flow_id} not found.")
        if not is_excluded(flow.name):
            _recompute(local, flow)
        return flow


def recompute_all(session=None) -> RecalculationResult:
    """Recalculate sold and final balance of every active flow.

    A failing row is logged and counted; the batch goes on.

    :return: RecalculationResult
    """
    result = RecalculationResult()
    with db_session(session=session) as local:
        flows = (
            local.query(BalanceFlow)
            .filter(BalanceFlow.active.is_(True))
            .order_by(BalanceFlow.id)
            .all()
        )
        for flow in flows:
            if is_excluded(flow.name):
                logger.debug("balance flow %s (%s) skipped", flow.id, flow.name)
                continue
            flow_id = flow.id
            try:
                with local.begin_nested():
                    _recompute(local, flow)
            except (ShiftServiceError, SQLAlchemyError):
                logger.exception("balance flow %s could not be recalculated", flow_id)
                result.errors += 1
                result.failed_ids.append(flow_id)
                continue
            result.updated += 1

    logger.info("balance flows recalculated: %s updated, %s errors", result.updated, result.errors)
    return result


def sum_sold_for_active(register_number: int | None = None, session=None) -> Decimal:
    """Total sold balance over active flows, optionally for one register."""
    with db_session(session=session) as local:
        query = local.query(func.coalesce(func.sum(BalanceFlow.sold_balance), 0)).filter(
            BalanceFlow.active.is_(True)
        )
        if register_number is not None:
            query = query.filter(BalanceFlow.register_number == register_number)
        return to_money(query.scalar())


def last_inactive_final_balance(carrier_id: int, register_number: int | None, session=None) -> Decimal | None:
    """Final balance of the latest deactivated flow of a carrier on a register.

    Used as the initial balance of the next flow.
    """
    with db_session(session=session) as local:
        flow = (
            local.query(BalanceFlow)
            .filter(
                BalanceFlow.phone_line_id == carrier_id,
                BalanceFlow.register_number == register_number,
                BalanceFlow.active.is_(False),
            )
            .order_by(BalanceFlow.occurred_at.desc(), BalanceFlow.id.desc())
            .first()
        )
        if flow is None:
            return None
        return Decimal(flow.final_balance or 0)
