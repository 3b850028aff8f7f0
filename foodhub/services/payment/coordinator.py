"""
Payment Session Coordinator

Bridges local orders to the external payment gateway and absorbs its
asynchronous callbacks, which may arrive late, twice, out of order or never.

Every operation that reads and then writes payment state does so under the
order's row lock, so two callbacks for the same order, or a callback racing
open_session or a restaurant action, are serialized by the database.

Reconciliation rules for a callback (session, reported status, gateway ref):

    gateway ref differs from the recorded one        -> ConsistencyError
    session terminal, same status reported again      -> no-op
    session terminal, different terminal status       -> ConsistencyError
    reported status is pending                        -> no-op
    session pending, success reported                 -> session success, order paid
    session pending, failure reported                 -> session failed, order cancelled

Every ConsistencyError is preceded by a committed PaymentIncident row; the
recorded status is never overwritten.
"""

import asyncio
import logging
import uuid
from dataclasses import dataclass
from typing import Optional

from sqlalchemy import case, select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from foodhub.core.config import get_settings, redact_session_id
from foodhub.core.exceptions import (
    ConflictError,
    ConsistencyError,
    InvalidTransitionError,
    NotFoundError,
    UpstreamError,
)
from foodhub.models import (
    IncidentKind,
    OrderAction,
    OrderStatus,
    PaymentIncident,
    PaymentSession,
    PaymentStatus,
)
from foodhub.services.orders import OrderLifecycleManager, PaymentActor, allowed_actions
from foodhub.services.payment.base import BasePaymentGateway, GatewayCallback

logger = logging.getLogger(__name__)

_OUTCOME_ACTIONS = {
    PaymentStatus.SUCCESS: OrderAction.PAYMENT_SUCCEEDED,
    PaymentStatus.FAILED: OrderAction.PAYMENT_FAILED,
}


@dataclass
class ReconcileResult:
    """What a callback did. changed=False means it was an idempotent no-op."""
    session_id: str
    order_id: uuid.UUID
    changed: bool
    session_status: PaymentStatus
    order_status: OrderStatus
    incident_id: Optional[uuid.UUID] = None


@dataclass
class SessionStatusView:
    """Payment state of an order as currently recorded."""
    order_id: uuid.UUID
    order_status: OrderStatus
    session_id: Optional[str] = None
    session_status: Optional[PaymentStatus] = None
    gateway_order_ref: Optional[str] = None

    @property
    def has_active_session(self) -> bool:
        return self.session_status is PaymentStatus.PENDING


class PaymentSessionCoordinator:
    """Opens gateway sessions and reconciles gateway outcomes."""

    def __init__(
        self,
        gateway: BasePaymentGateway,
        lifecycle: OrderLifecycleManager,
        timeout: Optional[float] = None,
    ):
        self.gateway = gateway
        self.lifecycle = lifecycle
        self.timeout = timeout if timeout is not None else get_settings().payment_gateway_timeout_seconds

    @property
    def store(self):
        return self.lifecycle.store

    # =========================================================================
    # OPEN
    # =========================================================================

    async def open_session(self, db: AsyncSession, order_id: uuid.UUID) -> PaymentSession:
        """
        Create the order's payment session at the gateway and record it.

        Check-then-insert runs in one transaction under the order lock.

        Raises:
            NotFoundError: unknown order
            ConflictError: a pending session exists or the order no longer
                awaits payment
            UpstreamError: gateway failed or timed out; nothing recorded,
                safe to retry
        """
        try:
            order = await self.store.lock_order(db, order_id)

            if OrderAction.PAYMENT_SUCCEEDED not in allowed_actions(order.status):
                raise ConflictError(f"Order {order_id} is {order.status.value} and no longer awaits payment")

            active = await self._pending_session(db, order_id)
            if active is not None:
                raise ConflictError(
                    f"Order {order_id} already has an active payment session",
                    detail=active.session_id,
                )

            result = await self._create_gateway_session(order.id, order.total)

            session = PaymentSession(
                session_id=result.session_id,
                order_id=order.id,
                status=PaymentStatus.PENDING,
                gateway_order_ref=result.gateway_order_ref,
                amount=order.total,
            )
            db.add(session)
            await db.commit()
        except IntegrityError:
            # A concurrent open_session won the partial unique index
            await db.rollback()
            raise ConflictError(f"Order {order_id} already has an active payment session")
        except Exception:
            await db.rollback()
            raise

        logger.info(
            f"Payment session {redact_session_id(session.session_id)} opened for order {order_id} "
            f"(gateway ref {session.gateway_order_ref}, amount {session.amount})"
        )
        return session

    async def _create_gateway_session(self, order_id: uuid.UUID, amount: int):
        try:
            result = await asyncio.wait_for(
                self.gateway.create_session(amount=amount, order_ref=str(order_id)),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            logger.warning(
                f"Gateway {self.gateway.provider_name} timed out after {self.timeout}s "
                f"creating a session for order {order_id}"
            )
            raise UpstreamError(f"Payment gateway timed out after {self.timeout}s")

        if not result.success:
            logger.warning(
                f"Gateway {self.gateway.provider_name} refused session for order {order_id}: "
                f"{result.error_code} - {result.error_message}"
            )
            raise UpstreamError(
                "Payment gateway could not create a session",
                detail=result.error_message or result.error_code,
            )
        return result

    # =========================================================================
    # RECONCILE
    # =========================================================================

    async def reconcile(self, db: AsyncSession, callback: GatewayCallback) -> ReconcileResult:
        """
        Merge a gateway-reported outcome into local state.

        Raises:
            NotFoundError: no session matches the callback
            ConsistencyError: the callback contradicts recorded state
        """
        found = await self._find_session(db, callback)
        session_id = found.session_id
        order_id = found.order_id

        events = []
        incident_id = None
        problem: Optional[tuple[IncidentKind, str]] = None

        try:
            order = await self.store.lock_order(db, order_id)
            session = await self._reload_session(db, session_id)
            recorded = session.status
            order_status = order.status

            if callback.gateway_order_ref != session.gateway_order_ref:
                problem = (
                    IncidentKind.GATEWAY_REF_MISMATCH,
                    f"callback gateway ref {callback.gateway_order_ref!r} does not match "
                    f"recorded {session.gateway_order_ref!r}",
                )
            elif recorded.is_terminal and callback.status not in (recorded, PaymentStatus.PENDING):
                problem = (
                    IncidentKind.CONFLICTING_TERMINAL_STATUS,
                    f"gateway reported {callback.status.value} after {recorded.value} was recorded",
                )

            if problem is not None:
                await db.rollback()
            elif recorded.is_terminal or callback.status is PaymentStatus.PENDING:
                await db.rollback()
                logger.info(
                    f"Callback for session {redact_session_id(session_id)} ignored: "
                    f"recorded={recorded.value}, reported={callback.status.value}"
                )
                return ReconcileResult(
                    session_id=session_id,
                    order_id=order_id,
                    changed=False,
                    session_status=recorded,
                    order_status=order_status,
                )
            else:
                session.status = callback.status
                actor = PaymentActor(order_id=session.order_id, session_id=session_id)
                try:
                    events.append(self.lifecycle.apply(db, order, _OUTCOME_ACTIONS[callback.status], actor))
                except InvalidTransitionError:
                    incident_id = self._note_orphan(db, session, order.status)
                await db.commit()
        except Exception:
            await db.rollback()
            raise

        if problem is not None:
            kind, detail = problem
            incident = await self.record_incident(
                db,
                kind=kind,
                session_id=session_id,
                order_id=order_id,
                recorded_status=recorded.value,
                reported_status=callback.status.value,
                reported_gateway_ref=callback.gateway_order_ref,
                detail=detail,
            )
            raise ConsistencyError(
                f"Payment session {redact_session_id(session_id)}: {detail}",
                session_id=session_id,
                incident_id=incident.id,
            )

        logger.info(
            f"Session {redact_session_id(session_id)} reconciled: {recorded.value} -> {session.status.value}, "
            f"order {order_id} is {order.status.value}"
        )
        await self.lifecycle.publish(events)

        return ReconcileResult(
            session_id=session_id,
            order_id=order_id,
            changed=True,
            session_status=session.status,
            order_status=order.status,
            incident_id=incident_id,
        )

    def _note_orphan(self, db: AsyncSession, session: PaymentSession, order_status: OrderStatus):
        """
        The gateway settled a session whose order already left
        payment_pending. A failure needs nothing more; a success means money
        was taken for an order that will not be fulfilled.
        """
        if session.status is not PaymentStatus.SUCCESS:
            logger.info(
                f"Session {redact_session_id(session.session_id)} failed after order {session.order_id} "
                f"became {order_status.value}; order unchanged"
            )
            return None

        incident = PaymentIncident(
            id=uuid.uuid4(),
            kind=IncidentKind.ORPHANED_PAYMENT,
            session_id=session.session_id,
            order_id=session.order_id,
            recorded_status=PaymentStatus.PENDING.value,
            reported_status=PaymentStatus.SUCCESS.value,
            reported_gateway_ref=session.gateway_order_ref,
            detail=f"payment captured while order was {order_status.value}; refund required",
        )
        db.add(incident)
        logger.error(
            f"Orphaned payment: session {redact_session_id(session.session_id)} succeeded but order "
            f"{session.order_id} is {order_status.value} (incident {incident.id})"
        )
        return incident.id

    async def record_incident(self, db: AsyncSession, **fields) -> PaymentIncident:
        """Durably record a consistency problem in its own transaction."""
        incident = PaymentIncident(**fields)
        db.add(incident)
        try:
            await db.commit()
        except Exception:
            await db.rollback()
            raise
        logger.error(
            f"Payment incident {incident.id} ({incident.kind.value}) for session "
            f"{redact_session_id(incident.session_id)}: {incident.detail}"
        )
        return incident

    # =========================================================================
    # QUERY / POLL
    # =========================================================================

    async def current_status(self, db: AsyncSession, order_id: uuid.UUID) -> SessionStatusView:
        """
        The order's active session, or its most recent one if none is
        active. Used by pollers of sessions stuck in pending.
        """
        order = await self.store.get_order(db, order_id)
        result = await db.execute(
            select(PaymentSession)
            .where(PaymentSession.order_id == order_id)
            .order_by(
                case((PaymentSession.status == PaymentStatus.PENDING, 0), else_=1),
                PaymentSession.created_at.desc(),
            )
            .limit(1)
            .execution_options(populate_existing=True)
        )
        session = result.scalar_one_or_none()
        if session is None:
            return SessionStatusView(order_id=order.id, order_status=order.status)
        return SessionStatusView(
            order_id=order.id,
            order_status=order.status,
            session_id=session.session_id,
            session_status=session.status,
            gateway_order_ref=session.gateway_order_ref,
        )

    async def refresh(self, db: AsyncSession, order_id: uuid.UUID) -> SessionStatusView:
        """
        Poll the gateway for the active session of an order and reconcile a
        terminal answer exactly as if it had arrived by callback.

        Raises:
            UpstreamError: gateway unreachable or timed out
            ConsistencyError: see reconcile
        """
        view = await self.current_status(db, order_id)
        if not view.has_active_session:
            return view

        try:
            result = await asyncio.wait_for(
                self.gateway.fetch_status(view.gateway_order_ref),
                timeout=self.timeout,
            )
        except asyncio.TimeoutError:
            raise UpstreamError(f"Payment gateway timed out after {self.timeout}s")
        if not result.success:
            raise UpstreamError("Payment gateway status lookup failed", detail=result.error_message)

        if result.status is PaymentStatus.PENDING:
            logger.debug(f"Session {redact_session_id(view.session_id)} still pending at the gateway")
            return view

        await self.reconcile(
            db,
            GatewayCallback(
                session_id=view.session_id,
                status=result.status,
                gateway_order_ref=view.gateway_order_ref,
            ),
        )
        return await self.current_status(db, order_id)

    # =========================================================================
    # HELPERS
    # =========================================================================

    async def _pending_session(self, db: AsyncSession, order_id: uuid.UUID) -> Optional[PaymentSession]:
        result = await db.execute(
            select(PaymentSession).where(
                PaymentSession.order_id == order_id,
                PaymentSession.status == PaymentStatus.PENDING,
            )
        )
        return result.scalars().first()

    async def _find_session(self, db: AsyncSession, callback: GatewayCallback) -> PaymentSession:
        if callback.session_id is not None:
            session = await db.get(PaymentSession, callback.session_id)
            if session is None:
                raise NotFoundError(f"Payment session {redact_session_id(callback.session_id)} not found")
            return session

        result = await db.execute(
            select(PaymentSession).where(PaymentSession.gateway_order_ref == callback.gateway_order_ref)
        )
        session = result.scalars().first()
        if session is None:
            raise NotFoundError(f"No payment session for gateway ref {callback.gateway_order_ref}")
        return session

    async def _reload_session(self, db: AsyncSession, session_id: str) -> PaymentSession:
        result = await db.execute(
            select(PaymentSession)
            .where(PaymentSession.session_id == session_id)
            .execution_options(populate_existing=True)
        )
        return result.scalar_one()
