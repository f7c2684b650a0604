from __future__ import annotations

import logging
from datetime import datetime
from typing import Any, List, Mapping, Sequence

from sqlalchemy import insert, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ..domain.errors import SlotAlreadyExistsError, StoreUnavailableError, VersionConflictError
from ..domain.repositories import ConditionalWrite, ReservationRepository, SlotRepository, TransactionCommitter
from ..models import EscapeRoomSlot, ReservationStatus, RoomReservation, SlotStatus
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)


class SqlAlchemySlotRepository(SlotRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, room_id: str, slot_key: str) -> EscapeRoomSlot | None:
        stmt = (
            select(EscapeRoomSlot)
            .where(EscapeRoomSlot.room_id == room_id, EscapeRoomSlot.slot_key == slot_key)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.session.scalar(stmt)
        except SQLAlchemyError as exc:
            logger.error("Failed to get slot %s:%s - %s", room_id, slot_key, exc)
            raise StoreUnavailableError("slot store unavailable") from exc
        if result is None:
            logger.warning("Slot %s:%s not found", room_id, slot_key)
        return result if isinstance(result, EscapeRoomSlot) else None

    async def create(self, *, room_id: str, slot_key: str) -> EscapeRoomSlot:
        now = utc_now_naive()
        slot = EscapeRoomSlot(
            room_id=room_id,
            slot_key=slot_key,
            status=SlotStatus.AVAILABLE,
            occupying_reservation_id=None,
            version=1,
            created_at=now,
            updated_at=now,
        )
        self.session.add(slot)
        try:
            await self.session.commit()
        except IntegrityError as exc:
            await self.session.rollback()
            raise SlotAlreadyExistsError(f"slot {room_id}:{slot_key} already exists") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Failed to provision slot %s:%s - %s", room_id, slot_key, exc)
            raise StoreUnavailableError("slot store unavailable") from exc
        logger.info("Slot %s:%s provisioned", room_id, slot_key)
        return slot

    def build_conditional_update(
        self,
        slot: EscapeRoomSlot,
        values: Mapping[str, Any],
        expected_version: int,
        *,
        now: datetime,
    ) -> ConditionalWrite:
        stmt = (
            update(EscapeRoomSlot)
            .where(
                EscapeRoomSlot.room_id == slot.room_id,
                EscapeRoomSlot.slot_key == slot.slot_key,
                EscapeRoomSlot.version == expected_version,
            )
            .values(**values, version=expected_version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return ConditionalWrite(
            target=f"slot {slot.room_id}:{slot.slot_key}",
            statement=stmt,
            expected_version=expected_version,
        )

    def build_hold(self, slot: EscapeRoomSlot, *, reservation_id: str, now: datetime) -> ConditionalWrite:
        return self.build_conditional_update(
            slot,
            {"status": SlotStatus.HOLD, "occupying_reservation_id": reservation_id},
            slot.version,
            now=now,
        )

    def build_confirm(self, slot: EscapeRoomSlot, *, now: datetime) -> ConditionalWrite:
        return self.build_conditional_update(slot, {"status": SlotStatus.BOOKED}, slot.version, now=now)

    def build_release(self, slot: EscapeRoomSlot, *, now: datetime) -> ConditionalWrite:
        return self.build_conditional_update(
            slot,
            {"status": SlotStatus.AVAILABLE, "occupying_reservation_id": None},
            slot.version,
            now=now,
        )


class SqlAlchemyReservationRepository(ReservationRepository):
    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def get(self, reservation_id: str) -> RoomReservation | None:
        stmt = (
            select(RoomReservation)
            .where(RoomReservation.id == reservation_id)
            .execution_options(populate_existing=True)
        )
        try:
            result = await self.session.scalar(stmt)
        except SQLAlchemyError as exc:
            logger.error("Failed to get reservation %s - %s", reservation_id, exc)
            raise StoreUnavailableError("reservation store unavailable") from exc
        if result is None:
            logger.warning("Reservation %s not found", reservation_id)
        return result if isinstance(result, RoomReservation) else None

    async def list_by_user(self, user_id: str) -> List[RoomReservation]:
        stmt = (
            select(RoomReservation)
            .where(RoomReservation.user_id == user_id)
            .order_by(RoomReservation.created_at)
            .execution_options(populate_existing=True)
        )
        try:
            rows = await self.session.scalars(stmt)
        except SQLAlchemyError as exc:
            logger.error("Failed to list reservations for user %s - %s", user_id, exc)
            raise StoreUnavailableError("reservation store unavailable") from exc
        return list(rows.all())

    def build_insert(self, reservation: RoomReservation) -> ConditionalWrite:
        stmt = insert(RoomReservation).values(
            id=reservation.id,
            room_id=reservation.room_id,
            slot_key=reservation.slot_key,
            user_id=reservation.user_id,
            status=reservation.status,
            hold_expires_at=reservation.hold_expires_at,
            version=reservation.version,
            created_at=reservation.created_at,
            updated_at=reservation.updated_at,
        )
        return ConditionalWrite(target=f"reservation {reservation.id}", statement=stmt)

    def build_conditional_update(
        self,
        reservation: RoomReservation,
        values: Mapping[str, Any],
        expected_version: int,
        *,
        now: datetime,
    ) -> ConditionalWrite:
        stmt = (
            update(RoomReservation)
            .where(RoomReservation.id == reservation.id, RoomReservation.version == expected_version)
            .values(**values, version=expected_version + 1, updated_at=now)
            .execution_options(synchronize_session=False)
        )
        return ConditionalWrite(
            target=f"reservation {reservation.id}",
            statement=stmt,
            expected_version=expected_version,
        )

    def build_confirm(self, reservation: RoomReservation, *, now: datetime) -> ConditionalWrite:
        return self.build_conditional_update(
            reservation,
            {"status": ReservationStatus.CONFIRMED, "hold_expires_at": None},
            reservation.version,
            now=now,
        )

    def build_cancel(self, reservation: RoomReservation, *, now: datetime) -> ConditionalWrite:
        return self.build_conditional_update(
            reservation, {"status": ReservationStatus.CANCELLED}, reservation.version, now=now
        )

    def build_expire(self, reservation: RoomReservation, *, now: datetime) -> ConditionalWrite:
        return self.build_conditional_update(
            reservation, {"status": ReservationStatus.EXPIRED}, reservation.version, now=now
        )


class SqlAlchemyTransactionCommitter(TransactionCommitter):
    """Applies conditional writes all-or-nothing inside one session transaction."""

    def __init__(self, session: AsyncSession) -> None:
        self.session = session

    async def commit(self, writes: Sequence[ConditionalWrite]) -> None:
        try:
            for write in writes:
                result = await self.session.execute(write.statement)
                if write.expected_version is not None and result.rowcount != 1:
                    raise VersionConflictError(f"{write.target} changed since version {write.expected_version}")
            await self.session.commit()
        except VersionConflictError:
            await self.session.rollback()
            raise
        except IntegrityError as exc:
            await self.session.rollback()
            raise VersionConflictError(f"conditional insert rejected: {exc.orig}") from exc
        except SQLAlchemyError as exc:
            await self.session.rollback()
            logger.error("Transaction of %d writes failed: %s", len(writes), exc)
            raise StoreUnavailableError("record store unavailable") from exc
