import logging
import uuid
from datetime import datetime, timedelta
from enum import StrEnum

from ..domain.errors import (
    InconsistentStateError,
    ReservationNotFoundError,
    ReservationUnavailableError,
    ReservationValidationError,
    SlotUnavailableError,
    VersionConflictError,
)
from ..domain.repositories import ExpiryScheduler, ReservationRepository, SlotRepository, TransactionCommitter
from ..domain.services import (
    BookingSnapshot,
    ensure_same_slot,
    ensure_transition,
    hold_deadline_passed,
    is_slot_available,
    is_valid_for_cancellation,
    is_valid_for_confirmation,
    is_valid_to_expire,
)
from ..models import ReservationStatus, RoomReservation
from ..utils.time import utc_now_naive

logger = logging.getLogger(__name__)

HOLD_TTL = timedelta(minutes=5)


class ExpiryOutcome(StrEnum):
    EXPIRED = "EXPIRED"
    SKIPPED = "SKIPPED"


async def create_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    committer: TransactionCommitter,
    scheduler: ExpiryScheduler,
    *,
    room_id: str,
    slot_key: str,
    user_id: str,
    hold_ttl: timedelta = HOLD_TTL,
    now: datetime | None = None,
) -> RoomReservation:
    slot = await slot_repo.get(room_id, slot_key)
    if slot is None or not is_slot_available(slot):
        logger.warning("Slot not available: %s:%s", room_id, slot_key)
        raise SlotUnavailableError()

    now = now or utc_now_naive()
    expires_at = now + hold_ttl
    reservation = RoomReservation(
        id=str(uuid.uuid4()),
        room_id=room_id,
        slot_key=slot_key,
        user_id=user_id,
        status=ReservationStatus.HOLD,
        hold_expires_at=expires_at,
        version=1,
        created_at=now,
        updated_at=now,
    )
    try:
        await committer.commit(
            [
                slot_repo.build_hold(slot, reservation_id=reservation.id, now=now),
                res_repo.build_insert(reservation),
            ]
        )
    except VersionConflictError as exc:
        # Another caller took the slot between our read and our commit.
        logger.warning("Lost race for slot %s:%s: %s", room_id, slot_key, exc)
        raise SlotUnavailableError() from exc
    logger.info("Reservation %s created atomically", reservation.id)

    try:
        scheduler.schedule(reservation.id, expires_at)
    except Exception:
        # The hold is committed; a missing trigger only delays its release.
        logger.exception("Could not schedule hold expiry for reservation %s", reservation.id)

    stored = await res_repo.get(reservation.id)
    return stored if stored is not None else reservation


async def confirm_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    committer: TransactionCommitter,
    *,
    reservation_id: str,
    now: datetime | None = None,
) -> RoomReservation:
    snapshot = await _load_snapshot(slot_repo, res_repo, reservation_id)
    if not is_valid_for_confirmation(snapshot):
        logger.warning("Confirmation rejected: reservation %r, slot %r", snapshot.reservation, snapshot.slot)
        raise ReservationUnavailableError()
    ensure_transition(snapshot.reservation.status, ReservationStatus.CONFIRMED)

    now = now or utc_now_naive()
    if hold_deadline_passed(snapshot.reservation, now=now):
        # Deadline is enforced by the expiry trigger only.
        logger.warning(
            "Confirming reservation %s after its hold deadline %s",
            reservation_id,
            snapshot.reservation.hold_expires_at,
        )
    await committer.commit(
        [
            slot_repo.build_confirm(snapshot.slot, now=now),
            res_repo.build_confirm(snapshot.reservation, now=now),
        ]
    )
    logger.info("Reservation %s confirmed", reservation_id)
    return await _reload(res_repo, reservation_id)


async def cancel_reservation(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    committer: TransactionCommitter,
    *,
    reservation_id: str,
    now: datetime | None = None,
) -> tuple[RoomReservation, ReservationStatus]:
    """Cancel a held or confirmed reservation. Returns the updated record and its previous status."""
    snapshot = await _load_snapshot(slot_repo, res_repo, reservation_id)
    if not is_valid_for_cancellation(snapshot):
        logger.warning("Cancellation rejected: reservation %r, slot %r", snapshot.reservation, snapshot.slot)
        raise ReservationValidationError("Reservation not valid for cancellation")
    previous = snapshot.reservation.status
    ensure_transition(previous, ReservationStatus.CANCELLED)

    now = now or utc_now_naive()
    await committer.commit(
        [
            slot_repo.build_release(snapshot.slot, now=now),
            res_repo.build_cancel(snapshot.reservation, now=now),
        ]
    )
    logger.info("Reservation %s cancelled (was %s)", reservation_id, previous)
    return await _reload(res_repo, reservation_id), previous


async def expire_hold(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    committer: TransactionCommitter,
    *,
    reservation_id: str,
    now: datetime | None = None,
) -> ExpiryOutcome:
    """
    Release a hold whose deadline has passed. Only the expiry trigger calls
    this, and it may deliver late or more than once, so a reservation that
    already left HOLD is a successful no-op.
    """
    snapshot = await _load_snapshot(slot_repo, res_repo, reservation_id)
    if snapshot.reservation.status != ReservationStatus.HOLD:
        logger.info(
            "Reservation %s no longer in HOLD status (%s), skipping expiry",
            reservation_id,
            snapshot.reservation.status,
        )
        return ExpiryOutcome.SKIPPED

    now = now or utc_now_naive()
    if not is_valid_to_expire(snapshot, now=now):
        logger.warning("Expiry rejected: reservation %r, slot %r", snapshot.reservation, snapshot.slot)
        raise ReservationValidationError("Reservation not valid to expire")
    ensure_transition(snapshot.reservation.status, ReservationStatus.EXPIRED)

    try:
        await committer.commit(
            [
                slot_repo.build_release(snapshot.slot, now=now),
                res_repo.build_expire(snapshot.reservation, now=now),
            ]
        )
    except VersionConflictError:
        current = await res_repo.get(reservation_id)
        if current is not None and current.status != ReservationStatus.HOLD:
            logger.info("Reservation %s left HOLD concurrently (%s), skipping expiry", reservation_id, current.status)
            return ExpiryOutcome.SKIPPED
        raise
    logger.info("Reservation %s expired", reservation_id)
    return ExpiryOutcome.EXPIRED


async def get_reservation(
    res_repo: ReservationRepository,
    *,
    reservation_id: str,
) -> RoomReservation | None:
    return await res_repo.get(reservation_id)


async def list_user_reservations(
    res_repo: ReservationRepository,
    *,
    user_id: str,
) -> list[RoomReservation]:
    return await res_repo.list_by_user(user_id)


async def _load_snapshot(
    slot_repo: SlotRepository,
    res_repo: ReservationRepository,
    reservation_id: str,
) -> BookingSnapshot:
    reservation = await res_repo.get(reservation_id)
    if reservation is None:
        raise ReservationNotFoundError(f"Reservation not found with id {reservation_id}")
    slot = await slot_repo.get(reservation.room_id, reservation.slot_key)
    if slot is None:
        logger.error(
            "Reservation %s references missing slot %s:%s",
            reservation_id,
            reservation.room_id,
            reservation.slot_key,
        )
        raise InconsistentStateError(f"Slot not found with id {reservation.slot_key}")
    try:
        ensure_same_slot(reservation, slot)
    except InconsistentStateError:
        logger.error("Reservation %r and slot %r disagree", reservation, slot)
        raise
    return BookingSnapshot(reservation=reservation, slot=slot)


async def _reload(res_repo: ReservationRepository, reservation_id: str) -> RoomReservation:
    reservation = await res_repo.get(reservation_id)
    if reservation is None:
        raise InconsistentStateError(f"Reservation {reservation_id} vanished after commit")
    return reservation
