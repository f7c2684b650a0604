import logging
from datetime import timedelta
from typing import Any, List, Union

from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import get_settings
from ..deps import get_expiry_callback_subject, get_expiry_scheduler, get_session
from ..domain.errors import (
    ReservationUnavailableError,
    ReservationValidationError,
    StoreUnavailableError,
    VersionConflictError,
)
from ..domain.repositories import ExpiryScheduler
from ..infrastructure.repositories import (
    SqlAlchemyReservationRepository,
    SqlAlchemySlotRepository,
    SqlAlchemyTransactionCommitter,
)
from ..models import ReservationStatus, RoomReservation
from ..schemas import (
    ExpiryCallback,
    ExpiryCompleted,
    ExpiryInputError,
    MessageResponse,
    ReservationCreate,
    ReservationRead,
)
from ..usecases import reservations as reservation_usecase
from ..utils.audit_log import AuditAction, AuditInitiator, audit_reservation

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/reservations", tags=["reservations"])
internal_router = APIRouter(prefix="/internal/reservations", tags=["internal"])

INTERNAL_ERROR = "Internal server error"


def _hold_ttl() -> timedelta:
    return timedelta(seconds=get_settings().hold_ttl_seconds)


def _audit(
    action: AuditAction,
    initiator: AuditInitiator,
    reservation: RoomReservation,
    status_from: Any = None,
) -> None:
    try:
        audit_reservation(action, initiator, reservation, status_from=status_from)
    except RuntimeError as exc:
        logger.error("Audit log failed for reservation %s: %s", reservation.id, exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR) from exc


@router.post("/create", response_model=ReservationRead, status_code=status.HTTP_201_CREATED)
async def create_reservation(
    payload: ReservationCreate,
    session: AsyncSession = Depends(get_session),
    scheduler: ExpiryScheduler = Depends(get_expiry_scheduler),
) -> ReservationRead:
    user_id, room_id, slot_id = payload.user_id, payload.room_id, payload.slot_id
    if not (user_id and room_id and slot_id):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Missing required fields: userId, roomId, slotId",
        )
    logger.info("Creating reservation for %s:%s by %s", room_id, slot_id, user_id)
    try:
        reservation = await reservation_usecase.create_reservation(
            SqlAlchemySlotRepository(session),
            SqlAlchemyReservationRepository(session),
            SqlAlchemyTransactionCommitter(session),
            scheduler,
            room_id=room_id,
            slot_key=slot_id,
            user_id=user_id,
            hold_ttl=_hold_ttl(),
        )
    except ReservationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except StoreUnavailableError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR)

    _audit("reservation.held", "user", reservation)
    return ReservationRead.from_db(reservation=reservation)


@router.get("/getReservationById/{reservation_id}", response_model=ReservationRead)
async def get_reservation(
    reservation_id: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
) -> ReservationRead:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        reservation = await reservation_usecase.get_reservation(res_repo, reservation_id=reservation_id)
    except StoreUnavailableError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR)
    if reservation is None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="No reservation found")
    return ReservationRead.from_db(reservation=reservation)


@router.get("/getReservationByUserId/{user_id}", response_model=List[ReservationRead])
async def list_user_reservations(
    user_id: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
) -> list[ReservationRead]:
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        rows = await reservation_usecase.list_user_reservations(res_repo, user_id=user_id)
    except StoreUnavailableError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR)
    return [ReservationRead.from_db(reservation=res) for res in rows]


@router.post("/confirm/{reservation_id}", response_model=MessageResponse)
async def confirm_reservation(
    reservation_id: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
) -> MessageResponse:
    logger.info("Confirming reservation: %s", reservation_id)
    try:
        reservation = await reservation_usecase.confirm_reservation(
            SqlAlchemySlotRepository(session),
            SqlAlchemyReservationRepository(session),
            SqlAlchemyTransactionCommitter(session),
            reservation_id=reservation_id,
        )
    except ReservationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except VersionConflictError:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(ReservationUnavailableError()))
    except StoreUnavailableError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR)

    _audit("reservation.confirmed", "user", reservation, status_from=ReservationStatus.HOLD)
    return MessageResponse(message="Reservation confirmed")


@router.post("/cancel/{reservation_id}", response_model=MessageResponse)
async def cancel_reservation(
    reservation_id: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
) -> MessageResponse:
    logger.info("Cancelling reservation: %s", reservation_id)
    try:
        reservation, previous = await reservation_usecase.cancel_reservation(
            SqlAlchemySlotRepository(session),
            SqlAlchemyReservationRepository(session),
            SqlAlchemyTransactionCommitter(session),
            reservation_id=reservation_id,
        )
    except ReservationValidationError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except VersionConflictError:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="Reservation was modified concurrently, please retry",
        )
    except StoreUnavailableError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR)

    _audit("reservation.cancelled", "user", reservation, status_from=previous)
    return MessageResponse(message="Reservation cancelled")


@internal_router.post("/expire", response_model=Union[ExpiryCompleted, ExpiryInputError])
async def expire_reservation_hold(
    payload: ExpiryCallback,
    token_subject: str = Depends(get_expiry_callback_subject),
    session: AsyncSession = Depends(get_session),
) -> Union[ExpiryCompleted, ExpiryInputError]:
    """
    Callback for the delayed-invocation service. Bad input answers 200 with
    ERROR_INPUT so the scheduler stops; infrastructure failures answer 500 so
    it retries.
    """
    reservation_id = payload.reservation_id
    if not reservation_id:
        return ExpiryInputError(message="Missing required field: reservationId")
    if reservation_id != token_subject:
        return ExpiryInputError(message="Callback token does not match reservationId")

    logger.info("Expiring hold for reservationId=%s", reservation_id)
    res_repo = SqlAlchemyReservationRepository(session)
    try:
        outcome = await reservation_usecase.expire_hold(
            SqlAlchemySlotRepository(session),
            res_repo,
            SqlAlchemyTransactionCommitter(session),
            reservation_id=reservation_id,
        )
    except ReservationValidationError as exc:
        return ExpiryInputError(message=str(exc))
    except (VersionConflictError, StoreUnavailableError) as exc:
        logger.error("Failed to expire hold %s: %s", reservation_id, exc)
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=INTERNAL_ERROR)

    if outcome == reservation_usecase.ExpiryOutcome.EXPIRED:
        reservation = await res_repo.get(reservation_id)
        if reservation is not None:
            _audit("reservation.expired", "system", reservation, status_from=ReservationStatus.HOLD)
    return ExpiryCompleted(reservation_id=reservation_id)
