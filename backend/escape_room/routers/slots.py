from fastapi import APIRouter, Depends, HTTPException, Path, status
from sqlalchemy.ext.asyncio import AsyncSession

from ..deps import get_session, require_slot_admin
from ..domain.errors import SlotAlreadyExistsError, StoreUnavailableError
from ..infrastructure.repositories import SqlAlchemySlotRepository
from ..schemas import SlotCreate, SlotRead
from ..usecases import slots as slot_usecase
from ..utils.audit_log import emit_audit_log

router = APIRouter(prefix="/slots", tags=["slots"])


@router.post(
    "",
    response_model=SlotRead,
    status_code=status.HTTP_201_CREATED,
    dependencies=[Depends(require_slot_admin)],
)
async def create_slot(
    payload: SlotCreate,
    session: AsyncSession = Depends(get_session),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        slot = await slot_usecase.provision_slot(slot_repo, room_id=payload.room_id, slot_key=payload.slot_id)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc))
    except SlotAlreadyExistsError:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="slot already exists")
    except StoreUnavailableError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")

    emit_audit_log(
        action="slot.provisioned",
        initiator="system",
        room_id=slot.room_id,
        slot_key=slot.slot_key,
        status_to=slot.status,
        version=slot.version,
    )
    return SlotRead.from_db(slot=slot)


@router.get("/{room_id}/{slot_id}", response_model=SlotRead)
async def get_slot(
    room_id: str = Path(..., min_length=1),
    slot_id: str = Path(..., min_length=1),
    session: AsyncSession = Depends(get_session),
) -> SlotRead:
    slot_repo = SqlAlchemySlotRepository(session)
    try:
        slot = await slot_usecase.get_slot(slot_repo, room_id=room_id, slot_key=slot_id)
    except StoreUnavailableError:
        raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail="Internal server error")
    if slot is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="slot not found")
    return SlotRead.from_db(slot=slot)
