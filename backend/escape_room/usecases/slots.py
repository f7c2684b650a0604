from ..domain.repositories import SlotRepository
from ..models import EscapeRoomSlot


async def provision_slot(
    slot_repo: SlotRepository,
    *,
    room_id: str,
    slot_key: str,
) -> EscapeRoomSlot:
    room_id = room_id.strip()
    slot_key = slot_key.strip()
    if not room_id or not slot_key:
        raise ValueError("room_id and slot_key must be non-empty")
    return await slot_repo.create(room_id=room_id, slot_key=slot_key)


async def get_slot(
    slot_repo: SlotRepository,
    *,
    room_id: str,
    slot_key: str,
) -> EscapeRoomSlot | None:
    return await slot_repo.get(room_id, slot_key)
