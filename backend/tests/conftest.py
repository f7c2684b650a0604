import asyncio
import os
from datetime import datetime
from typing import Any, AsyncIterator, Iterable, Mapping, Sequence

os.environ.setdefault("DATABASE_URL", "sqlite+aiosqlite:///:memory:")
os.environ.setdefault("AUTH_SECRET", "testsecret")

import pytest
import pytest_asyncio
from escape_room.database import create_schema
from escape_room.domain.errors import SlotAlreadyExistsError, VersionConflictError
from escape_room.domain.repositories import ConditionalWrite
from escape_room.models import EscapeRoomSlot, ReservationStatus, RoomReservation, SlotStatus
from escape_room.utils.time import utc_now_naive
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncEngine, AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

_RES_FIELDS = (
    "id",
    "room_id",
    "slot_key",
    "user_id",
    "status",
    "hold_expires_at",
    "version",
    "created_at",
    "updated_at",
)


class InMemoryStore:
    """Two keyed collections with an all-or-nothing, version-guarded commit."""

    def __init__(self) -> None:
        self.slots: dict[tuple[str, str], dict[str, Any]] = {}
        self.reservations: dict[str, dict[str, Any]] = {}
        self.commits = 0
        self.fail_next_commit: Exception | None = None

    def add_slot(self, room_id: str, slot_key: str) -> None:
        now = utc_now_naive()
        self.slots[(room_id, slot_key)] = {
            "room_id": room_id,
            "slot_key": slot_key,
            "status": SlotStatus.AVAILABLE,
            "occupying_reservation_id": None,
            "version": 1,
            "created_at": now,
            "updated_at": now,
        }

    def slot(self, room_id: str, slot_key: str) -> dict[str, Any]:
        return self.slots[(room_id, slot_key)]

    def reservation(self, reservation_id: str) -> dict[str, Any]:
        return self.reservations[reservation_id]

    def _collection(self, kind: str) -> dict[Any, dict[str, Any]]:
        return self.slots if kind == "slot" else self.reservations

    async def apply(self, writes: Sequence[ConditionalWrite]) -> None:
        await asyncio.sleep(0)
        if self.fail_next_commit is not None:
            exc, self.fail_next_commit = self.fail_next_commit, None
            raise exc
        for write in writes:
            kind, key, values = write.statement
            collection = self._collection(kind)
            if write.expected_version is None:
                if key in collection:
                    raise VersionConflictError(f"{write.target} already exists")
            else:
                current = collection.get(key)
                if current is None or current["version"] != write.expected_version:
                    raise VersionConflictError(f"{write.target} changed since version {write.expected_version}")
        for write in writes:
            kind, key, values = write.statement
            collection = self._collection(kind)
            if write.expected_version is None:
                collection[key] = dict(values)
            else:
                collection[key].update(values)
        self.commits += 1

    def check_invariants(self) -> None:
        for (room_id, slot_key), slot in self.slots.items():
            holders = [
                r
                for r in self.reservations.values()
                if (r["room_id"], r["slot_key"]) == (room_id, slot_key)
                and r["status"] in (ReservationStatus.HOLD, ReservationStatus.CONFIRMED)
            ]
            occupant = slot["occupying_reservation_id"]
            if occupant is None:
                assert slot["status"] == SlotStatus.AVAILABLE
                assert holders == []
                continue
            assert len(holders) == 1
            holder = holders[0]
            assert holder["id"] == occupant
            expected = SlotStatus.HOLD if holder["status"] == ReservationStatus.HOLD else SlotStatus.BOOKED
            assert slot["status"] == expected


class FakeSlotRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get(self, room_id: str, slot_key: str) -> EscapeRoomSlot | None:
        await asyncio.sleep(0)
        row = self.store.slots.get((room_id, slot_key))
        return EscapeRoomSlot(**row) if row is not None else None

    async def create(self, *, room_id: str, slot_key: str) -> EscapeRoomSlot:
        if (room_id, slot_key) in self.store.slots:
            raise SlotAlreadyExistsError(f"slot {room_id}:{slot_key} already exists")
        self.store.add_slot(room_id, slot_key)
        return EscapeRoomSlot(**self.store.slot(room_id, slot_key))

    def build_conditional_update(
        self,
        slot: EscapeRoomSlot,
        values: Mapping[str, Any],
        expected_version: int,
        *,
        now: datetime,
    ) -> ConditionalWrite:
        new_values = {**values, "version": expected_version + 1, "updated_at": now}
        return ConditionalWrite(
            target=f"slot {slot.room_id}:{slot.slot_key}",
            statement=("slot", (slot.room_id, slot.slot_key), new_values),
            expected_version=expected_version,
        )

    def build_hold(self, slot: EscapeRoomSlot, *, reservation_id: str, now: datetime) -> ConditionalWrite:
        return self.build_conditional_update(
            slot, {"status": SlotStatus.HOLD, "occupying_reservation_id": reservation_id}, slot.version, now=now
        )

    def build_confirm(self, slot: EscapeRoomSlot, *, now: datetime) -> ConditionalWrite:
        return self.build_conditional_update(slot, {"status": SlotStatus.BOOKED}, slot.version, now=now)

    def build_release(self, slot: EscapeRoomSlot, *, now: datetime) -> ConditionalWrite:
        return self.build_conditional_update(
            slot, {"status": SlotStatus.AVAILABLE, "occupying_reservation_id": None}, slot.version, now=now
        )


class FakeReservationRepo:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def get(self, reservation_id: str) -> RoomReservation | None:
        await asyncio.sleep(0)
        row = self.store.reservations.get(reservation_id)
        return RoomReservation(**row) if row is not None else None

    async def list_by_user(self, user_id: str) -> list[RoomReservation]:
        return [RoomReservation(**r) for r in self.store.reservations.values() if r["user_id"] == user_id]

    def build_insert(self, reservation: RoomReservation) -> ConditionalWrite:
        values = {name: getattr(reservation, name) for name in _RES_FIELDS}
        return ConditionalWrite(
            target=f"reservation {reservation.id}",
            statement=("reservation", reservation.id, values),
        )

    def build_conditional_update(
        self,
        reservation: RoomReservation,
        values: Mapping[str, Any],
        expected_version: int,
        *,
        now: datetime,
    ) -> ConditionalWrite:
        new_values = {**values, "version": expected_version + 1, "updated_at": now}
        return ConditionalWrite(
            target=f"reservation {reservation.id}",
            statement=("reservation", reservation.id, new_values),
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


class FakeCommitter:
    def __init__(self, store: InMemoryStore) -> None:
        self.store = store

    async def commit(self, writes: Sequence[ConditionalWrite]) -> None:
        await self.store.apply(writes)


class RecordingScheduler:
    def __init__(self) -> None:
        self.calls: list[tuple[str, datetime]] = []

    def schedule(self, reservation_id: str, fire_at: datetime) -> None:
        self.calls.append((reservation_id, fire_at))


class FakeBooking:
    """Bundle of fakes wired to one store, in the order the use cases take them."""

    def __init__(self) -> None:
        self.store = InMemoryStore()
        self.slot_repo = FakeSlotRepo(self.store)
        self.res_repo = FakeReservationRepo(self.store)
        self.committer = FakeCommitter(self.store)
        self.scheduler = RecordingScheduler()

    @property
    def repos(self) -> tuple[FakeSlotRepo, FakeReservationRepo, FakeCommitter]:
        return self.slot_repo, self.res_repo, self.committer

    def with_slots(self, keys: Iterable[tuple[str, str]]) -> "FakeBooking":
        for room_id, slot_key in keys:
            self.store.add_slot(room_id, slot_key)
        return self


@pytest.fixture
def booking() -> FakeBooking:
    return FakeBooking().with_slots([("ROOM-1", "2025-11-19#10"), ("ROOM-1", "2025-11-19#11")])


@pytest_asyncio.fixture
async def sqlite_engine() -> AsyncIterator[AsyncEngine]:
    engine = create_async_engine(
        "sqlite+aiosqlite:///:memory:",
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )
    await create_schema(engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(sqlite_engine: AsyncEngine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(sqlite_engine, expire_on_commit=False, class_=AsyncSession)


@pytest_asyncio.fixture
async def api(session_factory: async_sessionmaker[AsyncSession]) -> AsyncIterator[tuple[AsyncClient, RecordingScheduler]]:
    """HTTP client against the app, backed by in-memory SQLite and a recording scheduler."""
    from escape_room.deps import get_expiry_scheduler, get_session
    from escape_room.main import app

    scheduler = RecordingScheduler()

    async def _session() -> AsyncIterator[AsyncSession]:
        async with session_factory() as session:
            yield session

    app.dependency_overrides[get_session] = _session
    app.dependency_overrides[get_expiry_scheduler] = lambda: scheduler
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client, scheduler
    app.dependency_overrides.clear()
