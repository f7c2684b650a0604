from datetime import datetime, timedelta, timezone

import jwt
import pytest
from escape_room.utils.auth import (
    EXPIRY_CALLBACK_SCOPE,
    SLOT_ADMIN_SCOPE,
    create_service_token,
    decode_service_token,
)

SECRET = "testsecret"


def test_service_token_round_trip() -> None:
    token = create_service_token(subject="res-1", scope=EXPIRY_CALLBACK_SCOPE, secret=SECRET)
    assert decode_service_token(token, scope=EXPIRY_CALLBACK_SCOPE, secret=SECRET, algorithms=["HS256"]) == "res-1"


def test_service_token_scope_mismatch() -> None:
    token = create_service_token(subject="res-1", scope=EXPIRY_CALLBACK_SCOPE, secret=SECRET)
    with pytest.raises(ValueError):
        decode_service_token(token, scope=SLOT_ADMIN_SCOPE, secret=SECRET, algorithms=["HS256"])


def test_service_token_wrong_secret() -> None:
    token = create_service_token(subject="res-1", scope=EXPIRY_CALLBACK_SCOPE, secret="other")
    with pytest.raises(ValueError):
        decode_service_token(token, scope=EXPIRY_CALLBACK_SCOPE, secret=SECRET, algorithms=["HS256"])


def test_service_token_expired() -> None:
    token = create_service_token(
        subject="res-1",
        scope=EXPIRY_CALLBACK_SCOPE,
        secret=SECRET,
        expires_delta=timedelta(seconds=-1),
    )
    with pytest.raises(ValueError):
        decode_service_token(token, scope=EXPIRY_CALLBACK_SCOPE, secret=SECRET, algorithms=["HS256"])


def test_service_token_outlives_fire_time() -> None:
    fire_at = datetime.now(timezone.utc) + timedelta(hours=3)
    token = create_service_token(
        subject="res-1",
        scope=EXPIRY_CALLBACK_SCOPE,
        secret=SECRET,
        expires_delta=timedelta(minutes=10),
        valid_until_at_least=fire_at,
    )
    payload = jwt.decode(token, SECRET, algorithms=["HS256"])
    assert payload["exp"] >= int((fire_at + timedelta(minutes=10)).timestamp()) - 1


def test_service_token_requires_subject() -> None:
    token = jwt.encode({"scope": SLOT_ADMIN_SCOPE}, SECRET, algorithm="HS256")
    with pytest.raises(ValueError):
        decode_service_token(token, scope=SLOT_ADMIN_SCOPE, secret=SECRET, algorithms=["HS256"])
