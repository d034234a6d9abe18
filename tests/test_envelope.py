import pytest

from ercd.constants import (
    ERC_VERSION,
    K_BODY,
    K_ID,
    K_NICK,
    K_ROOM,
    K_SRC,
    K_T,
    K_TS,
    K_V,
    T_JOIN,
    T_MSG,
)
from ercd.envelope import envelope_id, make_envelope, validate_envelope


def test_validate_accepts_make_envelope() -> None:
    env = make_envelope(T_JOIN, room="abc", nick="alice", body="pw1")
    validate_envelope(env)


def test_make_envelope_omits_unset_fields() -> None:
    env = make_envelope(T_MSG)
    assert set(env) == {K_V, K_T, K_ID, K_TS}
    assert env[K_V] == ERC_VERSION
    validate_envelope(env)


def test_make_envelope_keeps_caller_id() -> None:
    env = make_envelope(T_MSG, mid="m1", body="hi")
    assert env[K_ID] == "m1"
    assert envelope_id(env) == "m1"


def test_envelope_id_renders_bytes_as_hex() -> None:
    env = make_envelope(T_MSG, mid=b"\x01\xab")
    assert envelope_id(env) == "01ab"
    env[K_ID] = 7
    assert envelope_id(env) == ""


def test_validate_allows_empty_nick() -> None:
    env = make_envelope(T_JOIN, room="abc")
    env[K_NICK] = ""
    validate_envelope(env)


def test_validate_rejects_missing_required_key() -> None:
    env = make_envelope(T_MSG)
    env.pop(K_TS)
    with pytest.raises(ValueError):
        validate_envelope(env)


def test_validate_rejects_wrong_version() -> None:
    env = make_envelope(T_MSG)
    env[K_V] = ERC_VERSION + 1
    with pytest.raises(ValueError):
        validate_envelope(env)


def test_validate_rejects_non_integer_keys() -> None:
    env = make_envelope(T_MSG)
    env["1"] = env.pop(K_T)
    with pytest.raises(TypeError):
        validate_envelope(env)


def test_validate_rejects_non_map() -> None:
    with pytest.raises(TypeError):
        validate_envelope([1, 2, 3])


def test_validate_allows_unknown_extension_keys() -> None:
    env = make_envelope(T_MSG)
    env[64] = {"future": True}
    validate_envelope(env)


def test_validate_allows_omitted_body() -> None:
    env = make_envelope(T_MSG, room="abc")
    assert K_BODY not in env
    validate_envelope(env)


def test_validate_rejects_empty_room() -> None:
    env = make_envelope(T_JOIN)
    env[K_ROOM] = ""
    with pytest.raises(ValueError):
        validate_envelope(env)


def test_validate_rejects_wrong_field_types() -> None:
    env = make_envelope(T_MSG)
    env[K_ID] = 42
    with pytest.raises(TypeError):
        validate_envelope(env)

    env = make_envelope(T_MSG)
    env[K_SRC] = b"not-text"
    with pytest.raises(TypeError):
        validate_envelope(env)

    env = make_envelope(T_MSG)
    env[K_TS] = "not-int"
    with pytest.raises(TypeError):
        validate_envelope(env)

    env = make_envelope(T_MSG)
    env[K_ROOM] = 5
    with pytest.raises(TypeError):
        validate_envelope(env)

    env = make_envelope(T_MSG)
    env[K_NICK] = 123
    with pytest.raises(TypeError):
        validate_envelope(env)
