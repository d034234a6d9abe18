import pytest

from ercd.codec import decode, encode
from ercd.constants import B_FILE_NAME, B_FILE_SIZE, K_BODY, T_FILE, T_MSG
from ercd.envelope import make_envelope, validate_envelope


def test_codec_round_trip() -> None:
    env = make_envelope(T_MSG, src="a1b2", room="general", body="hello", nick="alice")
    data = encode(env)
    decoded = decode(data)
    assert decoded == env
    validate_envelope(decoded)


def test_codec_keeps_integer_body_keys() -> None:
    env = make_envelope(T_FILE, room="r", body={B_FILE_NAME: "a.txt", B_FILE_SIZE: 12})
    decoded = decode(encode(env))
    assert decoded[K_BODY] == {B_FILE_NAME: "a.txt", B_FILE_SIZE: 12}


def test_decode_rejects_garbage() -> None:
    with pytest.raises(ValueError):
        decode(b"\x82\x01")
