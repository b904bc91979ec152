from __future__ import annotations

import random

import pytest

from pyvsm import codec
from pyvsm.exceptions import CodecIntegrityError


@pytest.mark.parametrize(
    "data",
    [
        b"",
        b"\x00",
        b"\x00\x00",
        b"\x07",
        b"\x05\x00",
        b"\x00\x05",
        b"\x01\x00\x00\x02",
        b"\x80\x81\xff\x00\x00\x00\x80",
        bytes(128),
        bytes(129),
        bytes(range(1, 128)),
        bytes(range(1, 129)),
    ],
)
def test_round_trip_edge_cases(data: bytes) -> None:
    assert codec.decode(codec.encode(data), len(data)) == data


def test_round_trip_random_sparse_buffers() -> None:
    rng = random.Random(1234)
    for _ in range(200):
        size = rng.randint(0, 600)
        data = bytes(rng.choice((0, 0, 0, rng.randint(0, 255))) for _ in range(size))
        assert codec.decode(codec.encode(data), len(data)) == data


def test_zero_run_of_300_uses_three_control_bytes() -> None:
    encoded = codec.encode(bytes(300))

    assert list(encoded) == [128, 128, 44]
    assert codec.decode(encoded, 300) == bytes(300)


def test_nonzero_input_grows_by_one_byte_per_literal_run() -> None:
    data = bytes((i % 255) + 1 for i in range(200))

    encoded = codec.encode(data)

    assert len(encoded) == 202
    assert encoded[127] == 0x80 + 127
    assert encoded[-1] == 0x80 + 73
    assert encoded[:127] == data[:127]
    assert encoded[128:-1] == data[127:]


def test_single_zero_is_kept_as_literal() -> None:
    assert codec.encode(b"\x05\x00\x06") == b"\x05\x00\x06\x83"


def test_pending_literals_flushed_before_zero_run() -> None:
    assert codec.encode(b"\x09\x00\x00\x00") == b"\x09\x81\x03"


def test_decode_rejects_zero_run_longer_than_output() -> None:
    with pytest.raises(CodecIntegrityError):
        codec.decode(b"\x05", 3)


def test_decode_rejects_literal_run_longer_than_input() -> None:
    # Claims 4 literal bytes but only 2 precede the control byte.
    with pytest.raises(CodecIntegrityError):
        codec.decode(b"\x01\x02\x84", 4)


def test_decode_rejects_truncated_input() -> None:
    encoded = codec.encode(b"\x01\x02\x00\x00\x00")
    with pytest.raises(CodecIntegrityError):
        codec.decode(encoded[1:], 5)


def test_decode_rejects_short_input_for_size() -> None:
    with pytest.raises(CodecIntegrityError):
        codec.decode(codec.encode(bytes(10)), 20)


def test_decode_rejects_zero_control_byte() -> None:
    with pytest.raises(CodecIntegrityError):
        codec.decode(b"\x00", 0)
