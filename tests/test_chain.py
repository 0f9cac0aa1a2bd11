import errno
import os

import pytest

from d64_driver import (D64Image, write_chain, read_chain, chain_sectors, chain_capacity,
                        sector_count, TRACK_PRG)


@pytest.mark.parametrize("size", [1, 10, 253, 254, 255, 508, 509, 1000, 21 * 254])
def test_chain_round_trip(size):
    image = D64Image()
    payload = os.urandom(size)
    blocks = write_chain(image, TRACK_PRG, payload)
    assert blocks == -(-size // 254)
    assert read_chain(image, TRACK_PRG, 0) == payload


def test_empty_payload_uses_one_block():
    image = D64Image()
    assert write_chain(image, TRACK_PRG, b"") == 1
    assert image.read_sector(TRACK_PRG, 0)[:2] == bytes([0, 1])
    assert read_chain(image, TRACK_PRG, 0) == b""


def test_254_bytes_fit_in_one_sector():
    image = D64Image()
    assert write_chain(image, TRACK_PRG, b"\x01" * 254) == 1
    assert image.read_sector(TRACK_PRG, 0) == bytes([0, 255]) + b"\x01" * 254


def test_255_bytes_need_two_sectors():
    image = D64Image()
    payload = b"\x11" * 254 + b"\x22"
    assert write_chain(image, TRACK_PRG, payload) == 2

    first = image.read_sector(TRACK_PRG, 0)
    assert first[:2] == bytes([TRACK_PRG, 10])
    assert first[2:] == b"\x11" * 254

    second = image.read_sector(TRACK_PRG, 10)
    assert second[:3] == bytes([0, 2, 0x22])


def test_terminal_sector_leaves_tail_untouched():
    image = D64Image()
    image.write_sector(TRACK_PRG, 0, b"\xEE" * 256)
    write_chain(image, TRACK_PRG, b"abc")
    assert image.read_sector(TRACK_PRG, 0) == bytes([0, 4]) + b"abc" + b"\xEE" * 251


@pytest.mark.parametrize("track", [1, 18, 25, 31])
def test_interleave_order(track):
    sectors = sector_count(track)
    image = D64Image()
    payload = bytes(chain_capacity(track))
    write_chain(image, track, payload)

    visited = [s for _, s, _ in chain_sectors(image, track, 0)]
    expected = [0]
    while len(expected) < len(visited):
        expected.append((expected[-1] + 10) % sectors)
    assert visited == expected
    assert len(set(visited)) == len(visited)


def test_capacity_per_zone():
    # 10 shares a factor of 2 with 18, so only half of those tracks is reachable
    assert chain_capacity(1) == 21 * 254
    assert chain_capacity(18) == 19 * 254
    assert chain_capacity(25) == 9 * 254
    assert chain_capacity(31) == 17 * 254


def test_overflow_raises_without_writing():
    image = D64Image()
    with pytest.raises(OSError) as exc:
        write_chain(image, TRACK_PRG, bytes(21 * 254 + 1))
    assert exc.value.errno == errno.ENOSPC
    assert image.data == bytearray(len(image.data))


def test_chain_loop_detected():
    image = D64Image()
    image.write_sector(TRACK_PRG, 0, bytes([TRACK_PRG, 0]))
    with pytest.raises(OSError):
        read_chain(image, TRACK_PRG, 0)
