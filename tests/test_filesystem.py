import pytest

from d64_driver import (D64Image, CBMDOSFileSystem, write_chain, sector_count,
                        TRACK_DIR, TRACK_PRG)


def _formatted(program=b"\x01\x08hello", blocks=None):
    image = D64Image()
    used = write_chain(image, TRACK_PRG, program)
    fs = CBMDOSFileSystem(image)
    fs.write_bam()
    fs.write_directory_entry(used if blocks is None else blocks)
    return image, fs


def test_bam_header():
    image, _ = _formatted()
    bam = image.read_sector(TRACK_DIR, 0)
    assert bam[:4] == bytes([18, 1, 0x41, 0])
    assert bam[0x90:0xA0] == b"SYNACOR" + b"\xA0" * 9
    assert bam[0xA0:0xAB] == b"\xA0\xA0SC\xA02A\xA0\xA0\xA0\xA0"
    assert bam[0xAB:] == bytes(256 - 0xAB)


def test_bam_track_records():
    image, _ = _formatted()
    bam = image.read_sector(TRACK_DIR, 0)
    for t in range(1, 36):
        record = bam[4 + (t - 1) * 4:8 + (t - 1) * 4]
        if t <= 14 or t == 18:
            assert record == bytes([sector_count(t), 0xFF, 0xFF, 0xFF])
        else:
            assert record == bytes(4)


def test_directory_sector():
    image, _ = _formatted(blocks=3)
    d = image.read_sector(TRACK_DIR, 1)
    assert d[:5] == bytes([0, 0xFF, 0x82, TRACK_PRG, 0])
    assert d[5:21] == b"CHALLENGE" + b"\xA0" * 7
    assert d[0x1E] == 3
    assert d[0x22:] == bytes(256 - 0x22)


def test_list_and_read_back():
    program = bytes(range(256)) * 3
    _, fs = _formatted(program)
    assert fs.disk_name == "SYNACOR"
    assert fs.disk_id == "SC"
    assert fs.list_files() == [{
        'name': "CHALLENGE",
        'type': "PRG",
        'track': TRACK_PRG,
        'sector': 0,
        'blocks': 4,
        'closed': True,
        'locked': False,
    }]
    assert fs.read_file("challenge") == program


def test_read_missing_file():
    _, fs = _formatted()
    with pytest.raises(FileNotFoundError):
        fs.read_file("MISSING")


def test_free_blocks_counts_marked_tracks():
    _, fs = _formatted()
    assert fs.get_free_blocks() == 14 * 21


def test_block_count_is_a_single_byte():
    image = D64Image()
    image.write_sector(TRACK_DIR, 1, b"\xEE" * 256)
    fs = CBMDOSFileSystem(image)
    fs.write_directory_entry(21)
    d = image.read_sector(TRACK_DIR, 1)
    assert d[0x1E] == 21
    assert d[0x1F] == 0xEE


@pytest.mark.parametrize("blocks", [-1, 256])
def test_block_count_out_of_range(blocks):
    _, fs = _formatted()
    with pytest.raises(ValueError):
        fs.write_directory_entry(blocks)


def test_host_files_names_and_contents():
    program = b"\x01\x08" + bytes(range(200)) * 2
    _, fs = _formatted(program)
    files = fs.host_files()
    assert list(files) == ["CHALLENGE.PRG"]
    assert files["CHALLENGE.PRG"]['blocks'] == 2
    assert fs.read_entry(files["CHALLENGE.PRG"]) == program
