import errno
import os

import pytest

from d64_driver import D64Image, CBMDOSFileSystem, write_chain, TRACK_PRG

try:
    import d64_fuse
    from fuse import FuseOSError
except (ImportError, OSError):
    d64_fuse = None

pytestmark = pytest.mark.skipif(d64_fuse is None, reason="libfuse not available")

PROGRAM = b"\x01\x08" + bytes(range(200)) * 2


@pytest.fixture
def mounted(tmp_path):
    image = D64Image()
    blocks = write_chain(image, TRACK_PRG, PROGRAM)
    fs = CBMDOSFileSystem(image)
    fs.write_bam()
    fs.write_directory_entry(blocks)
    path = tmp_path / "disk.d64"
    image.save(str(path))
    return d64_fuse.D64_FUSE(str(path))


def test_readdir(mounted):
    assert mounted.readdir('/', None) == ['.', '..', 'CHALLENGE.PRG']


def test_getattr(mounted):
    assert mounted.getattr('/')['st_nlink'] == 2
    assert mounted.getattr('/CHALLENGE.PRG')['st_size'] == len(PROGRAM)
    with pytest.raises(FuseOSError) as exc:
        mounted.getattr('/OTHER.PRG')
    assert exc.value.errno == errno.ENOENT


def test_read(mounted):
    assert mounted.open('/CHALLENGE.PRG', os.O_RDONLY) == 0
    assert mounted.read('/CHALLENGE.PRG', 10, 2, 0) == PROGRAM[2:12]


def test_writes_rejected(mounted):
    with pytest.raises(FuseOSError) as exc:
        mounted.open('/CHALLENGE.PRG', os.O_WRONLY)
    assert exc.value.errno == errno.EROFS
    with pytest.raises(FuseOSError):
        mounted.unlink('/CHALLENGE.PRG')


def test_statfs(mounted):
    stats = mounted.statfs('/')
    assert stats['f_blocks'] == 683
    assert stats['f_bfree'] == 14 * 21
