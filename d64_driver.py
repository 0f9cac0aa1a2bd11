#!/usr/bin/env python3
"""
Commodore 1541 Disk Driver Module.

This module provides classes and functions to build and read 35-track
Commodore 1541 disk images (.d64) and their CBM DOS filesystem.

Classes:
    D64Image: Owns the flat in-memory sector buffer of a .d64 image.
    CBMDOSFileSystem: Writes and reads the BAM and directory on track 18.

Functions:
    sector_count(track): Number of sectors in a track (zoned).
    track_offset(track): Byte offset of a track's first sector.
    sector_offset(track, sector): Byte offset of a sector.
    write_chain(image, track, payload): Write a file as a linked sector chain.
    read_chain(image, track, sector): Follow a sector chain and return its data.
"""

import os
import sys
import errno
import logging
import tempfile
from math import gcd

logger = logging.getLogger(__name__)

# Constants
SECTOR_SIZE = 256
SECTOR_PAYLOAD = 254  # Bytes after the 2-byte link
SECTOR_INTERLEAVE = 10
TRACK_MIN = 1
TRACK_MAX = 35

# Fixed layout of the images we build
TRACK_DATA_FIRST = 1
TRACK_DATA_LAST = 13
TRACK_PRG = 14
TRACK_DIR = 18

PAD_BYTE = 0xA0   # Shifted space, used to pad names on CBM disks
DOS_VERSION = 0x41  # 'A'
FILE_TYPE_PRG = 0x82  # Closed PRG file
FILE_TYPES = {0: "DEL", 1: "SEQ", 2: "PRG", 3: "USR", 4: "REL"}

DISK_NAME = "SYNACOR"
DISK_ID = "SC"
DOS_TYPE = "2A"
PRG_NAME = "CHALLENGE"

DIR_ENTRY_SIZE = 32

# (last track of zone, sectors per track)
_ZONES = ((17, 21), (24, 19), (30, 18), (35, 17))


def sector_count(track):
    """Return the number of sectors on a track (1-35)."""
    if not TRACK_MIN <= track <= TRACK_MAX:
        raise ValueError(f"Track {track} out of range {TRACK_MIN}-{TRACK_MAX}")
    for last, sectors in _ZONES:
        if track <= last:
            return sectors


def track_offset(track):
    """Return the byte offset of the first sector of a track."""
    sector_count(track)
    return sum(sector_count(t) for t in range(TRACK_MIN, track)) * SECTOR_SIZE


def sector_offset(track, sector):
    """
    Return the byte offset of a sector in the flat image.

    Raises:
        ValueError: If the track or sector lies outside the 1541 geometry.
    """
    sectors = sector_count(track)
    if not 0 <= sector < sectors:
        raise ValueError(f"Sector {sector} out of range for track {track} (0-{sectors - 1})")
    return track_offset(track) + sector * SECTOR_SIZE


TOTAL_SECTORS = sum(sector_count(t) for t in range(TRACK_MIN, TRACK_MAX + 1))
IMAGE_SIZE = TOTAL_SECTORS * SECTOR_SIZE


def pad_string(text, size):
    """Encode text into a field of `size` bytes, padded with 0xA0."""
    raw = text.encode('ascii')
    if len(raw) > size:
        raise ValueError(f"'{text}' does not fit in {size} bytes")
    return raw + bytes([PAD_BYTE]) * (size - len(raw))


def unpad_string(raw):
    """Decode a 0xA0-padded name field."""
    return bytes(raw).rstrip(bytes([PAD_BYTE])).decode('latin-1')


class D64Image:
    """
    In-memory 1541 disk image.

    The buffer is allocated zero-filled at the fixed image size and is
    only ever touched through sector-addressed reads and writes.

    Attributes:
        data (bytearray): The flat image, sectors laid out track-major.
    """
    def __init__(self, data=None):
        if data is None:
            data = bytearray(IMAGE_SIZE)
        if len(data) != IMAGE_SIZE:
            raise ValueError(f"Image must be {IMAGE_SIZE} bytes, got {len(data)}")
        self.data = bytearray(data)

    @classmethod
    def load(cls, filename):
        """Read a .d64 image from disk."""
        with open(filename, 'rb') as f:
            data = f.read()
        if len(data) != IMAGE_SIZE:
            raise OSError(errno.EINVAL, f"Not a 35-track .d64 image ({len(data)} bytes)", filename)
        return cls(data)

    def read_sector(self, track, sector):
        """
        Read a sector from the disk.

        Args:
            track (int): Track number (1-35).
            sector (int): Sector number (0-based).

        Returns:
            bytes: 256 bytes of sector data.
        """
        offset = sector_offset(track, sector)
        return bytes(self.data[offset:offset + SECTOR_SIZE])

    def write_sector(self, track, sector, data, start=0):
        """
        Write data into a sector.

        Args:
            track (int): Track number.
            sector (int): Sector number.
            data (bytes): Bytes to write; may be shorter than a sector.
            start (int): Offset inside the sector to start writing at.
        """
        if start < 0 or start + len(data) > SECTOR_SIZE:
            raise ValueError(f"Write of {len(data)} bytes at {start} overflows sector {track}/{sector}")
        offset = sector_offset(track, sector) + start
        self.data[offset:offset + len(data)] = data

    def write_data(self, track, data):
        """Copy data verbatim into the image starting at the first sector of a track."""
        offset = track_offset(track)
        if offset + len(data) > IMAGE_SIZE:
            raise ValueError(f"{len(data)} bytes from track {track} run past the end of the image")
        self.data[offset:offset + len(data)] = data

    def save(self, filename):
        """
        Write the image to a file.

        The buffer goes to a temporary file next to the target, which is
        renamed over it only once every byte has been written. On failure
        the temporary is removed and the target is left as it was.

        The file gets the mode a plain open() would give it (0666 & ~umask).
        Errors are reported against `filename`, never the temporary name.
        """
        directory = os.path.dirname(os.path.abspath(filename))
        try:
            fd, tmp_path = tempfile.mkstemp(prefix='.makedisk-', suffix='.d64', dir=directory)
        except OSError as e:
            raise OSError(e.errno, e.strerror, filename) from e

        try:
            with os.fdopen(fd, 'wb') as f:
                # mkstemp creates 0600; there is no way to read the umask without setting it
                umask = os.umask(0)
                os.umask(umask)
                os.fchmod(f.fileno(), 0o666 & ~umask)

                written = f.write(self.data)
                if written != len(self.data):
                    raise OSError(errno.EIO, f"Short write ({written} of {len(self.data)} bytes)", filename)
            os.replace(tmp_path, filename)
        except BaseException as e:
            if os.path.exists(tmp_path):
                os.unlink(tmp_path)
            if isinstance(e, OSError) and e.filename != filename:
                raise OSError(e.errno, e.strerror, filename) from e
            raise
        logger.debug("Wrote %d bytes to %s", len(self.data), filename)

    def get_geometry(self):
        """Return a string describing the disk geometry."""
        return f"D64 ({TRACK_MAX} Tracks, {TOTAL_SECTORS} Sectors)"


def chain_capacity(track):
    """
    Return how many payload bytes a chain starting at sector 0 can hold.

    With a stride of 10 the chain cycles after S / gcd(10, S) sectors, so
    on 18-sector tracks only 9 sectors are reachable.
    """
    sectors = sector_count(track)
    return (sectors // gcd(SECTOR_INTERLEAVE, sectors)) * SECTOR_PAYLOAD


def write_chain(image, track, payload):
    """
    Write payload as a linked chain of sectors on a single track.

    Starts at sector 0 and advances by SECTOR_INTERLEAVE, wrapping modulo
    the track's sector count. Each full sector links to the next one; the
    last sector holds [0, bytes_used + 1].

    Args:
        image (D64Image): Target image.
        track (int): Track to write to.
        payload (bytes): File contents.

    Returns:
        int: Number of blocks (sectors) used.

    Raises:
        OSError: ENOSPC if the payload does not fit on the track.
    """
    capacity = chain_capacity(track)
    if len(payload) > capacity:
        raise OSError(errno.ENOSPC,
                      f"{len(payload)} bytes do not fit on track {track} (max {capacity})")

    sectors = sector_count(track)
    sector = 0
    offset = 0
    blocks = 0

    while True:
        remaining = len(payload) - offset
        blocks += 1

        if remaining <= SECTOR_PAYLOAD:
            image.write_sector(track, sector, bytes([0, remaining + 1]) + payload[offset:])
            logger.debug("Chain on track %d: %d blocks, last sector %d", track, blocks, sector)
            return blocks

        next_sector = (sector + SECTOR_INTERLEAVE) % sectors
        image.write_sector(track, sector,
                           bytes([track, next_sector]) + payload[offset:offset + SECTOR_PAYLOAD])
        offset += SECTOR_PAYLOAD
        sector = next_sector


def chain_sectors(image, track, sector):
    """
    Yield (track, sector, data) for every sector of a chain.

    Raises:
        OSError: EIO if the chain loops back on itself.
    """
    seen = set()
    while True:
        if (track, sector) in seen:
            raise OSError(errno.EIO, f"Sector chain loops at {track}/{sector}")
        seen.add((track, sector))
        data = image.read_sector(track, sector)
        yield track, sector, data
        if data[0] == 0:
            return
        track, sector = data[0], data[1]


def read_chain(image, track, sector):
    """Follow a sector chain and return the file contents."""
    content = bytearray()
    for _, _, data in chain_sectors(image, track, sector):
        if data[0] == 0:
            # Link byte 1 is the index of the last used byte
            content += data[2:max(data[1] + 1, 2)]
        else:
            content += data[2:]
    return bytes(content)


class CBMDOSFileSystem:
    """
    CBM DOS 2.6 metadata on track 18.

    Writes the Block Availability Map (18/0) and a single directory
    sector (18/1), and reads them back for listing and extraction.
    """
    used_tracks = frozenset(list(range(TRACK_DATA_FIRST, TRACK_DATA_LAST + 1)) + [TRACK_PRG, TRACK_DIR])

    def __init__(self, image):
        """
        Initialize the filesystem handler.

        Args:
            image (D64Image): The underlying disk image object.
        """
        self.image = image
        self.encoding = 'latin-1'

    def write_bam(self):
        """
        Populate the BAM sector.

        Every track in `used_tracks` is marked with all sectors available;
        real allocation is not tracked. All other track records stay zero.
        """
        bam = bytearray(self.image.read_sector(TRACK_DIR, 0))
        bam[0x00] = TRACK_DIR  # First directory track
        bam[0x01] = 1          # First directory sector
        bam[0x02] = DOS_VERSION
        bam[0x03] = 0x00

        for t in range(TRACK_MIN, TRACK_MAX + 1):
            p = 4 + (t - 1) * 4
            if t in self.used_tracks:
                bam[p:p + 4] = bytes([sector_count(t), 0xFF, 0xFF, 0xFF])

        bam[0x90:0xA0] = pad_string(DISK_NAME, 16)
        bam[0xA0:0xA2] = bytes([PAD_BYTE, PAD_BYTE])
        bam[0xA2:0xA4] = DISK_ID.encode('ascii')
        bam[0xA4] = PAD_BYTE
        bam[0xA5:0xA7] = DOS_TYPE.encode('ascii')
        bam[0xA7:0xAB] = bytes([PAD_BYTE]) * 4

        self.image.write_sector(TRACK_DIR, 0, bam)
        logger.debug("BAM written, %d tracks marked available", len(self.used_tracks))

    def write_directory_entry(self, blocks):
        """
        Write the directory sector with its single PRG entry.

        Args:
            blocks (int): Size of the program file in blocks.
        """
        if not 0 <= blocks <= 0xFF:
            raise ValueError(f"Block count {blocks} out of range")
        d = bytearray(self.image.read_sector(TRACK_DIR, 1))
        d[0x00] = 0x00  # No next directory track
        d[0x01] = 0xFF
        d[0x02] = FILE_TYPE_PRG
        d[0x03] = TRACK_PRG
        d[0x04] = 0x00
        d[0x05:0x15] = pad_string(PRG_NAME, 16)
        d[0x1E] = blocks
        self.image.write_sector(TRACK_DIR, 1, d)
        logger.debug("Directory entry %s: %d blocks", PRG_NAME, blocks)

    @property
    def disk_name(self):
        bam = self.image.read_sector(TRACK_DIR, 0)
        return unpad_string(bam[0x90:0xA0])

    @property
    def disk_id(self):
        bam = self.image.read_sector(TRACK_DIR, 0)
        return bam[0xA2:0xA4].decode(self.encoding)

    def get_free_blocks(self):
        """Sum the free-sector counts of every track except the directory track."""
        bam = self.image.read_sector(TRACK_DIR, 0)
        return sum(bam[4 + (t - 1) * 4] for t in range(TRACK_MIN, TRACK_MAX + 1) if t != TRACK_DIR)

    def _iter_directory_entries(self):
        """Yield (track, sector, offset, entry) for each slot of the directory chain."""
        bam = self.image.read_sector(TRACK_DIR, 0)
        for track, sector, data in chain_sectors(self.image, bam[0], bam[1]):
            for i in range(0, SECTOR_SIZE, DIR_ENTRY_SIZE):
                yield track, sector, i, data[i:i + DIR_ENTRY_SIZE]

    def list_files(self):
        """
        List all files in the directory.

        Returns:
            list: A list of dictionaries containing file metadata:
                  {'name': str, 'type': str, 'track': int, 'sector': int,
                   'blocks': int, 'closed': bool, 'locked': bool}
        """
        files = []
        for _, _, _, entry in self._iter_directory_entries():
            file_type = entry[2]
            # Type 0 with the closed bit clear is a scratched or empty slot
            if file_type == 0:
                continue
            files.append({
                'name': unpad_string(entry[5:21]),
                'type': FILE_TYPES.get(file_type & 0x07, "???"),
                'track': entry[3],
                'sector': entry[4],
                'blocks': entry[30] | (entry[31] << 8),
                'closed': bool(file_type & 0x80),
                'locked': bool(file_type & 0x40),
            })
        return files

    def host_files(self):
        """Map each catalog entry to the name it gets on the host, NAME.TYPE."""
        return {f"{f['name']}.{f['type']}".replace('/', '_'): f for f in self.list_files()}

    def find_file(self, filename):
        for f in self.list_files():
            if f['name'] == filename.strip().upper():
                return f
        return None

    def read_file(self, filename):
        """
        Read a file's contents by name.

        Raises:
            FileNotFoundError: If no directory entry matches.
        """
        entry = self.find_file(filename)
        if entry is None:
            raise FileNotFoundError(errno.ENOENT, "No such file on disk", filename)
        return self.read_entry(entry)

    def read_entry(self, entry):
        """Read the data of a listed entry by following its chain."""
        return read_chain(self.image, entry['track'], entry['sector'])


if __name__ == "__main__":
    if len(sys.argv) < 2:
        print("Usage: python d64_driver.py <disk_image> [read NAME | extract DIR]")
        sys.exit(1)

    filename = sys.argv[1]
    try:
        disk = D64Image.load(filename)
        print(f"Detected Format: {disk.get_geometry()}")

        fs = CBMDOSFileSystem(disk)
        print(f'Disk: "{fs.disk_name}" {fs.disk_id}')

        files = fs.list_files()
        print("\nFiles found:")
        for f in files:
            flags = "" if f['closed'] else "*"
            if f['locked']:
                flags += "<"
            print(f" {f['blocks']:>4}  \"{f['name']}\"  {f['type']}{flags}")
        print(f"{fs.get_free_blocks()} blocks free.")

        if len(sys.argv) > 3 and sys.argv[2] == "read":
            content = fs.read_file(sys.argv[3])
            print(f"\nRead {len(content)} bytes.")

        elif len(sys.argv) > 3 and sys.argv[2] == "extract":
            dest_dir = sys.argv[3]
            os.makedirs(dest_dir, exist_ok=True)

            print(f"\nExtracting all files to {dest_dir}...")
            for safe_name, f in fs.host_files().items():
                out_path = os.path.join(dest_dir, safe_name)
                print(f"Extracting {f['name']} -> {safe_name}")
                with open(out_path, 'wb') as out_f:
                    out_f.write(fs.read_entry(f))

    except (OSError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)
