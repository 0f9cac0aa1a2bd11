#!/usr/bin/env python3
"""
Superzap - 1541 Disk Image Inspector.

A utility to inspect raw sectors of .d64 disk images. Each sector is shown
as its two link bytes followed by a dump of the 254-byte payload, and chains
can be walked by following the link.
"""

import sys
import os
import argparse
from d64_driver import D64Image, sector_count, sector_offset, TRACK_MIN, TRACK_MAX, TRACK_DIR, SECTOR_PAYLOAD

# Non-printable bytes show as '.'
_PRINTABLE = bytes(b if 32 <= b < 127 else 0x2E for b in range(256))


def hex_dump(data, width=16):
    """Render data as rows of `width` bytes: offset, hex and printable text."""
    if not data:
        return "<No Data>"

    rows = []
    for i in range(0, len(data), width):
        chunk = bytes(data[i:i + width])
        text = chunk.translate(_PRINTABLE).decode('ascii')
        rows.append(f"+{i:02X}: {chunk.hex(' ').upper():<{width * 3 - 1}}  {text}")
    return "\n".join(rows)


def describe_link(data):
    if data[0] == 0:
        return f"Link: last sector, {max(data[1] - 1, 0)} bytes used"
    return f"Link: -> {data[0]}/{data[1]}"


def format_sector(track, sector, data):
    """Header, link and payload dump for one sector."""
    used = len(data) - 2
    if data[0] == 0:
        used = min(max(data[1] - 1, 0), SECTOR_PAYLOAD)
    return "\n".join([
        f"=== {track}/{sector} (of {sector_count(track)}) ===",
        describe_link(data),
        hex_dump(data[2:2 + used]) if used else "<Empty Payload>",
    ])


def next_position(track, sector):
    """Step forward one sector, moving to the next track at the end of a zone's track."""
    sector += 1
    if sector >= sector_count(track):
        sector = 0
        track = TRACK_MIN if track == TRACK_MAX else track + 1
    return track, sector


def prev_position(track, sector):
    sector -= 1
    if sector < 0:
        track = TRACK_MAX if track == TRACK_MIN else track - 1
        sector = sector_count(track) - 1
    return track, sector


def follow_link(data):
    """
    Return the (track, sector) a link points to, or None at the end of a chain.

    Raises:
        ValueError: If the link points outside the disk.
    """
    if data[0] == 0:
        return None
    sector_offset(data[0], data[1])
    return data[0], data[1]


def main():
    parser = argparse.ArgumentParser(
        prog=os.environ.get("D64_PROG_NAME"),
        description="Superzap - 1541 Disk Image Inspector"
    )
    parser.add_argument("file", help="Disk image file (.d64)")
    parser.add_argument("--track", "-t", type=int, default=TRACK_DIR, help="Starting track (default: directory track)")
    parser.add_argument("--sector", "-s", type=int, default=0, help="Starting sector")

    args = parser.parse_args()

    try:
        disk = D64Image.load(args.file)
        disk.read_sector(args.track, args.sector)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"{args.file}: {disk.get_geometry()}")

    track, sector = args.track, args.sector

    while True:
        data = disk.read_sector(track, sector)
        print()
        print(format_sector(track, sector, data))

        cmd = input("\nn)ext p)rev f)ollow link g)o to T/S q)uit > ").lower().strip() or 'n'

        if cmd == 'q':
            break
        elif cmd == 'n':
            track, sector = next_position(track, sector)
        elif cmd == 'p':
            track, sector = prev_position(track, sector)
        elif cmd == 'f':
            try:
                target = follow_link(data)
            except ValueError as e:
                print(f"Bad link: {e}")
                continue
            if target is None:
                print("Last sector of the chain.")
            else:
                track, sector = target
        elif cmd == 'g':
            try:
                new_track, new_sector = (int(v) for v in input("Track/Sector: ").split('/'))
                disk.read_sector(new_track, new_sector)
                track, sector = new_track, new_sector
            except ValueError as e:
                print(f"Invalid position: {e}")

if __name__ == "__main__":
    main()
