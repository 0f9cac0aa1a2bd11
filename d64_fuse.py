#!/usr/bin/env python3
"""
D64 FUSE Filesystem Implementation.

This module provides a read-only FUSE (Filesystem in Userspace) interface for
Commodore 1541 disk images. Mounting a built .d64 lets you check the catalog
and compare the stored program against its source with ordinary tools
(ls, cmp, hexdump).

Dependencies:
    - fusepy
    - d64_driver
"""

import os
import sys
import stat
import errno
import time
import logging

# Configure FUSE library path for macOS with FUSE-T
if sys.platform == 'darwin' and not os.environ.get('FUSE_LIBRARY_PATH'):
    if os.path.exists('/usr/local/lib/libfuse-t.dylib'):
        os.environ['FUSE_LIBRARY_PATH'] = '/usr/local/lib/libfuse-t.dylib'

from fuse import FUSE, FuseOSError, Operations
from d64_driver import D64Image, CBMDOSFileSystem, SECTOR_SIZE, TOTAL_SECTORS

logger = logging.getLogger(__name__)


class D64_FUSE(Operations):
    """
    FUSE Operations implementation for CBM DOS disks.

    Files are exposed as NAME.TYPE (e.g. CHALLENGE.PRG). The image is read
    once at mount time; every write operation fails with EROFS.
    """
    def __init__(self, disk_image):
        self.disk_image = disk_image
        self.fs = CBMDOSFileSystem(D64Image.load(disk_image))
        self.mount_time = time.time()
        logger.info("Mounted %s (\"%s\" %s)", disk_image, self.fs.disk_name, self.fs.disk_id)

        self.files = {}     # filename -> directory entry
        self.contents = {}  # filename -> bytes, read on first open
        self._refresh_files()

    def _refresh_files(self):
        self.files = self.fs.host_files()

    def _content(self, filename):
        if filename not in self.contents:
            self.contents[filename] = self.fs.read_entry(self.files[filename])
        return self.contents[filename]

    def getattr(self, path, fh=None):
        t = self.mount_time
        if path == '/':
            return dict(st_mode=(stat.S_IFDIR | 0o555), st_nlink=2,
                        st_ctime=t, st_mtime=t, st_atime=t)

        filename = path[1:]
        if filename in self.files:
            size = len(self._content(filename))
            return dict(st_mode=(stat.S_IFREG | 0o444), st_nlink=1, st_size=size,
                        st_ctime=t, st_mtime=t, st_atime=t)

        raise FuseOSError(errno.ENOENT)

    def readdir(self, path, fh):
        if path != '/':
            raise FuseOSError(errno.ENOTDIR)
        return ['.', '..'] + list(self.files.keys())

    def open(self, path, flags):
        if path[1:] not in self.files:
            raise FuseOSError(errno.ENOENT)
        if flags & (os.O_WRONLY | os.O_RDWR):
            raise FuseOSError(errno.EROFS)
        return 0

    def read(self, path, length, offset, fh):
        filename = path[1:]
        if filename not in self.files:
            raise FuseOSError(errno.ENOENT)
        return self._content(filename)[offset:offset + length]

    def statfs(self, path):
        free = self.fs.get_free_blocks()
        return dict(f_bsize=SECTOR_SIZE, f_frsize=SECTOR_SIZE, f_blocks=TOTAL_SECTORS,
                    f_bfree=free, f_bavail=free, f_namemax=16)

    def _read_only(self, *args):
        raise FuseOSError(errno.EROFS)

    create = write = truncate = unlink = mkdir = rmdir = rename = _read_only
    chmod = chown = utimens = _read_only


def main():
    import argparse

    parser = argparse.ArgumentParser(
        prog=os.environ.get("D64_PROG_NAME"),
        description="Mount a Commodore 1541 disk image (.d64) read-only as a FUSE filesystem.",
        epilog="Example: d64mount disk.d64 ./mnt"
    )
    parser.add_argument("disk_image", help="Path to the disk image file (.d64)")
    parser.add_argument("mountpoint", help="Directory to mount the filesystem")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")
    parser.add_argument("--foreground", "-f", action="store_true", help="Run in foreground (default: False)")

    args = parser.parse_args()

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    if not os.path.exists(args.mountpoint):
        print(f"Error: Mount point '{args.mountpoint}' does not exist.", file=sys.stderr)
        sys.exit(1)

    try:
        operations = D64_FUSE(args.disk_image)
    except (OSError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    try:
        FUSE(operations, args.mountpoint, foreground=args.foreground, ro=True, nothreads=True)
    except RuntimeError as e:
        print(f"Failed to mount: {e}", file=sys.stderr)
        print("Ensure FUSE-T or macFUSE is installed and libfuse is available.", file=sys.stderr)
        sys.exit(1)


if __name__ == '__main__':
    main()
