#!/usr/bin/env python3
"""
makedisk - Build a bootable 1541 disk image for the challenge VM.

The decrypted and patched bytecode is laid flat over tracks 1-13, where
the interpreter reads it directly. The interpreter itself is stored as
the single file CHALLENGE on track 14, so it can be LOADed from BASIC.

Usage:
    makedisk <challenge.bin> <vm.prg> <output.d64>
"""

import sys
import errno
import logging
import argparse

import bytecode_patch
from d64_driver import (D64Image, CBMDOSFileSystem, write_chain, chain_capacity,
                        TRACK_DATA_FIRST, TRACK_PRG)

logger = logging.getLogger(__name__)

MAX_PRG_SIZE = chain_capacity(TRACK_PRG)


class _ArgumentParser(argparse.ArgumentParser):
    """Argument parser that exits with status 1 on usage errors."""
    def error(self, message):
        self.print_usage(sys.stderr)
        print(f"Error: {message}", file=sys.stderr)
        sys.exit(1)


def read_input(filename, max_size):
    """
    Read a whole input file, refusing anything larger than max_size.

    Raises:
        OSError: If the file cannot be read, or EFBIG if it is too large.
    """
    with open(filename, 'rb') as f:
        data = f.read(max_size + 1)
    if len(data) > max_size:
        raise OSError(errno.EFBIG, f"File exceeds {max_size} bytes", filename)
    logger.debug("Read %d bytes from %s", len(data), filename)
    return data


def load_bytecode(filename):
    """Read the bytecode into a zero-filled 64K buffer."""
    buf = bytearray(bytecode_patch.MAX_DATA_SIZE)
    data = read_input(filename, bytecode_patch.MAX_DATA_SIZE)
    buf[:len(data)] = data
    return buf


def build_image(bytecode, program):
    """
    Lay out a complete disk image.

    Args:
        bytecode (bytes): Already transformed bytecode, at most 64K.
        program (bytes): Interpreter program file.

    Returns:
        tuple: (D64Image, blocks used by the program file)
    """
    image = D64Image()
    image.write_data(TRACK_DATA_FIRST, bytecode)

    blocks = write_chain(image, TRACK_PRG, program)

    fs = CBMDOSFileSystem(image)
    fs.write_bam()
    fs.write_directory_entry(blocks)
    return image, blocks


def make_disk(bytecode_path, program_path, output_path):
    """Run the whole build. Nothing is written to output_path unless every step succeeds."""
    bytecode = load_bytecode(bytecode_path)
    bytecode_patch.transform(bytecode)

    program = read_input(program_path, MAX_PRG_SIZE)

    image, blocks = build_image(bytecode, program)
    image.save(output_path)
    logger.info("Wrote %s (%d byte program, %d blocks)", output_path, len(program), blocks)
    return blocks


def main(argv=None):
    parser = _ArgumentParser(
        prog="makedisk",
        description="Build a bootable .d64 disk image from challenge bytecode and a VM program."
    )
    parser.add_argument("bytecode", help="Challenge bytecode (challenge.bin)")
    parser.add_argument("program", help="Interpreter program (vm.prg)")
    parser.add_argument("output", help="Output disk image (.d64)")
    parser.add_argument("--debug", action="store_true", help="Enable debug logging")

    args = parser.parse_args(argv)

    level = logging.DEBUG if args.debug else logging.INFO
    logging.basicConfig(level=level, format='%(asctime)s - %(name)s - %(levelname)s - %(message)s')

    try:
        make_disk(args.bytecode, args.program, args.output)
    except OSError as e:
        if e.filename:
            print(f"Error: {e.filename}: {e.strerror}", file=sys.stderr)
        else:
            print(f"Error: {e}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
