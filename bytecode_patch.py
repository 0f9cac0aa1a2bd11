"""
Bytecode preparation for the challenge VM.

The challenge binary ships with a block of self-decrypting code and a
teleporter routine guarded by an expensive confirmation check. This
module decrypts the block ahead of time and patches the guard so the
interpreter on the disk does not have to do either at runtime.

Addresses are word addresses; the word at address `a` is stored little
endian at byte offset `a * 2`.
"""

import logging

logger = logging.getLogger(__name__)

MAX_DATA_SIZE = 65536

# Opcodes
OP_SET = 1
OP_NOOP = 21

# Register operands are encoded as 32768 + n
REGISTER_BASE = 32768

# Encrypted region, decrypted with w ^ (a * a) ^ DECRYPT_KEY
DECRYPT_START = 0x17CA
DECRYPT_END = 0x7505
DECRYPT_KEY = 0x4154

# 038B: call <decrypt>, the routine that decrypts the region above at load
DECRYPT_CALL = 0x038B
DECRYPT_CALL_WORDS = 2

# 1561: jf r7 15FB
# The teleporter is skipped while r7 is zero. Replaced with
# set r7 6486, the energy level that satisfies the confirmation routine.
TELEPORTER_GATE = 0x1561
TELEPORTER_REGISTER = 7
TELEPORTER_ENERGY = 0x6486

# 1587: call 17A1
# 1589: eq r1 r0 0006
# 158D: jf r1 15E1
TELEPORTER_CHECK_FIRST = 0x1587
TELEPORTER_CHECK_LAST = 0x158F

_HIGHEST_ADDRESS = DECRYPT_END - 1


def read_word(buf, addr):
    return buf[addr * 2] | (buf[addr * 2 + 1] << 8)


def write_word(buf, addr, word):
    buf[addr * 2] = word & 0xFF
    buf[addr * 2 + 1] = (word >> 8) & 0xFF


def decrypt_word(addr, word):
    """Apply the position-dependent XOR for one word. Applying it twice is a no-op."""
    return word ^ ((addr * addr) & 0xFFFF) ^ DECRYPT_KEY


def _check_size(buf):
    if len(buf) < (_HIGHEST_ADDRESS + 1) * 2:
        raise ValueError(f"Bytecode buffer too small ({len(buf)} bytes), "
                         f"needs {(_HIGHEST_ADDRESS + 1) * 2}")


def decrypt(buf):
    """Decrypt the encrypted region and remove the call to the runtime decryptor."""
    _check_size(buf)
    for addr in range(DECRYPT_START, DECRYPT_END):
        write_word(buf, addr, decrypt_word(addr, read_word(buf, addr)))

    for addr in range(DECRYPT_CALL, DECRYPT_CALL + DECRYPT_CALL_WORDS):
        write_word(buf, addr, OP_NOOP)
    logger.debug("Decrypted %04X-%04X", DECRYPT_START, DECRYPT_END - 1)


def patch_teleporter(buf):
    """Preload r7 with the teleporter energy and drop the confirmation check."""
    _check_size(buf)
    write_word(buf, TELEPORTER_GATE, OP_SET)
    write_word(buf, TELEPORTER_GATE + 1, REGISTER_BASE + TELEPORTER_REGISTER)
    write_word(buf, TELEPORTER_GATE + 2, TELEPORTER_ENERGY)

    for addr in range(TELEPORTER_CHECK_FIRST, TELEPORTER_CHECK_LAST + 1):
        write_word(buf, addr, OP_NOOP)
    logger.debug("Patched teleporter at %04X and %04X-%04X",
                 TELEPORTER_GATE, TELEPORTER_CHECK_FIRST, TELEPORTER_CHECK_LAST)


def transform(buf):
    """Run every bytecode transformation, in place, in load order."""
    decrypt(buf)
    patch_teleporter(buf)
    return buf
