"""
Host Driver

PC side of the wrapper link: frames key epochs, pushes ciphertext
packages and collects the 31-byte results.

File formats:
- private key file: n || d   (32 + 32 bytes, big-endian)
- public key file:  n || e   (32 + 32 bytes, big-endian)
- ciphertext file:  concatenated 32-byte blocks
- plaintext:        31-byte blocks; each fits below any 256-bit modulus,
                    which is why the device only returns 31 bytes

An epoch carries at most 255 packages (the count is one byte); longer
jobs are split and the key is sent again for every epoch.
"""

from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from ..core_crypto.rsa_math import (
    RESULT_BYTES, WORD_BYTES, bytes_to_int, check_word, int_to_bytes, rsa_encrypt,
)
from .controller import ByteStreamController, EpochSummary
from .transport import LoopbackTransport


MAX_PACKAGES_PER_EPOCH = 0xFF
KEY_FILE_BYTES = 2 * WORD_BYTES
PLAIN_BLOCK_BYTES = RESULT_BYTES


class ProtocolError(Exception):
    """Raised when the device's reply does not match what was sent."""
    pass


# ============================================================================
# Key Files
# ============================================================================

def save_key_file(path: Union[str, Path], n: int, exponent: int) -> None:
    """Write n || exponent as 64 big-endian bytes."""
    Path(path).write_bytes(
        int_to_bytes(check_word(n, "modulus")) + int_to_bytes(check_word(exponent, "exponent"))
    )


def load_key_file(path: Union[str, Path]) -> Tuple[int, int]:
    """
    Read a 64-byte key file.

    Returns:
        Tuple (n, exponent)

    Raises:
        ValueError: If the file is not exactly 64 bytes
    """
    data = Path(path).read_bytes()
    if len(data) != KEY_FILE_BYTES:
        raise ValueError(f"key file must be {KEY_FILE_BYTES} bytes, got {len(data)}")
    return bytes_to_int(data[:WORD_BYTES]), bytes_to_int(data[WORD_BYTES:])


# ============================================================================
# Block Helpers
# ============================================================================

def split_plaintext(data: bytes) -> List[bytes]:
    """Cut data into 31-byte blocks, zero-padding the last one."""
    blocks = []
    for i in range(0, len(data), PLAIN_BLOCK_BYTES):
        block = data[i:i + PLAIN_BLOCK_BYTES]
        blocks.append(block.ljust(PLAIN_BLOCK_BYTES, b'\x00'))
    return blocks


def join_plaintext(blocks: Sequence[bytes], length: Optional[int] = None) -> bytes:
    """Concatenate result blocks, optionally trimming padding to `length`."""
    data = b''.join(blocks)
    return data if length is None else data[:length]


def encrypt_blocks(blocks: Sequence[bytes], public_key: Tuple[int, int]) -> bytes:
    """
    Encrypt 31-byte plaintext blocks into 32-byte ciphertext blocks.

    Args:
        blocks: Plaintext blocks of at most 31 bytes
        public_key: Tuple (e, n)
    """
    out = bytearray()
    for block in blocks:
        if len(block) > PLAIN_BLOCK_BYTES:
            raise ValueError(f"plaintext block longer than {PLAIN_BLOCK_BYTES} bytes")
        out += int_to_bytes(rsa_encrypt(bytes_to_int(block), public_key), WORD_BYTES)
    return bytes(out)


def split_ciphertext(data: bytes) -> List[int]:
    """
    Cut a ciphertext stream into 256-bit words.

    Raises:
        ValueError: If the length is not a multiple of 32
    """
    if len(data) % WORD_BYTES:
        raise ValueError(f"ciphertext length {len(data)} is not a multiple of {WORD_BYTES}")
    return [bytes_to_int(data[i:i + WORD_BYTES]) for i in range(0, len(data), WORD_BYTES)]


# ============================================================================
# Driver
# ============================================================================

class HostDriver:
    """
    Talks to a wrapper over a loopback transport.

    When a device controller is attached the driver runs it for each
    epoch it sends, so a whole job can be processed synchronously.

    Example:
        >>> link = LoopbackTransport()
        >>> host = HostDriver(link, ByteStreamController(link))
        >>> blocks = host.decrypt(n, d, [c1, c2])
    """

    def __init__(self, transport: LoopbackTransport,
                 device: Optional[ByteStreamController] = None):
        self._transport = transport
        self._device = device
        self.summaries: List[EpochSummary] = []

    @staticmethod
    def frame_epoch(n: int, d: int, ciphertexts: Sequence[int]) -> bytes:
        """
        Bytes for one epoch: n, d, count, then each ciphertext.

        Raises:
            ValueError: If there are more than 255 packages
        """
        if len(ciphertexts) > MAX_PACKAGES_PER_EPOCH:
            raise ValueError(f"at most {MAX_PACKAGES_PER_EPOCH} packages per epoch")
        frame = bytearray()
        frame += int_to_bytes(check_word(n, "modulus"))
        frame += int_to_bytes(check_word(d, "exponent"))
        frame.append(len(ciphertexts))
        for c in ciphertexts:
            frame += int_to_bytes(check_word(c, "ciphertext"))
        return bytes(frame)

    def send_epoch(self, n: int, d: int, ciphertexts: Sequence[int]) -> None:
        self._transport.inject(self.frame_epoch(n, d, ciphertexts))

    def receive_results(self, count: int) -> List[bytes]:
        """
        Collect `count` 31-byte results.

        Raises:
            ProtocolError: If the device has not sent enough bytes
        """
        expected = count * RESULT_BYTES
        if self._transport.pending_tx < expected:
            raise ProtocolError(
                f"device sent {self._transport.pending_tx} bytes, expected {expected}"
            )
        data = self._transport.drain(expected)
        return [data[i:i + RESULT_BYTES] for i in range(0, expected, RESULT_BYTES)]

    def decrypt(self, n: int, d: int, ciphertexts: Sequence[int]) -> List[bytes]:
        """
        Run a whole job, one epoch per 255 packages.

        Requires an attached device.

        Returns:
            One 31-byte result per ciphertext, in order
        """
        if self._device is None:
            raise ProtocolError("no device attached to the host driver")

        results: List[bytes] = []
        ciphertexts = list(ciphertexts)
        for i in range(0, max(len(ciphertexts), 1), MAX_PACKAGES_PER_EPOCH):
            chunk = ciphertexts[i:i + MAX_PACKAGES_PER_EPOCH]
            self.send_epoch(n, d, chunk)
            self.summaries.append(self._device.serve_epoch())
            results.extend(self.receive_results(len(chunk)))
        return results

    def decrypt_bytes(self, n: int, d: int, data: bytes) -> bytes:
        """Decrypt a ciphertext stream to the concatenated 31-byte blocks."""
        return join_plaintext(self.decrypt(n, d, split_ciphertext(data)))
