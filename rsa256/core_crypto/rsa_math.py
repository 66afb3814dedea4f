"""
RSA-256 Arithmetic Helpers

Host-side number theory and fixed-width encodings shared by the engine,
the byte-stream wrapper and the host driver:
- Fixed-width (256-bit / 32-byte) integer <-> bytes conversion
- Square-and-multiply modular exponentiation for host-side encryption
- Miller-Rabin primality testing and 256-bit key pair generation
- Extended Euclidean Algorithm for the private exponent

The device never uses these for decryption; it runs the Montgomery
engine in modexp.py. They exist so the host can produce keys and
ciphertexts for the device and check what comes back.
"""

import secrets
from typing import Tuple, Optional


# Widths of the device datapath
KEY_BITS = 256
WORD_BYTES = KEY_BITS // 8        # 32 bytes per n, d, c, m on the wire
RESULT_BYTES = WORD_BYTES - 1     # the MSB of the plaintext is never sent back
WORD_MASK = (1 << KEY_BITS) - 1
PASSWORD_BITS = 16
PASSWORD_MASK = (1 << PASSWORD_BITS) - 1

DEFAULT_PUBLIC_EXPONENT = 65537


def check_word(value: int, name: str = "value") -> int:
    """
    Validate that an integer fits the 256-bit datapath.

    Args:
        value: Integer to check
        name: Name used in the error message

    Returns:
        The value unchanged

    Raises:
        ValueError: If value is negative or wider than 256 bits
    """
    if value < 0:
        raise ValueError(f"{name} must be non-negative")
    if value > WORD_MASK:
        raise ValueError(f"{name} does not fit in {KEY_BITS} bits")
    return value


def mod_exp(base: int, exponent: int, modulus: int) -> int:
    """
    Modular exponentiation using square-and-multiply (right-to-left).

    Used on the host side for encryption and primality testing.

    Args:
        base: The base number
        exponent: The exponent (must be non-negative)
        modulus: The modulus (must be positive)

    Returns:
        (base^exponent) mod modulus

    Raises:
        ValueError: If exponent < 0 or modulus <= 0
    """
    if exponent < 0:
        raise ValueError("Exponent must be non-negative")
    if modulus <= 0:
        raise ValueError("Modulus must be positive")
    if modulus == 1:
        return 0

    base = base % modulus
    result = 1

    while exponent > 0:
        if exponent & 1:
            result = (result * base) % modulus
        base = (base * base) % modulus
        exponent >>= 1

    return result


def gcd(a: int, b: int) -> int:
    """Greatest common divisor (Euclid)."""
    a, b = abs(a), abs(b)
    while b:
        a, b = b, a % b
    return a


def extended_gcd(a: int, b: int) -> Tuple[int, int, int]:
    """
    Extended Euclidean Algorithm.

    Iterative so that 256-bit operands cannot hit the recursion limit.

    Returns:
        Tuple (g, x, y) with a*x + b*y = g = gcd(a, b)
    """
    old_r, r = a, b
    old_x, x = 1, 0
    old_y, y = 0, 1
    while r:
        q = old_r // r
        old_r, r = r, old_r - q * r
        old_x, x = x, old_x - q * x
        old_y, y = y, old_y - q * y
    return old_r, old_x, old_y


def mod_inverse(a: int, m: int) -> int:
    """
    Modular multiplicative inverse.

    Raises:
        ValueError: If gcd(a, m) != 1
    """
    g, x, _ = extended_gcd(a % m, m)
    if g != 1:
        raise ValueError(f"Modular inverse doesn't exist (gcd({a}, {m}) = {g})")
    return x % m


def is_probably_prime_miller_rabin(n: int, k: int = 40) -> bool:
    """
    Miller-Rabin primality test.

    Args:
        n: Number to test
        k: Number of random witnesses

    Returns:
        True if n is probably prime, False if definitely composite
    """
    if n < 2:
        return False
    if n in (2, 3):
        return True
    if n % 2 == 0:
        return False

    small_primes = [5, 7, 11, 13, 17, 19, 23, 29, 31, 37, 41, 43, 47]
    for p in small_primes:
        if n == p:
            return True
        if n % p == 0:
            return False

    r, s = 0, n - 1
    while s % 2 == 0:
        r += 1
        s //= 2

    for _ in range(k):
        a = secrets.randbelow(n - 3) + 2
        x = mod_exp(a, s, n)
        if x == 1 or x == n - 1:
            continue

        for _ in range(r - 1):
            x = (x * x) % n
            if x == n - 1:
                break
        else:
            return False

    return True


def generate_prime(bits: int, k: int = 40) -> int:
    """
    Generate a random prime with exactly `bits` bits.

    The two top bits are forced to 1 so that the product of two such
    primes has exactly 2*bits bits.

    Raises:
        ValueError: If bits < 3
    """
    if bits < 3:
        raise ValueError("Bit length must be at least 3")

    while True:
        candidate = secrets.randbits(bits)
        candidate |= (0b11 << (bits - 2))
        candidate |= 1
        if is_probably_prime_miller_rabin(candidate, k):
            return candidate


def generate_rsa_keypair(bits: int = KEY_BITS,
                         e: int = DEFAULT_PUBLIC_EXPONENT) -> Tuple[Tuple[int, int], Tuple[int, int]]:
    """
    Generate an RSA key pair sized for the device.

    Args:
        bits: Bit length of the modulus (256 for the device)
        e: Preferred public exponent

    Returns:
        Tuple of ((e, n), (d, n))
    """
    if bits > KEY_BITS:
        raise ValueError(f"Device modulus is limited to {KEY_BITS} bits")

    prime_bits = bits // 2
    while True:
        p = generate_prime(prime_bits)
        q = generate_prime(bits - prime_bits)
        if p == q:
            continue
        phi_n = (p - 1) * (q - 1)
        if gcd(e, phi_n) == 1:
            break

    n = p * q
    d = mod_inverse(e, phi_n)
    return (e, n), (d, n)


def rsa_encrypt(message: int, public_key: Tuple[int, int]) -> int:
    """Host-side encryption: message^e mod n."""
    e, n = public_key
    if message >= n:
        raise ValueError("Message must be less than modulus n")
    return mod_exp(message, e, n)


def rsa_verify(message: int, signature: int, public_key: Tuple[int, int]) -> bool:
    """Check a signature produced by the device (signature^e mod n == message)."""
    e, n = public_key
    return mod_exp(signature, e, n) == message


def bytes_to_int(data: bytes) -> int:
    """Convert big-endian (MSB-first) bytes to an integer."""
    return int.from_bytes(data, byteorder='big')


def int_to_bytes(n: int, length: Optional[int] = None) -> bytes:
    """Convert an integer to big-endian bytes (32 bytes by default)."""
    if length is None:
        length = WORD_BYTES
    return n.to_bytes(length, byteorder='big')


def word_to_result_bytes(m: int) -> bytes:
    """
    Bytes the device sends back for a plaintext word.

    The 256-bit result is laid out MSB-first and byte 0 (the most
    significant byte) is dropped, leaving 31 bytes.
    """
    return int_to_bytes(check_word(m, "plaintext"), WORD_BYTES)[1:]


class RSAKeyPair:
    """
    RSA-256 key pair container used by the host side.

    Example:
        >>> keypair = RSAKeyPair.generate()
        >>> c = keypair.encrypt(12345)
        >>> keypair.decrypt(c)
        12345
    """

    def __init__(self, public_key: Tuple[int, int], private_key: Tuple[int, int]):
        self._e, self._n = public_key
        self._d, _ = private_key

    @classmethod
    def generate(cls, bits: int = KEY_BITS) -> 'RSAKeyPair':
        """Generate a new key pair."""
        public_key, private_key = generate_rsa_keypair(bits)
        return cls(public_key, private_key)

    @property
    def public_key(self) -> Tuple[int, int]:
        """Public key (e, n)."""
        return (self._e, self._n)

    @property
    def private_key(self) -> Tuple[int, int]:
        """Private key (d, n)."""
        return (self._d, self._n)

    @property
    def modulus(self) -> int:
        return self._n

    @property
    def public_exponent(self) -> int:
        return self._e

    @property
    def private_exponent(self) -> int:
        return self._d

    @property
    def key_size(self) -> int:
        """Key size in bits."""
        return self._n.bit_length()

    def encrypt(self, message: int) -> int:
        return rsa_encrypt(message, self.public_key)

    def decrypt(self, ciphertext: int) -> int:
        """Reference decryption on the host (not the device path)."""
        return mod_exp(ciphertext, self._d, self._n)

    def verify(self, message: int, signature: int) -> bool:
        return rsa_verify(message, signature, self.public_key)

    def __repr__(self) -> str:
        return f"RSAKeyPair(bits={self.key_size}, e={self._e})"
