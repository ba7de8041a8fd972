"""
LockVault - Cryptography Module

This single file contains ALL cryptographic primitives used by the vault.
Everything above it (codec, recovery, vault flows) is built from these
functions only.

Key Hierarchy:
    1. Master Password + salt   → PBKDF2-SHA256 → Master Key (32 bytes)
    2. Random Data Key (32 bytes) encrypts the entry list and the 2FA list
    3. Data Key is wrapped (encrypted) under the Master Key
    4. Optionally, the Data Key is wrapped a second time under a
       Recovery Key derived from a recovery code or security answers

Why this works:
    - The data key never changes, so a password reset only re-wraps it
    - AES-256-GCM authenticates every blob: a wrong key, nonce or a single
      flipped bit makes decryption fail instead of returning garbage
    - There is no separate password check; a failed unwrap IS the check
"""

import os
import hmac
import base64
import binascii
import hashlib
import secrets
import string
from typing import Tuple, Union

from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC

from .errors import AuthenticationError, KeyDerivationError, MalformedDataError


# =============================================================================
# Configuration
# =============================================================================

KEY_SIZE = 32              # 256-bit keys (AES-256)
SALT_SIZE = 16             # 128-bit salts
NONCE_SIZE = 12            # 96-bit nonce for AES-GCM
TAG_SIZE = 16              # 128-bit authentication tag

# Fixed work factor. Stored vaults depend on it, so it is not configurable.
PBKDF2_ITERATIONS = 100_000


# =============================================================================
# Key Material
# =============================================================================

class SecretKey:
    """
    A 256-bit symmetric key that can be wiped.

    The raw bytes live in a bytearray so they can be overwritten with zeros
    when the key is no longer needed. Use as a context manager to wipe on
    exit:

        with crypto.derive_key(answers, salt) as recovery_key:
            data_key = crypto.unwrap_key(wrapped, recovery_key, iv)
    """

    __slots__ = ("_buf", "_wiped")

    def __init__(self, raw: bytes):
        if len(raw) != KEY_SIZE:
            raise MalformedDataError(f"Key must be {KEY_SIZE} bytes")
        self._buf = bytearray(raw)
        self._wiped = False

    @property
    def raw(self) -> bytes:
        if self._wiped:
            raise ValueError("Key material has been wiped")
        return bytes(self._buf)

    @property
    def wiped(self) -> bool:
        return self._wiped

    def export(self) -> bytes:
        """Export form: base64 text of the raw key (what gets wrapped)."""
        return base64.b64encode(self.raw)

    @classmethod
    def from_export(cls, exported: bytes) -> "SecretKey":
        try:
            raw = base64.b64decode(exported, validate=True)
        except (binascii.Error, ValueError) as e:
            raise MalformedDataError("Unwrapped key is not a valid export") from e
        return cls(raw)

    def wipe(self) -> None:
        """Overwrite the key bytes with zeros."""
        for i in range(len(self._buf)):
            self._buf[i] = 0
        self._wiped = True

    def __enter__(self) -> "SecretKey":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.wipe()

    def __eq__(self, other) -> bool:
        if not isinstance(other, SecretKey):
            return NotImplemented
        return constant_compare(self.raw, other.raw)

    __hash__ = None

    def __repr__(self) -> str:
        return f"<SecretKey {'wiped' if self._wiped else 'live'}>"


def generate_salt() -> bytes:
    """16 random bytes from the OS CSPRNG."""
    return os.urandom(SALT_SIZE)


def generate_data_key() -> SecretKey:
    """
    Generate the vault's data key.

    Called exactly once per vault, at creation. Password resets re-wrap
    this same key; they never generate a new one.
    """
    return SecretKey(os.urandom(KEY_SIZE))


# =============================================================================
# Key Derivation
# =============================================================================

def derive_key(secret: Union[str, bytes], salt: bytes) -> SecretKey:
    """
    Derive a 256-bit key from a password-like secret using PBKDF2.

    Deterministic for identical inputs. A "wrong" secret still derives a
    key successfully; it is simply a different key, which the next unwrap
    will reject.

    Args:
        secret: Master password, recovery code, or combined answers.
            Strings are UTF-8 encoded with no other normalization.
        salt: 16-byte random salt stored with the vault (NOT secret)

    Returns:
        SecretKey usable for AES-256-GCM

    Raises:
        KeyDerivationError: Only if the primitive itself fails
    """
    if isinstance(secret, str):
        secret = secret.encode('utf-8')
    try:
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=KEY_SIZE,
            salt=salt,
            iterations=PBKDF2_ITERATIONS,
        )
        return SecretKey(kdf.derive(secret))
    except (TypeError, ValueError) as e:
        raise KeyDerivationError("Key derivation failed") from e


# =============================================================================
# Encryption (AES-256-GCM)
# =============================================================================

def encrypt(plaintext: bytes, key: SecretKey) -> Tuple[bytes, bytes]:
    """
    Encrypt data with AES-256-GCM.

    Args:
        plaintext: Data to encrypt
        key: 256-bit key

    Returns:
        (nonce, ciphertext) tuple
        - nonce: 12 fresh random bytes (never reused under the same key)
        - ciphertext: encrypted data + 16-byte tag
    """
    nonce = os.urandom(NONCE_SIZE)
    aesgcm = AESGCM(key.raw)
    return nonce, aesgcm.encrypt(nonce, plaintext, None)


def decrypt(ciphertext: bytes, key: SecretKey, nonce: bytes) -> bytes:
    """
    Decrypt AES-256-GCM ciphertext.

    Raises:
        AuthenticationError: Wrong key, wrong nonce, or tampered bytes
        MalformedDataError: Nonce of the wrong size
    """
    if len(nonce) != NONCE_SIZE:
        raise MalformedDataError("Nonce has the wrong length")
    aesgcm = AESGCM(key.raw)
    try:
        return aesgcm.decrypt(nonce, ciphertext, None)
    except InvalidTag:
        raise AuthenticationError() from None


# =============================================================================
# Key Wrapping
# =============================================================================

def wrap_key(data_key: SecretKey, kek: SecretKey) -> Tuple[bytes, bytes]:
    """
    Encrypt (wrap) a key under a key-encryption key.

    This is "envelope encryption":
    - Data key encrypts the entries
    - Master key (or recovery key) encrypts the data key

    Returns:
        (iv, wrapped_key) - both must be stored in the envelope
    """
    return encrypt(data_key.export(), kek)


def unwrap_key(wrapped: bytes, kek: SecretKey, iv: bytes) -> SecretKey:
    """
    Decrypt (unwrap) a key. AuthenticationError propagates unchanged.
    """
    exported = decrypt(wrapped, kek, iv)
    return SecretKey.from_export(exported)


# =============================================================================
# Hashing
# =============================================================================

def hash_secret(data: str, salt: bytes) -> str:
    """
    Salted SHA-256 over salt || data, base64 encoded.

    Used to store a verifier for recovery codes and security answers.
    """
    digest = hashlib.sha256(salt + data.encode('utf-8')).digest()
    return b64encode(digest)


def constant_compare(a: Union[str, bytes], b: Union[str, bytes]) -> bool:
    """Compare two values in constant time."""
    if isinstance(a, str):
        a = a.encode('utf-8')
    if isinstance(b, str):
        b = b.encode('utf-8')
    return hmac.compare_digest(a, b)


# =============================================================================
# Encoding Helpers
# =============================================================================

def b64encode(data: bytes) -> str:
    return base64.b64encode(data).decode('ascii')


def b64decode(text: str) -> bytes:
    """Strict base64 decode; bad input is MalformedDataError."""
    try:
        return base64.b64decode(text, validate=True)
    except (binascii.Error, ValueError, TypeError) as e:
        raise MalformedDataError("Invalid base64 data") from e


# =============================================================================
# Password Generation
# =============================================================================

UPPERCASE = string.ascii_uppercase
LOWERCASE = string.ascii_lowercase
DIGITS = string.digits
SYMBOLS = "!@#$%^&*()-_=+"
AMBIGUOUS = "l1IO0"


def generate_password(
    length: int = 20,
    use_uppercase: bool = True,
    use_lowercase: bool = True,
    use_digits: bool = True,
    use_symbols: bool = True,
    exclude_ambiguous: bool = True,
) -> str:
    """
    Generate a strong random password.

    At least one character from every enabled set is included, then the
    result is shuffled with a CSPRNG so their positions are not fixed.

    Raises:
        ValueError: No character set enabled, or length shorter than the
            number of enabled sets
    """
    charsets = []
    for enabled, chars in ((use_uppercase, UPPERCASE), (use_lowercase, LOWERCASE),
                           (use_digits, DIGITS), (use_symbols, SYMBOLS)):
        if not enabled:
            continue
        if exclude_ambiguous:
            chars = ''.join(c for c in chars if c not in AMBIGUOUS)
        if chars:
            charsets.append(chars)

    if not charsets:
        raise ValueError("Select at least one character set")
    if length < len(charsets):
        raise ValueError(f"Length must be at least {len(charsets)}")

    password = [secrets.choice(chars) for chars in charsets]
    pool = ''.join(charsets)
    password += [secrets.choice(pool) for _ in range(length - len(password))]

    # Fisher-Yates with secrets.randbelow
    for i in range(len(password) - 1, 0, -1):
        j = secrets.randbelow(i + 1)
        password[i], password[j] = password[j], password[i]
    return ''.join(password)
