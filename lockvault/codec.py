"""
LockVault - Entry Codec

Serializes the entry list (and, independently, the 2FA list) to canonical
JSON and encrypts it under the vault's data key.

Blob format (base64 of):
    nonce (12 bytes) || AES-GCM ciphertext + tag

An empty blob is a brand-new vault and decodes to [].
"""

import json
from dataclasses import replace
from typing import Any, List

from . import crypto
from .errors import MalformedDataError, ValidationError
from .models import Entry, TwoFactorEntry


def canonical_json(value: Any) -> bytes:
    """
    Convert a JSON-able value to canonical bytes.

    Format:
    - Keys sorted lexicographically
    - No whitespace (compact)
    - UTF-8 without escaping non-ASCII
    """
    text = json.dumps(value, separators=(",", ":"), sort_keys=True, ensure_ascii=False)
    return text.encode('utf-8')


def _seal(items: list, data_key: crypto.SecretKey) -> str:
    nonce, ciphertext = crypto.encrypt(canonical_json(items), data_key)
    return crypto.b64encode(nonce + ciphertext)


def _open(blob: str, data_key: crypto.SecretKey) -> list:
    if not blob:
        return []
    combined = crypto.b64decode(blob)
    if len(combined) < crypto.NONCE_SIZE + crypto.TAG_SIZE:
        raise MalformedDataError("Encrypted data is truncated")

    nonce = combined[:crypto.NONCE_SIZE]
    ciphertext = combined[crypto.NONCE_SIZE:]
    plaintext = crypto.decrypt(ciphertext, data_key, nonce)

    try:
        items = json.loads(plaintext.decode('utf-8'))
    except (UnicodeDecodeError, ValueError) as e:
        raise MalformedDataError("Decrypted data is not valid JSON") from e
    if not isinstance(items, list):
        raise MalformedDataError("Decrypted data is not a list")
    return items


# =============================================================================
# Entries
# =============================================================================

def encode_entries(entries: List[Entry], data_key: crypto.SecretKey) -> str:
    """Encrypt the entry list. Absent passwords are stored as ''."""
    return _seal([e.to_dict() for e in entries], data_key)


def decode_entries(blob: str, data_key: crypto.SecretKey) -> List[Entry]:
    """
    Decrypt an entry blob, preserving order.

    Raises:
        AuthenticationError: Wrong data key or tampered blob
        MalformedDataError: Truncated blob, bad base64, or unparsable plaintext
    """
    return [Entry.from_dict(d) for d in _open(blob, data_key)]


# =============================================================================
# Second-factor entries
# =============================================================================

def encode_two_factor_entries(entries: List[TwoFactorEntry], data_key: crypto.SecretKey) -> str:
    return _seal([e.to_dict() for e in entries], data_key)


def decode_two_factor_entries(blob: str, data_key: crypto.SecretKey) -> List[TwoFactorEntry]:
    return [TwoFactorEntry.from_dict(d) for d in _open(blob, data_key)]


# =============================================================================
# Notes encryption (application layer, outside the data-key envelope)
# =============================================================================

def lock_notes(entry: Entry, notes_password: str) -> Entry:
    """
    Return a copy of entry with its notes encrypted under notes_password.

    Notes blob (base64): salt (16) || nonce (12) || ciphertext + tag
    """
    if entry.notes_encrypted:
        raise ValidationError("Notes are already encrypted")
    if not notes_password:
        raise ValidationError("A notes password is required")

    salt = crypto.generate_salt()
    with crypto.derive_key(notes_password, salt) as key:
        nonce, ciphertext = crypto.encrypt((entry.notes or "").encode('utf-8'), key)
    return replace(entry, notes=crypto.b64encode(salt + nonce + ciphertext), notes_encrypted=True)


def unlock_notes(entry: Entry, notes_password: str) -> Entry:
    """Reverse lock_notes. A wrong password raises AuthenticationError."""
    if not entry.notes_encrypted:
        return entry

    raw = crypto.b64decode(entry.notes or "")
    header = crypto.SALT_SIZE + crypto.NONCE_SIZE
    if len(raw) < header + crypto.TAG_SIZE:
        raise MalformedDataError("Encrypted notes are truncated")

    salt, nonce, ciphertext = raw[:crypto.SALT_SIZE], raw[crypto.SALT_SIZE:header], raw[header:]
    with crypto.derive_key(notes_password, salt) as key:
        plaintext = crypto.decrypt(ciphertext, key, nonce)
    return replace(entry, notes=plaintext.decode('utf-8'), notes_encrypted=False)
