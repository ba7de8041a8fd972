"""
LockVault - TOTP helpers (pyotp)

Thin layer over pyotp used for two things:
- the vault's own second factor (secret wrapped under the master key)
- the 2FA accounts stored inside the vault (TwoFactorEntry)
"""

import binascii
import hashlib
import time
from typing import Optional

import pyotp

from .errors import MalformedDataError, ValidationError
from .models import TwoFactorEntry

ISSUER = "Vault Manager"
DEFAULT_WINDOW = 1          # Allow ±1 time step for clock drift

DIGESTS = {
    "SHA1": hashlib.sha1,
    "SHA256": hashlib.sha256,
    "SHA512": hashlib.sha512,
}
ALLOWED_DIGITS = (6, 8)


def generate_secret() -> str:
    """New random base32 secret (160 bits)."""
    return pyotp.random_base32()


def normalize_secret(secret: str) -> str:
    return secret.replace(" ", "").upper()


def build_totp(secret: str, algorithm: str = "SHA1", digits: int = 6, period: int = 30) -> pyotp.TOTP:
    digest = DIGESTS.get((algorithm or "SHA1").upper())
    if digest is None:
        raise ValidationError(f"Unsupported TOTP algorithm: {algorithm}")
    return pyotp.TOTP(normalize_secret(secret), digits=digits, digest=digest, interval=period)


def provisioning_uri(secret: str, vault_name: str) -> str:
    """otpauth:// URI for enrolling the vault's second factor in an app."""
    return build_totp(secret).provisioning_uri(name=vault_name, issuer_name=ISSUER)


def verify_code(secret: str, code: str, window: int = DEFAULT_WINDOW, for_time=None) -> bool:
    """
    Check a 6-digit SHA1/30s code against secret within ±window steps.

    Raises:
        MalformedDataError: secret is not valid base32
    """
    code = (code or "").strip()
    if not code.isdigit():
        return False
    try:
        return build_totp(secret).verify(code, for_time=for_time, valid_window=window)
    except (binascii.Error, ValueError) as e:
        raise MalformedDataError("TOTP secret is not valid base32") from e


def current_code(entry: TwoFactorEntry, for_time=None) -> str:
    """Code for a stored 2FA account, now or at for_time."""
    totp = build_totp(entry.secret, entry.algorithm, entry.digits, entry.period)
    try:
        return totp.now() if for_time is None else totp.at(for_time)
    except (binascii.Error, ValueError) as e:
        raise MalformedDataError(f"2FA entry {entry.id} has an invalid secret") from e


def seconds_remaining(entry: TwoFactorEntry, now: Optional[float] = None) -> int:
    now = time.time() if now is None else now
    return int(entry.period - (now % entry.period))


def validate_entry(entry: TwoFactorEntry) -> None:
    """Reject entries that could never produce a code."""
    if not entry.secret or not entry.secret.strip():
        raise ValidationError("Secret is required")
    if entry.digits not in ALLOWED_DIGITS:
        raise ValidationError("Digits must be 6 or 8")
    if entry.period <= 0:
        raise ValidationError("Period must be positive")
    try:
        build_totp(entry.secret, entry.algorithm, entry.digits, entry.period).byte_secret()
    except (binascii.Error, ValueError) as e:
        raise ValidationError("Secret is not valid base32") from e


def entry_from_uri(uri: str, entry_id: str) -> TwoFactorEntry:
    """
    Build a TwoFactorEntry from an otpauth://totp/ URI (what a QR code holds).
    """
    try:
        otp = pyotp.parse_uri(uri.strip())
    except ValueError as e:
        raise ValidationError("Not a valid otpauth URI") from e
    if not isinstance(otp, pyotp.TOTP):
        raise ValidationError("Only TOTP URIs are supported")

    entry = TwoFactorEntry(
        id=entry_id,
        title=otp.name or "",
        issuer=otp.issuer or "",
        secret=normalize_secret(otp.secret),
        algorithm=otp.digest().name.upper(),
        digits=otp.digits,
        period=otp.interval,
    )
    validate_entry(entry)
    return entry
