"""
LockVault - Vault Flows

This file handles the key hierarchy of a single vault:
- Creation (data key, master-key wrap, optional TOTP, optional recovery)
- Unlock (password -> master key -> data key -> entries)
- Saving entries / 2FA entries under the existing data key
- Password reset (re-wrap the SAME data key under a new master key)

Everything here is synchronous and storage-free: it maps envelopes to
envelopes. The service layer decides when to persist and runs these
functions off the event loop.

Envelope layout (see models.EncryptedVault):
    salt                -> PBKDF2 salt for the master key
    iv, encryptedVaultKey -> data key wrapped under the master key
    entries             -> entry list sealed under the data key
    encryptedTotpSecret -> TOTP secret sealed under the master key
    recovery*           -> data key wrapped under the recovery key
"""

import logging
from dataclasses import dataclass, replace
from typing import List, Optional, Sequence, Tuple

from . import codec, crypto, recovery, totp
from .errors import AuthenticationError, MalformedDataError, ValidationError
from .models import (
    AuthMethod,
    EncryptedVault,
    Entry,
    RecoveryMethod,
    TwoFactorEntry,
    UnlockedVault,
)

logger = logging.getLogger(__name__)

MIN_PASSWORD_LENGTH = 8


@dataclass
class CreatedVault:
    """
    Result of vault creation.

    totp_secret / totp_uri and recovery_code are shown to the user once;
    they are never persisted in plaintext.
    """

    vault: EncryptedVault
    totp_secret: Optional[str] = None
    totp_uri: Optional[str] = None
    recovery_code: Optional[str] = None


@dataclass
class ResetResult:
    """Envelope after a password reset (plus a fresh TOTP enrollment, if any)."""

    vault: EncryptedVault
    totp_secret: Optional[str] = None
    totp_uri: Optional[str] = None


# =============================================================================
# Validation
# =============================================================================

def validate_name(name: str) -> str:
    """Vault names are trimmed and must not be blank."""
    if not name or not name.strip():
        raise ValidationError("Vault name is required.")
    return name.strip()


def validate_password(password: str, confirm: Optional[str] = None) -> None:
    """
    Master password rules: at least MIN_PASSWORD_LENGTH characters and,
    when a confirmation is given, equal to it.
    """
    if not password or len(password) < MIN_PASSWORD_LENGTH:
        raise ValidationError(f"Password must be at least {MIN_PASSWORD_LENGTH} characters.")
    if confirm is not None and password != confirm:
        raise ValidationError("Passwords do not match.")


def validate_creation(
    name: str,
    password: str,
    confirm_password: Optional[str] = None,
    recovery_method: RecoveryMethod = RecoveryMethod.NONE,
    security_questions: Optional[Sequence[Tuple[str, str]]] = None,
) -> None:
    """All cheap checks for create_envelope, run before any key derivation."""
    validate_name(name)
    validate_password(password, confirm_password)
    if recovery_method is RecoveryMethod.QUESTIONS:
        recovery.validate_questions(security_questions or [])


def _check_unique_ids(items) -> None:
    seen = set()
    for item in items:
        if item.id in seen:
            raise ValidationError(f"Duplicate entry id: {item.id}")
        seen.add(item.id)


# =============================================================================
# Create
# =============================================================================

def create_envelope(
    name: str,
    password: str,
    confirm_password: Optional[str] = None,
    enable_totp: bool = False,
    recovery_method: RecoveryMethod = RecoveryMethod.NONE,
    security_questions: Optional[Sequence[Tuple[str, str]]] = None,
) -> CreatedVault:
    """
    Create a new vault envelope.

    This:
    1. Generates the data key (the only time it is ever generated)
    2. Derives the master key from password + fresh salt
    3. Wraps the data key under the master key
    4. Seals an empty entry list
    5. Optionally enrolls TOTP (secret sealed under the master key)
    6. Optionally wraps the data key a second time for recovery

    Returns:
        CreatedVault; recovery_code is set only for code recovery
    """
    recovery_method = RecoveryMethod(recovery_method)
    validate_creation(name, password, confirm_password, recovery_method, security_questions)
    name = name.strip()

    salt = crypto.generate_salt()
    with crypto.generate_data_key() as data_key, crypto.derive_key(password, salt) as master_key:
        iv, wrapped = crypto.wrap_key(data_key, master_key)
        envelope = EncryptedVault(
            name=name,
            encrypted_vault_key=crypto.b64encode(wrapped),
            salt=crypto.b64encode(salt),
            iv=crypto.b64encode(iv),
            entries=codec.encode_entries([], data_key),
        )
        result = CreatedVault(vault=envelope)

        if enable_totp:
            result.totp_secret, result.totp_uri = _enroll_totp(envelope, master_key)

        if recovery_method is RecoveryMethod.CODE:
            envelope.recovery, result.recovery_code = recovery.build_code_recovery(data_key)
        elif recovery_method is RecoveryMethod.QUESTIONS:
            envelope.recovery = recovery.build_question_recovery(data_key, security_questions)

    logger.info("Created vault %s (totp=%s, recovery=%s)", name, enable_totp, recovery_method.value)
    return result


def _enroll_totp(envelope: EncryptedVault, master_key: crypto.SecretKey) -> Tuple[str, str]:
    """Seal a new TOTP secret under master_key into envelope (in place)."""
    secret = totp.generate_secret()
    nonce, ciphertext = crypto.encrypt(secret.encode('utf-8'), master_key)
    envelope.encrypted_totp_secret = crypto.b64encode(ciphertext)
    envelope.totp_iv = crypto.b64encode(nonce)
    if AuthMethod.TOTP not in envelope.auth_methods:
        envelope.auth_methods = envelope.auth_methods + [AuthMethod.TOTP]
    return secret, totp.provisioning_uri(secret, envelope.name)


# =============================================================================
# Unlock
# =============================================================================

def open_envelope(envelope: EncryptedVault, password: str, totp_code: Optional[str] = None) -> UnlockedVault:
    """
    Unlock a vault with its master password (and TOTP code if enrolled).

    Every authentication failure (wrong password, wrong code, tampered key
    blob) surfaces as the same AuthenticationError so the caller cannot
    tell which factor was wrong.

    Raises:
        ValidationError: TOTP vault and no code given (no crypto performed)
        AuthenticationError: Wrong password or code
        MalformedDataError: Envelope fields are not decodable
    """
    if envelope.totp_enabled and not (totp_code or "").strip():
        raise ValidationError("TOTP code is required.")

    salt = crypto.b64decode(envelope.salt)
    wrapped = crypto.b64decode(envelope.encrypted_vault_key)
    iv = crypto.b64decode(envelope.iv)

    master_key = crypto.derive_key(password, salt)
    try:
        if envelope.totp_enabled:
            _check_totp(envelope, master_key, totp_code)
        data_key = crypto.unwrap_key(wrapped, master_key, iv)
    except (AuthenticationError, MalformedDataError):
        master_key.wipe()
        logger.warning("Unlock failed for vault %s", envelope.name)
        raise

    try:
        entries = codec.decode_entries(envelope.entries, data_key)
        two_factor = codec.decode_two_factor_entries(envelope.two_factor_entries or "", data_key)
    except (AuthenticationError, MalformedDataError):
        data_key.wipe()
        master_key.wipe()
        raise

    logger.info("Unlocked vault %s (%d entries)", envelope.name, len(entries))
    return UnlockedVault(
        name=envelope.name,
        data_key=data_key,
        master_key=master_key,
        entries=entries,
        two_factor_entries=two_factor,
        envelope=envelope,
    )


def _check_totp(envelope: EncryptedVault, master_key: crypto.SecretKey, code: str) -> None:
    if not envelope.encrypted_totp_secret or not envelope.totp_iv:
        raise MalformedDataError("TOTP is enabled but the secret is missing")
    secret = crypto.decrypt(
        crypto.b64decode(envelope.encrypted_totp_secret),
        master_key,
        crypto.b64decode(envelope.totp_iv),
    ).decode('utf-8')
    if not totp.verify_code(secret, code):
        raise AuthenticationError()


# =============================================================================
# Save
# =============================================================================

def _require_unlocked(unlocked: UnlockedVault) -> None:
    if unlocked.locked:
        raise ValidationError("Vault is locked. Unlock it first.")


def seal_entries(unlocked: UnlockedVault, entries: List[Entry]) -> EncryptedVault:
    """
    Re-encrypt the entry list under the existing data key.

    Returns a new envelope; only the entries blob differs. The data key
    and every wrapping of it are untouched.
    """
    _require_unlocked(unlocked)
    _check_unique_ids(entries)
    return replace(unlocked.envelope, entries=codec.encode_entries(entries, unlocked.data_key))


def seal_two_factor_entries(unlocked: UnlockedVault, entries: List[TwoFactorEntry]) -> EncryptedVault:
    """Same as seal_entries, for the 2FA account list."""
    _require_unlocked(unlocked)
    _check_unique_ids(entries)
    for entry in entries:
        totp.validate_entry(entry)
    blob = codec.encode_two_factor_entries(entries, unlocked.data_key)
    return replace(unlocked.envelope, two_factor_entries=blob)


# =============================================================================
# Reset
# =============================================================================

def reset_password(envelope: EncryptedVault, data_key: crypto.SecretKey, new_password: str) -> ResetResult:
    """
    Re-wrap a recovered data key under a new master password.

    - A fresh salt replaces the old one; salt, iv and encryptedVaultKey are
      overwritten together
    - Entry blobs and the recovery envelope are left exactly as they were
    - A TOTP vault gets a new TOTP secret sealed under the new master key
      (the old one was sealed under the old key and cannot be carried over)

    Raises:
        ValidationError: new_password too short
    """
    validate_password(new_password)
    if data_key.wiped:
        raise ValidationError("Recovered key is no longer available.")

    salt = crypto.generate_salt()
    with crypto.derive_key(new_password, salt) as master_key:
        iv, wrapped = crypto.wrap_key(data_key, master_key)
        updated = replace(
            envelope,
            salt=crypto.b64encode(salt),
            iv=crypto.b64encode(iv),
            encrypted_vault_key=crypto.b64encode(wrapped),
            auth_methods=list(envelope.auth_methods),
        )
        result = ResetResult(vault=updated)
        if envelope.totp_enabled:
            result.totp_secret, result.totp_uri = _enroll_totp(updated, master_key)

    logger.info("Password reset for vault %s", envelope.name)
    return result
