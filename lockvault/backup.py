"""
LockVault - Backup Files (.vaultbak)

A backup is the encrypted envelope re-keyed into snake_case JSON with the
entry lists freshly sealed from the unlocked vault. It contains no
plaintext: restoring it still requires the master password (or recovery).

Field map (backup -> envelope):
    vault_name        -> name
    master_key        -> encryptedVaultKey
    auth_methods      -> authMethods (JSON-encoded string)
    everything else   -> same field in camelCase
"""

import json
from datetime import datetime, timezone

from . import codec
from .errors import MalformedDataError
from .models import EncryptedVault, UnlockedVault

BACKUP_EXTENSION = ".vaultbak"

# (backup key, envelope key) in file order; optional unless listed in REQUIRED
FIELD_MAP = [
    ("vault_name", "name"),
    ("master_key", "encryptedVaultKey"),
    ("salt", "salt"),
    ("iv", "iv"),
    ("auth_methods", "authMethods"),
    ("encrypted_totp_secret", "encryptedTotpSecret"),
    ("totp_iv", "totpIv"),
    ("recovery_salt", "recoverySalt"),
    ("recovery_method", "recoveryMethod"),
    ("recovery_data", "recoveryData"),
    ("recovery_iv", "recoveryIv"),
    ("encrypted_vault_key_for_recovery", "encryptedVaultKeyForRecovery"),
    ("entries", "entries"),
    ("two_factor_entries", "twoFactorEntries"),
]
REQUIRED = ("vault_name", "master_key")


def backup_filename(vault_name: str) -> str:
    return f"{vault_name}_backup{BACKUP_EXTENSION}"


def export_backup(unlocked: UnlockedVault) -> str:
    """
    Serialize an unlocked vault to backup JSON (indent=2).

    Both entry lists are re-sealed from memory so the backup reflects the
    current session even if it was never saved.
    """
    envelope = unlocked.envelope.to_dict()
    envelope["entries"] = codec.encode_entries(unlocked.entries, unlocked.data_key)
    envelope["twoFactorEntries"] = codec.encode_two_factor_entries(
        unlocked.two_factor_entries, unlocked.data_key)
    envelope["authMethods"] = json.dumps(envelope["authMethods"], separators=(",", ":"))

    data = {}
    for backup_key, envelope_key in FIELD_MAP:
        if envelope.get(envelope_key) is not None:
            data[backup_key] = envelope[envelope_key]
    data["created_at"] = datetime.now(timezone.utc).isoformat()
    return json.dumps(data, indent=2, ensure_ascii=False)


def parse_backup(text: str) -> EncryptedVault:
    """
    Parse backup JSON back into an envelope.

    Raises:
        MalformedDataError: Not JSON, missing vault_name/master_key, or an
            envelope that does not decode
    """
    try:
        data = json.loads(text)
    except ValueError as e:
        raise MalformedDataError("Invalid backup file.") from e
    if not isinstance(data, dict) or not all(data.get(k) for k in REQUIRED):
        raise MalformedDataError("Invalid backup file.")

    envelope = {envelope_key: data[backup_key]
                for backup_key, envelope_key in FIELD_MAP
                if backup_key in data and backup_key != "auth_methods"}
    try:
        envelope["authMethods"] = json.loads(data.get("auth_methods") or '["master_password"]')
    except (TypeError, ValueError) as e:
        raise MalformedDataError("Backup has invalid auth methods") from e
    return EncryptedVault.from_dict(envelope)
