"""
LockVault - Vault Service

The one entry point front ends use. It owns a storage collaborator and
runs the blocking flows from vault.py / recovery.py / backup.py on worker
threads so PBKDF2 never stalls the event loop.

Usage:
    service = VaultCryptoService(open_store("sqlite", "~/.lockvault/vaults.db"))

    created = await service.create_vault("personal", "correct horse", "correct horse")
    unlocked = await service.unlock(created.vault, "correct horse")
    await service.save_entries(unlocked, [Entry(id="1", title="GitHub")])
    service.lock(unlocked)

Every load-modify-store cycle for a vault name holds that name's lock, so
two saves to the same vault never lose each other's update.
"""

import asyncio
import logging
from dataclasses import replace
from typing import Dict, List, Optional, Sequence, Tuple

from . import backup, codec, vault
from .crypto import SecretKey
from .errors import NotFound, ValidationError
from .models import EncryptedVault, Entry, RecoveryMethod, TwoFactorEntry, UnlockedVault
from .recovery import PasswordReset
from .storage import VaultStore
from .vault import CreatedVault, ResetResult

logger = logging.getLogger(__name__)

__all__ = ["VaultCryptoService", "CreatedVault", "ResetResult"]


class VaultCryptoService:
    """Async orchestration of vault creation, unlock, save, reset and backup."""

    def __init__(self, store: VaultStore):
        self.store = store
        self._locks: Dict[str, asyncio.Lock] = {}

    def _lock_for(self, name: str) -> asyncio.Lock:
        return self._locks.setdefault(name, asyncio.Lock())

    # =========================================================================
    # Lookup
    # =========================================================================

    async def list_vaults(self) -> List[str]:
        return await asyncio.to_thread(self.store.get_names)

    async def load(self, name: str) -> EncryptedVault:
        """Stored envelope for name. Raises NotFound."""
        envelope = await asyncio.to_thread(self.store.get, name)
        if envelope is None:
            raise NotFound(f'Vault "{name}" not found.')
        return envelope

    # =========================================================================
    # Create / unlock
    # =========================================================================

    async def create_vault(
        self,
        name: str,
        password: str,
        confirm_password: Optional[str] = None,
        enable_totp: bool = False,
        recovery_method: RecoveryMethod = RecoveryMethod.NONE,
        security_questions: Optional[Sequence[Tuple[str, str]]] = None,
    ) -> CreatedVault:
        """
        Create and persist a new vault.

        Input checks and the duplicate-name check both run before any key
        derivation.

        Raises:
            ValidationError: Bad input or a vault with this name exists
        """
        recovery_method = RecoveryMethod(recovery_method)
        vault.validate_creation(name, password, confirm_password, recovery_method, security_questions)
        name = name.strip()

        async with self._lock_for(name):
            if await asyncio.to_thread(self.store.exists, name):
                raise ValidationError(f'A vault named "{name}" already exists.')
            created = await asyncio.to_thread(
                vault.create_envelope, name, password, confirm_password,
                enable_totp, recovery_method, security_questions,
            )
            await asyncio.to_thread(self.store.put, created.vault)
        return created

    async def unlock(self, envelope: EncryptedVault, password: str,
                     totp_code: Optional[str] = None) -> UnlockedVault:
        """
        Raises:
            ValidationError: TOTP vault without a code
            AuthenticationError: Wrong password or code (one message for both)
        """
        return await asyncio.to_thread(vault.open_envelope, envelope, password, totp_code)

    async def open_vault(self, name: str, password: str, totp_code: Optional[str] = None) -> UnlockedVault:
        """load() + unlock()."""
        return await self.unlock(await self.load(name), password, totp_code)

    def lock(self, unlocked: UnlockedVault) -> None:
        unlocked.lock()

    # =========================================================================
    # Save
    # =========================================================================

    async def save_entries(self, unlocked: UnlockedVault, entries: List[Entry]) -> EncryptedVault:
        """
        Re-encrypt and persist the entry list under the existing data key.

        Only the entries blob of the currently stored envelope is replaced;
        no key is derived or re-wrapped.
        """
        async with self._lock_for(unlocked.name):
            current = await self.load(unlocked.name)
            sealed = await asyncio.to_thread(vault.seal_entries, unlocked, entries)
            envelope = replace(current, entries=sealed.entries)
            await asyncio.to_thread(self.store.put, envelope)

        unlocked.envelope = envelope
        unlocked.entries = list(entries)
        logger.info("Saved %d entries to vault %s", len(entries), unlocked.name)
        return envelope

    async def save_two_factor_entries(self, unlocked: UnlockedVault,
                                      entries: List[TwoFactorEntry]) -> EncryptedVault:
        async with self._lock_for(unlocked.name):
            current = await self.load(unlocked.name)
            sealed = await asyncio.to_thread(vault.seal_two_factor_entries, unlocked, entries)
            envelope = replace(current, two_factor_entries=sealed.two_factor_entries)
            await asyncio.to_thread(self.store.put, envelope)

        unlocked.envelope = envelope
        unlocked.two_factor_entries = list(entries)
        logger.info("Saved %d 2FA accounts to vault %s", len(entries), unlocked.name)
        return envelope

    async def lock_notes(self, entry: Entry, notes_password: str) -> Entry:
        return await asyncio.to_thread(codec.lock_notes, entry, notes_password)

    async def unlock_notes(self, entry: Entry, notes_password: str) -> Entry:
        return await asyncio.to_thread(codec.unlock_notes, entry, notes_password)

    # =========================================================================
    # Password reset
    # =========================================================================

    async def begin_reset(self, name: str) -> PasswordReset:
        """
        Start a reset flow for name.

        Raises:
            NotFound: No such vault
            ValidationError: Vault has no recovery method
        """
        return PasswordReset(await self.load(name))

    async def verify_recovery(self, flow: PasswordReset, code: Optional[str] = None,
                              answers: Optional[Sequence[str]] = None) -> None:
        """VERIFY -> RESET. Raises VerificationFailed and stays in VERIFY."""
        await asyncio.to_thread(flow.verify, code, answers)

    async def complete_reset(self, flow: PasswordReset, new_password: str,
                             confirm_password: str) -> ResetResult:
        """RESET -> SUCCESS, then persist the re-wrapped envelope."""
        name = flow.envelope.name
        async with self._lock_for(name):
            # Pick up entry saves made since the flow started
            flow.envelope = await self.load(name)
            result = await asyncio.to_thread(flow.reset, new_password, confirm_password)
            await asyncio.to_thread(self.store.put, result.vault)
        return result

    async def reset_password(self, envelope: EncryptedVault, recovered_data_key: SecretKey,
                             new_password: str) -> ResetResult:
        """Re-wrap an already recovered data key and persist the result."""
        async with self._lock_for(envelope.name):
            result = await asyncio.to_thread(vault.reset_password, envelope, recovered_data_key, new_password)
            await asyncio.to_thread(self.store.put, result.vault)
        return result

    # =========================================================================
    # Delete / backup
    # =========================================================================

    async def delete_vault(self, name: str) -> None:
        """Raises NotFound if there is no such vault."""
        lock = self._lock_for(name)
        async with lock:
            removed = await asyncio.to_thread(self.store.delete, name)
        if not lock.locked() and self._locks.get(name) is lock:
            del self._locks[name]
        if not removed:
            raise NotFound(f'Vault "{name}" not found.')
        logger.info("Deleted vault %s", name)

    async def export_backup(self, unlocked: UnlockedVault) -> str:
        """Backup JSON for the unlocked vault (see backup.export_backup)."""
        text = await asyncio.to_thread(backup.export_backup, unlocked)
        logger.info("Exported backup of vault %s", unlocked.name)
        return text

    async def import_backup(self, text: str, overwrite: bool = False) -> EncryptedVault:
        """
        Restore a vault from backup JSON.

        Replacing an existing vault is destructive; the caller must confirm
        with the user and pass overwrite=True.

        Raises:
            MalformedDataError: Invalid backup file
            ValidationError: Name exists and overwrite is False
        """
        envelope = backup.parse_backup(text)
        async with self._lock_for(envelope.name):
            if not overwrite and await asyncio.to_thread(self.store.exists, envelope.name):
                raise ValidationError(f'Vault "{envelope.name}" already exists.')
            await asyncio.to_thread(self.store.put, envelope)
        logger.info("Restored vault %s from backup", envelope.name)
        return envelope
