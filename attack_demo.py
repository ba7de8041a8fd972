"""
LockVault - Attack Demonstration

Run: python attack_demo.py

What it shows (and why attacks fail):
1) Wrong master password cannot unwrap the data key.
2) Ciphertext tampering is detected by AES-GCM.
3) A stolen TOTP vault still needs the current code.
4) A guessed recovery code is rejected before any key is derived.
5) A truncated backup is reported as corrupt, not decoded to garbage.
"""

import asyncio
import json
import os
import tempfile

import pyotp

from lockvault import crypto
from lockvault.errors import AuthenticationError, MalformedDataError, ValidationError, VerificationFailed
from lockvault.models import EncryptedVault, Entry, RecoveryMethod
from lockvault.service import VaultCryptoService
from lockvault.storage import SqliteStore


LINE = "=" * 70


def section(title: str):
    print(f"\n{LINE}\n{title}\n{LINE}")


async def demo(service: VaultCryptoService):
    master_password = "CorrectHorseBatteryStaple!"

    created = await service.create_vault(
        "demo", master_password, master_password,
        enable_totp=True, recovery_method=RecoveryMethod.CODE,
    )
    code = pyotp.TOTP(created.totp_secret).now()
    unlocked = await service.unlock(created.vault, master_password, code)
    await service.save_entries(unlocked, [
        Entry(id="1", title="example.com", username="alice@example.com",
              password="super_secret_password", url="https://example.com/login"),
    ])
    envelope = unlocked.envelope
    service.lock(unlocked)

    # 1) Wrong master password
    section("Attack 1: Wrong master password")
    try:
        await service.unlock(envelope, "wrong_password", pyotp.TOTP(created.totp_secret).now())
        print("Unexpected: unlock succeeded with wrong password")
    except AuthenticationError as e:
        print(f"Expected failure: wrong password cannot unwrap the data key ({e})")

    # 2) Ciphertext tampering (AES-GCM)
    section("Attack 2: Ciphertext tampering (AES-GCM)")
    blob = bytearray(crypto.b64decode(envelope.entries))
    blob[-1] ^= 1  # flip one bit of the tag
    tampered = envelope.to_dict()
    tampered["entries"] = crypto.b64encode(bytes(blob))
    try:
        await service.unlock(EncryptedVault.from_dict(tampered), master_password,
                             pyotp.TOTP(created.totp_secret).now())
        print("Unexpected: tampered ciphertext still decrypted")
    except AuthenticationError as e:
        print(f"Expected failure: AES-GCM detected tampering ({e})")

    # 3) TOTP gating
    section("Attack 3: Correct password, no / wrong TOTP code")
    try:
        await service.unlock(envelope, master_password)
        print("Unexpected: unlocked without a code")
    except ValidationError as e:
        print(f"Expected failure: code required ({e})")
    try:
        await service.unlock(envelope, master_password, "000000")
        print("Unexpected: unlocked with a guessed code")
    except AuthenticationError as e:
        print(f"Expected failure: code rejected ({e})")

    # 4) Guessed recovery code
    section("Attack 4: Guessed recovery code")
    flow = await service.begin_reset("demo")
    try:
        await service.verify_recovery(flow, code="A" * 32)
        print("Unexpected: guessed recovery code accepted")
    except VerificationFailed as e:
        print(f"Expected failure: recovery code rejected, still at step {flow.step.name} ({e})")

    # 5) Truncated backup
    section("Attack 5: Truncated backup")
    unlocked = await service.unlock(envelope, master_password, pyotp.TOTP(created.totp_secret).now())
    backup = json.loads(await service.export_backup(unlocked))
    service.lock(unlocked)
    backup["vault_name"] = "truncated"
    backup["entries"] = backup["entries"][:8]
    restored = await service.import_backup(json.dumps(backup))
    try:
        await service.unlock(restored, master_password, pyotp.TOTP(created.totp_secret).now())
        print("Unexpected: truncated entries decoded")
    except MalformedDataError as e:
        print(f"Expected failure: truncated blob reported as corrupt ({e})")


def main():
    with tempfile.TemporaryDirectory() as tmp:
        service = VaultCryptoService(SqliteStore(os.path.join(tmp, "vaults.db")))
        asyncio.run(demo(service))
    print("\nDemo complete. All showcased attacks failed as expected.")


if __name__ == "__main__":
    main()
