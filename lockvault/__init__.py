"""
LockVault - Local-First Encrypted Credential Vault

All encryption happens locally; the store only ever sees ciphertext.

Key Features:
- Envelope encryption: one random data key per vault, wrapped under a
  PBKDF2-derived master key (AES-256-GCM everywhere)
- Optional TOTP second factor for unlock
- Password reset via recovery code or security questions, without
  re-encrypting any entry
- Swappable storage: SQLite, JSON directory or memory

Components:
- crypto.py:   All cryptographic primitives (one file!)
- codec.py:    Entry / 2FA list encryption, notes encryption
- totp.py:     TOTP helpers (pyotp)
- recovery.py: Recovery code / security questions + reset state machine
- vault.py:    Create / unlock / save / reset flows
- storage.py:  Storage adapters
- backup.py:   .vaultbak export and import
- service.py:  Async service front ends call
- config.py:   Environment settings

Usage:
    lockvault                          # Interactive menu
"""

__version__ = "0.3.0"
__author__ = "LockVault Team"
