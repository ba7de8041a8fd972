"""
LockVault - Data Model

EncryptedVault is the persisted envelope. Its to_dict()/from_dict() pair
is the only place the stored JSON shape is known; the recovery fields are
decoded there, once, into one of NoRecovery / CodeRecovery /
QuestionsRecovery.

UnlockedVault exists only in memory between unlock and lock.
"""

import json
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple, Union

from .crypto import SecretKey
from .errors import MalformedDataError


class AuthMethod(str, Enum):
    MASTER_PASSWORD = "master_password"
    TOTP = "totp"
    BIOMETRIC = "biometric"
    RECOVERY_PASSWORD = "recovery_password"


class RecoveryMethod(str, Enum):
    NONE = "none"
    CODE = "code"
    QUESTIONS = "questions"


# =============================================================================
# Entries
# =============================================================================

@dataclass
class Entry:
    """One credential record. Notes may be locked with their own password."""

    id: str
    title: str = ""
    url: str = ""
    username: str = ""
    password: str = ""
    notes: Optional[str] = None
    notes_encrypted: bool = False

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "id": self.id,
            "title": self.title,
            "url": self.url,
            "username": self.username,
            "password": self.password or "",
        }
        if self.notes is not None:
            d["notes"] = self.notes
        if self.notes_encrypted:
            d["notesEncrypted"] = True
        return d

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "Entry":
        if not isinstance(d, dict) or not isinstance(d.get("id"), str):
            raise MalformedDataError("Entry record is missing its id")
        return cls(
            id=d["id"],
            title=d.get("title") or "",
            url=d.get("url") or "",
            username=d.get("username") or "",
            password=d.get("password") or "",
            notes=d.get("notes"),
            notes_encrypted=bool(d.get("notesEncrypted", False)),
        )


@dataclass
class TwoFactorEntry:
    """A TOTP account stored inside the vault (secret is base32)."""

    id: str
    title: str
    issuer: str
    secret: str
    algorithm: str = "SHA1"
    digits: int = 6
    period: int = 30

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "issuer": self.issuer,
            "secret": self.secret,
            "algorithm": self.algorithm,
            "digits": self.digits,
            "period": self.period,
        }

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "TwoFactorEntry":
        if not isinstance(d, dict) or not isinstance(d.get("id"), str):
            raise MalformedDataError("2FA record is missing its id")
        if not isinstance(d.get("secret"), str):
            raise MalformedDataError("2FA record is missing its secret")
        try:
            return cls(
                id=d["id"],
                title=d.get("title") or "",
                issuer=d.get("issuer") or "",
                secret=d["secret"],
                algorithm=d.get("algorithm") or "SHA1",
                digits=int(d.get("digits") or 6),
                period=int(d.get("period") or 30),
            )
        except (TypeError, ValueError) as e:
            raise MalformedDataError("2FA record has invalid parameters") from e


# =============================================================================
# Recovery Envelope (tagged union)
# =============================================================================

@dataclass(frozen=True)
class NoRecovery:
    method = RecoveryMethod.NONE


@dataclass(frozen=True)
class CodeRecovery:
    """Data key wrapped under a key derived from a one-time-shown code."""

    salt: str
    iv: str
    wrapped_key: str
    code_hash: str

    method = RecoveryMethod.CODE


@dataclass(frozen=True)
class SecurityQuestion:
    question: str
    answer_hash: str


@dataclass(frozen=True)
class QuestionsRecovery:
    """Data key wrapped under a key derived from two combined answers."""

    salt: str
    iv: str
    wrapped_key: str
    questions: Tuple[SecurityQuestion, SecurityQuestion]

    method = RecoveryMethod.QUESTIONS


RecoveryEnvelope = Union[NoRecovery, CodeRecovery, QuestionsRecovery]


def _encode_recovery(recovery: RecoveryEnvelope) -> Dict[str, Any]:
    if isinstance(recovery, NoRecovery):
        return {}
    d = {
        "recoverySalt": recovery.salt,
        "recoveryMethod": recovery.method.value,
        "recoveryIv": recovery.iv,
        "encryptedVaultKeyForRecovery": recovery.wrapped_key,
    }
    if isinstance(recovery, CodeRecovery):
        d["recoveryData"] = recovery.code_hash
    else:
        d["recoveryData"] = json.dumps(
            [{"q": sq.question, "a": sq.answer_hash} for sq in recovery.questions],
            separators=(",", ":"),
            ensure_ascii=False,
        )
    return d


def _decode_recovery(d: Dict[str, Any]) -> RecoveryEnvelope:
    method = d.get("recoveryMethod") or RecoveryMethod.NONE.value
    if method == RecoveryMethod.NONE.value:
        return NoRecovery()

    salt = d.get("recoverySalt")
    iv = d.get("recoveryIv")
    wrapped = d.get("encryptedVaultKeyForRecovery")
    data = d.get("recoveryData")
    if not (salt and iv and wrapped and data):
        raise MalformedDataError("Recovery data is missing or corrupt.")

    if method == RecoveryMethod.CODE.value:
        return CodeRecovery(salt=salt, iv=iv, wrapped_key=wrapped, code_hash=data)

    if method == RecoveryMethod.QUESTIONS.value:
        try:
            pairs = json.loads(data)
            questions = tuple(SecurityQuestion(question=p["q"], answer_hash=p["a"]) for p in pairs)
        except (ValueError, TypeError, KeyError) as e:
            raise MalformedDataError("Recovery data is missing or corrupt.") from e
        if len(questions) != 2:
            raise MalformedDataError("Recovery data is missing or corrupt.")
        return QuestionsRecovery(salt=salt, iv=iv, wrapped_key=wrapped, questions=questions)

    raise MalformedDataError(f"Unknown recovery method: {method!r}")


# =============================================================================
# Envelopes
# =============================================================================

@dataclass
class EncryptedVault:
    """
    The persisted record for one vault. All binary fields are base64 text.

    entries / two_factor_entries hold nonce || ciphertext under the data
    key; an empty string means "no entries yet".
    """

    name: str
    encrypted_vault_key: str
    salt: str
    iv: str
    auth_methods: List[AuthMethod] = field(default_factory=lambda: [AuthMethod.MASTER_PASSWORD])
    entries: str = ""
    two_factor_entries: Optional[str] = None
    encrypted_totp_secret: Optional[str] = None
    totp_iv: Optional[str] = None
    recovery: RecoveryEnvelope = field(default_factory=NoRecovery)

    @property
    def totp_enabled(self) -> bool:
        return AuthMethod.TOTP in self.auth_methods

    @property
    def recovery_method(self) -> RecoveryMethod:
        return self.recovery.method

    def to_dict(self) -> Dict[str, Any]:
        d = {
            "name": self.name,
            "encryptedVaultKey": self.encrypted_vault_key,
            "salt": self.salt,
            "iv": self.iv,
            "authMethods": [m.value for m in self.auth_methods],
            "entries": self.entries,
        }
        if self.two_factor_entries is not None:
            d["twoFactorEntries"] = self.two_factor_entries
        if self.encrypted_totp_secret is not None:
            d["encryptedTotpSecret"] = self.encrypted_totp_secret
        if self.totp_iv is not None:
            d["totpIv"] = self.totp_iv
        d.update(_encode_recovery(self.recovery))
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), separators=(",", ":"), ensure_ascii=False)

    @classmethod
    def from_dict(cls, d: Dict[str, Any]) -> "EncryptedVault":
        if not isinstance(d, dict):
            raise MalformedDataError("Vault record is not an object")
        for key in ("name", "encryptedVaultKey", "salt", "iv"):
            if not isinstance(d.get(key), str) or not d[key]:
                raise MalformedDataError(f"Vault record is missing '{key}'")
        try:
            auth_methods = [AuthMethod(m) for m in d.get("authMethods") or ["master_password"]]
        except (ValueError, TypeError) as e:
            raise MalformedDataError("Vault record has unknown auth methods") from e

        return cls(
            name=d["name"],
            encrypted_vault_key=d["encryptedVaultKey"],
            salt=d["salt"],
            iv=d["iv"],
            auth_methods=auth_methods,
            entries=d.get("entries") or "",
            two_factor_entries=d.get("twoFactorEntries"),
            encrypted_totp_secret=d.get("encryptedTotpSecret"),
            totp_iv=d.get("totpIv"),
            recovery=_decode_recovery(d),
        )

    @classmethod
    def from_json(cls, text: str) -> "EncryptedVault":
        try:
            d = json.loads(text)
        except ValueError as e:
            raise MalformedDataError("Vault record is not valid JSON") from e
        return cls.from_dict(d)


@dataclass
class UnlockedVault:
    """
    In-memory view of an unlocked vault. Never persisted.

    envelope is the last saved EncryptedVault; saves produce a new
    envelope from it with only the entry blobs replaced.
    """

    name: str
    data_key: SecretKey
    master_key: SecretKey
    entries: List[Entry]
    two_factor_entries: List[TwoFactorEntry]
    envelope: EncryptedVault

    @property
    def locked(self) -> bool:
        return self.data_key.wiped

    def lock(self) -> None:
        """Wipe key material and drop plaintext."""
        self.data_key.wipe()
        self.master_key.wipe()
        self.entries = []
        self.two_factor_entries = []
