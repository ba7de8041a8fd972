"""
LockVault - Recovery Module

A second, independent way to unwrap the data key when the master password
is forgotten:

- code:      a random 32-character recovery code, shown once at creation
- questions: two predefined security questions; the two lowercased,
             trimmed answers are concatenated into ONE recovery secret

Either way the data key is wrapped under PBKDF2(recovery secret,
recovery salt). Because this wrapping is independent of the master-key
wrapping, a password reset leaves it untouched and the same code or
answers keep working afterwards.

Reset flow (PasswordReset): VERIFY -> RESET -> SUCCESS, no way back.
"""

import logging
from enum import Enum
from typing import List, Optional, Sequence, Tuple

from . import crypto
from .errors import AuthenticationError, ValidationError, VerificationFailed
from .models import (
    CodeRecovery,
    EncryptedVault,
    NoRecovery,
    QuestionsRecovery,
    RecoveryMethod,
    SecurityQuestion,
)

logger = logging.getLogger(__name__)

PREDEFINED_QUESTIONS = [
    "What was your childhood nickname?",
    "What is the name of your favorite childhood friend?",
    "What street did you live on in third grade?",
    "What is your oldest sibling's middle name?",
    "What was the name of your first pet?",
    "What was the name of the high school you graduated from?",
    "What was your favorite food as a child?",
]

RECOVERY_CODE_LENGTH = 32


# =============================================================================
# Secrets
# =============================================================================

def generate_recovery_code() -> str:
    """32 characters of base64 drawn from two fresh 16-byte random values."""
    material = crypto.b64encode(crypto.generate_salt()) + crypto.b64encode(crypto.generate_salt())
    return material[:RECOVERY_CODE_LENGTH]


def normalize_answer(answer: str) -> str:
    return answer.strip().lower()


def combine_answers(answers: Sequence[str]) -> str:
    """Order-sensitive concatenation of normalized answers."""
    return ''.join(normalize_answer(a) for a in answers)


def validate_questions(questions: Sequence[Tuple[str, str]]) -> None:
    """
    Check (question, answer) pairs for question recovery.

    Rules: exactly two pairs, both questions from PREDEFINED_QUESTIONS,
    the two questions differ, neither answer is blank.
    """
    if len(questions) != 2:
        raise ValidationError("Exactly two security questions are required.")
    for question, answer in questions:
        if question not in PREDEFINED_QUESTIONS:
            raise ValidationError("Please select questions from the predefined list.")
        if not answer or not answer.strip():
            raise ValidationError("Please answer both security questions.")
    if questions[0][0] == questions[1][0]:
        raise ValidationError("Please select two different security questions.")


# =============================================================================
# Build (at vault creation)
# =============================================================================

def _wrap_for_recovery(data_key: crypto.SecretKey, secret: str, salt: bytes) -> Tuple[str, str]:
    with crypto.derive_key(secret, salt) as recovery_key:
        iv, wrapped = crypto.wrap_key(data_key, recovery_key)
    return crypto.b64encode(iv), crypto.b64encode(wrapped)


def build_code_recovery(data_key: crypto.SecretKey) -> Tuple[CodeRecovery, str]:
    """
    Create the recovery-code path.

    Returns:
        (envelope, code) - the plaintext code must be shown to the user
        once and never stored
    """
    salt = crypto.generate_salt()
    code = generate_recovery_code()
    iv, wrapped = _wrap_for_recovery(data_key, code, salt)
    envelope = CodeRecovery(
        salt=crypto.b64encode(salt),
        iv=iv,
        wrapped_key=wrapped,
        code_hash=crypto.hash_secret(code, salt),
    )
    return envelope, code


def build_question_recovery(
    data_key: crypto.SecretKey,
    questions: Sequence[Tuple[str, str]],
) -> QuestionsRecovery:
    """Create the security-question path from two (question, answer) pairs."""
    validate_questions(questions)
    salt = crypto.generate_salt()
    iv, wrapped = _wrap_for_recovery(data_key, combine_answers([a for _, a in questions]), salt)
    stored = tuple(
        SecurityQuestion(question=q, answer_hash=crypto.hash_secret(normalize_answer(a), salt))
        for q, a in questions
    )
    return QuestionsRecovery(salt=crypto.b64encode(salt), iv=iv, wrapped_key=wrapped, questions=stored)


# =============================================================================
# Verify + use (during reset)
# =============================================================================

def verify_code(recovery: CodeRecovery, code: str) -> None:
    """Compare the salted hash of code with the stored verifier."""
    salt = crypto.b64decode(recovery.salt)
    if not crypto.constant_compare(crypto.hash_secret(code.strip(), salt), recovery.code_hash):
        raise VerificationFailed()


def verify_answers(recovery: QuestionsRecovery, answers: Sequence[str]) -> None:
    """Compare each answer's salted hash with the stored verifier."""
    if len(answers) != 2:
        raise ValidationError("Both security answers are required.")
    salt = crypto.b64decode(recovery.salt)
    matches = [
        crypto.constant_compare(crypto.hash_secret(normalize_answer(a), salt), sq.answer_hash)
        for a, sq in zip(answers, recovery.questions)
    ]
    if not all(matches):
        raise VerificationFailed()


def recover_data_key(recovery, secret: str) -> crypto.SecretKey:
    """
    Derive the recovery key from secret and unwrap the data key.

    The AEAD unwrap is the authoritative check; a failure is reported with
    the recovery message and no detail.
    """
    salt = crypto.b64decode(recovery.salt)
    wrapped = crypto.b64decode(recovery.wrapped_key)
    iv = crypto.b64decode(recovery.iv)
    with crypto.derive_key(secret, salt) as recovery_key:
        try:
            return crypto.unwrap_key(wrapped, recovery_key, iv)
        except AuthenticationError:
            raise VerificationFailed() from None


# =============================================================================
# Reset state machine
# =============================================================================

class ResetStep(Enum):
    VERIFY = "verify"
    RESET = "reset"
    SUCCESS = "success"


class PasswordReset:
    """
    Linear reset flow for one vault.

    Usage:
        flow = PasswordReset(envelope)
        flow.verify(code="...")            # or answers=["...", "..."]
        result = flow.reset("new password", "new password")

    A failed verify() leaves the flow in VERIFY; a rejected new password
    leaves it in RESET. Nothing moves backwards.
    """

    def __init__(self, envelope: EncryptedVault):
        if isinstance(envelope.recovery, NoRecovery):
            raise ValidationError("No recovery method was set up for this vault.")
        self.envelope = envelope
        self.step = ResetStep.VERIFY
        self.result = None
        self._data_key: Optional[crypto.SecretKey] = None

    @property
    def method(self) -> RecoveryMethod:
        return self.envelope.recovery_method

    @property
    def questions(self) -> List[str]:
        """Questions to ask (empty for code recovery)."""
        if isinstance(self.envelope.recovery, QuestionsRecovery):
            return [sq.question for sq in self.envelope.recovery.questions]
        return []

    def verify(self, code: Optional[str] = None, answers: Optional[Sequence[str]] = None) -> None:
        """VERIFY -> RESET. Raises VerificationFailed on bad code/answers."""
        if self.step is not ResetStep.VERIFY:
            raise ValidationError("Recovery information was already verified.")

        recovery = self.envelope.recovery
        if isinstance(recovery, CodeRecovery):
            if not code or not code.strip():
                raise ValidationError("Recovery code is required.")
            secret = code.strip()
        else:
            if not answers or any(not a or not a.strip() for a in answers):
                raise ValidationError("Both security answers are required.")
            secret = combine_answers(answers)

        try:
            if isinstance(recovery, CodeRecovery):
                verify_code(recovery, code)
            else:
                verify_answers(recovery, answers)
            self._data_key = recover_data_key(recovery, secret)
        except AuthenticationError:
            logger.warning("Recovery verification failed for vault %s", self.envelope.name)
            raise
        self.step = ResetStep.RESET

    def reset(self, new_password: str, confirm_password: str):
        """RESET -> SUCCESS. Returns the vault module's ResetResult."""
        # Inline import: vault.py builds recovery envelopes from this module
        from .vault import reset_password, validate_password

        if self.step is not ResetStep.RESET:
            raise ValidationError("Verify recovery information first.")
        validate_password(new_password, confirm_password)

        self.result = reset_password(self.envelope, self._data_key, new_password)
        self._data_key.wipe()
        self._data_key = None
        self.step = ResetStep.SUCCESS
        return self.result
