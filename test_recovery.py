"""
LockVault - Recovery Tests

Run with: python test_recovery.py   (or: pytest)

- Recovery code and security-question envelopes
- Both unlock paths yield the identical data key
- Reset state machine: VERIFY -> RESET -> SUCCESS, fails closed
- Reset rotates access but keeps entries and the recovery envelope
"""

from unittest.mock import patch

import pyotp

from lockvault import crypto, recovery, vault
from lockvault.errors import AuthenticationError, ValidationError, VerificationFailed
from lockvault.models import CodeRecovery, EncryptedVault, Entry, QuestionsRecovery, RecoveryMethod
from lockvault.recovery import PREDEFINED_QUESTIONS, PasswordReset, ResetStep

PASSWORD = "correct horse battery"
QUESTIONS = [(PREDEFINED_QUESTIONS[0], "  Sparky "), (PREDEFINED_QUESTIONS[4], "Whiskers")]


def unlock_data_key(envelope, password, code=None):
    return vault.open_envelope(envelope, password, code).data_key


def test_recovery_code_shape():
    print("Testing recovery code generation...")

    codes = {recovery.generate_recovery_code() for _ in range(20)}
    assert len(codes) == 20, "Codes should be random"
    for code in codes:
        assert len(code) == 32
        assert all(c.isalnum() or c in "+/" for c in code)

    print("  [OK] Recovery codes are 32 random base64 characters")


def test_code_recovery_dual_path():
    """Master-password path and recovery-code path unwrap the same key."""
    print("Testing code recovery (dual path)...")

    created = vault.create_envelope("v", PASSWORD, recovery_method=RecoveryMethod.CODE)
    envelope = created.vault
    assert isinstance(envelope.recovery, CodeRecovery)
    assert created.recovery_code and created.recovery_code not in envelope.to_json(), \
        "Plaintext code must never be stored"

    recovery.verify_code(envelope.recovery, created.recovery_code)
    via_code = recovery.recover_data_key(envelope.recovery, created.recovery_code)
    via_password = unlock_data_key(envelope, PASSWORD)
    assert via_code == via_password, "Both paths must yield the identical data key"

    try:
        recovery.verify_code(envelope.recovery, "x" * 32)
        assert False, "Wrong code should fail verification"
    except VerificationFailed:
        pass

    print("  [OK] Code recovery works")


def test_question_recovery_dual_path():
    print("Testing security-question recovery (dual path)...")

    created = vault.create_envelope("v", PASSWORD, recovery_method=RecoveryMethod.QUESTIONS,
                                    security_questions=QUESTIONS)
    envelope = created.vault
    assert isinstance(envelope.recovery, QuestionsRecovery)
    assert created.recovery_code is None
    assert "sparky" not in envelope.to_json().lower(), "Answers are stored only as hashes"

    # Answers are trimmed + lowercased before hashing and before the KDF
    answers = ["SPARKY", " whiskers"]
    recovery.verify_answers(envelope.recovery, answers)
    via_answers = recovery.recover_data_key(envelope.recovery, recovery.combine_answers(answers))
    assert via_answers == unlock_data_key(envelope, PASSWORD)

    for wrong in (["sparky", "tom"], ["whiskers", "sparky"]):
        try:
            recovery.verify_answers(envelope.recovery, wrong)
            assert False, f"Should reject {wrong}"
        except VerificationFailed:
            pass

    # The AEAD unwrap is authoritative even if hash checks were skipped
    try:
        recovery.recover_data_key(envelope.recovery, "whiskerssparky")
        assert False, "Swapped answer order must not unwrap"
    except AuthenticationError:
        pass

    print("  [OK] Question recovery works")


def test_question_validation():
    print("Testing security-question validation...")

    bad_sets = [
        [QUESTIONS[0]],                                              # only one
        [QUESTIONS[0], (PREDEFINED_QUESTIONS[0], "again")],          # duplicate
        [QUESTIONS[0], (PREDEFINED_QUESTIONS[1], "   ")],            # blank answer
        [QUESTIONS[0], ("What is your favourite colour?", "blue")],  # not predefined
    ]
    for questions in bad_sets:
        try:
            vault.create_envelope("v", PASSWORD, recovery_method=RecoveryMethod.QUESTIONS,
                                  security_questions=questions)
            assert False, f"Should reject {questions}"
        except ValidationError:
            pass

    assert len(PREDEFINED_QUESTIONS) == 7
    print("  [OK] Invalid question sets rejected")


def test_recovery_envelope_round_trips_through_json():
    print("Testing recovery envelope serialization...")

    created = vault.create_envelope("v", PASSWORD, recovery_method=RecoveryMethod.QUESTIONS,
                                    security_questions=QUESTIONS)
    restored = EncryptedVault.from_json(created.vault.to_json())
    assert restored == created.vault
    assert restored.to_dict()["recoveryMethod"] == "questions"

    plain = vault.create_envelope("w", PASSWORD).vault
    assert "recoveryMethod" not in plain.to_dict()
    assert EncryptedVault.from_json(plain.to_json()).recovery_method is RecoveryMethod.NONE

    print("  [OK] Recovery envelope survives JSON")


def test_reset_state_machine():
    print("Testing reset state machine...")

    created = vault.create_envelope("v", PASSWORD, recovery_method=RecoveryMethod.CODE)
    flow = PasswordReset(created.vault)
    assert flow.step is ResetStep.VERIFY
    assert flow.method is RecoveryMethod.CODE

    try:
        flow.reset("new password 1", "new password 1")
        assert False, "Reset before verify must be rejected"
    except ValidationError:
        pass

    try:
        flow.verify(code="wrong code")
        assert False, "Bad code must fail"
    except VerificationFailed:
        pass
    assert flow.step is ResetStep.VERIFY, "Verify fails closed"

    flow.verify(code=created.recovery_code)
    assert flow.step is ResetStep.RESET

    for new, confirm in (("short", "short"), ("new password 1", "new password 2")):
        try:
            flow.reset(new, confirm)
            assert False, "Bad new password must be rejected"
        except ValidationError:
            pass
        assert flow.step is ResetStep.RESET

    result = flow.reset("new password 1", "new password 1")
    assert flow.step is ResetStep.SUCCESS
    assert result is flow.result

    try:
        flow.verify(code=created.recovery_code)
        assert False, "No transitions out of SUCCESS"
    except ValidationError:
        pass

    print("  [OK] State machine is linear")


def test_rejected_recovery_is_logged():
    """Hash-check rejections log a warning just like unwrap failures."""
    print("Testing rejected recovery logging...")

    code_vault = vault.create_envelope("coded", PASSWORD, recovery_method=RecoveryMethod.CODE).vault
    question_vault = vault.create_envelope(
        "asked", PASSWORD, recovery_method=RecoveryMethod.QUESTIONS, security_questions=QUESTIONS).vault

    attempts = [
        (code_vault, {"code": "A" * recovery.RECOVERY_CODE_LENGTH}),
        (question_vault, {"answers": ["sparky", "wrong pet"]}),
    ]
    for envelope, secret in attempts:
        flow = PasswordReset(envelope)
        with patch.object(recovery.logger, "warning") as warning:
            try:
                flow.verify(**secret)
                assert False, "Wrong recovery information must fail"
            except VerificationFailed:
                pass
        warning.assert_called_once()
        assert envelope.name in warning.call_args.args
        assert flow.step is ResetStep.VERIFY

    print("  [OK] Rejected recovery attempts are logged")


def test_reset_preserves_data_and_rotates_access():
    """Old password fails, new one works, entries and recovery untouched."""
    print("Testing reset (data preserved, access rotated)...")

    created = vault.create_envelope("v", PASSWORD, recovery_method=RecoveryMethod.CODE)
    unlocked = vault.open_envelope(created.vault, PASSWORD)
    entries = [Entry(id="1", title="GitHub", password="gh"), Entry(id="2", title="Mail")]
    envelope = vault.seal_entries(unlocked, entries)
    original_key = crypto.SecretKey(unlocked.data_key.raw)
    unlocked.lock()

    flow = PasswordReset(envelope)
    flow.verify(code=created.recovery_code)
    reset = flow.reset("brand new password", "brand new password").vault

    assert reset.salt != envelope.salt, "A fresh salt is used"
    assert reset.entries == envelope.entries, "Entry blob is not re-encrypted"
    assert reset.recovery == envelope.recovery, "Recovery envelope is untouched"

    try:
        vault.open_envelope(reset, PASSWORD)
        assert False, "Old password must fail after reset"
    except AuthenticationError:
        pass

    after = vault.open_envelope(reset, "brand new password")
    assert after.entries == entries
    assert after.data_key == original_key, "The data key is never regenerated"

    # The original recovery code still unwraps the same key
    again = PasswordReset(reset)
    again.verify(code=created.recovery_code)
    assert again.step is ResetStep.RESET

    print("  [OK] Reset preserves data and rotates access")


def test_reset_with_questions_and_totp():
    """A TOTP vault gets a fresh TOTP secret sealed under the new master key."""
    print("Testing reset of a TOTP vault via questions...")

    created = vault.create_envelope("v", PASSWORD, enable_totp=True,
                                    recovery_method=RecoveryMethod.QUESTIONS, security_questions=QUESTIONS)
    flow = PasswordReset(created.vault)
    assert flow.questions == [QUESTIONS[0][0], QUESTIONS[1][0]]

    try:
        flow.verify(answers=["sparky", ""])
        assert False, "Blank answer must be rejected"
    except ValidationError:
        pass

    flow.verify(answers=["sparky", "whiskers"])
    result = flow.reset("another password", "another password")

    assert result.totp_secret and result.totp_secret != created.totp_secret
    assert result.totp_uri.startswith("otpauth://totp/")
    code = pyotp.TOTP(result.totp_secret).now()
    assert vault.open_envelope(result.vault, "another password", code).entries == []

    print("  [OK] TOTP re-enrolled on reset")


def test_no_recovery_configured():
    print("Testing reset without recovery...")

    created = vault.create_envelope("v", PASSWORD)
    try:
        PasswordReset(created.vault)
        assert False, "Reset requires a recovery method"
    except ValidationError:
        pass

    print("  [OK] Vault without recovery cannot be reset")


def run_all_tests():
    """Run all tests."""
    print("=" * 70)
    print("LockVault - Recovery Tests")
    print("=" * 70)
    print()

    tests = [
        test_recovery_code_shape,
        test_code_recovery_dual_path,
        test_question_recovery_dual_path,
        test_question_validation,
        test_recovery_envelope_round_trips_through_json,
        test_reset_state_machine,
        test_rejected_recovery_is_logged,
        test_reset_preserves_data_and_rotates_access,
        test_reset_with_questions_and_totp,
        test_no_recovery_configured,
    ]

    failed = []
    for test in tests:
        try:
            test()
            print()
        except AssertionError as e:
            print(f"  [FAIL] TEST FAILED: {e}")
            failed.append((test.__name__, e))
            print()

    print("=" * 70)
    if not failed:
        print("[OK] ALL TESTS PASSED!")
    else:
        print(f"[FAIL] {len(failed)} TESTS FAILED:")
        for name, error in failed:
            print(f"  - {name}: {error}")
    print("=" * 70)

    return len(failed) == 0


if __name__ == "__main__":
    import sys
    success = run_all_tests()
    sys.exit(0 if success else 1)
