"""
LockVault - Primitive + Codec Self-Tests

Run with: python test_simple.py   (or: pytest)

Covers the building blocks everything else relies on:
- PBKDF2 key derivation and the wipeable SecretKey
- AES-GCM encryption, tamper detection, key wrapping
- Entry / 2FA list codec (round trip, wrong key, empty and truncated blobs)
- Notes encryption, TOTP helpers, password generator
"""

import base64
import hashlib
import os

import pyotp

from lockvault import codec, crypto, totp
from lockvault.errors import AuthenticationError, MalformedDataError, ValidationError
from lockvault.models import Entry, TwoFactorEntry


def sample_entries():
    return [
        Entry(id="a", title="GitHub", url="https://github.com", username="alice", password="s3cret"),
        Entry(id="b", title="Mail", username="alice@example.com", password="", notes="PIN 1234"),
        Entry(id="c", title="Bank éè", password="密码"),
    ]


def test_kdf():
    """Test key derivation from password."""
    print("Testing KDF (Key Derivation)...")

    salt = crypto.generate_salt()
    assert len(salt) == 16

    key1 = crypto.derive_key("test_password", salt)
    key2 = crypto.derive_key("test_password", salt)
    assert key1 == key2, "KDF should be deterministic"
    assert len(key1.raw) == 32, "Key should be 32 bytes"

    key3 = crypto.derive_key("different_password", salt)
    assert key1 != key3, "Different passwords should give different keys"

    key4 = crypto.derive_key("test_password", crypto.generate_salt())
    assert key1 != key4, "Different salts should give different keys"

    # Same construction as any PBKDF2-SHA256 implementation
    expected = hashlib.pbkdf2_hmac("sha256", b"test_password", salt, 100_000, 32)
    assert key1.raw == expected

    print("  [OK] KDF works correctly")


def test_secret_key_wipe():
    """Keys used in a with-block are zeroed on exit."""
    print("Testing SecretKey wipe...")

    with crypto.generate_data_key() as key:
        assert not key.wiped
        held = key
    assert held.wiped, "Key should be wiped after the with-block"
    try:
        held.raw
        assert False, "Wiped key should not expose bytes"
    except ValueError:
        pass
    assert "wiped" in repr(held)

    try:
        crypto.SecretKey(b"short")
        assert False, "Wrong-size key should be rejected"
    except MalformedDataError:
        pass

    print("  [OK] SecretKey wipe works")


def test_encryption():
    """Test AES-GCM encryption/decryption."""
    print("Testing Encryption...")

    key = crypto.generate_data_key()
    plaintext = b"This is a secret message!"

    nonce, ciphertext = crypto.encrypt(plaintext, key)
    assert len(nonce) == 12
    assert len(ciphertext) == len(plaintext) + 16

    assert crypto.decrypt(ciphertext, key, nonce) == plaintext
    print("  [OK] Encryption/decryption works")

    nonce2, _ = crypto.encrypt(plaintext, key)
    assert nonce != nonce2, "Every call must use a fresh nonce"

    try:
        tampered = bytearray(ciphertext)
        tampered[0] ^= 1  # Flip first bit
        crypto.decrypt(bytes(tampered), key, nonce)
        assert False, "Should have detected tampering"
    except AuthenticationError:
        print("  [OK] Tampering detection works")

    try:
        crypto.decrypt(ciphertext, crypto.generate_data_key(), nonce)
        assert False, "Should have rejected wrong key"
    except AuthenticationError:
        print("  [OK] Wrong key rejected")

    try:
        crypto.decrypt(ciphertext, key, nonce[:8])
        assert False, "Should have rejected short nonce"
    except MalformedDataError:
        print("  [OK] Bad nonce length rejected")


def test_key_wrapping():
    """Wrapping encrypts the key's export form under the KEK."""
    print("Testing Key Wrapping...")

    data_key = crypto.generate_data_key()
    kek = crypto.derive_key("master password", crypto.generate_salt())

    iv, wrapped = crypto.wrap_key(data_key, kek)
    assert crypto.unwrap_key(wrapped, kek, iv) == data_key

    # The wrapped plaintext is the base64 export of the raw key
    assert crypto.decrypt(wrapped, kek, iv) == base64.b64encode(data_key.raw)

    try:
        other = crypto.derive_key("wrong password", crypto.generate_salt())
        crypto.unwrap_key(wrapped, other, iv)
        assert False, "Wrong KEK should not unwrap"
    except AuthenticationError:
        pass

    print("  [OK] Key wrapping works")


def test_hash_secret():
    print("Testing salted hash...")

    salt = os.urandom(16)
    h = crypto.hash_secret("code", salt)
    assert h == base64.b64encode(hashlib.sha256(salt + b"code").digest()).decode()
    assert crypto.constant_compare(h, crypto.hash_secret("code", salt))
    assert not crypto.constant_compare(h, crypto.hash_secret("Code", salt))

    print("  [OK] Salted hash works")


def test_entry_codec():
    """Round trip, order, and the empty-password normalization."""
    print("Testing Entry Codec...")

    key = crypto.generate_data_key()
    entries = sample_entries()
    blob = codec.encode_entries(entries, key)

    decoded = codec.decode_entries(blob, key)
    assert decoded == entries, "Round trip should preserve entries and order"
    assert decoded[1].password == ""

    raw = base64.b64decode(blob)
    assert len(raw) > 12 + 16, "Blob is nonce || ciphertext + tag"

    print("  [OK] Entry codec round trip works")


def test_codec_wrong_key():
    print("Testing Codec with wrong key...")

    blob = codec.encode_entries(sample_entries(), crypto.generate_data_key())
    try:
        codec.decode_entries(blob, crypto.generate_data_key())
        assert False, "Wrong key must not return data"
    except AuthenticationError:
        print("  [OK] Wrong key fails closed")


def test_codec_empty_and_corrupt():
    print("Testing Codec edge cases...")

    key = crypto.generate_data_key()
    assert codec.decode_entries("", key) == []
    assert codec.decode_two_factor_entries("", key) == []

    fresh = codec.encode_entries([], key)
    assert codec.decode_entries(fresh, key) == []

    try:
        codec.decode_entries(base64.b64encode(b"12345678").decode(), key)
        assert False, "Truncated blob should be malformed"
    except MalformedDataError:
        print("  [OK] Truncated blob rejected")

    try:
        codec.decode_entries("not base64 !!", key)
        assert False, "Bad base64 should be malformed"
    except MalformedDataError:
        print("  [OK] Bad base64 rejected")

    nonce, ciphertext = crypto.encrypt(b"this is not json", key)
    try:
        codec.decode_entries(crypto.b64encode(nonce + ciphertext), key)
        assert False, "Unparsable plaintext should be malformed"
    except MalformedDataError:
        print("  [OK] Unparsable plaintext rejected")

    nonce, ciphertext = crypto.encrypt(b'{"id": "x"}', key)
    try:
        codec.decode_entries(crypto.b64encode(nonce + ciphertext), key)
        assert False, "Non-list plaintext should be malformed"
    except MalformedDataError:
        pass


def test_two_factor_codec():
    print("Testing 2FA Codec...")

    key = crypto.generate_data_key()
    entries = [
        TwoFactorEntry(id="1", title="alice", issuer="GitHub", secret="JBSWY3DPEHPK3PXP"),
        TwoFactorEntry(id="2", title="bob", issuer="AWS", secret="KRSXG5CTMVRXEZLU",
                       algorithm="SHA256", digits=8, period=60),
    ]
    assert codec.decode_two_factor_entries(codec.encode_two_factor_entries(entries, key), key) == entries

    print("  [OK] 2FA codec works")


def test_notes_encryption():
    print("Testing Notes Encryption...")

    entry = Entry(id="n", title="Safe", notes="combination 12-34-56")
    locked = codec.lock_notes(entry, "notes pw")
    assert locked.notes_encrypted
    assert "12-34-56" not in locked.notes
    assert entry.notes == "combination 12-34-56", "Original entry is not modified"

    try:
        codec.unlock_notes(locked, "wrong pw")
        assert False, "Wrong notes password should fail"
    except AuthenticationError:
        pass

    opened = codec.unlock_notes(locked, "notes pw")
    assert opened == entry

    try:
        codec.lock_notes(locked, "notes pw")
        assert False, "Double encryption should be rejected"
    except ValidationError:
        pass

    # Locked notes survive the entry codec unchanged
    key = crypto.generate_data_key()
    assert codec.decode_entries(codec.encode_entries([locked], key), key) == [locked]

    print("  [OK] Notes encryption works")


def test_totp():
    print("Testing TOTP...")

    secret = totp.generate_secret()
    now = 1_700_000_015
    reference = pyotp.TOTP(secret)

    assert totp.verify_code(secret, reference.at(now), for_time=now)
    assert totp.verify_code(secret, reference.at(now - 30), for_time=now), "One step back is tolerated"
    assert totp.verify_code(secret, reference.at(now + 30), for_time=now), "One step ahead is tolerated"
    assert not totp.verify_code(secret, "abcdef", for_time=now)
    assert not totp.verify_code(secret, "", for_time=now)

    uri = totp.provisioning_uri(secret, "personal")
    assert uri.startswith("otpauth://totp/")
    assert "issuer=Vault%20Manager" in uri

    entry = TwoFactorEntry(id="1", title="t", issuer="i", secret=secret, digits=8, period=60)
    assert totp.current_code(entry, for_time=now) == pyotp.TOTP(secret, digits=8, interval=60).at(now)
    assert 1 <= totp.seconds_remaining(entry, now=now) <= 60

    print("  [OK] TOTP works")


def test_totp_uri_import():
    print("Testing otpauth URI import...")

    entry = totp.entry_from_uri(
        "otpauth://totp/Example:alice@example.com?secret=JBSWY3DPEHPK3PXP&issuer=Example", "id-1")
    assert entry.id == "id-1"
    assert entry.title == "alice@example.com"
    assert entry.issuer == "Example"
    assert entry.secret == "JBSWY3DPEHPK3PXP"
    assert (entry.algorithm, entry.digits, entry.period) == ("SHA1", 6, 30)

    entry = totp.entry_from_uri(
        "otpauth://totp/bob?secret=JBSWY3DPEHPK3PXP&algorithm=SHA256&digits=8&period=60", "id-2")
    assert (entry.algorithm, entry.digits, entry.period) == ("SHA256", 8, 60)

    for bad in ("otpauth://hotp/x?secret=JBSWY3DPEHPK3PXP&counter=1", "https://example.com"):
        try:
            totp.entry_from_uri(bad, "x")
            assert False, f"Should reject {bad}"
        except ValidationError:
            pass

    try:
        totp.validate_entry(TwoFactorEntry(id="x", title="", issuer="", secret="not-base32!"))
        assert False, "Invalid secret should be rejected"
    except ValidationError:
        pass

    print("  [OK] URI import works")


def test_password_generation():
    """Test password generator."""
    print("Testing Password Generation...")

    pwd = crypto.generate_password(length=20)
    assert len(pwd) == 20, "Should generate requested length"
    assert any(c.isupper() for c in pwd)
    assert any(c.islower() for c in pwd)
    assert any(c.isdigit() for c in pwd)
    assert any(c in crypto.SYMBOLS for c in pwd)
    assert not any(c in crypto.AMBIGUOUS for c in pwd)
    print(f"  Generated: {pwd}")

    pwd_no_sym = crypto.generate_password(length=16, use_symbols=False)
    assert len(pwd_no_sym) == 16
    assert all(c.isalnum() for c in pwd_no_sym), "Should be alphanumeric only"

    try:
        crypto.generate_password(use_uppercase=False, use_lowercase=False,
                                 use_digits=False, use_symbols=False)
        assert False, "No character sets should be rejected"
    except ValueError:
        pass

    print("  [OK] Password generation works")


def run_all_tests():
    """Run all tests."""
    print("=" * 70)
    print("LockVault - Primitive + Codec Tests")
    print("=" * 70)
    print()

    tests = [
        test_kdf,
        test_secret_key_wipe,
        test_encryption,
        test_key_wrapping,
        test_hash_secret,
        test_entry_codec,
        test_codec_wrong_key,
        test_codec_empty_and_corrupt,
        test_two_factor_codec,
        test_notes_encryption,
        test_totp,
        test_totp_uri_import,
        test_password_generation,
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
