"""
LockVault - Interactive Menu

Main user interface for the vault manager.
Features:
- Create / unlock / delete vaults (optional TOTP and recovery)
- Add entries (manual or generated passwords), list, search, delete
- Quick copy to clipboard
- Per-entry notes password
- 2FA accounts (add from otpauth URI, show current codes)
- Backup export / import
- Password reset with recovery code or security questions
"""

import asyncio
import getpass
import logging
import os
import sys
import uuid

import pyperclip
from dotenv import load_dotenv

from lockvault import crypto, totp
from lockvault.backup import backup_filename, parse_backup
from lockvault.config import load_settings
from lockvault.errors import VaultError
from lockvault.models import Entry, RecoveryMethod, TwoFactorEntry
from lockvault.recovery import PREDEFINED_QUESTIONS, ResetStep
from lockvault.service import VaultCryptoService

logger = logging.getLogger("lockvault")


def run(coro):
    return asyncio.run(coro)


def clear_screen():
    os.system("cls" if os.name == "nt" else "clear")


def pause():
    input("\nPress Enter to continue...")


def copy_to_clipboard(text):
    try:
        pyperclip.copy(text)
        return True
    except pyperclip.PyperclipException:
        return False


def ask_new_password():
    while True:
        pw = getpass.getpass("Master password: ")
        pw2 = getpass.getpass("Confirm: ")
        if pw != pw2:
            print("Passwords don't match.\n")
            continue
        if len(pw) < 8:
            print("Too short (min 8 chars).\n")
            continue
        return pw, pw2


def pick(items, label):
    """Let the user pick from a numbered list; returns the item or None."""
    if not items:
        print(f"No {label}.")
        return None
    for i, item in enumerate(items, 1):
        print(f"{i:>3}) {item}")
    choice = input(f"\nSelect {label} # (1-{len(items)}): ").strip()
    if choice.isdigit() and 1 <= int(choice) <= len(items):
        return items[int(choice) - 1]
    print("Cancelled.")
    return None


class Session:
    """The service plus whichever vault is currently unlocked."""

    def __init__(self, service):
        self.service = service
        self.unlocked = None

    @property
    def status(self):
        if self.unlocked is None:
            return "LOCKED"
        return f"UNLOCKED ({self.unlocked.name}, {len(self.unlocked.entries)} entries)"

    def lock(self):
        if self.unlocked is not None:
            self.service.lock(self.unlocked)
            self.unlocked = None


# =============================================================================
# Vaults
# =============================================================================

def cmd_create(session):
    clear_screen()
    print("=== Create New Vault ===\n")
    name = input("Vault name: ").strip()
    if not name:
        print("Name required.")
        return
    pw, pw2 = ask_new_password()
    enable_totp = input("Enable TOTP second factor? [y/N]: ").strip().lower() == 'y'

    print("\nRecovery method:")
    print("  1) None")
    print("  2) Recovery code")
    print("  3) Security questions")
    choice = input("\n> ").strip()
    method = {"2": RecoveryMethod.CODE, "3": RecoveryMethod.QUESTIONS}.get(choice, RecoveryMethod.NONE)

    questions = None
    if method is RecoveryMethod.QUESTIONS:
        questions = []
        for n in (1, 2):
            print(f"\nQuestion {n}:")
            q = pick(PREDEFINED_QUESTIONS, "question")
            if q is None:
                return
            questions.append((q, input("Answer: ")))

    print("\nCreating (this takes a moment)...")
    created = run(session.service.create_vault(name, pw, pw2, enable_totp, method, questions))
    print(f"\n✓ Vault '{created.vault.name}' created!")

    if created.totp_secret:
        print("\nAdd this to your authenticator app:")
        print(f"  Secret: {created.totp_secret}")
        print(f"  URI:    {created.totp_uri}")
    if created.recovery_code:
        print("\n" + "=" * 60)
        print(f"RECOVERY CODE: {created.recovery_code}")
        print("=" * 60)
        print("Write it down now. It will NOT be shown again.")


def cmd_unlock(session):
    clear_screen()
    print("=== Unlock Vault ===\n")
    name = pick(run(session.service.list_vaults()), "vault")
    if name is None:
        return
    envelope = run(session.service.load(name))
    password = getpass.getpass("\nMaster password: ")
    code = input("TOTP code: ").strip() if envelope.totp_enabled else None

    session.lock()
    session.unlocked = run(session.service.unlock(envelope, password, code))
    print("\n✓ Vault unlocked.")


def cmd_list_vaults(session):
    clear_screen()
    print("=== Vaults ===\n")
    names = run(session.service.list_vaults())
    if not names:
        print("No vaults yet.")
    for n in names:
        print(f"  - {n}")


def cmd_delete_vault(session):
    clear_screen()
    print("=== Delete Vault ===\n")
    name = pick(run(session.service.list_vaults()), "vault")
    if name is None:
        return
    if input(f"\nType the vault name ('{name}') to confirm: ").strip() != name:
        print("Cancelled.")
        return
    if session.unlocked is not None and session.unlocked.name == name:
        session.lock()
    run(session.service.delete_vault(name))
    print(f"\n✓ Vault '{name}' deleted.")


def cmd_reset(session):
    clear_screen()
    print("=== Reset Master Password ===\n")
    name = pick(run(session.service.list_vaults()), "vault")
    if name is None:
        return
    flow = run(session.service.begin_reset(name))

    while flow.step is ResetStep.VERIFY:
        try:
            if flow.method is RecoveryMethod.CODE:
                run(session.service.verify_recovery(flow, code=input("Recovery code: ")))
            else:
                answers = [input(f"{q}\n> ") for q in flow.questions]
                run(session.service.verify_recovery(flow, answers=answers))
        except VaultError as e:
            print(f"\nERROR: {e}")
            if input("Try again? [Y/n]: ").strip().lower() in ('n', 'no'):
                return

    print("\n✓ Verified. Now set a NEW master password:")
    pw, pw2 = ask_new_password()
    result = run(session.service.complete_reset(flow, pw, pw2))

    print("\n" + "=" * 60)
    print("SUCCESS! Master password reset.")
    print("=" * 60)
    if result.totp_secret:
        print("\nYour TOTP secret was replaced. Re-enroll your authenticator:")
        print(f"  Secret: {result.totp_secret}")
        print(f"  URI:    {result.totp_uri}")
    print("\nYour recovery code / answers still work.")


# =============================================================================
# Entries
# =============================================================================

def require_unlocked(session):
    if session.unlocked is None:
        print("Unlock a vault first.")
        return None
    return session.unlocked


def save(session, entries):
    run(session.service.save_entries(session.unlocked, entries))


def entry_label(e):
    return f"{e.title or '-':<22}  {e.username or '-':<22}  {e.url or '-'}"


def cmd_add(session, generated=False):
    clear_screen()
    print(f"=== Add New Entry ({'Generated' if generated else 'Manual'}) ===\n")
    unlocked = require_unlocked(session)
    if not unlocked:
        return
    title = input("Title: ").strip()
    username = input("Username: ").strip()
    url = input("URL (optional): ").strip()
    if generated:
        try:
            length = int(input("Password length [20]: ").strip() or 20)
        except ValueError:
            length = 20
        symbols = input("Include symbols? [Y/n]: ").strip().lower() not in ('n', 'no')
        password = crypto.generate_password(length, use_symbols=symbols)
        print(f"\nGenerated: {password}")
    else:
        password = getpass.getpass("Password: ")
    notes = input("Notes (optional): ").strip() or None

    entry = Entry(id=str(uuid.uuid4()), title=title, url=url, username=username,
                  password=password, notes=notes)
    save(session, unlocked.entries + [entry])
    print(f"\n✓ Added! ID: {entry.id}")


def cmd_list_entries(session, query=None):
    clear_screen()
    print("=== Entries ===\n")
    unlocked = require_unlocked(session)
    if not unlocked:
        return
    entries = unlocked.entries
    if query:
        q = query.lower()
        entries = [e for e in entries if q in e.title.lower() or q in e.username.lower() or q in e.url.lower()]
    if not entries:
        print("No entries.")
        return
    print(f"{'Title':<22}  {'Username':<22}  {'URL'}")
    print("-" * 70)
    for e in entries:
        print(entry_label(e))


def cmd_search(session):
    clear_screen()
    query = input("Search (title, username or URL): ").strip()
    if not query:
        print("No search term entered.")
        return
    cmd_list_entries(session, query)


def cmd_get_entry(session):
    clear_screen()
    print("=== Get Entry ===\n")
    unlocked = require_unlocked(session)
    if not unlocked:
        return
    entry = pick(unlocked.entries, "entry")
    if entry is None:
        return
    print(f"\n  Title: {entry.title}")
    print(f"  Username: {entry.username}")
    if entry.url:
        print(f"  URL: {entry.url}")
    if entry.notes_encrypted:
        print("  Notes: (locked)")
    elif entry.notes:
        print(f"  Notes: {entry.notes}")

    print("\nOptions:")
    print("  1) Show password")
    print("  2) Copy to clipboard (without showing)")
    print("  3) Lock notes with a separate password")
    print("  4) Show locked notes")
    print("  0) Cancel")
    choice = input("\n> ").strip()

    if choice == '1':
        print(f"\n  Password: {entry.password}")
    elif choice == '2':
        if copy_to_clipboard(entry.password):
            print("\n✓ Copied to clipboard!")
        else:
            print("\n(No clipboard available on this system)")
    elif choice == '3':
        locked = run(session.service.lock_notes(entry, getpass.getpass("Notes password: ")))
        save(session, [locked if e.id == entry.id else e for e in unlocked.entries])
        print("\n✓ Notes locked.")
    elif choice == '4':
        opened = run(session.service.unlock_notes(entry, getpass.getpass("Notes password: ")))
        print(f"\n  Notes: {opened.notes}")
    else:
        print("Cancelled.")


def cmd_quick_copy(session):
    """Copy password to clipboard without displaying it."""
    clear_screen()
    print("=== Quick Copy ===\n")
    unlocked = require_unlocked(session)
    if not unlocked:
        return
    entry = pick(unlocked.entries, "entry")
    if entry is None:
        return
    if copy_to_clipboard(entry.password):
        print(f"\n✓ Password for '{entry.title or entry.username}' copied to clipboard!")
    else:
        print("\nERROR: No clipboard available on this system.")


def cmd_delete_entry(session):
    clear_screen()
    print("=== Delete Entry ===\n")
    unlocked = require_unlocked(session)
    if not unlocked:
        return
    entry = pick(unlocked.entries, "entry")
    if entry is None:
        return
    print(f"\nAbout to delete: {entry_label(entry)}")
    if input("\nType 'yes' to confirm: ").strip().lower() != 'yes':
        print("Cancelled.")
        return
    save(session, [e for e in unlocked.entries if e.id != entry.id])
    print("\n✓ Entry deleted.")


# =============================================================================
# 2FA accounts
# =============================================================================

def cmd_two_factor(session):
    clear_screen()
    print("=== 2FA Accounts ===\n")
    unlocked = require_unlocked(session)
    if not unlocked:
        return
    for e in unlocked.two_factor_entries:
        print(f"  {e.issuer or '-':<16}  {e.title:<24}  {totp.current_code(e)}  ({totp.seconds_remaining(e)}s)")
    if not unlocked.two_factor_entries:
        print("No 2FA accounts.")

    print("\n  1) Add from otpauth:// URI")
    print("  2) Add manually")
    print("  3) Remove")
    print("  0) Back")
    choice = input("\n> ").strip()

    entries = list(unlocked.two_factor_entries)
    if choice == '1':
        entries.append(totp.entry_from_uri(input("URI: "), str(uuid.uuid4())))
    elif choice == '2':
        entries.append(TwoFactorEntry(
            id=str(uuid.uuid4()),
            title=input("Account: ").strip(),
            issuer=input("Issuer: ").strip(),
            secret=totp.normalize_secret(input("Secret (base32): ")),
        ))
    elif choice == '3':
        target = pick(entries, "account")
        if target is None:
            return
        entries = [e for e in entries if e.id != target.id]
    else:
        return
    run(session.service.save_two_factor_entries(unlocked, entries))
    print("\n✓ Saved.")


# =============================================================================
# Backup
# =============================================================================

def cmd_export(session):
    clear_screen()
    print("=== Export Backup ===\n")
    unlocked = require_unlocked(session)
    if not unlocked:
        return
    default = backup_filename(unlocked.name)
    out = input(f"Output file [{default}]: ").strip() or default
    text = run(session.service.export_backup(unlocked))
    with open(out, 'w', encoding='utf-8') as f:
        f.write(text)
    print(f"\n✓ Saved to: {out}")
    print("The backup is useless without your master password (or recovery).")


def cmd_import(session):
    clear_screen()
    print("=== Import Backup ===\n")
    path = input("Backup file: ").strip()
    if not path:
        return
    try:
        with open(path, 'r', encoding='utf-8') as f:
            text = f.read()
    except OSError as e:
        print(f"ERROR: Cannot read {path}: {e.strerror}")
        return

    name = parse_backup(text).name
    overwrite = name in run(session.service.list_vaults())
    if overwrite:
        confirm = input(f"Vault '{name}' already exists. Type 'yes' to overwrite it: ")
        if confirm.strip().lower() != 'yes':
            print("Cancelled.")
            return
    envelope = run(session.service.import_backup(text, overwrite=overwrite))
    print(f"\n✓ Vault '{envelope.name}' restored.")


# =============================================================================
# Menu
# =============================================================================

MENU = [
    ("Create vault", cmd_create),
    ("Unlock vault", cmd_unlock),
    ("List vaults", cmd_list_vaults),
    ("Add entry (manual)", cmd_add),
    ("Add entry (generated)", lambda s: cmd_add(s, generated=True)),
    ("List entries", cmd_list_entries),
    ("Get entry (view details)", cmd_get_entry),
    ("Quick copy (copy password)", cmd_quick_copy),
    ("Search entries", cmd_search),
    ("Delete entry", cmd_delete_entry),
    ("2FA accounts", cmd_two_factor),
    ("Export backup", cmd_export),
    ("Import backup", cmd_import),
    ("Reset master password", cmd_reset),
    ("Delete vault", cmd_delete_vault),
    ("Lock vault", lambda s: s.lock()),
]


def print_menu(session, location):
    print("LockVault - Interactive Menu")
    print("=" * 40)
    print(f"Store: {location}")
    print(f"Status: {session.status}\n")
    for i, (label, _) in enumerate(MENU, 1):
        print(f"{i:>2}) {label}")
    print(" 0) Exit")


def main_menu():
    load_dotenv()
    try:
        settings = load_settings()
    except VaultError as e:
        print(f"Configuration error: {e}")
        sys.exit(2)
    logging.basicConfig(
        format='%(asctime)s - %(name)s - %(levelname)s - %(message)s',
        level=settings.log_level_value,
    )

    session = Session(VaultCryptoService(settings.open_store()))
    location = f"{settings.backend} {settings.path or ''}".strip()
    while True:
        clear_screen()
        print_menu(session, location)
        c = input("\n> ").strip()
        if c == '0':
            session.lock()
            print("\nGoodbye!")
            break
        if not c.isdigit() or not 1 <= int(c) <= len(MENU):
            continue
        label, handler = MENU[int(c) - 1]
        try:
            handler(session)
        except VaultError as e:
            logger.debug("%s failed: %s", label, type(e).__name__)
            print(f"\nERROR: {e}")
        pause()


def main():
    try:
        main_menu()
    except KeyboardInterrupt:
        print("\nExiting...")


if __name__ == "__main__":
    main()
