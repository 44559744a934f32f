"""Tests for the JSON-backed credential store"""

import json
import os
import subprocess
import sys
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from src.models.account import Account, Role
from src.services.credential_store import CredentialStore
from src.utils.exceptions import DuplicateEmail, NotFound, PasswordTooLong, StoreUnavailable


def make_account(store, account_id, full_name, email, password="password123"):
    return Account(
        id=account_id,
        full_name=full_name,
        email=email,
        member_since="2025-12",
        password_hash=store.hash(password),
    )


def test_missing_file_is_empty_store(store, users_file):
    assert not users_file.exists()
    assert store.list_accounts() == []


def test_insert_persists_camel_case_records(store, users_file):
    store.insert(make_account(store, "a1", "Alice Smith", "alice@example.com"))

    data = json.loads(users_file.read_text(encoding="utf-8"))
    record = data["users"][0]
    assert record["id"] == "a1"
    assert record["fullName"] == "Alice Smith"
    assert record["memberSince"] == "2025-12"
    assert record["role"] == "Standard Member"
    assert record["passwordHash"].startswith("$2")
    assert "password123" not in users_file.read_text(encoding="utf-8")


def test_find_by_email_is_case_insensitive(store):
    store.insert(make_account(store, "a1", "Alice", "alice@example.com"))
    found = store.find_by_email("  ALICE@Example.com ")
    assert found is not None
    assert found.id == "a1"
    assert store.find_by_email("bob@example.com") is None
    assert store.find_by_email("") is None


def test_insert_duplicate_email_rejected(store):
    store.insert(make_account(store, "a1", "Alice", "alice@example.com"))
    with pytest.raises(DuplicateEmail):
        store.insert(make_account(store, "a2", "Other Alice", "Alice@Example.COM"))
    assert len(store.list_accounts()) == 1


def test_find_by_identity_email_or_name(store):
    store.insert(make_account(store, "a1", "Alice Smith", "alice@example.com"))
    store.insert(make_account(store, "b1", "Bob", "bob@example.com"))

    assert store.find_by_identity("ALICE@example.com").id == "a1"
    assert store.find_by_identity("alice smith").id == "a1"
    assert store.find_by_identity("  bob ").id == "b1"
    assert store.find_by_identity("carol") is None


def test_find_by_identity_ambiguous_name_matches_nobody(store):
    store.insert(make_account(store, "a1", "Sam", "sam1@example.com"))
    store.insert(make_account(store, "a2", "sam", "sam2@example.com"))

    assert store.find_by_identity("Sam") is None
    assert store.find_by_identity("sam2@example.com").id == "a2"


def test_update_replaces_record(store):
    account = store.insert(make_account(store, "a1", "Alice", "alice@example.com"))
    edited = account.model_copy(update={"location": "Lisbon", "role": Role.MODERATOR})
    store.update(edited)

    reloaded = store.find_by_id("a1")
    assert reloaded.location == "Lisbon"
    assert reloaded.role == Role.MODERATOR
    assert reloaded.password_hash == account.password_hash


def test_update_unknown_id_raises_not_found(store):
    ghost = make_account(store, "nope", "Ghost", "ghost@example.com")
    with pytest.raises(NotFound):
        store.update(ghost)


def test_update_rejects_email_taken_by_other_account(store):
    store.insert(make_account(store, "a1", "Alice", "alice@example.com"))
    bob = store.insert(make_account(store, "b1", "Bob", "bob@example.com"))
    with pytest.raises(DuplicateEmail):
        store.update(bob.model_copy(update={"email": "ALICE@example.com"}))
    assert store.find_by_id("b1").email == "bob@example.com"


def test_hash_and_verify(store):
    hashed = store.hash("s3cret-pass")
    assert hashed != "s3cret-pass"
    assert store.verify("s3cret-pass", hashed)
    assert not store.verify("wrong", hashed)
    assert not store.verify("s3cret-pass", "not-a-bcrypt-hash")
    assert not store.verify("", hashed)


def test_hash_rejects_password_over_72_bytes(store):
    with pytest.raises(PasswordTooLong):
        store.hash("x" * 73)
    # 24 three-byte characters is exactly 72 bytes
    hashed = store.hash("\u20ac" * 24)
    assert store.verify("\u20ac" * 24, hashed)
    assert not store.verify("\u20ac" * 24 + "x", hashed)


def test_hash_uses_configured_cost(users_file):
    store = CredentialStore(users_file, bcrypt_rounds=5)
    assert store.hash("pw").startswith("$2b$05$")


def test_legacy_list_layout_loads(store, users_file):
    legacy = [
        {
            "id": 1733900000000,
            "fullName": "Old User",
            "email": "old@example.com",
            "phone": None,
            "location": "",
            "role": "something-unknown",
            "avatarUrl": "",
            "memberSince": "2024-01",
            "passwordHash": store.hash("pw"),
        }
    ]
    users_file.write_text(json.dumps(legacy), encoding="utf-8")

    account = store.find_by_email("old@example.com")
    assert account.id == "1733900000000"
    assert account.phone == ""
    assert account.role == Role.STANDARD_MEMBER


def test_corrupt_file_raises_store_unavailable(store, users_file):
    users_file.write_text("{not json", encoding="utf-8")
    with pytest.raises(StoreUnavailable) as exc_info:
        store.list_accounts()
    assert exc_info.value.kind == "StoreUnavailable"


def test_write_failure_retries_once_then_raises(store, users_file, monkeypatch):
    calls = []

    def failing_replace(src, dst):
        calls.append(dst)
        raise OSError("disk full")

    monkeypatch.setattr(os, "replace", failing_replace)
    with pytest.raises(StoreUnavailable):
        store.insert(make_account(store, "a1", "Alice", "alice@example.com"))

    assert len(calls) == 2
    assert not users_file.exists()
    assert not list(users_file.parent.glob("*.tmp"))


def test_lock_timeout_raises_store_unavailable(users_file):
    store = CredentialStore(users_file, bcrypt_rounds=4, lock_timeout_seconds=0.05)
    lock_path = users_file.with_name(users_file.name + ".lock")
    lock_path.write_text(str(os.getpid()))

    with pytest.raises(StoreUnavailable):
        store.insert(make_account(store, "a1", "Alice", "alice@example.com"))

    # A live holder's lock is left alone
    assert lock_path.exists()
    assert store.list_accounts() == []


def test_lock_file_removed_after_write(store, users_file):
    store.insert(make_account(store, "a1", "Alice", "alice@example.com"))
    assert not users_file.with_name(users_file.name + ".lock").exists()


def test_concurrent_inserts_same_email_single_winner(store):
    password_hash = store.hash("pw")
    barrier = threading.Barrier(20)

    def attempt(i):
        account = Account(
            id=f"id-{i}",
            full_name=f"User {i}",
            email="race@example.com",
            member_since="2025-12",
            password_hash=password_hash,
        )
        barrier.wait()
        try:
            store.insert(account)
            return True
        except DuplicateEmail:
            return False

    with ThreadPoolExecutor(max_workers=20) as pool:
        results = list(pool.map(attempt, range(20)))

    assert results.count(True) == 1
    assert len(store.list_accounts()) == 1


def test_two_store_instances_share_the_file_lock(users_file):
    first = CredentialStore(users_file, bcrypt_rounds=4)
    second = CredentialStore(users_file, bcrypt_rounds=4)
    first.insert(make_account(first, "a1", "Alice", "alice@example.com"))
    with pytest.raises(DuplicateEmail):
        second.insert(make_account(second, "a2", "Alice Two", "alice@example.com"))


def dead_pid():
    proc = subprocess.Popen([sys.executable, "-c", "pass"])
    proc.wait()
    return proc.pid


def test_lock_left_by_dead_process_is_recovered(users_file):
    store = CredentialStore(users_file, bcrypt_rounds=4, lock_timeout_seconds=0.5)
    lock_path = users_file.with_name(users_file.name + ".lock")
    lock_path.write_text(str(dead_pid()))

    store.insert(make_account(store, "a1", "Alice", "alice@example.com"))

    assert store.find_by_id("a1") is not None
    assert not lock_path.exists()
    assert not list(users_file.parent.glob("*.stale"))


def test_old_unreadable_lock_is_recovered(users_file):
    store = CredentialStore(users_file, bcrypt_rounds=4, lock_timeout_seconds=0.5)
    lock_path = users_file.with_name(users_file.name + ".lock")
    lock_path.write_text("")
    old = time.time() - 3600
    os.utime(lock_path, (old, old))

    store.insert(make_account(store, "a1", "Alice", "alice@example.com"))
    assert store.find_by_id("a1") is not None


def test_fresh_unreadable_lock_is_respected(users_file):
    store = CredentialStore(users_file, bcrypt_rounds=4, lock_timeout_seconds=0.05)
    lock_path = users_file.with_name(users_file.name + ".lock")
    lock_path.write_text("")

    with pytest.raises(StoreUnavailable):
        store.insert(make_account(store, "a1", "Alice", "alice@example.com"))
    assert lock_path.exists()


def test_insert_if_empty_only_writes_first_account(store):
    first = store.insert_if_empty(make_account(store, "a1", "Alice", "alice@example.com"))
    second = store.insert_if_empty(make_account(store, "b1", "Bob", "bob@example.com"))

    assert first.id == "a1"
    assert second is None
    assert [a.id for a in store.list_accounts()] == ["a1"]
