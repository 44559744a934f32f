"""
Credential storage service with JSON-based persistence.

Sole reader and writer of the users file. Every lookup is a linear scan of
the whole file, which is fine for a demo-sized directory and is the first
thing to replace (indexed database) if the account count grows.

Mutations run as one critical section (in-process lock + lock file) around
read-check-write, and the file is replaced atomically (temp file, fsync,
os.replace) before the call returns.
"""

import json
import os
import tempfile
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, List, Optional, Union

import bcrypt
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.models.account import Account, normalize
from src.utils.exceptions import DuplicateEmail, NotFound, PasswordTooLong, StoreUnavailable
from src.utils.locks import file_lock
from src.utils.logger import get_logger

logger = get_logger(__name__)

DEFAULT_BCRYPT_ROUNDS = 10
# bcrypt only reads the first 72 bytes; longer inputs are rejected, not truncated
MAX_PASSWORD_BYTES = 72

# One retry with a short backoff; anything still failing is StoreUnavailable
_io_retry = retry(
    stop=stop_after_attempt(2),
    wait=wait_exponential(multiplier=0.05, min=0.05, max=0.5),
    retry=retry_if_exception_type(OSError),
    reraise=True,
)


class CredentialStore:
    """JSON-file account store plus the password hashing policy"""

    def __init__(
        self,
        users_file: Union[str, Path],
        bcrypt_rounds: int = DEFAULT_BCRYPT_ROUNDS,
        lock_timeout_seconds: float = 10.0,
    ):
        self.users_path = Path(users_file)
        self.bcrypt_rounds = bcrypt_rounds
        self.lock_timeout_seconds = lock_timeout_seconds
        self._lock_path = self.users_path.with_name(self.users_path.name + ".lock")
        self._thread_lock = threading.Lock()

    # ------------------------------------------------------------------
    # Hashing policy
    # ------------------------------------------------------------------

    @staticmethod
    def password_fits(password: str) -> bool:
        return len(password.encode("utf-8")) <= MAX_PASSWORD_BYTES

    def hash(self, password: str) -> str:
        """Hash a password with bcrypt; PasswordTooLong past 72 UTF-8 bytes"""
        if not self.password_fits(password):
            raise PasswordTooLong()
        salt = bcrypt.gensalt(rounds=self.bcrypt_rounds)
        return bcrypt.hashpw(password.encode("utf-8"), salt).decode("utf-8")

    def verify(self, password: str, password_hash: str) -> bool:
        """Verify a password against its hash; a malformed hash never matches"""
        if not password or not password_hash or not self.password_fits(password):
            return False
        try:
            return bcrypt.checkpw(password.encode("utf-8"), password_hash.encode("utf-8"))
        except ValueError:
            return False

    # ------------------------------------------------------------------
    # Reads
    # ------------------------------------------------------------------

    def list_accounts(self) -> List[Account]:
        """Load all accounts in file order"""
        try:
            raw = self._read_file()
        except OSError as e:
            logger.error("Failed to read users file", path=str(self.users_path), error=str(e))
            raise StoreUnavailable() from e
        if raw is None:
            return []
        try:
            data = json.loads(raw) if raw.strip() else {"users": []}
            items = data.get("users", []) if isinstance(data, dict) else data
            return [Account.model_validate(item) for item in items]
        except (ValueError, TypeError, AttributeError) as e:
            logger.error("Users file is corrupt", path=str(self.users_path), error=type(e).__name__)
            raise StoreUnavailable("Account store is corrupt") from e

    def find_by_email(self, email: str) -> Optional[Account]:
        """Case-insensitive exact match on the normalized email"""
        return self._find_email_in(self.list_accounts(), email)

    def find_by_id(self, account_id: str) -> Optional[Account]:
        return next((a for a in self.list_accounts() if a.id == account_id), None)

    def find_by_identity(self, identifier: str) -> Optional[Account]:
        """
        Match an email, or failing that a full name, case-insensitively.

        A full name shared by several accounts matches none of them; those
        users have to log in with their email.
        """
        accounts = self.list_accounts()
        by_email = self._find_email_in(accounts, identifier)
        if by_email is not None:
            return by_email

        wanted = normalize(identifier)
        if not wanted:
            return None
        by_name = [a for a in accounts if normalize(a.full_name) == wanted]
        if len(by_name) > 1:
            logger.warning("Ambiguous login name", matches=len(by_name))
            return None
        return by_name[0] if by_name else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def insert(self, account: Account) -> Account:
        """Persist a new account; DuplicateEmail if its email is taken"""
        with self._locked():
            accounts = self.list_accounts()
            if self._find_email_in(accounts, account.email) is not None:
                raise DuplicateEmail()
            accounts.append(account)
            self._save_accounts(accounts)
        logger.info("Account stored", account_id=account.id, total=len(accounts))
        return account

    def insert_if_empty(self, account: Account) -> Optional[Account]:
        """Persist ``account`` only if the store has no accounts yet"""
        with self._locked():
            if self.list_accounts():
                return None
            self._save_accounts([account])
        logger.info("Account stored", account_id=account.id, total=1)
        return account

    def update(self, account: Account) -> Account:
        """Replace the record with the same id"""
        with self._locked():
            accounts = self.list_accounts()
            for i, existing in enumerate(accounts):
                if existing.id == account.id:
                    break
            else:
                raise NotFound()

            clash = self._find_email_in(accounts, account.email)
            if clash is not None and clash.id != account.id:
                raise DuplicateEmail()

            accounts[i] = account
            self._save_accounts(accounts)
        logger.info("Account updated", account_id=account.id)
        return account

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    @staticmethod
    def _find_email_in(accounts: List[Account], email: str) -> Optional[Account]:
        wanted = normalize(email)
        if not wanted:
            return None
        return next((a for a in accounts if normalize(a.email) == wanted), None)

    @contextmanager
    def _locked(self) -> Iterator[None]:
        with self._thread_lock:
            try:
                with file_lock(self._lock_path, timeout_seconds=self.lock_timeout_seconds):
                    yield
            except TimeoutError as e:
                logger.error("Timed out waiting for users file lock", path=str(self._lock_path))
                raise StoreUnavailable() from e

    def _save_accounts(self, accounts: List[Account]) -> None:
        payload = {"users": [a.to_record() for a in accounts]}
        try:
            self._atomic_write(payload)
        except OSError as e:
            logger.error("Failed to save users file", path=str(self.users_path), error=str(e))
            raise StoreUnavailable() from e

    @_io_retry
    def _read_file(self) -> Optional[str]:
        if not self.users_path.exists():
            return None
        with open(self.users_path, "r", encoding="utf-8") as f:
            return f.read()

    @_io_retry
    def _atomic_write(self, payload: dict) -> None:
        """Write JSON to a temp file in the same directory, fsync, then replace"""
        dir_path = self.users_path.parent
        dir_path.mkdir(parents=True, exist_ok=True)
        with tempfile.NamedTemporaryFile(
            mode="w", dir=str(dir_path), delete=False, encoding="utf-8", suffix=".tmp"
        ) as tf:
            json.dump(payload, tf, indent=2, ensure_ascii=False)
            tf.flush()
            os.fsync(tf.fileno())
            temp_path = Path(tf.name)

        try:
            os.replace(str(temp_path), str(self.users_path))
        except OSError:
            if temp_path.exists():
                temp_path.unlink()
            raise

        if hasattr(os, "O_DIRECTORY"):
            dir_fd = os.open(str(dir_path), os.O_RDONLY | os.O_DIRECTORY)
            try:
                os.fsync(dir_fd)
            finally:
                os.close(dir_fd)
