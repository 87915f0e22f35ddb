"""Password-based encryption of backup archives."""

import base64
import os
import secrets
import sys
from pathlib import Path
from typing import Callable, Mapping, Optional, Union

from cryptography.fernet import Fernet, InvalidToken
from cryptography.hazmat.primitives import hashes
from cryptography.hazmat.primitives.kdf.pbkdf2 import PBKDF2HMAC
from pydantic import BaseModel
from rich.prompt import Prompt

from sbx_lite.core.exceptions import (
    ArchiveIntegrityError,
    DecryptionError,
    EncryptionError,
    UserInputError,
)
from sbx_lite.models.backup import ENCRYPTED_SUFFIX, KEY_SUFFIX, PasswordRecord, archive_base_name
from sbx_lite.models.config import SbxContext
from sbx_lite.utils.helpers import PRIVATE_DIR_MODE, atomic_write_bytes
from sbx_lite.utils.logging import get_logger

logger = get_logger("backup.encryption")

MAGIC = b"SBXENC01"
SALT_SIZE = 16
KDF_ITERATIONS = 390000
PASSWORD_LENGTH = 64
MIN_PASSWORD_LENGTH = 32
KEY_FILE_MODE = 0o400
DECRYPTED_NAME = "decrypted.tar.gz"


class EncryptionResult(BaseModel):
    """Outcome of encrypting an archive."""
    encrypted_path: Path
    key_file: Optional[Path] = None
    generated: bool = False


def _prompt_password(message: str) -> str:
    return Prompt.ask(message, password=True)


class BackupEncryptor:
    """Encrypts and decrypts archives with a password-derived Fernet key."""

    def __init__(
        self,
        context: SbxContext,
        prompt: Optional[Callable[[str], str]] = None,
        environ: Optional[Mapping[str, str]] = None
    ):
        self.context = context
        self.prompt = prompt
        self.environ = os.environ if environ is None else environ

    def derive_key(self, password: str, salt: bytes) -> bytes:
        """Derive a Fernet key from a password using PBKDF2."""
        kdf = PBKDF2HMAC(
            algorithm=hashes.SHA256(),
            length=32,
            salt=salt,
            iterations=KDF_ITERATIONS,
        )
        return base64.urlsafe_b64encode(kdf.derive(password.encode("utf-8")))

    def generate_password(self) -> str:
        """Generate a random archive password."""
        password = secrets.token_urlsafe(48)[:PASSWORD_LENGTH]
        if len(password) < MIN_PASSWORD_LENGTH:
            raise EncryptionError(
                f"Generated password too short ({len(password)} < {MIN_PASSWORD_LENGTH} characters)"
            )
        return password

    def key_file_for(self, archive_path: Union[str, Path]) -> Path:
        """Key file path matched to an archive by name."""
        return self.context.paths.key_dir / f"{archive_base_name(Path(archive_path).name)}{KEY_SUFFIX}"

    def create_password_record(self, archive_path: Union[str, Path]) -> PasswordRecord:
        """Generate a password and store it in an owner-read-only key file."""
        password = self.generate_password()
        key_dir = self.context.paths.key_dir
        key_file = self.key_file_for(archive_path)

        try:
            key_dir.mkdir(parents=True, exist_ok=True)
            os.chmod(key_dir, PRIVATE_DIR_MODE)
            atomic_write_bytes(key_file, password.encode("utf-8"), mode=KEY_FILE_MODE)
        except OSError as e:
            raise EncryptionError(f"Failed to save encryption key: {e}")

        logger.info(f"Encryption key saved to: {key_file}")
        return PasswordRecord(password=password, key_file=key_file)

    def _discard_plaintext(self, archive: Path):
        try:
            archive.unlink()
        except FileNotFoundError:
            return
        except OSError as e:
            logger.error(f"Failed to remove unencrypted archive {archive}: {e}")
            return
        logger.warning(f"Removed unencrypted archive after failed encryption: {archive.name}")

    def encrypt(self, archive_path: Union[str, Path], password: Optional[str] = None) -> EncryptionResult:
        """
        Encrypt an archive and delete the plaintext.

        Args:
            archive_path: Plaintext .tar.gz archive
            password: Archive password; generated and stored when omitted

        Returns:
            EncryptionResult with the .enc path and any generated key file
        """
        archive = Path(archive_path)
        encrypted_path = archive.with_name(archive.name + ENCRYPTED_SUFFIX)

        record = None
        try:
            if not password:
                record = self.create_password_record(archive)
                password = record.password

            try:
                salt = os.urandom(SALT_SIZE)
                token = Fernet(self.derive_key(password, salt)).encrypt(archive.read_bytes())
                atomic_write_bytes(encrypted_path, MAGIC + salt + token, mode=0o600)
            except (OSError, ValueError) as e:
                if record is not None and record.key_file.exists():
                    record.key_file.unlink()
                raise EncryptionError(f"Failed to encrypt backup: {e}")
        except EncryptionError:
            # the plaintext archive holds private keys
            self._discard_plaintext(archive)
            raise

        archive.unlink()
        logger.info(f"Backup encrypted: {encrypted_path.name}")

        return EncryptionResult(
            encrypted_path=encrypted_path,
            key_file=record.key_file if record else None,
            generated=record is not None,
        )

    def resolve_password(self, archive_path: Union[str, Path], password: Optional[str] = None) -> str:
        """
        Find the password for an encrypted archive.

        Order: explicit argument, matching key file, environment variable,
        interactive prompt.
        """
        if password is not None:
            if not password:
                raise UserInputError("Password cannot be empty")
            return password

        key_file = self.key_file_for(archive_path)
        if key_file.is_file():
            try:
                stored = key_file.read_text(encoding="utf-8").strip()
            except OSError as e:
                logger.warning(f"Cannot read key file {key_file}: {e}")
            else:
                if stored:
                    logger.info(f"Using password from key file: {key_file.name}")
                    return stored

        env_name = self.context.backup.password_env
        if self.environ.get(env_name):
            logger.info(f"Using password from ${env_name}")
            return self.environ[env_name]

        prompt = self.prompt
        if prompt is None:
            if not sys.stdin.isatty():
                raise UserInputError(
                    f"Encrypted backup needs a password: use --password, set {env_name}, "
                    f"or provide the key file {key_file}"
                )
            prompt = _prompt_password

        entered = prompt("Enter decryption password")
        if not entered:
            raise UserInputError("Password cannot be empty")
        return entered

    def decrypt(
        self,
        archive_path: Union[str, Path],
        dest_dir: Union[str, Path],
        password: Optional[str] = None
    ) -> Path:
        """
        Decrypt an archive into a private directory.

        Args:
            archive_path: Encrypted .tar.gz.enc archive
            dest_dir: Private directory for the plaintext
            password: Explicit password (see resolve_password)

        Returns:
            Path of the decrypted .tar.gz
        """
        archive = Path(archive_path)
        if not archive.is_file():
            raise ArchiveIntegrityError(f"Backup archive not found: {archive}", reason="missing")

        data = archive.read_bytes()
        header_size = len(MAGIC) + SALT_SIZE
        if len(data) <= header_size or not data.startswith(MAGIC):
            raise DecryptionError(f"Not an encrypted sbx-lite backup or file is truncated: {archive.name}")

        password = self.resolve_password(archive, password)

        salt = data[len(MAGIC):header_size]
        try:
            plaintext = Fernet(self.derive_key(password, salt)).decrypt(data[header_size:])
        except InvalidToken:
            raise DecryptionError("Decryption failed: wrong password or corrupted file")

        output = Path(dest_dir) / DECRYPTED_NAME
        atomic_write_bytes(output, plaintext, mode=0o600)
        logger.info(f"Backup decrypted: {archive.name}")
        return output
