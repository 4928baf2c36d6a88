"""
Secure file service.

Encrypts export files with per-user AES-256-GCM keys, issues single-use
download tokens bound to the file and its plaintext checksum, and verifies
integrity when a token is redeemed.
"""
import asyncio
import hashlib
import os
import time
from collections import OrderedDict
from contextlib import asynccontextmanager
from datetime import timedelta
from typing import AsyncIterator, Dict, Optional, Set

import aiofiles
import aiofiles.os
import structlog
from cryptography.exceptions import InvalidTag
from cryptography.hazmat.primitives.ciphers.aead import AESGCM
from pydantic import ValidationError as PydanticValidationError

from ..config import Settings, get_settings
from ..infrastructure.storage import SecureStore
from ..models.secure_file import (
    CleanupResult,
    DecryptedFile,
    DownloadCredentials,
    FileIntegrity,
    SecureFileInfo,
    TokenState,
)
from ..utils.constants import (
    DOWNLOAD_TOKEN_PREFIX,
    ENCRYPTED_FILE_MAGIC,
    ENCRYPTED_FILE_VERSION,
    ENCRYPTION_KEY_PREFIX,
    KEY_SIZE_BYTES,
    MAX_TERMINAL_TOKEN_STATES,
    NONCE_SIZE,
)
from ..utils.exceptions import (
    DecryptionError,
    EncryptionError,
    IntegrityViolationError,
    KeyNotFoundError,
    StorageError,
    TokenExpiredError,
    TokenInvalidError,
)
from ..utils.formatting import epoch_ms, utc_now

logger = structlog.get_logger()

_HEADER_SIZE = len(ENCRYPTED_FILE_MAGIC) + 1 + NONCE_SIZE


def _token_prefix(token: str) -> str:
    return token[:8]


class SecureFileService:
    """Service owning export encryption keys and download tokens."""

    def __init__(self, secure_store: SecureStore, settings: Optional[Settings] = None):
        self.settings = settings or get_settings()
        self.secure_store = secure_store
        self.secure_dir = self.settings.secure_exports_dir

        self._redeeming: Set[str] = set()
        self._terminal_states: "OrderedDict[str, TokenState]" = OrderedDict()
        self._pending_deletions: Dict[str, asyncio.TimerHandle] = {}
        self._deletion_tasks: Set[asyncio.Task] = set()

    async def initialize(self) -> None:
        """Create the secure export directory."""
        try:
            await aiofiles.os.makedirs(self.secure_dir, exist_ok=True)
            logger.info("Secure file service initialized", secure_dir=self.secure_dir)
        except OSError as e:
            logger.error("Failed to create secure directory", secure_dir=self.secure_dir, error=str(e))
            raise StorageError("Failed to create secure export directory", details=[str(e)])

    async def shutdown(self) -> None:
        """Delete pending decrypted downloads now instead of waiting for their timers."""
        pending = list(self._pending_deletions.items())
        self._pending_deletions.clear()

        for path, handle in pending:
            handle.cancel()
            try:
                await self.secure_delete(path)
            except StorageError as e:
                logger.warning("Failed to delete temporary download on shutdown", error=str(e))

        if self._deletion_tasks:
            await asyncio.gather(*self._deletion_tasks, return_exceptions=True)

        logger.info("Secure file service shut down", temp_files_deleted=len(pending))

    # Keys

    @staticmethod
    def _decode_key(stored: str, user_id: str) -> bytes:
        try:
            key = bytes.fromhex(stored)
        except ValueError:
            key = b""
        if len(key) != KEY_SIZE_BYTES:
            logger.error("Stored encryption key is malformed", user_id=user_id)
            raise KeyNotFoundError("Stored encryption key is malformed", user_id=user_id)
        return key

    async def _get_or_create_user_key(self, user_id: str) -> bytes:
        key_name = f"{ENCRYPTION_KEY_PREFIX}{user_id}"
        stored = await self.secure_store.get_item(key_name)
        if stored:
            return self._decode_key(stored, user_id)

        key = AESGCM.generate_key(bit_length=KEY_SIZE_BYTES * 8)
        await self.secure_store.set_item(key_name, key.hex())
        logger.info("Generated export encryption key", user_id=user_id)
        return key

    async def _get_user_key(self, user_id: str) -> Optional[bytes]:
        try:
            stored = await self.secure_store.get_item(f"{ENCRYPTION_KEY_PREFIX}{user_id}")
        except StorageError as e:
            logger.error("Encryption key unreadable", user_id=user_id, error=e.message)
            return None
        return self._decode_key(stored, user_id) if stored else None

    # Container format: magic | version | nonce | ciphertext+tag

    @staticmethod
    def _seal(key: bytes, plaintext: bytes, file_id: str) -> bytes:
        nonce = os.urandom(NONCE_SIZE)
        ciphertext = AESGCM(key).encrypt(nonce, plaintext, file_id.encode())
        return ENCRYPTED_FILE_MAGIC + bytes([ENCRYPTED_FILE_VERSION]) + nonce + ciphertext

    @staticmethod
    def _open(key: bytes, payload: bytes, file_id: str) -> bytes:
        if len(payload) <= _HEADER_SIZE or not payload.startswith(ENCRYPTED_FILE_MAGIC):
            raise DecryptionError("Encrypted file has an unrecognized format")

        version = payload[len(ENCRYPTED_FILE_MAGIC)]
        if version != ENCRYPTED_FILE_VERSION:
            raise DecryptionError(f"Unsupported encrypted file version: {version}")

        nonce = payload[len(ENCRYPTED_FILE_MAGIC) + 1:_HEADER_SIZE]
        try:
            return AESGCM(key).decrypt(nonce, payload[_HEADER_SIZE:], file_id.encode())
        except InvalidTag:
            raise DecryptionError("Encrypted file failed authentication")

    @staticmethod
    def _generate_token(user_id: str, file_id: str, checksum: str, timestamp: int) -> str:
        return hashlib.sha256(f"{user_id}:{file_id}:{checksum}:{timestamp}".encode()).hexdigest()

    # Encryption

    async def encrypt_file(
        self,
        file_path: str,
        user_id: str,
        file_id: str,
        content_type: str = "application/octet-stream"
    ) -> SecureFileInfo:
        """
        Encrypt a plaintext file and issue a download token for it.

        The plaintext file is securely deleted whether or not encryption
        succeeds.
        """
        encrypted_path: Optional[str] = None

        try:
            await aiofiles.os.makedirs(self.secure_dir, exist_ok=True)
            key = await self._get_or_create_user_key(user_id)

            async with aiofiles.open(file_path, "rb") as f:
                plaintext = await f.read()

            checksum = hashlib.sha256(plaintext).hexdigest()
            now = utc_now()

            encrypted_path = os.path.join(self.secure_dir, f"{file_id}_{epoch_ms(now)}.enc")
            async with aiofiles.open(encrypted_path, "wb") as f:
                await f.write(self._seal(key, plaintext, file_id))
            encrypted_size = (await aiofiles.os.stat(encrypted_path)).st_size

            token = self._generate_token(user_id, file_id, checksum, time.time_ns())
            credentials = DownloadCredentials(
                token=token,
                expires_at=now + timedelta(hours=self.settings.token_expiry_hours),
                file_id=file_id,
                checksum_verification=checksum,
                user_id=user_id,
                encrypted_file=os.path.basename(encrypted_path),
                content_type=content_type,
            )
            await self.secure_store.set_item(f"{DOWNLOAD_TOKEN_PREFIX}{token}", credentials.model_dump_json())

            logger.info(
                "File encrypted",
                file_id=file_id,
                user_id=user_id,
                original_size=len(plaintext),
                encrypted_size=encrypted_size,
                token=_token_prefix(token)
            )

            return SecureFileInfo(
                encrypted_path=encrypted_path,
                checksum=checksum,
                download_token=token,
                expires_at=credentials.expires_at,
                original_size=len(plaintext),
                encrypted_size=encrypted_size,
            )

        except Exception as e:
            logger.error("File encryption failed", file_id=file_id, user_id=user_id, error=str(e))
            if encrypted_path and await aiofiles.os.path.exists(encrypted_path):
                await aiofiles.os.remove(encrypted_path)
            raise EncryptionError(f"Failed to encrypt file: {e}") from e

        finally:
            await self.secure_delete(file_path)

    # Tokens

    async def _load_credentials(self, token: str) -> Optional[DownloadCredentials]:
        try:
            raw = await self.secure_store.get_item(f"{DOWNLOAD_TOKEN_PREFIX}{token}")
        except StorageError as e:
            logger.error("Download credentials unreadable", token=_token_prefix(token), error=e.message)
            return None

        if raw is None:
            return None

        try:
            return DownloadCredentials.model_validate_json(raw)
        except PydanticValidationError as e:
            logger.error("Download credentials malformed", token=_token_prefix(token), error=str(e))
            return None

    @asynccontextmanager
    async def claim_token(self, token: str) -> AsyncIterator[None]:
        """Hold a token for the duration of one redemption."""
        if token in self._redeeming:
            logger.warning("Concurrent token redemption rejected", token=_token_prefix(token))
            raise TokenInvalidError("Download token is already being redeemed")

        self._redeeming.add(token)
        try:
            yield
        finally:
            self._redeeming.discard(token)

    async def revoke_download_token(self, token: str, state: TokenState = TokenState.REVOKED) -> None:
        """Delete a token's credentials. Revoking an unknown token is a no-op."""
        try:
            await self.secure_store.delete_item(f"{DOWNLOAD_TOKEN_PREFIX}{token}")
            self._remember_terminal_state(token, state)
            logger.info("Download token revoked", token=_token_prefix(token), state=state.value)
        except StorageError as e:
            logger.error("Failed to revoke download token", token=_token_prefix(token), error=e.message)
            raise

    def _remember_terminal_state(self, token: str, state: TokenState) -> None:
        if token in self._terminal_states:
            return
        self._terminal_states[token] = state
        while len(self._terminal_states) > MAX_TERMINAL_TOKEN_STATES:
            self._terminal_states.popitem(last=False)

    async def get_token_state(self, token: str) -> TokenState:
        if token in self._terminal_states:
            return self._terminal_states[token]

        credentials = await self._load_credentials(token)
        if credentials is None:
            return TokenState.REVOKED
        return TokenState.EXPIRED if credentials.is_expired() else TokenState.ISSUED

    async def verify_file_integrity(self, token: str) -> bool:
        """Check that a token is live and its encrypted file exists, without decrypting."""
        credentials = await self._load_credentials(token)
        if credentials is None or credentials.is_expired():
            return False
        return await aiofiles.os.path.exists(os.path.join(self.secure_dir, credentials.encrypted_file))

    # Decryption

    async def decrypt_file_for_download(self, token: str, user_id: str) -> DecryptedFile:
        """
        Decrypt the file behind a token into a short-lived temporary file.

        Raises TokenInvalidError, TokenExpiredError, KeyNotFoundError,
        DecryptionError or IntegrityViolationError. Nothing is written to disk
        unless the checksum matches.
        """
        credentials = await self._load_credentials(token)
        if credentials is None:
            raise TokenInvalidError()

        if credentials.is_expired():
            await self.revoke_download_token(token, TokenState.EXPIRED)
            raise TokenExpiredError()

        if credentials.user_id != user_id:
            logger.warning(
                "Download token presented by another user",
                token=_token_prefix(token),
                user_id=user_id
            )
            raise TokenInvalidError()

        key = await self._get_user_key(credentials.user_id)
        if key is None:
            raise KeyNotFoundError(user_id=credentials.user_id)

        encrypted_path = os.path.join(self.secure_dir, credentials.encrypted_file)
        try:
            async with aiofiles.open(encrypted_path, "rb") as f:
                payload = await f.read()
        except FileNotFoundError:
            raise DecryptionError("Encrypted file not found", details=[credentials.encrypted_file])

        plaintext = self._open(key, payload, credentials.file_id)

        verified_checksum = hashlib.sha256(plaintext).hexdigest()
        integrity = FileIntegrity(
            original_checksum=credentials.checksum_verification,
            verified_checksum=verified_checksum,
            is_valid=verified_checksum == credentials.checksum_verification,
        )
        if not integrity.is_valid:
            logger.error("File integrity check failed", file_id=credentials.file_id)
            raise IntegrityViolationError(
                expected_checksum=integrity.original_checksum,
                actual_checksum=integrity.verified_checksum
            )

        temp_path = os.path.join(self.settings.data_dir, f"temp_{credentials.file_id}_{epoch_ms()}.tmp")
        async with aiofiles.open(temp_path, "wb") as f:
            await f.write(plaintext)
        self._schedule_deletion(temp_path)

        logger.info("File decrypted for download", file_id=credentials.file_id, user_id=user_id)
        return DecryptedFile(
            file_path=temp_path,
            file_id=credentials.file_id,
            content_type=credentials.content_type,
            integrity=integrity,
        )

    def _schedule_deletion(self, path: str) -> None:
        loop = asyncio.get_running_loop()
        delay = self.settings.temp_download_ttl_hours * 3600
        self._pending_deletions[path] = loop.call_later(delay, self._start_deletion, path)

    def _start_deletion(self, path: str) -> None:
        self._pending_deletions.pop(path, None)
        task = asyncio.ensure_future(self._delete_temp_file(path))
        self._deletion_tasks.add(task)
        task.add_done_callback(self._deletion_tasks.discard)

    async def _delete_temp_file(self, path: str) -> None:
        try:
            await self.secure_delete(path)
            logger.info("Temporary download deleted", path=path)
        except StorageError as e:
            logger.warning("Failed to delete temporary download", path=path, error=e.message)

    @property
    def pending_temp_files(self) -> int:
        return len(self._pending_deletions)

    # Deletion

    async def secure_delete(self, file_path: str) -> bool:
        """
        Overwrite a file with random bytes, then remove it.

        Falls back to a plain delete if overwriting fails. Returns False if
        the file did not exist.
        """
        if not await aiofiles.os.path.exists(file_path):
            return False

        try:
            size = (await aiofiles.os.stat(file_path)).st_size
            async with aiofiles.open(file_path, "r+b") as f:
                await f.write(os.urandom(size))
                await f.flush()
                os.fsync(f.fileno())
        except OSError as e:
            logger.warning("Secure overwrite failed, deleting without overwrite", path=file_path, error=str(e))

        try:
            await aiofiles.os.remove(file_path)
            return True
        except FileNotFoundError:
            return False
        except OSError as e:
            logger.error("Failed to delete file", path=file_path, error=str(e))
            raise StorageError(f"Failed to delete {file_path}", details=[str(e)])

    async def cleanup_expired_files(self) -> CleanupResult:
        """Remove encrypted files past their maximum age and expired token records."""
        result = CleanupResult()
        cutoff = time.time() - self.settings.max_secure_file_age_hours * 3600

        if await aiofiles.os.path.isdir(self.secure_dir):
            for name in await aiofiles.os.listdir(self.secure_dir):
                path = os.path.join(self.secure_dir, name)
                try:
                    stat = await aiofiles.os.stat(path)
                    if stat.st_mtime < cutoff and await self.secure_delete(path):
                        result.files_deleted += 1
                except (OSError, StorageError) as e:
                    logger.warning("Failed to clean up secure file", file=name, error=str(e))

        for key in await self.secure_store.get_all_keys():
            if not key.startswith(DOWNLOAD_TOKEN_PREFIX):
                continue
            token = key[len(DOWNLOAD_TOKEN_PREFIX):]
            credentials = await self._load_credentials(token)
            if credentials is None or credentials.is_expired():
                await self.revoke_download_token(token, TokenState.EXPIRED)
                result.tokens_revoked += 1

        logger.info(
            "Secure file cleanup completed",
            files_deleted=result.files_deleted,
            tokens_revoked=result.tokens_revoked
        )
        return result
