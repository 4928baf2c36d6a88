"""
Local persistence: a JSON-file key-value store and an encrypted secure store.
"""
import asyncio
import json
import os
from typing import Any, Dict, List, Optional
from uuid import uuid4

import aiofiles
import aiofiles.os
import structlog
from cryptography.fernet import Fernet, InvalidToken

from ..utils.exceptions import StorageError

logger = structlog.get_logger()


class KeyValueStore:
    """
    String key-value store persisted as a single JSON document.

    Values are strings; ``get_object``/``set_object`` wrap JSON encoding.
    The document is loaded lazily and every write replaces the file atomically.
    """

    def __init__(self, path: str):
        self.path = path
        self._data: Optional[Dict[str, str]] = None
        self._write_lock = asyncio.Lock()

    async def _load(self) -> Dict[str, str]:
        if self._data is not None:
            return self._data

        if not await aiofiles.os.path.exists(self.path):
            self._data = {}
            return self._data

        try:
            async with aiofiles.open(self.path, "r", encoding="utf-8") as f:
                content = await f.read()
            data = json.loads(content) if content.strip() else {}
        except (OSError, json.JSONDecodeError) as e:
            logger.error("Failed to load key-value store", path=self.path, error=str(e))
            raise StorageError(f"Failed to load store at {self.path}", details=[str(e)])

        if not isinstance(data, dict):
            raise StorageError(f"Store at {self.path} is not a JSON object")

        # Another caller may have finished loading while this one read the file
        if self._data is None:
            self._data = {str(key): str(value) for key, value in data.items()}
        return self._data

    async def _flush(self) -> None:
        data = await self._load()
        temp_path = f"{self.path}.{uuid4().hex}.tmp"

        async with self._write_lock:
            try:
                directory = os.path.dirname(self.path)
                if directory:
                    await aiofiles.os.makedirs(directory, exist_ok=True)
                async with aiofiles.open(temp_path, "w", encoding="utf-8") as f:
                    await f.write(json.dumps(data))
                await aiofiles.os.replace(temp_path, self.path)
            except OSError as e:
                logger.error("Failed to write key-value store", path=self.path, error=str(e))
                if await aiofiles.os.path.exists(temp_path):
                    await aiofiles.os.remove(temp_path)
                raise StorageError(f"Failed to write store at {self.path}", details=[str(e)])

    async def get_item(self, key: str) -> Optional[str]:
        data = await self._load()
        return data.get(key)

    async def set_item(self, key: str, value: str) -> None:
        data = await self._load()
        data[key] = value
        await self._flush()

    async def remove_item(self, key: str) -> None:
        data = await self._load()
        if key in data:
            del data[key]
            await self._flush()

    async def get_object(self, key: str) -> Optional[Any]:
        """Read a JSON value. Raises StorageError if the stored value is not JSON."""
        raw = await self.get_item(key)
        if raw is None:
            return None
        try:
            return json.loads(raw)
        except json.JSONDecodeError as e:
            raise StorageError(f"Value for '{key}' is not valid JSON", details=[str(e)])

    async def set_object(self, key: str, value: Any) -> None:
        await self.set_item(key, json.dumps(value, default=str))

    async def get_all_keys(self) -> List[str]:
        data = await self._load()
        return list(data.keys())

    async def clear(self) -> None:
        self._data = {}
        await self._flush()


class SecureStore:
    """
    Key-value store whose values are encrypted at rest with Fernet.

    Holds per-user encryption keys and download credentials. Without a
    configured key, a generated one is kept in ``<path>.key`` so values stay
    readable across restarts.
    """

    def __init__(self, path: str, encryption_key: Optional[str] = None):
        self._store = KeyValueStore(path)
        self.key_path = f"{path}.key"
        self._fernet: Optional[Fernet] = None
        self._key_lock = asyncio.Lock()

        if encryption_key:
            self._fernet = Fernet(encryption_key.encode() if isinstance(encryption_key, str) else encryption_key)

    async def _get_fernet(self) -> Fernet:
        if self._fernet is not None:
            return self._fernet

        async with self._key_lock:
            if self._fernet is not None:
                return self._fernet

            try:
                if await aiofiles.os.path.exists(self.key_path):
                    async with aiofiles.open(self.key_path, "rb") as f:
                        key = (await f.read()).strip()
                else:
                    key = Fernet.generate_key()
                    directory = os.path.dirname(self.key_path)
                    if directory:
                        await aiofiles.os.makedirs(directory, exist_ok=True)
                    async with aiofiles.open(self.key_path, "wb") as f:
                        await f.write(key)
                    os.chmod(self.key_path, 0o600)
                    logger.warning(
                        "Generated key for secure store - configure secure_store_key in production",
                        key_path=self.key_path
                    )
                self._fernet = Fernet(key)
            except (OSError, ValueError) as e:
                logger.error("Secure store key unavailable", key_path=self.key_path, error=str(e))
                raise StorageError(f"Secure store key at {self.key_path} is unusable", details=[str(e)])

        return self._fernet

    async def get_item(self, key: str) -> Optional[str]:
        token = await self._store.get_item(key)
        if token is None:
            return None
        fernet = await self._get_fernet()
        try:
            return fernet.decrypt(token.encode()).decode()
        except InvalidToken:
            logger.error("Secure store value could not be decrypted", key=key)
            raise StorageError(f"Secure value for '{key}' is unreadable")

    async def set_item(self, key: str, value: str) -> None:
        fernet = await self._get_fernet()
        await self._store.set_item(key, fernet.encrypt(value.encode()).decode())

    async def delete_item(self, key: str) -> None:
        await self._store.remove_item(key)

    async def get_all_keys(self) -> List[str]:
        return await self._store.get_all_keys()
