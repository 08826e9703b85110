"""Blob stores for the seen-history ledger (local file, Redis, in-memory)."""

from __future__ import annotations

import os
import tempfile
from pathlib import Path
from typing import Optional, Protocol

from ingestion.connectors.base import ConfigurationError
from ingestion.settings import Settings


class BlobStore(Protocol):
    def read(self, path: str) -> Optional[str]: ...  # None when absent
    def write(self, path: str, data: str) -> None: ...  # noqa: D401


class InMemoryBlobStore:
    """Simple in-memory store for tests/local runs."""

    def __init__(self) -> None:
        self._data: dict[str, str] = {}

    def read(self, path: str) -> Optional[str]:
        return self._data.get(path)

    def write(self, path: str, data: str) -> None:
        self._data[path] = data


class LocalFileBlobStore:
    """로컬 파일 저장소. 쓰기는 임시 파일 + rename으로 원자적으로 처리한다."""

    def __init__(self, root: str | Path | None = None) -> None:
        self._root = Path(root) if root is not None else None

    def _resolve(self, path: str) -> Path:
        p = Path(path)
        if self._root is not None and not p.is_absolute():
            p = self._root / p
        return p

    def read(self, path: str) -> Optional[str]:
        target = self._resolve(path)
        if not target.exists():
            return None
        return target.read_text(encoding="utf-8")

    def write(self, path: str, data: str) -> None:
        target = self._resolve(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        fd, tmp = tempfile.mkstemp(prefix=f".{target.name}.", dir=str(target.parent))
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                fh.write(data)
            os.replace(tmp, target)
        except OSError:
            Path(tmp).unlink(missing_ok=True)
            raise


class _RedisLikeClient(Protocol):
    def get(self, name: str) -> Optional[bytes | str]: ...
    def set(self, name: str, value: str) -> bool | None: ...


class RedisBlobStore:
    """Redis 기반 BlobStore 구현.

    - 읽기: `GET <prefix>:<path>` → bytes/str 또는 None
    - 쓰기: `SET <prefix>:<path> value`

    redis-py 클라이언트 호환 인터페이스를 기대하며, 테스트에서는 fake 클라이언트를 주입한다.
    """

    def __init__(self, client: _RedisLikeClient, *, prefix: str = "radar") -> None:
        self._client = client
        self._prefix = prefix

    def _format(self, path: str) -> str:
        return f"{self._prefix}:{path}"

    def read(self, path: str) -> Optional[str]:
        raw = self._client.get(self._format(path))
        if raw is None:
            return None
        if isinstance(raw, bytes):
            return raw.decode("utf-8")
        return str(raw)

    def write(self, path: str, data: str) -> None:
        self._client.set(self._format(path), data)

    @classmethod
    def from_url(cls, url: str, *, prefix: str = "radar") -> "RedisBlobStore":
        import redis as redislib  # type: ignore

        return cls(redislib.Redis.from_url(url), prefix=prefix)


def build_blob_store(settings: Settings) -> BlobStore:
    """설정된 백엔드로 이력 저장소를 만든다."""
    if settings.seen_history_backend == "redis":
        if not settings.seen_history_redis_url:
            raise ConfigurationError("SEEN_HISTORY_REDIS_URL이 설정되지 않았습니다.")
        return RedisBlobStore.from_url(settings.seen_history_redis_url)
    return LocalFileBlobStore()
