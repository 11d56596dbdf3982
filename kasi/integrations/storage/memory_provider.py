from __future__ import annotations

from kasi.integrations.storage.base import StorageProvider


class MemoryStorageProvider(StorageProvider):
    name = "memory"

    def __init__(self):
        self.objects: dict[tuple[str, str], tuple[bytes, str]] = {}

    def upload(self, bucket: str, filename: str, data: bytes, content_type: str) -> str:
        self.objects[(bucket, filename)] = (bytes(data), content_type)
        return f"memory://{bucket}/{filename}"

    def delete(self, bucket: str, key: str) -> None:
        self.objects.pop((bucket, key), None)
