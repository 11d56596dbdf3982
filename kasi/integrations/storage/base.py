from __future__ import annotations

BUCKETS = ("receipts", "delivery-photos", "product-images", "store-logos", "agent-photos")


class StorageProvider:
    name = "unknown"

    def upload(self, bucket: str, filename: str, data: bytes, content_type: str) -> str:
        """Persist ``data`` and return its public URL."""
        raise NotImplementedError

    def delete(self, bucket: str, key: str) -> None:
        raise NotImplementedError

    def key_from_url(self, url: str) -> str:
        return (url or "").rstrip("/").rsplit("/", 1)[-1]
