from __future__ import annotations

import logging
import os

from werkzeug.utils import secure_filename

from kasi.integrations.storage.base import StorageProvider

logger = logging.getLogger(__name__)


class LocalStorageProvider(StorageProvider):
    """Writes under ``root/<bucket>/<key>``; served by ``GET /uploads/...``."""

    name = "local"

    def __init__(self, root: str, public_base_url: str = ""):
        self.root = os.path.abspath(root)
        self.public_base_url = (public_base_url or "").rstrip("/")

    def path_for(self, bucket: str, key: str) -> str:
        return os.path.join(self.root, secure_filename(bucket), secure_filename(key))

    def upload(self, bucket: str, filename: str, data: bytes, content_type: str) -> str:
        key = secure_filename(filename)
        path = self.path_for(bucket, key)
        os.makedirs(os.path.dirname(path), exist_ok=True)
        with open(path, "wb") as fh:
            fh.write(data)
        return f"{self.public_base_url}/uploads/{secure_filename(bucket)}/{key}"

    def delete(self, bucket: str, key: str) -> None:
        path = self.path_for(bucket, key)
        try:
            os.remove(path)
        except FileNotFoundError:
            logger.info("storage_delete_missing bucket=%s key=%s", bucket, key)
