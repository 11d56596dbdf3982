from __future__ import annotations

from flask import current_app

from kasi.integrations.common import IntegrationMisconfiguredError
from kasi.integrations.storage.base import StorageProvider
from kasi.integrations.storage.local_provider import LocalStorageProvider
from kasi.integrations.storage.memory_provider import MemoryStorageProvider


def build_storage_provider(config) -> StorageProvider:
    provider = (config.get("STORAGE_PROVIDER") or "local").strip().lower()
    if provider == "memory":
        return MemoryStorageProvider()
    if provider != "local":
        raise IntegrationMisconfiguredError(f"INTEGRATION_MISCONFIGURED:storage_provider={provider}")
    root = (config.get("UPLOAD_ROOT") or "").strip()
    if not root:
        raise IntegrationMisconfiguredError("INTEGRATION_MISCONFIGURED:missing UPLOAD_ROOT")
    return LocalStorageProvider(root, public_base_url=config.get("PUBLIC_BASE_URL") or "")


def get_storage() -> StorageProvider:
    """The provider is built once per app and kept on ``app.extensions``."""
    app = current_app._get_current_object()
    storage = app.extensions.get("kasi_storage")
    if storage is None:
        storage = build_storage_provider(app.config)
        app.extensions["kasi_storage"] = storage
    return storage
