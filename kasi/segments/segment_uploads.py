from __future__ import annotations

import os

from flask import Blueprint, abort, send_from_directory
from werkzeug.utils import secure_filename

from kasi.integrations.storage.base import BUCKETS
from kasi.integrations.storage.factory import get_storage
from kasi.integrations.storage.local_provider import LocalStorageProvider

uploads_bp = Blueprint("uploads_bp", __name__, url_prefix="/uploads")


@uploads_bp.get("/<bucket>/<key>")
def serve_upload(bucket: str, key: str):
    storage = get_storage()
    if not isinstance(storage, LocalStorageProvider) or bucket not in BUCKETS:
        abort(404)
    if secure_filename(key) != key:
        abort(404)
    path = storage.path_for(bucket, key)
    return send_from_directory(os.path.dirname(path), os.path.basename(path), max_age=3600)
