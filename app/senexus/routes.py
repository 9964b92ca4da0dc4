from flask import Blueprint, abort, current_app, send_file

from app.senexus.storage import LocalStorage, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast liveness check for the container orchestrator. No DB access.
    """
    return "ok", 200


@bp.get("/files/<path:key>")
def uploaded_file(key: str):
    """Serves files written by the local storage backend (development)."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage) or not storage.exists(key):
        abort(404)
    return send_file(storage.open(key), download_name=key.rsplit("/", 1)[-1])
