from flask import Blueprint, abort, current_app, jsonify, request, send_file

from app.academy.storage import LocalStorage, StorageError, storage_from_config

bp = Blueprint("routes", __name__)


@bp.get("/health")
def health():
    """Health check endpoint. Returns JSON."""
    return {"ok": True}


@bp.get("/healthz")
def healthz():
    """
    Fast health check for load balancers. No DB access, minimal overhead.
    """
    return "ok", 200


@bp.get("/media/<path:key>")
def media(key: str):
    """Serve objects written by the local storage backend."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        abort(404)
    try:
        fh = storage.open(key)
    except StorageError:
        abort(404)
    return send_file(fh, download_name=key.rsplit("/", 1)[-1], conditional=True)


@bp.put("/api/storage/upload/<token>")
def storage_upload(token: str):
    """Sink for signed local upload URLs; the S3 backend uploads straight to the bucket."""
    storage = storage_from_config(current_app.config)
    if not isinstance(storage, LocalStorage):
        abort(404)
    try:
        claims = storage.verify_upload_token(token)
        storage.put_bytes(claims["key"], request.get_data(), content_type=claims.get("content_type"))
    except StorageError as e:
        return jsonify({"error": str(e)}), 400
    current_app.logger.info("Local upload stored (key=%s)", claims["key"])
    return jsonify({"path": claims["key"]})
