from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request

from .. import config
from ..errors import InvalidArgument
from ..middleware.rate_limit import limit_chunk_uploads, limit_session_creation
from ..services import uploads
from ..utils.request import _json_body

logger = logging.getLogger("vidpipe.routes.uploads")


def create_uploads_blueprint(deps: dict | None = None):
    deps = deps or {}
    uploads_service = deps.get("uploads", uploads)

    bp = Blueprint("uploads", __name__)

    @bp.route("/api/uploads", methods=["POST"])
    @limit_session_creation
    def initialize_upload():
        payload = _json_body()
        session = uploads_service.initialize_upload(
            payload.get("filename"),
            payload.get("file_size"),
            payload.get("total_chunks"),
        )
        return jsonify(session), 201

    @bp.route("/api/uploads/<session_id>/chunks/<int:chunk_index>", methods=["PUT", "POST"])
    @limit_chunk_uploads
    def store_chunk(session_id: str, chunk_index: int):
        if request.content_length and request.content_length > config.MAX_CHUNK_BYTES:
            raise InvalidArgument("Chunk exceeds the maximum chunk size", field="chunk")

        upload = request.files.get("chunk")
        data = upload.read() if upload is not None else request.get_data(cache=False)
        if len(data) > config.MAX_CHUNK_BYTES:
            raise InvalidArgument("Chunk exceeds the maximum chunk size", field="chunk")

        uploads_service.store_chunk(session_id, chunk_index, data)
        return jsonify(uploads_service.get_upload_progress(session_id))

    @bp.route("/api/uploads/<session_id>")
    def get_upload(session_id: str):
        session = uploads_service.get_session(session_id)
        session["progress"] = uploads_service.get_upload_progress(session_id)
        return jsonify(session)

    @bp.route("/api/uploads/<session_id>/progress")
    def get_upload_progress(session_id: str):
        return jsonify(uploads_service.get_upload_progress(session_id))

    @bp.route("/api/uploads/<session_id>/complete", methods=["POST"])
    def complete_upload(session_id: str):
        placeholder = uploads_service.complete_upload(session_id)
        return jsonify(placeholder), 202

    @bp.route("/api/uploads/<session_id>", methods=["DELETE"])
    def cancel_upload(session_id: str):
        uploads_service.cancel_upload(session_id)
        return jsonify({"cancelled": True, "session_id": session_id})

    return bp
