from __future__ import annotations

import logging

from flask import Blueprint, jsonify, request, send_from_directory

from .. import config
from ..errors import InvalidArgument
from ..services import lessons, videos
from ..utils.request import _json_body, _query_int

logger = logging.getLogger("vidpipe.routes.videos")


def create_videos_blueprint(deps: dict | None = None):
    deps = deps or {}
    videos_service = deps.get("videos", videos)
    lessons_service = deps.get("lessons", lessons)

    bp = Blueprint("videos", __name__)

    @bp.route("/api/videos")
    def list_videos():
        result = videos_service.list_videos(
            status=request.args.get("status") or None,
            search=request.args.get("search") or None,
            lesson_id=_query_int("lesson_id"),
            page=_query_int("page", 1),
            page_size=_query_int("page_size", config.DEFAULT_PAGE_SIZE),
        )
        return jsonify(result)

    @bp.route("/api/videos/<int:video_id>")
    def get_video(video_id: int):
        return jsonify(videos_service.get_video(video_id))

    @bp.route("/api/videos/<int:video_id>", methods=["PATCH", "PUT"])
    def update_video(video_id: int):
        return jsonify(videos_service.update_video(video_id, _json_body()))

    @bp.route("/api/videos/<int:video_id>", methods=["DELETE"])
    def delete_video(video_id: int):
        videos_service.delete_video(video_id)
        return jsonify({"deleted": True, "id": video_id})

    @bp.route("/api/videos/bulk-delete", methods=["POST"])
    def bulk_delete_videos():
        ids = _json_body().get("ids")
        if not isinstance(ids, list):
            raise InvalidArgument("ids must be a list", field="ids")
        return jsonify(videos_service.bulk_delete_videos(ids))

    @bp.route("/api/videos/<int:video_id>/progress")
    def get_processing_progress(video_id: int):
        return jsonify(videos_service.get_processing_progress(video_id))

    @bp.route("/api/videos/<int:video_id>/urls")
    def get_video_urls(video_id: int):
        return jsonify(videos_service.get_video_urls(video_id))

    @bp.route("/api/videos/<int:video_id>/lessons")
    def get_lessons_for_video(video_id: int):
        return jsonify({"lessons": lessons_service.get_lessons_for_video(video_id)})

    @bp.route("/media/<path:rel_path>")
    def serve_media(rel_path: str):
        return send_from_directory(config.STORAGE_ROOT, rel_path, conditional=True)

    return bp
