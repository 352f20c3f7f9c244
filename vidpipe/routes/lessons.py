from __future__ import annotations

from flask import Blueprint, jsonify

from ..errors import InvalidArgument
from ..services import lessons
from ..utils.request import _json_body


def create_lessons_blueprint(deps: dict | None = None):
    deps = deps or {}
    lessons_service = deps.get("lessons", lessons)

    bp = Blueprint("lessons", __name__)

    @bp.route("/api/lessons", methods=["POST"])
    def create_lesson():
        lesson = lessons_service.create_lesson(_json_body().get("title"))
        return jsonify(lesson), 201

    @bp.route("/api/lessons/<int:lesson_id>")
    def get_lesson(lesson_id: int):
        return jsonify(lessons_service.get_lesson(lesson_id))

    @bp.route("/api/lessons/<int:lesson_id>/video", methods=["POST", "PUT"])
    def attach_video(lesson_id: int):
        video_id = _json_body().get("video_id")
        if video_id is None:
            raise InvalidArgument("video_id is required", field="video_id")
        return jsonify(lessons_service.attach_video_to_lesson(lesson_id, video_id))

    @bp.route("/api/lessons/<int:lesson_id>/video", methods=["DELETE"])
    def detach_video(lesson_id: int):
        return jsonify(lessons_service.detach_video_from_lesson(lesson_id))

    return bp
