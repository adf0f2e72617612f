import threading
import time
from typing import Dict, List, Optional

from flask import Blueprint, abort, current_app, jsonify, request
from sqlalchemy.exc import SQLAlchemyError

from core.controller import SessionController
from core.media import MediaHandle, MediaSession
from core.voice import RelayRecognizer
from models import Interview, db
from services.code_service import execute_code
from services.errors import InterviewNotFound, InvalidTransition
from services.skill_service import save_resume


interview_bp = Blueprint("interview", __name__, url_prefix="/api")

INTERVIEW_TYPES = {"coding", "aptitude", "combined", "hr"}
DIFFICULTIES = {"adaptive", "easy", "medium", "hard"}
MEDIA_KINDS = {"video", "audio"}

# Live sessions for this process, keyed by interview id.
_controllers: Dict[str, SessionController] = {}
_last_seen: Dict[str, float] = {}
_registry_lock = threading.Lock()


def _forget(interview_id: str) -> Optional[SessionController]:
    with _registry_lock:
        _last_seen.pop(interview_id, None)
        return _controllers.pop(interview_id, None)


def _expire_idle_sessions() -> None:
    """Close sessions abandoned without a finish or an explicit close."""
    timeout = float(current_app.config.get("SESSION_IDLE_TIMEOUT_SECONDS", 3600))
    now = time.monotonic()
    expired: List[SessionController] = []
    with _registry_lock:
        for interview_id in [i for i, seen in _last_seen.items() if now - seen > timeout]:
            _last_seen.pop(interview_id)
            controller = _controllers.pop(interview_id, None)
            if controller is not None:
                expired.append(controller)
    for controller in expired:
        current_app.logger.info("Closing idle session for interview %s", controller.interview_id)
        controller.close()


def _get_controller(interview_id: str) -> SessionController:
    _expire_idle_sessions()
    with _registry_lock:
        controller = _controllers.get(interview_id)
        if controller is not None:
            _last_seen[interview_id] = time.monotonic()
    if controller is None:
        abort(404, description="No active session for this interview.")
    return controller


def _session_response(controller: SessionController, status: int = 200, **extra):
    body = controller.snapshot()
    body["notices"] = controller.drain_notices()
    body.update(extra)
    return jsonify(body), status


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        abort(400, description="Expected a JSON object body.")
    return data


@interview_bp.errorhandler(400)
@interview_bp.errorhandler(404)
@interview_bp.errorhandler(409)
def _json_error(error):
    return jsonify({"error": error.description}), error.code


@interview_bp.errorhandler(InvalidTransition)
def _invalid_transition(error):
    return jsonify({"error": str(error)}), 409


@interview_bp.route("/health", methods=["GET"])
def health():
    return jsonify({"status": "healthy", "active_sessions": len(_controllers)})


@interview_bp.route("/resumes", methods=["POST"])
def upload_resume():
    data = _json_body()
    user_id = str(data.get("user_id", "")).strip()
    raw_text = str(data.get("resume_text", "")).strip()
    if not user_id or not raw_text:
        abort(400, description="user_id and resume_text are required.")
    resume, skills = save_resume(user_id, data.get("file_name") or "resume.txt", raw_text)
    return jsonify({"resume_id": resume.id, "skills": skills}), 201


@interview_bp.route("/interviews", methods=["POST"])
def create_interview():
    data = _json_body()
    user_id = str(data.get("user_id", "")).strip()
    interview_type = str(data.get("interview_type", "")).strip()
    difficulty = str(data.get("difficulty") or "adaptive").strip()
    if not user_id:
        abort(400, description="user_id is required.")
    if interview_type not in INTERVIEW_TYPES:
        abort(400, description="Please select a valid interview type.")
    if difficulty not in DIFFICULTIES:
        abort(400, description="Please select a valid difficulty.")

    interview = Interview(
        user_id=user_id,
        interview_type=interview_type,
        difficulty=difficulty,
        language=data.get("language"),
        status="in_progress",
    )
    db.session.add(interview)
    db.session.commit()
    return jsonify({"id": interview.id, "status": interview.status}), 201


@interview_bp.route("/interviews/<string:interview_id>/session", methods=["POST"])
def start_session(interview_id: str):
    _expire_idle_sessions()
    with _registry_lock:
        controller = _controllers.get(interview_id)
        if controller is None:
            controller = SessionController(
                interview_id,
                recognizer=RelayRecognizer(),
                media=MediaSession(acquire=MediaHandle),
            )
            _controllers[interview_id] = controller
        _last_seen[interview_id] = time.monotonic()
    try:
        if not len(controller.questions):
            controller.initialize()
    except InterviewNotFound:
        _forget(interview_id)
        abort(404, description="Interview not found.")
    except InvalidTransition:
        # A concurrent request may have loaded the questions first.
        if len(controller.questions):
            return _session_response(controller)
        _forget(interview_id)
        raise
    return _session_response(controller)


@interview_bp.route("/interviews/<string:interview_id>/session", methods=["GET"])
def session_state(interview_id: str):
    return _session_response(_get_controller(interview_id))


@interview_bp.route("/interviews/<string:interview_id>/session", methods=["DELETE"])
def close_session(interview_id: str):
    controller = _forget(interview_id)
    if controller is not None:
        controller.close()
    return jsonify({"closed": controller is not None})


@interview_bp.route("/interviews/<string:interview_id>/answer", methods=["PUT"])
def edit_answer(interview_id: str):
    controller = _get_controller(interview_id)
    controller.update_answer(_json_body().get("answer"))
    return _session_response(controller)


@interview_bp.route("/interviews/<string:interview_id>/save", methods=["POST"])
def save_answer(interview_id: str):
    controller = _get_controller(interview_id)
    saved = controller.save_current()
    return _session_response(controller, saved=saved)


@interview_bp.route("/interviews/<string:interview_id>/next", methods=["POST"])
def next_question(interview_id: str):
    controller = _get_controller(interview_id)
    controller.next()
    return _session_response(controller)


@interview_bp.route("/interviews/<string:interview_id>/prev", methods=["POST"])
def prev_question(interview_id: str):
    controller = _get_controller(interview_id)
    controller.prev()
    return _session_response(controller)


@interview_bp.route("/interviews/<string:interview_id>/goto/<int:index>", methods=["POST"])
def goto_question(interview_id: str, index: int):
    controller = _get_controller(interview_id)
    controller.go_to(index)
    return _session_response(controller)


@interview_bp.route("/interviews/<string:interview_id>/run", methods=["POST"])
def run_code(interview_id: str):
    controller = _get_controller(interview_id)
    data = request.get_json(silent=True) or {}
    result = controller.run_code(data.get("language"))
    return _session_response(controller, run=result)


@interview_bp.route("/interviews/<string:interview_id>/voice/<string:action>", methods=["POST"])
def voice_action(interview_id: str, action: str):
    controller = _get_controller(interview_id)
    if action == "start":
        controller.start_voice()
    elif action == "stop":
        controller.stop_voice()
    elif action == "results":
        data = _json_body()
        results = [
            (str(item.get("transcript", "")), bool(item.get("is_final")))
            for item in data.get("results", [])
            if isinstance(item, dict)
        ]
        controller.voice_results(results, int(data.get("result_index", 0)))
    elif action == "end":
        controller.voice_ended()
    elif action == "error":
        controller.voice_error(str(_json_body().get("error", "")))
    else:
        abort(404, description=f"Unknown voice action: {action}")
    return _session_response(controller)


@interview_bp.route("/interviews/<string:interview_id>/media/<string:kind>", methods=["POST"])
def toggle_media(interview_id: str, kind: str):
    if kind not in MEDIA_KINDS:
        abort(400, description="Media kind must be video or audio.")
    controller = _get_controller(interview_id)
    controller.toggle_media(kind)
    return _session_response(controller)


@interview_bp.route("/interviews/<string:interview_id>/finish", methods=["POST"])
def finish_interview(interview_id: str):
    controller = _get_controller(interview_id)
    result = controller.finish()
    if result is None:
        return _session_response(controller, status=503 if controller.state.value == "error" else 200)
    _forget(interview_id)
    controller.close()
    return _session_response(controller)


@interview_bp.route("/interviews/<string:interview_id>", methods=["GET"])
def interview_result(interview_id: str):
    try:
        interview = db.session.get(Interview, interview_id)
    except SQLAlchemyError:
        db.session.rollback()
        current_app.logger.exception("Failed to read interview %s", interview_id)
        abort(404, description="Interview not found.")
    if interview is None:
        abort(404, description="Interview not found.")
    return jsonify(
        {
            "id": interview.id,
            "interview_type": interview.interview_type,
            "status": interview.status,
            "total_score": interview.total_score,
            "max_score": interview.max_score,
            "feedback": interview.feedback,
            "started_at": interview.started_at.isoformat() if interview.started_at else None,
            "completed_at": interview.completed_at.isoformat() if interview.completed_at else None,
            "questions": [
                {
                    "question_type": q.question_type,
                    "difficulty": q.difficulty,
                    "question_text": q.question_text,
                    "user_answer": q.user_answer,
                    "user_code": q.user_code,
                    "is_correct": q.is_correct,
                    "score": q.score,
                    "ai_feedback": q.ai_feedback,
                    "time_taken_seconds": q.time_taken_seconds,
                }
                for q in interview.questions
            ],
        }
    )


@interview_bp.route("/execute-code", methods=["POST"])
def execute_code_route():
    data = _json_body()
    if not data.get("code"):
        abort(400, description="Code is required")
    return jsonify(execute_code(data["code"], data.get("language") or "javascript"))
