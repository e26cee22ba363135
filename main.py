from flask import Flask, jsonify, request
from flask_socketio import SocketIO, emit
import logging
import threading
import time

from config import Config
from liveness.breath_service import BreathTracker, parse_spectrum
from liveness.errors import CaptureUnavailableError, InvalidFrameError
from liveness.head_service import HeadRotationTracker, LivenessService, parse_landmarks

logger = logging.getLogger(__name__)

app = Flask(__name__)
app.config["SECRET_KEY"] = Config.SECRET_KEY

socketio = SocketIO(
    app,
    cors_allowed_origins="*",
    async_mode="threading"
)

live_service = LivenessService()

TRACKERS = {
    HeadRotationTracker.modality: HeadRotationTracker,
    BreathTracker.modality: BreathTracker,
}

# per-client sessions
SESSIONS = {}


def configure_logging(level=Config.LOG_LEVEL):
    logging.basicConfig(level=level, format=Config.LOGGING_FORMAT)


def now_ms():
    return time.monotonic() * 1000.0


def failed(error, **extra):
    payload = {"status": "FAILED", "error": error}
    payload.update(extra)
    return payload


def snapshot_for(tracker, payload):
    """Turn a liveness_frame payload into the tracker's feature snapshot."""
    if tracker.modality == BreathTracker.modality:
        return parse_spectrum(payload)

    if isinstance(payload, (bytes, bytearray)):
        return live_service.snapshot_from_jpeg(payload)
    if isinstance(payload, dict) and "landmarks" in payload:
        return parse_landmarks(payload["landmarks"])
    raise InvalidFrameError("head frame must be JPEG bytes or a landmarks object")


@app.get("/health")
def health():
    return jsonify({"ok": True, "port": Config.PORT, "sessions": len(SESSIONS)})


@socketio.on("connect")
def ws_connect(auth=None):
    emit("server_update", {
        "status": "IN_PROGRESS",
        "action": "START",
        "instruction": "Connected ✅ Click Start"
    })


@socketio.on("liveness_start")
def ws_start(data=None):
    sid = request.sid
    modality = data.get("modality", "head") if isinstance(data, dict) else "head"

    factory = TRACKERS.get(modality)
    if factory is None:
        emit("server_update", failed("unknown_modality", modality=modality))
        return

    tracker = factory()
    SESSIONS[sid] = {
        "tracker": tracker,
        "lock": threading.Lock(),
        "frames_seen": 0,
        "last_seen": time.time(),
        "passed": False,
    }
    logger.info("Session %s started (%s)", sid, modality)

    emit("server_update", tracker.view())


@socketio.on("liveness_frame")
def ws_frame(payload):
    sid = request.sid
    sess = SESSIONS.get(sid)
    if not sess:
        emit("server_update", failed("session_missing"))
        return

    now = time.time()
    if now - sess["last_seen"] > Config.SESSION_TTL_SECONDS:
        SESSIONS.pop(sid, None)
        logger.info("Session %s expired", sid)
        emit("server_update", failed("session_expired"))
        return
    sess["last_seen"] = now

    tracker = sess["tracker"]

    # ---------------- FEATURE EXTRACTION ----------------
    try:
        snapshot = snapshot_for(tracker, payload)
    except InvalidFrameError as e:
        logger.debug("Session %s frame %d rejected: %s", sid, sess["frames_seen"], e)
        snapshot = None
    except CaptureUnavailableError as e:
        SESSIONS.pop(sid, None)
        emit("server_update", failed("capture_unavailable", reason=str(e)))
        return

    # ---------------- TASK PROGRESSION ----------------
    with sess["lock"]:
        sess["frames_seen"] += 1
        status, view = tracker.update(snapshot, now_ms())

    if status == "PASSED" and not sess["passed"]:
        sess["passed"] = True
        logger.info("Session %s passed after %d frames", sid, sess["frames_seen"])

    emit("server_update", view)


@socketio.on("liveness_calibrate")
def ws_calibrate():
    sid = request.sid
    sess = SESSIONS.get(sid)
    if not sess:
        emit("server_update", failed("session_missing"))
        return

    tracker = sess["tracker"]
    if not hasattr(tracker, "start_calibration"):
        view = tracker.view()
        view["error"] = "calibration_unsupported"
        emit("server_update", view)
        return

    with sess["lock"]:
        run_id = tracker.start_calibration(now_ms())
        view = tracker.view()

    socketio.start_background_task(finish_calibration, sid, sess, run_id)
    emit("server_update", view)


def finish_calibration(sid, sess, run_id):
    socketio.sleep(Config.CALIBRATION_TIME_MS / 1000.0)

    # a restarted session under the same sid has its own run ids
    if SESSIONS.get(sid) is not sess:
        return

    tracker = sess["tracker"]
    with sess["lock"]:
        tracker.finish_calibration(run_id)
        view = tracker.view()
    socketio.emit("server_update", view, to=sid)


@socketio.on("capture_error")
def ws_capture_error(data=None):
    sid = request.sid
    reason = data.get("reason") if isinstance(data, dict) else data
    logger.warning("Session %s capture unavailable: %s", sid, reason)

    SESSIONS.pop(sid, None)
    emit("server_update", failed("capture_unavailable", reason=reason))


@socketio.on("liveness_finish")
def ws_finish():
    sid = request.sid
    sess = SESSIONS.pop(sid, None)
    if not sess:
        emit("server_update", failed("session_missing"))
        return

    status, meta = sess["tracker"].finalize()
    if status == "PASSED":
        emit("server_update", {"status": "PASSED", "instruction": "✅ Liveness PASSED", "meta": meta})
    else:
        emit("server_update", {"status": "FAILED", "instruction": "❌ Liveness FAILED", "meta": meta})


@socketio.on("disconnect")
def ws_disconnect(reason=None):
    if SESSIONS.pop(request.sid, None) is not None:
        logger.info("Session %s closed", request.sid)


if __name__ == "__main__":
    configure_logging()
    socketio.run(app, host=Config.HOST, port=Config.PORT, debug=False, allow_unsafe_werkzeug=True)
