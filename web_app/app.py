import logging
import os
import sys
import traceback
from pathlib import Path
from typing import Callable, Dict

# --- 1. Load .env file from project root ---
# This MUST be done BEFORE importing any project modules that need GEMINI_API_KEY
from dotenv import load_dotenv

project_root = Path(__file__).resolve().parent.parent  # Get project root directory
dotenv_path = project_root / ".env"
if dotenv_path.exists():
    load_dotenv(dotenv_path=dotenv_path)
    print(f"INFO: app.py loaded .env file from: {dotenv_path}")
else:
    print(f"WARNING: app.py did not find .env file at: {dotenv_path}")

# --- 2. Add Project Root to sys.path so the top-level modules import when run as a script ---
if str(project_root) not in sys.path:
    sys.path.append(str(project_root))

# --- 3. Import Flask, SocketIO and the workflow modules ---
from flask import Flask, jsonify, render_template, request
from flask_socketio import SocketIO

from api_client_manager import gemini_key_configured
from errors import WorkflowError
from workflow import ResearchWorkflow, WorkflowServices

# Initialize Flask app
app = Flask(__name__)
app.config["SECRET_KEY"] = os.environ.get("FLASK_SECRET_KEY", "evidence-miner-secret-key")
socketio = SocketIO(app)

# One workflow per connected browser tab
# Key: user_socket_id, Value: that tab's ResearchWorkflow
USER_WORKFLOWS: Dict[str, ResearchWorkflow] = {}


def build_services() -> WorkflowServices:
    return WorkflowServices()


# ===== HELPERS =====


def emit_state(user_socket_id: str) -> None:
    workflow = USER_WORKFLOWS.get(user_socket_id)
    if workflow is not None:
        socketio.emit("state_update", workflow.state.to_client(), room=user_socket_id)


def _workflow_for(user_socket_id: str) -> ResearchWorkflow:
    workflow = USER_WORKFLOWS.get(user_socket_id)
    if workflow is None:

        def emit_progress(progress: int, message: str):
            socketio.emit(
                "progress_update",
                {"progress": progress, "message": message},
                room=user_socket_id,
            )

        workflow = ResearchWorkflow(services=build_services(), progress=emit_progress)
        USER_WORKFLOWS[user_socket_id] = workflow
    return workflow


def run_transition(user_socket_id: str, action: Callable, *args) -> None:
    """
    Background task body: run one workflow transition and tell the browser
    how it ended. A failed transition produces exactly one workflow_failed event.
    """
    try:
        action(*args)
    except WorkflowError as e:
        print(f"ERROR: {e.kind.value} failure for {user_socket_id}: {e.detail}")
        socketio.emit(
            "workflow_failed",
            {"kind": e.kind.value, "message": e.user_message},
            room=user_socket_id,
        )
    except Exception as e:
        print(f"ERROR: Unhandled exception in workflow transition: {traceback.format_exc()}")
        socketio.emit(
            "workflow_failed",
            {"kind": "unexpected", "message": f"An unexpected error occurred: {e}"},
            room=user_socket_id,
        )
    finally:
        emit_state(user_socket_id)


def _start(action: Callable, *args) -> None:
    socketio.start_background_task(run_transition, request.sid, action, *args)


# ==================== FLASK ROUTES ====================


@app.route("/")
def index():
    return render_template("index.html")


@app.route("/health")
def health_check():
    return jsonify({"status": "ok", "gemini_api_key_set": gemini_key_configured()})


# ==================== SOCKET EVENTS ====================


@socketio.on("connect")
def handle_connect():
    _workflow_for(request.sid)
    emit_state(request.sid)
    print(f"Client connected: {request.sid}")


@socketio.on("disconnect")
def handle_disconnect():
    USER_WORKFLOWS.pop(request.sid, None)
    print(f"Cleaned up session data for disconnected user: {request.sid}")


# Step 1 -> 2
@socketio.on("submit_topic")
def handle_submit_topic(data):
    topic = (data or {}).get("topic", "")
    _start(_workflow_for(request.sid).submit_topic, topic)


@socketio.on("toggle_keyword")
def handle_toggle_keyword(data):
    workflow = _workflow_for(request.sid)
    before = workflow.state
    if workflow.toggle_keyword((data or {}).get("id", ""), refresh=False) is before:
        return
    emit_state(request.sid)
    # live hit count; only the newest count is applied
    _start(workflow.refresh_hit_count)


@socketio.on("back")
def handle_back():
    _workflow_for(request.sid).back()
    emit_state(request.sid)


# Step 2 -> 3
@socketio.on("proceed")
def handle_proceed():
    _start(_workflow_for(request.sid).proceed)


@socketio.on("toggle_document")
def handle_toggle_document(data):
    _workflow_for(request.sid).toggle_document((data or {}).get("id", ""))
    emit_state(request.sid)


@socketio.on("toggle_all")
def handle_toggle_all():
    _workflow_for(request.sid).toggle_all()
    emit_state(request.sid)


# Step 3 -> 4
@socketio.on("synthesize")
def handle_synthesize():
    _start(_workflow_for(request.sid).synthesize)


@socketio.on("restart")
def handle_restart():
    _workflow_for(request.sid).restart()
    emit_state(request.sid)


@socketio.on("export_report")
def handle_export_report():
    export = _workflow_for(request.sid).export()
    if export is None:
        return
    filename, content = export
    socketio.emit("export_ready", {"filename": filename, "content": content}, room=request.sid)


if __name__ == "__main__":
    logging.basicConfig(level=logging.INFO, format="%(asctime)s %(levelname)s %(message)s")
    port = int(os.environ.get("PORT", 5000))  # Default to 5000 for local dev
    print("Starting Evidence Miner web application...")
    socketio.run(app, host="0.0.0.0", port=port, debug=True)
