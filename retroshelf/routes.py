from __future__ import annotations
from pathlib import Path
from flask import Blueprint, current_app, jsonify, abort

from .launch import Launcher, preview_command_line
from .library import Library, launch_options
from .settings import load_settings

bp = Blueprint("retroshelf", __name__)

def _ctx():
    ext = current_app.extensions
    return ext["retroshelf.library"], ext["retroshelf.launcher"], Path(current_app.config["SETTINGS_FILE"])

def _item_or_404(library: Library, item_id: str):
    item, chain = library.find_item(item_id)
    if item is None:
        abort(404)
    return item, chain

def _item_json(item, launcher: Launcher) -> dict:
    return {
        "id": item.id,
        "title": item.title,
        "media_type": item.media_type.value,
        "play_count": item.play_count,
        "total_play_time": item.total_play_time,
        "last_played": item.last_played.isoformat() if item.last_played else None,
        "running": launcher.is_running(item.id),
    }

@bp.get("/api/items")
def items():
    library, launcher, _ = _ctx()
    return jsonify([_item_json(i, launcher) for i in library.iter_items()])

@bp.get("/api/items/<item_id>/preview")
def preview(item_id):
    library, launcher, settings_file = _ctx()
    item, chain = _item_or_404(library, item_id)
    opts = launch_options(item, chain, load_settings(settings_file))
    return jsonify({"id": item.id, "command": preview_command_line(item, launcher.paths, **opts)})

@bp.post("/launch/<item_id>")
def launch(item_id):
    library, launcher, settings_file = _ctx()
    item, chain = _item_or_404(library, item_id)
    opts = launch_options(item, chain, load_settings(settings_file))
    attempt = launcher.launch_in_background(item, **opts)
    if attempt is None:
        return jsonify({"ok": False, "error": "Already running."}), 409
    return jsonify({"ok": True, "message": "Launch requested."}), 202

@bp.post("/launch/<item_id>/cancel")
def cancel(item_id):
    _, launcher, _ = _ctx()
    if not launcher.cancel(item_id):
        return jsonify({"ok": False, "error": "Not running."}), 404
    return jsonify({"ok": True})

@bp.get("/api/running")
def running():
    _, launcher, _ = _ctx()
    return jsonify([
        {"id": a.item.id, "title": a.item.title,
         "command": a.plan.command_line if a.plan else None}
        for a in launcher.active()
    ])

@bp.get("/favicon.ico")
def favicon():
    return ("", 204)
