from __future__ import annotations

from pathlib import Path

from flask import Blueprint, abort, current_app, send_file

bp = Blueprint("wellknown", __name__)

MERCHANT_ID_FILE = "apple-developer-merchantid-domain-association.txt"
MAX_AGE = 86400


def well_known_path(name: str) -> Path:
    return Path(str(current_app.config.get("WELL_KNOWN_DIR") or "")) / name


@bp.get(f"/{MERCHANT_ID_FILE}")
def merchant_id_association():
    path = well_known_path(MERCHANT_ID_FILE)
    if not path.is_file():
        abort(404)

    resp = send_file(path, mimetype="text/plain", max_age=MAX_AGE, conditional=True)
    resp.cache_control.public = True
    return resp
