from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

from flask import Blueprint, current_app, jsonify, request

from paywidget.errors import StatusCheckError

from .pages import status_client
from .wellknown import MERCHANT_ID_FILE, well_known_path

bp = Blueprint("api", __name__)


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat(timespec="milliseconds").replace("+00:00", "Z")


@bp.get("/payment/check-status")
def check_status():
    """Server-side proxy to the backend status lookup."""
    checkout_id = (request.args.get("checkoutId") or "").strip()
    if not checkout_id:
        return jsonify({"error": "Checkout ID is required"}), 400

    try:
        data = status_client().lookup(checkout_id)
    except StatusCheckError as e:
        current_app.logger.error("Error checking payment status for %s: %s", checkout_id, e)
        return jsonify({"error": "Failed to check payment status", "details": str(e)}), 500

    return jsonify(data)


@bp.get("/test")
def api_test():
    current_app.logger.info("Test endpoint called")
    return jsonify({"message": "Test API is working!", "timestamp": _now_iso()})


@bp.get("/csp-test")
def api_csp_test():
    return jsonify({"message": "CSP test endpoint"})


@bp.get("/apple-pay-domain-test")
def apple_pay_domain_test():
    path: Path = well_known_path(MERCHANT_ID_FILE)
    if not path.is_file():
        return jsonify({"error": "Apple Pay domain association file not found", "path": str(path)}), 404

    try:
        content = path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        return jsonify({"error": "Failed to read Apple Pay domain association file", "details": str(e)}), 500

    return jsonify(
        {
            "success": True,
            "message": "Apple Pay domain association file is properly configured",
            "filePath": f"/.well-known/{MERCHANT_ID_FILE}",
            "contentLength": len(content),
            "content": content,
            "headers": {
                "Content-Type": "text/plain",
                "Cache-Control": "public, max-age=86400",
            },
        }
    )
