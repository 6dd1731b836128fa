# paywidget/extensions.py
from __future__ import annotations

from flask_cors import CORS

# ─────────────────────────────────────────────────────────────
# Core singletons
# ─────────────────────────────────────────────────────────────
cors = CORS()
