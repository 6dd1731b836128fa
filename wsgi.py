import os

# Force production env if nothing else is set
os.environ.setdefault("APP_ENV", "production")

from paywidget import create_app  # noqa: E402

app = create_app()
