"""
WSGI entry point (``backend.wsgi:app``) and development server.

Run locally with ``python -m backend.wsgi``, or ``python backend/wsgi.py``
once the package is installed (``pip install -e .``).
"""
import logging
import os

from backend.app import create_app

logging.basicConfig(level=os.getenv("LOG_LEVEL", "INFO"))

app = create_app()


if __name__ == "__main__":
    port = int(os.environ.get("PORT", 5000))
    app.run(host="0.0.0.0", port=port)
