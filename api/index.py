# api/index.py
"""
Vercel Serverless Function adapter.

Vercel's Python runtime looks for a variable named `app` (ASGI) or `handler` (WSGI).
FastAPI is ASGI, so we just re-export it as `app`.
"""
import sys
import os

# Ensure project root is on the Python path so `tannery.*` imports resolve.
ROOT = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

os.environ.setdefault("PROMETHEUS_ENABLED", "false")

# The function is frozen as soon as the response is sent, so background
# emails and notifications would never finish; run them inline instead.
os.environ.setdefault("SIDE_EFFECTS_EAGER", "true")

# Use /tmp for SQLite on Vercel (filesystem is read-only except /tmp)
if not os.environ.get("DATABASE_URL"):
    os.environ["DATABASE_URL"] = "sqlite:////tmp/tannery.db"

# Load .env if present (Vercel injects env vars natively, but this helps local testing)
from dotenv import load_dotenv
load_dotenv(os.path.join(ROOT, ".env"), override=True)

from tannery.app import app  # noqa: F401,E402
