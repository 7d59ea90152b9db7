"""
asgi.py -- ASGI entry point for CourseGate.

Run with:  uvicorn asgi:app --reload
           uvicorn asgi:app --host 0.0.0.0 --port 8000 --proxy-headers
"""

from api.main import app

__all__ = ["app"]
