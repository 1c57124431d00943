"""
app.py - ASGI application object imported by uvicorn.

Service wiring and the startup sequence live in courtslots/main.py.

Usage (via launcher):
    python main.py

Usage (direct uvicorn):
    uvicorn app:app --reload
"""

from __future__ import annotations

from courtslots.main import create_app


# Module-level app object for uvicorn
app = create_app()
