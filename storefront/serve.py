"""ASGI entry point: uvicorn storefront.serve:app"""

from __future__ import annotations

from storefront.app import create_app

app = create_app()
