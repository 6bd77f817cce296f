"""
Guardian Angel - API Package
============================

FastAPI routers. The application factory lives in guardian.api.main.
"""
