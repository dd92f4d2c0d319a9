"""Core orchestration primitives (operation contexts).

Kept free of FastAPI concerns so it can be reused by API routes, CLI, and tests.
"""
