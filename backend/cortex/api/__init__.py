"""HTTP API: routers and FastAPI dependencies."""
