"""
FastAPI REST API Layer for tts-gateway.

    - routes.py: Synthesis, voices, quota, health and metrics endpoints
    - schemas.py: Request/response Pydantic models
    - dependencies.py: FastAPI dependency injection
"""
