"""Application entry point.

Usage:
    # Development with auto-reload
    uvicorn marketguard.main:app --reload

    # Production
    uvicorn marketguard.main:app --host 0.0.0.0 --port 8000 --workers 4
"""

from marketguard.factory import create_app


app = create_app()

if __name__ == "__main__":
    import uvicorn

    from marketguard.core.config import get_settings

    settings = get_settings()

    uvicorn.run(
        "marketguard.main:app",
        host=settings.server.host,
        port=settings.server.port,
        reload=settings.is_development,
        log_level=settings.logging.level.lower(),
    )
