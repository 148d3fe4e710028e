"""
FastAPI application entry point for the filmsync record store.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from filmsync.api.config import get_api_host, get_api_port, get_log_level
from filmsync.api.routers import users, film_statuses, preferences, sync, system

app = FastAPI(
    title="filmsync Record Store API",
    description="Per-user film statuses and preferences with last-write-wins sync",
    version="1.0.0",
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(users.router)
app.include_router(film_statuses.router)
app.include_router(preferences.router)
app.include_router(sync.router)
app.include_router(system.router)


@app.get("/")
def root():
    """Root endpoint."""
    return {
        "message": "filmsync Record Store API",
        "docs": "/docs",
        "health": "/api/health",
    }


if __name__ == "__main__":
    import uvicorn

    from filmsync.utils.logging_config import configure_api_logging

    configure_api_logging(debug=get_log_level() == "DEBUG")
    uvicorn.run(app, host=get_api_host(), port=get_api_port())
