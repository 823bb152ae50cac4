"""
Ticketed-Event Platform API - Main Application.

FastAPI application with CORS limited to the configured frontend origins.
"""

from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from api import __version__
from config import cors_origins

# Create FastAPI application
app = FastAPI(
    title="Ticketed-Event Platform API",
    description="REST API for buying, verifying, transferring and scanning event tickets",
    version=__version__,
    docs_url="/docs",
    redoc_url="/redoc",
)

# Only the ticketing frontend may call the API from a browser
app.add_middleware(
    CORSMiddleware,
    allow_origins=cors_origins(),
    allow_credentials=True,
    allow_methods=["GET", "POST", "PUT"],
    allow_headers=["Content-Type", "X-User-Id", "X-User-Role"],
)


@app.get("/health", tags=["Health"])
def health_check():
    """
    Health check endpoint.

    Returns the API status and version.
    """
    return {
        "status": "healthy",
        "version": __version__,
        "service": "ticketing-platform-api"
    }


@app.get("/", tags=["Root"])
def root():
    return {
        "message": "Ticketed-Event Platform API",
        "version": __version__,
        "docs": "/docs",
        "health": "/health"
    }


# Import and include routers
from api.routers import admin, events, payments, tickets

app.include_router(events.router, prefix="/api/v1", tags=["Events"])
app.include_router(payments.router, prefix="/api/v1", tags=["Payments"])
app.include_router(tickets.router, prefix="/api/v1", tags=["Tickets"])
app.include_router(admin.router, prefix="/api/v1", tags=["Admin"])
