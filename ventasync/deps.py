from fastapi import Request

from ventasync.service import SyncService


def get_service(request: Request) -> SyncService:
    return request.app.state.sync


def get_hub(request: Request):
    """StreamHub created at startup (see main.create_app)."""
    return request.app.state.hub
