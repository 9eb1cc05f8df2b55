from fastapi import Request

from app.core.wiring import Services


def get_services(request: Request) -> Services:
    """Services built by the lifespan hook; tests swap them via dependency_overrides."""
    return request.app.state.services
