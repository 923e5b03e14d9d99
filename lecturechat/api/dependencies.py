from __future__ import annotations

from fastapi import Request

from lecturechat.services import Services


def get_services(request: Request) -> Services:
    """The per-app :class:`Services` container built at startup."""
    return request.app.state.services
