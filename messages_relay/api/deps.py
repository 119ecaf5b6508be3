"""
API Dependency Injection Module

The backend router is created once in create_app() and kept on application
state; routes receive it through this dependency.
"""

from typing import Annotated

from fastapi import Depends, Request

from messages_relay.services.router import BackendRouter


def get_backend_router(request: Request) -> BackendRouter:
    return request.app.state.router


BackendRouterDep = Annotated[BackendRouter, Depends(get_backend_router)]
