"""Request dependencies: app state accessors and API key check."""

from __future__ import annotations

import secrets
from typing import TYPE_CHECKING, Annotated

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

if TYPE_CHECKING:
    from facebox.config import Settings
    from facebox.core.coordinator import PipelineCoordinator
    from facebox.core.governor import ResourceGovernor
    from facebox.ml.model_manager import OnnxModelManager

_bearer_scheme = HTTPBearer(auto_error=False)


def settings_from(request: Request) -> Settings:
    settings: Settings = request.app.state.settings
    return settings


def governor_from(request: Request) -> ResourceGovernor:
    governor: ResourceGovernor = request.app.state.governor
    return governor


def coordinator_from(request: Request) -> PipelineCoordinator:
    coordinator: PipelineCoordinator = request.app.state.coordinator
    return coordinator


def model_manager_from(request: Request) -> OnnxModelManager | None:
    manager: OnnxModelManager | None = request.app.state.model_manager
    return manager


async def require_api_key(
    request: Request,
    credentials: Annotated[HTTPAuthorizationCredentials | None, Depends(_bearer_scheme)],
) -> None:
    """Reject requests without the configured bearer token.

    No-op when FACEBOX_API_KEY is unset.
    """
    expected = settings_from(request).api_key
    if expected is None:
        return

    supplied = credentials.credentials if credentials is not None else ""
    if not secrets.compare_digest(supplied.encode(), expected.encode()):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid or missing API key",
            headers={"WWW-Authenticate": "Bearer"},
        )
