"""Service dependencies for FastAPI dependency injection."""

from typing import Annotated

from fastapi import Depends, Request

from campaign_dialer.services.runtime import DialerRuntime


def get_runtime(request: Request) -> DialerRuntime:
    """
    Get the dialer runtime.

    Built once in ``create_app`` and kept on ``app.state`` so every request
    sees the same stores, scheduler and dispatcher.
    """
    return request.app.state.runtime


Runtime = Annotated[DialerRuntime, Depends(get_runtime)]
