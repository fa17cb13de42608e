from fastapi import HTTPException, Request

from gengateway.channels.registry import ensure_dynamic_channels_initialized
from gengateway.config import channel_env
from gengateway.service import GatewayService


def get_service(request: Request) -> GatewayService:
    """Return the shared :class:`GatewayService` from ``app.state``.

    Custom channels from the environment are registered on the first call.
    """
    service: GatewayService | None = getattr(request.app.state, "service", None)
    if service is None:
        raise HTTPException(status_code=503, detail="Gateway not initialised")
    ensure_dynamic_channels_initialized(channel_env())
    return service
