"""GET /v1/models: every model served by a registered channel."""

from fastapi import APIRouter, Depends
from fastapi.responses import JSONResponse

from gengateway.api.deps import get_service
from gengateway.routing import public_model_id
from gengateway.service import GatewayService

router = APIRouter(prefix="/v1", tags=["models"])


@router.get("/models")
async def list_models(service: GatewayService = Depends(get_service)) -> JSONResponse:
    """List image and text models in OpenAI format.

    Ids are given in routable form (``gitee/qwen-image``,
    ``custom/<channel>/<model>``...) so they can be sent back as ``model``.
    Only capabilities a channel actually has are listed.
    """
    data = []
    for channel in service.registry:
        kinds = (
            ("image", channel.config.image_models, channel.image is not None),
            ("text", channel.config.text_models, channel.text is not None),
        )
        for kind, models, enabled in kinds:
            if not enabled:
                continue
            for model in models:
                data.append(
                    {
                        "id": public_model_id(channel.id, model.id, text=kind == "text"),
                        "object": "model",
                        "created": 0,
                        "owned_by": channel.id,
                        "name": model.name,
                        "type": kind,
                    }
                )
    return JSONResponse(content={"object": "list", "data": data})
