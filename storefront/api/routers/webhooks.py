# storefront/api/routers/webhooks.py
from fastapi import APIRouter, Depends, HTTPException, Request
from starlette.concurrency import run_in_threadpool

from storefront.api.deps import get_coordinator
from storefront.domain.errors import CaptureInProgress, ProviderError, ProviderUnavailable, ValidationError
from storefront.services.order_coordinator import OrderCoordinator
from storefront.utils.logging import get_logger

logger = get_logger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


@router.post("/{provider}")
async def provider_webhook(
    provider: str,
    request: Request,
    coordinator: OrderCoordinator = Depends(get_coordinator),
):
    """
    Asynchroniczne potwierdzenie od dostawcy.
    409/503 -> dostawca ponowi wysylke, capture jest idempotentny.
    """
    body = await request.body()
    try:
        adapter = coordinator.adapter(provider)
        event = await run_in_threadpool(adapter.parse_webhook, body, request.headers)
    except ValidationError as e:
        raise HTTPException(status_code=404, detail=e.message)
    except ProviderError as e:
        logger.warning(f"Odrzucony webhook {provider}: {e.message}")
        raise HTTPException(status_code=400, detail=e.message)

    try:
        order = await run_in_threadpool(coordinator.handle_webhook, provider, event)
    except CaptureInProgress as e:
        raise HTTPException(status_code=409, detail=e.message)
    except ProviderUnavailable as e:
        raise HTTPException(status_code=503, detail=e.message)

    return {
        "received": True,
        "event": event.raw_type,
        "order_id": order.id if order else None,
        "status": order.status if order else None,
    }
