"""Inbound webhook API route.

The raw body is verified against the `X-Sync-Signature` HMAC before it is
parsed, so the route reads the request body itself.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from starlette.concurrency import run_in_threadpool

from entitysync.core.errors import AuthenticationError, ValidationError
from entitysync.server.api.deps import get_engine
from entitysync.server.schemas import WebhookResponse
from entitysync.sync.engine import SyncEngine

router = APIRouter(prefix="/sync/webhooks", tags=["webhooks"])


@router.post("/{entity_type}", response_model=WebhookResponse)
async def receive_webhook(
    entity_type: str,
    request: Request,
    x_sync_signature: str | None = Header(default=None),
    x_sync_delivery: str | None = Header(default=None),
    engine: SyncEngine = Depends(get_engine),
) -> WebhookResponse:
    """Verify, normalize and enqueue a remote change notification.

    Returns:
        200 with the queue item id; 401 on a bad signature; 400 on a
        malformed body. Nothing is enqueued unless the response is 200.
    """
    body = await request.body()
    try:
        receipt = await run_in_threadpool(
            engine.receive_webhook, entity_type, body, x_sync_signature, x_sync_delivery
        )
    except AuthenticationError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=str(e),
        ) from e
    except ValidationError as e:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(e),
        ) from e

    if receipt.item is None:
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Delivery {receipt.intent_id} was not enqueued",
        )
    return WebhookResponse(
        status=receipt.state.value,
        item_id=receipt.item.id,
        intent_id=receipt.intent_id,
    )
