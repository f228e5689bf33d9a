"""Server-Sent Events stream of run progress."""

import json
import logging
from typing import AsyncIterator, Optional

from fastapi import APIRouter, Depends, Query
from sse_starlette.sse import EventSourceResponse

from ...events import EventBroadcaster
from ..dependencies import get_broadcaster

logger = logging.getLogger(__name__)

router = APIRouter()


async def stream_events(
    broadcaster: EventBroadcaster,
    execution_id: Optional[str] = None,
    replay: bool = False,
) -> AsyncIterator[dict]:
    """Yield SSE messages until the client goes away."""
    subscription = broadcaster.subscribe(replay_history=replay)
    try:
        async for event in subscription:
            if execution_id and event.execution_id != execution_id:
                continue
            yield {
                "event": event.kind.value,
                "id": f"{event.execution_id}:{event.sequence}",
                "data": json.dumps(event.to_dict(), default=str),
            }
    finally:
        subscription.close()
        if subscription.dropped:
            logger.warning("Event subscriber fell behind; %d events dropped", subscription.dropped)


@router.get(
    "/v1/events",
    summary="Stream run events",
    description="Server-Sent Events stream of thought, action, observation, finish and error events.",
)
async def events(
    execution_id: Optional[str] = Query(default=None, description="Only stream events of this run"),
    replay: bool = Query(default=False, description="Start with the recent event history"),
    broadcaster: EventBroadcaster = Depends(get_broadcaster),
) -> EventSourceResponse:
    return EventSourceResponse(stream_events(broadcaster, execution_id=execution_id, replay=replay))
