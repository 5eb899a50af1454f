"""Server-Sent Events (SSE) utilities."""

import json
import logging
from collections.abc import AsyncGenerator
from typing import Any

from fastapi.responses import StreamingResponse

logger = logging.getLogger(__name__)


class SSEEvent:
    """SSE wire formatting."""

    @staticmethod
    def format(data: Any, event: str | None = None, id: str | None = None) -> str:
        """Format one SSE event.

        Args:
            data: Event payload; dicts and lists are sent as JSON
            event: Event type
            id: Event id

        Returns:
            The event block, terminated by a blank line
        """
        lines = []

        if id:
            lines.append(f"id: {id}")

        if event:
            lines.append(f"event: {event}")

        if isinstance(data, (dict, list)):
            data_str = json.dumps(data, ensure_ascii=False, default=str)
        else:
            data_str = str(data)

        # every line of a multi-line payload needs its own data: prefix
        for line in data_str.split("\n"):
            lines.append(f"data: {line}")

        lines.append("")
        return "\n".join(lines) + "\n"


async def stream_sse(event_generator: AsyncGenerator[dict, None]) -> StreamingResponse:
    """Wrap an event generator in a streaming response.

    Args:
        event_generator: yields ``{"data": ..., "event": str, "id": str}`` dicts

    Returns:
        StreamingResponse with SSE headers
    """

    async def event_stream():
        try:
            async for event in event_generator:
                yield SSEEvent.format(**event)

            yield SSEEvent.format(data={"done": True}, event="done")

        except Exception as e:
            logger.error(f"[SSE] Error in event stream: {e}", exc_info=True)
            yield SSEEvent.format(data={"error": str(e)}, event="error")

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",  # disable nginx buffering
        },
    )
