"""SSE (Server-Sent Events) utilities."""

import json
from typing import Any, AsyncGenerator

from sse_starlette.sse import EventSourceResponse


async def sse_response(
    generator: AsyncGenerator[tuple[str, dict[str, Any]], None]
) -> EventSourceResponse:
    """Create an SSE response from an async generator.

    The generator should yield tuples of (event_type, data_dict).
    """

    async def event_generator():
        async for event_type, data in generator:
            yield {"event": event_type, "data": json.dumps(data, default=str)}

    return EventSourceResponse(event_generator(), ping=15)
