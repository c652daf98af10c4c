"""Server-Sent Events helpers."""

from __future__ import annotations

import json
from typing import Any, Optional


def format_sse(data: Any, event: Optional[str] = None) -> str:
    """
    Format a payload as a single SSE message.

    Args:
        data: JSON-serializable payload.
        event: Optional event name.

    Returns:
        The wire text, terminated by a blank line.
    """
    payload = json.dumps(data, default=str)
    lines = []
    if event:
        lines.append(f'event: {event}')
    lines.append(f'data: {payload}')
    return '\n'.join(lines) + '\n\n'
