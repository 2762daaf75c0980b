"""HTMX response helpers."""

import json

from fastapi import Response


def hx_trigger_value(*events: str) -> str:
    """Build an HX-Trigger header value.

    A single event is sent as its bare name, several as a JSON object
    mapping each name to true.
    """
    if len(events) == 1:
        return events[0]
    return json.dumps({name: True for name in events}, separators=(",", ":"))


def set_hx_trigger(response: Response, *events: str) -> None:
    if events:
        response.headers["HX-Trigger"] = hx_trigger_value(*events)
