"""Current date/time tool."""

from datetime import UTC, datetime
from typing import Any
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from gravity_claw.logging import get_logger
from gravity_claw.tools.registry import Tool, ToolResult

log = get_logger(__name__)


class GetCurrentTimeTool(Tool):
    """Report the current date and time in an IANA timezone."""

    name = "get_current_time"
    description = (
        'Get the current date and time. Optionally specify an IANA timezone '
        '(e.g. "Asia/Kolkata", "America/New_York"). Defaults to UTC.'
    )
    parameters = {
        "type": "object",
        "properties": {
            "timezone": {
                "type": "string",
                "description": 'IANA timezone string (e.g. "Asia/Kolkata", "Europe/London"). Defaults to "UTC".',
            },
        },
        "required": [],
    }
    timeout_seconds = 5.0

    def __init__(self, clock: Any = None):
        self._clock = clock or (lambda: datetime.now(UTC))

    async def execute(self, timezone: str | None = None, **kwargs: Any) -> ToolResult:
        zone_name = (timezone or "").strip() or "UTC"
        try:
            zone = ZoneInfo(zone_name)
        except (ZoneInfoNotFoundError, ValueError):
            log.debug("Unknown timezone requested", timezone=zone_name)
            return ToolResult.fail(f'Invalid timezone: "{zone_name}"')

        now = self._clock()
        local = now.astimezone(zone)
        hour = local.hour % 12 or 12
        meridiem = "AM" if local.hour < 12 else "PM"
        formatted = (
            f"{local:%A}, {local:%B} {local.day}, {local.year} at "
            f"{hour}:{local:%M}:{local:%S} {meridiem} {local.tzname()}"
        )
        return ToolResult.ok(
            {
                "time": formatted,
                "timezone": zone_name,
                "iso": now.astimezone(UTC).isoformat().replace("+00:00", "Z"),
            }
        )
