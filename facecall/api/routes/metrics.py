# facecall/api/routes/metrics.py
from fastapi import APIRouter, Request
from datetime import datetime, timezone

router = APIRouter()

@router.get("/metrics")
async def get_metrics(request: Request):
    """
    Relay traffic and occupancy metrics.

    Returns:
        dict: Message statistics (handled, relayed, dropped, rate),
              capacity (connections, rooms, per-room member counts)
              and uptime.

    Example Response:
        {
            "messages_handled": 42,
            "signals_relayed": 12,
            "emotions_relayed": 25,
            "deliveries_dropped": 1,
            "messages_per_second": 0.35,
            "uptime_hours": 0.03,
            "concurrent_connections": 2,
            "active_rooms": 1,
            "rooms": {"abcde": 2}
        }
    """
    state = request.app.state
    stats = state.relay.stats

    uptime_seconds = (datetime.now(timezone.utc) - state.started_at).total_seconds()
    if uptime_seconds > 0:
        messages_per_second = stats.messages_handled / uptime_seconds
    else:
        messages_per_second = 0

    return {
        # Statistics
        "messages_handled": stats.messages_handled,
        "signals_relayed": stats.signals_relayed,
        "emotions_relayed": stats.emotions_relayed,
        "deliveries_dropped": stats.deliveries_dropped,
        "messages_per_second": round(messages_per_second, 2),
        "uptime_hours": round(uptime_seconds / 3600, 2) if uptime_seconds > 0 else 0,

        # Capacity
        "concurrent_connections": len(state.connection_manager.connections),
        "active_rooms": state.room_registry.room_count,
        "rooms": state.room_registry.rooms_info(),
    }
