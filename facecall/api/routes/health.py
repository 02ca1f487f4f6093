# facecall/api/routes/health.py

from fastapi import APIRouter, Request

router = APIRouter()

@router.get("/health")
async def health(request: Request):
    """
    Health check endpoint.

    Returns current system status, connection counts, and room counts.

    Returns:
        dict: Status, connection count, room count, participants in rooms
    """
    state = request.app.state
    return {
        "status": "healthy",
        "connections": len(state.connection_manager.connections),
        "rooms": state.room_registry.room_count,
        "participants_in_rooms": state.room_registry.participant_count,
    }
