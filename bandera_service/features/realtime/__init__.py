"""Realtime feature for pushing flag changes over WebSocket.

Usage:
    # In your FastAPI app
    from bandera_service.features.realtime import router
    app.include_router(router)

    # Connect via WebSocket
    ws://localhost:8000/ws?user_id=...
"""

from bandera_service.features.realtime.router import router

__all__ = ["router"]
