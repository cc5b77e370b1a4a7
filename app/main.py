import logging
from contextlib import asynccontextmanager
from fastapi import FastAPI, Request, WebSocket, WebSocketDisconnect
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from app.config import settings
from app.database import init_db
from app.core.exceptions import ServiceError
from app.core.logging import setup_logging
from app.core.redis import redis_client
from app.core.dependencies import user_id_from_token
from app.api import api_router
from app.websocket import manager, PresenceBridge

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan events."""
    # Startup
    setup_logging(settings.log_level)
    logger.info("Starting up %s (%s)", settings.app_name, settings.environment)
    await redis_client.connect()
    await init_db()
    logger.info("Database and Redis initialized")

    yield

    # Shutdown
    logger.info("Shutting down...")
    await manager.stop()
    await redis_client.disconnect()


app = FastAPI(
    title=settings.app_name,
    description="Social graph, visibility and private messaging core built with FastAPI, PostgreSQL, and Redis",
    version="1.0.0",
    lifespan=lifespan,
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],  # Configure appropriately for production
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(ServiceError)
async def service_error_handler(request: Request, exc: ServiceError):
    if exc.status_code >= 500:
        logger.warning("%s %s failed: %s", request.method, request.url.path, exc.reason)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# Include API routes
app.include_router(api_router)


@app.get("/health")
async def health_check():
    """Health check endpoint."""
    return {
        "status": "healthy",
        "websocket_connections": manager.connection_count,
        "websocket_users": manager.user_count,
    }


@app.websocket("/ws")
async def websocket_endpoint(websocket: WebSocket, token: str = None):
    """WebSocket endpoint for conversation events and typing presence.

    Connect with: ws://localhost:8000/ws?token=<jwt_token>
    """
    if not token:
        await websocket.close(code=4001, reason="Missing token")
        return

    user_id = user_id_from_token(token)
    if user_id is None:
        await websocket.close(code=4001, reason="Invalid token")
        return

    await manager.connect(websocket, user_id)
    bridge = PresenceBridge(websocket, user_id)

    try:
        # Send connection confirmation
        await websocket.send_json({
            "type": "connected",
            "message": "Successfully connected to realtime events"
        })

        while True:
            data = await websocket.receive_json()
            reply = await bridge.handle(data)
            if reply is not None:
                await websocket.send_json(reply)

    except WebSocketDisconnect:
        pass
    except Exception as e:
        logger.error("WebSocket error for user %s: %s", user_id, e)
    finally:
        await bridge.close()
        manager.disconnect(websocket, user_id)


if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
