from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from fastapi.middleware.gzip import GZipMiddleware
from fastapi.exceptions import RequestValidationError
from starlette.exceptions import HTTPException as StarletteHTTPException
from schoolboard.core.config import settings
from schoolboard.core.exceptions import BackendError, PermissionDeniedError, UnknownEntityError
from schoolboard.core.logging import configure_logging
from schoolboard.core import backend as backend_module
from schoolboard.endpoints import lists, realtime
from schoolboard.realtime import websockets as websocket_events
from schoolboard.middleware.exceptions import (
    backend_error_handler,
    global_exception_handler,
    http_exception_handler,
    permission_denied_handler,
    unknown_entity_handler,
    validation_exception_handler,
)
from schoolboard.middleware.logging import RequestLoggingMiddleware
import socketio

configure_logging()

sio = socketio.AsyncServer(async_mode="asgi", cors_allowed_origins="*")

app = FastAPI(
    title=settings.PROJECT_NAME,
    version=settings.VERSION,
)

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.ALLOWED_ORIGINS,
    allow_credentials=True,
    allow_methods=["GET", "POST", "PATCH", "DELETE", "OPTIONS"],
    allow_headers=["*"],
)

app.add_middleware(GZipMiddleware, minimum_size=1000)
app.add_middleware(RequestLoggingMiddleware)

app.mount("/socket.io", socketio.ASGIApp(sio))

app.add_exception_handler(Exception, global_exception_handler)
app.add_exception_handler(StarletteHTTPException, http_exception_handler)
app.add_exception_handler(RequestValidationError, validation_exception_handler)
app.add_exception_handler(UnknownEntityError, unknown_entity_handler)
app.add_exception_handler(PermissionDeniedError, permission_denied_handler)
app.add_exception_handler(BackendError, backend_error_handler)

app.include_router(lists.router, prefix="/lists", tags=["Lists"])
app.include_router(realtime.router, prefix="/realtime", tags=["Realtime"])

@app.on_event("startup")
async def startup_event():
    websocket_events.register_websocket_events(sio)
    websocket_events.register_change_handlers()

@app.on_event("shutdown")
async def shutdown_event():
    data_backend = backend_module.data_backend
    if isinstance(data_backend, backend_module.RestBackend):
        await data_backend.aclose()

if __name__ == "__main__":
    import uvicorn
    uvicorn.run(app, host="0.0.0.0", port=8000)
