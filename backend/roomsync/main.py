import logging
from contextlib import asynccontextmanager
from typing import Optional

import socketio
from fastapi import FastAPI, File, HTTPException, UploadFile
from fastapi.middleware.cors import CORSMiddleware
from fastapi.staticfiles import StaticFiles
from pydantic import BaseModel

from roomsync.config import Settings
from roomsync.services.authority import AuthorityGate
from roomsync.services.room import RoomRegistry
from roomsync.services.session import SessionManager
from roomsync.services.sync import RoomSync
from roomsync.services.uploads import UploadError, UploadStore, UploadTooLarge

logger = logging.getLogger(__name__)


class CORSStaticFiles(StaticFiles):
    def __init__(self, *args, origin: str = "*", **kwargs):
        super().__init__(*args, **kwargs)
        self.origin = origin

    async def get_response(self, path: str, scope):
        response = await super().get_response(path, scope)
        response.headers["Access-Control-Allow-Origin"] = self.origin
        return response


class OwnerAuthRequest(BaseModel):
    password: str = ""
    room_id: Optional[str] = None


def register_events(sio: socketio.AsyncServer, sync: RoomSync):
    @sio.event
    async def connect(sid, environ):
        logger.info(f"Client {sid} connected")

    @sio.event
    async def disconnect(sid, *args):
        try:
            logger.info(f"Client {sid} disconnected")
            await sync.leave(sid)
        except Exception as e:
            logger.error(f"Error in disconnect: {e}", exc_info=True)

    @sio.event
    async def join_room(sid, data):
        try:
            return await sync.join(sid, data)
        except Exception as e:
            logger.error(f"Error in join_room: {e}", exc_info=True)
            await sio.emit("error", {"message": "Internal server error during join"}, to=sid)

    @sio.event
    async def request_state(sid, data):
        try:
            await sync.request_state(sid, data)
        except Exception as e:
            logger.error(f"Error in request_state: {e}", exc_info=True)

    @sio.event
    async def play(sid, data):
        try:
            await sync.play(sid, data)
        except Exception as e:
            logger.error(f"Error in play: {e}", exc_info=True)

    @sio.event
    async def pause(sid, data):
        try:
            await sync.pause(sid, data)
        except Exception as e:
            logger.error(f"Error in pause: {e}", exc_info=True)

    @sio.event
    async def adjust_time(sid, data):
        try:
            await sync.adjust_time(sid, data)
        except Exception as e:
            logger.error(f"Error in adjust_time: {e}", exc_info=True)

    @sio.event
    async def set_command_authority(sid, data):
        try:
            await sync.set_command_authority(sid, data)
        except Exception as e:
            logger.error(f"Error in set_command_authority: {e}", exc_info=True)


def create_app(settings: Optional[Settings] = None) -> FastAPI:
    settings = settings or Settings()
    origins = settings.allowed_origins

    sio = socketio.AsyncServer(async_mode='asgi', cors_allowed_origins=origins if origins != ["*"] else "*")
    uploads = UploadStore(settings.upload_dir, settings.upload_url_prefix, settings.max_upload_bytes)
    authority = AuthorityGate(settings.owner_secret, open_control=settings.open_control)
    sync = RoomSync(
        sio,
        RoomRegistry(public_control_default=settings.public_control_default),
        SessionManager(),
        authority,
        uploads=uploads,
        sync_interval=settings.sync_interval,
    )
    register_events(sio, sync)

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        yield
        await sync.shutdown()

    app = FastAPI(title="roomsync", lifespan=lifespan)
    app.state.settings = settings
    app.state.sio = sio
    app.state.sync = sync
    app.state.uploads = uploads

    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    app.mount(uploads.url_prefix, CORSStaticFiles(directory=uploads.directory, origin=origins[0]), name="uploads")

    @app.post("/upload")
    async def upload_endpoint(song: UploadFile = File(...)):
        # Never buffer more than one byte past the limit
        data = await song.read(uploads.max_bytes + 1)
        try:
            stored = await uploads.save(song.filename or "", data)
        except UploadTooLarge as e:
            raise HTTPException(status_code=413, detail=str(e))
        except UploadError as e:
            raise HTTPException(status_code=400, detail=str(e))
        except OSError as e:
            logger.error(f"Upload storage error: {e}", exc_info=True)
            raise HTTPException(status_code=500, detail="Could not store the uploaded file")
        return {"url": stored.url, "name": stored.original_name}

    @app.post("/owner-auth")
    async def owner_auth(body: OwnerAuthRequest):
        success = authority.authenticate(body.password)
        if not success:
            logger.warning(f"Failed owner login for room {body.room_id}")
        return {"success": success}

    @app.get("/api/room/{room_id}")
    async def check_room(room_id: str):
        room = sync.registry.get(room_id)
        if not room:
            raise HTTPException(status_code=404, detail="Room not found")
        return {
            "room_id": room.id,
            "roster": room.roster(),
            "public_control": room.public_control,
            "state": room.state.value,
        }

    return app


def create_socket_app(settings: Optional[Settings] = None) -> socketio.ASGIApp:
    app = create_app(settings)
    return socketio.ASGIApp(app.state.sio, app)


def run():
    import uvicorn

    settings = Settings()
    logging.basicConfig(level=settings.log_level)
    uvicorn.run(create_socket_app(settings), host=settings.host, port=settings.port)


if __name__ == "__main__":
    run()
