"""
MODULE OVERVIEW:
The narrow HTTP bridge between the kiosk page and the shell.

WHAT IS HAPPENING HERE:
The page never gets direct access to the shell process. It can only answer
heartbeats, ask for a reload or relaunch, and read/write the kiosk settings,
all over loopback. When a bridge token is configured every call must carry it
in `X-Kiosk-Token`.
"""
from typing import Iterable

from fastapi import BackgroundTasks, Depends, FastAPI, Header, HTTPException, Request
from pydantic import BaseModel

from bakehouse_kiosk.shared.errors import SettingsError
from bakehouse_kiosk.shell.lifecycle import AppLifecycle
from bakehouse_kiosk.shell.settings_manager import SettingsManager
from bakehouse_kiosk.shell.watchdog import KioskWatchdog

LOOPBACK_HOSTS = ("127.0.0.1", "::1", "localhost")


class SettingsUpdate(BaseModel):
    app_url: str | None = None


def create_bridge_app(
    watchdog: KioskWatchdog,
    settings_manager: SettingsManager,
    lifecycle: AppLifecycle,
    token: str | None = None,
    allowed_hosts: Iterable[str] = LOOPBACK_HOSTS,
) -> FastAPI:
    allowed = set(allowed_hosts)

    async def guard(request: Request, x_kiosk_token: str | None = Header(None)):
        host = request.client.host if request.client else None
        if host not in allowed:
            raise HTTPException(status_code=403, detail="Shell bridge is only reachable from this machine")
        if token and x_kiosk_token != token:
            raise HTTPException(status_code=401, detail="Invalid kiosk token")

    app = FastAPI(title="Bakehouse Kiosk Shell Bridge", dependencies=[Depends(guard)])

    @app.get("/shell/ping")
    async def ping():
        return {"seq": watchdog.primary.ping_seq}

    @app.post("/shell/pong")
    async def pong():
        watchdog.acknowledge_heartbeat()
        return {"success": True}

    @app.post("/shell/reload")
    async def reload():
        started = watchdog.trigger_recovery("bridge-request")
        return {"success": True, "started": started}

    @app.post("/shell/relaunch", status_code=202)
    async def relaunch(background: BackgroundTasks):
        # Respond first; the process image is replaced right after.
        background.add_task(watchdog.relaunch, "bridge-request")
        return {"success": True}

    @app.get("/shell/settings")
    async def get_settings():
        return settings_manager.settings.model_dump(mode="json")

    @app.put("/shell/settings")
    async def put_settings(update: SettingsUpdate):
        try:
            saved = settings_manager.save(update.model_dump(exclude_unset=True))
        except SettingsError as e:
            raise HTTPException(status_code=400, detail=str(e))
        if saved.app_url:
            # Picked up by the next reload.
            watchdog.primary.url = saved.app_url
        return {"success": True, "message": "Settings saved successfully", "data": saved.model_dump(mode="json")}

    @app.get("/shell/version")
    async def version():
        return {"success": True, "version": lifecycle.version}

    return app
