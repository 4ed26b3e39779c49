"""
MODULE OVERVIEW:
Wires the kiosk shell together: settings, the customer-facing browser, the
probe, the watchdog and the loopback bridge.

WHAT IS HAPPENING HERE:
`run()` is the whole life of the shell process. It returns only if uvicorn
is asked to stop (Ctrl+C during development); in production the process is
only ever replaced by a relaunch.
"""
import uvicorn
from loguru import logger

from bakehouse_kiosk.shared.config import Settings, settings as default_settings
from bakehouse_kiosk.shell.bridge import create_bridge_app
from bakehouse_kiosk.shell.lifecycle import AppLifecycle
from bakehouse_kiosk.shell.settings_manager import SettingsManager
from bakehouse_kiosk.shell.surface import BrowserProcessSurface, ProbeSurface
from bakehouse_kiosk.shell.watchdog import KioskWatchdog


class KioskShell:
    def __init__(self, config: Settings = default_settings, lifecycle: AppLifecycle | None = None):
        self.config = config
        self.lifecycle = lifecycle or AppLifecycle()
        self.settings_manager = SettingsManager(config.KIOSK_SETTINGS_PATH)
        self.primary = BrowserProcessSurface(config.KIOSK_BROWSER_COMMAND)
        self.probe = ProbeSurface(
            interval_s=config.WATCHDOG_PROBE_INTERVAL_S,
            unresponsive_after_s=config.WATCHDOG_PROBE_UNRESPONSIVE_S,
        )
        self.watchdog = KioskWatchdog(
            self.primary,
            self.probe,
            self.lifecycle,
            recovery_grace_s=config.WATCHDOG_RECOVERY_GRACE_S,
            heartbeat_interval_s=config.WATCHDOG_HEARTBEAT_INTERVAL_S,
            heartbeat_timeout_s=config.WATCHDOG_HEARTBEAT_TIMEOUT_S,
        )
        self.bridge = create_bridge_app(
            self.watchdog,
            self.settings_manager,
            self.lifecycle,
            token=config.KIOSK_BRIDGE_TOKEN,
        )

    async def run(self) -> None:
        logger.info(f"=== KIOSK SHELL START === version={self.lifecycle.version}")
        await self.watchdog.start()

        app_url = self.settings_manager.get_app_url()
        if app_url:
            await self.primary.load(app_url)
        else:
            logger.error(
                "No app URL configured. PUT /shell/settings on "
                f"127.0.0.1:{self.config.KIOSK_BRIDGE_PORT} then POST /shell/reload"
            )

        server = uvicorn.Server(uvicorn.Config(
            self.bridge,
            host="127.0.0.1",
            port=self.config.KIOSK_BRIDGE_PORT,
            log_level=self.config.LOG_LEVEL.lower(),
        ))
        try:
            await server.serve()
        finally:
            await self.watchdog.stop()
            await self.primary.close()
            logger.info("=== KIOSK SHELL STOPPED ===")
