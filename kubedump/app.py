"""Application bootstrap for kubedump.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config → logging → cluster client → metrics → controller

Shutdown stops components in reverse startup order.  Each component's stop
error is caught and logged independently so that a single failure does not
prevent the rest from shutting down cleanly.
"""

from __future__ import annotations

import asyncio
import os
import signal
from typing import IO, TYPE_CHECKING

from kubedump.config import load_config
from kubedump.models.config import KubedumpConfig
from kubedump.observability.logging import get_logger, setup_logging

if TYPE_CHECKING:
    import structlog

    from kubedump.cluster.client import ClusterClient
    from kubedump.controller import Controller

_SHUTDOWN_GRACE_SECONDS = 30
_LOG_FILE_NAME = "kubedump.log"


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubedumpApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    Calling ``stop()`` on an app that was never started (or already stopped)
    is safe.
    """

    def __init__(self, client: ClusterClient | None = None) -> None:
        self.config: KubedumpConfig | None = None

        self._client: ClusterClient | None = client
        self._owns_client = client is None
        self._controller: Controller | None = None
        self._log_file: IO[str] | None = None

        self._running = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def running(self) -> bool:
        return self._running

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Start all components in dependency order.

        Raises _ComponentError if a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        self.config = load_config()

        # --- 2. Logging -------------------------------------------------
        self._start_logging()
        assert self._log is not None
        self._log.info("kubedump starting", version=_kubedump_version())

        # --- 3. Cluster client ------------------------------------------
        await self._start_cluster_client()

        # --- 4. Metrics -------------------------------------------------
        self._start_metrics()

        # --- 5. Controller ----------------------------------------------
        await self._start_controller()

        self._running = True
        self._log.info("kubedump started", destination=self.config.controller.destination)

    def _start_logging(self) -> None:
        assert self.config is not None
        destination = self.config.controller.destination
        try:
            os.makedirs(destination, exist_ok=True)
            self._log_file = open(os.path.join(destination, _LOG_FILE_NAME), "a", encoding="utf-8")
        except OSError as exc:
            raise _ComponentError("logging", exc) from exc
        setup_logging(self.config.log.level, self._log_file)
        self._log = get_logger("app")

    async def _start_cluster_client(self) -> None:
        """Initialise the kubernetes-asyncio client from in-cluster config or kubeconfig."""
        assert self._log is not None
        if self._client is not None:
            return
        self._log.debug("starting cluster client")
        try:
            # Import lazily so an injected client never touches kubernetes-asyncio.
            from kubedump.cluster.kubernetes import KubernetesClusterClient

            self._client = await KubernetesClusterClient.create()
        except Exception as exc:
            raise _ComponentError("cluster_client", exc) from exc

    def _start_metrics(self) -> None:
        """Expose Prometheus metrics when a port is configured.  Non-fatal."""
        assert self._log is not None
        assert self.config is not None
        port = self.config.metrics.port
        if not port:
            return
        try:
            from kubedump.observability.metrics import serve_metrics

            serve_metrics(port)
            self._log.info("metrics endpoint started", port=port)
        except OSError as exc:
            self._log.warning("metrics endpoint failed to start", port=port, error=str(exc))

    async def _start_controller(self) -> None:
        assert self._log is not None
        assert self.config is not None
        assert self._client is not None
        try:
            from kubedump.controller import Controller

            controller = Controller(self._client, self.config.controller, self.config.queue)
            await controller.start()
            self._controller = controller
        except Exception as exc:
            raise _ComponentError("controller", exc) from exc

    # ------------------------------------------------------------------
    # Shutdown
    # ------------------------------------------------------------------

    async def stop(self) -> None:
        """Stop all components in reverse startup order."""
        if not self._running and self._log is None:
            # Never started
            return

        log = self._log or get_logger("app")
        log.info("kubedump shutting down")
        self._running = False

        if self._controller is not None:
            try:
                await asyncio.wait_for(self._controller.stop(), timeout=_SHUTDOWN_GRACE_SECONDS)
            except TimeoutError:
                log.warning("component stop timed out", component="controller", timeout=_SHUTDOWN_GRACE_SECONDS)
            except Exception as exc:
                log.error("component stop raised an error", component="controller", error=str(exc))
            self._controller = None
            self._link_dump(log)

        if self._client is not None and self._owns_client:
            try:
                await self._client.close()
            except Exception as exc:
                log.debug("cluster client close raised (non-fatal)", error=str(exc))
            self._client = None

        log.info("kubedump stopped")
        if self._log_file is not None:
            # Point logging back at stderr before the file goes away.
            setup_logging(self.config.log.level if self.config else "info")
            self._log_file.close()
            self._log_file = None
        self._log = None

    def _link_dump(self, log: structlog.stdlib.BoundLogger) -> None:
        """Add the links derivable from the written descriptions.  Non-fatal."""
        assert self.config is not None
        try:
            from kubedump.tree import link_dump

            link_dump(self.config.controller.destination)
        except OSError as exc:
            log.warning("offline linking failed", error=str(exc))


def _kubedump_version() -> str:
    from kubedump import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main() -> None:
    """Create the app, register OS signals, run until shutdown is requested."""
    app = KubedumpApp()
    loop = asyncio.get_running_loop()
    shutdown = asyncio.Event()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, shutdown.set)

    try:
        await app.start()
        await shutdown.wait()
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical("fatal startup error", component=exc.component, error=str(exc.cause))
        await app.stop()
        raise SystemExit(1) from exc
    finally:
        if app.running:
            await app.stop()
