"""
Proxy Server for mitmproxy Lifecycle Management

Runs mitmproxy with the scan interceptor on a background thread.
"""

import asyncio
import threading
from typing import Optional

import structlog
from mitmproxy import options
from mitmproxy.tools import dump

from .interceptor import ScanInterceptor

logger = structlog.get_logger()


class ProxyServer:
    """
    Manages mitmproxy proxy server lifecycle

    mitmproxy's master needs a running event loop, so the loop lives on
    the server thread and the master is built inside it.
    """

    def __init__(self, config, coordinator):
        """
        Initialize the proxy server

        Args:
            config: Application configuration
            coordinator: Scan coordinator fed by the interceptor
        """
        self.config = config
        self.coordinator = coordinator
        self.logger = logger.bind(component="proxy_server")

        self._server_thread: Optional[threading.Thread] = None
        self._master: Optional[dump.DumpMaster] = None
        self._ready = threading.Event()
        self._running = False
        self._interceptor = ScanInterceptor(config, coordinator)

    def start(self, ready_timeout: float = 10.0):
        """
        Start the proxy server

        Blocks until the master is built or the timeout passes.
        """
        if self._running:
            self.logger.warning("Proxy server already running")
            return

        self._ready.clear()
        self._running = True
        self._server_thread = threading.Thread(
            target=self._run_proxy,
            daemon=True,
            name="mitmproxy-server"
        )
        self._server_thread.start()

        if not self._ready.wait(ready_timeout) or not self._running:
            self._running = False
            raise RuntimeError("proxy server failed to start")

        self.logger.info(
            "Proxy server started",
            host=self.config.proxy.proxy_host,
            port=self.config.proxy.proxy_port,
            ca_cert=str(self.config.proxy.ca_cert_dir)
        )

    def stop(self):
        """
        Stop the proxy server

        Gracefully shuts down the proxy and waits for the thread to finish.
        """
        if not self._running:
            self.logger.warning("Proxy server not running")
            return

        self.logger.info("Stopping proxy server...")

        # Thread-safe: schedules the shutdown on the proxy's own loop
        if self._master:
            self._master.shutdown()

        if self._server_thread and self._server_thread.is_alive():
            self._server_thread.join(timeout=5)

        self._running = False
        self._master = None
        self._server_thread = None

        self.logger.info("Proxy server stopped")

    def is_running(self) -> bool:
        """Check if proxy server is running"""
        return bool(self._running and self._server_thread and self._server_thread.is_alive())

    def get_status(self) -> dict:
        """
        Get proxy server status

        Returns:
            Dictionary with status information
        """
        return {
            "running": self.is_running(),
            "host": self.config.proxy.proxy_host,
            "port": self.config.proxy.proxy_port,
            "ca_cert_dir": str(self.config.proxy.ca_cert_dir),
            "statistics": self._interceptor.get_stats()
        }

    def _run_proxy(self):
        """
        Run the proxy server

        This runs in a separate thread and blocks until shutdown.
        """
        try:
            asyncio.run(self._serve())
        except Exception as e:
            self.logger.error("Proxy thread error", error=str(e))
        finally:
            self._running = False
            self._ready.set()

    async def _serve(self):
        self.config.proxy.ca_cert_dir.mkdir(parents=True, exist_ok=True)

        opts = options.Options(
            listen_host=self.config.proxy.proxy_host,
            listen_port=self.config.proxy.proxy_port,
            confdir=str(self.config.proxy.ca_cert_dir),
            ssl_insecure=False
        )

        self._master = dump.DumpMaster(
            opts,
            with_termlog=False,
            with_dumper=False
        )
        self._master.addons.add(self._interceptor)
        self._ready.set()

        self.logger.debug("Proxy thread starting...")
        await self._master.run()
        self.logger.debug("Proxy thread stopped")
