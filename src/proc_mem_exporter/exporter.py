"""HTTP endpoint serving the current gauges to Prometheus.

PULL-ONLY DESIGN:
- prometheus_client's threaded WSGI server answers scrapes from its own thread
- Each request renders the registry as it is at that moment (content
  negotiation and gzip are handled by the library)
- Requests never trigger or wait for a sampling cycle
"""

from __future__ import annotations

import asyncio
import threading
from typing import TYPE_CHECKING

import structlog
from prometheus_client import start_http_server

if TYPE_CHECKING:
    from wsgiref.simple_server import WSGIServer

    from proc_mem_exporter.metrics import OwnerGauges

log = structlog.get_logger()

STOP_TIMEOUT = 5.0


class MetricsServer:
    """Metrics endpoint for one OwnerGauges registry, with async start/stop."""

    def __init__(self, gauges: OwnerGauges, host: str = "0.0.0.0", port: int = 0) -> None:
        self.gauges = gauges
        self.host = host
        self.requested_port = port
        self._httpd: WSGIServer | None = None
        self._thread: threading.Thread | None = None

    @property
    def port(self) -> int | None:
        """Actual bound port (resolves port 0), or None when not listening."""
        if self._httpd is None:
            return None
        return self._httpd.server_port

    @property
    def url(self) -> str | None:
        if self.port is None:
            return None
        return f"http://{self.host}:{self.port}"

    async def start(self) -> None:
        """Bind and start serving in a background thread.

        Raises:
            OSError: If the address cannot be bound.
        """
        self._httpd, self._thread = await asyncio.to_thread(
            start_http_server,
            self.requested_port,
            addr=self.host,
            registry=self.gauges.registry,
        )
        log.info("exporter_started", host=self.host, port=self.port)

    async def stop(self) -> None:
        """Stop serving and release the port."""
        if self._httpd is None:
            return

        httpd, thread = self._httpd, self._thread
        self._httpd = None
        self._thread = None

        # shutdown() blocks until serve_forever() notices
        await asyncio.to_thread(httpd.shutdown)
        httpd.server_close()
        if thread is not None:
            await asyncio.to_thread(thread.join, STOP_TIMEOUT)
        log.info("exporter_stopped")
