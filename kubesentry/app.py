"""Application bootstrap for kubesentry.

Wires all components in dependency order and manages the asyncio lifecycle.
Startup order: config -> logging -> metrics -> K8s client -> Sentry transport
              -> delivery queue -> watch session -> pipeline

Shutdown: the pipeline stops pulling events and lets the delivery queue drain
for the configured grace period; then the transport and the K8s client are
closed.  Any startup failure exits the process with status 1.
"""

from __future__ import annotations

import asyncio
import signal
from typing import TYPE_CHECKING

from kubesentry.backoff import full_jitter_delay
from kubesentry.collector.errors import WatchError
from kubesentry.collector.watcher import WatchSession
from kubesentry.config import ConfigurationError, load_config, unrecognized_levels
from kubesentry.delivery.queue import DeliveryQueue
from kubesentry.delivery.sentry import SentryTransport
from kubesentry.models.config import KubeSentryConfig
from kubesentry.observability.logging import get_logger, setup_logging
from kubesentry.observability.metrics import start_metrics_server
from kubesentry.pipeline import Pipeline

if TYPE_CHECKING:
    import structlog

    from kubesentry.collector.source import KubernetesEventSource


class _ComponentError(Exception):
    """Raised when a mandatory component fails to start."""

    def __init__(self, component: str, cause: Exception) -> None:
        super().__init__(f"Component '{component}' failed to start: {cause}")
        self.component = component
        self.cause = cause


class KubeSentryApp:
    """Application root.  Owns every component and coordinates their lifecycle.

    ``stop()`` is safe to call on an app that was never started or has
    already stopped.
    """

    def __init__(self, log_level: str | None = None) -> None:
        self._log_level = log_level
        self.config: KubeSentryConfig | None = None

        self._source: KubernetesEventSource | None = None
        self._transport: SentryTransport | None = None
        self._queue: DeliveryQueue | None = None
        self._session: WatchSession | None = None
        self._pipeline: Pipeline | None = None
        self._k8s_client = False

        self._running = False
        self._shutdown_requested = False
        self._log: structlog.stdlib.BoundLogger | None = None

    @property
    def pipeline(self) -> Pipeline | None:
        return self._pipeline

    # ------------------------------------------------------------------
    # Startup
    # ------------------------------------------------------------------

    async def start(self) -> None:
        """Build every component in dependency order.

        Raises ConfigurationError for bad configuration and _ComponentError if
        a mandatory component cannot start.
        """
        # --- 1. Configuration -------------------------------------------
        self.config = load_config(log_level=self._log_level)

        # --- 2. Logging -------------------------------------------------
        setup_logging(self.config.log.level, json_output=self.config.log.json_output)
        self._log = get_logger("app")
        self._log.info(
            "kubesentry starting",
            version=_kubesentry_version(),
            event_levels=sorted(self.config.filters.min_levels),
        )
        self._warn_unrecognized_levels()

        # --- 3. Metrics -------------------------------------------------
        self._start_metrics()

        # --- 4. Kubernetes client ---------------------------------------
        await self._start_k8s_client()
        await self._check_cluster()

        # --- 5. Sentry transport ----------------------------------------
        self._start_transport()

        # --- 6. Delivery queue, watch session, pipeline ------------------
        self._build_pipeline()

        self._running = True
        self._log.info("kubesentry started")

    def _warn_unrecognized_levels(self) -> None:
        assert self._log is not None
        assert self.config is not None
        unknown = unrecognized_levels(self.config.filters)
        if unknown:
            self._log.warning("unrecognized event levels", levels=unknown)

    def _start_metrics(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            if start_metrics_server(self.config.metrics.port):
                self._log.info("metrics server started", port=self.config.metrics.port)
        except OSError as exc:
            self._log.warning("metrics server failed to start", port=self.config.metrics.port, error=str(exc))

    async def _start_k8s_client(self) -> None:
        """Load in-cluster config, falling back to kubeconfig."""
        assert self._log is not None
        assert self.config is not None
        self._log.debug("starting k8s client")
        try:
            import kubernetes_asyncio.config as k8s_config  # type: ignore[import-untyped]

            from kubesentry.collector.source import KubernetesEventSource

            try:
                k8s_config.load_incluster_config()
                self._log.info("k8s client configured from in-cluster service account")
            except k8s_config.ConfigException:
                await k8s_config.load_kube_config()
                self._log.info("k8s client configured from kubeconfig")

            self._source = KubernetesEventSource(timeout_seconds=self.config.watch.timeout_seconds)
            self._k8s_client = True
        except Exception as exc:
            raise _ComponentError("k8s_client", exc) from exc

    async def _check_cluster(self) -> None:
        """Check the cluster API is reachable, retrying with back-off."""
        assert self._log is not None
        assert self.config is not None
        assert self._source is not None
        watch_cfg = self.config.watch
        for attempt in range(1, watch_cfg.startup_retries + 1):
            try:
                await self._source.check_reachable()
                return
            except WatchError as exc:
                if attempt == watch_cfg.startup_retries:
                    raise _ComponentError("k8s_client", exc) from exc
                delay = full_jitter_delay(attempt, watch_cfg.backoff_base, watch_cfg.backoff_max)
                self._log.warning(
                    "cluster api unreachable, retrying",
                    attempt=attempt,
                    retry_in=round(delay, 3),
                    error=str(exc),
                )
                await asyncio.sleep(delay)

    def _start_transport(self) -> None:
        assert self._log is not None
        assert self.config is not None
        try:
            self._transport = SentryTransport(
                dsn=self.config.sentry.dsn,
                environment=self.config.sentry.environment,
                release=self.config.sentry.release,
                timeout=self.config.delivery.timeout_seconds,
            )
            self._log.info(
                "sentry transport started",
                host=self._transport.dsn.host,
                project=self._transport.dsn.project_id,
            )
        except Exception as exc:
            raise _ComponentError("transport", exc) from exc

    def _build_pipeline(self) -> None:
        assert self.config is not None
        assert self._source is not None
        assert self._transport is not None
        delivery = self.config.delivery
        self._queue = DeliveryQueue(
            transport=self._transport,
            capacity=delivery.queue_size,
            concurrency=delivery.concurrency,
            max_attempts=delivery.max_attempts,
            backoff_base=delivery.backoff_base,
            backoff_max=delivery.backoff_max,
        )
        self._session = WatchSession(
            source=self._source,
            backoff_base=self.config.watch.backoff_base,
            backoff_max=self.config.watch.backoff_max,
        )
        self._pipeline = Pipeline(
            session=self._session,
            policy=self.config.filters,
            queue=self._queue,
            cluster_name=self.config.sentry.cluster_name,
            shutdown_grace=delivery.shutdown_grace_seconds,
        )

    # ------------------------------------------------------------------
    # Run / shutdown
    # ------------------------------------------------------------------

    async def run(self) -> None:
        """Run the pipeline until shutdown is requested."""
        assert self._pipeline is not None
        if self._shutdown_requested:
            self._pipeline.request_shutdown()
        try:
            await self._pipeline.run()
        finally:
            self._running = False

    def request_shutdown(self) -> None:
        self._shutdown_requested = True
        if self._pipeline is not None:
            self._pipeline.request_shutdown()

    async def stop(self) -> None:
        """Release the transport and the K8s client.

        Each step is wrapped independently; a failure in one does not prevent
        the other from running.
        """
        log = self._log or get_logger("app")
        self._running = False

        if self._transport is not None:
            try:
                await self._transport.aclose()
            except Exception as exc:
                log.error("transport close raised an error", error=str(exc))
            self._transport = None

        await self._stop_k8s_client()
        log.info("kubesentry stopped")

    async def _stop_k8s_client(self) -> None:
        """Close the kubernetes-asyncio ApiClient connection pool."""
        if not self._k8s_client:
            return
        self._k8s_client = False
        log = self._log or get_logger("app")
        try:
            if self._source is not None and self._source.has_api:
                await self._source.api.api_client.close()
        except Exception as exc:
            log.debug("k8s client close raised (non-fatal)", error=str(exc))


def _kubesentry_version() -> str:
    from kubesentry import __version__

    return __version__


# ---------------------------------------------------------------------------
# Async entrypoint
# ---------------------------------------------------------------------------


async def main(log_level: str | None = None) -> None:
    """Create the app, register OS signals, run until shutdown is requested.

    Raises SystemExit(1) on an unrecoverable startup failure.
    """
    app = KubeSentryApp(log_level=log_level)
    loop = asyncio.get_running_loop()

    for sig in (signal.SIGTERM, signal.SIGINT):
        loop.add_signal_handler(sig, app.request_shutdown)

    try:
        await app.start()
        await app.run()
    except ConfigurationError as exc:
        log = get_logger("app")
        log.critical("invalid configuration", error=str(exc))
        raise SystemExit(1) from exc
    except _ComponentError as exc:
        log = get_logger("app")
        log.critical(
            "fatal startup error",
            component=exc.component,
            error=str(exc.cause),
        )
        raise SystemExit(1) from exc
    finally:
        await app.stop()
        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.remove_signal_handler(sig)
