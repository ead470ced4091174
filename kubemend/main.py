"""Main application entry point."""

import asyncio
import signal
from contextlib import asynccontextmanager
from typing import AsyncIterator

import structlog

from kubemend.aiops.engine import RemediationEngine
from kubemend.config import Settings, get_settings
from kubemend.database import SQLRemediationStore, close_db, init_db, make_engine, make_session_factory
from kubemend.k8s.client import KubernetesClient
from kubemend.monitoring import K8sEventWatchLoop, MetricTriggerLoop, PrometheusClient
from kubemend.utils import configure_logging

logger = structlog.get_logger()


async def connect_clusters(engine: RemediationEngine, settings: Settings) -> None:
    """Register a client per configured kubeconfig context, plus in-cluster if running in a pod."""
    for cluster_id, context in settings.kube_contexts.items():
        try:
            client = await KubernetesClient.from_kubeconfig(context=context)
            engine.register_k8s_client(cluster_id, client)
        except Exception as e:
            logger.warning("k8s_client_init_failed", cluster_id=cluster_id, context=context, error=str(e))

    if settings.in_cluster_id and KubernetesClient.is_in_cluster():
        try:
            engine.register_k8s_client(settings.in_cluster_id, KubernetesClient.in_cluster())
        except Exception as e:
            logger.warning("k8s_in_cluster_init_failed", cluster_id=settings.in_cluster_id, error=str(e))


@asynccontextmanager
async def lifespan(settings: Settings) -> AsyncIterator[RemediationEngine]:
    """Build and start the engine with its event sources; tear down in reverse."""
    logger.info("starting_application", environment=settings.environment)

    db_engine = make_engine(settings.database_url)
    if settings.environment == "development":
        logger.info("initializing_database")
        await init_db(db_engine)

    engine = RemediationEngine(SQLRemediationStore(make_session_factory(db_engine)), settings=settings)
    await connect_clusters(engine, settings)
    await engine.start()

    watchloop = None
    if settings.k8s_watchloop_enabled:
        watchloop = K8sEventWatchLoop(engine, interval=settings.k8s_watchloop_interval)
        await watchloop.start()

    default_cluster = settings.in_cluster_id or next(iter(settings.kube_contexts), "")
    metric_loop = MetricTriggerLoop(
        engine,
        PrometheusClient(settings.prometheus_url),
        default_cluster=default_cluster,
        interval=settings.metric_trigger_interval,
    )
    await metric_loop.start()

    logger.info("application_started_successfully", clusters=[c for c, _ in engine.clients.items()])

    try:
        yield engine
    finally:
        logger.info("shutting_down_application")
        await metric_loop.stop()
        if watchloop:
            await watchloop.stop()
        await engine.stop(drain=True)
        for cluster_id, client in engine.clients.items():
            try:
                await client.close()
            except Exception as e:
                logger.warning("k8s_client_close_failed", cluster_id=cluster_id, error=str(e))
        await close_db(db_engine)
        logger.info("application_shutdown_complete")


async def serve(settings: Settings | None = None) -> None:
    """Run until SIGINT/SIGTERM."""
    settings = settings or get_settings()
    configure_logging(settings.log_level, json_logs=settings.json_logs)

    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            pass

    async with lifespan(settings):
        await stop.wait()


def run() -> None:
    asyncio.run(serve())


if __name__ == "__main__":
    run()
