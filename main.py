"""
Main entry point for the Agent Status monitor.

Provides a FastAPI application that runs the monitoring loop in the
background and reports its health and status.
"""

import asyncio
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel

from agent_status import __version__
from agent_status.config import ConfigurationStore
from agent_status.gateway.zendesk_client import ZendeskDirectoryClient
from agent_status.observability import configure_logging, configure_metrics, configure_tracing, get_logger
from agent_status.observability.logger import sanitize_log_data
from agent_status.observability.tracer import shutdown_tracing
from workers.monitor.worker import MonitorWorker

# Global variables for monitor components
store: Optional[ConfigurationStore] = None
directory: Optional[ZendeskDirectoryClient] = None
worker: Optional[MonitorWorker] = None
worker_task: Optional[asyncio.Task] = None


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    global store, directory, worker, worker_task

    store = ConfigurationStore()
    config = store.config

    configure_logging(config.observability)
    metrics = configure_metrics(config.observability)
    configure_tracing(config.observability, version=__version__)

    logger = get_logger("main")
    logger.info(
        "Configuration loaded",
        path=str(store.config_path),
        zendesk=sanitize_log_data(config.zendesk.model_dump(exclude={"agents"})),
    )

    directory = ZendeskDirectoryClient(
        store.get_credentials,
        timeout=config.zendesk.request_timeout,
        metrics=metrics,
    )
    worker = MonitorWorker(store, directory, metrics)
    worker_task = asyncio.create_task(worker.run())

    yield

    # Cleanup
    worker.stop()
    try:
        await asyncio.wait_for(worker_task, timeout=10)
    except asyncio.TimeoutError:
        worker_task.cancel()
        await asyncio.gather(worker_task, return_exceptions=True)
    await directory.close()
    shutdown_tracing()


# Create FastAPI application
app = FastAPI(
    title="Agent Status Monitor",
    description="Republishes Zendesk agent presence and view ticket counts as Prometheus metrics",
    version=__version__,
    lifespan=lifespan,
)


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    components: Dict[str, str]
    timestamp: str


class AgentView(BaseModel):
    """Last observed state of a monitored agent."""

    id: int
    name: str
    presence: str
    call_status: str
    updated_at: datetime


# API Routes
@app.get("/health", response_model=HealthResponse)
async def health_check():
    """Health check endpoint."""
    components = {}

    if worker is None or worker_task is None:
        components["monitor"] = "not_initialized"
    elif worker_task.done():
        components["monitor"] = "stopped"
    else:
        components["monitor"] = "healthy"

    if worker is None:
        components["configuration"] = "not_initialized"
    else:
        components["configuration"] = "valid" if worker.gate.state.valid else "invalid"

    if worker is None:
        components["zendesk_api"] = "not_initialized"
    elif worker.backoff.is_backing_off:
        components["zendesk_api"] = "backing_off"
    else:
        components["zendesk_api"] = "healthy"

    overall_status = "healthy" if components["monitor"] == "healthy" and all(
        status in ("healthy", "valid") for status in components.values()
    ) else "degraded"

    return HealthResponse(
        status=overall_status,
        components=components,
        timestamp=datetime.now(timezone.utc).isoformat(),
    )


@app.get("/status")
async def monitor_status() -> Dict[str, Any]:
    """Report the monitoring loop's state."""
    if worker is None:
        raise HTTPException(status_code=503, detail="Monitor not initialized")
    return worker.status()


@app.get("/agents", response_model=Dict[str, List[AgentView]])
async def list_agents():
    """List the last observed state of every tracked agent."""
    if worker is None:
        raise HTTPException(status_code=503, detail="Monitor not initialized")

    agents = [
        AgentView(
            id=snapshot.id,
            name=snapshot.name,
            presence=snapshot.presence.value,
            call_status=snapshot.call_status.value,
            updated_at=snapshot.updated_at,
        )
        for snapshot in sorted(worker.agent_states.values(), key=lambda s: s.id)
    ]
    return {"agents": agents}


if __name__ == "__main__":
    import uvicorn

    server_settings = ConfigurationStore().config.server

    # Run the application
    uvicorn.run(
        "main:app",
        host=server_settings.host,
        port=server_settings.port,
        log_level="info",
    )
