from fastapi import FastAPI, HTTPException
from fastapi.responses import Response
from typing import Optional
from ..upgrade.watcher import UpgradeFileWatcher

app = FastAPI(title="Chainvisor Upgrade Watcher")

watcher: Optional[UpgradeFileWatcher] = None


@app.get("/")
async def root():
    return {"message": "Chainvisor Upgrade Watcher", "version": "1.0"}


@app.get("/status")
async def get_status():
    if not watcher:
        raise HTTPException(status_code=503, detail="Watcher not initialized")
    return watcher.snapshot().to_dict()


@app.get("/metrics")
async def get_metrics():
    """
    Prometheus metrics endpoint.

    Returns metrics in Prometheus text format.
    """
    from prometheus_client import generate_latest, CONTENT_TYPE_LATEST
    from ..observability.metrics import metrics_registry, update_metrics

    if watcher:
        update_metrics(watcher.snapshot())

    return Response(
        content=generate_latest(metrics_registry),
        media_type=CONTENT_TYPE_LATEST
    )
