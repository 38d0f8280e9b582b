from __future__ import annotations

import logging
from importlib.metadata import PackageNotFoundError, version as pkg_version

import uvicorn
from fastapi import Depends, FastAPI, Response
from fastapi.responses import RedirectResponse
from prometheus_client import CONTENT_TYPE_LATEST, CollectorRegistry, PlatformCollector, ProcessCollector, generate_latest

from wireguard_exporter.observability import configure_logging, install_http_observability
from wireguard_exporter.schemas import HealthResponse
from wireguard_exporter.security import require_scrape_token
from wireguard_exporter.services.peer_names import load_peer_names
from wireguard_exporter.services.wireguard import DeviceListingError, WgCommandDeviceLister
from wireguard_exporter.settings import Settings, get_settings

from .metrics import WireGuardCollector

logger = logging.getLogger("wireguard_exporter.main")


def _app_version() -> str:
    try:
        return pkg_version("wireguard-exporter")
    except PackageNotFoundError:
        return "dev"
    except Exception:
        return "unknown"


def _metrics_path(settings: Settings) -> str:
    path = "/" + (settings.metrics_path or "").strip().lstrip("/")
    if path == "/":
        raise RuntimeError("WIREGUARD_EXPORTER_METRICS_PATH must not be the root path")
    return path


def build_collector(settings: Settings) -> WireGuardCollector:
    peer_names = load_peer_names(settings.peer_names, settings.peer_file or None)
    lister = WgCommandDeviceLister(settings.wg_binary)

    if settings.startup_probe:
        try:
            devices = lister()
        except DeviceListingError as exc:
            raise RuntimeError(f"failed to fetch WireGuard devices: {exc}") from exc
        logger.info("wireguard_devices_found count=%s", len(devices))

    return WireGuardCollector(lister, peer_names)


def create_app(settings: Settings, collector: WireGuardCollector) -> FastAPI:
    metrics_path = _metrics_path(settings)

    registry = CollectorRegistry()
    registry.register(collector)
    ProcessCollector(registry=registry)
    PlatformCollector(registry=registry)

    app = FastAPI(title="WireGuard Exporter", version=_app_version())
    app.state.registry = registry
    install_http_observability(app, registry=registry)

    @app.get("/", include_in_schema=False)
    async def root() -> RedirectResponse:
        return RedirectResponse(url=metrics_path, status_code=301)

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    # Sync handler: scrapes run in the threadpool and may overlap.
    @app.get(metrics_path, dependencies=[Depends(require_scrape_token(settings.auth_token))])
    def metrics() -> Response:
        return Response(content=generate_latest(registry), media_type=CONTENT_TYPE_LATEST)

    return app


def run() -> None:
    settings = get_settings()
    configure_logging(settings.log_level)
    collector = build_collector(settings)
    app = create_app(settings, collector)

    ssl_kwargs = {}
    if settings.server_cert and settings.server_key:
        ssl_kwargs = {
            "ssl_certfile": settings.server_cert,
            "ssl_keyfile": settings.server_key,
        }
        if settings.ca_cert:
            ssl_kwargs["ssl_ca_certs"] = settings.ca_cert
            ssl_kwargs["ssl_cert_reqs"] = 2

    logger.info("listening host=%s port=%s metrics_path=%s", settings.listen_host, settings.listen_port, _metrics_path(settings))
    uvicorn.run(
        app,
        host=settings.listen_host,
        port=settings.listen_port,
        log_level=settings.log_level.lower(),
        **ssl_kwargs,
    )


if __name__ == "__main__":
    run()
