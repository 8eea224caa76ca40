from __future__ import annotations

import logging
from typing import Optional

import typer
import uvicorn

from app.main import create_app
from cli.config import load_settings
from logging_config import configure_logging
from services.errors import ExporterError
from services.poller import build_poller

logger = logging.getLogger(__name__)

app = typer.Typer(
    help="Prometheus exporter for deCONZ gateway sensors.",
    context_settings={"help_option_names": ["-h", "--help"]},
    add_completion=False,
)


@app.command()
def main(
    conbee_uri: Optional[str] = typer.Option(
        None,
        "--conbee-uri",
        "-u",
        help="Gateway address (defaults to CONBEE_URI env); discovered when unset.",
    ),
    host: Optional[str] = typer.Option(
        None,
        "--host",
        help="Interface to serve /metrics on (defaults to EXPORTER_HOST env or 0.0.0.0).",
    ),
    port: Optional[int] = typer.Option(
        None,
        "--port",
        "-p",
        min=1,
        max=65535,
        help="Port to serve /metrics on (defaults to EXPORTER_PORT env or 2112).",
    ),
    poll_interval: Optional[float] = typer.Option(
        None,
        "--poll-interval",
        help="Seconds between gateway polls (defaults to POLL_INTERVAL_SECONDS env or 2).",
    ),
    log_level: Optional[str] = typer.Option(
        None,
        "--log-level",
        help="Logging level (defaults to LOG_LEVEL env or INFO).",
    ),
) -> None:
    """Poll the gateway and serve its sensors as Prometheus metrics."""
    settings = load_settings(
        conbee_uri=conbee_uri,
        host=host,
        port=port,
        poll_interval=poll_interval,
        log_level=log_level,
    )
    configure_logging(settings.log_level, force=True)

    try:
        poller = build_poller(settings)
    except ExporterError as exc:
        logger.critical("%s", exc)
        typer.secho(str(exc), fg=typer.colors.RED, err=True)
        raise typer.Exit(code=1) from exc

    logger.info(
        "Serving metrics on %s:%d/metrics",
        settings.host,
        settings.port,
        extra={"gateway": poller.client.base_url},
    )
    uvicorn.run(
        create_app(poller),
        host=settings.host,
        port=settings.port,
        log_config=None,
    )
