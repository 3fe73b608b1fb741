"""
GET / — JSON view of the relay counters.

Run alongside the relay inside the same event loop:

    await serve_status(reporter, "0.0.0.0", 8080)
"""

import logging
from typing import Dict

import uvicorn
from fastapi import FastAPI
from pydantic import BaseModel

from serialfork.stats import StatusReporter

logger = logging.getLogger(__name__)


class StatusResponse(BaseModel):
    addrs: Dict[str, int]
    num_clients: int
    num_packets: int


def create_app(reporter: StatusReporter) -> FastAPI:
    app = FastAPI(
        title="serialfork",
        description="Connected clients and relayed packet counts.",
        version="0.1.0",
    )

    @app.get("/", response_model=StatusResponse)
    def get_status() -> StatusResponse:
        """
        - **addrs**: open TCP connections per client IP.
        - **num_clients**: connected TCP clients.
        - **num_packets**: serial reads relayed since startup.
        """
        return StatusResponse(**reporter.snapshot())

    return app


async def serve_status(reporter: StatusReporter, host: str, port: int) -> None:
    config = uvicorn.Config(
        create_app(reporter), host=host, port=port, log_level="warning"
    )
    await uvicorn.Server(config).serve()
