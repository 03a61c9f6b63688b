"""FastAPI application exposing the switchboard relay over HTTP."""

from __future__ import annotations

import argparse
import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from typing import Dict, List, Literal, Optional, Sequence

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from pydantic import BaseModel, ConfigDict, Field
from starlette.concurrency import run_in_threadpool

from . import __version__
from .config import RelaySettings, env_values, is_truthy
from .mailbox import Answer, NegotiationItem, Offer
from .registry import NetworkRegistry
from .utils.serialization import dumps, exchange_to_wire, registry_to_wire

log = logging.getLogger("switchboard.api")

CORS_MAX_AGE_S = 60 * 60 * 24 * 30
CORS_HEADERS = {
    "Access-Control-Allow-Origin": "*",
    "Access-Control-Allow-Headers": "*",
    "Access-Control-Allow-Methods": "OPTIONS, POST",
    "Access-Control-Max-Age": str(CORS_MAX_AGE_S),
}


class NegotiationModel(BaseModel):
    # Clients may attach their own bookkeeping (address, networkId, ...).
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    type: Literal["offer", "answer"]
    sdp: str = Field(min_length=1)
    connection_id: str = Field(alias="connectionId", min_length=1)


class NegotiationItemModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    for_: str = Field(alias="for", min_length=1)
    from_: str = Field(alias="from", min_length=1)
    negotiation: NegotiationModel


class PollRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    network_id: str = Field(alias="networkId", min_length=1)
    address: str = Field(min_length=1)
    negotiation_items: List[NegotiationItemModel] = Field(
        default_factory=list, alias="negotiationItems"
    )


def _to_item(model: NegotiationItemModel) -> NegotiationItem:
    negotiation = model.negotiation
    extra = dict(negotiation.model_extra or {})
    payload_cls = Offer if negotiation.type == "offer" else Answer
    payload = payload_cls(connection_id=negotiation.connection_id, sdp=negotiation.sdp, extra=extra)
    return NegotiationItem(sender=model.from_, recipient=model.for_, payload=payload)


def _json(payload) -> Response:
    return Response(content=dumps(payload), media_type="application/json")


@asynccontextmanager
async def lifespan(app: FastAPI):
    # Periodic sweep so idle networks are reclaimed without new requests.
    async def _sweep():
        while True:
            await asyncio.sleep(app.state.settings.sweep_interval)
            try:
                await run_in_threadpool(app.state.registry.sweep)
            except Exception:
                log.exception("sweep failed")

    sweep_task = asyncio.create_task(_sweep())

    yield

    sweep_task.cancel()
    with contextlib.suppress(asyncio.CancelledError):
        await sweep_task


def create_app(
    settings: Optional[RelaySettings] = None,
    registry: Optional[NetworkRegistry] = None,
) -> FastAPI:
    """Build an app bound to its own registry."""

    settings = settings or RelaySettings.from_env()
    application = FastAPI(title="switchboard", version=__version__, lifespan=lifespan)
    application.state.settings = settings
    if registry is None:
        registry = NetworkRegistry.from_settings(settings)
    application.state.registry = registry

    application.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_methods=["OPTIONS", "POST"],
        allow_headers=["*"],
        max_age=CORS_MAX_AGE_S,
    )

    @application.exception_handler(RequestValidationError)
    async def bad_request(request: Request, exc: RequestValidationError) -> JSONResponse:
        errors = exc.errors()
        first = errors[0] if errors else {}
        if first.get("type") == "json_invalid":
            reason = "json"
        else:
            reason = ".".join(str(part) for part in first.get("loc", ()) if part != "body") or "body"
        log.info("rejected request: %s", reason)
        return JSONResponse({"error": f"invalid request: {reason}"}, status_code=400)

    @application.post("/")
    def poll(payload: PollRequest, request: Request) -> Response:
        """Record the caller, queue its negotiations and return what awaits it."""

        registry: NetworkRegistry = request.app.state.registry
        outgoing = [_to_item(item) for item in payload.negotiation_items]
        exchange = registry.exchange(payload.network_id, payload.address, outgoing)
        return _json(exchange_to_wire(exchange, registry.epoch_ms))

    @application.get("/")
    def introspect(request: Request) -> Response:
        """Dump every network verbatim without pruning anything."""

        registry: NetworkRegistry = request.app.state.registry
        return _json(registry_to_wire(registry.list_all(), registry.epoch_ms))

    @application.options("/")
    def options() -> Response:
        # Real preflights are answered by CORSMiddleware before reaching this route.
        return Response(status_code=204, headers=CORS_HEADERS)

    return application


_default_app: Optional[FastAPI] = None


def get_app() -> FastAPI:
    """Return the process-wide app, building it from the environment on first use."""

    global _default_app
    if _default_app is None:
        _default_app = create_app()
    return _default_app


def __getattr__(name: str):
    # ``app`` is resolved lazily so importing this module never reads settings.
    if name == "app":
        return get_app()
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")


def reset_state() -> None:
    """Drop all relay state of the default app (used by tests)."""

    get_app().state.registry.teardown()


def _build_parser(defaults: Dict[str, str]) -> argparse.ArgumentParser:
    # String defaults go through each option's ``type`` only when the flag is absent.
    parser = argparse.ArgumentParser(
        description="Rendezvous relay for WebRTC offer/answer exchange."
    )
    parser.add_argument("--host", default=defaults["host"])
    parser.add_argument("--port", type=int, default=defaults["port"])
    parser.add_argument(
        "--address-ttl", type=float, default=defaults["address_ttl"],
        help="Seconds since last contact before an address is dropped.",
    )
    parser.add_argument(
        "--negotiation-ttl", type=float, default=defaults["negotiation_ttl"],
        help="Seconds a negotiation is kept, even while both peers are present.",
    )
    parser.add_argument(
        "--max-items", type=int, default=defaults["max_negotiation_items"],
        help="Maximum buffered negotiations per network.",
    )
    parser.add_argument(
        "--sweep-interval", type=float, default=defaults["sweep_interval"],
        help="Seconds between background sweeps of idle networks.",
    )
    parser.add_argument(
        "--match-negotiations", action="store_true",
        default=is_truthy(defaults["match_negotiations"]),
        help="Drop an offer as soon as its answer arrives.",
    )
    parser.add_argument(
        "--log-level", default=defaults["log_level"],
        choices=["critical", "error", "warning", "info", "debug"],
    )
    return parser


def main(argv: Optional[Sequence[str]] = None) -> None:
    import uvicorn

    parser = _build_parser(env_values())
    args = parser.parse_args(argv)
    try:
        settings = RelaySettings(
            host=args.host,
            port=args.port,
            address_ttl=args.address_ttl,
            negotiation_ttl=args.negotiation_ttl,
            max_negotiation_items=args.max_items,
            sweep_interval=args.sweep_interval,
            match_negotiations=args.match_negotiations,
            log_level=args.log_level,
        )
    except ValueError as exc:
        parser.error(str(exc))
    logging.basicConfig(
        level=settings.log_level.upper(),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    log.info("switchboard listening on %s:%d", settings.host, settings.port)
    uvicorn.run(create_app(settings), host=settings.host, port=settings.port, log_level=settings.log_level)


if __name__ == "__main__":
    main()


__all__ = ["app", "create_app", "get_app", "main", "reset_state"]
