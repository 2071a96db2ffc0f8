import math
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, HTTPException, Request
from fastapi.responses import JSONResponse

from . import config
from .applier import InMemoryRecordStore, SqliteRecordStore, UpdateApplier
from .authorization import AuthorizationEngine
from .db import export_update_log_full, get_db_stats, init_db
from .dispatcher import BackendDispatcher, BackendTimeouts, ChainEndpoint
from .errors import RETRYABLE_REASONS, GatewayError, Reason
from .gateway import GatewayOutcome, GatewayState, RequestGateway, UpdateRequest
from .hashing import namehash
from .log_backends import get_log_backend
from .logging_config import audit_log, configure_logging, set_request_id
from .metadata import DescriptorCache, MetadataResolver, StaticMetadata
from .models import ConfirmRequest, HealthStatus, UpdateSubmission
from .origin import Web3OriginChain
from .rate_limit import RateLimiter
from .replay import InMemoryReplayStore, ReplayGuard, SqliteReplayStore
from .retry import RetryPolicy
from .security import ValidationError, extract_client_id, validate_hex, validate_name
from .signing import SignatureVerifier
from .util import from_hex

REASON_STATUS = {
    Reason.MISMATCH: 401,
    Reason.DUPLICATE: 409,
    Reason.SUPERSEDED: 409,
    Reason.STALE: 422,
    Reason.MALFORMED: 422,
    Reason.CONTEXT_MISMATCH: 422,
    Reason.UNKNOWN_BACKEND: 422,
    Reason.NOT_FOUND: 404,
    Reason.DENIED: 403,
    Reason.UNSUPPORTED_BACKEND: 400,
    Reason.UNKNOWN_CHAIN: 400,
    Reason.BACKEND_REJECTED: 502,
    Reason.INTERNAL_ERROR: 500,
}


def status_code_for(stage: GatewayState, reason: Reason) -> int:
    if reason in RETRYABLE_REASONS:
        return 503
    if stage == GatewayState.SIGNATURE_CHECKED:
        return 401
    return REASON_STATUS.get(reason, 500)


def build_gateway() -> RequestGateway:
    """Wire a gateway from the environment configuration."""
    retry = RetryPolicy(
        max_attempts=config.RETRY_ATTEMPTS,
        base_delay=config.RETRY_BASE_DELAY,
        max_delay=config.RETRY_MAX_DELAY,
    )
    origin = Web3OriginChain.connect(config.ORIGIN_RPC_URL, config.REGISTRY_ADDRESS, config.RESOLUTION_TIMEOUT)
    resolver = MetadataResolver(
        origin,
        cache=DescriptorCache(config.DESCRIPTOR_TTL_SECONDS, config.DESCRIPTOR_CACHE_SIZE),
        retry=retry,
    )
    resolver.load_static(config.load_static_metadata())

    chains = {
        label: ChainEndpoint(entry["rpc_url"], entry.get("relayer_url"))
        for label, entry in config.load_chains().items()
    }
    dispatcher = BackendDispatcher.default(
        chains,
        BackendTimeouts(approval=config.AUTHORIZATION_TIMEOUT, apply=config.APPLY_TIMEOUT),
    )

    if config.REPLAY_STORE == "sqlite":
        replay_store, record_store = SqliteReplayStore(), SqliteRecordStore()
    else:
        replay_store, record_store = InMemoryReplayStore(), InMemoryRecordStore()

    return RequestGateway(
        verifier=SignatureVerifier(),
        replay_guard=ReplayGuard(config.FRESHNESS_WINDOW_SECONDS, replay_store),
        resolver=resolver,
        authorizer=AuthorizationEngine(origin, dispatcher, retry=retry),
        applier=UpdateApplier(dispatcher, record_store, retry=retry),
        update_log=get_log_backend(),
    )


GATEWAY: Optional[RequestGateway] = None
update_limiter = RateLimiter(config.UPDATE_RPM)


def _startup():
    global GATEWAY
    configure_logging("DEBUG" if config.is_debug() else config.LOG_LEVEL, config.LOG_JSON)
    if config.is_production():
        failing = [k for k, ok in config.validate_config().items() if not ok]
        if failing:
            raise RuntimeError(f"refusing to start, config checks failed: {', '.join(failing)}")
    init_db()
    if GATEWAY is None:
        GATEWAY = build_gateway()


@asynccontextmanager
async def lifespan(app: FastAPI):
    _startup()
    yield


app = FastAPI(title="recordgate", lifespan=lifespan)


def get_gateway() -> RequestGateway:
    if GATEWAY is None:
        _startup()
    return GATEWAY


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    request_id = set_request_id(request.headers.get("x-request-id"))
    response = await call_next(request)
    response.headers["X-Request-ID"] = request_id
    return response


def _name(name: str) -> str:
    try:
        return validate_name(name)
    except ValidationError as e:
        raise HTTPException(422, e.message)


def _context(value: Optional[str]) -> Optional[bytes]:
    if value is None:
        return None
    try:
        return from_hex(validate_hex(value, "context"))
    except ValidationError as e:
        raise HTTPException(422, e.message)


def _fail(e: GatewayError):
    status = 503 if e.retryable else REASON_STATUS.get(e.reason, 500)
    raise HTTPException(status, e.reason.value)


def _outcome_response(outcome: GatewayOutcome) -> JSONResponse:
    if outcome.applied:
        return JSONResponse(outcome.to_dict(), status_code=200)
    return JSONResponse(outcome.to_dict(), status_code=status_code_for(outcome.stage, outcome.reason))


@app.post("/records/{name}")
def submit_update(name: str, req: UpdateSubmission, request: Request,
                  gateway: RequestGateway = Depends(get_gateway)):
    client_id = extract_client_id(request.headers, request.client.host if request.client else None)
    limit = update_limiter.check(client_id)
    if not limit.allowed:
        audit_log.rate_limit_exceeded(client_id, "/records")
        raise HTTPException(429, "RATE_LIMIT", headers={"Retry-After": str(math.ceil(limit.retry_after or 1))})

    update = UpdateRequest(
        payload=from_hex(req.data),
        sender=req.sender,
        inception_time=req.inception_date,
        signature=from_hex(req.signature),
        context=None if req.context is None else from_hex(req.context),
    )
    return _outcome_response(gateway.handle(_name(name), update))


@app.get("/records/{name}")
def get_record(name: str, context: Optional[str] = None, gateway: RequestGateway = Depends(get_gateway)):
    name = _name(name)
    try:
        descriptor = gateway.resolver.resolve(name)
    except GatewayError as e:
        _fail(e)
    ctx = _context(context)
    record = gateway.applier.get_record(namehash(name), descriptor.context if ctx is None else ctx)
    if record is None:
        raise HTTPException(404, "NOT_FOUND")
    return record.to_dict()


@app.post("/records/{name}/confirm")
def confirm_record(name: str, req: Optional[ConfirmRequest] = None,
                   gateway: RequestGateway = Depends(get_gateway)):
    name = _name(name)
    try:
        descriptor = gateway.resolver.resolve(name)
        ctx = _context(req.context if req else None)
        record = gateway.applier.confirm(descriptor, namehash(name), descriptor.context if ctx is None else ctx)
    except GatewayError as e:
        _fail(e)
    return record.to_dict()


@app.get("/metadata/{name}")
def get_metadata(name: str, gateway: RequestGateway = Depends(get_gateway)):
    name = _name(name)
    try:
        descriptor = gateway.resolver.resolve(name)
    except GatewayError as e:
        _fail(e)
    out = descriptor.to_dict()
    out["name"] = name
    out["node"] = "0x" + namehash(name).hex()
    out["source"] = "static" if isinstance(gateway.resolver.source_for(name), StaticMetadata) else "dynamic"
    return out


@app.delete("/metadata/{name}")
def invalidate_metadata(name: str, gateway: RequestGateway = Depends(get_gateway)):
    name = _name(name)
    gateway.resolver.invalidate(name)
    return {"invalidated": name}


@app.get("/update_log")
def update_log():
    return export_update_log_full()


@app.get("/health", response_model=HealthStatus)
def health():
    checks = config.validate_config()
    failing = [k for k, ok in checks.items() if not ok]
    return {
        "status": "ok" if not failing else "degraded",
        "env": config.ENV,
        "checks": checks,
        "failing": failing,
        "db": get_db_stats(),
    }
