import logging
from typing import Optional

from fastapi import FastAPI, Header, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

from . import __version__
from .config import Settings, is_production, missing_config
from .errors import ConflictError, DocAnchorError, RateLimitExceeded
from .logging_config import audit_log, configure_logging, set_request_id
from .models import AnchoredProof, AnchorRequest, AnchorResponse, VerifyRequest, VerifyResponse
from .rate_limit import RateLimiter
from .security import extract_bearer_token, extract_client_id
from .services import Services, build_services
from .util import utc_now

logger = logging.getLogger(__name__)


def _services(request: Request) -> Services:
    return request.app.state.services


def _enforce_rate_limit(limiter: RateLimiter, request: Request, endpoint: str) -> None:
    client_id = extract_client_id(dict(request.headers), request.client.host if request.client else None)
    result = limiter.check(client_id)
    if not result.allowed:
        audit_log.rate_limit_exceeded(client_id, endpoint)
        raise RateLimitExceeded(result.retry_after)


def create_app(services: Optional[Services] = None, settings: Optional[Settings] = None) -> FastAPI:
    """
    Build the HTTP application.

    When no Services are given they are built from the environment once,
    at startup, and shared by every request.
    """
    settings = services.settings if services else (settings or Settings.from_env())
    docs_url = None if is_production(settings) else "/docs"
    app = FastAPI(title="docanchor", version=__version__, docs_url=docs_url, redoc_url=None)
    app.state.services = services

    app.add_middleware(
        CORSMiddleware,
        allow_origins=list(settings.cors_origins),
        allow_methods=["GET", "POST"],
        allow_headers=["Authorization", "Content-Type", "X-Request-ID"],
    )

    @app.on_event("startup")
    def _startup():
        if app.state.services is None:
            configure_logging(settings.log_level, settings.log_json, settings.log_file)
            missing = missing_config(settings)
            if missing:
                logger.warning("Missing configuration: %s", ", ".join(missing))
            app.state.services = build_services(settings)
            logger.info("docanchor started (backend=%s topic=%s)", settings.consensus_backend, settings.topic_id)

    @app.on_event("shutdown")
    def _shutdown():
        if app.state.services is not None:
            app.state.services.db.close()

    @app.middleware("http")
    async def _request_id(request: Request, call_next):
        request_id = set_request_id(request.headers.get("x-request-id"))
        response = await call_next(request)
        response.headers["X-Request-ID"] = request_id
        return response

    @app.exception_handler(ConflictError)
    async def _conflict(request: Request, exc: ConflictError):
        return JSONResponse(
            status_code=exc.status_code,
            content={
                "error": exc.code,
                "message": exc.message,
                "proof": AnchoredProof.from_proof(exc.proof).model_dump(),
            },
        )

    @app.exception_handler(RateLimitExceeded)
    async def _rate_limited(request: Request, exc: RateLimitExceeded):
        headers = {"Retry-After": str(int(exc.retry_after) + 1)} if exc.retry_after is not None else None
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict(), headers=headers)

    @app.exception_handler(DocAnchorError)
    async def _docanchor_error(request: Request, exc: DocAnchorError):
        if exc.status_code >= 500:
            logger.error("%s on %s: %s", exc.code, request.url.path, exc.message)
        return JSONResponse(status_code=exc.status_code, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _bad_body(request: Request, exc: RequestValidationError):
        fields = [".".join(str(p) for p in err.get("loc", ())[1:]) for err in exc.errors()]
        return JSONResponse(
            status_code=400,
            content={
                "error": "ValidationError",
                "code": "VALIDATION_ERROR",
                "message": "Invalid request body",
                "details": {"fields": fields},
            },
        )

    @app.get("/")
    def root():
        return {"name": "docanchor", "version": __version__, "status": "running"}

    @app.get("/health")
    def health(request: Request):
        svc = _services(request)
        return {
            "status": "ok",
            "timestamp": utc_now().isoformat(),
            "topicId": svc.settings.topic_id,
            "consensusBackend": svc.settings.consensus_backend,
            "missingConfig": list(missing_config(svc.settings)),
            "database": svc.db.stats(),
        }

    @app.post("/api/v1/anchor", status_code=201, response_model=AnchorResponse)
    def anchor(req: AnchorRequest, request: Request, authorization: Optional[str] = Header(None)):
        svc = _services(request)
        _enforce_rate_limit(svc.anchor_limiter, request, "anchor")
        organization = svc.organizations.authenticate(extract_bearer_token(authorization))

        result = svc.orchestrator.anchor(req.document_hash, req.did, req.signature, organization)
        if result.conflict:
            raise ConflictError("This document hash has already been anchored.", proof=result.proof)
        return AnchorResponse(
            message="Document anchored successfully.",
            proof=AnchoredProof.from_proof(result.proof),
        )

    @app.post("/api/v1/verify", response_model=VerifyResponse)
    def verify(req: VerifyRequest, request: Request):
        svc = _services(request)
        _enforce_rate_limit(svc.verify_limiter, request, "verify")
        return VerifyResponse.from_result(svc.orchestrator.verify(req.document_hash))

    return app


app = create_app()
