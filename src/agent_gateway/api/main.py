from __future__ import annotations

import json
import logging
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
from typing import Annotated, Any, cast
from uuid import uuid4

from fastapi import Depends, FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse, Response, StreamingResponse
from opensearchpy import OpenSearch

from agent_gateway.api.auth import require_caller
from agent_gateway.api.schemas import (
    AgentSummary,
    CitationModel,
    ExecutePayload,
    ExecuteResult,
    StreamPayload,
)
from agent_gateway.application.ports import (
    AccountRepository,
    AuditLog,
    LanguageModelProvider,
    SettlementLedger,
)
from agent_gateway.application.services.agent_registry import AgentRegistry
from agent_gateway.application.services.settlement import (
    DEFAULT_PRICE_TABLE,
    SettlementPolicy,
    WebhookSettlementVerifier,
    build_price_table,
)
from agent_gateway.application.services.stream_session import (
    SSE_HEADERS,
    StreamSession,
    parse_turn_state,
)
from agent_gateway.domain.exceptions import (
    AuthenticationError,
    CallerError,
    MalformedOutputError,
    ProviderUnavailableError,
    SignatureInvalidError,
    UnreadableWebhookError,
)
from agent_gateway.domain.models import CallerIdentity, ChatContext, ModelClass, SettlementStatus
from agent_gateway.infra.adapters.in_memory import (
    InMemoryAccountRepository,
    InMemoryAuditLog,
    InMemorySettlementLedger,
)
from agent_gateway.infra.adapters.opensearch import (
    OpenSearchAccountRepository,
    OpenSearchAuditLog,
    OpenSearchIndexManager,
    OpenSearchSettlementLedger,
)
from agent_gateway.infra.config import Settings
from agent_gateway.infra.genai.provider import GenAiProvider
from agent_gateway.infra.logging import configure_logging, request_id_ctx
from agent_gateway.prompts import AGENT_CATALOG

logger = logging.getLogger(__name__)

WEBHOOK_RESPONSES = {
    SettlementStatus.SETTLED: "OK",
    SettlementStatus.IGNORED: "IGNORED",
    SettlementStatus.REJECTED: "REJECTED",
    SettlementStatus.DUPLICATE: "DUPLICATE",
}


class Container:
    def __init__(
        self,
        settings: Settings,
        provider: LanguageModelProvider | None = None,
    ) -> None:
        self.settings = settings
        self.account_repo: AccountRepository
        self.settlement_ledger: SettlementLedger
        self.audit_log: AuditLog

        if settings.storage_backend == "opensearch":
            client = OpenSearch(
                hosts=[settings.opensearch_url],
                verify_certs=settings.opensearch_verify_certs,
                ssl_show_warn=False,
            )
            OpenSearchIndexManager(
                client=client,
                index_prefix=settings.opensearch_index_prefix,
            ).ensure_indices_and_policies()
            self.account_repo = OpenSearchAccountRepository(
                client=client, index_prefix=settings.opensearch_index_prefix
            )
            self.settlement_ledger = OpenSearchSettlementLedger(
                client=client, index_prefix=settings.opensearch_index_prefix
            )
            self.audit_log = OpenSearchAuditLog(
                client=client, index_prefix=settings.opensearch_index_prefix
            )
        else:
            self.account_repo = InMemoryAccountRepository()
            self.settlement_ledger = InMemorySettlementLedger()
            self.audit_log = InMemoryAuditLog()

        self.provider = provider or GenAiProvider(
            models={
                ModelClass.FAST: settings.model_fast,
                ModelClass.DEEP: settings.model_deep,
                ModelClass.GROUNDED: settings.model_grounded,
            },
            api_key=settings.genai_api_key,
        )
        self.registry = AgentRegistry(
            provider=self.provider,
            descriptors=AGENT_CATALOG,
            max_attempts=settings.provider_max_attempts,
            base_delay=settings.provider_base_delay_seconds,
        )
        self.stream_session = StreamSession(
            provider=self.provider,
            max_attempts=settings.provider_max_attempts,
            base_delay=settings.provider_base_delay_seconds,
        )

        price_table = (
            build_price_table(json.loads(settings.price_table_json))
            if settings.price_table_json
            else dict(DEFAULT_PRICE_TABLE)
        )
        self.settlement_verifier = WebhookSettlementVerifier(
            policy=SettlementPolicy(
                secret=settings.webhook_secret.strip(),
                price_table=price_table,
                accepted_event_prefixes=tuple(settings.webhook_accepted_event_prefixes),
                reference_prefix=settings.purchase_reference_prefix,
            ),
            accounts=self.account_repo,
            ledger=self.settlement_ledger,
            audit_log=self.audit_log,
        )


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    settings = Settings()
    configure_logging(settings.log_level, service=settings.app_name)
    app.state.container = Container(settings)
    logger.info(
        "application_started",
        extra={
            "storage_backend": settings.storage_backend,
            "agent_count": len(app.state.container.registry.agent_ids()),
        },
    )
    yield
    logger.info("application_stopped")


app = FastAPI(title="Agent Gateway", version="0.1.0", lifespan=lifespan)

# Middleware is installed at import time, before settings are loaded in the lifespan.
app.add_middleware(
    CORSMiddleware,
    allow_origins=Settings().allowed_origins,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(
    request: Request,
    call_next: Callable[[Request], Awaitable[Response]],
) -> Response:
    request_id = request.headers.get("X-Request-Id", str(uuid4()))
    token = request_id_ctx.set(request_id)
    try:
        response = await call_next(request)
        response.headers["X-Request-Id"] = request_id
        return response
    finally:
        request_id_ctx.reset(token)


@app.exception_handler(AuthenticationError)
async def authentication_error_handler(_: Request, exc: AuthenticationError) -> JSONResponse:
    return JSONResponse(status_code=exc.status_code, content={"error": str(exc)})


@app.exception_handler(CallerError)
async def caller_error_handler(_: Request, exc: CallerError) -> JSONResponse:
    return JSONResponse(status_code=400, content={"error": str(exc)})


@app.exception_handler(RequestValidationError)
async def request_validation_handler(_: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "invalid_request", "details": _validation_details(exc)},
    )


@app.exception_handler(MalformedOutputError)
async def malformed_output_handler(_: Request, exc: MalformedOutputError) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": str(exc), "kind": "malformed_output", "retryable": True},
    )


@app.exception_handler(ProviderUnavailableError)
async def provider_unavailable_handler(
    _: Request, exc: ProviderUnavailableError
) -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": str(exc), "kind": "provider_unavailable", "retryable": exc.retryable},
    )


@app.get("/health")
async def health() -> dict[str, Any]:
    container = cast(Container, app.state.container)
    return {"status": "ok", "agents": len(container.registry.agent_ids())}


@app.get("/agents", response_model=list[AgentSummary], response_model_by_alias=True)
async def list_agents(
    _: Annotated[CallerIdentity, Depends(require_caller)],
) -> list[dict[str, Any]]:
    container = cast(Container, app.state.container)
    return container.registry.describe()


@app.post("/agents/execute", response_model=ExecuteResult)
async def execute_agent(
    payload: ExecutePayload,
    caller: Annotated[CallerIdentity, Depends(require_caller)],
) -> ExecuteResult:
    container = cast(Container, app.state.container)
    try:
        result = await container.registry.execute(payload.agent_id, payload.payload, caller)
    except (CallerError, MalformedOutputError, ProviderUnavailableError):
        raise
    except Exception as exc:
        logger.exception(
            "agent_execute_unhandled_error",
            extra={
                "agent_id": payload.agent_id,
                "user_id": caller.user_id,
                "error_type": type(exc).__name__,
            },
        )
        return _internal_error()

    return ExecuteResult(
        data=result.value,
        citations=[CitationModel(uri=item.uri, title=item.title) for item in result.citations],
    )


@app.post("/agents/stream")
async def stream_chat(
    payload: StreamPayload,
    caller: Annotated[CallerIdentity, Depends(require_caller)],
) -> Response:
    container = cast(Container, app.state.container)
    turn_state = parse_turn_state(entry.model_dump() for entry in payload.history)
    context = ChatContext(
        product_name=payload.context.product_name,
        persona=payload.context.persona,
        role=payload.context.role,
    )
    logger.info(
        "stream_requested",
        extra={"user_id": caller.user_id, "history_entries": len(turn_state.entries)},
    )
    return StreamingResponse(
        container.stream_session.stream_events(turn_state, context),
        media_type="text/event-stream",
        headers=SSE_HEADERS,
    )


@app.post("/webhooks/settlement")
async def settlement_webhook(request: Request) -> Response:
    container = cast(Container, app.state.container)
    raw_body = await request.body()
    signature = request.headers.get(container.settings.webhook_signature_header)
    try:
        outcome = await container.settlement_verifier.verify_and_settle(raw_body, signature)
    except SignatureInvalidError:
        return PlainTextResponse("Invalid Signature", status_code=401)
    except UnreadableWebhookError:
        return PlainTextResponse("Unreadable Body", status_code=400)
    return PlainTextResponse(WEBHOOK_RESPONSES[outcome.status], status_code=200)


def _internal_error() -> JSONResponse:
    return JSONResponse(
        status_code=500,
        content={"error": "internal_error", "kind": "internal", "retryable": False},
    )


def _validation_details(exc: RequestValidationError) -> list[dict[str, Any]]:
    return [
        {"loc": list(error.get("loc", ())), "msg": error.get("msg", "")}
        for error in exc.errors()
    ]
