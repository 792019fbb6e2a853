from __future__ import annotations

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse

from gdpr.core.errors import GdprError, http_status_for
from gdpr.core.privacy.breach import EXPIRY_TASK_ID
from gdpr.core.privacy.models import BreachState
from gdpr.core.trace import new_trace_id, resolve_trace_id
from gdpr.web.models import (
    AccessDataRequest,
    AccessDataResponse,
    BreachInitiateRequest,
    BreachInitiateResponse,
    BreachStatusResponse,
    RequestListResponse,
    SettingResponse,
    SettingValue,
)


def _trace_id(request: Request) -> str:
    return resolve_trace_id(request.headers.get("x-trace-id") or getattr(getattr(request, "state", None), "trace_id", None))


def create_app(admin, *, logger=None) -> FastAPI:
    """
    Admin HTTP surface. Authentication is left to the host (reverse proxy or
    the surrounding admin application).
    """
    app = FastAPI(title="GDPR Admin", version="0.1.0")
    log = logger or admin.logger

    @app.middleware("http")
    async def trace_middleware(request: Request, call_next):
        request.state.trace_id = request.headers.get("x-trace-id") or new_trace_id()
        response = await call_next(request)
        response.headers["x-trace-id"] = request.state.trace_id
        return response

    @app.exception_handler(GdprError)
    async def gdpr_error_handler(request: Request, exc: GdprError):
        code = http_status_for(exc)
        if log:
            msg = f"{request.method} {request.url.path} -> {code} {exc.code}"
            (log.error if code >= 500 else log.info)(msg)
        content = {"detail": exc.user_message, "code": exc.code}
        missing = getattr(exc, "missing", None)
        if missing:
            content["missing"] = list(missing)
        return JSONResponse(status_code=code, content=content)

    @app.exception_handler(RequestValidationError)
    async def request_validation_handler(request: Request, exc: RequestValidationError):
        return JSONResponse(status_code=400, content={"detail": "Invalid request.", "code": "validation_error"})

    @app.get("/health")
    async def health():
        return {"status": "ok"}

    @app.get("/status")
    def status():
        return admin.status()

    # ---- data-subject requests ----
    @app.get("/requests", response_model=RequestListResponse)
    def list_requests():
        parts = admin.requests.partition()
        return RequestListResponse(
            badge=admin.requests.menu_badge(),
            tabs=admin.requests.tabs(),
            requests={t.value: {idx: r.model_dump(mode="json") for idx, r in group.items()} for t, group in parts.items()},
        )

    @app.post("/requests/{index}/confirm")
    def confirm_request(index: str, request: Request):
        req = admin.requests.confirm(index, trace_id=_trace_id(request))
        return {"index": index, "type": req.type.value, "confirmed": req.confirmed}

    # ---- settings ----
    @app.get("/settings/{name}", response_model=SettingResponse)
    def get_setting(name: str):
        return SettingResponse(name=name, value=admin.settings.load(name))

    @app.put("/settings/{name}", response_model=SettingResponse)
    def put_setting(name: str, body: SettingValue, request: Request):
        return SettingResponse(name=name, value=admin.settings.save(name, body.value, trace_id=_trace_id(request)))

    # ---- data breach ----
    @app.post("/data-breach", response_model=BreachInitiateResponse)
    def initiate_breach(body: BreachInitiateRequest, request: Request):
        fields = body.model_dump(exclude={"requester", "referer_path"})
        res = admin.breach.initiate_with_result(fields, requester=body.requester, referer_path=body.referer_path, trace_id=_trace_id(request))
        return BreachInitiateResponse(
            state=BreachState.PENDING_CONFIRMATION.value,
            email_sent=res.send_result.ok,
            expires_at=res.expires_at,
        )

    @app.get("/data-breach", response_model=BreachStatusResponse)
    def breach_status():
        rec = admin.breach.current()
        if rec is None:
            return BreachStatusResponse(state=admin.breach.state().value)
        return BreachStatusResponse(
            state=admin.breach.state().value,
            requester=rec.requester,
            initiated_at=rec.initiated_at,
            confirmed_at=rec.confirmed_at,
            expires_at=admin.scheduler.next_scheduled(EXPIRY_TASK_ID),
        )

    @app.get("/data-breach/confirm", response_model=BreachStatusResponse)
    def confirm_breach(request: Request, key: str = ""):
        rec = admin.breach.confirm(key, trace_id=_trace_id(request))
        return BreachStatusResponse(
            state=admin.breach.state().value,
            requester=rec.requester,
            initiated_at=rec.initiated_at,
            confirmed_at=rec.confirmed_at,
            expires_at=admin.scheduler.next_scheduled(EXPIRY_TASK_ID),
        )

    # ---- data access ----
    @app.post("/access-data", response_model=AccessDataResponse)
    def access_data(body: AccessDataRequest, request: Request):
        return admin.exporter.access_data(body.email, trace_id=_trace_id(request))

    return app
