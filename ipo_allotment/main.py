from contextlib import asynccontextmanager

from fastapi import FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware

from ipo_allotment.config import settings
from ipo_allotment.logging_utils import configure_logging
from ipo_allotment.rate_limiter import client_identifier
from ipo_allotment.schemas import AllotmentCheckRequest, AllotmentCheckResponse, RegistrarSummary
from ipo_allotment.service import AllotmentError, allotment_service

configure_logging(settings.log_level)


@asynccontextmanager
async def lifespan(_: FastAPI):
    allotment_service.rate_limiter.start()
    try:
        yield
    finally:
        allotment_service.rate_limiter.stop()


app = FastAPI(title=settings.app_name, lifespan=lifespan)
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
    expose_headers=["X-RateLimit-Remaining", "X-RateLimit-Reset"],
)


@app.get('/health')
def health() -> dict[str, str]:
    return {'status': 'ok', 'env': settings.app_env}


@app.get(f'{settings.api_prefix}/registrars', response_model=list[RegistrarSummary])
def list_registrars() -> list[RegistrarSummary]:
    return allotment_service.list_registrars()


@app.post(f'{settings.api_prefix}/allotment/check', response_model=AllotmentCheckResponse)
def check_allotment(
    request: AllotmentCheckRequest,
    client_request: Request,
    response: Response,
) -> AllotmentCheckResponse:
    socket_host = None
    if settings.rate_limit_socket_fallback and client_request.client:
        socket_host = client_request.client.host
    client_key = client_identifier(client_request.headers, socket_host)
    try:
        result, decision = allotment_service.check(request, client_key=client_key)
    except AllotmentError as exc:
        raise HTTPException(
            status_code=exc.status_code,
            detail=exc.to_detail(),
            headers=exc.headers or None,
        ) from exc
    response.headers["X-RateLimit-Remaining"] = str(decision.remaining)
    return result
