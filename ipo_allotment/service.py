from __future__ import annotations

from datetime import date, datetime, timezone
import logging
from typing import Any

from ipo_allotment.config import settings
from ipo_allotment.rate_limiter import RateLimitDecision, RateLimiter
from ipo_allotment.registrar_fetcher import RegistrarFetcher
from ipo_allotment.schemas import (
    AllotmentCheckData,
    AllotmentCheckRequest,
    AllotmentCheckResponse,
    AllotmentStatus,
    CheckLogEntry,
    IpoRecord,
    IpoSummary,
    RegistrarProfile,
    RegistrarSummary,
)
from ipo_allotment.store import RecordStore, load_record_store
from ipo_allotment.validators import (
    mask_pan,
    validate_application_number,
    validate_dp_client_id,
    validate_pan,
)

logger = logging.getLogger(__name__)

PARAM_LABELS = {
    "pan": "PAN",
    "appNo": "Application Number",
    "dpId": "DP ID",
    "clientId": "Client ID",
}

# Fetch failures that reach the caller as an HTTP error, by outcome status.
FAILURE_STATUS_CODES = {
    AllotmentStatus.CAPTCHA: 503,
    AllotmentStatus.TIMEOUT: 504,
    AllotmentStatus.ERROR: 502,
}


class AllotmentError(Exception):
    def __init__(
        self,
        message: str,
        *,
        status_code: int = 400,
        status: AllotmentStatus | None = None,
        registrar: str | None = None,
        fallback_url: str | None = None,
        note: str | None = None,
        headers: dict[str, str] | None = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.status = status
        self.registrar = registrar
        self.fallback_url = fallback_url
        self.note = note
        self.headers = headers or {}

    def to_detail(self) -> dict[str, Any]:
        detail: dict[str, Any] = {"success": False, "error": self.message}
        if self.status is not None:
            detail["status"] = self.status.value
        if self.registrar:
            detail["registrar"] = self.registrar
        if self.note:
            detail["message"] = self.note
        if self.fallback_url:
            detail["fallbackUrl"] = self.fallback_url
        return detail


class RateLimitExceeded(AllotmentError):
    def __init__(self, reset_in: int):
        super().__init__(
            f"Rate limit exceeded. Please try again in {reset_in} seconds.",
            status_code=429,
            headers={"X-RateLimit-Remaining": "0", "X-RateLimit-Reset": str(reset_in)},
        )
        self.reset_in = reset_in


class AllotmentService:
    def __init__(self, store: RecordStore, fetcher: RegistrarFetcher, rate_limiter: RateLimiter):
        self.store = store
        self.fetcher = fetcher
        self.rate_limiter = rate_limiter

    def list_registrars(self) -> list[RegistrarSummary]:
        return [
            RegistrarSummary(
                name=registrar.name,
                slug=registrar.slug,
                base_url=registrar.base_url,
                required_params=list(registrar.required_params),
                response_format=registrar.response_format,
            )
            for registrar in self.store.list_registrars()
            if registrar.is_active
        ]

    def _validate_identifiers(self, request: AllotmentCheckRequest) -> None:
        if not request.ipo_slug:
            raise AllotmentError("Please select an IPO")
        if not request.pan and not request.app_no and not (request.dp_id and request.client_id):
            raise AllotmentError("Please provide PAN, Application Number, or DP ID + Client ID")
        if request.pan and not validate_pan(request.pan):
            raise AllotmentError("Invalid PAN format. PAN should be in format: ABCDE1234F")
        if request.app_no and not validate_application_number(request.app_no):
            raise AllotmentError("Invalid Application Number. It should be 8-12 digits.")
        if (request.dp_id or request.client_id) and not validate_dp_client_id(request.dp_id, request.client_id):
            raise AllotmentError("Invalid DP ID or Client ID. Both should be 8 digits.")

    def _format_allotment_date(self, value: date) -> str:
        return f"{value.day} {value:%B %Y}"

    def _resolve_registrar(self, ipo: IpoRecord) -> RegistrarProfile:
        registrar = self.store.get_registrar(ipo.registrar_slug) if ipo.registrar_slug else None
        if registrar is None:
            raise AllotmentError(
                "Registrar information is not available for this IPO",
                fallback_url=ipo.allotment_url,
            )
        if not registrar.is_active:
            raise AllotmentError(
                "Registrar is currently unavailable. Please try again later.",
                status_code=503,
                fallback_url=ipo.allotment_url or registrar.base_url,
            )
        return registrar

    def _build_params(
        self,
        request: AllotmentCheckRequest,
        ipo: IpoRecord,
        registrar: RegistrarProfile,
    ) -> dict[str, str]:
        supplied = {
            "pan": request.pan.upper() if request.pan else None,
            "appNo": request.app_no,
            "dpId": request.dp_id,
            "clientId": request.client_id,
        }
        params = {"company": ipo.slug}
        missing: list[str] = []
        for name in registrar.required_params:
            value = supplied.get(name)
            if value:
                params[name] = value
            else:
                missing.append(PARAM_LABELS.get(name, name))
        if missing:
            raise AllotmentError(
                f"{registrar.name} requires {', '.join(missing)} to check allotment",
                registrar=registrar.name,
                fallback_url=ipo.allotment_url or registrar.base_url,
            )
        return params

    def check(
        self,
        request: AllotmentCheckRequest,
        *,
        client_key: str,
    ) -> tuple[AllotmentCheckResponse, RateLimitDecision]:
        decision = self.rate_limiter.check(client_key)
        if not decision.allowed:
            logger.info("Rate limit reached, reset in %ss", decision.reset_in)
            raise RateLimitExceeded(decision.reset_in)
        remaining_header = {"X-RateLimit-Remaining": str(decision.remaining)}

        self._validate_identifiers(request)

        ipo = self.store.get_ipo(request.ipo_slug)
        if ipo is None:
            raise AllotmentError("IPO not found", status_code=404)
        if not ipo.is_allotment_live:
            note = (
                f"Allotment is expected on {self._format_allotment_date(ipo.allotment_date)}"
                if ipo.allotment_date
                else "Allotment date has not been announced yet"
            )
            raise AllotmentError("Allotment status is not yet available for this IPO", note=note)

        registrar = self._resolve_registrar(ipo)
        params = self._build_params(request, ipo, registrar)
        outcome = self.fetcher.fetch_allotment_status(registrar, params)

        self.store.log_check(
            CheckLogEntry(
                ipo_slug=ipo.slug,
                registrar_slug=registrar.slug,
                status=outcome.status if outcome.success else AllotmentStatus.ERROR,
                error_type=None if outcome.success else outcome.status,
                checked_at=datetime.now(timezone.utc),
            )
        )
        fallback_url = ipo.allotment_url or registrar.base_url

        if outcome.success and outcome.result is not None:
            result = outcome.result
            response = AllotmentCheckResponse(
                success=True,
                status=result.status,
                data=AllotmentCheckData(
                    shares=result.shares,
                    application_no=result.application_no,
                    refund_amount=result.refund_amount,
                    message=result.message,
                ),
                ipo=IpoSummary(name=ipo.name, slug=ipo.slug),
                registrar=registrar.name,
                timestamp=datetime.now(timezone.utc),
                masked_pan=mask_pan(request.pan) if request.pan else None,
            )
            return response, decision

        if outcome.status == AllotmentStatus.NOT_FOUND:
            response = AllotmentCheckResponse(
                success=False,
                status=outcome.status,
                ipo=IpoSummary(name=ipo.name, slug=ipo.slug),
                registrar=registrar.name,
                timestamp=datetime.now(timezone.utc),
                error=outcome.error,
                fallback_url=fallback_url,
            )
            return response, decision

        raise AllotmentError(
            outcome.error or "Failed to fetch allotment status",
            status_code=FAILURE_STATUS_CODES.get(outcome.status, 502),
            status=outcome.status,
            registrar=registrar.name,
            fallback_url=fallback_url,
            headers=remaining_header,
        )


def build_service() -> AllotmentService:
    store = load_record_store(
        registrars_file=settings.registrars_file,
        ipos_file=settings.ipos_file,
        max_log_entries=settings.check_log_max_entries,
    )
    fetcher = RegistrarFetcher(
        timeout_seconds=settings.request_timeout_seconds,
        verify_tls=settings.registrar_verify_tls,
        max_body_bytes=settings.registrar_max_body_bytes,
    )
    rate_limiter = RateLimiter(
        max_requests=settings.rate_limit_requests,
        window_seconds=settings.rate_limit_window_seconds,
        sweep_interval_seconds=settings.rate_limit_sweep_seconds,
    )
    return AllotmentService(store, fetcher, rate_limiter)


allotment_service = build_service()
