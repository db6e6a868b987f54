"""Fetch allotment status from an IPO registrar and normalize the reply.

Each call makes exactly one outbound request. The request and the body read
share a single deadline of timeout_seconds, and the body is capped at
max_body_bytes. Every failure mode (timeout, HTTP status, bot challenge,
unparsable body) comes back as a FetchOutcome; nothing raised by the network
or the parsers escapes fetch_allotment_status.

The built URL carries the applicant's identifiers, so it is never logged.
"""

from __future__ import annotations

from concurrent.futures import ThreadPoolExecutor, TimeoutError as FuturesTimeoutError
from dataclasses import dataclass
import json
import logging
import random
import time
from typing import Mapping, Sequence
from urllib.parse import quote

import requests
import urllib3

from ipo_allotment.parsers import PARSE_FAILURE_MESSAGE, ParseError, parse_html_response, parse_json_response
from ipo_allotment.schemas import (
    AllotmentStatus,
    FetchOutcome,
    HtmlParsingRules,
    JsonParsingRules,
    RegistrarProfile,
    ResponseFormat,
)

logger = logging.getLogger(__name__)

USER_AGENTS = (
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/120.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:121.0) Gecko/20100101 Firefox/121.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.1 Safari/605.1.15",
)

HTML_ACCEPT = "text/html,application/xhtml+xml,application/xml;q=0.9,*/*;q=0.8"
JSON_ACCEPT = "application/json"

CAPTCHA_MARKERS = ("captcha", "recaptcha")

TIMEOUT_MESSAGE = "Request timed out. The registrar may be experiencing high traffic."
CAPTCHA_MESSAGE = "CAPTCHA detected. Please check directly on the registrar website."
NOT_FOUND_MESSAGE = "No allotment data found for the provided details"
UNREACHABLE_MESSAGE = "Unable to reach the registrar. Please try again later."
UNEXPECTED_MESSAGE = "Failed to fetch allotment status"
TOO_LARGE_MESSAGE = "Registrar response was too large to process"

MAX_BODY_BYTES = 2_000_000
CHUNK_SIZE = 8192


def build_url(template: str, params: Mapping[str, str]) -> str:
    url = template
    for key, value in params.items():
        url = url.replace(f"{{{key}}}", quote(str(value), safe=""))
    return url


def is_captcha_page(body: str) -> bool:
    lowered = body.lower()
    return any(marker in lowered for marker in CAPTCHA_MARKERS)


@dataclass
class RegistrarReply:
    status_code: int
    body: bytes = b""
    encoding: str | None = None

    @property
    def ok(self) -> bool:
        return self.status_code < 400

    @property
    def text(self) -> str:
        return self.body.decode(self.encoding or "utf-8", errors="replace")


class ResponseTooLarge(Exception):
    pass


class RegistrarFetcher:
    def __init__(
        self,
        timeout_seconds: float = 10,
        verify_tls: bool = True,
        user_agents: Sequence[str] = USER_AGENTS,
        max_body_bytes: int = MAX_BODY_BYTES,
    ):
        self.timeout_seconds = timeout_seconds
        self.verify_tls = verify_tls
        self.user_agents = tuple(user_agents) or USER_AGENTS
        self.max_body_bytes = max_body_bytes
        if not verify_tls:
            urllib3.disable_warnings(urllib3.exceptions.InsecureRequestWarning)

    def _headers(self, response_format: ResponseFormat) -> dict[str, str]:
        return {
            "User-Agent": random.choice(self.user_agents),
            "Accept": JSON_ACCEPT if response_format == ResponseFormat.JSON else HTML_ACCEPT,
            "Accept-Language": "en-US,en;q=0.9",
            "Cache-Control": "no-cache",
        }

    def _failure(self, registrar: RegistrarProfile, status: AllotmentStatus, error: str) -> FetchOutcome:
        logger.info("Registrar %s check finished: %s", registrar.slug, status.value)
        return FetchOutcome(success=False, status=status, error=error)

    def fetch_allotment_status(
        self,
        registrar: RegistrarProfile,
        params: Mapping[str, str],
    ) -> FetchOutcome:
        try:
            return self._fetch(registrar, params)
        except Exception:
            logger.exception("Unexpected failure checking registrar %s", registrar.slug)
            return FetchOutcome(success=False, status=AllotmentStatus.ERROR, error=UNEXPECTED_MESSAGE)

    def _download(
        self,
        url: str,
        headers: dict[str, str],
        deadline: float,
        in_flight: list[requests.Response],
    ) -> RegistrarReply:
        response = requests.get(
            url,
            headers=headers,
            timeout=self.timeout_seconds,
            verify=self.verify_tls,
            stream=True,
        )
        in_flight.append(response)
        try:
            if not response.ok:
                return RegistrarReply(status_code=response.status_code)
            chunks: list[bytes] = []
            size = 0
            try:
                for chunk in response.iter_content(chunk_size=CHUNK_SIZE):
                    if time.monotonic() > deadline:
                        raise requests.Timeout("Registrar response exceeded the deadline")
                    size += len(chunk)
                    if size > self.max_body_bytes:
                        raise ResponseTooLarge(f"Registrar response exceeded {self.max_body_bytes} bytes")
                    chunks.append(chunk)
            except requests.ConnectionError as exc:
                # iter_content re-raises urllib3 read timeouts as ConnectionError.
                if exc.args and isinstance(exc.args[0], urllib3.exceptions.ReadTimeoutError):
                    raise requests.Timeout("Registrar stopped sending its response") from exc
                raise
            return RegistrarReply(response.status_code, b"".join(chunks), response.encoding)
        finally:
            response.close()

    def _request(self, url: str, headers: dict[str, str]) -> RegistrarReply:
        # The whole exchange, body included, shares one deadline.
        deadline = time.monotonic() + self.timeout_seconds
        in_flight: list[requests.Response] = []
        executor = ThreadPoolExecutor(max_workers=1)
        future = executor.submit(self._download, url, headers, deadline, in_flight)
        try:
            return future.result(timeout=self.timeout_seconds)
        except FuturesTimeoutError as exc:
            future.cancel()
            for response in in_flight:
                try:
                    response.close()
                except OSError:
                    logger.debug("Closing a stalled registrar response failed", exc_info=True)
            raise requests.Timeout("Registrar response exceeded the deadline") from exc
        finally:
            executor.shutdown(wait=False, cancel_futures=True)

    def _fetch(self, registrar: RegistrarProfile, params: Mapping[str, str]) -> FetchOutcome:
        url = build_url(registrar.endpoint_pattern, params)
        try:
            response = self._request(url, self._headers(registrar.response_format))
        except requests.Timeout:
            return self._failure(registrar, AllotmentStatus.TIMEOUT, TIMEOUT_MESSAGE)
        except ResponseTooLarge:
            logger.warning("Registrar %s response exceeded %s bytes", registrar.slug, self.max_body_bytes)
            return self._failure(registrar, AllotmentStatus.ERROR, TOO_LARGE_MESSAGE)
        except requests.RequestException as exc:
            logger.warning("Registrar %s unreachable: %s", registrar.slug, type(exc).__name__)
            return self._failure(registrar, AllotmentStatus.ERROR, UNREACHABLE_MESSAGE)

        if not response.ok:
            logger.warning("Registrar %s returned HTTP %s", registrar.slug, response.status_code)
            if response.status_code == 404:
                return self._failure(registrar, AllotmentStatus.NOT_FOUND, NOT_FOUND_MESSAGE)
            return self._failure(
                registrar,
                AllotmentStatus.ERROR,
                f"Registrar returned status {response.status_code}",
            )

        try:
            if registrar.response_format == ResponseFormat.JSON:
                rules = registrar.parsing_rules
                if not isinstance(rules, JsonParsingRules):
                    raise ParseError("Registrar rules do not match its response format")
                try:
                    payload = json.loads(response.body)
                except ValueError as exc:
                    raise ParseError(PARSE_FAILURE_MESSAGE) from exc
                result = parse_json_response(payload, rules)
            else:
                body = response.text
                if is_captcha_page(body):
                    return self._failure(registrar, AllotmentStatus.CAPTCHA, CAPTCHA_MESSAGE)
                rules = registrar.parsing_rules
                if not isinstance(rules, HtmlParsingRules):
                    raise ParseError("Registrar rules do not match its response format")
                result = parse_html_response(body, rules)
        except ParseError as exc:
            logger.debug("Registrar %s parse failure", registrar.slug, exc_info=exc)
            return self._failure(registrar, AllotmentStatus.ERROR, PARSE_FAILURE_MESSAGE)

        logger.info("Registrar %s check finished: %s", registrar.slug, result.status.value)
        return FetchOutcome(success=True, status=result.status, result=result)
