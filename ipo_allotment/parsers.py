from __future__ import annotations

from decimal import Decimal, InvalidOperation
import json
import math
import re
from typing import Any

from bs4 import BeautifulSoup
from bs4.element import Tag
from soupsieve import SelectorSyntaxError

from ipo_allotment.schemas import (
    AllotmentResult,
    AllotmentStatus,
    HtmlParsingRules,
    JsonParsingRules,
)

PARSE_FAILURE_MESSAGE = "Failed to parse registrar response"
NOT_FOUND_FALLBACK_MESSAGE = "No record found for the provided details"

_JQUERY_CONTAINS = re.compile(r":contains\(")
_JQUERY_POSITION = re.compile(r":(first|last)\s*$")
_SHARES_PATTERN = re.compile(r"[0-9]+")
_SIGNED_INT_PATTERN = re.compile(r"[+-]?[0-9]+")
_AMOUNT_PATTERN = re.compile(r"[0-9][0-9,]*(?:\.[0-9]+)?")


class ParseError(Exception):
    pass


def classify_status(text: str) -> AllotmentStatus | None:
    lowered = text.strip().lower()
    if not lowered:
        return None
    # Negative phrases contain the positive ones, so they are tested first.
    if "not allotted" in lowered or "not allocated" in lowered:
        return AllotmentStatus.NOT_ALLOTTED
    if "allotted" in lowered or "allocated" in lowered or "success" in lowered:
        return AllotmentStatus.ALLOTTED
    return None


def _parse_shares(value: object) -> int | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value if value >= 0 else None
    if isinstance(value, float):
        return int(value) if math.isfinite(value) and value >= 0 else None
    match = _SHARES_PATTERN.search(str(value))
    if not match:
        return None
    return int(match.group(0))


def _parse_json_shares(value: object) -> int | None:
    # Strings keep their sign; negative counts are dropped.
    if not isinstance(value, str):
        return _parse_shares(value)
    match = _SIGNED_INT_PATTERN.match(value.strip().replace(",", ""))
    if not match:
        return None
    shares = int(match.group(0))
    return shares if shares >= 0 else None


def _parse_amount(value: object) -> Decimal | None:
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and not math.isfinite(value):
            return None
        return Decimal(str(value)) if value >= 0 else None
    match = _AMOUNT_PATTERN.search(str(value))
    if not match:
        return None
    try:
        return Decimal(match.group(0).replace(",", ""))
    except InvalidOperation:
        return None


def _selector_groups(selector: str) -> list[str]:
    """Split a selector list on top-level commas, leaving commas inside quotes or parens alone."""
    groups: list[str] = []
    depth = 0
    quote: str | None = None
    current: list[str] = []
    for char in selector:
        if quote:
            if char == quote:
                quote = None
        elif char in "\"'":
            quote = char
        elif char == "(":
            depth += 1
        elif char == ")":
            depth = max(0, depth - 1)
        elif char == "," and depth == 0:
            groups.append("".join(current).strip())
            current = []
            continue
        current.append(char)
    groups.append("".join(current).strip())
    return [group for group in groups if group]


def select_elements(soup: BeautifulSoup, selector: str) -> list[Tag]:
    """Run a registrar selector, accepting jQuery-style :contains() and trailing :first/:last."""
    matches: list[Tag] = []
    seen: set[int] = set()
    for group in _selector_groups(selector):
        position = None
        suffix = _JQUERY_POSITION.search(group)
        if suffix:
            position = suffix.group(1)
            group = group[: suffix.start()].rstrip()
        group = _JQUERY_CONTAINS.sub(":-soup-contains(", group)
        try:
            found = soup.select(group) if group else []
        except SelectorSyntaxError as exc:
            raise ParseError(f"Invalid selector {selector!r}") from exc
        if found and position == "first":
            found = found[:1]
        elif found and position == "last":
            found = found[-1:]
        for element in found:
            if id(element) in seen:
                continue
            seen.add(id(element))
            matches.append(element)
    return matches


def _selected_text(soup: BeautifulSoup, selector: str | None) -> str | None:
    if not selector:
        return None
    elements = select_elements(soup, selector)
    if not elements:
        return None
    return "".join(element.get_text() for element in elements).strip()


def _extract_html(html: str, rules: HtmlParsingRules) -> AllotmentResult:
    soup = BeautifulSoup(html, "html.parser")

    for selector in rules.not_found_selectors:
        elements = select_elements(soup, selector)
        if elements:
            text = "".join(element.get_text() for element in elements).strip()
            return AllotmentResult(
                status=AllotmentStatus.NOT_FOUND,
                message=text or NOT_FOUND_FALLBACK_MESSAGE,
            )

    fields: dict[str, Any] = {}

    status_text = _selected_text(soup, rules.status_selector)
    if status_text is not None:
        status = classify_status(status_text)
        if status is not None:
            fields["status"] = status

    shares_text = _selected_text(soup, rules.shares_selector)
    if shares_text is not None:
        shares = _parse_shares(shares_text)
        if shares is not None:
            fields["shares"] = shares

    app_no = _selected_text(soup, rules.app_no_selector)
    if app_no is not None:
        fields["application_no"] = app_no

    refund_text = _selected_text(soup, rules.refund_selector)
    if refund_text is not None:
        refund = _parse_amount(refund_text)
        if refund is not None:
            fields["refund_amount"] = refund

    return AllotmentResult(**fields)


def parse_html_response(html: str, rules: HtmlParsingRules) -> AllotmentResult:
    try:
        return _extract_html(html, rules)
    except ParseError:
        raise
    except Exception as exc:
        raise ParseError(PARSE_FAILURE_MESSAGE) from exc


def get_nested_value(data: object, path: str) -> object:
    """Walk a dot separated path through dicts (and lists by index); None when any segment is missing."""
    current = data
    for segment in path.split("."):
        if isinstance(current, dict):
            if segment not in current:
                return None
            current = current[segment]
        elif isinstance(current, list) and segment.isdigit():
            index = int(segment)
            if index >= len(current):
                return None
            current = current[index]
        else:
            return None
    return current


def _lookup(data: object, path: str | None) -> object:
    if not path:
        return None
    value = get_nested_value(data, path)
    if value == "":
        return None
    return value


def _extract_json(data: object, rules: JsonParsingRules) -> AllotmentResult:
    fields: dict[str, Any] = {}

    status_value = _lookup(data, rules.status_path)
    if status_value is not None and not isinstance(status_value, (dict, list)):
        status = classify_status(str(status_value))
        if status is not None:
            fields["status"] = status

    shares = _parse_json_shares(_lookup(data, rules.shares_path))
    if shares is not None:
        fields["shares"] = shares

    app_no = _lookup(data, rules.app_no_path)
    if app_no is not None and not isinstance(app_no, (dict, list)):
        fields["application_no"] = str(app_no).strip()

    refund = _parse_amount(_lookup(data, rules.refund_path))
    if refund is not None:
        fields["refund_amount"] = refund

    return AllotmentResult(**fields)


def parse_json_response(data: object, rules: JsonParsingRules) -> AllotmentResult:
    if isinstance(data, (str, bytes)):
        try:
            data = json.loads(data)
        except ValueError as exc:
            raise ParseError(PARSE_FAILURE_MESSAGE) from exc
    try:
        return _extract_json(data, rules)
    except Exception as exc:
        raise ParseError(PARSE_FAILURE_MESSAGE) from exc
