from decimal import Decimal

import pytest

from ipo_allotment.parsers import (
    ParseError,
    classify_status,
    get_nested_value,
    parse_html_response,
    parse_json_response,
)
from ipo_allotment.registrars import REGISTRAR_BY_SLUG
from ipo_allotment.schemas import AllotmentStatus, HtmlParsingRules, JsonParsingRules


def test_classify_status_phrases():
    assert classify_status("Shares Allotted") == AllotmentStatus.ALLOTTED
    assert classify_status("ALLOCATED") == AllotmentStatus.ALLOTTED
    assert classify_status("Success") == AllotmentStatus.ALLOTTED
    assert classify_status("Not Allotted") == AllotmentStatus.NOT_ALLOTTED
    assert classify_status("not allocated") == AllotmentStatus.NOT_ALLOTTED
    assert classify_status("Pending") is None
    assert classify_status("  ") is None


def test_html_share_count_overrides_textual_status():
    html = '<div id="status">Not Allotted</div><div id="shares">5 Shares</div>'
    rules = HtmlParsingRules(status_selector="#status", shares_selector="#shares")

    result = parse_html_response(html, rules)

    assert result.status == AllotmentStatus.ALLOTTED
    assert result.shares == 5


def test_html_not_allotted_without_shares():
    html = '<div id="status">Not Allotted</div><div id="shares">0</div>'
    rules = HtmlParsingRules(status_selector="#status", shares_selector="#shares")

    result = parse_html_response(html, rules)

    assert result.status == AllotmentStatus.NOT_ALLOTTED
    assert result.shares == 0


def test_html_not_found_short_circuits_other_rules():
    html = """
    <p class="no-record">No record found for this PAN</p>
    <span id="status">Allotted</span><span id="shares">12</span><span id="app">1234567890</span>
    """
    rules = HtmlParsingRules(
        status_selector="#status",
        shares_selector="#shares",
        app_no_selector="#app",
        not_found_selectors=[".missing", ".no-record"],
    )

    result = parse_html_response(html, rules)

    assert result.status == AllotmentStatus.NOT_FOUND
    assert result.shares == 0
    assert result.application_no is None
    assert result.message == "No record found for this PAN"


def test_html_not_found_with_empty_text_uses_fallback_message():
    rules = HtmlParsingRules(not_found_selectors=["#none"])
    result = parse_html_response('<div id="none"></div>', rules)
    assert result.status == AllotmentStatus.NOT_FOUND
    assert result.message == "No record found for the provided details"


def test_html_extracts_application_number_and_refund():
    html = """
    <span class="app">  1234567890 </span>
    <span class="refund">Refund: Rs. 1,23,456.50</span>
    """
    rules = HtmlParsingRules(app_no_selector=".app", refund_selector=".refund")

    result = parse_html_response(html, rules)

    assert result.application_no == "1234567890"
    assert result.refund_amount == Decimal("123456.50")
    assert result.status == AllotmentStatus.NOT_FOUND


def test_html_missing_rules_and_matches_are_skipped():
    result = parse_html_response("<html><body>nothing here</body></html>", HtmlParsingRules(
        status_selector="#status",
        shares_selector="#shares",
    ))
    assert result.status == AllotmentStatus.NOT_FOUND
    assert result.shares == 0
    assert result.refund_amount == 0
    assert result.message is None


def test_html_jquery_contains_and_last_selectors():
    html = """
    <table>
      <tr><td>Application No</td><td>987654321</td></tr>
      <tr><td>Status</td><td>Allotted</td></tr>
      <tr><td>Shares</td><td>42</td></tr>
    </table>
    """
    rules = REGISTRAR_BY_SLUG["bigshare"].parsing_rules

    result = parse_html_response(html, rules)

    assert result.status == AllotmentStatus.ALLOTTED
    assert result.shares == 42
    assert result.application_no == "987654321"


def test_html_kfintech_adjacent_cell_rules():
    html = """
    <table>
      <tr><td>Application Number</td><td>11223344</td></tr>
      <tr><td>Shares Applied</td><td>30</td></tr>
    </table>
    <div class="allotment-status">Not Allotted</div>
    """
    rules = REGISTRAR_BY_SLUG["kfintech"].parsing_rules

    result = parse_html_response(html, rules)

    assert result.status == AllotmentStatus.ALLOTTED
    assert result.shares == 30
    assert result.application_no == "11223344"


def test_html_invalid_selector_is_parse_error():
    with pytest.raises(ParseError):
        parse_html_response("<div></div>", HtmlParsingRules(status_selector="div[[["))


def test_get_nested_value_walks_dicts_and_lists():
    data = {"data": {"rows": [{"shares": 10}]}, "flag": None}
    assert get_nested_value(data, "data.rows.0.shares") == 10
    assert get_nested_value(data, "data.rows.1.shares") is None
    assert get_nested_value(data, "data.missing.shares") is None
    assert get_nested_value(data, "flag.deeper") is None
    assert get_nested_value("text", "a") is None


def test_json_share_count_overrides_textual_status():
    data = {"result": {"status": "Not Allotted", "shares": 5}}
    rules = JsonParsingRules(status_path="result.status", shares_path="result.shares")

    result = parse_json_response(data, rules)

    assert result.status == AllotmentStatus.ALLOTTED
    assert result.shares == 5


def test_json_full_extraction():
    data = {
        "data": {
            "allotment": {
                "status": "Not Allotted",
                "shares": "0",
                "applicationNo": 1234567890,
                "refund": 14250.0,
            }
        }
    }
    rules = JsonParsingRules(
        status_path="data.allotment.status",
        shares_path="data.allotment.shares",
        app_no_path="data.allotment.applicationNo",
        refund_path="data.allotment.refund",
    )

    result = parse_json_response(data, rules)

    assert result.status == AllotmentStatus.NOT_ALLOTTED
    assert result.shares == 0
    assert result.application_no == "1234567890"
    assert result.refund_amount == Decimal("14250")


def test_json_partial_rules_and_missing_paths():
    rules = JsonParsingRules(shares_path="a.b.c")
    result = parse_json_response({"a": {}}, rules)
    assert result.status == AllotmentStatus.NOT_FOUND
    assert result.shares == 0
    assert result.application_no is None


@pytest.mark.parametrize(
    "shares, expected_shares, expected_status",
    [
        ("-5", 0, AllotmentStatus.NOT_FOUND),
        (-5, 0, AllotmentStatus.NOT_FOUND),
        ("+7", 7, AllotmentStatus.ALLOTTED),
        ("1,200", 1200, AllotmentStatus.ALLOTTED),
    ],
)
def test_json_signed_share_strings(shares, expected_shares, expected_status):
    result = parse_json_response({"s": shares}, JsonParsingRules(shares_path="s"))
    assert result.shares == expected_shares
    assert result.status == expected_status


def test_json_string_body_is_decoded():
    result = parse_json_response('{"s": "allotted"}', JsonParsingRules(status_path="s"))
    assert result.status == AllotmentStatus.ALLOTTED


def test_json_invalid_body_is_parse_error():
    with pytest.raises(ParseError):
        parse_json_response("{not json", JsonParsingRules(status_path="s"))
