import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Literal, Optional, Union

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    PlainSerializer,
    ValidationInfo,
    field_validator,
    model_validator,
)
from pydantic.alias_generators import to_camel

RequiredParam = Literal["pan", "appNo", "dpId", "clientId"]

Amount = Annotated[Decimal, PlainSerializer(float, return_type=float, when_used="json")]


class ResponseFormat(str, Enum):
    HTML = "html"
    JSON = "json"


class AllotmentStatus(str, Enum):
    ALLOTTED = "allotted"
    NOT_ALLOTTED = "not_allotted"
    NOT_FOUND = "not_found"
    CAPTCHA = "captcha"
    TIMEOUT = "timeout"
    ERROR = "error"


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FrozenCamelModel(CamelModel):
    model_config = ConfigDict(frozen=True)


class HtmlParsingRules(FrozenCamelModel):
    status_selector: Optional[str] = None
    shares_selector: Optional[str] = None
    not_found_selectors: tuple[str, ...] = ()
    app_no_selector: Optional[str] = None
    refund_selector: Optional[str] = None


class JsonParsingRules(FrozenCamelModel):
    status_path: Optional[str] = None
    shares_path: Optional[str] = None
    app_no_path: Optional[str] = None
    refund_path: Optional[str] = None


ParsingRules = Union[HtmlParsingRules, JsonParsingRules]


class RegistrarProfile(FrozenCamelModel):
    name: str
    slug: str
    base_url: str
    endpoint_pattern: str
    required_params: tuple[RequiredParam, ...] = ()
    response_format: ResponseFormat = ResponseFormat.HTML
    parsing_rules: ParsingRules = Field(None, validate_default=True)
    is_active: bool = True

    @field_validator("required_params", mode="before")
    @classmethod
    def _decode_required_params(cls, value: object) -> object:
        # Admin storage keeps this as a JSON-encoded list.
        if isinstance(value, str):
            return json.loads(value) if value.strip() else []
        return value

    @field_validator("parsing_rules", mode="before")
    @classmethod
    def _select_rules_variant(cls, value: object, info: ValidationInfo) -> ParsingRules:
        if isinstance(value, str):
            value = json.loads(value) if value.strip() else {}
        if value is None:
            value = {}
        rules_type = (
            JsonParsingRules
            if info.data.get("response_format") == ResponseFormat.JSON
            else HtmlParsingRules
        )
        if isinstance(value, (HtmlParsingRules, JsonParsingRules)) and not isinstance(value, rules_type):
            raise ValueError(f"{type(value).__name__} does not match the registrar response format")
        return rules_type.model_validate(value)


class AllotmentResult(CamelModel):
    status: AllotmentStatus = AllotmentStatus.NOT_FOUND
    shares: int = Field(0, ge=0)
    application_no: Optional[str] = None
    refund_amount: Amount = Field(Decimal("0"), ge=0)
    message: Optional[str] = None

    @model_validator(mode="after")
    def _shares_override_status(self) -> "AllotmentResult":
        if self.shares > 0:
            self.status = AllotmentStatus.ALLOTTED
        return self


class FetchOutcome(BaseModel):
    success: bool
    status: AllotmentStatus
    error: Optional[str] = None
    result: Optional[AllotmentResult] = None


class IpoRecord(FrozenCamelModel):
    slug: str
    name: str
    registrar_slug: Optional[str] = None
    is_allotment_live: bool = False
    allotment_date: Optional[date] = None
    allotment_url: Optional[str] = None


class CheckLogEntry(BaseModel):
    ipo_slug: str
    registrar_slug: str
    status: AllotmentStatus
    error_type: Optional[AllotmentStatus] = None
    checked_at: datetime


class AllotmentCheckRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    ipo_slug: str = Field("", validation_alias=AliasChoices("ipo_slug", "ipoSlug"))
    pan: Optional[str] = Field(None, repr=False)
    app_no: Optional[str] = Field(None, repr=False, validation_alias=AliasChoices("app_no", "appNo"))
    dp_id: Optional[str] = Field(None, repr=False, validation_alias=AliasChoices("dp_id", "dpId"))
    client_id: Optional[str] = Field(
        None,
        repr=False,
        validation_alias=AliasChoices("client_id", "clientId"),
    )


class IpoSummary(CamelModel):
    name: str
    slug: str


class AllotmentCheckData(CamelModel):
    shares: int = 0
    application_no: Optional[str] = None
    refund_amount: Amount = Decimal("0")
    message: Optional[str] = None


class AllotmentCheckResponse(CamelModel):
    success: bool
    status: AllotmentStatus
    data: Optional[AllotmentCheckData] = None
    ipo: Optional[IpoSummary] = None
    registrar: Optional[str] = None
    timestamp: Optional[datetime] = None
    masked_pan: Optional[str] = Field(None, alias="maskedPAN")
    error: Optional[str] = None
    fallback_url: Optional[str] = None


class RegistrarSummary(CamelModel):
    name: str
    slug: str
    base_url: str
    required_params: list[str]
    response_format: ResponseFormat
