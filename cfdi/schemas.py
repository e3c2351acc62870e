"""
Request payloads accepted by the issuance API.

Only shape and type are checked here; fiscal rules (amounts, balances, status)
belong to the services, which report their own field paths.
"""
from __future__ import annotations

from datetime import datetime
from decimal import Decimal
from typing import Literal, Optional, Type, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError

from cfdi.exceptions import ValidationError

SchemaT = TypeVar("SchemaT", bound=BaseModel)


class _Payload(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, extra="ignore")


class ConceptIn(_Payload):
    product_key: str = Field(min_length=1, max_length=8)
    unit_key: str = Field(default="E48", min_length=1, max_length=3)
    description: str = Field(min_length=1, max_length=1000)
    tax_object: str = Field(default="02", min_length=2, max_length=2)
    quantity: Decimal = Field(max_digits=18, decimal_places=6)
    unit_price: Decimal = Field(max_digits=18, decimal_places=6)
    discount: Decimal = Field(default=Decimal("0"), max_digits=14, decimal_places=2)


class InvoiceIn(_Payload):
    customer_id: int
    series: Optional[str] = Field(default=None, max_length=10)
    cfdi_use: Optional[str] = Field(default=None, max_length=4)
    payment_method: Literal["PUE", "PPD"] = "PUE"
    payment_form: str = Field(default="99", min_length=2, max_length=2)
    payment_conditions: str = Field(default="", max_length=255)
    currency: str = Field(default="MXN", min_length=3, max_length=3)
    issue_date: Optional[datetime] = None
    relation_type: str = Field(default="", max_length=2)
    related_uuids: list[str] = Field(default_factory=list)
    concepts: list[ConceptIn] = Field(min_length=1)

    @field_validator("currency", mode="before")
    @classmethod
    def _upper_currency(cls, value):
        return value.upper() if isinstance(value, str) else value

    @model_validator(mode="after")
    def _check_relations(self) -> "InvoiceIn":
        if self.related_uuids and not self.relation_type:
            raise ValueError("related_uuids require relation_type")
        if self.payment_method == "PPD" and self.payment_form != "99":
            raise ValueError("PPD invoices must use payment form 99")
        return self


class RelatedDocumentIn(_Payload):
    invoice_id: int
    amount: Decimal = Field(max_digits=14, decimal_places=2)


class PaymentIn(_Payload):
    customer_id: int
    series: Optional[str] = Field(default=None, max_length=10)
    payment_date: datetime
    payment_form: str = Field(min_length=2, max_length=2)
    currency: str = Field(default="MXN", min_length=3, max_length=3)
    operation_number: str = Field(default="", max_length=100)
    total_amount: Optional[Decimal] = Field(default=None, max_digits=14, decimal_places=2)
    related_documents: list[RelatedDocumentIn] = Field(min_length=1)

    @field_validator("payment_form")
    @classmethod
    def _no_pending_form(cls, value: str):
        if value == "99":
            raise ValueError("payment form 99 is not allowed on payment complements")
        return value


class SeriesIn(_Payload):
    series: str = Field(min_length=1, max_length=10)
    document_type: Literal["I", "P"] = "I"
    initial_folio: int = Field(default=1, ge=1)


class CancelIn(_Payload):
    reason: Literal["01", "02", "03", "04"] = "02"


def parse_request(model: Type[SchemaT], data) -> SchemaT:
    """Validate `data` against `model`, reporting the first problem as a ValidationError."""
    try:
        return model.model_validate(data or {})
    except PydanticValidationError as exc:
        error = exc.errors()[0]
        field = ".".join(str(part) for part in error.get("loc", ())) or None
        message = error.get("msg", "invalid value")
        if message.startswith("Value error, "):
            message = message[len("Value error, "):]
        raise ValidationError(message, field=field) from exc
