"""
Request Form Metadata Schemas

Closed set of form payloads a request can carry, discriminated by `form_type`.
The progression engine never looks inside these; they are flattened only for
step conditions and form-field approver lookups.
"""

from datetime import date
from decimal import Decimal
from typing import Annotated, Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, TypeAdapter, model_validator


class CapexMetadata(BaseModel):
    """Capital expenditure request"""

    form_type: Literal["capex"] = "capex"
    amount: Decimal = Field(..., gt=0, description="Requested amount")
    currency: str = Field(default="USD", min_length=3, max_length=3)
    cost_center: str = Field(..., max_length=100)
    asset_category: Optional[str] = Field(None, max_length=100)
    justification: str = Field(..., min_length=1)
    expected_roi_percent: Optional[float] = None


class LeaveMetadata(BaseModel):
    """Leave of absence request"""

    form_type: Literal["leave"] = "leave"
    leave_type: Literal["annual", "sick", "parental", "unpaid", "other"] = "annual"
    start_date: date
    end_date: date
    reason: Optional[str] = None
    delegate_id: Optional[str] = Field(None, description="Colleague covering during absence")

    @model_validator(mode="after")
    def check_dates(self):
        if self.end_date < self.start_date:
            raise ValueError("end_date must not be before start_date")
        return self

    @property
    def days(self) -> int:
        return (self.end_date - self.start_date).days + 1


class TravelMetadata(BaseModel):
    """Travel authorization request"""

    form_type: Literal["travel"] = "travel"
    destination: str = Field(..., min_length=1, max_length=255)
    purpose: str = Field(..., min_length=1)
    departure_date: date
    return_date: date
    estimated_cost: Decimal = Field(default=Decimal("0"), ge=0)
    currency: str = Field(default="USD", min_length=3, max_length=3)
    requires_hotel: bool = False

    @model_validator(mode="after")
    def check_dates(self):
        if self.return_date < self.departure_date:
            raise ValueError("return_date must not be before departure_date")
        return self


class ExpenseItem(BaseModel):
    description: str
    amount: Decimal = Field(..., gt=0)


class ExpenseMetadata(BaseModel):
    """Expense reimbursement request"""

    form_type: Literal["expense"] = "expense"
    category: str = Field(..., max_length=100)
    incurred_on: date
    currency: str = Field(default="USD", min_length=3, max_length=3)
    items: List[ExpenseItem] = Field(..., min_length=1)

    @property
    def amount(self) -> Decimal:
        return sum((item.amount for item in self.items), Decimal("0"))


class GenericMetadata(BaseModel):
    """Free-form approval with a flat list of labelled answers"""

    form_type: Literal["generic"] = "generic"
    details: Optional[str] = None
    fields: Dict[str, Union[str, int, float, bool, None]] = Field(default_factory=dict)


RequestMetadata = Annotated[
    Union[CapexMetadata, LeaveMetadata, TravelMetadata, ExpenseMetadata, GenericMetadata],
    Field(discriminator="form_type"),
]

_metadata_adapter = TypeAdapter(RequestMetadata)


def parse_metadata(data: Optional[Dict[str, Any]]):
    """Validate a stored or submitted payload into its variant"""
    if not data:
        return GenericMetadata()
    return _metadata_adapter.validate_python(data)


def dump_metadata(metadata) -> Dict[str, Any]:
    if metadata is None:
        return GenericMetadata().model_dump(mode="json")
    return metadata.model_dump(mode="json")


def form_values(metadata) -> Dict[str, Any]:
    """Flatten a payload for conditions and form-field approver lookups"""
    if metadata is None:
        return {}
    values = metadata.model_dump(mode="json", exclude={"fields", "items"})
    if isinstance(metadata, GenericMetadata):
        values.update(metadata.fields)
    elif isinstance(metadata, ExpenseMetadata):
        values["amount"] = float(metadata.amount)
    elif isinstance(metadata, LeaveMetadata):
        values["days"] = metadata.days
    for key in ("amount", "estimated_cost"):
        if isinstance(values.get(key), str):
            values[key] = float(values[key])
    return values
