from datetime import date
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

ServiceStatus = Literal["active", "inactive", "paused"]
OrderStatus = Literal["active", "expired", "cancelled"]


class DocumentModel(BaseModel):
    """Base for request bodies; stored documents use camelCase keys."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    def to_document(self, partial: bool = False) -> Dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_unset=partial)


# ========== Services ==========

class ServiceCreate(DocumentModel):
    """A resold subscription product (Netflix, ChatGPT Plus, ...)."""
    name: str = Field(..., min_length=1, description="Display name")
    status: ServiceStatus = Field("active", description="Only active services count as active on the dashboard")
    has_expiration: bool = Field(False, description="Orders for this service must carry an end date")
    image: str = Field("", description="Logo URL")


class ServiceUpdate(DocumentModel):
    name: Optional[str] = Field(None, min_length=1)
    status: Optional[ServiceStatus] = None
    has_expiration: Optional[bool] = None
    image: Optional[str] = None


# ========== Users (clients) ==========

class UserCreate(DocumentModel):
    client_name: str = Field(..., min_length=1)
    client_email: Optional[str] = None
    note: Optional[str] = None


class UserUpdate(DocumentModel):
    client_name: Optional[str] = Field(None, min_length=1)
    client_email: Optional[str] = None
    note: Optional[str] = None
    join_date: Optional[date] = None


# ========== Orders ==========

class OrderCreate(DocumentModel):
    """
    A sale of one service to one client.

    ``end_date`` is required when the service has an expiration and dropped
    otherwise; the store enforces this because it needs the service document.
    """
    client_id: str = Field(..., min_length=1)
    service_id: str = Field(..., min_length=1)
    payment_method_id: str = Field(..., min_length=1)
    start_date: date
    end_date: Optional[date] = None
    price: float = Field(..., ge=0)
    cost: float = Field(..., ge=0)
    status: OrderStatus = "active"


class OrderUpdate(DocumentModel):
    client_id: Optional[str] = Field(None, min_length=1)
    service_id: Optional[str] = Field(None, min_length=1)
    payment_method_id: Optional[str] = Field(None, min_length=1)
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    price: Optional[float] = Field(None, ge=0)
    cost: Optional[float] = Field(None, ge=0)
    status: Optional[OrderStatus] = None


# ========== Payment methods ==========

class PaymentMethodCreate(DocumentModel):
    type: str = Field(..., min_length=1, description="Label shown on orders, e.g. 'Visa'")
    logo: str = Field("", description="Logo URL")
    description: Optional[str] = None
    example_last4: str = Field("0000", pattern=r"^\d{4}$", description="Display only")


class PaymentMethodUpdate(DocumentModel):
    type: Optional[str] = Field(None, min_length=1)
    logo: Optional[str] = None
    description: Optional[str] = None
    example_last4: Optional[str] = Field(None, pattern=r"^\d{4}$")


# ========== Responses ==========

class CreatedResponse(BaseModel):
    id: str


class Page(BaseModel):
    items: List[Dict[str, Any]]
    total: int
    page: int
    page_size: int = Field(..., serialization_alias="pageSize")
    pages: int
