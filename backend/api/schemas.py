"""Pydantic schemas for API request/response validation."""

from datetime import datetime
from typing import List, Dict, Optional
from pydantic import BaseModel, Field, ConfigDict
from enum import Enum


# Enums matching domain models
class OrderStatusEnum(str, Enum):
    PENDING_ASSIGNMENT = "PENDING_ASSIGNMENT"
    ASSIGNED = "ASSIGNED"
    PICKED_UP = "PICKED_UP"
    OUT_FOR_DELIVERY = "OUT_FOR_DELIVERY"
    DELIVERED = "DELIVERED"
    CANCELLED = "CANCELLED"


# Order schemas
class AssignOrderRequest(BaseModel):
    agent_id: str = Field(min_length=1)


class DeliverOrderRequest(BaseModel):
    confirmation_code: str = Field(min_length=1, max_length=6)


class OrderResponse(BaseModel):
    order_id: str
    customer_id: str
    address: str
    product_id: str
    quantity: int
    total_amount: float
    status: OrderStatusEnum
    delivery_agent_id: Optional[str] = None
    warehouse_id: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    created_at: datetime
    updated_at: Optional[datetime] = None
    delivered_at: Optional[datetime] = None
    version: int

    model_config = ConfigDict(from_attributes=True)


# Dispatch schemas
class ClusterReportSchema(BaseModel):
    anchor_order_id: str
    order_ids: List[str]
    capacity: str
    outcome: str
    agent_id: Optional[str] = None
    error_kind: Optional[str] = None
    error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class DispatchReportResponse(BaseModel):
    pass_id: str
    started_at: datetime
    finished_at: Optional[datetime] = None
    eligible_count: int
    deferred_count: int
    missing_geo_order_ids: List[str]
    assigned_order_ids: List[str]
    clusters: List[ClusterReportSchema]
    error: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class SchedulerStatusResponse(BaseModel):
    running: bool
    passes_completed: int
    tick_interval_seconds: float
    last_report: Optional[DispatchReportResponse] = None


# Error schemas
class ErrorResponse(BaseModel):
    error: str
    detail: Optional[str] = None
    timestamp: datetime = Field(default_factory=datetime.now)


# Health check schema
class HealthResponse(BaseModel):
    status: str
    timestamp: datetime = Field(default_factory=datetime.now)
    version: str = "1.0.0"
    components: Dict[str, str]
