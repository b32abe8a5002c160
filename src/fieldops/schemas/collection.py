"""Task and collector API schemas."""

from __future__ import annotations

from datetime import date, datetime
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..models.domain import PaymentMethod, TaskPriority, TaskStatus


class DomainModel(BaseModel):
    """Response model populated straight from domain dataclasses."""

    model_config = ConfigDict(from_attributes=True)


class TaskLocationModel(DomainModel):
    longitude: Optional[float] = None
    latitude: Optional[float] = None
    address: Optional[str] = None


class TaskModel(DomainModel):
    task_id: str
    collector_id: str
    customer_id: str
    invoice_id: str
    tenant_id: str
    amount: float
    due_date: Optional[date] = None
    priority: TaskPriority
    status: TaskStatus
    location: Optional[TaskLocationModel] = None
    visited_at: Optional[datetime] = None
    collected_amount: Optional[float] = None
    collected_at: Optional[datetime] = None
    payment_method: Optional[PaymentMethod] = None
    notes: Optional[str] = None
    skip_reason: Optional[str] = None
    failure_reason: Optional[str] = None
    route_id: Optional[str] = None
    route_order: Optional[int] = None
    assigned_by: Optional[str] = None
    assigned_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    version: int


class NearbyTaskModel(BaseModel):
    distance_m: float
    task: TaskModel


class CollectRequest(BaseModel):
    amount: float = Field(..., description="Amount received; must not exceed the task amount.")
    payment_method: PaymentMethod
    signature: Optional[str] = Field(default=None, description="Signature image reference.")
    receipt_photo: Optional[str] = Field(default=None, description="Receipt photo reference.")
    notes: Optional[str] = None


class ReasonRequest(BaseModel):
    reason: Optional[str] = None


class CollectorStatsModel(DomainModel):
    total_collected: float
    total_visits: int
    successful_visits: int
    failed_visits: int
    skipped_visits: int
    total_distance: float
    avg_collection_time: float
    last_active: Optional[datetime] = None


class CollectorSettingsModel(DomainModel):
    auto_optimize_route: bool
    gps_tracking_enabled: bool
    notifications_enabled: bool


class CollectorModel(DomainModel):
    collector_id: str
    user_id: str
    tenant_id: str
    is_active: bool
    assigned_regions: List[str]
    daily_target: float
    monthly_target: float
    stats: CollectorStatsModel
    current_route_id: Optional[str] = None
    settings: CollectorSettingsModel
    created_at: datetime
    updated_at: datetime


class CollectorCreateRequest(BaseModel):
    user_id: str
    tenant_id: str
    daily_target: float = 0.0
    monthly_target: float = 0.0
    assigned_regions: List[str] = Field(default_factory=list)


class TodayPerformanceModel(DomainModel):
    tasks_assigned: int
    tasks_completed: int
    amount_collected: float
    target_progress: float


class CollectorStatsResponse(BaseModel):
    collector: CollectorModel
    success_rate: float
    today: TodayPerformanceModel


class AssignTasksRequest(BaseModel):
    customer_ids: List[str]
    tenant_id: str
    assigned_by: Optional[str] = Field(default=None, description="Operator creating the assignment.")
    priority: TaskPriority = TaskPriority.MEDIUM


class AssignTasksResponse(BaseModel):
    collector_id: str
    created: int
    tasks: List[TaskModel]


class InvoiceModel(DomainModel):
    invoice_id: str
    customer_id: str
    total_amount: float
    paid_amount: float
    status: str
