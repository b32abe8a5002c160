"""Routing request/response schemas."""

from __future__ import annotations

import datetime as dt
from typing import List, Optional

from pydantic import BaseModel, Field

from ..models.domain import RouteStatus
from .collection import CollectorStatsModel, DomainModel, InvoiceModel, TaskModel


class GeoPointModel(DomainModel):
    latitude: float
    longitude: float
    address: Optional[str] = None


class GPSSampleModel(DomainModel):
    longitude: float
    latitude: float
    timestamp: dt.datetime
    accuracy: Optional[float] = None


class RouteStatsModel(DomainModel):
    total_collected: float
    total_tasks: int
    completed_tasks: int
    skipped_tasks: int
    failed_tasks: int
    actual_distance: float
    actual_duration: int


class RouteModel(DomainModel):
    route_id: str
    collector_id: str
    tenant_id: Optional[str] = None
    date: dt.date
    tasks: List[str]
    optimized_order: List[str]
    start_location: Optional[GeoPointModel] = None
    end_location: Optional[GeoPointModel] = None
    total_distance: float
    estimated_duration: float
    status: RouteStatus
    actual_path: List[GPSSampleModel]
    started_at: Optional[dt.datetime] = None
    completed_at: Optional[dt.datetime] = None
    stats: RouteStatsModel
    optimized_by: Optional[str] = None
    optimized_at: Optional[dt.datetime] = None
    notes: Optional[str] = None
    version: int


class RouteStopModel(DomainModel):
    task_id: str
    sequence: int
    latitude: float
    longitude: float
    distance_from_prev_m: float
    arrival_min: float


class OptimizeRequest(BaseModel):
    collector_id: str
    task_ids: List[str] = Field(..., description="Tasks to sequence; must belong to the collector.")
    start_location: GeoPointModel
    persist: bool = Field(default=False, description="Write JSON/CSV/GeoJSON exports for the run.")
    notes: Optional[str] = Field(default=None, description="Free-form notes captured with the route.")


class OptimizeResponse(BaseModel):
    route: RouteModel
    stops: List[RouteStopModel]
    excluded_task_ids: List[str]


class TodayRouteResponse(BaseModel):
    route: RouteModel
    tasks: List[TaskModel]


class TrackRequest(BaseModel):
    route_id: str
    latitude: float
    longitude: float
    accuracy: Optional[float] = None


class TrackResponse(BaseModel):
    route_id: str
    sample: GPSSampleModel
    actual_distance: float
    samples: int


class TransitionResponse(BaseModel):
    task: TaskModel
    collector_stats: Optional[CollectorStatsModel] = None
    route_stats: Optional[RouteStatsModel] = None
    invoice: Optional[InvoiceModel] = None
    reconciliation_errors: List[str] = Field(default_factory=list)
