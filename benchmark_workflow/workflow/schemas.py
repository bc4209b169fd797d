"""
Request models for the workflow API.

Reason and code fields are deliberately loose here: their rules (minimum
length, allowed codes) belong to the engine so that every caller, not just
HTTP clients, gets the same INVALID_REASON answer.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, constr, field_validator, model_validator

from .enums import Layer, Priority


def _legacy_priority(value: Any) -> Any:
    if isinstance(value, str) and value.strip().lower() == "normal":
        return Priority.MEDIUM
    return value


class OrderCreate(BaseModel):
    """An order handed over by the import pipeline.

    Compatibility: the old order schema used priority "normal" and called the
    entry layer "current_layer"; both are still accepted.
    """

    model_config = ConfigDict(extra="forbid")

    order_number: constr(min_length=1, max_length=100)
    project_id: constr(min_length=1, max_length=36)
    client_reference: Optional[constr(max_length=200)] = None
    priority: Priority = Priority.MEDIUM
    due_date: Optional[date] = None
    received_at: Optional[datetime] = None
    entry_layer: Optional[Layer] = None
    metadata: Dict[str, Any] = Field(default_factory=dict)

    # Legacy alias (deprecated)
    current_layer: Optional[Layer] = None

    @field_validator("priority", mode="before")
    @classmethod
    def map_legacy_priority(cls, value: Any) -> Any:
        return _legacy_priority(value)

    @model_validator(mode="after")
    def resolve_layer_alias(self) -> "OrderCreate":
        if self.entry_layer is None and self.current_layer is not None:
            object.__setattr__(self, "entry_layer", self.current_layer)
        object.__setattr__(self, "current_layer", None)
        return self


class VersionedRequest(BaseModel):
    """Optional pre-image version for compare-and-swap."""

    expected_version: Optional[int] = Field(
        None, ge=1, description="Version the caller last read; stale values fail with CONFLICT"
    )


class OrderUpdate(VersionedRequest):
    """Supervisor edit of an order's details. Workflow fields are not accepted."""

    model_config = ConfigDict(extra="forbid")

    priority: Optional[Priority] = None
    due_date: Optional[date] = None
    client_reference: Optional[constr(max_length=200)] = None
    metadata: Optional[Dict[str, Any]] = None

    @field_validator("priority", mode="before")
    @classmethod
    def map_legacy_priority(cls, value: Any) -> Any:
        return _legacy_priority(value)

    def changes(self) -> Dict[str, Any]:
        """Fields the caller set. Priority cannot be cleared; metadata clears to {}."""
        patch = self.model_dump(exclude_unset=True, exclude={"expected_version"})
        if "priority" in patch and patch["priority"] is None:
            del patch["priority"]
        if "metadata" in patch and patch["metadata"] is None:
            patch["metadata"] = {}
        return patch


class AssignRequest(VersionedRequest):
    user_id: constr(min_length=1, max_length=36)


class StartRequest(VersionedRequest):
    pass


class SubmitRequest(VersionedRequest):
    comment: Optional[constr(max_length=4000)] = None


class RejectRequest(VersionedRequest):
    reason: Optional[str] = None
    rejection_code: Optional[str] = None
    route_to: Optional[str] = None


class HoldRequest(VersionedRequest):
    reason: Optional[str] = None


class ResumeRequest(VersionedRequest):
    pass


class ReassignRequest(VersionedRequest):
    to_user_id: Optional[str] = None
    reason: Optional[str] = None


class SelfCorrectRequest(VersionedRequest):
    notes: Optional[constr(max_length=4000)] = None


class CancelRequest(VersionedRequest):
    reason: Optional[constr(max_length=4000)] = None


class StartNextRequest(BaseModel):
    project_id: constr(min_length=1, max_length=36)
    layer: Layer

    @field_validator("layer", mode="before")
    @classmethod
    def accept_route_codes(cls, value: Any) -> Any:
        if isinstance(value, str):
            return Layer.parse(value)
        return value


class Assignment(BaseModel):
    order_id: constr(min_length=1, max_length=36)
    user_id: constr(min_length=1, max_length=36)


class BulkAssignRequest(BaseModel):
    assignments: List[Assignment] = Field(..., min_length=1)


class ReassignUserRequest(BaseModel):
    from_user_id: constr(min_length=1, max_length=36)
    to_user_id: Optional[constr(min_length=1, max_length=36)] = None
    reason: Optional[str] = None
