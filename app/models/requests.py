# =============================================================================
# API Request Models — Pydantic V2 Schemas
# =============================================================================
#
# These models define the shape of data coming INTO the API.
#
# POST /reports is multipart (two file uploads), so its scalar options
# arrive as form fields and are collected into ReportOptions by the route.
# GET /models/select takes query parameters, collected into
# ModelSelectQuery through Depends().
# =============================================================================

from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

TaskType = Literal["ocr", "analysis", "generation", "correction", "audio"]
Priority = Literal["cost", "speed", "quality"]


class ReportOptions(BaseModel):
    """
    Options accompanying the two uploaded documents on POST /reports.

    Example form fields:
        company_name=Acme Pty Ltd
        priority=cost
        max_cost_per_request=0.01
    """

    company_name: str = Field(
        default="",
        max_length=255,
        description="Company name used in the generation prompt",
    )
    priority: Priority | None = Field(
        default=None,
        description=(
            "Model selection priority. Only used when no generation model "
            "is pinned in configuration."
        ),
    )
    max_cost_per_request: float | None = Field(
        default=None,
        gt=0,
        description="Budget ceiling (USD) for a representative request",
    )

    model_config = ConfigDict(extra="forbid")


class ModelSelectQuery(BaseModel):
    """Query parameters for GET /models/select."""

    task_type: TaskType = Field(
        default="generation",
        description="Pipeline task the model will serve",
    )
    priority: Priority = "quality"
    needs_vision: bool = False
    max_cost_per_request: float | None = Field(default=None, gt=0)
