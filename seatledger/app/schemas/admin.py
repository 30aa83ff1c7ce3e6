"""API schemas for operational job triggers."""
from __future__ import annotations

from typing import Any, Dict

from pydantic import BaseModel, ConfigDict


class JobRunResponse(BaseModel):
    job: str
    report: Dict[str, Any]

    model_config = ConfigDict(populate_by_name=True)
