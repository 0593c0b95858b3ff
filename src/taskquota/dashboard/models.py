"""Pydantic request bodies for the dashboard API."""

from __future__ import annotations

from typing import Optional

from pydantic import BaseModel, Field


class SubmitTaskBody(BaseModel):
    screenshot_url: str = Field(min_length=1)
    user_id: Optional[int] = Field(default=None, gt=0)
