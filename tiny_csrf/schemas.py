"""Pydantic schemas.

Defines validation for the demo app's JSON payloads.
"""

from pydantic import BaseModel, Field


class ProfileUpdate(BaseModel):
    display_name: str = Field(min_length=2, max_length=120)
