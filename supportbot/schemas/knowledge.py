"""
schemas/knowledge.py
--------------------
Knowledge document upload / listing.
"""

from datetime import datetime

from pydantic import BaseModel, Field, field_validator


class DocumentCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    content: str = Field(..., min_length=1)

    @field_validator("title", "content")
    @classmethod
    def strip_text(cls, v: str) -> str:
        v = v.strip()
        if not v:
            raise ValueError("must not be blank")
        return v


class DocumentUpdate(BaseModel):
    content: str = Field(..., min_length=1)


class DocumentRead(BaseModel):
    id: str
    title: str
    word_count: int
    owner_user_id: str
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
