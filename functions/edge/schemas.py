"""
Pydantic schemas for the edge functions API.
"""

from __future__ import annotations

from typing import Dict, Literal, Optional, Union

from pydantic import BaseModel, Field


class StudyGenerateRequest(BaseModel):
    input_type: str = ""
    input_value: str = ""
    topic_description: Optional[str] = Field(default=None, max_length=2000)
    language: str = "en"
    mode: str = "standard"


class StudyGuideResponse(BaseModel):
    id: str
    input_type: str
    input_value: str
    topic_description: Optional[str] = None
    language: str
    study_mode: str
    content: dict
    created_at: float


class StudyGenerateData(BaseModel):
    study_guide: StudyGuideResponse
    from_cache: bool
    tokens_consumed: int


class StudyGenerateResponse(BaseModel):
    success: Literal[True] = True
    data: StudyGenerateData


class VerseResponse(BaseModel):
    reference: str
    text: str
    translation: str
    language: str


class FetchVerseResponse(BaseModel):
    success: Literal[True] = True
    data: Union[VerseResponse, Dict[str, VerseResponse]]


class TokenStatus(BaseModel):
    user_plan: str
    available_tokens: int
    purchased_tokens: int
    daily_limit: int
    total_tokens: int
    is_unlimited: bool


class TokenStatusResponse(BaseModel):
    success: Literal[True] = True
    data: TokenStatus


class FeedbackRequest(BaseModel):
    study_guide_id: Optional[str] = Field(default=None, max_length=64)
    was_helpful: bool
    message: Optional[str] = Field(default=None, max_length=1000)
    category: Literal["general", "content", "usability", "technical", "suggestion"] = (
        "general"
    )


class FeedbackResponse(BaseModel):
    success: Literal[True] = True
    message: str
