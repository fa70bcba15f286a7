from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class WireModel(BaseModel):
    # camelCase on the wire, snake_case in Python
    model_config = ConfigDict(populate_by_name=True)


class ValuationRequest(WireModel):
    url: str
    initial_requirements: str = Field(alias="initialRequirements")
    html: Optional[str] = None
    selector: Optional[str] = None


class EvaluationResult(WireModel):
    match_score: float = Field(default=0, ge=0, le=100, alias="matchScore")
    analysis: str
    suggestions: List[str] = Field(default_factory=list)


class ValuationResult(WireModel):
    url: Optional[str] = None
    screenshot: Optional[str] = None
    evaluation: EvaluationResult

    @model_validator(mode="after")
    def _one_target(self):
        if (self.url is None) == (self.screenshot is None):
            raise ValueError("exactly one of url or screenshot must be set")
        return self


class ValuationHistoryItem(WireModel):
    timestamp: datetime
    result: ValuationResult


class ScreenshotOptions(WireModel):
    url: str
    format: Optional[Literal["png", "jpg", "jpeg", "webp"]] = None
    block_ads: Optional[bool] = Field(default=None, alias="blockAds")
    block_cookie_banners: Optional[bool] = Field(default=None, alias="blockCookieBanners")
    block_trackers: Optional[bool] = Field(default=None, alias="blockTrackers")
    image_quality: Optional[int] = Field(default=None, alias="imageQuality")
    full_page: Optional[bool] = Field(default=None, alias="fullPage")
    delay: Optional[int] = None
    timeout: Optional[int] = None


class ValuationMessage(BaseModel):
    type: Literal["VALUATION_SUCCESS", "VALUATION_SUGGESTIONS", "TRIGGER_CHAT"]
    content: str
