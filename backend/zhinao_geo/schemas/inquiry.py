from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class InquiryRequest(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    name: str = Field(min_length=1, max_length=100)
    company: str = Field(min_length=1, max_length=200)
    website: Optional[str] = Field(default=None, max_length=500)
    phone: str = Field(min_length=1, max_length=50)
    message: Optional[str] = Field(default=None, max_length=5000)
