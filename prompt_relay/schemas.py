from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class PromptRequest(BaseModel):
    prompt: str = Field(..., min_length=1)

    @field_validator("prompt")
    @classmethod
    def prompt_not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("Prompt is required")
        return value


class GenerateRequest(BaseModel):
    model_config = ConfigDict(frozen=True)

    model: str
    prompt: str


class GenerateChunk(BaseModel):
    # created_at, context, eval timings etc. are not needed
    model_config = ConfigDict(extra="ignore")

    response: str = ""
    done: bool = False
    error: Optional[str] = None


class PromptResponse(BaseModel):
    response: str


class ErrorResponse(BaseModel):
    error: str
