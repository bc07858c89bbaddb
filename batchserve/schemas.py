"""
Pydantic schemas for the classification API.
"""

from typing import Any, Dict, List, Optional, Union

from pydantic import BaseModel, Field, field_validator


class ClassifyRequest(BaseModel):
    """A classification request for one or more texts."""

    model: str = Field(..., description="Model name echoed back in the response")
    input: Union[str, List[str]] = Field(..., description="Text or texts to classify")

    model_config = {"extra": "ignore"}

    @field_validator("input")
    @classmethod
    def validate_input(cls, v):
        if isinstance(v, list) and not v:
            raise ValueError("input must contain at least one text")
        return v

    @property
    def texts(self) -> List[str]:
        return [self.input] if isinstance(self.input, str) else list(self.input)


class ClassificationData(BaseModel):
    """Classification of one input text."""

    index: int = Field(..., description="Position of the text in the request input")
    label: str = Field(..., description="Predicted label")
    probs: List[float] = Field(..., description="Probability for every class")
    num_classes: int = Field(..., description="Number of classes")


class Usage(BaseModel):
    """Token accounting for a request."""

    prompt_tokens: int = 0
    total_tokens: int = 0
    completion_tokens: int = 0
    prompt_tokens_details: Optional[Dict[str, Any]] = None


class ClassifyResponse(BaseModel):
    """Merged classification response."""

    id: str
    object: str = "list"
    created: int
    model: str
    data: List[ClassificationData]
    usage: Usage


class ErrorResponse(BaseModel):
    """Error payload returned by the HTTP layer."""

    error: str = Field(..., description="Failure kind")
    message: str
    details: Dict[str, Any] = Field(default_factory=dict)
