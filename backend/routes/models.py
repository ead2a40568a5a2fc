"""Pydantic request/response models for API endpoints."""

from pydantic import BaseModel, Field

from threadline.models import VariableValue


class LoadScriptBody(BaseModel):
    name: str | None = None
    text: str | None = None


class SaveScriptBody(BaseModel):
    name: str
    text: str


class ChoiceBody(BaseModel):
    index: int


class SetVariableBody(BaseModel):
    value: VariableValue


class TypingDelayBody(BaseModel):
    delay: int = Field(ge=0)
