from pydantic import BaseModel, Field


class ControlMessageIn(BaseModel):
    agent: str = Field(min_length=1, max_length=16)
    text: str = Field(min_length=1, max_length=2000)
    sender: str = Field(default="operator", min_length=1, max_length=16)


class ControlCommandIn(BaseModel):
    agent: str = Field(min_length=1, max_length=16)
    text: str = Field(min_length=1, max_length=2000)
    sender: str | None = Field(default=None, max_length=16)


class ControlStopIn(BaseModel):
    agent: str = Field(min_length=1, max_length=16)
