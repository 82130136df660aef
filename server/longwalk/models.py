from pydantic import BaseModel, Field


class AdvanceIn(BaseModel):
    ticks: int = Field(default=1, ge=1, le=500)


class ControlMatchIn(BaseModel):
    a: str = Field(min_length=1, max_length=32)
    b: str = Field(min_length=1, max_length=32)


class ControlCrisisIn(BaseModel):
    kind: str = Field(min_length=1, max_length=32)
    severity: int | None = Field(default=None, ge=1, le=10)
    quota: int | None = Field(default=None, ge=1, le=16)
    deadline_ticks: int | None = Field(default=None, ge=1, le=500)
    location: str | None = Field(default=None, max_length=32)
    target_agent: str | None = Field(default=None, max_length=32)


class ControlRetireIn(BaseModel):
    agent_id: str = Field(min_length=1, max_length=32)


class ControlSpeedIn(BaseModel):
    speed: float = Field(ge=0.1, le=5.0)
