"""
Wire models for the prediction service.

Backend rows arrive as flat JSON objects; these models are the only place
that knows their shape.
"""

from typing import Any, Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field


class Reading(BaseModel):
    """One timestamped observation: `time` plus parameter -> value."""

    time: str = Field(..., description="Label used as the ordering key")
    values: Dict[str, float] = Field(default_factory=dict)

    @classmethod
    def from_row(cls, row: Dict[str, Any]) -> "Reading":
        values: Dict[str, float] = {}
        for key, raw in row.items():
            if key == "time" or isinstance(raw, bool):
                continue
            if isinstance(raw, (int, float)):
                values[key] = float(raw)
        return cls(time=str(row.get("time", "")), values=values)

    def value(self, parameter: str) -> Optional[float]:
        return self.values.get(parameter)


class Alert(BaseModel):
    id: Union[int, str]
    machine: Optional[str] = None
    parameter: Optional[str] = None
    value: Optional[float] = None
    threshold: Optional[float] = None
    severity: Optional[Literal["low", "high"]] = None
    time: Optional[str] = None
    message: Optional[str] = None


class HealthStatus(BaseModel):
    connected: bool
    status: Optional[str] = None
    feature_columns: List[str] = Field(default_factory=list)


class PredictionBatch(BaseModel):
    readings: List[Reading] = Field(default_factory=list)
    feature_columns: List[str] = Field(default_factory=list)


class UploadResult(BaseModel):
    message: str
    auto_train_message: Optional[str] = None

    def summary(self) -> str:
        if self.auto_train_message:
            return f"{self.message} - {self.auto_train_message}"
        return self.message
