"""Doctor data shapes — Pydantic models for fixes, analyses and context.

Field aliases follow the camelCase wire names callers send and receive
(``requiresFileEdit``, ``workingDirectory``, ...); Python code uses the
snake_case names.
"""

from __future__ import annotations

from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, field_validator

Confidence = Literal["high", "medium", "low"]
Source = Literal["quick-fix", "ai-cli", "ai-api", "none"]

_CONFIDENCES = ("high", "medium", "low")


def _coerce_confidence(value: Any) -> str:
    if isinstance(value, str) and value.strip().lower() in _CONFIDENCES:
        return value.strip().lower()
    return "medium"


class Fix(BaseModel):
    """One suggested remedy."""

    model_config = ConfigDict(populate_by_name=True)

    title: str
    description: str = ""
    command: str | None = None
    confidence: Confidence = "medium"
    requires_file_edit: bool = Field(default=False, alias="requiresFileEdit")

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> str:
        return _coerce_confidence(value)


class AIAnalysis(BaseModel):
    """The JSON object an AI tier is asked to answer with."""

    confidence: Confidence = "medium"
    explanation: str = "Error analysis completed"
    fixes: list[Fix] = Field(default_factory=list)

    @field_validator("confidence", mode="before")
    @classmethod
    def _confidence(cls, value: Any) -> str:
        return _coerce_confidence(value)


class AnalysisResult(BaseModel):
    """Outcome of one ``ErrorDoctorService.analyze`` call. Never persisted."""

    success: bool
    source: Source = "none"
    confidence: Confidence | None = None
    fixes: list[Fix] = Field(default_factory=list)
    explanation: str | None = None
    error: str | None = None
    stages: list[str] = Field(default_factory=list, exclude=True)

    def to_dict(self) -> dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True)


class ErrorContext(BaseModel):
    """Environment facts that go into the AI prompt."""

    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    working_directory: str | None = Field(default=None, alias="workingDirectory")
    has_package_json: bool = Field(default=False, alias="hasPackageJson")
    node_version: str | None = Field(default=None, alias="nodeVersion")
    recent_commands: list[str] = Field(default_factory=list, alias="recentCommands")
    dependencies: list[str] = Field(default_factory=list)
    dev_dependencies: list[str] = Field(default_factory=list, alias="devDependencies")
    timestamp: str | None = None


class ErrorLocation(BaseModel):
    file_path: str | None = None
    line_number: int | None = None
    column_number: int | None = None
    stack_trace: str | None = None


# ---------------------------------------------------------------------------
# apply_fix shapes
# ---------------------------------------------------------------------------


class ExecuteCommandFix(BaseModel):
    """Hand a literal command back to the caller."""

    type: Literal["execute_command", "command"]
    command: str = Field(min_length=1)


class EditFileFix(BaseModel):
    """Hand a file path and its new content back to the caller."""

    model_config = ConfigDict(populate_by_name=True)

    type: Literal["edit_file", "file_edit"]
    file_path: str = Field(min_length=1, alias="filePath")
    content: str = Field(min_length=1)

    @classmethod
    def from_payload(cls, data: dict[str, Any]) -> EditFileFix:
        # Older callers send the new content as ``fileContent``
        if "content" not in data and "fileContent" in data:
            data = {**data, "content": data["fileContent"]}
        return cls.model_validate(data)
