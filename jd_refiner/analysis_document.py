# jd_refiner/analysis_document.py
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, ValidationInfo, field_validator

# Top-level sections the refinement prompt asks the model to return.
REQUIRED_SECTIONS = (
    "what_you_told_us",
    "roles",
    "split_table",
    "service_recommendation",
    "onboarding_2w",
    "risks",
    "assumptions",
)


class _Lenient(BaseModel):
    # unknown keys are kept; the model is free to add fields between turns
    model_config = ConfigDict(extra="allow")

    @field_validator("*", mode="before")
    @classmethod
    def _null_means_default(cls, value: Any, info: ValidationInfo) -> Any:
        if value is None:
            return cls.model_fields[info.field_name].get_default(call_default_factory=True)
        return value


class RoleSpec(_Lenient):
    title: Optional[str] = ""
    hours_per_week: Any = None
    core_outcomes: list[Any] = Field(default_factory=list)
    responsibilities: list[Any] = Field(default_factory=list)
    skills: list[Any] = Field(default_factory=list)
    tools: list[Any] = Field(default_factory=list)
    kpis: list[Any] = Field(default_factory=list)
    personality_traits: list[Any] = Field(default_factory=list)
    sample_week: Any = None


class SplitRow(_Lenient):
    role: Optional[str] = ""
    hrs: Any = None


class ServiceRecommendation(_Lenient):
    best_fit: str = ""
    why: str = ""
    cost_framing: str = ""
    next_steps: list[Any] = Field(default_factory=list)


class AnalysisDocument(_Lenient):
    what_you_told_us: str = ""
    roles: list[RoleSpec] = Field(default_factory=list)
    split_table: list[SplitRow] = Field(default_factory=list)
    service_recommendation: ServiceRecommendation = Field(default_factory=ServiceRecommendation)
    # day-keyed object in fresh analyses, a plain list in some older saved ones
    onboarding_2w: Any = Field(default_factory=dict)
    risks: list[Any] = Field(default_factory=list)
    assumptions: list[Any] = Field(default_factory=list)


def missing_sections(previous: dict, updated: dict) -> list[str]:
    """
    Required sections present in the previous analysis but absent from the
    updated one. A non-empty result means the model elided part of the document.
    """
    previous = previous if isinstance(previous, dict) else {}
    return [k for k in REQUIRED_SECTIONS if k in previous and k not in updated]
