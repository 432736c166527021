from __future__ import annotations
from dataclasses import dataclass
from typing import Dict
from app.core.config import settings
from app.core.workflow import PipelineStage


@dataclass(frozen=True)
class StageModelConfig:
    model: str
    fallback_model: str
    max_tokens: int
    temperature: float
    reason: str = ""


@dataclass
class ModelRouter:
    """Maps each pipeline stage to its model budget.

    The fallback model is only used by the LLM client when the primary model
    is overloaded; stage contracts never depend on which model answered.
    """
    mapping: Dict[PipelineStage, StageModelConfig]

    def get(self, stage: PipelineStage) -> StageModelConfig:
        return self.mapping[stage]

    @staticmethod
    def default() -> "ModelRouter":
        fast = settings.llm_model_fast
        balanced = settings.llm_model_balanced
        powerful = settings.llm_model_powerful
        return ModelRouter(mapping={
            PipelineStage.CONTEXT_GATHER: StageModelConfig(
                fast, balanced, 2000, 0.0, "Context gathering needs to be fast"),
            PipelineStage.INTENT_PARSE: StageModelConfig(
                fast, balanced, 4000, 0.0, "Small JSON extraction task"),
            PipelineStage.PATCH_PLAN: StageModelConfig(
                balanced, powerful, 16000, 0.0, "Planning needs reasoning and room for detail"),
            PipelineStage.CODE_GENERATE: StageModelConfig(
                powerful, balanced, 40000, 0.1, "Full file generation needs the strongest model"),
            PipelineStage.VALIDATE_REPAIR: StageModelConfig(
                balanced, powerful, 10000, 0.0, "Targeted fixes of flagged files"),
        })
