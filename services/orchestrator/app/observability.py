from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Generic, TypeVar

from .policy import estimate_generation_cost
from .providers.clients import GenerationResult


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


T = TypeVar("T")


@dataclass(frozen=True)
class StageResult(Generic[T]):
    """A stage's output plus whether it came from the stage's fallback path."""

    value: T
    degraded: bool = False
    error_kind: str | None = None
    detail: str | None = None

    @classmethod
    def fallback(cls, value: T, error_kind: str, detail: str | None = None) -> "StageResult[T]":
        return cls(value=value, degraded=True, error_kind=error_kind, detail=detail)


@dataclass
class StageMetric:
    name: str
    duration_ms: int
    status: str = "completed"
    error_kind: str | None = None
    detail: str | None = None


@dataclass
class RunObservability:
    run_id: str
    started_at: str = field(default_factory=_now_iso)
    ended_at: str | None = None
    total_duration_ms: int = 0
    total_estimated_cost_usd: float = 0.0
    tokens_input: int = 0
    tokens_output: int = 0
    generations: int = 0
    failed_generations: int = 0
    stage_metrics: list[StageMetric] = field(default_factory=list)

    def add_stage(self, metric: StageMetric) -> None:
        self.stage_metrics.append(metric)
        self.total_duration_ms += metric.duration_ms

    def add_usage(self, results: list[GenerationResult]) -> None:
        for result in results:
            self.generations += 1
            if not result.success:
                self.failed_generations += 1
            if not result.tokens_input and not result.tokens_output:
                continue
            self.tokens_input += result.tokens_input
            self.tokens_output += result.tokens_output
            self.total_estimated_cost_usd += estimate_generation_cost(
                result.provider,
                result.model,
                tokens_input=result.tokens_input,
                tokens_output=result.tokens_output,
                tokens_input_cached=result.tokens_input_cached,
            )

    @property
    def degraded_stages(self) -> list[str]:
        return [metric.name for metric in self.stage_metrics if metric.status == "degraded"]

    def finish(self) -> None:
        self.ended_at = _now_iso()

    def to_dict(self) -> dict:
        return {
            **asdict(self),
            "stage_metrics": [asdict(stage) for stage in self.stage_metrics],
        }
