from uuid import UUID, uuid4

from pydantic import BaseModel, ConfigDict, Field, model_validator

Stage = tuple[str, ...]


class ExecutionPlan(BaseModel):
    uuid: UUID = Field(default_factory=uuid4)
    target: str
    stages: tuple[Stage, ...]

    model_config = ConfigDict(frozen=True)

    @model_validator(mode="after")
    def _check_shape(self) -> "ExecutionPlan":
        if not self.stages or any(not stage for stage in self.stages):
            raise ValueError("Execution plans cannot contain empty stages.")
        elif self.stages[-1] != (self.target,):
            raise ValueError(
                f"The target '{self.target}' must be alone in the final stage."
            )

        seen: set[str] = set()
        for stage in self.stages:
            if seen.intersection(stage) or len(set(stage)) != len(stage):
                raise ValueError("Projections may only appear once in a plan.")

            seen.update(stage)

        return self

    @property
    def projections(self) -> list[str]:
        return [name for stage in self.stages for name in stage]

    def stage_of(self, name: str) -> int:
        for idx, stage in enumerate(self.stages):
            if name in stage:
                return idx

        raise KeyError(name)

    def __len__(self) -> int:
        return len(self.stages)
