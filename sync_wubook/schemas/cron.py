from pydantic import BaseModel, Field


class OrchestratorPayload(BaseModel):
    dry_run: bool = Field(False, description="Passed to every step")
    step_timeout_ms: int = Field(120_000, gt=0, description="Timeout of each step attempt")
    total_timeout_ms: int = Field(420_000, gt=0, description="Budget for the whole run")
    retries: int = Field(2, ge=0, le=5, description="Extra attempts per step")
