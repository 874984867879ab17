"""Edit session settings.

Loaded from constructor kwargs and `STREAM_EDITS_*` environment variables.
"""

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .types import Fence


class EditSettings(BaseSettings):
    """Knobs for one edit session.

    Invariant:
        `fence` is a non-empty token without whitespace; blocks are both
        opened and closed with it.
    """

    model_config = SettingsConfigDict(env_prefix="STREAM_EDITS_")

    fence: str = "```"
    temperature: float = Field(default=0.0, ge=0.0, le=2.0)
    offload_matching: bool = True
    suggest_similar_lines: bool = True

    @field_validator("fence")
    @classmethod
    def _validate_fence(cls, value: str) -> str:
        if not value or any(ch.isspace() for ch in value):
            raise ValueError("fence must be a non-empty token without whitespace")
        return value

    @property
    def fence_pair(self) -> Fence:
        return self.fence, self.fence
