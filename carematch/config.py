import os
from collections.abc import Mapping
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

ENV_PREFIX = "CAREMATCH_"


class Settings(BaseModel):
    model_config = ConfigDict(frozen=True)

    search_radius_km: float = Field(default=25.0, gt=0)
    match_limit: int = Field(default=5, ge=1, le=5)
    vocabulary: Literal["query", "union"] = "query"
    reconcile_interval_seconds: float = Field(default=3600.0, ge=0)  # 0 disables
    consistency_flag_threshold: int = Field(default=3, ge=1)
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> "Settings":
        """
        Build settings from `CAREMATCH_*` variables, e.g.
        `CAREMATCH_SEARCH_RADIUS_KM=10`. Unset variables keep their default.
        """
        environ = os.environ if environ is None else environ
        values = {
            name: environ[ENV_PREFIX + name.upper()]
            for name in cls.model_fields
            if ENV_PREFIX + name.upper() in environ
        }
        return cls.model_validate(values)
