from pydantic import Field, ValidationError as PydanticValidationError
from pydantic_settings import BaseSettings, SettingsConfigDict

from svcreg.utils.errors import ValidationError

DEFAULT_TTL_MS = 15000
DEFAULT_STARTUP_TIMEOUT_MS = 3000


class RegistrySettings(BaseSettings):
    """
    Externally configurable parameters, read from ``SVC_*`` environment variables.
    """
    model_config = SettingsConfigDict(env_prefix='SVC_', extra='ignore')

    # Maximum gap between heartbeats before an instance is evicted (ms)
    ttl: int = Field(default=DEFAULT_TTL_MS, gt=0)

    # Deadline for discover-or-launch to reach a healthy daemon (ms)
    startup_timeout: int = Field(default=DEFAULT_STARTUP_TIMEOUT_MS, gt=0)


def load_settings(**overrides) -> RegistrySettings:
    """Load settings from the environment, raising ValidationError on bad values."""
    try:
        return RegistrySettings(**overrides)
    except PydanticValidationError as exc:
        problems = "; ".join(
            f"SVC_{'_'.join(str(part) for part in error['loc']).upper()}: {error['msg']}"
            for error in exc.errors()
        )
        raise ValidationError(f"Invalid svc-registry settings: {problems}") from exc
