from typing import Annotated

from annotated_types import Ge
from pydantic import PositiveFloat
from pydantic_settings import BaseSettings, SettingsConfigDict


class Config(BaseSettings):
    model_config = SettingsConfigDict(env_prefix="VIEWGRAPH_")

    serialization_secret: str = "supersecretsecret"
    """Secret used for signing job payloads sent to a workflow backend."""

    timeout: PositiveFloat = 60
    """ Default bound in seconds for running and fetching a projection."""

    poll_max_retries: Annotated[int, Ge(0)] = 10
    """ Max number of re-polls of a pending workflow job before timing out."""

    poll_backoff_unit: Annotated[float, Ge(0)] = 1.0
    """ Backoff time unit in seconds; the n-th re-poll waits `unit * n * 2`."""

    default_queue: str = "default"
    """ Queue jobs are submitted to when no queue is given."""

    allow_empty_filters: bool = False
    """ Silence the warning emitted when projecting with an unfiltered scope."""
