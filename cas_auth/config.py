import logging
from typing import Any, Dict, Literal, Mapping, Optional

from pydantic import BaseModel, ConfigDict, ValidationError, field_validator, model_validator

from .core.errors import InvalidConfiguration

logger = logging.getLogger(__name__)

# Environment variable -> option name, used by options_from_env
ENV_OPTIONS = {
    "CAS_SERVER": "cas_server",
    "CAS_SERVICE_URL": "service_url",
    "CAS_VERSION": "cas_version",
    "CAS_RENEW": "renew",
    "CAS_SESSION_NAME": "session_name",
    "CAS_SESSION_INFO": "session_info",
    "CAS_DESTROY_SESSION": "destroy_session",
    "CAS_DEV_MODE": "dev_mode",
    "CAS_DEV_MODE_USER": "dev_mode_user",
    "CAS_BACKEND_BASE_URL": "backend_base_url",
    "CAS_ROUTER_PREFIX": "cas_router_prefix",
}


class CASOptions(BaseModel):
    """
    Validated, read-only CAS settings. Build it with initialize().
    """
    model_config = ConfigDict(extra="forbid", frozen=True)

    cas_server: str
    service_url: Optional[str] = None
    cas_version: Literal["1.0", "2.0", "3.0"] = "2.0"
    renew: bool = False
    session_name: str = "cas_user"
    session_info: Optional[str] = "cas_userinfo"
    destroy_session: bool = False
    dev_mode: bool = False
    dev_mode_user: Optional[str] = None
    dev_mode_info: Optional[Dict[str, Any]] = None
    backend_base_url: Optional[str] = None
    cas_router_prefix: str = "/cas"

    @field_validator("cas_server")
    @classmethod
    def strip_server(cls, v: str) -> str:
        v = v.strip().rstrip("/")
        if not v:
            raise ValueError("CAS Authentication requires a cas_server parameter.")
        return v

    @field_validator("session_info", mode="before")
    @classmethod
    def disable_session_info(cls, v):
        # False / "" switch off storing the attributes
        if v is False or v == "":
            return None
        return v

    @field_validator("cas_router_prefix")
    @classmethod
    def normalize_prefix(cls, v: str) -> str:
        v = v.rstrip("/")
        if v and not v.startswith("/"):
            v = "/" + v
        return v

    @model_validator(mode="after")
    def check_dev_mode(self):
        if self.dev_mode and not self.dev_mode_user:
            raise ValueError("dev_mode requires dev_mode_user")
        return self


def initialize(raw_options: Any) -> CASOptions:
    """
    Validate raw options and freeze them.

    Unknown keys are rejected instead of being dropped.
    """
    if not isinstance(raw_options, Mapping):
        raise InvalidConfiguration("CAS Authentication was not given a valid configuration object.")

    try:
        options = CASOptions.model_validate(dict(raw_options))
    except ValidationError as e:
        raise InvalidConfiguration(f"Invalid CAS configuration: {e}") from e

    logger.info(f"CAS url: {options.cas_server}")
    logger.debug(f"dev mode: {options.dev_mode}")
    return options


def options_from_env(environ: Mapping[str, str]) -> CASOptions:
    raw = {
        option: environ[var]
        for var, option in ENV_OPTIONS.items()
        if environ.get(var)
    }
    return initialize(raw)
