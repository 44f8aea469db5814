"""Runtime configuration loaded from a .env file and the process environment."""

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path

from dotenv import dotenv_values

from stackwarden.errors import ConfigurationError

logger = logging.getLogger(__name__)

REQUIRED_VARS = (
    "AWS_REGION",
    "TAG_ENVIRONMENT",
    "TAG_OWNER",
    "TAG_COST_CENTER",
    "AUTO_DELETE_FAILED_STACK",
    "CLOUDTRAIL_IS_MULTI_REGION",
    "CLOUDTRAIL_INCLUDE_MANAGEMENT_EVENTS",
    "CLOUDTRAIL_INCLUDE_DATA_EVENTS",
    "CLOUDTRAIL_EVENT_SELECTORS",
    "ENABLE_CLOUDWATCH_LOGS",
    "CLOUDWATCH_LOGS_RETENTION_DAYS",
    "S3_INTELLIGENT_TIERING_DAYS",
    "S3_GLACIER_TRANSITION_DAYS",
    "S3_EXPIRATION_DAYS",
)

# Used when strict=False, so that destroy and inventory work without a full .env.
DEFAULTS = {
    "AUTO_DELETE_FAILED_STACK": "false",
    "CLOUDTRAIL_IS_MULTI_REGION": "true",
    "CLOUDTRAIL_INCLUDE_MANAGEMENT_EVENTS": "true",
    "CLOUDTRAIL_INCLUDE_DATA_EVENTS": "false",
    "CLOUDTRAIL_EVENT_SELECTORS": "",
    "ENABLE_CLOUDWATCH_LOGS": "true",
    "CLOUDWATCH_LOGS_RETENTION_DAYS": "90",
    "S3_INTELLIGENT_TIERING_DAYS": "30",
    "S3_GLACIER_TRANSITION_DAYS": "90",
    "S3_EXPIRATION_DAYS": "2555",
    "STACK_NAME": "governance-cloudtrail",
    "PARAMETER_PATH": "/governance/cloudtrail/",
    "TEMPLATE_PATH": "cloudformation/bootstrap.yaml",
    "POLL_MAX_WAIT_SECONDS": "1800",
}

TRUE_VALUES = {"true", "1", "yes", "on"}
FALSE_VALUES = {"false", "0", "no", "off"}


def parse_bool(name: str, value: str) -> bool:
    lowered = value.strip().lower()
    if lowered in TRUE_VALUES:
        return True
    if lowered in FALSE_VALUES:
        return False
    raise ConfigurationError(f"{name} must be true or false, got {value!r}")


def parse_int(name: str, value: str) -> int:
    try:
        return int(value)
    except ValueError:
        raise ConfigurationError(f"{name} must be an integer, got {value!r}") from None


@dataclass(frozen=True)
class Settings:
    """Deployment settings for the audit foundation."""

    region: str | None
    environment: str
    owner: str
    cost_center: str
    auto_delete_failed_stack: bool
    is_multi_region: bool
    include_management_events: bool
    include_data_events: bool
    event_selectors: str
    enable_cloudwatch_logs: bool
    log_retention_days: int
    intelligent_tiering_days: int
    glacier_transition_days: int
    expiration_days: int
    stack_name: str
    parameter_path: str
    template_path: Path
    poll_max_wait_seconds: int
    profile: str | None = None

    @classmethod
    def load(
        cls,
        env_file: str | Path | None = ".env",
        environ: Mapping[str, str] | None = None,
        strict: bool = True,
    ) -> "Settings":
        """Merge ``env_file`` with ``environ`` (environment wins) and validate.

        In strict mode a missing file or any missing required variable is a
        ConfigurationError listing everything that is absent.
        """
        values: dict[str, str] = {}
        if env_file is not None:
            path = Path(env_file)
            if path.is_file():
                values.update({k: v for k, v in dotenv_values(path).items() if v is not None})
                logger.debug("Loaded %d value(s) from %s", len(values), path)
            elif strict:
                raise ConfigurationError(f"{path} file not found; create it with the required configuration")

        env = os.environ if environ is None else environ
        for key in (*REQUIRED_VARS, *DEFAULTS, "AWS_PROFILE"):
            if env.get(key):
                values[key] = env[key]

        missing = [var for var in REQUIRED_VARS if not values.get(var)]
        if strict and missing:
            raise ConfigurationError(
                "Required variable(s) not set: " + ", ".join(missing),
                missing=missing,
            )

        def get(key: str) -> str:
            return values.get(key) or DEFAULTS.get(key, "")

        parameter_path = get("PARAMETER_PATH")
        if not parameter_path.endswith("/"):
            parameter_path += "/"

        return cls(
            region=values.get("AWS_REGION") or None,
            environment=get("TAG_ENVIRONMENT"),
            owner=get("TAG_OWNER"),
            cost_center=get("TAG_COST_CENTER"),
            auto_delete_failed_stack=parse_bool(
                "AUTO_DELETE_FAILED_STACK", get("AUTO_DELETE_FAILED_STACK")
            ),
            is_multi_region=parse_bool("CLOUDTRAIL_IS_MULTI_REGION", get("CLOUDTRAIL_IS_MULTI_REGION")),
            include_management_events=parse_bool(
                "CLOUDTRAIL_INCLUDE_MANAGEMENT_EVENTS",
                get("CLOUDTRAIL_INCLUDE_MANAGEMENT_EVENTS"),
            ),
            include_data_events=parse_bool(
                "CLOUDTRAIL_INCLUDE_DATA_EVENTS", get("CLOUDTRAIL_INCLUDE_DATA_EVENTS")
            ),
            event_selectors=get("CLOUDTRAIL_EVENT_SELECTORS"),
            enable_cloudwatch_logs=parse_bool("ENABLE_CLOUDWATCH_LOGS", get("ENABLE_CLOUDWATCH_LOGS")),
            log_retention_days=parse_int(
                "CLOUDWATCH_LOGS_RETENTION_DAYS", get("CLOUDWATCH_LOGS_RETENTION_DAYS")
            ),
            intelligent_tiering_days=parse_int(
                "S3_INTELLIGENT_TIERING_DAYS", get("S3_INTELLIGENT_TIERING_DAYS")
            ),
            glacier_transition_days=parse_int(
                "S3_GLACIER_TRANSITION_DAYS", get("S3_GLACIER_TRANSITION_DAYS")
            ),
            expiration_days=parse_int("S3_EXPIRATION_DAYS", get("S3_EXPIRATION_DAYS")),
            stack_name=get("STACK_NAME"),
            parameter_path=parameter_path,
            template_path=Path(get("TEMPLATE_PATH")),
            poll_max_wait_seconds=parse_int("POLL_MAX_WAIT_SECONDS", get("POLL_MAX_WAIT_SECONDS")),
            profile=values.get("AWS_PROFILE") or None,
        )
