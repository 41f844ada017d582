"""
Resolved, immutable runtime settings.

Flask config objects hold raw values (mostly strings from the environment).
load_settings() validates them once at startup and produces a frozen Settings
instance; nothing downstream ever sees a partially-defaulted configuration.
"""

import json
import re
from dataclasses import dataclass, field
from typing import Any, Mapping, Optional, Tuple, Union
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

from dateutil.relativedelta import relativedelta


FREQUENCIES = ('hourly', 'daily', 'weekly', 'monthly')
STRATEGIES = ('keep-last', 'tiered')
FOREVER = 'forever'

_DURATION_UNITS = ('minutes', 'hours', 'days', 'weeks', 'months', 'years')
_DURATION_PART = re.compile(r'^\s*(\d+)\s*([a-zA-Z]+)\s*$')


class ConfigError(Exception):
    """Raised when configuration is invalid. Fatal at startup."""
    pass


@dataclass(frozen=True)
class RetentionPlan:
    """One tier of a decay schedule."""
    frequency: str
    keep: Union[relativedelta, str]

    @property
    def is_forever(self) -> bool:
        return self.keep == FOREVER


@dataclass(frozen=True)
class RetentionConfig:
    strategy: str = 'keep-last'
    keep_last: int = 20
    plans: Tuple[RetentionPlan, ...] = ()
    backup_frequency: str = 'hourly'


@dataclass(frozen=True)
class Settings:
    backup_dir: str
    backup_bucket: str
    timezone: ZoneInfo
    retention: RetentionConfig = field(default_factory=RetentionConfig)
    backup_prefix: str = ''
    aws_region: str = 'us-east-1'
    s3_endpoint_url: Optional[str] = None
    delete_workers: int = 4


def _normalize_unit(unit: str) -> str:
    unit = unit.lower()
    if not unit.endswith('s'):
        unit += 's'
    if unit not in _DURATION_UNITS:
        raise ConfigError(
            f"Invalid duration unit: {unit}. Valid options: {list(_DURATION_UNITS)}"
        )
    return unit


def parse_duration(value: Any) -> Union[relativedelta, str]:
    """
    Parse a tier's keep duration.

    Accepts 'forever', a mapping like {'weeks': 1, 'days': 1}, or a string
    like '2 months + 1 week'.

    Raises:
        ConfigError: If the duration is malformed
    """
    if isinstance(value, str) and value.strip().lower() == FOREVER:
        return FOREVER

    if isinstance(value, Mapping):
        parts = list(value.items())
    elif isinstance(value, str):
        parts = []
        for chunk in re.split(r'[+,]', value):
            match = _DURATION_PART.match(chunk)
            if not match:
                raise ConfigError(f"Malformed duration: {value!r}")
            parts.append((match.group(2), match.group(1)))
    else:
        raise ConfigError(f"Malformed duration: {value!r}")

    if not parts:
        raise ConfigError(f"Empty duration: {value!r}")

    kwargs = {}
    for unit, amount in parts:
        unit = _normalize_unit(str(unit))
        try:
            amount = int(amount)
        except (TypeError, ValueError):
            raise ConfigError(f"Invalid amount for {unit}: {amount!r}")
        if amount < 0:
            raise ConfigError(f"Negative duration for {unit}: {amount}")
        kwargs[unit] = kwargs.get(unit, 0) + amount

    return relativedelta(**kwargs)


def parse_plans(raw: Any) -> Tuple[RetentionPlan, ...]:
    """
    Parse the ordered list of retention plans.

    Args:
        raw: JSON string or list of {'frequency': ..., 'keep': ...} dicts

    Raises:
        ConfigError: If a plan is malformed
    """
    if raw is None or raw == '':
        return ()

    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError as e:
            raise ConfigError(f"RETENTION_PLANS is not valid JSON: {e}")

    if not isinstance(raw, list):
        raise ConfigError("RETENTION_PLANS must be a list of plans")

    plans = []
    for i, item in enumerate(raw):
        if not isinstance(item, Mapping) or 'frequency' not in item or 'keep' not in item:
            raise ConfigError(f"Plan #{i} must have 'frequency' and 'keep'")

        frequency = item['frequency']
        if frequency not in FREQUENCIES:
            raise ConfigError(
                f"Plan #{i} has invalid frequency: {frequency}. "
                f"Valid options: {list(FREQUENCIES)}"
            )

        if plans and plans[-1].is_forever:
            raise ConfigError(f"Plan #{i} follows a 'forever' plan and would never apply")

        plans.append(RetentionPlan(frequency=frequency, keep=parse_duration(item['keep'])))

    return tuple(plans)


def load_timezone(name: str) -> ZoneInfo:
    """
    Resolve an IANA timezone name.

    Raises:
        ConfigError: If the name is not a known timezone
    """
    try:
        return ZoneInfo(name)
    except (ZoneInfoNotFoundError, ValueError):
        raise ConfigError(f"{name} is not one of the allowed timezones")


def load_settings(config: Mapping[str, Any]) -> Settings:
    """
    Validate raw config values and resolve them into Settings.

    Args:
        config: Flask app.config or any mapping with the same keys

    Returns:
        Frozen Settings instance

    Raises:
        ConfigError: On any invalid value
    """
    timezone = load_timezone(config.get('TIMEZONE') or 'UTC')

    strategy = config.get('CLEANING_STRATEGY') or 'keep-last'
    if strategy not in STRATEGIES:
        raise ConfigError(
            f"Invalid cleaning strategy: {strategy}. Valid options: {list(STRATEGIES)}"
        )

    try:
        keep_last = int(config.get('KEEP_LAST', 20))
    except (TypeError, ValueError):
        raise ConfigError(f"KEEP_LAST must be an integer: {config.get('KEEP_LAST')!r}")
    if keep_last < 0:
        raise ConfigError(f"KEEP_LAST must not be negative: {keep_last}")

    backup_frequency = config.get('BACKUP_FREQUENCY') or 'hourly'
    if backup_frequency not in FREQUENCIES:
        raise ConfigError(
            f"Invalid backup frequency: {backup_frequency}. Valid options: {list(FREQUENCIES)}"
        )

    plans = parse_plans(config.get('RETENTION_PLANS'))
    if strategy == 'tiered' and not plans:
        raise ConfigError("The tiered strategy requires at least one retention plan")

    try:
        delete_workers = int(config.get('DELETE_WORKERS', 4))
    except (TypeError, ValueError):
        raise ConfigError(f"DELETE_WORKERS must be an integer: {config.get('DELETE_WORKERS')!r}")
    if delete_workers < 1:
        raise ConfigError(f"DELETE_WORKERS must be at least 1: {delete_workers}")

    return Settings(
        backup_dir=config.get('BACKUP_DIR') or '/data/',
        backup_bucket=config.get('BACKUP_BUCKET') or '',
        timezone=timezone,
        retention=RetentionConfig(
            strategy=strategy,
            keep_last=keep_last,
            plans=plans,
            backup_frequency=backup_frequency,
        ),
        backup_prefix=config.get('BACKUP_PREFIX') or '',
        aws_region=config.get('AWS_REGION') or 'us-east-1',
        s3_endpoint_url=config.get('S3_ENDPOINT_URL') or None,
        delete_workers=delete_workers,
    )
