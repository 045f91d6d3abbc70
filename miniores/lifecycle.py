"""Bucket lifecycle (ILM) rules managed on a MinIO server."""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from miniores.policy import ResourceError

log = logging.getLogger(__name__)

DELETE_MARKER = "DeleteMarker"
DEFAULT_STATUS = "Enabled"

_DAYS_PATTERN = re.compile(r"[ \t\r]*([+-]?\d+)d")
_DATE_PATTERN = re.compile(r"(\d{4})-(\d{2})-(\d{2})")


@dataclass(frozen=True)
class Expiration:
    """When current object versions expire."""

    days: int = 0
    date: date | None = None
    delete_marker: bool = False

    def is_null(self) -> bool:
        return self.days == 0 and self.date is None and not self.delete_marker


@dataclass(frozen=True)
class Transition:
    """When current object versions move to another storage class."""

    days: int = 0
    date: date | None = None
    storage_class: str = ""

    def is_null(self) -> bool:
        return self.days == 0 and self.date is None


@dataclass(frozen=True)
class NoncurrentVersionTransition:
    """When noncurrent versions move to another storage class."""

    noncurrent_days: int = 0
    storage_class: str = ""
    newer_noncurrent_versions: int = 0


@dataclass(frozen=True)
class NoncurrentVersionExpiration:
    """When noncurrent versions expire."""

    noncurrent_days: int = 0
    newer_noncurrent_versions: int = 0


@dataclass(frozen=True)
class Tag:
    key: str
    value: str


@dataclass(frozen=True)
class RuleFilter:
    """Objects a rule applies to: a bare prefix, or a prefix combined with tags."""

    prefix: str = ""
    and_prefix: str = ""
    and_tags: tuple[Tag, ...] = ()


@dataclass(frozen=True)
class LifecycleRule:
    id: str
    status: str = DEFAULT_STATUS
    expiration: Expiration = field(default_factory=Expiration)
    transition: Transition = field(default_factory=Transition)
    noncurrent_version_expiration: NoncurrentVersionExpiration = field(
        default_factory=NoncurrentVersionExpiration
    )
    noncurrent_version_transition: NoncurrentVersionTransition = field(
        default_factory=NoncurrentVersionTransition
    )
    rule_filter: RuleFilter = field(default_factory=RuleFilter)


@dataclass
class LifecycleConfiguration:
    rules: list[LifecycleRule] = field(default_factory=list)

    def is_empty(self) -> bool:
        return not self.rules


def _scan_days(value: str) -> int | None:
    """Read a ``<number>d`` value; None when it does not start that way."""
    match = _DAYS_PATTERN.match(value)
    return int(match.group(1)) if match else None


def _parse_date(value: str) -> date | None:
    match = _DATE_PATTERN.fullmatch(value)
    if not match:
        return None
    try:
        return date(*(int(part) for part in match.groups()))
    except ValueError:
        return None


def validate_ilm_expiration(value: str) -> None:
    """Raise ValueError unless ``value`` is a duration, a date or ``DeleteMarker``."""
    if parse_ilm_expiration(value) == Expiration():
        raise ValueError(
            'expiration must be a duration (5d), date (1970-01-01), or "DeleteMarker"'
        )


def validate_ilm_days(value: str) -> None:
    """Raise ValueError unless ``value`` is a positive ``<number>d``."""
    days = _scan_days(value)
    if days is None:
        raise ValueError(f"days must be in format '(number)d', got: {value}")
    if days < 1:
        raise ValueError(f"days must be greater than 0, got: {days}")


def validate_ilm_date(value: str) -> None:
    """Raise ValueError unless ``value`` is a ``YYYY-MM-DD`` date."""
    if _parse_date(value) is None:
        raise ValueError(f"date must be in format 'YYYY-MM-DD', got: {value}")


def validate_ilm_versions(value: int) -> None:
    """Raise ValueError when ``value`` is negative."""
    if value < 0:
        raise ValueError(f"newer_versions must be non-negative, got: {value}")


def parse_ilm_expiration(value: str) -> Expiration:
    """Read an expiration; an unreadable value gives an empty Expiration."""
    if value == DELETE_MARKER:
        return Expiration(delete_marker=True)
    days = _scan_days(value)
    if days is not None:
        return Expiration(days=days)
    parsed = _parse_date(value)
    if parsed is not None:
        return Expiration(date=parsed)
    return Expiration()


def _first_block(blocks: Any) -> Any:
    if not isinstance(blocks, list) or not blocks:
        return None
    return blocks[0]


def _int_value(block: dict, key: str) -> int:
    value = block.get(key)
    return value if isinstance(value, int) and not isinstance(value, bool) else 0


def parse_ilm_transition(transition: Any) -> Transition:
    """Read the first transition block; unreadable blocks give an empty Transition."""
    block = _first_block(transition)
    if not isinstance(block, dict):
        return Transition()
    storage_class = block.get("storage_class", "")
    days = block.get("days")
    if isinstance(days, str) and days:
        count = _scan_days(days)
        if count is not None:
            return Transition(days=count, storage_class=storage_class)
    when = block.get("date")
    if isinstance(when, str) and when:
        parsed = _parse_date(when)
        if parsed is not None:
            return Transition(date=parsed, storage_class=storage_class)
    return Transition()


def parse_ilm_noncurrent_transition(noncurrent_transition: Any) -> NoncurrentVersionTransition:
    """Read the first noncurrent transition block; raise ValueError on malformed days."""
    if not isinstance(noncurrent_transition, list) or not noncurrent_transition:
        return NoncurrentVersionTransition()
    block = noncurrent_transition[0]
    if not isinstance(block, dict):
        raise ValueError("invalid noncurrent_transition format")
    days = block.get("days")
    if not isinstance(days, str):
        raise ValueError("days is required")
    count = _scan_days(days)
    if count is None:
        raise ValueError(f"invalid days format: {days}")
    return NoncurrentVersionTransition(
        noncurrent_days=count,
        storage_class=block.get("storage_class", ""),
        newer_noncurrent_versions=_int_value(block, "newer_versions"),
    )


def parse_ilm_noncurrent_expiration(noncurrent_expiration: Any) -> NoncurrentVersionExpiration:
    """Read the first noncurrent expiration block; unreadable blocks give an empty one."""
    block = _first_block(noncurrent_expiration)
    if not isinstance(block, dict):
        return NoncurrentVersionExpiration()
    days = block.get("days")
    if not isinstance(days, str) or not days:
        return NoncurrentVersionExpiration()
    count = _scan_days(days)
    if count is None:
        return NoncurrentVersionExpiration()
    return NoncurrentVersionExpiration(
        noncurrent_days=count,
        newer_noncurrent_versions=_int_value(block, "newer_versions"),
    )


def _string_value(data: dict, key: str) -> str | None:
    value = data.get(key)
    return value if isinstance(value, str) else None


def _string_map(value: Any) -> dict[str, str]:
    if not isinstance(value, dict):
        return {}
    return {key: item for key, item in value.items() if isinstance(item, str)}


def create_lifecycle_rule(rule_data: dict) -> LifecycleRule:
    """Build a lifecycle rule from its settings; raise ValueError when they are invalid."""
    rule_id = _string_value(rule_data, "id")
    if rule_id is None:
        raise ValueError("rule id is required")
    status = _string_value(rule_data, "status")
    if status is None:
        status = DEFAULT_STATUS

    transition_block = _first_block(rule_data.get("transition"))
    if isinstance(transition_block, dict) and not isinstance(
        transition_block.get("storage_class"), str
    ):
        raise ValueError("storage_class is required for transition")

    noncurrent_block = _first_block(rule_data.get("noncurrent_transition"))
    if isinstance(noncurrent_block, dict):
        days = _string_value(noncurrent_block, "days")
        if days is None:
            raise ValueError("days is required for noncurrent_transition")
        try:
            validate_ilm_days(days)
        except ValueError as exc:
            raise ValueError(f"invalid days format: {exc}") from exc

    prefix = _string_value(rule_data, "filter") or ""
    tags = _string_map(rule_data.get("tags"))
    if tags:
        rule_filter = RuleFilter(
            and_prefix=prefix,
            and_tags=tuple(Tag(key, value) for key, value in sorted(tags.items())),
        )
    else:
        rule_filter = RuleFilter(prefix=prefix)

    noncurrent_transition = parse_ilm_noncurrent_transition(
        rule_data.get("noncurrent_transition")
    )
    return LifecycleRule(
        id=rule_id,
        status=status,
        expiration=parse_ilm_expiration(_string_value(rule_data, "expiration") or ""),
        transition=parse_ilm_transition(rule_data.get("transition")),
        noncurrent_version_expiration=parse_ilm_noncurrent_expiration(
            rule_data.get("noncurrent_expiration")
        ),
        noncurrent_version_transition=noncurrent_transition,
        rule_filter=rule_filter,
    )


def flatten_rule(rule: LifecycleRule) -> dict:
    """Turn a lifecycle rule back into its settings."""
    exp = rule.expiration
    if exp.delete_marker:
        expiration = DELETE_MARKER
    elif exp.days != 0:
        expiration = f"{exp.days}d"
    elif not exp.is_null() and exp.date is not None:
        expiration = exp.date.isoformat()
    else:
        expiration = ""

    transitions = []
    if not rule.transition.is_null():
        block: dict[str, Any] = {}
        if rule.transition.days != 0:
            block["days"] = f"{rule.transition.days}d"
        elif rule.transition.date is not None:
            block["date"] = rule.transition.date.isoformat()
        block["storage_class"] = rule.transition.storage_class
        transitions.append(block)

    noncurrent_expiration = []
    nve = rule.noncurrent_version_expiration
    if nve.noncurrent_days != 0:
        noncurrent_expiration.append(
            {
                "days": f"{nve.noncurrent_days}d",
                "newer_versions": nve.newer_noncurrent_versions,
            }
        )

    noncurrent_transition = []
    nvt = rule.noncurrent_version_transition
    if nvt.noncurrent_days != 0:
        noncurrent_transition.append(
            {
                "days": f"{nvt.noncurrent_days}d",
                "storage_class": nvt.storage_class,
                "newer_versions": nvt.newer_noncurrent_versions,
            }
        )

    if rule.rule_filter.and_tags:
        prefix = rule.rule_filter.and_prefix
        tags = {tag.key: tag.value for tag in rule.rule_filter.and_tags}
    else:
        prefix = rule.rule_filter.prefix
        tags = {}

    return {
        "id": rule.id,
        "expiration": expiration,
        "transition": transitions,
        "noncurrent_expiration": noncurrent_expiration,
        "noncurrent_transition": noncurrent_transition,
        "status": rule.status,
        "filter": prefix,
        "tags": tags,
    }


def is_not_found_error(error: Any) -> bool:
    """Tell whether an error reports a bucket without lifecycle configuration."""
    text = str(error)
    return (
        "The lifecycle configuration does not exist" in text
        or "NoSuchLifecycleConfiguration" in text
    )


class IlmPolicyResource:
    """The lifecycle configuration of a bucket."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def create(self, bucket: str, rules: list) -> dict | None:
        try:
            self.client.bucket_exists(bucket)
        except Exception as exc:
            raise ResourceError("bucket validation failed", bucket, exc) from exc

        try:
            old_config = self.client.get_bucket_lifecycle(bucket)
        except Exception as exc:
            if not is_not_found_error(exc):
                raise ResourceError(
                    "failed to get existing lifecycle", bucket, exc
                ) from exc
            old_config = None

        config = LifecycleConfiguration()
        for rule in rules:
            if not isinstance(rule, dict):
                raise ValueError("invalid rule format")
            config.rules.append(create_lifecycle_rule(rule))

        try:
            self.client.set_bucket_lifecycle(bucket, config)
        except Exception as exc:
            if old_config is not None:
                try:
                    self.client.set_bucket_lifecycle(bucket, old_config)
                except Exception as rollback_exc:
                    raise ResourceError(
                        "policy update failed and rollback failed",
                        bucket,
                        f"{exc}, rollback error: {rollback_exc}",
                    ) from rollback_exc
            raise ResourceError("failed to set lifecycle", bucket, exc) from exc

        return self.read(bucket)

    def read(self, bucket: str) -> dict | None:
        """Return the bucket's lifecycle state, or None when it cannot be read."""
        try:
            config = self.client.get_bucket_lifecycle(bucket)
        except Exception as exc:
            log.info("reading lifecycle configuration failed: %s (%s)", bucket, exc)
            return None
        return {
            "id": bucket,
            "bucket": bucket,
            "rule": [flatten_rule(rule) for rule in config.rules],
        }

    def update(self, bucket: str, rules: list, changed: bool) -> dict | None:
        if changed:
            try:
                self.create(bucket, rules)
            except (ResourceError, ValueError) as exc:
                log.warning("updating lifecycle configuration failed: %s (%s)", bucket, exc)
        return self.read(bucket)

    def delete(self, bucket: str) -> None:
        try:
            self.client.set_bucket_lifecycle(bucket, LifecycleConfiguration())
        except Exception as exc:
            raise ResourceError(
                "deleting lifecycle configuration failed", bucket, exc
            ) from exc