"""Bucket event notifications delivered to queue targets."""

from __future__ import annotations

import dataclasses
import logging
from dataclasses import dataclass, field
from typing import Any, Iterable

from miniores.policy import ResourceError, prefixed_unique_id

log = logging.getLogger(__name__)

QUEUE_ID_PREFIX = "tf-s3-queue-"


@dataclass(frozen=True)
class Arn:
    """An Amazon Resource Name of the form ``arn:partition:service:region:account:resource``."""

    partition: str = ""
    service: str = ""
    region: str = ""
    account_id: str = ""
    resource: str = ""

    def __str__(self) -> str:
        if not (self.partition or self.service or self.account_id or self.resource):
            return ""
        return ":".join(
            ("arn", self.partition, self.service, self.region, self.account_id, self.resource)
        )


def parse_arn(value: str) -> Arn:
    """Parse an ARN; raise ValueError when it does not have six parts."""
    parts = value.split(":")
    if len(parts) != 6:
        raise ValueError("invalid ARN format, must be 'arn:<partition>:<service>:<region>:<accountID>:<resource>'")
    return Arn(*parts[1:])


def validate_minio_arn(value: str) -> None:
    """Raise ValueError unless ``value`` is a valid ARN."""
    try:
        parse_arn(value)
    except ValueError:
        raise ValueError(f"value: {value} is not a valid ARN") from None


@dataclass(frozen=True)
class QueueConfig:
    """A queue target with the events and key filters that trigger it."""

    id: str = ""
    arn: Arn = field(default_factory=Arn)
    events: tuple[str, ...] = ()
    filter_rules: tuple[tuple[str, str], ...] = ()
    queue: str = ""

    def with_events(self, *events: str) -> QueueConfig:
        return dataclasses.replace(self, events=self.events + events)

    def with_filter(self, name: str, value: str) -> QueueConfig:
        rules = [rule for rule in self.filter_rules if rule[0] != name]
        rules.append((name, value))
        return dataclasses.replace(self, filter_rules=tuple(rules))

    def with_filter_prefix(self, prefix: str) -> QueueConfig:
        return self.with_filter("prefix", prefix)

    def with_filter_suffix(self, suffix: str) -> QueueConfig:
        return self.with_filter("suffix", suffix)


@dataclass
class NotificationConfiguration:
    queue_configs: list[QueueConfig] = field(default_factory=list)

    def add_queue(self, config: QueueConfig) -> bool:
        """Add a queue target; return False when an identical one is present."""
        entry = dataclasses.replace(config, queue=str(config.arn))
        if entry in self.queue_configs:
            return False
        self.queue_configs.append(entry)
        return True


def flatten_filter(filter_rules: Iterable[tuple[str, str]] | None) -> dict:
    """Turn key filter rules into ``filter_prefix`` / ``filter_suffix`` settings."""
    result: dict[str, Any] = {}
    for name, value in filter_rules or ():
        if name == "prefix":
            result["filter_prefix"] = value
        if name == "suffix":
            result["filter_suffix"] = value
    return result


def flatten_queue_configurations(configs: Iterable[QueueConfig]) -> list[dict]:
    """Turn queue targets read from the server back into settings."""
    flattened = []
    for config in configs:
        entry = flatten_filter(config.filter_rules)
        entry["id"] = config.id
        entry["events"] = list(config.events)
        # The server leaves the config ARN empty; the queue field carries it.
        entry["queue_arn"] = config.queue
        flattened.append(entry)
    return flattened


def build_queue_configs(queues: Iterable[dict]) -> list[QueueConfig]:
    """Build queue targets from settings, skipping those with an unparseable ARN."""
    configs = []
    for queue in queues:
        config = QueueConfig()
        arn_text = queue.get("queue_arn")
        if isinstance(arn_text, str):
            try:
                config = dataclasses.replace(config, arn=parse_arn(arn_text))
            except ValueError:
                continue

        queue_id = queue.get("id")
        if not isinstance(queue_id, str) or not queue_id:
            queue_id = prefixed_unique_id(QUEUE_ID_PREFIX)
        config = dataclasses.replace(config, id=queue_id)

        events = tuple(dict.fromkeys(queue.get("events") or ()))
        config = config.with_events(*events)

        prefix = queue.get("filter_prefix")
        if isinstance(prefix, str) and prefix:
            config = config.with_filter_prefix(prefix)
        suffix = queue.get("filter_suffix")
        if isinstance(suffix, str) and suffix:
            config = config.with_filter_suffix(suffix)
        configs.append(config)
    return configs


class BucketNotificationResource:
    """The notification configuration of a bucket."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def put(self, bucket: str, queues: Iterable[dict]) -> dict:
        config = NotificationConfiguration()
        for queue_config in build_queue_configs(queues):
            config.add_queue(queue_config)
        log.debug("S3 bucket: %s, put notification configuration: %s", bucket, config)
        try:
            self.client.set_bucket_notification(bucket, config)
        except Exception as exc:
            raise ResourceError(
                "error putting bucket notification configuration", bucket, exc
            ) from exc
        return {"id": bucket, "bucket": bucket}

    def read(self, bucket: str) -> dict:
        log.debug("S3 bucket notification configuration, read for bucket: %s", bucket)
        try:
            config = self.client.get_bucket_notification(bucket)
        except Exception as exc:
            raise ResourceError(
                "failed to load bucket notification configuration", bucket, exc
            ) from exc
        return {
            "id": bucket,
            "bucket": bucket,
            "queue": flatten_queue_configurations(config.queue_configs),
        }

    def delete(self, bucket: str) -> None:
        log.debug("S3 bucket: %s, removing notification configuration", bucket)
        try:
            self.client.set_bucket_notification(bucket, NotificationConfiguration())
        except Exception as exc:
            raise ResourceError("error removing bucket notifications", bucket, exc) from exc