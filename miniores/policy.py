"""IAM canned policies and bucket policies managed on a MinIO server."""

from __future__ import annotations

import itertools
import json
import logging
import re
import threading
from datetime import datetime, timezone
from typing import Any

log = logging.getLogger(__name__)

UNIQUE_ID_PREFIX = "terraform-"
NO_SUCH_POLICY_CODE = "XMinioAdminNoSuchPolicy"

_id_lock = threading.Lock()
_id_counter = itertools.count(1)

_NAME_PATTERN = re.compile(r"[\w+=,.@:/-]*", re.ASCII)

_GO_ESCAPES = (
    ("<", "\\u003c"),
    (">", "\\u003e"),
    ("&", "\\u0026"),
    ("\u2028", "\\u2028"),
    ("\u2029", "\\u2029"),
)


class ResourceError(Exception):
    """An operation on a managed resource failed."""

    def __init__(self, summary: str, resource: str, cause: Any = None) -> None:
        self.summary = summary
        self.resource = resource
        self.cause = cause
        detail = f"{summary}: {resource}"
        if cause is not None and cause != "":
            detail += f" ({cause})"
        super().__init__(detail)


def prefixed_unique_id(prefix: str) -> str:
    """Return ``prefix`` followed by a time-ordered unique suffix of 26 characters."""
    with _id_lock:
        counter = next(_id_counter)
        now = datetime.now(timezone.utc)
        stamp = now.strftime("%Y%m%d%H%M%S") + f"{now.microsecond // 100:04d}"
    return f"{prefix}{stamp}{counter:08x}"


def unique_id() -> str:
    """Return a unique identifier with the default prefix."""
    return prefixed_unique_id(UNIQUE_ID_PREFIX)


def _quote(text: str) -> str:
    return json.dumps(text, ensure_ascii=False)


def validate_iam_name_policy(value: str, key: str) -> list[str]:
    """Return the problems found with a policy name; empty when it is valid."""
    errors = []
    length = len(value.encode("utf-8"))
    if length > 128:
        errors.append(f"{_quote(key)} cannot be longer than 128 characters")
    if length > 96:
        errors.append(
            f"{_quote(key)} cannot be longer than 96 characters, name is limited to 128"
        )
    if not _NAME_PATTERN.fullmatch(value):
        errors.append(f"{_quote(key)} must match [\\w+=,.@:/-]")
    return errors


def validate_iam_policy_json(value: str, key: str) -> list[str]:
    """Return the problems found with a JSON policy document; empty when it is valid."""
    if not value or not value.startswith("{"):
        return [f"{_quote(key)} contains an invalid JSON policy"]
    try:
        normalize_json_string(value)
    except ValueError as exc:
        return [f"{_quote(key)} contains an invalid JSON: {exc}"]
    return []


def _reject_constant(name: str) -> Any:
    raise ValueError(f"invalid JSON value {name}")


def _load_json(text: str) -> Any:
    return json.loads(text, parse_constant=_reject_constant)


def normalize_json_string(value: str) -> str:
    """Return the compact, key-sorted form of a JSON document.

    An empty string stays empty; invalid JSON raises ValueError.
    """
    if not value:
        return ""
    data = _load_json(value)
    text = json.dumps(data, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
    for char, escaped in _GO_ESCAPES:
        text = text.replace(char, escaped)
    return text


def _string_set(value: Any) -> frozenset:
    if value is None:
        return frozenset()
    if isinstance(value, str):
        return frozenset([value])
    if isinstance(value, list):
        return frozenset(_scalar_text(item) for item in value)
    raise ValueError(f"unsupported policy value: {value!r}")


def _scalar_text(value: Any) -> str:
    if isinstance(value, bool):
        return "true" if value else "false"
    if isinstance(value, (str, int, float)):
        return str(value)
    raise ValueError(f"unsupported policy value: {value!r}")


def _principal(value: Any) -> frozenset | None:
    if value is None:
        return None
    if value == "*":
        value = {"AWS": "*"}
    if not isinstance(value, dict):
        raise ValueError(f"unsupported principal: {value!r}")
    return frozenset((kind, _string_set(ids)) for kind, ids in value.items())


def _condition(value: Any) -> frozenset:
    if value is None:
        return frozenset()
    if not isinstance(value, dict):
        raise ValueError(f"unsupported condition: {value!r}")
    normalized = []
    for operator, block in value.items():
        if not isinstance(block, dict):
            raise ValueError(f"unsupported condition block: {block!r}")
        entries = frozenset(
            (name, _string_set(item if isinstance(item, list) else [item]))
            for name, item in block.items()
        )
        normalized.append((operator, entries))
    return frozenset(normalized)


def _statement(raw: Any) -> tuple:
    if not isinstance(raw, dict):
        raise ValueError(f"statement must be an object: {raw!r}")
    return (
        raw.get("Sid", ""),
        raw.get("Effect", ""),
        _string_set(raw.get("Action")),
        _string_set(raw.get("NotAction")),
        _string_set(raw.get("Resource")),
        _string_set(raw.get("NotResource")),
        _principal(raw.get("Principal")),
        _principal(raw.get("NotPrincipal")),
        _condition(raw.get("Condition")),
    )


def _policy_shape(text: str) -> tuple:
    document = _load_json(text)
    if not isinstance(document, dict):
        raise ValueError("policy document must be a JSON object")
    statements = document.get("Statement", [])
    if isinstance(statements, dict):
        statements = [statements]
    if not isinstance(statements, list):
        raise ValueError("policy statement must be an object or a list")
    return (
        document.get("Version", ""),
        document.get("Id", ""),
        frozenset(_statement(item) for item in statements),
    )


def policies_are_equivalent(first: str, second: str) -> bool:
    """Tell whether two policy documents grant the same permissions.

    Ordering of statements and of list values is ignored, and a single string
    equals a one-element list. Unparseable input raises ValueError.
    """
    return _policy_shape(first) == _policy_shape(second)


def normalize_and_compare_policies(existing: str, actual: str) -> str:
    """Keep ``existing`` when it matches ``actual``; otherwise return ``actual`` normalized."""
    normalized = normalize_json_string(actual)
    if existing:
        try:
            if policies_are_equivalent(existing, normalized):
                return existing
        except ValueError:
            pass
    return normalized


class IamPolicyResource:
    """Canned IAM policies held by the admin API."""

    def __init__(self, admin: Any) -> None:
        self.admin = admin

    def create(self, policy: str, name: str = "", name_prefix: str = "") -> dict | None:
        if name:
            policy_name = name
        elif name_prefix:
            policy_name = prefixed_unique_id(name_prefix)
        else:
            policy_name = unique_id()
        log.debug("Creating IAM Policy %s: %s", policy_name, policy)
        try:
            self.admin.add_canned_policy(policy_name, policy.encode("utf-8"))
        except Exception as exc:
            raise ResourceError("unable to create policy", policy_name, exc) from exc
        return self.read(policy_name, policy)

    def read(self, policy_id: str, policy: str = "") -> dict | None:
        """Return the policy's state, or None when it no longer exists."""
        log.debug("Getting IAM Policy: %s", policy_id)
        try:
            output = self.admin.info_canned_policy(policy_id)
        except Exception as exc:
            if getattr(exc, "code", None) == NO_SUCH_POLICY_CODE:
                log.debug("IAM Policy does not exist: [%s]", policy_id)
                return None
            raise ResourceError("unable to read policy", policy_id, exc) from exc
        if isinstance(output, (bytes, bytearray)):
            output = output.decode("utf-8")
        try:
            current = normalize_and_compare_policies(policy or "", output.strip())
        except ValueError as exc:
            raise ResourceError("error while comparing policies", policy_id, exc) from exc
        return {"id": policy_id, "name": policy_id, "policy": current}

    def update(self, policy_id: str, policy: str) -> dict | None:
        log.debug("Update IAM Policy: %s", policy_id)
        try:
            self.admin.add_canned_policy(policy_id, policy.encode("utf-8"))
        except Exception as exc:
            raise ResourceError("unable to update policy", policy_id, exc) from exc
        return self.read(policy_id, policy)

    def delete(self, policy_id: str) -> None:
        try:
            self.admin.remove_canned_policy(policy_id)
        except Exception as exc:
            raise ResourceError("unable to delete policy", policy_id, exc) from exc


class BucketPolicyResource:
    """The access policy attached to a bucket."""

    def __init__(self, client: Any) -> None:
        self.client = client

    def put(self, bucket: str, policy: str) -> dict:
        try:
            normalized = normalize_json_string(policy)
        except ValueError as exc:
            raise ResourceError(
                "unable to set bucket policy with invalid JSON", policy, exc
            ) from exc
        log.debug("S3 bucket: %s, put policy: %s", bucket, normalized)
        try:
            self.client.set_bucket_policy(bucket, normalized)
        except Exception as exc:
            raise ResourceError("error putting bucket policy", normalized, exc) from exc
        return {"id": bucket, "bucket": bucket, "policy": policy}

    def read(self, bucket: str, policy: str = "") -> dict:
        log.debug("S3 bucket policy, read for bucket: %s", bucket)
        try:
            actual = self.client.get_bucket_policy(bucket)
        except Exception as exc:
            raise ResourceError("failed to load bucket policy", bucket, exc) from exc
        try:
            current = normalize_and_compare_policies(policy or "", actual)
        except ValueError as exc:
            raise ResourceError("error while comparing policies", bucket, exc) from exc
        return {"id": bucket, "bucket": bucket, "policy": current}

    def delete(self, bucket: str) -> None:
        log.debug("S3 bucket: %s, delete policy", bucket)
        try:
            self.client.set_bucket_policy(bucket, "")
        except Exception as exc:
            raise ResourceError("error deleting bucket", bucket, exc) from exc