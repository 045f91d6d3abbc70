"""S3 buckets managed on a MinIO server."""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Callable

from miniores.policy import ResourceError, prefixed_unique_id, unique_id

log = logging.getLogger(__name__)

DEFAULT_REGION = "us-east-1"
ARN_PREFIX = "arn:aws:s3:::"
PRIVATE_ACL = "private"
KNOWN_ACLS = ("private", "public-write", "public-read", "public-read-write", "public")
MAX_BUCKET_NAME_LENGTH = 63
UNIQUE_ID_SUFFIX_LENGTH = 26
HARD_QUOTA = "hard"

_STRICT_NAME = re.compile(r"[0-9a-z\-.]+")
_IP_LIKE = re.compile(r"(?:[0-9]{1,3}\.){3}[0-9]{1,3}")
_VALID_NAME = re.compile(r"[A-Za-z0-9][A-Za-z0-9.\-_:]{1,61}[A-Za-z0-9]")
_IP_ADDRESS = re.compile(r"(\d+\.){3}\d+")

PolicyBuilder = Callable[[str, str], dict]


def validate_s3_bucket_name(value: str) -> None:
    """Raise ValueError unless ``value`` is a DNS-compatible bucket name."""
    quoted = json.dumps(value)
    if len(value) < 3 or len(value) > MAX_BUCKET_NAME_LENGTH:
        raise ValueError(f"{quoted} must contain from 3 to 63 characters")
    if not _STRICT_NAME.fullmatch(value):
        raise ValueError(
            f"only lowercase alphanumeric characters and hyphens allowed in {quoted}"
        )
    if _IP_LIKE.fullmatch(value):
        raise ValueError(f"{quoted} must not be formatted as an IP address")
    if value.startswith("."):
        raise ValueError(f"{quoted} cannot start with a period")
    if value.endswith("."):
        raise ValueError(f"{quoted} cannot end with a period")
    if ".." in value:
        raise ValueError(f"{quoted} can be only one period between labels")


def check_valid_bucket_name(name: str) -> None:
    """Raise ValueError unless the server would accept ``name`` as a bucket name."""
    if not name.strip():
        raise ValueError("Bucket name cannot be empty")
    if len(name) < 3:
        raise ValueError("Bucket name cannot be shorter than 3 characters")
    if len(name) > MAX_BUCKET_NAME_LENGTH:
        raise ValueError("Bucket name cannot be longer than 63 characters")
    if _IP_ADDRESS.fullmatch(name):
        raise ValueError("Bucket name cannot be an ip address")
    if ".." in name or ".-" in name or "-." in name:
        raise ValueError("Bucket name contains invalid characters")
    if not _VALID_NAME.fullmatch(name):
        raise ValueError("Bucket name contains invalid characters")


def bucket_arn(bucket: str) -> str:
    """Return the ARN of a bucket."""
    return f"{ARN_PREFIX}{bucket}"


def bucket_domain_name(bucket: str, endpoint: str) -> str:
    """Return the browser address of a bucket on the given endpoint."""
    return f"{endpoint}/minio/{bucket}"


class BucketResource:
    """Buckets with their ACL and quota.

    ``policy_builder`` turns an ACL name and a bucket name into the bucket
    policy document for that ACL; it is needed for every ACL but ``private``.
    """

    def __init__(
        self, client: Any, admin: Any = None, policy_builder: PolicyBuilder | None = None
    ) -> None:
        self.client = client
        self.admin = admin
        self.policy_builder = policy_builder

    def _acl_policy(self, bucket: str, acl: str) -> str:
        if acl not in KNOWN_ACLS:
            raise ResourceError(
                "unsupported ACL",
                acl,
                "(valid acl: private, public-write, public-read, public-read-write, public)",
            )
        if acl == PRIVATE_ACL:
            return ""
        if self.policy_builder is None:
            raise ResourceError(
                "unable to parse bucket policy", bucket, f"no policy defined for ACL {acl}"
            )
        return json.dumps(self.policy_builder(acl, bucket), separators=(",", ":"))

    def _set_acl(self, bucket: str, acl: str) -> None:
        policy = self._acl_policy(bucket, acl)
        # Not every provider supports bucket policies, so an empty one is never sent.
        if not policy:
            return
        try:
            self.client.set_bucket_policy(bucket, policy)
        except Exception as exc:
            log.info("unable to set bucket policy %s: %s", bucket, exc)
            raise ResourceError("unable to set bucket policy", bucket, exc) from exc

    def create(
        self,
        bucket: str = "",
        bucket_prefix: str = "",
        acl: str = PRIVATE_ACL,
        region: str = "",
        object_locking: bool = False,
        quota: int | None = None,
    ) -> dict | None:
        if len(bucket_prefix) > MAX_BUCKET_NAME_LENGTH - UNIQUE_ID_SUFFIX_LENGTH:
            raise ValueError(
                "expected length of bucket_prefix to be in the range (0 - "
                f"{MAX_BUCKET_NAME_LENGTH - UNIQUE_ID_SUFFIX_LENGTH}), got {bucket_prefix}"
            )
        if bucket:
            name = bucket
        elif bucket_prefix:
            name = prefixed_unique_id(bucket_prefix)
        else:
            name = unique_id()
        region = region or DEFAULT_REGION

        log.debug("Creating bucket: [%s] in region: [%s]", name, region)
        try:
            check_valid_bucket_name(name)
        except ValueError as exc:
            raise ResourceError("unable to create bucket", name, exc) from exc

        try:
            exists = self.client.bucket_exists(name)
        except Exception as exc:
            raise ResourceError("unable to check bucket", name, exc) from exc
        if exists:
            raise ResourceError("bucket already exists!", name)

        try:
            self.client.make_bucket(name, region=region, object_locking=object_locking)
        except Exception as exc:
            log.info("unable to create bucket %s: %s", name, exc)
            raise ResourceError("unable to create bucket", name, exc) from exc

        try:
            self._set_acl(name, acl)
        except ResourceError as exc:
            raise ResourceError("[ACL] Unable to create bucket", name, exc) from exc

        log.debug("Created bucket: [%s] in region: [%s]", name, region)
        state = self.update(name, quota=quota)
        if state is not None:
            state["acl"] = acl
            state["object_locking"] = object_locking
        return state

    def read(self, bucket: str) -> dict | None:
        """Return the bucket's state, or None when it does not exist."""
        log.debug("Reading bucket [%s]", bucket)
        try:
            found = self.client.bucket_exists(bucket)
        except Exception as exc:
            log.info("unable to find bucket %s: %s", bucket, exc)
            found = False
        if not found:
            return None
        log.debug("Bucket [%s] exists!", bucket)
        return {
            "id": bucket,
            "bucket": bucket,
            "arn": bucket_arn(bucket),
            "bucket_domain_name": bucket_domain_name(bucket, self.client.endpoint_url),
        }

    def update(
        self, bucket: str, acl: str | None = None, quota: int | None = None
    ) -> dict | None:
        """Apply the settings that changed (those not None), then read the bucket."""
        if acl is not None:
            try:
                self._set_acl(bucket, acl)
            except ResourceError as exc:
                raise ResourceError("[ACL] Unable to update bucket", bucket, exc) from exc
            log.debug("Bucket [%s] updated!", bucket)

        if quota is not None:
            if quota < 0:
                raise ValueError(f"bucket quota must be a non-negative value, got: {quota}")
            try:
                self.admin.set_bucket_quota(bucket, quota, HARD_QUOTA)
            except Exception as exc:
                raise ResourceError("error setting bucket quota", bucket, exc) from exc
            log.debug("Bucket [%s] updated!", bucket)

        state = self.read(bucket)
        if state is not None:
            if acl is not None:
                state["acl"] = acl
            if quota is not None:
                state["quota"] = quota
        return state

    def delete(self, bucket: str, force_destroy: bool = False) -> None:
        """Remove the bucket, first emptying it when ``force_destroy`` is set."""
        log.debug("Deleting bucket [%s]", bucket)
        try:
            self.client.remove_bucket(bucket)
        except Exception as exc:
            if "empty" in str(exc) and force_destroy:
                objects = self.client.list_objects(
                    bucket, recursive=True, with_versions=True
                )
                errors = list(self.client.remove_objects(bucket, objects))
                if errors:
                    raise ResourceError(
                        "unable to remove bucket", bucket, "could not delete objects"
                    ) from exc
                self.delete(bucket, force_destroy)
                return
            log.info("unable to remove bucket %s: %s", bucket, exc)
            raise ResourceError("unable to remove bucket", bucket, exc) from exc
        log.debug("Deleted bucket: [%s]", bucket)