"""Remote storage tiers used as transition targets by lifecycle rules."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Iterable

from miniores.policy import ResourceError

log = logging.getLogger(__name__)

REDACTED = "REDACTED"


class TierType(str, Enum):
    """Kinds of remote tier the server can transition objects to."""

    S3 = "s3"
    MINIO = "minio"
    GCS = "gcs"
    AZURE = "azure"

    def __str__(self) -> str:
        return self.value


@dataclass
class TierConfig:
    """A remote tier as known to the admin API."""

    name: str
    type: TierType
    bucket: str = ""
    prefix: str = ""
    endpoint: str = ""
    region: str = ""
    access_key: str = ""
    secret_key: str = ""
    storage_class: str = ""
    credentials: str = ""
    account_name: str = ""
    account_key: str = ""


_CONFIG_KEYS = {
    TierType.S3: "s3_config",
    TierType.MINIO: "minio_config",
    TierType.GCS: "gcs_config",
    TierType.AZURE: "azure_config",
}

# Fields copied from a config block onto the tier, by tier type.
_BLOCK_FIELDS = {
    TierType.S3: ("access_key", "secret_key"),
    TierType.MINIO: ("access_key", "secret_key"),
    TierType.GCS: ("credentials",),
    TierType.AZURE: ("account_name", "account_key"),
}

# (target, source) pairs used when editing a tier, by tier type.
_EDIT_FIELDS = {
    TierType.S3: (("access_key", "access_key"), ("secret_key", "secret_key")),
    TierType.MINIO: (("access_key", "access_key"), ("secret_key", "secret_key")),
    TierType.GCS: (),
    TierType.AZURE: (("secret_key", "account_key"),),
}


def _text(data: dict, key: str) -> str:
    value = data.get(key)
    return value if isinstance(value, str) else ""


def _tier_type(settings: dict) -> TierType:
    value = settings.get("type")
    try:
        return TierType(value)
    except ValueError:
        allowed = [member.value for member in TierType]
        raise ValueError(f"expected type to be one of {allowed}, got {value}") from None


def _block(settings: dict, key: str) -> dict:
    blocks = settings.get(key)
    if not isinstance(blocks, list) or not blocks or not isinstance(blocks[0], dict):
        raise ValueError(f"{key} is required for tier type {settings.get('type')}")
    return blocks[0]


def build_tier_config(settings: dict) -> TierConfig:
    """Build the tier to register from resource settings; raise ValueError when incomplete."""
    tier_type = _tier_type(settings)
    block = _block(settings, _CONFIG_KEYS[tier_type])
    tier = TierConfig(
        name=_text(settings, "name"),
        type=tier_type,
        bucket=_text(settings, "bucket"),
        prefix=_text(settings, "prefix"),
        region=_text(settings, "region"),
    )
    if tier_type is not TierType.GCS:
        tier.endpoint = _text(settings, "endpoint")
    if tier_type in (TierType.S3, TierType.GCS, TierType.AZURE) and "storage_class" in block:
        tier.storage_class = _text(block, "storage_class")
    for field in _BLOCK_FIELDS[tier_type]:
        setattr(tier, field, _text(block, field))
    return tier


def tier_credentials(settings: dict) -> dict:
    """Return the credentials used to edit an existing tier."""
    tier_type = _tier_type(settings)
    block = _block(settings, _CONFIG_KEYS[tier_type])
    result: dict[str, Any] = {target: "" for target in ("access_key", "secret_key")}
    result["creds_json"] = b""
    for target, source in _EDIT_FIELDS[tier_type]:
        result[target] = _text(block, source)
    if tier_type is TierType.GCS:
        result["creds_json"] = _text(block, "credentials").encode("utf-8")
    return result


def suppress_secret_diff(old: str, new: str, force_new_credentials: bool) -> bool:
    """Ignore a secret change when the stored value is the server's redacted placeholder."""
    if force_new_credentials:
        return False
    return old == REDACTED


def find_tier(tiers: Iterable[TierConfig], name: str) -> TierConfig | None:
    """Return the first tier with the given name, or None."""
    return next((tier for tier in tiers if tier.name == name), None)


def _config_block(tier: TierConfig) -> dict[str, str]:
    if tier.type is TierType.MINIO:
        return {"access_key": tier.access_key, "secret_key": tier.secret_key}
    if tier.type is TierType.GCS:
        return {"credentials": tier.credentials, "storage_class": tier.storage_class}
    if tier.type is TierType.AZURE:
        return {
            "account_name": tier.account_name,
            "account_key": tier.account_key,
            "storage_class": tier.storage_class,
        }
    return {
        "access_key": tier.access_key,
        "secret_key": tier.secret_key,
        "storage_class": tier.storage_class,
    }


class IlmTierResource:
    """Remote tiers registered with the admin API."""

    def __init__(self, admin: Any) -> None:
        self.admin = admin

    def create(self, settings: dict) -> dict | None:
        name = _text(settings, "name")
        try:
            tier = build_tier_config(settings)
        except ValueError as exc:
            raise ResourceError("creating remote tier failed", name, exc) from exc
        try:
            self.admin.add_tier(tier)
        except Exception as exc:
            raise ResourceError("adding remote tier failed", name, exc) from exc
        log.debug("Created Tier %s", name)
        return self.read(name)

    def read(self, name: str) -> dict | None:
        """Return the tier's state, or None when no tier has that name."""
        try:
            tiers = self.admin.list_tiers()
        except Exception as exc:
            raise ResourceError("reading remote tier failed", name, exc) from exc
        tier = find_tier(tiers, name)
        if tier is None:
            log.info("unable to find tier: %s", name)
            return None
        log.debug("Tier [%s] exists!", name)
        return {
            "id": tier.name,
            "name": tier.name,
            "type": tier.type.value,
            "prefix": tier.prefix,
            "bucket": tier.bucket,
            "endpoint": tier.endpoint,
            "region": tier.region,
            _CONFIG_KEYS[tier.type]: [_config_block(tier)],
        }

    def update(self, settings: dict, changed: bool) -> dict | None:
        """Push new credentials when a config block changed, then read the tier back."""
        name = _text(settings, "name")
        credentials = tier_credentials(settings)
        if changed:
            try:
                self.admin.edit_tier(name, credentials)
            except Exception as exc:
                raise ResourceError("error updating ILM tier", name, exc) from exc
        return self.read(name)

    def delete(self, name: str) -> None:
        try:
            self.admin.remove_tier(name)
        except Exception as exc:
            raise ResourceError("deleting remote tier failed", name, exc) from exc