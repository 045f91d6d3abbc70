import pytest

from miniores.policy import ResourceError
from miniores.tier import (
    IlmTierResource,
    TierConfig,
    TierType,
    build_tier_config,
    find_tier,
    suppress_secret_diff,
    tier_credentials,
)


class FakeAdmin:
    def __init__(self, fail=None):
        self.tiers = []
        self.edits = []
        self.removed = []
        self.fail = fail or set()

    def _check(self, op):
        if op in self.fail:
            raise RuntimeError(f"{op} failed")

    def add_tier(self, tier):
        self._check("add")
        self.tiers.append(tier)

    def list_tiers(self):
        self._check("list")
        return list(self.tiers)

    def edit_tier(self, name, creds):
        self._check("edit")
        self.edits.append((name, creds))

    def remove_tier(self, name):
        self._check("remove")
        self.removed.append(name)
        self.tiers = [t for t in self.tiers if t.name != name]


def minio_settings(**extra):
    settings = {
        "name": "COLD",
        "type": "minio",
        "bucket": "remote-bucket",
        "endpoint": "http://localhost:9000",
        "prefix": "data/",
        "region": "",
        "minio_config": [{"access_key": "placeholder", "secret_key": "secret"}],
    }
    settings.update(extra)
    return settings


def test_build_minio_tier():
    tier = build_tier_config(minio_settings())
    assert tier.type is TierType.MINIO
    assert tier.name == "COLD"
    assert tier.endpoint == "http://localhost:9000"
    assert tier.access_key == "placeholder"
    assert tier.secret_key == "secret"
    assert tier.prefix == "data/"


def test_build_s3_tier_keeps_storage_class():
    settings = {
        "name": "S3TIER",
        "type": "s3",
        "bucket": "b",
        "s3_config": [
            {"access_key": "placeholder", "secret_key": "secret", "storage_class": "GLACIER"}
        ],
    }
    tier = build_tier_config(settings)
    assert tier.type is TierType.S3
    assert tier.storage_class == "GLACIER"


def test_build_gcs_tier_ignores_endpoint():
    settings = {
        "name": "G",
        "type": "gcs",
        "bucket": "b",
        "endpoint": "http://localhost:1",
        "gcs_config": [{"credentials": "secret", "storage_class": "COLDLINE"}],
    }
    tier = build_tier_config(settings)
    assert tier.endpoint == ""
    assert tier.credentials == "secret"


def test_build_azure_tier():
    settings = {
        "name": "AZ",
        "type": "azure",
        "bucket": "b",
        "endpoint": "http://localhost:2",
        "azure_config": [{"account_name": "account", "account_key": "secret"}],
    }
    tier = build_tier_config(settings)
    assert tier.account_name == "account"
    assert tier.account_key == "secret"
    assert tier.endpoint == "http://localhost:2"


def test_build_rejects_unknown_type():
    with pytest.raises(ValueError, match="expected type"):
        build_tier_config(minio_settings(type="ftp"))


def test_build_requires_config_block():
    with pytest.raises(ValueError, match="minio_config"):
        build_tier_config(minio_settings(minio_config=[]))


def test_credentials_per_type():
    assert tier_credentials(minio_settings())["secret_key"] == "secret"
    gcs = {"name": "G", "type": "gcs", "gcs_config": [{"credentials": "token"}]}
    assert tier_credentials(gcs)["creds_json"] == b"token"
    azure = {"name": "A", "type": "azure", "azure_config": [{"account_key": "secret"}]}
    creds = tier_credentials(azure)
    assert creds["secret_key"] == "secret"
    assert creds["access_key"] == ""


@pytest.mark.parametrize(
    "old, force, expected",
    [("REDACTED", False, True), ("REDACTED", True, False), ("secret", False, False)],
)
def test_suppress_secret_diff(old, force, expected):
    assert suppress_secret_diff(old, "secret", force) is expected


def test_find_tier():
    a = TierConfig(name="A", type=TierType.S3)
    b = TierConfig(name="B", type=TierType.MINIO)
    assert find_tier([a, b], "B") is b
    assert find_tier([a, b], "C") is None


def test_create_then_read_round_trip():
    admin = FakeAdmin()
    state = IlmTierResource(admin).create(minio_settings())
    assert state["id"] == "COLD"
    assert state["type"] == "minio"
    assert state["bucket"] == "remote-bucket"
    assert state["minio_config"] == [{"access_key": "placeholder", "secret_key": "secret"}]
    assert len(admin.tiers) == 1


def test_read_missing_tier_returns_none():
    assert IlmTierResource(FakeAdmin()).read("nothing") is None


def test_read_list_failure_raises():
    with pytest.raises(ResourceError, match="reading remote tier failed"):
        IlmTierResource(FakeAdmin(fail={"list"})).read("COLD")


def test_create_add_failure_raises():
    with pytest.raises(ResourceError, match="adding remote tier failed"):
        IlmTierResource(FakeAdmin(fail={"add"})).create(minio_settings())


def test_create_with_missing_block_raises():
    with pytest.raises(ResourceError, match="creating remote tier failed"):
        IlmTierResource(FakeAdmin()).create(minio_settings(minio_config=None))


def test_update_edits_only_when_changed():
    admin = FakeAdmin()
    resource = IlmTierResource(admin)
    resource.create(minio_settings())
    resource.update(minio_settings(), changed=False)
    assert admin.edits == []
    state = resource.update(minio_settings(), changed=True)
    assert admin.edits[0][0] == "COLD"
    assert admin.edits[0][1]["secret_key"] == "secret"
    assert state["name"] == "COLD"


def test_update_failure_raises():
    admin = FakeAdmin(fail={"edit"})
    with pytest.raises(ResourceError, match="error updating ILM tier"):
        IlmTierResource(admin).update(minio_settings(), changed=True)


def test_delete_removes_and_wraps_errors():
    admin = FakeAdmin()
    resource = IlmTierResource(admin)
    resource.create(minio_settings())
    resource.delete("COLD")
    assert admin.removed == ["COLD"]
    assert resource.read("COLD") is None
    with pytest.raises(ResourceError, match="deleting remote tier failed"):
        IlmTierResource(FakeAdmin(fail={"remove"})).delete("COLD")