from datetime import date

import pytest

from miniores.lifecycle import (
    Expiration,
    IlmPolicyResource,
    LifecycleConfiguration,
    LifecycleRule,
    NoncurrentVersionExpiration,
    NoncurrentVersionTransition,
    RuleFilter,
    Tag,
    Transition,
    create_lifecycle_rule,
    flatten_rule,
    is_not_found_error,
    parse_ilm_expiration,
    parse_ilm_noncurrent_expiration,
    parse_ilm_noncurrent_transition,
    parse_ilm_transition,
    validate_ilm_date,
    validate_ilm_days,
    validate_ilm_expiration,
    validate_ilm_versions,
)
from miniores.policy import ResourceError


class FakeClient:
    def __init__(self, buckets=("bucket",)):
        self.buckets = set(buckets)
        self.configs = {}
        self.set_failures = []
        self.set_calls = []

    def bucket_exists(self, bucket):
        return bucket in self.buckets

    def get_bucket_lifecycle(self, bucket):
        if bucket not in self.configs:
            raise RuntimeError("The lifecycle configuration does not exist")
        return self.configs[bucket]

    def set_bucket_lifecycle(self, bucket, config):
        self.set_calls.append((bucket, config))
        if self.set_failures and self.set_failures.pop(0):
            raise RuntimeError("server refused")
        if config.is_empty():
            self.configs.pop(bucket, None)
        else:
            self.configs[bucket] = config


def test_parse_expiration_date():
    assert parse_ilm_expiration("2022-01-01") == Expiration(date=date(2022, 1, 1))


def test_parse_expiration_days():
    assert parse_ilm_expiration("5d") == Expiration(days=5)


def test_parse_expiration_delete_marker():
    assert parse_ilm_expiration("DeleteMarker") == Expiration(delete_marker=True)


@pytest.mark.parametrize("value", ["", "junk", "2022-1-1", "2022-02-30", "5"])
def test_parse_expiration_unreadable(value):
    assert parse_ilm_expiration(value) == Expiration()


def test_validate_expiration_rejects_junk():
    with pytest.raises(ValueError, match="expiration must be a duration"):
        validate_ilm_expiration("soon")


def test_validate_expiration_rejects_zero_days():
    with pytest.raises(ValueError):
        validate_ilm_expiration("0d")


def test_validate_days_format():
    with pytest.raises(ValueError, match=r"days must be in format '\(number\)d', got: 5"):
        validate_ilm_days("5")


def test_validate_days_positive():
    with pytest.raises(ValueError, match="days must be greater than 0, got: 0"):
        validate_ilm_days("0d")


def test_validate_date():
    with pytest.raises(ValueError, match="date must be in format 'YYYY-MM-DD'"):
        validate_ilm_date("2024-6-06")


def test_validate_versions():
    with pytest.raises(ValueError, match="newer_versions must be non-negative, got: -1"):
        validate_ilm_versions(-1)


def test_parse_transition_days():
    result = parse_ilm_transition([{"days": "1d", "date": "", "storage_class": "COLD"}])
    assert result == Transition(days=1, storage_class="COLD")


def test_parse_transition_date():
    result = parse_ilm_transition([{"days": "", "date": "2024-06-06", "storage_class": "COLD"}])
    assert result == Transition(date=date(2024, 6, 6), storage_class="COLD")


def test_parse_transition_empty():
    assert parse_ilm_transition([]).is_null()


def test_parse_noncurrent_transition():
    result = parse_ilm_noncurrent_transition(
        [{"days": "3d", "storage_class": "COLD", "newer_versions": 2}]
    )
    assert result == NoncurrentVersionTransition(
        noncurrent_days=3, storage_class="COLD", newer_noncurrent_versions=2
    )


def test_parse_noncurrent_transition_bad_days():
    with pytest.raises(ValueError, match="invalid days format: x"):
        parse_ilm_noncurrent_transition([{"days": "x", "storage_class": "COLD"}])


def test_parse_noncurrent_transition_missing_days():
    with pytest.raises(ValueError, match="days is required"):
        parse_ilm_noncurrent_transition([{"storage_class": "COLD"}])


def test_parse_noncurrent_transition_bad_block():
    with pytest.raises(ValueError, match="invalid noncurrent_transition format"):
        parse_ilm_noncurrent_transition(["nope"])


def test_parse_noncurrent_expiration():
    result = parse_ilm_noncurrent_expiration([{"days": "5d"}])
    assert result == NoncurrentVersionExpiration(noncurrent_days=5)


def test_parse_noncurrent_expiration_empty_days():
    assert parse_ilm_noncurrent_expiration([{"days": ""}]) == NoncurrentVersionExpiration()


def test_create_rule_requires_id():
    with pytest.raises(ValueError, match="rule id is required"):
        create_lifecycle_rule({"expiration": "5d"})


def test_create_rule_transition_requires_storage_class():
    with pytest.raises(ValueError, match="storage_class is required for transition"):
        create_lifecycle_rule({"id": "a", "transition": [{"days": "1d"}]})


def test_create_rule_noncurrent_transition_days_invalid():
    with pytest.raises(ValueError, match="invalid days format"):
        create_lifecycle_rule(
            {"id": "a", "noncurrent_transition": [{"days": "0d", "storage_class": "C"}]}
        )


def test_create_rule_default_status_and_prefix():
    rule = create_lifecycle_rule({"id": "asdf", "expiration": "2022-01-01", "filter": "temp/"})
    assert rule.status == "Enabled"
    assert rule.rule_filter == RuleFilter(prefix="temp/")
    assert rule.expiration == Expiration(date=date(2022, 1, 1))


def test_create_rule_with_tags():
    rule = create_lifecycle_rule(
        {
            "id": "withPrefixAndTags",
            "expiration": "5d",
            "filter": "temp/",
            "tags": {"key2": "value2", "key1": "value1"},
        }
    )
    assert rule.rule_filter == RuleFilter(
        and_prefix="temp/", and_tags=(Tag("key1", "value1"), Tag("key2", "value2"))
    )


def test_flatten_rule_roundtrip_tags():
    rule = create_lifecycle_rule(
        {"id": "t", "expiration": "5d", "filter": "temp/", "tags": {"key1": "value1"}}
    )
    flat = flatten_rule(rule)
    assert flat["filter"] == "temp/"
    assert flat["tags"] == {"key1": "value1"}
    assert flat["expiration"] == "5d"


def test_flatten_rule_delete_marker():
    rule = LifecycleRule(id="x", expiration=Expiration(delete_marker=True))
    assert flatten_rule(rule)["expiration"] == "DeleteMarker"


@pytest.mark.parametrize(
    "error, expected",
    [
        ("The lifecycle configuration does not exist", True),
        ("code NoSuchLifecycleConfiguration", True),
        ("Access Denied", False),
    ],
)
def test_is_not_found_error(error, expected):
    assert is_not_found_error(RuntimeError(error)) is expected


def test_resource_basic_date_expiration():
    client = FakeClient()
    state = IlmPolicyResource(client).create(
        "bucket", [{"id": "asdf", "expiration": "2022-01-01", "filter": "temp/"}]
    )
    assert state["bucket"] == "bucket"
    assert state["rule"][0]["expiration"] == "2022-01-01"
    assert state["rule"][0]["filter"] == "temp/"
    assert not client.configs["bucket"].is_empty()


def test_resource_delete_marker_then_days():
    client = FakeClient()
    resource = IlmPolicyResource(client)
    first = resource.create("bucket", [{"id": "asdf", "expiration": "DeleteMarker"}])
    assert first["rule"][0]["expiration"] == "DeleteMarker"
    second = resource.update(
        "bucket", [{"id": "asdf", "expiration": "5d", "filter": "temp/"}], True
    )
    assert second["rule"][0]["expiration"] == "5d"


def test_resource_expire_noncurrent_version():
    client = FakeClient()
    state = IlmPolicyResource(client).create(
        "bucket",
        [{"id": "expireNoncurrentVersion", "noncurrent_expiration": [{"days": "5d"}]}],
    )
    assert state["rule"][0]["expiration"] == ""
    assert state["rule"][0]["noncurrent_expiration"][0]["days"] == "5d"


def test_resource_transition_days_and_date():
    client = FakeClient()
    resource = IlmPolicyResource(client)
    days = resource.create(
        "bucket", [{"id": "asdf", "transition": [{"days": "1d", "storage_class": "COLD"}]}]
    )
    assert days["rule"][0]["transition"][0]["days"] == "1d"
    dated = resource.create(
        "bucket",
        [{"id": "asdf", "transition": [{"date": "2024-06-06", "storage_class": "COLD"}]}],
    )
    assert dated["rule"][0]["transition"][0]["date"] == "2024-06-06"
    assert dated["rule"][0]["transition"][0]["storage_class"] == "COLD"


def test_resource_rule_status():
    resource = IlmPolicyResource(FakeClient())
    default = resource.create("bucket", [{"id": "rule-default-status", "expiration": "7d"}])
    assert default["rule"][0]["status"] == "Enabled"
    disabled = resource.update(
        "bucket",
        [{"id": "rule-disabled-status", "status": "Disabled", "expiration": "7d"}],
        True,
    )
    assert disabled["rule"][0]["status"] == "Disabled"
    enabled = resource.update(
        "bucket",
        [{"id": "rule-enabled-status", "status": "Enabled", "expiration": "7d"}],
        True,
    )
    assert enabled["rule"][0]["status"] == "Enabled"


def test_update_without_change_keeps_config():
    client = FakeClient()
    resource = IlmPolicyResource(client)
    resource.create("bucket", [{"id": "a", "expiration": "7d"}])
    state = resource.update("bucket", [{"id": "b", "expiration": "9d"}], False)
    assert state["rule"][0]["id"] == "a"
    assert len(client.set_calls) == 1


def test_create_rolls_back_on_failure():
    client = FakeClient()
    resource = IlmPolicyResource(client)
    resource.create("bucket", [{"id": "old", "expiration": "7d"}])
    client.set_failures = [True, False]
    with pytest.raises(ResourceError, match="failed to set lifecycle"):
        resource.create("bucket", [{"id": "new", "expiration": "3d"}])
    assert client.configs["bucket"].rules[0].id == "old"


def test_create_reports_failed_rollback():
    client = FakeClient()
    resource = IlmPolicyResource(client)
    resource.create("bucket", [{"id": "old", "expiration": "7d"}])
    client.set_failures = [True, True]
    with pytest.raises(ResourceError, match="rollback failed"):
        resource.create("bucket", [{"id": "new", "expiration": "3d"}])


def test_create_rejects_non_dict_rule():
    with pytest.raises(ValueError, match="invalid rule format"):
        IlmPolicyResource(FakeClient()).create("bucket", ["bad"])


def test_read_missing_returns_none():
    assert IlmPolicyResource(FakeClient()).read("bucket") is None


def test_delete_clears_configuration():
    client = FakeClient()
    resource = IlmPolicyResource(client)
    resource.create("bucket", [{"id": "a", "expiration": "7d"}])
    resource.delete("bucket")
    assert "bucket" not in client.configs
    assert client.set_calls[-1][1] == LifecycleConfiguration()


def test_delete_failure_raises():
    client = FakeClient()
    client.set_failures = [True]
    with pytest.raises(ResourceError, match="deleting lifecycle configuration failed"):
        IlmPolicyResource(client).delete("bucket")