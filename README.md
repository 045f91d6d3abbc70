# miniores

`miniores` manages the state of a MinIO server as a set of resources.
Every resource class wraps an admin or S3 client object that you pass in.
It offers `create`/`put`, `read` and `delete`, and some classes also offer
`update`:

| Module | Resources and helpers |
| --- | --- |
| `miniores.policy` | `IamPolicyResource`, `BucketPolicyResource`, `ResourceError`, `validate_iam_name_policy`, `validate_iam_policy_json`, `normalize_json_string`, `policies_are_equivalent`, `normalize_and_compare_policies`, `unique_id`, `prefixed_unique_id` |
| `miniores.attachment` | `UserPolicyAttachmentResource`, `KeyedLock`, `read_user_policies` |
| `miniores.kms` | `KmsKeyResource` |
| `miniores.lifecycle` | `IlmPolicyResource`, `LifecycleRule`, `LifecycleConfiguration` and the other rule types, validators and parsers |
| `miniores.tier` | `IlmTierResource`, `TierType`, `TierConfig`, `build_tier_config`, `tier_credentials`, `suppress_secret_diff`, `find_tier` |
| `miniores.bucket` | `BucketResource`, `validate_s3_bucket_name`, `check_valid_bucket_name`, `bucket_arn`, `bucket_domain_name` |
| `miniores.notification` | `BucketNotificationResource`, `Arn`, `QueueConfig`, `NotificationConfiguration`, `parse_arn`, `validate_minio_arn` |

Each operation returns the resource's state as a plain dictionary. A `read`
returns `None` when the resource no longer exists on the server. When a call
to the server fails, the operation raises `ResourceError`, whose message
names both the operation and the resource. Settings that are invalid before
any server call is made, such as a negative bucket quota or a malformed
import ID, raise `ValueError`.

## Installation

```
pip install .
```

The package has no runtime dependencies. To run the test suite:

```
pip install ".[test]"
pytest
```

## Validating input

The validators check the same rules that the resources apply before they
talk to the server:

```python
from miniores.bucket import validate_s3_bucket_name, bucket_arn
from miniores.policy import validate_iam_policy_json, policies_are_equivalent
from miniores.lifecycle import validate_ilm_days, parse_ilm_expiration

validate_s3_bucket_name("foo.bar")      # accepted
validate_s3_bucket_name("192.168.0.1")  # raises ValueError: looks like an IP address

bucket_arn("photos")                    # "arn:aws:s3:::photos"

validate_iam_policy_json('{"Version": "2012-10-17", "Statement": []}', "policy")  # []

policies_are_equivalent(
    '{"Version":"2012-10-17","Statement":[{"Effect":"Allow","Action":["s3:GetObject","s3:ListBucket"],"Resource":["arn:aws:s3:::*"]}]}',
    '{"Version":"2012-10-17","Statement":[{"Effect":"Allow","Action":["s3:ListBucket","s3:GetObject"],"Resource":["arn:aws:s3:::*"]}]}',
)                                       # True: order of actions does not matter

validate_ilm_days("5d")                 # accepted; "0d" or "5" raise ValueError
parse_ilm_expiration("DeleteMarker")    # Expiration(delete_marker=True)
```

`validate_iam_name_policy` and `validate_iam_policy_json` return a list of
problems, empty when the value is valid; the other validators raise
`ValueError`.

## Lifecycle rules

Lifecycle rules are written as plain dictionaries, in the same shape that
`IlmPolicyResource.read` returns them:

```python
from miniores.lifecycle import create_lifecycle_rule, flatten_rule

rule = create_lifecycle_rule({
    "id": "expire-temp",
    "status": "Enabled",
    "expiration": "7d",
    "filter": "temp/",
    "tags": {"key1": "value1"},
    "transition": [],
    "noncurrent_transition": [],
    "noncurrent_expiration": [],
})
flatten_rule(rule)["expiration"]        # "7d"
```

An expiration may be a number of days (`"5d"`), a date (`"2022-01-01"`) or
`"DeleteMarker"`. A rule's status defaults to `"Enabled"`.

## Remote tiers

`build_tier_config` turns a tier's settings (`name`, `type`, `bucket`,
`endpoint`, `prefix`, `region` and one of `minio_config`, `s3_config`,
`gcs_config` or `azure_config`, each a one-element list of dictionaries)
into a `TierConfig` for the server. Tier types are `s3`, `minio`, `gcs` and
`azure`. Secrets that the server reports back as `REDACTED` are not treated
as changes unless `force_new_credentials` is set; see `suppress_secret_diff`.

## Bucket notifications

Queue notifications take an ARN of the form
`arn:minio:sqs::primary:webhook`, a list of events such as
`s3:ObjectCreated:*`, and an optional key prefix and suffix filter.
`parse_arn` and `validate_minio_arn` check the ARN; queue entries whose ARN
cannot be parsed are skipped by `build_queue_configs`.

## Client objects

The resources call these methods on the objects you give them:

- admin client: `add_canned_policy`, `info_canned_policy`,
  `remove_canned_policy`, `get_user_info`, `set_policy`, `create_key`,
  `get_key_status`, `delete_key`, `add_tier`, `list_tiers`, `edit_tier`,
  `remove_tier`, `set_bucket_quota`
- S3 client: `bucket_exists`, `make_bucket`, `remove_bucket`,
  `list_objects`, `remove_objects`, `set_bucket_policy`,
  `get_bucket_policy`, `get_bucket_lifecycle`, `set_bucket_lifecycle`,
  `set_bucket_notification`, `get_bucket_notification`, and the attribute
  `endpoint_url`

An error raised by one of these calls that carries a `code` attribute is
treated as a server error response; `XMinioAdminNoSuchPolicy` and
`XMinioAdminNoSuchUser` mean the policy or user does not exist.

## What the package does not do

- It does not talk to a server by itself. It has no HTTP client, no request
  signing and no credential handling; the client objects above must be
  supplied by you.
- It ships no bucket policy documents for the public ACLs. `BucketResource`
  takes a `policy_builder` callable that returns the policy for an ACL name
  and a bucket; without one, every ACL other than `private` fails.
- It keeps no state of its own between calls and has no command-line
  interface or configuration file format.