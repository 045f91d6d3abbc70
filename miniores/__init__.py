"""Resources for managing MinIO buckets, policies, lifecycle rules, tiers, KMS keys and notifications through supplied clients."""

__version__ = "0.1.0"