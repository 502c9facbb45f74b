"""Manage the backup bucket's retention (lifecycle) policy."""

import logging
from typing import Dict, List, Optional

import boto3
from botocore.exceptions import ClientError

logger = logging.getLogger(__name__)

RULE_ID = 'LifecyclePolicy'


def build_retention_policy(retention_days: int) -> Dict:
    """Lifecycle configuration that expires backups after retention_days.

    A retention of 0 keeps backups forever: the rule is kept but disabled,
    with a placeholder expiration because S3 requires a positive day count.
    """
    if retention_days < 0:
        raise ValueError(f"retention_days must be >= 0, got {retention_days}")

    enabled = retention_days > 0
    return {
        "Rules": [
            {
                "ID": RULE_ID,
                "Status": "Enabled" if enabled else "Disabled",
                "Filter": {"Prefix": ""},
                "Expiration": {"Days": retention_days if enabled else 1}
            }
        ]
    }


def recommended_bucket_settings() -> Dict:
    """Settings the backup bucket is expected to carry."""
    return {
        "Versioning": "Enabled",
        "SSEAlgorithm": "AES256",
        "PublicAccessBlock": {
            "BlockPublicAcls": True,
            "IgnorePublicAcls": True,
            "BlockPublicPolicy": True,
            "RestrictPublicBuckets": True
        }
    }


class RetentionPolicyManager:
    """Manage S3 bucket lifecycle policies."""

    def __init__(self, bucket_name: str, region: Optional[str] = None, s3_client=None):
        """Initialize lifecycle manager.

        Args:
            bucket_name: S3 bucket name
            region: AWS region
            s3_client: Pre-built S3 client
        """
        self.bucket_name = bucket_name
        self.region = region
        self.s3_client = s3_client or boto3.client('s3', region_name=region)

    def apply_policy(self, retention_days: int) -> bool:
        """Apply the retention policy to the bucket.

        Returns:
            True if successful, False otherwise
        """
        policy = build_retention_policy(retention_days)

        logger.info(f"Applying retention policy to bucket: {self.bucket_name}")
        if retention_days:
            logger.info(f"  Backups expire after {retention_days} days")
        else:
            logger.info("  Backups are retained forever")

        try:
            self.s3_client.put_bucket_lifecycle_configuration(
                Bucket=self.bucket_name,
                LifecycleConfiguration=policy
            )
            logger.info("✓ Retention policy applied successfully")
            return True
        except ClientError as e:
            error_code = e.response['Error']['Code']
            error_msg = e.response['Error'].get('Message', '')
            logger.error(f"Failed to apply retention policy: {error_code} - {error_msg}")
            return False

    def get_current_policy(self) -> Optional[Dict]:
        """Get current lifecycle policy from bucket.

        Returns:
            Dictionary with lifecycle policy, or None if no policy exists
        """
        try:
            response = self.s3_client.get_bucket_lifecycle_configuration(
                Bucket=self.bucket_name
            )
            return {"Rules": response.get("Rules", [])}
        except ClientError as e:
            error_code = e.response['Error']['Code']
            if error_code == 'NoSuchLifecycleConfiguration':
                logger.info("No lifecycle policy currently configured")
            else:
                logger.error(f"Failed to get lifecycle policy: {error_code}")
            return None

    def delete_policy(self) -> bool:
        """Delete lifecycle policy from bucket.

        Returns:
            True if successful, False otherwise
        """
        try:
            self.s3_client.delete_bucket_lifecycle(Bucket=self.bucket_name)
            logger.info("✓ Lifecycle policy deleted")
            return True
        except ClientError as e:
            error_code = e.response['Error']['Code']
            logger.error(f"Failed to delete lifecycle policy: {error_code}")
            return False

    def retention_days(self, policy: Optional[Dict] = None) -> Optional[int]:
        """Retention currently enforced on the bucket (0 = forever, None = unknown).

        Reads the bucket's policy unless one already fetched is given.
        """
        if policy is None:
            policy = self.get_current_policy()
        if policy is None:
            return 0

        for rule in policy['Rules']:
            if rule.get('ID', rule.get('Id')) == RULE_ID:
                if rule.get('Status') != 'Enabled':
                    return 0
                return rule.get('Expiration', {}).get('Days')
        return None

    def check_bucket_settings(self) -> List[str]:
        """Compare the bucket against recommended_bucket_settings().

        Read-only. Returns a list of problems; empty means compliant.
        """
        expected = recommended_bucket_settings()
        problems = []

        try:
            versioning = self.s3_client.get_bucket_versioning(Bucket=self.bucket_name)
            if versioning.get('Status') != expected['Versioning']:
                problems.append(f"Versioning is {versioning.get('Status', 'not enabled')}")
        except ClientError as e:
            problems.append(f"Cannot read versioning: {e.response['Error']['Code']}")

        try:
            encryption = self.s3_client.get_bucket_encryption(Bucket=self.bucket_name)
            rules = encryption['ServerSideEncryptionConfiguration']['Rules']
            algorithms = [r['ApplyServerSideEncryptionByDefault']['SSEAlgorithm'] for r in rules]
            if not any(a in (expected['SSEAlgorithm'], 'aws:kms') for a in algorithms):
                problems.append(f"Default encryption is {', '.join(algorithms)}")
        except ClientError as e:
            problems.append(f"Cannot read encryption: {e.response['Error']['Code']}")

        try:
            block = self.s3_client.get_public_access_block(Bucket=self.bucket_name)
            current = block['PublicAccessBlockConfiguration']
            for setting, value in expected['PublicAccessBlock'].items():
                if current.get(setting) != value:
                    problems.append(f"{setting} is not enabled")
        except ClientError as e:
            problems.append(f"Cannot read public access block: {e.response['Error']['Code']}")

        return problems
