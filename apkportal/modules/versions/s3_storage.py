import boto3
from botocore.exceptions import ClientError
from apkportal.config import settings
import logging

logger = logging.getLogger(__name__)


class S3Storage:
    """APK binaries in S3, used instead of Supabase Storage when AWS is configured"""

    def __init__(self):
        if not settings.s3_configured:
            raise ValueError("AWS S3 credentials and bucket name must be configured")

        self.s3_client = boto3.client(
            's3',
            aws_access_key_id=settings.aws_access_key_id,
            aws_secret_access_key=settings.aws_secret_access_key,
            region_name=settings.aws_region
        )
        self.bucket_name = settings.s3_bucket_name

    def upload_file(self, file_content: bytes, key: str,
                    content_type: str = "application/vnd.android.package-archive") -> str:
        """Upload an APK and return its key; an existing object is never replaced"""
        try:
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=file_content,
                ContentType=content_type,
                IfNoneMatch="*"
            )
            return key
        except ClientError as e:
            if e.response.get("Error", {}).get("Code") == "PreconditionFailed":
                raise FileExistsError(f"s3://{self.bucket_name}/{key} already exists") from e
            logger.error(f"Failed to upload APK to S3: {str(e)}")
            raise

    def delete_file(self, key: str) -> bool:
        try:
            self.s3_client.delete_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            logger.error(f"Failed to delete APK from S3: {str(e)}")
            return False

    def public_url(self, key: str) -> str:
        return f"https://{self.bucket_name}.s3.{settings.aws_region}.amazonaws.com/{key}"

    def create_presigned_url(self, key: str, expires_in: int) -> str:
        try:
            return self.s3_client.generate_presigned_url(
                'get_object',
                Params={'Bucket': self.bucket_name, 'Key': key},
                ExpiresIn=expires_in
            )
        except ClientError as e:
            logger.error(f"Failed to presign S3 URL for {key}: {str(e)}")
            raise
