"""
Storage Service
Stores generated TISS XML and insurer return files in S3 or on local disk
"""

import logging
import os
from pathlib import Path
from typing import Optional

import boto3
from botocore.exceptions import ClientError

from config import settings
from app.core.error_handling import AppException, ConflictException

logger = logging.getLogger(__name__)


class StorageError(AppException):
    """Upload to object storage failed"""
    def __init__(self, message: str = "Erro ao salvar arquivo"):
        super().__init__(message, status_code=500)


class StorageService:
    """
    Object storage with an upload(path, data, content_type, upsert) -> URL contract.

    Uses the S3 bucket when AWS credentials and bucket are configured,
    otherwise STORAGE_DIR, which main.py serves under /storage.
    """

    def __init__(
        self,
        bucket_name: Optional[str] = None,
        region: Optional[str] = None,
        storage_dir: Optional[str] = None,
        public_url: Optional[str] = None,
    ):
        self.s3_client = None
        self.bucket_name = bucket_name or settings.S3_BUCKET_NAME
        self.region = region or settings.AWS_REGION
        self.storage_dir = Path(storage_dir or settings.STORAGE_DIR)
        self.public_url = (public_url or settings.STORAGE_PUBLIC_URL).rstrip("/")

        aws_access_key = settings.AWS_ACCESS_KEY_ID
        aws_secret_key = settings.AWS_SECRET_ACCESS_KEY

        if all([aws_access_key, aws_secret_key, self.bucket_name]):
            self.s3_client = boto3.client(
                's3',
                aws_access_key_id=aws_access_key,
                aws_secret_access_key=aws_secret_key,
                region_name=self.region
            )
            logger.info(f"Storage backed by S3 bucket {self.bucket_name} ({self.region})")
        else:
            logger.info(f"Storage backed by local directory {self.storage_dir}")

    @property
    def uses_s3(self) -> bool:
        return self.s3_client is not None

    async def upload(self, path: str, data: bytes, content_type: str = "application/octet-stream", upsert: bool = False) -> str:
        """
        Store bytes under a relative path

        Args:
            path: Object key, e.g. batches/12/tiss_202609001_v4.02.00.xml
            data: File content
            content_type: MIME type stored with the object
            upsert: Overwrite an existing object instead of failing

        Returns:
            Public URL of the stored object
        """
        path = path.lstrip("/")
        if ".." in Path(path).parts:
            raise StorageError("Caminho de arquivo inválido")

        if self.uses_s3:
            return self._upload_s3(path, data, content_type, upsert)
        return self._upload_local(path, data, upsert)

    def _upload_s3(self, key: str, data: bytes, content_type: str, upsert: bool) -> str:
        try:
            if not upsert and self._s3_exists(key):
                raise ConflictException("Arquivo já existe")
            self.s3_client.put_object(
                Bucket=self.bucket_name,
                Key=key,
                Body=data,
                ContentType=content_type,
                ServerSideEncryption='AES256',
            )
        except ClientError as e:
            logger.error(f"Error uploading to S3 ({key}): {str(e)}")
            raise StorageError() from e

        url = f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com/{key}"
        logger.info(f"Uploaded {len(data)} bytes to S3: {key}")
        return url

    def _s3_exists(self, key: str) -> bool:
        try:
            self.s3_client.head_object(Bucket=self.bucket_name, Key=key)
            return True
        except ClientError as e:
            if e.response.get('Error', {}).get('Code') in ('404', 'NoSuchKey', 'NotFound'):
                return False
            raise

    def _upload_local(self, path: str, data: bytes, upsert: bool) -> str:
        target = self.storage_dir / path
        if target.exists() and not upsert:
            raise ConflictException("Arquivo já existe")
        try:
            target.parent.mkdir(parents=True, exist_ok=True)
            target.write_bytes(data)
        except OSError as e:
            logger.error(f"Error writing {target}: {e}")
            raise StorageError() from e

        logger.info(f"Stored {len(data)} bytes at {target}")
        return f"{self.public_url}/{path}"


_storage_service: Optional[StorageService] = None


def get_storage_service() -> StorageService:
    """FastAPI dependency returning the process-wide storage service"""
    global _storage_service
    if _storage_service is None:
        _storage_service = StorageService()
    return _storage_service
