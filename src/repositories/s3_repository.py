"""
S3 Repository for object storage operations.
Handles multipart uploads to Amazon S3 or an S3-compatible bucket.
"""
import threading
from datetime import datetime
from typing import Callable, List, Optional
from urllib.parse import quote
import boto3
from botocore.config import Config
from botocore.exceptions import BotoCoreError, ClientError
from src.core import config
from src.core.exceptions import (
    SessionFinalizedException,
    StorageAuthorizationException,
    StorageException
)
from src.core.logger import get_logger
from src.models.multipart_session import RemoteMultipartSession
from src.repositories.object_storage import ObjectStorage

logger = get_logger(__name__)

# Error codes meaning the credential itself was rejected (S3 and B2 flavours)
AUTH_ERROR_CODES = {
    'ExpiredToken',
    'ExpiredTokenException',
    'InvalidAccessKeyId',
    'InvalidToken',
    'RequestExpired',
    'SignatureDoesNotMatch',
    'TokenRefreshRequired',
    'Unauthorized',
    'bad_auth_token',
    'expired_auth_token',
}


def is_auth_error(error: ClientError) -> bool:
    return error.response.get('Error', {}).get('Code') in AUTH_ERROR_CODES


class StorageCredential:
    """Authorized client plus the generation it was issued in."""

    def __init__(self, client, generation: int):
        self.client = client
        self.generation = generation
        self.authorized_at = datetime.utcnow()


class S3Repository(ObjectStorage):
    """Repository for S3 multipart operations."""

    def __init__(self, client_factory: Optional[Callable] = None):
        self.bucket_name = config.settings.s3_bucket_name
        self.region = config.settings.aws_region
        self.endpoint_url = config.settings.s3_endpoint_url or None
        self.public_url_base = config.settings.public_url_base
        self._client_factory = client_factory or self._create_client
        self._credential: Optional[StorageCredential] = None
        self._credential_lock = threading.Lock()

    def _create_client(self):
        # Retries are owned by the chunked uploader, not botocore
        return boto3.client(
            's3',
            region_name=self.region,
            endpoint_url=self.endpoint_url,
            config=Config(
                signature_version='s3v4',
                retries={'max_attempts': 1, 'mode': 'standard'}
            )
        )

    def authorize(self) -> StorageCredential:
        """
        Return the process-wide credential, authorizing lazily on first use.

        Returns:
            StorageCredential shared by all operations

        Raises:
            StorageAuthorizationException: If the bucket cannot be reached with the credential
        """
        credential = self._credential
        if credential is not None:
            return credential

        with self._credential_lock:
            if self._credential is None:
                self._credential = self._authorize(generation=1)
            return self._credential

    def refresh(self, stale: StorageCredential) -> StorageCredential:
        """
        Replace a rejected credential.

        Concurrent callers holding the same stale credential converge on a
        single refresh; the ones arriving later reuse its result.
        """
        with self._credential_lock:
            current = self._credential
            if current is not None and current.generation > stale.generation:
                return current

            logger.info(f"Refreshing storage credential (generation {stale.generation})")
            self._credential = None
            self._credential = self._authorize(generation=stale.generation + 1)
            return self._credential

    def _authorize(self, generation: int) -> StorageCredential:
        client = self._client_factory()
        try:
            client.head_bucket(Bucket=self.bucket_name)
        except (ClientError, BotoCoreError) as e:
            raise StorageAuthorizationException(
                "Failed to authorize with object storage", detail=str(e)
            ) from e

        logger.info(f"Authorized with bucket {self.bucket_name} (generation {generation})")
        return StorageCredential(client, generation)

    def _call(self, action: Callable):
        """Run a client call, refreshing the credential once if it is rejected."""
        credential = self.authorize()
        try:
            return action(credential.client)
        except ClientError as e:
            if not is_auth_error(e):
                raise
            logger.warning(f"Storage credential rejected: {e.response['Error']['Code']}")
            credential = self.refresh(credential)
            return action(credential.client)

    def open_multipart(self, remote_name: str, content_type: Optional[str] = None) -> RemoteMultipartSession:
        """
        Open a multipart upload session.

        Args:
            remote_name: Object key the parts will be combined into
            content_type: Optional MIME type stored with the object

        Returns:
            RemoteMultipartSession bound to remote_name

        Raises:
            StorageException: If the session cannot be opened
        """
        params = {'Bucket': self.bucket_name, 'Key': remote_name}
        if content_type:
            params['ContentType'] = content_type

        try:
            response = self._call(lambda client: client.create_multipart_upload(**params))
        except (ClientError, BotoCoreError) as e:
            raise StorageException("Failed to open multipart upload", detail=str(e)) from e

        session = RemoteMultipartSession(response['UploadId'], remote_name)
        logger.info(f"Opened multipart session {session.session_id} for {remote_name}")
        return session

    def upload_part(self, session: RemoteMultipartSession, index: int, data: bytes) -> str:
        """
        Upload one part of a multipart session.

        Args:
            session: Open session
            index: Zero-based part sequence index
            data: Part bytes

        Returns:
            Part identifier (ETag) to pass to finalize

        Raises:
            SessionFinalizedException: If the session is already sealed
            StorageException: If the upload fails
        """
        if session.sealed:
            raise SessionFinalizedException(f"Session {session.session_id} is already finalized")

        try:
            response = self._call(lambda client: client.upload_part(
                Bucket=self.bucket_name,
                Key=session.remote_name,
                PartNumber=index + 1,
                UploadId=session.session_id,
                Body=data
            ))
        except (ClientError, BotoCoreError) as e:
            raise StorageException(f"Failed to upload part {index + 1}", detail=str(e)) from e

        part_id = response['ETag']
        session.commit_part(index, part_id)
        return part_id

    def finalize(self, session: RemoteMultipartSession, ordered_part_ids: List[str]) -> str:
        """
        Combine the uploaded parts into the final object. Call-once per session.

        Args:
            session: Session whose parts were all uploaded
            ordered_part_ids: Part identifiers in sequence order

        Returns:
            Remote file id (version id when the bucket is versioned, otherwise the ETag)

        Raises:
            SessionFinalizedException: If the session was already finalized
            StorageException: If the part list is wrong or the remote call fails
        """
        if not ordered_part_ids:
            raise StorageException(f"Session {session.session_id} has no parts to finalize")
        if list(ordered_part_ids) != session.part_ids:
            raise StorageException(
                f"Part list does not match the parts committed to session {session.session_id}"
            )

        session.seal()

        parts = [
            {'ETag': part_id, 'PartNumber': number}
            for number, part_id in enumerate(ordered_part_ids, start=1)
        ]
        try:
            response = self._call(lambda client: client.complete_multipart_upload(
                Bucket=self.bucket_name,
                Key=session.remote_name,
                UploadId=session.session_id,
                MultipartUpload={'Parts': parts}
            ))
        except (ClientError, BotoCoreError) as e:
            raise StorageException("Failed to finalize multipart upload", detail=str(e)) from e

        session.remote_file_id = response.get('VersionId') or response['ETag'].strip('"')
        logger.info(f"Finalized {session.remote_name} from {len(parts)} parts")
        return session.remote_file_id

    def put_object(self, remote_name: str, data: bytes, content_type: Optional[str] = None) -> str:
        """
        Store a small object in one request.

        Raises:
            StorageException: If the upload fails
        """
        params = {'Bucket': self.bucket_name, 'Key': remote_name, 'Body': data}
        if content_type:
            params['ContentType'] = content_type

        try:
            response = self._call(lambda client: client.put_object(**params))
        except (ClientError, BotoCoreError) as e:
            raise StorageException(f"Failed to store {remote_name}", detail=str(e)) from e

        return response.get('VersionId') or response['ETag'].strip('"')

    def derive_url(self, remote_name: str) -> str:
        """
        Generate the public URL of an object.

        Format: {PUBLIC_URL_BASE}/{key} or https://{bucket}.s3.{region}.amazonaws.com/{key}
        """
        base = self.public_url_base.rstrip('/')
        if not base:
            base = f"https://{self.bucket_name}.s3.{self.region}.amazonaws.com"
        return f"{base}/{quote(remote_name)}"

    def delete(self, remote_name: str, file_id: Optional[str] = None) -> bool:
        """
        Delete an object. file_id is treated as a version id when given.

        Raises:
            StorageException: If deletion fails
        """
        params = {'Bucket': self.bucket_name, 'Key': remote_name}
        if file_id:
            params['VersionId'] = file_id

        try:
            self._call(lambda client: client.delete_object(**params))
        except (ClientError, BotoCoreError) as e:
            raise StorageException(f"Failed to delete {remote_name}", detail=str(e)) from e
        return True

    def list_unfinished(self) -> List[dict]:
        """
        List multipart sessions opened but never finalized or cancelled.

        Returns:
            List of dicts with session_id, remote_name and initiated_at

        Raises:
            StorageException: If the listing fails
        """
        def _list(client):
            sessions = []
            paginator = client.get_paginator('list_multipart_uploads')
            for page in paginator.paginate(Bucket=self.bucket_name):
                for upload in page.get('Uploads', []):
                    sessions.append({
                        'session_id': upload['UploadId'],
                        'remote_name': upload['Key'],
                        'initiated_at': upload.get('Initiated')
                    })
            return sessions

        try:
            return self._call(_list)
        except (ClientError, BotoCoreError) as e:
            raise StorageException("Failed to list unfinished uploads", detail=str(e)) from e

    def cancel_multipart(self, remote_name: str, session_id: str) -> bool:
        """
        Abort an unfinished multipart session, discarding its parts.

        Raises:
            StorageException: If the session cannot be cancelled
        """
        try:
            self._call(lambda client: client.abort_multipart_upload(
                Bucket=self.bucket_name,
                Key=remote_name,
                UploadId=session_id
            ))
        except (ClientError, BotoCoreError) as e:
            raise StorageException(f"Failed to cancel upload session {session_id}", detail=str(e)) from e

        logger.info(f"Cancelled multipart session {session_id} for {remote_name}")
        return True
