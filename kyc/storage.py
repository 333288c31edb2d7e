import logging
import time
from concurrent.futures import ThreadPoolExecutor
from typing import Dict, Optional, Union

from config import settings
from .exceptions import StorageError
from .file_converter import data_url_to_bytes
from .supabase import SupabaseClient

logger = logging.getLogger(__name__)

DOCUMENT_TYPES = ("identity", "address", "face")


def is_inline_data_url(path: Optional[str]) -> bool:
    """Older records hold the image inline instead of a storage path"""
    return bool(path) and path.startswith("data:")


class DocumentStorage:
    """
    Stores captured documents in a private bucket under a per-user prefix
    and hands out time-limited signed URLs for them.
    """

    def __init__(self, client: SupabaseClient, bucket: str = None, expires_in: int = None):
        self.client = client
        self.bucket = bucket or settings.STORAGE_BUCKET
        self.expires_in = expires_in or settings.SIGNED_URL_EXPIRES_IN

    def build_path(self, user_id: str, document_type: str) -> str:
        return f"{user_id}/{document_type}_{int(time.time() * 1000)}.jpg"

    def upload_document(self,
                        image: Union[str, bytes],
                        user_id: str,
                        document_type: str,
                        access_token: Optional[str] = None) -> str:
        """
        Uploads a captured image (data URL or JPEG bytes).
        Returns the storage path, which is what gets stored on the record.
        """
        if document_type not in DOCUMENT_TYPES:
            raise ValueError(f"Unknown document type: {document_type}")

        if isinstance(image, str):
            content, _ = data_url_to_bytes(image)
        else:
            content = image

        path = self.build_path(user_id, document_type)
        try:
            self.client.storage_upload(
                self.bucket, path, content,
                content_type="image/jpeg",
                upsert=True,
                access_token=access_token,
            )
        except StorageError as e:
            raise StorageError(
                f"Failed to upload {document_type} document: {e.message}",
                original_error=e,
                remote_status=e.remote_status,
            )

        logger.info("Uploaded %s document to %s/%s", document_type, self.bucket, path)
        return path

    def get_signed_url(self, storage_path: Optional[str], access_token: Optional[str] = None) -> Optional[str]:
        """Signed URL for a stored document; None when it cannot be issued"""
        if not storage_path:
            return None

        if is_inline_data_url(storage_path):
            return storage_path

        try:
            return self.client.storage_sign(
                self.bucket, storage_path, self.expires_in, access_token=access_token
            )
        except StorageError as e:
            logger.warning("Could not sign %s/%s: %s", self.bucket, storage_path, e)
            return None

    def get_signed_urls(self,
                        paths: Dict[str, Optional[str]],
                        access_token: Optional[str] = None) -> Dict[str, Optional[str]]:
        """
        Issues signed URLs for several documents at once.
        Every key in DOCUMENT_TYPES is present in the result; a failed or
        missing document maps to None.
        """
        with ThreadPoolExecutor(max_workers=len(DOCUMENT_TYPES)) as pool:
            futures = {
                doc_type: pool.submit(self.get_signed_url, paths.get(doc_type), access_token)
                for doc_type in DOCUMENT_TYPES
            }
            return {doc_type: future.result() for doc_type, future in futures.items()}

    def delete_document(self, storage_path: Optional[str], access_token: Optional[str] = None) -> None:
        if not storage_path or is_inline_data_url(storage_path):
            return

        try:
            self.client.storage_remove(self.bucket, [storage_path], access_token=access_token)
        except StorageError as e:
            raise StorageError(
                f"Failed to delete document: {e.message}",
                original_error=e,
                remote_status=e.remote_status,
            )

        logger.info("Deleted %s/%s", self.bucket, storage_path)
