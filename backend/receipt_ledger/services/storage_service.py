from google.cloud import storage

from receipt_ledger.core.config import settings

# --- Receipt image archive (Cloud Storage) ---

EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/png": "png",
}


class ImageArchive:
    """
    Keeps the original upload at ``receipts/<receipt_id>.<ext>``. The object
    name is content-derived, so uploading the same photo again rewrites the
    same object.
    """

    def __init__(self, client: storage.Client | None = None, bucket_name: str = settings.GCP_STORAGE_BUCKET):
        self._client = client
        self.bucket_name = bucket_name

    @property
    def client(self) -> storage.Client:
        if self._client is None:
            self._client = storage.Client(project=settings.GCP_PROJECT_ID)
        return self._client

    def archive(self, receipt_id: str, image_bytes: bytes, content_type: str | None) -> str:
        """
        Upload the image and return its gs:// URI.
        """
        file_ext = EXTENSIONS.get((content_type or "").lower(), "bin")
        blob_name = f"receipts/{receipt_id}.{file_ext}"
        blob = self.client.bucket(self.bucket_name).blob(blob_name)
        blob.upload_from_string(image_bytes, content_type=content_type or "application/octet-stream")
        return f"gs://{self.bucket_name}/{blob_name}"
