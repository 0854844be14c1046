from tutorchat.storage.blob import BlobStore, S3BlobStore, attachment_key, sanitize_file_name

__all__ = ["BlobStore", "S3BlobStore", "attachment_key", "sanitize_file_name"]
