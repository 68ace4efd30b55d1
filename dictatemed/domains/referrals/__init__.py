"""Referral letter upload and extraction."""

from .upload_queue import DocumentUploadQueue, QueuedFile, UploadStatus

__all__ = ["DocumentUploadQueue", "QueuedFile", "UploadStatus"]
