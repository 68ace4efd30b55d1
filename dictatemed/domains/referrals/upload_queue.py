"""
Client-side queue for uploading several referral documents.

The queue registers all files with one batch request, then runs each file
through upload, confirm, text extraction and fast patient extraction with a
bounded number in flight. Full structured extraction is started in the
background and reported separately so the clinician can start the
consultation as soon as the patient identifiers are known.

Every HTTP call goes through ``_request_with_retry``: 5xx responses and
network failures are retried with exponential backoff, and 429 responses
wait for ``Retry-After`` when the server sends one.
"""

from __future__ import annotations

import asyncio
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence

import httpx
from pydantic import BaseModel, ConfigDict, Field

from dictatemed.core.database.base import new_id
from dictatemed.core.logging_config import get_logger
from dictatemed.core.models.domain.referrals import (
    ALLOWED_REFERRAL_MIME_TYPES,
    MAX_REFERRAL_FILE_SIZE,
    FastExtractedData,
    format_file_size,
)

logger = get_logger(__name__)

MAX_BATCH_FILES = 10
MAX_CONCURRENT_UPLOADS = 3

REFERRALS_PATH = "/api/v1/referrals"

PROGRESS_UPLOADING = 10
PROGRESS_UPLOADED = 40
PROGRESS_CONFIRMED = 50
PROGRESS_EXTRACTING_TEXT = 55
PROGRESS_TEXT_EXTRACTED = 70
PROGRESS_EXTRACTING_FAST = 75
PROGRESS_COMPLETE = 100


class UploadStatus(str, Enum):
    QUEUED = "queued"
    UPLOADING = "uploading"
    UPLOADED = "uploaded"
    EXTRACTING = "extracting"
    COMPLETE = "complete"
    FAILED = "failed"


class RetryConfig(BaseModel):
    max_retries: int = 3
    initial_delay_ms: int = 1000
    max_delay_ms: int = 10000

    def delay_seconds(self, attempt: int) -> float:
        return min(self.initial_delay_ms * (2**attempt), self.max_delay_ms) / 1000


class QueuedFile(BaseModel):
    """One file moving through the upload pipeline."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    id: str = Field(default_factory=new_id)
    filename: str
    mime_type: str
    content: bytes = Field(repr=False)
    status: UploadStatus = UploadStatus.QUEUED
    progress: int = 0
    document_id: Optional[str] = None
    upload_url: Optional[str] = None
    error: Optional[str] = None
    fast_extraction_data: Optional[FastExtractedData] = None
    full_extraction_complete: bool = False

    @property
    def size_bytes(self) -> int:
        return len(self.content)


class UploadQueueError(Exception):
    """A request in the upload pipeline failed after retries."""


def validate_file(filename: str, mime_type: str, size_bytes: int) -> Optional[str]:
    """Return a user-facing error for an unacceptable file, or None."""
    if mime_type not in ALLOWED_REFERRAL_MIME_TYPES:
        return "Invalid file type. Accepted formats: .pdf, .txt"
    if size_bytes <= 0:
        return "File is empty."
    if size_bytes > MAX_REFERRAL_FILE_SIZE:
        return f"File too large. Maximum size is {format_file_size(MAX_REFERRAL_FILE_SIZE)}."
    return None


class DocumentUploadQueue:
    """
    Queue of referral files uploaded against the referral API.

    Args:
        client: HTTP client with base URL and auth headers already set
        max_files: Files accepted per batch
        max_concurrent: Files processed at once
        retry: Backoff policy for failed requests
        on_change: Called with the file whenever its state changes
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        max_files: int = MAX_BATCH_FILES,
        max_concurrent: int = MAX_CONCURRENT_UPLOADS,
        retry: Optional[RetryConfig] = None,
        on_change: Optional[Callable[[QueuedFile], None]] = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.client = client
        self.max_files = max_files
        self.max_concurrent = max_concurrent
        self.retry = retry or RetryConfig()
        self.on_change = on_change
        self._sleep = sleep
        self.files: List[QueuedFile] = []
        self.is_uploading = False
        self._tasks: Dict[str, asyncio.Task] = {}
        self._background: set[asyncio.Task] = set()
        self._generation = 0

    # ------------------------------------------------------------------
    # Queue management
    # ------------------------------------------------------------------

    def add_files(self, files: Sequence[tuple[str, str, bytes]]) -> List[Dict[str, str]]:
        """
        Add ``(filename, mime_type, content)`` tuples to the queue.

        Returns:
            Validation errors as ``{"filename", "error"}`` dicts. Files past
            the batch cap are reported as one error.
        """
        errors: List[Dict[str, str]] = []
        accepted = 0
        available = self.max_files - len(self.files)

        for filename, mime_type, content in files:
            error = validate_file(filename, mime_type, len(content))
            if error:
                errors.append({"filename": filename, "error": error})
                continue
            if accepted >= available:
                continue
            self.files.append(QueuedFile(filename=filename, mime_type=mime_type, content=content))
            accepted += 1

        valid_count = len(files) - len(errors)
        if valid_count > accepted:
            errors.append(
                {
                    "filename": "Multiple files",
                    "error": f"Maximum {self.max_files} files allowed. {accepted} files added.",
                }
            )
        logger.debug(f"Queued {accepted} file(s)", extra={"rejected": len(errors)})
        return errors

    def get_file(self, file_id: str) -> Optional[QueuedFile]:
        return next((f for f in self.files if f.id == file_id), None)

    def remove_file(self, file_id: str) -> None:
        self._cancel_task(file_id)
        self.files = [f for f in self.files if f.id != file_id]

    def cancel_file(self, file_id: str) -> None:
        self._cancel_task(file_id)
        queued = self.get_file(file_id)
        if queued and queued.status not in (UploadStatus.COMPLETE, UploadStatus.FAILED):
            self._update(queued, status=UploadStatus.FAILED, error="Upload cancelled")

    def clear_queue(self) -> List[asyncio.Task]:
        """
        Abort every in-flight request and empty the queue.

        A running ``start_upload`` stops before its next window.

        Returns:
            The cancelled tasks, for callers that need to wait on them
        """
        self._generation += 1
        tasks = [task for task in list(self._tasks.values()) + list(self._background) if not task.done()]
        for task in tasks:
            task.cancel()
        self._tasks.clear()
        self._background.clear()
        self.files = []
        self.is_uploading = False
        return tasks

    async def reset(self) -> None:
        """Cancel everything and empty the queue."""
        tasks = self.clear_queue()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    def _is_runnable(self, queued: QueuedFile) -> bool:
        return queued.status == UploadStatus.QUEUED and any(f is queued for f in self.files)

    def _cancel_task(self, file_id: str) -> None:
        task = self._tasks.pop(file_id, None)
        if task and not task.done():
            task.cancel()

    def _update(self, queued: QueuedFile, **changes: Any) -> None:
        for key, value in changes.items():
            setattr(queued, key, value)
        if self.on_change:
            self.on_change(queued)

    # ------------------------------------------------------------------
    # Derived state
    # ------------------------------------------------------------------

    @property
    def has_errors(self) -> bool:
        return any(f.status == UploadStatus.FAILED for f in self.files)

    @property
    def failed_files(self) -> List[QueuedFile]:
        return [f for f in self.files if f.status == UploadStatus.FAILED]

    @property
    def processing_files(self) -> List[QueuedFile]:
        done = (UploadStatus.QUEUED, UploadStatus.COMPLETE, UploadStatus.FAILED)
        return [f for f in self.files if f.status not in done]

    @property
    def completed_files(self) -> List[QueuedFile]:
        return [f for f in self.files if f.status == UploadStatus.COMPLETE]

    @property
    def all_fast_extractions_complete(self) -> bool:
        return bool(self.files) and all(
            f.status in (UploadStatus.COMPLETE, UploadStatus.FAILED) for f in self.files
        )

    @property
    def all_full_extractions_complete(self) -> bool:
        return bool(self.files) and all(
            f.full_extraction_complete or f.status == UploadStatus.FAILED for f in self.files
        )

    @property
    def can_proceed(self) -> bool:
        return self.all_fast_extractions_complete and bool(self.completed_files)

    @property
    def aggregated_fast_extraction(self) -> Optional[FastExtractedData]:
        """Patient identifiers from the first completed file that has any."""
        for queued in self.completed_files:
            if queued.fast_extraction_data is not None:
                return queued.fast_extraction_data
        return None

    # ------------------------------------------------------------------
    # Upload pipeline
    # ------------------------------------------------------------------

    async def start_upload(self) -> None:
        """Register and process every queued file."""
        pending = [f for f in self.files if f.status == UploadStatus.QUEUED]
        if not pending or self.is_uploading:
            return
        self.is_uploading = True
        generation = self._generation
        try:
            await self._register_batch(pending)
            ready = [f for f in pending if f.status == UploadStatus.QUEUED and f.document_id]
            for start in range(0, len(ready), self.max_concurrent):
                if generation != self._generation:
                    logger.info("Upload run stopped after the queue was cleared")
                    break
                window = [f for f in ready[start : start + self.max_concurrent] if self._is_runnable(f)]
                await asyncio.gather(*(self._run_file(f) for f in window))
        finally:
            if generation == self._generation:
                self.is_uploading = False
        logger.info(
            f"Upload run finished: {len(self.completed_files)} complete, {len(self.failed_files)} failed"
        )

    async def retry_file(self, file_id: str) -> None:
        """Register a failed file again and run it through the pipeline."""
        queued = self.get_file(file_id)
        if queued is None or queued.status != UploadStatus.FAILED:
            return
        self._update(
            queued,
            status=UploadStatus.QUEUED,
            progress=0,
            error=None,
            document_id=None,
            upload_url=None,
            fast_extraction_data=None,
            full_extraction_complete=False,
        )
        await self._register_batch([queued])
        if queued.status == UploadStatus.QUEUED and queued.document_id:
            await self._run_file(queued)

    async def wait_for_background(self) -> None:
        """Wait for pending structured extractions."""
        if self._background:
            await asyncio.gather(*list(self._background), return_exceptions=True)

    async def _register_batch(self, files: List[QueuedFile]) -> None:
        payload = {
            "files": [{"filename": f.filename, "mime_type": f.mime_type, "size_bytes": f.size_bytes} for f in files]
        }
        try:
            response = await self._request_with_retry("POST", f"{REFERRALS_PATH}/batch", json=payload)
        except UploadQueueError as e:
            for queued in files:
                self._update(queued, status=UploadStatus.FAILED, error=str(e))
            return

        body = response.json()
        created = {item["filename"]: item for item in body.get("files", [])}
        rejected = {item["filename"]: item["error"] for item in body.get("errors", [])}
        for queued in files:
            if queued.filename in created:
                item = created.pop(queued.filename)
                self._update(queued, document_id=item["id"], upload_url=item["upload_url"])
            else:
                self._update(
                    queued,
                    status=UploadStatus.FAILED,
                    error=rejected.get(queued.filename, "File was not registered"),
                )

    async def _run_file(self, queued: QueuedFile) -> None:
        task = asyncio.create_task(self._process_file(queued))
        self._tasks[queued.id] = task
        try:
            await task
        except asyncio.CancelledError:
            if queued.status != UploadStatus.FAILED:
                self._update(queued, status=UploadStatus.FAILED, error="Upload cancelled")
        finally:
            self._tasks.pop(queued.id, None)

    async def _process_file(self, queued: QueuedFile) -> None:
        if not self._is_runnable(queued):
            return
        document_path = f"{REFERRALS_PATH}/{queued.document_id}"
        try:
            self._update(queued, status=UploadStatus.UPLOADING, progress=PROGRESS_UPLOADING)
            await self._request_with_retry(
                "PUT", queued.upload_url, content=queued.content, headers={"Content-Type": queued.mime_type}
            )
            self._update(queued, status=UploadStatus.UPLOADED, progress=PROGRESS_UPLOADED)

            await self._request_with_retry("PATCH", document_path, json={"size_bytes": queued.size_bytes})
            self._update(queued, progress=PROGRESS_CONFIRMED)

            self._update(queued, status=UploadStatus.EXTRACTING, progress=PROGRESS_EXTRACTING_TEXT)
            await self._request_with_retry("POST", f"{document_path}/extract-text")
            self._update(queued, progress=PROGRESS_TEXT_EXTRACTED)
        except UploadQueueError as e:
            logger.warning(f"Upload of {queued.filename} failed: {e}")
            self._update(queued, status=UploadStatus.FAILED, error=str(e))
            return

        self._update(queued, progress=PROGRESS_EXTRACTING_FAST)
        fast_error = None
        fast_data = None
        try:
            response = await self._request_with_retry("POST", f"{document_path}/extract-fast")
            body = response.json()
            if body.get("data"):
                fast_data = FastExtractedData.model_validate(body["data"])
            elif body.get("error"):
                fast_error = body["error"]
        except UploadQueueError as e:
            fast_error = f"Fast extraction failed: {e}"
            logger.info(f"Skipping structured extraction for {queued.filename}: {fast_error}")
            self._update(queued, status=UploadStatus.COMPLETE, progress=PROGRESS_COMPLETE, error=fast_error)
            return

        if fast_error:
            logger.info(f"Continuing without patient identifiers for {queued.filename}: {fast_error}")
        self._update(
            queued,
            status=UploadStatus.COMPLETE,
            progress=PROGRESS_COMPLETE,
            fast_extraction_data=fast_data,
            error=fast_error,
        )

        task = asyncio.create_task(self._run_full_extraction(queued, document_path))
        self._background.add(task)
        task.add_done_callback(self._background.discard)

    async def _run_full_extraction(self, queued: QueuedFile, document_path: str) -> None:
        try:
            await self._request_with_retry("POST", f"{document_path}/extract-structured")
        except UploadQueueError as e:
            logger.warning(f"Structured extraction failed for {queued.filename}: {e}")
            return
        self._update(queued, full_extraction_complete=True)

    async def _request_with_retry(self, method: str, url: Optional[str], **kwargs: Any) -> httpx.Response:
        """
        Send a request, retrying transient failures.

        Raises:
            UploadQueueError: A non-retryable response, or retries exhausted
        """
        if not url:
            raise UploadQueueError("Missing request URL")

        attempt = 0
        while True:
            try:
                response = await self.client.request(method, url, **kwargs)
            except httpx.TransportError as e:
                if attempt >= self.retry.max_retries:
                    raise UploadQueueError(f"Network error: {e}") from e
                await self._sleep(self.retry.delay_seconds(attempt))
                attempt += 1
                continue

            if response.is_success:
                return response

            if response.status_code == 429 and attempt < self.retry.max_retries:
                retry_after = response.headers.get("Retry-After")
                delay = float(retry_after) if retry_after and retry_after.isdigit() else self.retry.delay_seconds(attempt)
                await self._sleep(delay)
                attempt += 1
                continue

            if response.status_code >= 500 and attempt < self.retry.max_retries:
                await self._sleep(self.retry.delay_seconds(attempt))
                attempt += 1
                continue

            raise UploadQueueError(_error_message(response))


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        body = None
    if isinstance(body, dict) and body.get("error"):
        return str(body["error"])
    return f"Request failed with status {response.status_code}"
