"""
Cleanup Tasks for Worker
These tasks are executed by RQ workers to remove blobs whose records are gone
"""

import logging

from edutest.services.storage import get_storage

logger = logging.getLogger(__name__)


def cleanup_blobs_task(bucket: str, paths: list[str]) -> dict:
    """
    Worker task that deletes blobs from storage.

    Used after a test/task cascade delete, after a student removes a
    submission from their history, and for uploads whose record could not be
    written. A failure on one blob is logged and the rest are still deleted.

    Args:
        bucket: logical bucket name
        paths: blob keys inside the bucket

    Returns:
        Dictionary with the deleted and failed keys
    """
    storage = get_storage()
    deleted: list[str] = []
    failed: list[str] = []

    for path in paths:
        try:
            storage.delete(bucket, path)
            deleted.append(path)
        except Exception as e:
            logger.error(f"Failed to delete blob {bucket}/{path}: {e}", exc_info=True)
            failed.append(path)

    logger.info(
        f"Cleanup in {bucket} finished: {len(deleted)} deleted, {len(failed)} failed"
    )
    return {
        "status": "success" if not failed else "partial",
        "bucket": bucket,
        "deleted": deleted,
        "failed": failed,
    }
