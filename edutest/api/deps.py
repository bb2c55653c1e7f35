# edutest/api/deps.py
from edutest.db.session import SessionLocal
from edutest.services.storage import BlobStorage, get_storage
from edutest.services.pdf_renderer import PdfRenderer
from edutest.session.manager import SessionManager
from edutest.session.orchestrator import SubmissionOrchestrator

_session_manager: SessionManager | None = None


def get_blob_storage() -> BlobStorage:
    return get_storage()


def get_session_manager() -> SessionManager:
    global _session_manager
    if _session_manager is None:
        _session_manager = SessionManager(
            SubmissionOrchestrator(get_storage()),
            SessionLocal,
            renderer_factory=PdfRenderer,
        )
    return _session_manager


async def shutdown_session_manager() -> None:
    global _session_manager
    if _session_manager is not None:
        await _session_manager.shutdown()
        _session_manager = None
