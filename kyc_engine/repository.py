import logging
import threading
from collections import defaultdict
from contextlib import contextmanager
from typing import ContextManager, Dict, List, Optional, Protocol

from .errors import ApplicationNotFoundError, InconsistentStateError, StaleApplicationError
from .models import Application, Document, VerificationResult

logger = logging.getLogger(__name__)


class ApplicationRepository(Protocol):
    def lock(self, application_id: str) -> ContextManager[None]:
        ...

    def create(self, application: Application) -> Application:
        ...

    def get(self, application_id: str) -> Application:
        ...

    def save(self, application: Application) -> Application:
        ...

    def find_open_for_user(self, user_id: str) -> Optional[Application]:
        ...

    def list_open(self) -> List[Application]:
        ...

    def add_document(self, document: Document) -> Document:
        ...

    def get_document(self, application_id: str, document_id: str) -> Document:
        ...

    def documents_for(self, application_id: str) -> List[Document]:
        ...

    def add_verification(self, result: VerificationResult) -> VerificationResult:
        ...

    def verifications_for(self, application_id: str) -> List[VerificationResult]:
        ...


class InMemoryRepository:
    """
    Process-local store.

    ``save`` is a compare-and-swap on ``Application.version``: the caller hands
    back the record it read, and the write fails with StaleApplicationError if
    another writer got there first.
    """

    def __init__(self):
        self._guard = threading.RLock()
        self._locks: Dict[str, threading.RLock] = defaultdict(threading.RLock)
        self._applications: Dict[str, Application] = {}
        self._documents: Dict[str, Document] = {}
        self._verifications: Dict[str, VerificationResult] = {}

    @contextmanager
    def lock(self, application_id: str):
        with self._guard:
            lock = self._locks[application_id]
        with lock:
            yield

    def create(self, application: Application) -> Application:
        with self._guard:
            if application.application_id in self._applications:
                raise InconsistentStateError(f"Application {application.application_id} already exists",
                                             application_id=application.application_id)
            existing = self.find_open_for_user(application.user_id)
            if existing is not None:
                raise InconsistentStateError(
                    f"User already has an open application ({existing.application_id})",
                    application_id=existing.application_id,
                )
            stored = application.model_copy(update={"version": 1})
            self._applications[stored.application_id] = stored
            return stored

    def get(self, application_id: str) -> Application:
        with self._guard:
            application = self._applications.get(application_id)
        if application is None:
            raise ApplicationNotFoundError(f"Application not found: {application_id}")
        return application

    def save(self, application: Application) -> Application:
        with self._guard:
            current = self._applications.get(application.application_id)
            if current is None:
                raise ApplicationNotFoundError(f"Application not found: {application.application_id}")
            if current.version != application.version:
                raise StaleApplicationError(
                    f"Application {application.application_id} was modified concurrently "
                    f"(expected version {application.version}, found {current.version})",
                    application_id=application.application_id,
                )
            stored = application.model_copy(update={"version": application.version + 1})
            self._applications[stored.application_id] = stored
            return stored

    def find_open_for_user(self, user_id: str) -> Optional[Application]:
        with self._guard:
            for application in self._applications.values():
                if application.user_id == user_id and not application.is_terminal:
                    return application
        return None

    def list_open(self) -> List[Application]:
        with self._guard:
            return [a for a in self._applications.values() if not a.is_terminal]

    def add_document(self, document: Document) -> Document:
        self.get(document.application_id)
        with self._guard:
            existing = self._documents.get(document.document_id)
            if existing is not None and existing.application_id != document.application_id:
                raise InconsistentStateError(
                    f"Document {document.document_id} belongs to another application",
                    application_id=document.application_id,
                )
            self._documents[document.document_id] = document
        return document

    def get_document(self, application_id: str, document_id: str) -> Document:
        with self._guard:
            document = self._documents.get(document_id)
        if document is None or document.application_id != application_id:
            raise InconsistentStateError(
                f"Document {document_id} does not belong to application {application_id}",
                application_id=application_id,
            )
        return document

    def documents_for(self, application_id: str) -> List[Document]:
        application = self.get(application_id)
        with self._guard:
            return [self._documents[d] for d in application.document_ids if d in self._documents]

    def add_verification(self, result: VerificationResult) -> VerificationResult:
        if result.application_id is None:
            raise InconsistentStateError("Verification result has no owning application")
        self.get(result.application_id)
        with self._guard:
            existing = self._verifications.get(result.verification_id)
            if existing is not None and existing.application_id != result.application_id:
                raise InconsistentStateError(
                    f"Verification {result.verification_id} belongs to another application",
                    application_id=result.application_id,
                )
            self._verifications[result.verification_id] = result
        return result

    def verifications_for(self, application_id: str) -> List[VerificationResult]:
        application = self.get(application_id)
        with self._guard:
            return [self._verifications[v] for v in application.verification_ids if v in self._verifications]
