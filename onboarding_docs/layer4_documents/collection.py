"""
Layer 4 — Document Collection
The set of documents captured during one onboarding session, with
selection, bulk delete and a search/filter/sort view.
"""
import logging
from dataclasses import replace
from typing import Iterable, List, Optional, Set

from ..error_handlers import BulkDeleteNotConfirmedError, UnknownDocumentError, ValidationError
from ..i18n import category_label, translate
from ..models import DocumentCategory, DocumentRecord
from .previews import PreviewStore

logger = logging.getLogger(__name__)

SORT_KEYS = ('name', 'category', 'quality', 'captured_at')
DEFAULT_SORT = 'captured_at'


class DocumentCollection:
    """
    Ordered document list plus the current multi-selection.

    view() is computed from the live list on every call.
    """

    def __init__(self, previews: Optional[PreviewStore] = None, language: str = 'en'):
        self.previews = previews or PreviewStore()
        self.language = language
        self._documents: List[DocumentRecord] = []
        self.selected: Set[str] = set()

    # ------------------------------------------------------------------
    # Membership
    # ------------------------------------------------------------------

    @property
    def documents(self) -> List[DocumentRecord]:
        return list(self._documents)

    def __len__(self) -> int:
        return len(self._documents)

    def __iter__(self):
        return iter(list(self._documents))

    def __contains__(self, document_id) -> bool:
        return any(doc.id == document_id for doc in self._documents)

    def get(self, document_id: str) -> DocumentRecord:
        return self._documents[self._index(document_id)]

    def add(self, record: DocumentRecord) -> DocumentRecord:
        if record.id in self:
            raise ValidationError(
                message=f"Document {record.id} is already in the collection",
                error_code="DUPLICATE_DOCUMENT",
                details={"document_id": record.id}
            )
        if record.preview_handle is None:
            record.preview_handle = self.previews.create(record.source_file)
        self._documents.append(record)
        logger.info(f"[Layer 4] Added {record.id} ({record.name}), {len(self)} in collection")
        return record

    def remove(self, document_id: str) -> DocumentRecord:
        index = self._index(document_id)
        record = self._documents.pop(index)
        self.selected.discard(document_id)
        self.previews.release(record.preview_handle)
        logger.info(f"[Layer 4] Removed {document_id}")
        return record

    def replace(self, document_id: str, new_record: DocumentRecord) -> DocumentRecord:
        """
        Put new_record where document_id was. The old preview is released and
        a selection on the old id moves to the new one.
        """
        index = self._index(document_id)
        old = self._documents[index]
        if new_record.id != document_id and new_record.id in self:
            raise ValidationError(
                message=f"Document {new_record.id} is already in the collection",
                error_code="DUPLICATE_DOCUMENT",
                details={"document_id": new_record.id}
            )

        if new_record.preview_handle is None:
            if new_record.source_file is old.source_file:
                handle = old.preview_handle
            else:
                handle = self.previews.create(new_record.source_file)
            new_record = replace(new_record, preview_handle=handle)

        if new_record.preview_handle != old.preview_handle:
            self.previews.release(old.preview_handle)

        self._documents[index] = new_record
        if document_id in self.selected:
            self.selected.discard(document_id)
            self.selected.add(new_record.id)
        logger.info(f"[Layer 4] Replaced {document_id} with {new_record.id}")
        return new_record

    def clear(self):
        for record in self._documents:
            self.previews.release(record.preview_handle)
        self._documents = []
        self.selected.clear()

    def _index(self, document_id: str) -> int:
        for index, doc in enumerate(self._documents):
            if doc.id == document_id:
                return index
        raise UnknownDocumentError(document_id)

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def select(self, document_id: str):
        self._index(document_id)
        self.selected.add(document_id)

    def deselect(self, document_id: str):
        self.selected.discard(document_id)

    def toggle(self, document_id: str) -> bool:
        """Flip selection for one document. Returns the new selected state."""
        if document_id in self.selected:
            self.selected.discard(document_id)
            return False
        self.select(document_id)
        return True

    def select_all(self, query: str = '', category=None, sort: str = DEFAULT_SORT) -> Set[str]:
        """
        Select every document in the given view, or clear the selection when
        all of them are already selected.
        """
        visible = {doc.id for doc in self.view(query, category, sort)}
        if visible and visible <= self.selected:
            self.selected.clear()
        else:
            self.selected = visible
        return set(self.selected)

    def clear_selection(self):
        self.selected.clear()

    def confirm_message(self) -> str:
        return translate('collection.confirm_delete', self.language, count=len(self.selected))

    def bulk_delete(self, confirm: bool = False, ids: Optional[Iterable[str]] = None) -> List[DocumentRecord]:
        """
        Delete the selected documents (or the given ids) in one step.

        Every id is checked before anything is removed, so an unknown id
        leaves the collection untouched.

        Raises:
            BulkDeleteNotConfirmedError: confirm was not given
            UnknownDocumentError: An id is not in the collection
        """
        targets = set(ids) if ids is not None else set(self.selected)
        if not targets:
            return []
        if not confirm:
            raise BulkDeleteNotConfirmedError(len(targets))

        for document_id in targets:
            self._index(document_id)

        removed = [doc for doc in self._documents if doc.id in targets]
        self._documents = [doc for doc in self._documents if doc.id not in targets]
        for record in removed:
            self.previews.release(record.preview_handle)
        self.selected -= targets
        logger.info(f"[Layer 4] Bulk deleted {len(removed)} documents, {len(self)} remain")
        return removed

    # ------------------------------------------------------------------
    # View
    # ------------------------------------------------------------------

    def view(self, query: str = '', category=None, sort: str = DEFAULT_SORT) -> List[DocumentRecord]:
        """
        Filtered and sorted documents.

        Args:
            query: Case-insensitive match against file name or category label
            category: DocumentCategory (or its value); None or 'all' for every category
            sort: 'name', 'category', 'quality' (best first) or 'captured_at' (newest first)
        """
        if sort not in SORT_KEYS:
            raise ValidationError(
                message=f"Unknown sort key: {sort}",
                error_code="INVALID_SORT_KEY",
                details={"sort": sort, "allowed": list(SORT_KEYS)}
            )

        documents = list(self._documents)

        if category and category != 'all':
            try:
                wanted = DocumentCategory(getattr(category, 'value', category))
            except ValueError:
                raise ValidationError(
                    message=f"Unknown category: {category}",
                    error_code="INVALID_CATEGORY",
                    details={
                        "category": str(category),
                        "allowed": [c.value for c in DocumentCategory] + ['all']
                    }
                )
            documents = [doc for doc in documents if doc.category == wanted]

        needle = (query or '').strip().lower()
        if needle:
            documents = [
                doc for doc in documents
                if needle in doc.name.lower()
                or needle in category_label(doc.category, self.language).lower()
            ]

        if sort == 'name':
            documents.sort(key=lambda doc: doc.name.lower())
        elif sort == 'category':
            documents.sort(key=lambda doc: doc.category.value)
        elif sort == 'quality':
            documents.sort(key=lambda doc: doc.quality.score, reverse=True)
        else:
            documents.sort(key=lambda doc: doc.captured_at, reverse=True)
        return documents

    def to_list(self) -> List[dict]:
        return [doc.to_dict() for doc in self._documents]
