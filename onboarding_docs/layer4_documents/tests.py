"""
Tests for the document collection, upload orchestration and wizard step.
"""
import threading
from datetime import datetime, timedelta

import pytest

from onboarding_docs.error_handlers import (
    BulkDeleteNotConfirmedError,
    DocumentLimitExceededError,
    DocumentServiceError,
    UnknownDocumentError,
    ValidationError,
)
from onboarding_docs.layer1_capture import CaptureConfig, SurfaceState
from onboarding_docs.layer3_ocr import UploadResult
from onboarding_docs.layer4_documents import (
    DocumentCollection,
    DocumentStep,
    PreviewStore,
    UploadLimits,
    UploadOrchestrator,
)
from onboarding_docs.models import (
    DocumentCategory,
    DocumentQuality,
    DocumentRecord,
    OcrStatus,
    SourceFile,
)
from onboarding_docs.notifications import NotificationChannel, NotificationLog

BASE_TIME = datetime(2024, 5, 1, 12, 0, 0)


def record(doc_id, name, category=DocumentCategory.OTHER, score=80, minutes=0):
    return DocumentRecord(
        id=doc_id,
        source_file=SourceFile(name, 'image/png', b'png'),
        category=category,
        quality=DocumentQuality(score=score),
        captured_at=BASE_TIME + timedelta(minutes=minutes),
    )


@pytest.fixture
def collection():
    items = DocumentCollection(PreviewStore())
    items.add(record('a', 'zeta_passport.png', DocumentCategory.PASSPORT, score=90, minutes=1))
    items.add(record('b', 'alpha_license.png', DocumentCategory.DRIVERS_LICENSE, score=60, minutes=3))
    items.add(record('c', 'mid_ssn.png', DocumentCategory.SSN_CARD, score=75, minutes=2))
    items.add(record('d', 'beta_other.png', DocumentCategory.OTHER, score=40, minutes=0))
    return items


def ids(records):
    return [doc.id for doc in records]


class TestCollectionMembership:
    """Test add, remove and replace."""

    def test_add_creates_preview(self, collection):
        """Test every added record gets a resolvable preview."""
        for doc in collection:
            assert collection.previews.resolve(doc.preview_handle) is doc.source_file

    def test_duplicate_id_rejected(self, collection):
        """Test ids are unique within the collection."""
        with pytest.raises(ValidationError):
            collection.add(record('a', 'again.png'))

    def test_remove_releases_preview(self, collection):
        """Test removal drops the record and its preview."""
        handle = collection.get('b').preview_handle

        collection.remove('b')

        assert ids(collection) == ['a', 'c', 'd']
        assert handle not in collection.previews

    def test_remove_unknown(self, collection):
        """Test removing a missing id raises."""
        with pytest.raises(UnknownDocumentError):
            collection.remove('missing')

    def test_replace_keeps_position(self, collection):
        """Test a replacement takes the same slot and releases the old preview."""
        old_handle = collection.get('c').preview_handle
        collection.select('c')

        new = collection.replace('c', record('c2', 'mid_ssn.png', DocumentCategory.SSN_CARD))

        assert ids(collection) == ['a', 'b', 'c2', 'd']
        assert old_handle not in collection.previews
        assert collection.previews.resolve(new.preview_handle) is new.source_file
        assert collection.selected == {'c2'}


class TestCollectionSelection:
    """Test selection and bulk delete."""

    def test_toggle(self, collection):
        """Test toggling selection on and off."""
        assert collection.toggle('a') is True
        assert collection.toggle('a') is False
        assert collection.selected == set()

    def test_select_all_toggles(self, collection):
        """Test select-all selects the view, then clears when all are selected."""
        assert collection.select_all() == {'a', 'b', 'c', 'd'}
        assert collection.select_all() == set()

    def test_select_all_respects_view(self, collection):
        """Test select-all only covers visible documents."""
        assert collection.select_all(category='passport') == {'a'}

    def test_bulk_delete_requires_confirmation(self, collection):
        """Test nothing is removed without confirmation."""
        collection.select('a')
        collection.select('c')

        with pytest.raises(BulkDeleteNotConfirmedError):
            collection.bulk_delete()

        assert len(collection) == 4
        assert 'Are you sure you want to delete 2 document(s)?' == collection.confirm_message()

    def test_bulk_delete_removes_exactly_selected(self, collection):
        """Test N selected are removed and the rest keep their order."""
        collection.select('a')
        collection.select('c')

        removed = collection.bulk_delete(confirm=True)

        assert sorted(ids(removed)) == ['a', 'c']
        assert ids(collection) == ['b', 'd']
        assert collection.selected == set()
        assert len(collection.previews) == 2

    def test_bulk_delete_is_all_or_nothing(self, collection):
        """Test an unknown id aborts the whole delete."""
        with pytest.raises(UnknownDocumentError):
            collection.bulk_delete(confirm=True, ids=['a', 'missing'])
        assert ids(collection) == ['a', 'b', 'c', 'd']

    def test_bulk_delete_empty_selection(self, collection):
        """Test nothing selected is a no-op."""
        assert collection.bulk_delete(confirm=True) == []


class TestCollectionView:
    """Test search, filter and sort."""

    def test_default_sort_newest_first(self, collection):
        """Test captured_at sorts descending."""
        assert ids(collection.view()) == ['b', 'c', 'a', 'd']

    def test_sort_by_name(self, collection):
        """Test name sorts ascending."""
        assert ids(collection.view(sort='name')) == ['b', 'd', 'c', 'a']

    def test_sort_by_quality(self, collection):
        """Test quality sorts best first."""
        assert ids(collection.view(sort='quality')) == ['a', 'c', 'b', 'd']

    def test_sort_by_category(self, collection):
        """Test category sorts by category value."""
        assert ids(collection.view(sort='category')) == ['b', 'd', 'a', 'c']

    def test_search_filename(self, collection):
        """Test case-insensitive filename search."""
        assert ids(collection.view(query='ALPHA')) == ['b']

    def test_search_category_label(self, collection):
        """Test search matches the localized category label."""
        assert ids(collection.view(query='social security')) == ['c']

    def test_search_spanish_label(self):
        """Test labels follow the collection language."""
        items = DocumentCollection(language='es')
        items.add(record('x', 'scan.png', DocumentCategory.PASSPORT))
        assert ids(items.view(query='pasaporte')) == ['x']

    def test_category_filter(self, collection):
        """Test filtering by category value or enum."""
        assert ids(collection.view(category='ssn_card')) == ['c']
        assert ids(collection.view(category=DocumentCategory.PASSPORT)) == ['a']
        assert len(collection.view(category='all')) == 4

    def test_view_reflects_changes(self, collection):
        """Test the view is recomputed from current state."""
        before = collection.view(query='beta')
        collection.remove('d')
        assert ids(before) == ['d']
        assert collection.view(query='beta') == []

    def test_unknown_sort(self, collection):
        """Test invalid sort keys are rejected."""
        with pytest.raises(ValidationError):
            collection.view(sort='size')

    def test_unknown_category(self, collection):
        """Test an unknown category filter is a validation error."""
        with pytest.raises(ValidationError) as exc:
            collection.view(category='bogus')
        assert exc.value.error_code == 'INVALID_CATEGORY'
        assert 'passport' in exc.value.details['allowed']


class TestUploadOrchestrator:
    """Test ingest, upload and OCR merging."""

    @pytest.fixture
    def channel(self):
        return NotificationChannel()

    @pytest.fixture
    def orchestrator(self, document_client, channel):
        return UploadOrchestrator(DocumentCollection(), client=document_client, notifications=channel)

    def test_successful_upload(self, orchestrator, document_client, small_image):
        """Test upload, OCR request and canonical mapping."""
        result = orchestrator.process_batch([small_image], session_id='sess-1')

        doc = result.records[0]
        assert doc.category == DocumentCategory.DRIVERS_LICENSE
        assert doc.remote_id == 'remote-1'
        assert doc.ocr.status == OcrStatus.COMPLETED
        assert doc.ocr.extracted_fields == {
            'firstName': 'John',
            'lastName': 'Doe',
            'dateOfBirth': '1990-01-15',
            'licenseNumber': 'D1234567',
        }
        assert doc.ocr.confidence_by_field['firstName'] == 95.0
        assert doc.requires_review is False
        document_client.upload_document.assert_called_once_with(
            'sess-1', small_image, DocumentCategory.DRIVERS_LICENSE, 'drivers_license.png'
        )
        document_client.process_ocr.assert_called_once_with('remote-1', 'en')
        assert orchestrator.collection.documents == [doc]

    def test_inline_ocr_result_skips_second_call(self, orchestrator, document_client, small_image, ocr_result):
        """Test an OCR result returned with the upload is used directly."""
        document_client.upload_document.return_value = UploadResult('remote-2', ocr_result=ocr_result)

        result = orchestrator.process_batch([small_image], session_id='sess-1')

        assert result.records[0].ocr.status == OcrStatus.COMPLETED
        document_client.process_ocr.assert_not_called()

    def test_ocr_failure_degrades(self, orchestrator, document_client, small_image):
        """Test upload ok but OCR failing keeps the record, failed and flagged."""
        document_client.process_ocr.side_effect = DocumentServiceError("OCR down", status_code=503)

        result = orchestrator.process_batch([small_image], session_id='sess-1')

        doc = result.records[0]
        assert doc.ocr.status == OcrStatus.FAILED
        assert doc.requires_review is True
        assert doc.remote_id == 'remote-1'
        assert doc.quality.score == 75
        assert orchestrator.collection.documents == [doc]

    def test_upload_failure_degrades(self, orchestrator, document_client, small_image):
        """Test a failed upload still produces a record."""
        document_client.upload_document.side_effect = DocumentServiceError("offline")

        result = orchestrator.process_batch([small_image], session_id='sess-1')

        assert result.records[0].ocr.status == OcrStatus.FAILED
        assert result.records[0].remote_id is None
        document_client.process_ocr.assert_not_called()

    def test_non_numeric_confidence_degrades(self, orchestrator, document_client, small_image, ocr_result):
        """Test a confidence that is not a number keeps the record, failed and flagged."""
        ocr_result['fieldConfidences'] = {'first_name': 'high'}

        result = orchestrator.process_batch([small_image], session_id='sess-1')

        doc = result.records[0]
        assert doc.ocr.status == OcrStatus.FAILED
        assert doc.requires_review is True
        assert doc.remote_id == 'remote-1'
        assert len(orchestrator.collection) == 1
        assert len(orchestrator.collection.previews) == 1

    def test_extracted_data_list_degrades(self, orchestrator, document_client, small_image, ocr_result):
        """Test extractedData that is not an object keeps the record, failed and flagged."""
        ocr_result['extractedData'] = ['JOHN', 'DOE']
        document_client.upload_document.return_value = UploadResult('remote-2', ocr_result=ocr_result)

        result = orchestrator.process_batch([small_image], session_id='sess-1')

        doc = result.records[0]
        assert doc.ocr.status == OcrStatus.FAILED
        assert doc.ocr.extracted_fields == {}
        assert doc.requires_review is True
        assert len(orchestrator.collection) == 1
        assert len(orchestrator.collection.previews) == 1

    def test_suggestions_for_mapped_fields(self, orchestrator, small_image):
        """Test alternative spellings are attached to names and dates."""
        doc = orchestrator.process_batch([small_image], session_id='sess-1').records[0]

        assert doc.ocr.suggestions['firstName'] == ['john', 'JOHN', 'John']
        assert doc.ocr.suggestions['dateOfBirth'] == ['1990/01/15']
        assert 'licenseNumber' not in doc.ocr.suggestions

    def test_remote_failed_status(self, orchestrator, document_client, small_image, ocr_result):
        """Test processingStatus 'failed' from the service marks the record failed."""
        document_client.process_ocr.return_value = {**ocr_result, 'processingStatus': 'failed'}

        doc = orchestrator.process_batch([small_image], session_id='sess-1').records[0]

        assert doc.ocr.status == OcrStatus.FAILED
        assert doc.requires_review is True

    def test_low_confidence_needs_review(self, orchestrator, document_client, small_image):
        """Test average confidence below 75 requires review."""
        document_client.process_ocr.return_value = {
            'extractedData': {'first_name': 'J'},
            'fieldConfidences': {'first_name': 0.6},
            'processingStatus': 'completed',
        }

        doc = orchestrator.process_batch([small_image], session_id='sess-1').records[0]

        assert doc.ocr.status == OcrStatus.COMPLETED
        assert doc.requires_review is True

    def test_invalid_files_rejected_without_network(self, orchestrator, document_client):
        """Test type and size validation happens before any upload."""
        text = SourceFile('notes.txt', 'text/plain', b'hello')
        huge = SourceFile('huge.png', 'image/png', b'\x00' * (10 * 1024 * 1024 + 1))

        result = orchestrator.process_batch([text, huge], session_id='sess-1')

        assert result.records == []
        assert [r.error.error_code for r in result.rejected] == ['UNSUPPORTED_FILE_TYPE', 'FILE_TOO_LARGE']
        document_client.upload_document.assert_not_called()

    def test_pdf_accepted(self, orchestrator, pdf_file):
        """Test PDFs are accepted and scored 0 locally."""
        doc = orchestrator.process_batch([pdf_file], session_id='sess-1').records[0]
        assert doc.category == DocumentCategory.BIRTH_CERTIFICATE
        assert doc.quality.score == 0

    def test_document_limit(self, document_client, channel, make_source):
        """Test a batch exceeding max_documents is rejected whole."""
        orchestrator = UploadOrchestrator(
            DocumentCollection(), client=document_client, notifications=channel,
            limits=UploadLimits(max_documents=2)
        )
        log = NotificationLog(channel)

        with pytest.raises(DocumentLimitExceededError):
            orchestrator.process_batch([make_source(f'doc{i}.png', seed=i) for i in range(3)], 'sess-1')

        assert len(orchestrator.collection) == 0
        document_client.upload_document.assert_not_called()
        assert log.items[-1].message == 'You can only upload a maximum of 2 documents'

    def test_progress_notifications(self, orchestrator, channel, make_source):
        """Test progress and summary messages in order."""
        log = NotificationLog(channel)

        orchestrator.process_batch([make_source('a.png', seed=1), make_source('b.png', seed=2)], 'sess-1')

        messages = [n.message for n in log.items]
        assert messages == [
            'Processing 1 of 2 documents...',
            'Processing 2 of 2 documents...',
            '2 documents processed successfully',
        ]

    def test_review_summary_notification(self, orchestrator, document_client, channel, small_image):
        """Test a warning counts documents needing review."""
        document_client.process_ocr.side_effect = DocumentServiceError("down")
        log = NotificationLog(channel)

        orchestrator.process_batch([small_image], 'sess-1')

        assert log.items[-1].level == 'warning'
        assert log.items[-1].message == '1 documents need manual review'

    def test_no_session_skips_upload(self, orchestrator, document_client, small_image):
        """Test local-only ingest when there is no session."""
        doc = orchestrator.process_batch([small_image]).records[0]

        assert doc.ocr is None
        assert doc.requires_review is False
        document_client.upload_document.assert_not_called()

    def test_reprocess(self, orchestrator, document_client, small_image):
        """Test re-requesting OCR keeps the id and refreshes OCR data."""
        document_client.process_ocr.side_effect = DocumentServiceError("down")
        doc = orchestrator.process_batch([small_image], 'sess-1').records[0]
        assert doc.ocr.status == OcrStatus.FAILED

        document_client.process_ocr.side_effect = None
        updated = orchestrator.reprocess(doc, 'es')

        assert updated.id == doc.id
        assert updated.ocr.status == OcrStatus.COMPLETED
        assert orchestrator.collection.get(doc.id) is updated
        document_client.process_ocr.assert_called_with('remote-1', 'es')

    def test_reprocess_requires_upload(self, orchestrator, small_image):
        """Test local-only records cannot be re-processed."""
        doc = orchestrator.process_batch([small_image]).records[0]
        with pytest.raises(ValidationError):
            orchestrator.reprocess(doc)


class TestDocumentStep:
    """Test the wizard document step contract."""

    @pytest.fixture
    def changes(self):
        return []

    @pytest.fixture
    def step(self, document_client, changes):
        return DocumentStep(
            language='en',
            max_documents=3,
            session_id='sess-1',
            client=document_client,
            on_documents_change=changes.append,
        )

    def test_change_emitted_on_upload(self, step, changes, small_image):
        """Test the wizard receives the list after every change."""
        step.upload_files([small_image])

        assert len(changes) == 1
        assert [d.name for d in changes[0]] == ['drivers_license.png']

    def test_continue_requires_document(self, step, small_image):
        """Test continue is refused while empty."""
        assert step.can_continue is False
        with pytest.raises(ValidationError):
            step.continue_()

        step.upload_files([small_image])
        continued = []
        step.on_continue = continued.append

        assert step.continue_() == step.documents
        assert continued == [step.documents]

    def test_enhance_replaces_in_place(self, step, make_source, changes):
        """Test enhancement swaps the record at the same position."""
        step.upload_files([make_source('a.png', seed=1), make_source('b.png', seed=2)])
        first, second = step.documents
        old_preview = first.preview_handle

        enhanced = step.enhance(first.id)

        assert [d.id for d in step.documents] == [enhanced.id, second.id]
        assert enhanced.quality.score == min(100, first.quality.score + 10)
        assert old_preview not in step.previews
        assert len(changes) == 2

    def test_allowed_categories(self, document_client, small_image):
        """Test categories outside the allowed set become other."""
        step = DocumentStep(
            allowed_categories=['passport'], session_id='sess-1', client=document_client
        )
        step.upload_files([small_image])
        assert step.documents[0].category == DocumentCategory.OTHER

    def test_camera_capture_feeds_upload(self, step, camera, scheduler, changes):
        """Test a captured frame becomes a document and the camera closes."""
        surface = step.open_camera(camera, scheduler=scheduler)
        assert surface.state == SurfaceState.STREAMING

        source = surface.capture()

        assert step.documents[0].source_file is source
        assert step.documents[0].name.startswith('document_')
        assert surface.state == SurfaceState.CLOSED
        assert len(changes) == 1

    def test_auto_capture_feeds_upload(self, step, camera, scheduler):
        """Test auto-capture produces exactly one document."""
        step.open_camera(camera, scheduler=scheduler, auto_capture=True)
        scheduler.advance(10)
        assert len(step.documents) == 1

    def test_bulk_delete_emits_change(self, step, make_source, changes):
        """Test confirmed bulk delete notifies the wizard."""
        step.upload_files([make_source('a.png', seed=1), make_source('b.png', seed=2)])
        target = step.documents[0].id

        step.bulk_delete(confirm=True, ids=[target])

        assert [d.id for d in changes[-1]] == [step.documents[0].id]
        assert target not in step.collection

    def test_open_camera_leaves_config_untouched(self, step, camera, scheduler):
        """Test the auto-capture flag does not leak into the caller's config."""
        config = CaptureConfig(auto_capture=False)

        surface = step.open_camera(camera, scheduler=scheduler, auto_capture=True, config=config)

        assert surface.auto_capture is True
        assert config.auto_capture is False

    def test_concurrent_batches_respect_limit(self, document_client, make_source):
        """Test a second batch waits for the first and then sees its documents."""
        step = DocumentStep(max_documents=1, session_id='sess-1', client=document_client)
        started, release = threading.Event(), threading.Event()

        def slow_upload(*args, **kwargs):
            started.set()
            release.wait(5)
            return UploadResult(document_id='remote-1')

        document_client.upload_document.side_effect = slow_upload
        errors = []

        def second_batch():
            try:
                step.upload_files([make_source('b.png', seed=2)])
            except DocumentLimitExceededError as e:
                errors.append(e)

        first = threading.Thread(target=step.upload_files, args=([make_source('a.png', seed=1)],))
        first.start()
        assert started.wait(5)
        other = threading.Thread(target=second_batch)
        other.start()
        other.join(0.2)
        assert other.is_alive()

        release.set()
        first.join(5)
        other.join(5)

        assert [d.name for d in step.documents] == ['a.png']
        assert len(errors) == 1
