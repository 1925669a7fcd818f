"""
Tests for the onboarding document capture Flask application.
"""
import io
import json

import pytest

from onboarding_docs.app import error_status
from onboarding_docs.error_handlers import (
    CameraPermissionDeniedError,
    CaptureInProgressError,
    DocumentLimitExceededError,
    DocumentServiceError,
    UnknownSessionError,
    ValidationError,
)


def upload(client, session_id, *sources, language=None):
    data = {'documents': [(io.BytesIO(s.data), s.name, s.media_type) for s in sources]}
    if language:
        data['language'] = language
    return client.post(
        f'/api/sessions/{session_id}/documents',
        data=data,
        content_type='multipart/form-data'
    )


class TestHealthEndpoint:
    """Test health check endpoint."""

    def test_health_returns_ok(self, client):
        """Test /health returns OK status."""
        response = client.get('/health')
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['status'] == 'healthy'
        assert data['service'] == 'onboarding-document-capture'

    def test_status(self, client):
        """Test /api/status reports the camera and sessions."""
        data = json.loads(client.get('/api/status').data)
        assert data['camera_state'] == 'closed'
        assert data['active_sessions'] == 0


class TestQualityEndpoint:
    """Test standalone quality scoring."""

    def test_quality_requires_document(self, client):
        """Test /api/quality requires a file."""
        response = client.post('/api/quality', data={}, content_type='multipart/form-data')
        assert response.status_code == 400
        assert json.loads(response.data)['error_code'] == 'NO_DOCUMENT'

    def test_quality_scores_image(self, client, dark_image):
        """Test a dark image gets a low score and localized issues."""
        response = client.post(
            '/api/quality',
            data={
                'document': (io.BytesIO(dark_image.data), dark_image.name, dark_image.media_type),
                'language': 'es',
            },
            content_type='multipart/form-data'
        )
        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['quality']['score'] < 50
        assert 'Imagen muy oscura' in data['quality']['issues']
        assert data['category'] == 'other'
        assert data['summary'] is None

    def test_quality_summary_for_good_image(self, client, good_image):
        """Test a clean image carries the good-quality summary."""
        response = client.post(
            '/api/quality',
            data={'document': (io.BytesIO(good_image.data), good_image.name, good_image.media_type)},
            content_type='multipart/form-data'
        )
        data = json.loads(response.data)
        assert data['quality']['issues'] == []
        assert data['summary'] == 'Good quality document'


class TestDocumentEndpoints:
    """Test session document upload and review."""

    def test_upload_requires_files(self, client):
        """Test upload without files is rejected."""
        response = client.post('/api/sessions/s1/documents', data={}, content_type='multipart/form-data')
        assert response.status_code == 400

    def test_upload_creates_document(self, client, small_image, document_client):
        """Test upload scores, uploads and maps OCR fields."""
        response = upload(client, 's1', small_image)

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['processed'] == 1
        doc = data['documents'][0]
        assert doc['category'] == 'drivers_license'
        assert doc['ocr']['status'] == 'completed'
        assert doc['ocr']['extracted_fields']['firstName'] == 'John'
        assert doc['remote_id'] == 'remote-1'
        messages = [n['message'] for n in data['notifications']]
        assert messages == ['Processing 1 of 1 documents...', '1 documents processed successfully']
        document_client.upload_document.assert_called_once()

    def test_upload_keeps_document_when_ocr_fails(self, client, small_image, document_client):
        """Test remote OCR failure still returns the document, flagged for review."""
        document_client.process_ocr.side_effect = DocumentServiceError("OCR down", status_code=503)

        response = upload(client, 's1', small_image)

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['needs_review'] == 1
        assert data['documents'][0]['ocr']['status'] == 'failed'
        assert data['notifications'][-1]['level'] == 'warning'

    def test_upload_reports_confidence_and_suggestions(self, client, small_image):
        """Test OCR confidence levels and alternative spellings in the response."""
        ocr = json.loads(upload(client, 's1', small_image).data)['documents'][0]['ocr']

        assert ocr['confidence_level_by_field']['firstName'] == 'high'
        assert ocr['confidence_level_by_field']['licenseNumber'] == 'medium'
        assert ocr['confidence_level'] == 'high'
        assert ocr['average_confidence'] == pytest.approx(91.25)
        assert ocr['suggestions']['firstName'] == ['john', 'JOHN', 'John']

    def test_upload_malformed_ocr_result(self, client, small_image, document_client, ocr_result):
        """Test a malformed OCR result still returns the document, failed and flagged."""
        ocr_result['fieldConfidences'] = {'first_name': 'high'}

        response = upload(client, 's1', small_image)

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['documents'][0]['ocr']['status'] == 'failed'
        assert data['needs_review'] == 1

    def test_unsupported_file_rejected(self, client, document_client):
        """Test invalid files are reported without a network call."""
        response = client.post(
            '/api/sessions/s1/documents',
            data={'documents': [(io.BytesIO(b'hello'), 'notes.txt', 'text/plain')]},
            content_type='multipart/form-data'
        )

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['processed'] == 0
        assert data['rejected'][0]['error_code'] == 'UNSUPPORTED_FILE_TYPE'
        assert data['notifications'][0]['level'] == 'error'
        document_client.upload_document.assert_not_called()

    def test_list_search_and_sort(self, client, make_source):
        """Test the view endpoint filters and sorts."""
        upload(client, 's1', make_source('passport.png', seed=1), make_source('ssn_card.png', seed=2))

        data = json.loads(client.get('/api/sessions/s1/documents?q=passport&sort=name').data)
        assert data['count'] == 1
        assert data['total'] == 2
        assert data['documents'][0]['name'] == 'passport.png'
        assert data['can_continue'] is True

        data = json.loads(client.get('/api/sessions/s1/documents?category=ssn_card').data)
        assert [d['name'] for d in data['documents']] == ['ssn_card.png']

    def test_invalid_sort(self, client, small_image):
        """Test unknown sort keys are a 400."""
        upload(client, 's1', small_image)
        response = client.get('/api/sessions/s1/documents?sort=size')
        assert response.status_code == 400
        assert json.loads(response.data)['error_code'] == 'INVALID_SORT_KEY'

    def test_invalid_category(self, client, small_image):
        """Test unknown category filters are a 400."""
        upload(client, 's1', small_image)
        response = client.get('/api/sessions/s1/documents?category=bogus')
        assert response.status_code == 400
        assert json.loads(response.data)['error_code'] == 'INVALID_CATEGORY'

    def test_unknown_session(self, client):
        """Test listing an unknown session is a 404."""
        response = client.get('/api/sessions/missing/documents')
        assert response.status_code == 404
        assert json.loads(response.data)['error_code'] == 'SESSION_NOT_FOUND'

    def test_delete_document(self, client, small_image):
        """Test deleting one document."""
        doc_id = json.loads(upload(client, 's1', small_image).data)['documents'][0]['id']

        response = client.delete(f'/api/sessions/s1/documents/{doc_id}')
        assert response.status_code == 200

        response = client.delete(f'/api/sessions/s1/documents/{doc_id}')
        assert response.status_code == 404

    def test_bulk_delete(self, client, make_source):
        """Test bulk delete needs confirmation and removes exactly the ids."""
        data = json.loads(upload(client, 's1', *[make_source(f'd{i}.png', seed=i) for i in range(3)]).data)
        ids = [d['id'] for d in data['documents']]

        response = client.post('/api/sessions/s1/documents/bulk-delete', json={'ids': ids[:2]})
        assert response.status_code == 400
        assert json.loads(response.data)['error_code'] == 'BULK_DELETE_NOT_CONFIRMED'

        response = client.post('/api/sessions/s1/documents/bulk-delete', json={'ids': ids[:2], 'confirm': True})
        data = json.loads(response.data)
        assert sorted(data['deleted']) == sorted(ids[:2])
        assert data['remaining'] == 1

    def test_enhance_replaces_document(self, client, small_image):
        """Test enhancement returns a new id in the old position."""
        original = json.loads(upload(client, 's1', small_image).data)['documents'][0]

        response = client.post(f"/api/sessions/s1/documents/{original['id']}/enhance")

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['replaced'] == original['id']
        assert data['document']['id'] != original['id']
        assert data['document']['quality']['score'] == original['quality']['score'] + 10
        listed = json.loads(client.get('/api/sessions/s1/documents').data)['documents']
        assert [d['id'] for d in listed] == [data['document']['id']]

    def test_reprocess(self, client, small_image, document_client):
        """Test re-running OCR for an uploaded document."""
        document_client.process_ocr.side_effect = DocumentServiceError("down")
        doc = json.loads(upload(client, 's1', small_image).data)['documents'][0]
        document_client.process_ocr.side_effect = None

        response = client.post(f"/api/sessions/s1/documents/{doc['id']}/reprocess", json={'language': 'es'})

        assert response.status_code == 200
        data = json.loads(response.data)
        assert data['document']['id'] == doc['id']
        assert data['document']['ocr']['status'] == 'completed'
        document_client.process_ocr.assert_called_with('remote-1', 'es')

    def test_preview(self, client, small_image):
        """Test preview handles serve the file bytes."""
        doc = json.loads(upload(client, 's1', small_image).data)['documents'][0]

        response = client.get(f"/api/previews/{doc['preview']}")
        assert response.status_code == 200
        assert response.data == small_image.data
        assert response.mimetype == 'image/png'

        assert client.get('/api/previews/unknown').status_code == 404

    def test_continue(self, client, small_image):
        """Test continue is refused until a document exists."""
        client.post(
            '/api/sessions/s1/documents',
            data={'documents': [(io.BytesIO(b'x'), 'notes.txt', 'text/plain')]},
            content_type='multipart/form-data'
        )
        response = client.post('/api/sessions/s1/continue')
        assert response.status_code == 400
        assert json.loads(response.data)['error_code'] == 'NO_DOCUMENTS'

        upload(client, 's1', small_image)
        response = client.post('/api/sessions/s1/continue')
        assert response.status_code == 200
        assert len(json.loads(response.data)['documents']) == 1

    def test_end_session_releases_previews(self, client, small_image):
        """Test ending a session drops its documents and previews."""
        doc = json.loads(upload(client, 's1', small_image).data)['documents'][0]

        assert client.delete('/api/sessions/s1').status_code == 200

        assert client.get(f"/api/previews/{doc['preview']}").status_code == 404
        assert client.delete('/api/sessions/s1').status_code == 404


class TestCameraEndpoints:
    """Test camera control through the capture surface."""

    def test_open_requires_session(self, client):
        """Test camera open needs a session id."""
        response = client.post('/api/camera/open', json={})
        assert response.status_code == 400

    def test_status_when_closed(self, client):
        """Test status without a camera."""
        data = json.loads(client.get('/api/camera/status').data)
        assert data['camera']['state'] == 'closed'

    def test_capture_without_camera(self, client):
        """Test capture needs an open camera."""
        assert client.post('/api/camera/capture').status_code == 409

    def test_open_capture_flow(self, client, camera):
        """Test open, capture into the session, and automatic close."""
        response = client.post('/api/camera/open', json={'sessionId': 's1'})
        assert response.status_code == 200
        assert json.loads(response.data)['camera']['state'] == 'streaming'
        assert camera.requested == ('environment', 1920, 1080)

        response = client.post('/api/camera/capture')

        assert response.status_code == 201
        data = json.loads(response.data)
        assert data['filename'].startswith('document_')
        assert data['document']['name'] == data['filename']
        assert data['document']['quality']['score'] >= 0
        assert json.loads(client.get('/api/camera/status').data)['camera']['state'] == 'closed'
        assert camera.streaming is False

        listed = json.loads(client.get('/api/sessions/s1/documents').data)
        assert listed['total'] == 1

    def test_permission_denied(self, client, camera):
        """Test a denied camera reports a retryable blocked state."""
        camera.deny = True

        response = client.post('/api/camera/open', json={'sessionId': 's1'})

        assert response.status_code == 403
        data = json.loads(response.data)
        assert data['error_code'] == 'CAMERA_PERMISSION_DENIED'
        assert data['camera']['state'] == 'blocked'
        assert data['camera']['retryable'] is True

    def test_auto_capture(self, client, scheduler):
        """Test auto-capture produces exactly one document."""
        client.post('/api/camera/open', json={'sessionId': 's1', 'autoCapture': True})

        scheduler.advance(10)

        listed = json.loads(client.get('/api/sessions/s1/documents').data)
        assert listed['total'] == 1

    def test_toggle_auto_capture(self, client, scheduler):
        """Test auto-capture can be turned on after opening."""
        client.post('/api/camera/open', json={'sessionId': 's1'})
        scheduler.advance(5)
        assert json.loads(client.get('/api/sessions/s1/documents').data)['total'] == 0

        response = client.post('/api/camera/auto-capture', json={'enabled': True})
        assert json.loads(response.data)['camera']['auto_capture'] is True

        scheduler.advance(10)
        assert json.loads(client.get('/api/sessions/s1/documents').data)['total'] == 1

    def test_close(self, client, camera):
        """Test close stops the stream."""
        client.post('/api/camera/open', json={'sessionId': 's1'})
        assert client.post('/api/camera/close').status_code == 200
        assert camera.streaming is False


class TestErrorStatus:
    """Test HTTP status mapping for pipeline errors."""

    @pytest.mark.parametrize('error,status', [
        (UnknownSessionError('s1'), 404),
        (CaptureInProgressError('countdown'), 409),
        (CameraPermissionDeniedError(), 403),
        (DocumentLimitExceededError(10, 11), 422),
        (ValidationError('bad', 'BAD'), 400),
        (DocumentServiceError('down'), 502),
        (RuntimeError('boom'), 500),
    ])
    def test_error_status(self, error, status):
        """Test each error family maps to its status code."""
        assert error_status(error) == status
