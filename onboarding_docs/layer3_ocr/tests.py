"""
Tests for OCR field mapping and the document service client.
"""
from unittest.mock import MagicMock

import pytest
import requests

from onboarding_docs.error_handlers import DocumentServiceError
from onboarding_docs.layer3_ocr import (
    CANONICAL_FIELDS,
    DocumentServiceClient,
    check_ocr_result,
    get_document_client,
    map_confidences,
    map_fields,
    resolve_field,
    suggest_values,
)
from onboarding_docs.models import DocumentCategory, SourceFile


def response(status_code=200, payload=None):
    mock = MagicMock()
    mock.status_code = status_code
    mock.json.return_value = payload if payload is not None else {}
    return mock


class TestFieldMapping:
    """Test raw OCR field names map to canonical keys."""

    def test_english_snake_case(self):
        """Test common service field names."""
        mapped = map_fields({
            'first_name': 'John',
            'Last_Name': 'Doe',
            'DOB': '1990-01-15',
            'zip': '12345',
        })
        assert mapped == {
            'firstName': 'John',
            'lastName': 'Doe',
            'dateOfBirth': '1990-01-15',
            'zipCode': '12345',
        }

    def test_spanish_synonyms(self):
        """Test bilingual variants."""
        mapped = map_fields({
            'nombre': 'Ana',
            'apellido': 'García',
            'fecha_nacimiento': '01/02/1990',
            'direccion': 'Calle Mayor 1',
            'ciudad': 'Madrid',
        })
        assert mapped == {
            'firstName': 'Ana',
            'lastName': 'García',
            'dateOfBirth': '01/02/1990',
            'address': 'Calle Mayor 1',
            'city': 'Madrid',
        }

    def test_unmatched_keys_preserved(self):
        """Test unknown fields are kept verbatim."""
        mapped = map_fields({'nationality': 'USA', 'first_name': 'John'})
        assert mapped == {'nationality': 'USA', 'firstName': 'John'}

    def test_table_order_breaks_ties(self):
        """Test a key matching several entries maps to the first in table order."""
        assert resolve_field('email_address') == 'address'
        assert resolve_field('nombre_completo') == 'firstName'

    def test_first_raw_key_wins(self):
        """Test two raw keys for one canonical key keep the first value."""
        mapped = map_fields({'first_name': 'John', 'given_name': 'Johnny'})
        assert mapped == {'firstName': 'John'}

    def test_canonical_keys_map_to_themselves(self):
        """Test every canonical key resolves to itself."""
        for canonical in CANONICAL_FIELDS:
            assert resolve_field(canonical) == canonical
            assert resolve_field(canonical.upper()) == canonical

    @pytest.mark.parametrize('raw', [
        {'first_name': 'John', 'surname': 'Doe', 'passport_no': 'X1', 'nationality': 'USA'},
        {'nombre_completo': 'Ana Ruiz', 'email_address': 'a@b.c', 'telefono': '555'},
        {'issuing_authority': 'DMV', 'expiration_date': '2030-01-01', 'seguro_social': '123'},
    ])
    def test_mapping_is_idempotent(self, raw):
        """Test mapping an already mapped result changes nothing."""
        once = map_fields(raw)
        assert map_fields(once) == once

    def test_empty_input(self):
        """Test None and empty mappings."""
        assert map_fields(None) == {}
        assert map_fields({}) == {}


class TestConfidenceMapping:
    """Test confidence normalisation."""

    def test_fractions_scaled(self):
        """Test confidences all within 0-1 are scaled to percentages."""
        mapped = map_confidences({'first_name': 0.95, 'dob': 0.5})
        assert mapped == {'firstName': 95.0, 'dateOfBirth': 50.0}

    def test_percentages_kept(self):
        """Test confidences already on 0-100 are not scaled."""
        mapped = map_confidences({'first_name': 0.5, 'last_name': 80})
        assert mapped == {'firstName': 0.5, 'lastName': 80.0}

    def test_clamped(self):
        """Test values outside 0-100 are clamped."""
        mapped = map_confidences({'ssn': 150, 'phone': -3})
        assert mapped == {'ssn': 100.0, 'phone': 0.0}

    def test_empty(self):
        """Test missing confidences."""
        assert map_confidences(None) == {}


class TestSuggestions:
    """Test field value suggestions."""

    def test_date_separators(self):
        """Test dates offer the other separator."""
        assert suggest_values('dateOfBirth', '01/02/1990') == ['01-02-1990']
        assert suggest_values('expiryDate', '2030-01-01') == ['2030/01/01']

    def test_zip(self):
        """Test 5 digit ZIP offers ZIP+4."""
        assert suggest_values('zipCode', '12345') == ['12345-0000']
        assert suggest_values('zipCode', '12345-6789') == []

    def test_ssn(self):
        """Test 9 digit SSN offers dashed and spaced forms."""
        assert suggest_values('ssn', '123456789') == ['123-45-6789', '123 45 6789']
        assert suggest_values('ssn', '1234') == []

    def test_names(self):
        """Test names offer case variants, at most three."""
        suggestions = suggest_values('firstName', 'mARIA')
        assert suggestions == ['maria', 'MARIA', 'Maria']

    def test_other_fields(self):
        """Test fields without rules have no suggestions."""
        assert suggest_values('city', 'Madrid') == []


class TestDocumentServiceClient:
    """Test the document service HTTP client."""

    @pytest.fixture
    def service(self):
        client = DocumentServiceClient(base_url='http://docs.test/', timeout=5)
        client.session = MagicMock()
        return client

    def test_base_url_normalised(self, service):
        """Test trailing slash is removed."""
        assert service.base_url == 'http://docs.test'

    def test_upload_document(self, service):
        """Test upload sends multipart data and parses the result."""
        service.session.post.return_value = response(200, {
            'success': True,
            'data': {'documentId': 'remote-7', 'ocrResult': {'rawText': 'X'}},
        })
        source = SourceFile('license.jpg', 'image/jpeg', b'jpegdata')

        result = service.upload_document('sess-1', source, DocumentCategory.DRIVERS_LICENSE)

        assert result.document_id == 'remote-7'
        assert result.ocr_result == {'rawText': 'X'}
        args, kwargs = service.session.post.call_args
        assert args[0] == 'http://docs.test/api/documents/onboarding-upload'
        assert kwargs['data'] == {
            'sessionId': 'sess-1',
            'documentType': 'drivers_license',
            'documentName': 'license.jpg',
        }
        assert kwargs['files']['document'] == ('license.jpg', b'jpegdata', 'image/jpeg')
        assert kwargs['timeout'] == 5

    def test_upload_http_error(self, service):
        """Test non-2xx answers raise DocumentServiceError with the status."""
        service.session.post.return_value = response(500, {'error': 'storage offline'})
        source = SourceFile('a.png', 'image/png', b'x')

        with pytest.raises(DocumentServiceError) as exc_info:
            service.upload_document('sess-1', source, 'other')

        assert exc_info.value.status_code == 500
        assert exc_info.value.message == 'storage offline'

    def test_upload_connection_error(self, service):
        """Test transport errors become DocumentServiceError."""
        service.session.post.side_effect = requests.ConnectionError('refused')
        source = SourceFile('a.png', 'image/png', b'x')

        with pytest.raises(DocumentServiceError):
            service.upload_document('sess-1', source, 'other')

    def test_process_ocr(self, service):
        """Test OCR request body and result."""
        service.session.post.return_value = response(200, {
            'success': True,
            'data': {'ocrResult': {'extractedData': {'name': 'A'}, 'processingStatus': 'completed'}},
        })

        result = service.process_ocr('remote-7', 'es')

        assert result['processingStatus'] == 'completed'
        args, kwargs = service.session.post.call_args
        assert args[0] == 'http://docs.test/api/ocr/process'
        assert kwargs['json'] == {'documentId': 'remote-7', 'language': 'es'}

    def test_process_ocr_empty_result(self, service):
        """Test a success without ocrResult is an error."""
        service.session.post.return_value = response(200, {'success': True, 'data': {}})

        with pytest.raises(DocumentServiceError) as exc_info:
            service.process_ocr('remote-7')

        assert exc_info.value.error_code == 'OCR_EMPTY_RESULT'

    def test_process_ocr_malformed_result(self, service):
        """Test a non-numeric confidence in the result is an error."""
        service.session.post.return_value = response(200, {
            'success': True,
            'data': {'ocrResult': {'extractedData': {'first_name': 'John'},
                                   'fieldConfidences': {'first_name': 'high'}}}
        })

        with pytest.raises(DocumentServiceError) as exc_info:
            service.process_ocr('remote-7')

        assert exc_info.value.error_code == 'OCR_MALFORMED_RESULT'
        assert exc_info.value.details['field'] == 'first_name'

    def test_check_ocr_result_shapes(self):
        """Test result shapes accepted and rejected before mapping."""
        assert check_ocr_result({'rawText': 'x'}) == {'rawText': 'x'}
        assert check_ocr_result({'fieldConfidences': {'a': '0.5'}})

        for raw in (['JOHN'], {'extractedData': ['JOHN']}, {'fieldConfidences': [0.9]},
                    {'fieldConfidences': {'a': None}}):
            with pytest.raises(DocumentServiceError) as exc_info:
                check_ocr_result(raw)
            assert exc_info.value.error_code == 'OCR_MALFORMED_RESULT'

    def test_success_false(self, service):
        """Test success: false in a 200 body is an error."""
        service.session.post.return_value = response(200, {'success': False, 'error': 'bad image'})

        with pytest.raises(DocumentServiceError) as exc_info:
            service.process_ocr('remote-7')

        assert exc_info.value.message == 'bad image'

    def test_health_check(self, service):
        """Test health check maps status and errors to a bool."""
        service.session.get.return_value = response(200)
        assert service.health_check() is True

        service.session.get.side_effect = requests.Timeout('slow')
        assert service.health_check() is False

    def test_singleton(self):
        """Test get_document_client returns one shared instance."""
        assert get_document_client() is get_document_client()
