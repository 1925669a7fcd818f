"""
Layer 3 — OCR Field Mapper
Normalizes service-specific OCR field names into the canonical vocabulary
used by the onboarding forms.
"""
import logging
import re
from typing import Dict, List, Mapping, Optional

logger = logging.getLogger(__name__)

# Table order is the tie-break: a raw key maps to the first entry it matches.
FIELD_SYNONYMS = (
    # Personal information
    ('firstName', ('first_name', 'firstname', 'given_name', 'nombre', 'fname')),
    ('lastName', ('last_name', 'lastname', 'surname', 'family_name', 'apellido', 'lname')),
    ('fullName', ('full_name', 'fullname', 'name', 'complete_name', 'nombre_completo')),
    ('dateOfBirth', ('dob', 'date_of_birth', 'dateofbirth', 'birth_date', 'fecha_nacimiento', 'birthday')),

    # Address
    ('address', ('address', 'street_address', 'direccion', 'street')),
    ('city', ('city', 'ciudad', 'town')),
    ('state', ('state', 'province', 'estado', 'region')),
    ('zipCode', ('zip_code', 'zipcode', 'postal_code', 'zip', 'codigo_postal')),

    # Document specific
    ('licenseNumber', ('license_number', 'licensenumber', 'dl_number', 'drivers_license', 'licencia')),
    ('ssn', ('ssn', 'social_security', 'social_security_number', 'seguro_social')),
    ('passportNumber', ('passport_number', 'passportnumber', 'passport', 'pasaporte')),
    ('issuingAuthority', ('issuing_authority', 'issuingauthority', 'authority', 'emisor')),
    ('expiryDate', ('expiry_date', 'expirydate', 'expiration_date', 'expires', 'expiracion')),

    # Contact
    ('phone', ('phone', 'telephone', 'phone_number', 'telefono')),
    ('email', ('email', 'email_address', 'correo')),
)

CANONICAL_FIELDS = tuple(canonical for canonical, _ in FIELD_SYNONYMS)
_CANONICAL_BY_LOWER = {canonical.lower(): canonical for canonical in CANONICAL_FIELDS}

DATE_FIELDS = ('dateOfBirth', 'expiryDate', 'expirationDate', 'issuedDate')
NAME_FIELDS = ('firstName', 'lastName', 'middleName')
MAX_SUGGESTIONS = 3


def resolve_field(raw_key: str) -> Optional[str]:
    """
    Canonical key for a raw OCR field name, or None when nothing matches.

    A key that already is canonical (case-insensitive) maps to itself;
    otherwise the first table entry with a synonym contained in the
    lower-cased key wins.
    """
    lower = str(raw_key).lower()
    if lower in _CANONICAL_BY_LOWER:
        return _CANONICAL_BY_LOWER[lower]
    for canonical, synonyms in FIELD_SYNONYMS:
        if any(synonym in lower for synonym in synonyms):
            return canonical
    return None


def map_fields(raw_fields: Optional[Mapping[str, object]]) -> Dict[str, object]:
    """
    Map raw OCR fields onto canonical keys.

    The first raw key to claim a canonical key keeps it. Unmatched raw
    keys are carried over verbatim.
    """
    mapped: Dict[str, object] = {}
    unmatched = []
    for key, value in (raw_fields or {}).items():
        canonical = resolve_field(key)
        if canonical is None:
            unmatched.append(key)
            mapped.setdefault(key, value)
        elif canonical not in mapped:
            mapped[canonical] = value
        else:
            logger.debug(f"Field '{key}' dropped, {canonical} already mapped")

    if unmatched:
        logger.debug(f"Unmapped OCR fields kept as-is: {unmatched}")
    return mapped


def map_confidences(raw_confidences: Optional[Mapping[str, float]]) -> Dict[str, float]:
    """
    Map per-field confidences with the same key rules as map_fields and
    express them on a 0-100 scale.
    """
    values = {key: float(value) for key, value in (raw_confidences or {}).items()}
    # Services reporting fractions get scaled up
    scale = 100.0 if values and all(0.0 <= v <= 1.0 for v in values.values()) else 1.0

    mapped: Dict[str, float] = {}
    for key, value in values.items():
        target = resolve_field(key) or key
        if target not in mapped:
            mapped[target] = round(min(100.0, max(0.0, value * scale)), 2)
    return mapped


def suggest_values(field: str, value: str) -> List[str]:
    """Alternative spellings offered to the reviewer for a field value."""
    value = str(value)
    suggestions: List[str] = []

    if field in DATE_FIELDS:
        if '/' in value:
            suggestions.append(value.replace('/', '-'))
        if '-' in value:
            suggestions.append(value.replace('-', '/'))
    elif field == 'zipCode':
        if len(value) == 5 and '-' not in value:
            suggestions.append(value + '-0000')
    elif field == 'ssn':
        digits = re.sub(r'\D', '', value)
        if len(digits) == 9:
            suggestions.append(f"{digits[:3]}-{digits[3:5]}-{digits[5:]}")
            suggestions.append(f"{digits[:3]} {digits[3:5]} {digits[5:]}")
    elif field in NAME_FIELDS:
        suggestions.extend([value.lower(), value.upper(), value.capitalize()])

    return suggestions[:MAX_SUGGESTIONS]
