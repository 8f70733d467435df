"""
Extraction validation — accept, clean or reject scraped field values.

Scraped text from the source system is noisy: modal boilerplate, button labels
and table headers regularly land in the diagnosis box or the drug list. Each
field type has one validator returning a FieldResult with a typed reason, and
validate_record() combines them into an ExtractionRecord.
"""
import logging
import math
import re
from dataclasses import dataclass, field
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Any, Dict, List, Optional

from claimflow.services.identity import normalize_national_id

logger = logging.getLogger('services.validation')


# ── Free-text rules ──────────────────────────────────────────────────────────

FREE_TEXT_MIN_LENGTH = 10
FREE_TEXT_MAX_LENGTH = 5000
KEYWORD_REQUIRED_BELOW = 50

EXCLUDED_PATTERNS = [
    re.compile(r'Update\s+User\s+Info', re.IGNORECASE),
    re.compile(r'Please\s+enter\s+your\s+login', re.IGNORECASE),
    re.compile(r'\b(User\s+ID|Full\s+Name|New\s+Password|Retype\s+Password)\b', re.IGNORECASE),
    re.compile(r'^\s*(Email|Mobile)\b', re.IGNORECASE),
    re.compile(r'\b(Confirm|Cancel|Submit|Save|Close)\s*$', re.IGNORECASE),
    re.compile(r'Please\s+(fill|select|choose)', re.IGNORECASE),
    re.compile(r'^\s*(Click|Select|Choose|Enter)\b', re.IGNORECASE),
    re.compile(r'^[\s\W]+$'),
    re.compile(r'^(OK|Yes|No|Cancel|Close|Submit|Save)$', re.IGNORECASE),
    re.compile(r'^(Loading|Please\s+wait|Processing)', re.IGNORECASE),
]

MEDICAL_KEYWORDS = [
    re.compile(
        r'\b(pain|ache|fever|cough|cold|flu|infection|injury|sprain|strain|fracture|wound|'
        r'rash|allergy|headache|migraine|nausea|vomit|diarrh|gastr|throat|sinus|ear|eye|'
        r'skin|back|neck|knee|ankle|wrist|shoulder|chest|abdom|urti|uti|hypertension|'
        r'diabetes|asthma|dermatitis|conjunctivitis|tonsillitis|bronchitis|myalgia)',
        re.IGNORECASE,
    ),
    re.compile(
        r'\b(consult|review|follow[\s-]?up|treatment|diagnos|assessment|examination|'
        r'medication|prescri|referral|vaccin|screening|dressing|physio|mc\b)',
        re.IGNORECASE,
    ),
    re.compile(
        r'\b(\d+\s*(mg|ml|mcg|g)\b|tab|tablet|capsule|cap\b|syrup|cream|ointment|drops|injection|inj\b)',
        re.IGNORECASE,
    ),
]

# ── Item-list rules ──────────────────────────────────────────────────────────

ITEM_HEADER_RE = re.compile(r'^(Item|Drug|Medicine|Description|Qty|Quantity|Price|Amount|Total|Unit)$', re.IGNORECASE)
ITEM_NUMERIC_RE = re.compile(r'^\d+$')
ITEM_CURRENCY_RE = re.compile(r'^\$?[\d,]+\.?\d*$')

# ── Amount rules ─────────────────────────────────────────────────────────────

AMOUNT_MIN = 0.0
AMOUNT_MAX = 100000.0
RECORD_AMOUNT_MAX = 50000.0
_AMOUNT_STRIP_RE = re.compile(r'[^0-9.\-]')
_CENTS = Decimal('0.01')

# ── Secondary text rules ─────────────────────────────────────────────────────

REFERRAL_MIN_LENGTH = 2
REFERRAL_MAX_LENGTH = 200


@dataclass(frozen=True)
class FieldResult:
    """Outcome for one scraped field. cleaned is None unless status is 'valid'."""
    raw: Any
    cleaned: Any = None
    status: str = 'rejected'
    reason: Optional[str] = None
    provenance: str = 'primary'

    @property
    def is_valid(self) -> bool:
        return self.status == 'valid'

    def to_dict(self) -> Dict[str, Any]:
        return {
            'raw': self.raw,
            'cleaned': self.cleaned,
            'status': self.status,
            'reason': self.reason,
            'provenance': self.provenance,
        }


def _accept(raw, cleaned, provenance, reason=None):
    return FieldResult(raw=raw, cleaned=cleaned, status='valid', reason=reason, provenance=provenance)


def _reject(raw, reason, provenance, status='rejected'):
    return FieldResult(raw=raw, cleaned=None, status=status, reason=reason, provenance=provenance)


# ── Free text ────────────────────────────────────────────────────────────────

def matches_excluded_pattern(text: str) -> bool:
    return any(p.search(text) for p in EXCLUDED_PATTERNS)


def has_medical_keyword(text: str) -> bool:
    return any(p.search(text) for p in MEDICAL_KEYWORDS)


def clean_free_text(text: str) -> str:
    """Collapse horizontal whitespace, trim lines, keep at most one blank line."""
    lines = [re.sub(r'[ \t\f\v\u00a0]+', ' ', line).strip() for line in text.replace('\r\n', '\n').replace('\r', '\n').split('\n')]
    cleaned = '\n'.join(lines)
    cleaned = re.sub(r'\n{3,}', '\n\n', cleaned)
    return cleaned.strip()


def validate_free_text(
    text,
    provenance: str = 'primary',
    min_length: int = FREE_TEXT_MIN_LENGTH,
    max_length: int = FREE_TEXT_MAX_LENGTH,
) -> FieldResult:
    """Validate diagnosis / notes text scraped from the source system."""
    if not isinstance(text, str) or not text.strip():
        return _reject(text, 'empty_or_not_string', provenance, status='missing')

    stripped = text.strip()
    if len(stripped) < min_length:
        return _reject(text, 'too_short', provenance)
    if len(stripped) > max_length:
        return _reject(text, 'too_long', provenance)
    if matches_excluded_pattern(stripped):
        return _reject(text, 'contains_excluded_pattern', provenance)
    if len(stripped) < KEYWORD_REQUIRED_BELOW and not has_medical_keyword(stripped):
        return _reject(text, 'no_domain_keywords_short', provenance)

    cleaned = clean_free_text(stripped)
    if len(cleaned) < min_length:
        return _reject(text, 'too_short_after_cleaning', provenance)
    return _accept(text, cleaned, provenance)


# ── Identifier ───────────────────────────────────────────────────────────────

def validate_national_id(raw, provenance: str = 'primary') -> FieldResult:
    if raw is None or (isinstance(raw, str) and not raw.strip()):
        return _reject(raw, 'missing', provenance, status='missing')
    nric = normalize_national_id(raw)
    if nric is None:
        return _reject(raw, 'invalid_format', provenance)
    return _accept(raw, nric, provenance)


# ── Amount ───────────────────────────────────────────────────────────────────

def _to_decimal(value) -> Optional[Decimal]:
    if isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        if isinstance(value, float) and (math.isnan(value) or math.isinf(value)):
            return None
        return Decimal(str(value))
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, str):
        cleaned = _AMOUNT_STRIP_RE.sub('', value)
        if not cleaned or cleaned in ('.', '-', '-.'):
            return None
        try:
            return Decimal(cleaned)
        except InvalidOperation:
            return None
    return None


def validate_amount(
    value,
    provenance: str = 'primary',
    minimum: float = AMOUNT_MIN,
    maximum: float = AMOUNT_MAX,
) -> FieldResult:
    """
    Coerce a scraped amount to a number rounded to cents.

    Strings may carry currency symbols and thousands separators ("$1,234.50").
    Validating an accepted value again returns the same value.
    """
    if value is None or (isinstance(value, str) and not value.strip()):
        return _reject(value, 'null_or_undefined', provenance, status='missing')

    amount = _to_decimal(value)
    if amount is None:
        return _reject(value, 'not_a_number', provenance)
    if amount < Decimal(str(minimum)):
        return _reject(value, 'below_minimum', provenance)
    if amount > Decimal(str(maximum)):
        return _reject(value, 'above_maximum', provenance)

    return _accept(value, float(amount.quantize(_CENTS, rounding=ROUND_HALF_UP)), provenance)


# ── Item list ────────────────────────────────────────────────────────────────

def _is_noise_item(item: str) -> bool:
    return (
        len(item) < 2
        or bool(ITEM_HEADER_RE.match(item))
        or bool(ITEM_NUMERIC_RE.match(item))
        or bool(ITEM_CURRENCY_RE.match(item))
    )


def clean_items(items: List[Any]) -> List[str]:
    """Trim, drop noise entries and dedupe, keeping first occurrence order."""
    seen = set()
    cleaned = []
    for item in items:
        if item is None:
            continue
        text = re.sub(r'\s+', ' ', str(item)).strip()
        if _is_noise_item(text):
            continue
        key = text.lower()
        if key in seen:
            continue
        seen.add(key)
        cleaned.append(text)
    return cleaned


def validate_items(items, provenance: str = 'primary') -> FieldResult:
    """
    Validate a scraped drug/treatment list.

    An empty input is valid (no items dispensed). A non-empty input that is
    entirely noise is rejected so the loss is visible to the operator.
    """
    if items is None:
        return _accept(items, [], provenance, reason='valid_empty')
    if not isinstance(items, (list, tuple)):
        return _reject(items, 'not_a_list', provenance)
    if not items:
        return _accept(items, [], provenance, reason='valid_empty')

    cleaned = clean_items(items)
    if not cleaned:
        logger.info("All %d scraped items filtered out as noise", len(items))
        return _reject(items, 'all_items_filtered_out', provenance)
    return _accept(items, cleaned, provenance)


# ── Referral clinic ──────────────────────────────────────────────────────────

def validate_referral_clinic(text, provenance: str = 'primary') -> FieldResult:
    if text is None or (isinstance(text, str) and not text.strip()):
        return _reject(text, 'empty_or_not_string', provenance, status='missing')
    if not isinstance(text, str):
        return _reject(text, 'empty_or_not_string', provenance)
    cleaned = re.sub(r'\s+', ' ', text).strip()
    if len(cleaned) < REFERRAL_MIN_LENGTH:
        return _reject(text, 'too_short', provenance)
    if len(cleaned) > REFERRAL_MAX_LENGTH:
        return _reject(text, 'too_long', provenance)
    if matches_excluded_pattern(cleaned):
        return _reject(text, 'contains_excluded_pattern', provenance)
    return _accept(text, cleaned, provenance)


# ── Aggregate ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class ExtractionRecord:
    """Validated fields for one scraped visit."""
    source_key: str
    fields: Dict[str, FieldResult] = field(default_factory=dict)
    mc_days: int = 0

    @property
    def usable(self) -> bool:
        """Usable when either the diagnosis or a non-empty item list survived."""
        diagnosis = self.fields.get('diagnosis')
        items = self.fields.get('items')
        return bool(
            (diagnosis is not None and diagnosis.is_valid)
            or (items is not None and items.is_valid and items.cleaned)
        )

    @property
    def errors(self) -> Dict[str, str]:
        """Field name → rejection reason for every field that did not validate."""
        return {
            name: result.reason
            for name, result in self.fields.items()
            if not result.is_valid and result.reason
        }

    def cleaned(self, name: str, default=None):
        result = self.fields.get(name)
        if result is None or not result.is_valid:
            return default
        return result.cleaned

    def to_dict(self) -> Dict[str, Any]:
        return {
            'source_key': self.source_key,
            'usable': self.usable,
            'mc_days': self.mc_days,
            'fields': {name: result.to_dict() for name, result in self.fields.items()},
            'errors': self.errors,
        }


def _raw_and_provenance(raw: Dict[str, Any], name: str):
    value = raw.get(name)
    provenance = (raw.get('_provenance') or {}).get(name, 'primary')
    return value, provenance


def _mc_days(value) -> int:
    try:
        days = int(float(str(value).strip())) if value not in (None, '') else 0
    except ValueError:
        return 0
    return max(days, 0)


def validate_record(source_key: str, raw: Dict[str, Any]) -> ExtractionRecord:
    """
    Validate every field scraped for one visit.

    raw holds the scraped values by field name (diagnosis, nric, amount, items,
    referral_clinic, mc_days) plus an optional '_provenance' map naming the
    locator strategy that produced each value.
    """
    fields = {}

    value, prov = _raw_and_provenance(raw, 'diagnosis')
    fields['diagnosis'] = validate_free_text(value, provenance=prov)

    value, prov = _raw_and_provenance(raw, 'nric')
    fields['nric'] = validate_national_id(value, provenance=prov)

    value, prov = _raw_and_provenance(raw, 'amount')
    fields['amount'] = validate_amount(value, provenance=prov, maximum=RECORD_AMOUNT_MAX)

    value, prov = _raw_and_provenance(raw, 'items')
    fields['items'] = validate_items(value, provenance=prov)

    if raw.get('referral_clinic') is not None:
        value, prov = _raw_and_provenance(raw, 'referral_clinic')
        fields['referral_clinic'] = validate_referral_clinic(value, provenance=prov)

    record = ExtractionRecord(source_key=source_key, fields=fields, mc_days=_mc_days(raw.get('mc_days')))
    if record.errors:
        logger.info("Record %s field errors: %s", source_key, record.errors)
    return record
