"""
Identity normalization — turn loosely formatted identifiers into search keys.

Pure functions. Record numbers (PCNO) become digit strings, NRIC/FIN values
become compact upper-case strings, and display names lose the insurer/contract
tags the source system prefixes them with ("TAG AVIVA - JOHN TAN").
"""
import re
from dataclasses import dataclass
from typing import Optional


PCNO_RE = re.compile(r'^\d{4,}$')
NRIC_RE = re.compile(r'^[STFGM]\d{7}[A-Z]$')

NAME_TAG_TOKENS = (
    'TAG', 'AVIVA', 'SINGLIFE', 'MHC', 'AIACLIENT', 'AIA', 'GE', 'ALLIANZ',
    'FULLERT', 'IHP', 'TOKIOM', 'ALLIANC', 'ALLSING', 'AXAMED', 'PRUDEN',
)

_TOKEN_ALT = '|'.join(NAME_TAG_TOKENS)
# One or more whole-word tags, then a separator, then the name.
_NAME_PREFIX_RE = re.compile(
    rf'^\s*(?:(?:{_TOKEN_ALT})\b[\s|:/\-]*)*(?:{_TOKEN_ALT})\b\s*[|:/\-]+\s*(?P<name>.+)$',
    re.IGNORECASE,
)
_ID_SEPARATORS_RE = re.compile(r'[\s/\-.]+')


@dataclass(frozen=True)
class NormalizedIdentity:
    identifier: Optional[str]
    name: str = ''


def normalize_identifier(raw) -> Optional[str]:
    """Digits-only record number with at least 4 digits, else None."""
    if raw is None:
        return None
    digits = re.sub(r'\D', '', str(raw))
    return digits if PCNO_RE.match(digits) else None


def normalize_national_id(raw) -> Optional[str]:
    """Compact upper-case NRIC/FIN (letter, 7 digits, letter), else None."""
    if raw is None:
        return None
    compact = _ID_SEPARATORS_RE.sub('', str(raw)).upper()
    return compact if NRIC_RE.match(compact) else None


def normalize_display_name(raw) -> str:
    """
    Strip a leading run of tag tokens joined to the name by a separator.

    "MHC - JOHN TAN" → "JOHN TAN", "TAG AVIVA | SINGLIFE - MARY LIM" → "MARY LIM".
    Anything without a whole-word tag prefix followed by a separator is returned
    unchanged ("GEORGE LIM", "MAIA ONG", "TAN AIA").
    """
    if raw is None:
        return ''
    text = str(raw)
    match = _NAME_PREFIX_RE.match(text)
    if not match:
        return text
    name = re.sub(r'\s+', ' ', match.group('name')).strip()
    return name or text


def normalize_identity(raw_identifier, raw_name) -> NormalizedIdentity:
    """Search key for a visit: national ID first, then the record number."""
    identifier = normalize_national_id(raw_identifier) or normalize_identifier(raw_identifier)
    return NormalizedIdentity(identifier=identifier, name=normalize_display_name(raw_name))
