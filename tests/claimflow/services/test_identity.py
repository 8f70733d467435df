"""Tests for claimflow.services.identity — PCNO, NRIC and display-name normalization."""
import pytest

from claimflow.services.identity import (
    normalize_identifier,
    normalize_national_id,
    normalize_display_name,
    normalize_identity,
    NormalizedIdentity,
)


class TestNormalizeIdentifier:
    """normalize_identifier() keeps digits and requires at least 4 of them."""

    def test_plain_digits(self):
        assert normalize_identifier('12345') == '12345'

    def test_strips_separators_and_letters(self):
        assert normalize_identifier('PC-00 1234') == '001234'

    def test_integer_input(self):
        assert normalize_identifier(987654) == '987654'

    def test_too_short(self):
        assert normalize_identifier('123') is None

    def test_none(self):
        assert normalize_identifier(None) is None


class TestNormalizeNationalId:
    """normalize_national_id() compacts and upper-cases well-formed NRIC/FIN values."""

    @pytest.mark.parametrize('raw, expected', [
        ('S1234567A', 'S1234567A'),
        ('s1234567a', 'S1234567A'),
        ('S 1234 567 A', 'S1234567A'),
        ('  t9876543z  ', 'T9876543Z'),
        ('G-1234567-X', 'G1234567X'),
        ('F1234567\tN', 'F1234567N'),
    ])
    def test_well_formed(self, raw, expected):
        assert normalize_national_id(raw) == expected

    @pytest.mark.parametrize('raw', [
        'A1234567B',      # wrong leading letter
        'S123456A',       # six digits
        'S12345678A',     # eight digits
        'S1234567',       # no check letter
        '1234567A',
        '',
        'not an id',
    ])
    def test_malformed(self, raw):
        assert normalize_national_id(raw) is None

    def test_none(self):
        assert normalize_national_id(None) is None


class TestNormalizeDisplayName:
    """normalize_display_name() strips leading tag tokens joined by a separator."""

    @pytest.mark.parametrize('raw, expected', [
        ('MHC - JOHN TAN', 'JOHN TAN'),
        ('AIA | ALICE WONG', 'ALICE WONG'),
        ('TAG AVIVA - KELVIN NG', 'KELVIN NG'),
        ('TAG AVIVA | SINGLIFE - MARY LIM', 'MARY LIM'),
        ('aiaclient: bob lee', 'bob lee'),
        ('ALLIANZ /  PETER   CHUA', 'PETER CHUA'),
    ])
    def test_strips_tag_prefix(self, raw, expected):
        assert normalize_display_name(raw) == expected

    @pytest.mark.parametrize('raw', [
        'GEORGE LIM',      # starts with GE but not a whole word
        'MAIA ONG',        # contains AIA inside a word
        'TAN AIA',         # tag at the end
        'MHC JOHN TAN',    # tag without a separator
        'JOHN TAN',
    ])
    def test_leaves_names_without_tag_prefix(self, raw):
        assert normalize_display_name(raw) == raw

    def test_none_is_empty(self):
        assert normalize_display_name(None) == ''


class TestNormalizeIdentity:
    """normalize_identity() prefers the national ID over the record number."""

    def test_nric_first(self):
        identity = normalize_identity('s1234567a', 'MHC - JOHN TAN')
        assert identity == NormalizedIdentity(identifier='S1234567A', name='JOHN TAN')

    def test_falls_back_to_pcno(self):
        identity = normalize_identity('PC 004321', 'JOHN TAN')
        assert identity.identifier == '004321'

    def test_nothing_usable(self):
        identity = normalize_identity('??', '')
        assert identity.identifier is None
        assert identity.name == ''
