"""Tests for claimflow.services.validation — field validators and record aggregation."""
import math
import pytest

from claimflow.services.validation import (
    validate_free_text,
    validate_national_id,
    validate_amount,
    validate_items,
    validate_referral_clinic,
    validate_record,
    clean_free_text,
    clean_items,
    FieldResult,
)


# ── Free text ────────────────────────────────────────────────────────────────

class TestValidateFreeText:
    """validate_free_text() rejects boilerplate and accepts clinical text."""

    def test_accepts_diagnosis(self):
        result = validate_free_text('Acute URTI with sore throat and fever')
        assert result.is_valid
        assert result.cleaned == 'Acute URTI with sore throat and fever'
        assert result.provenance == 'primary'

    @pytest.mark.parametrize('text', [
        'Update User Info - please complete your profile details before continuing',
        'Please enter your login credentials to proceed with the consultation',
        'User ID   Full Name   New Password   Retype Password   fever review',
        'Please select a diagnosis from the list for this visit consult',
        'Loading consultation notes for the current patient visit',
        'Click here to view the treatment history for this patient',
    ])
    def test_rejects_excluded_patterns(self, text):
        result = validate_free_text(text)
        assert not result.is_valid
        assert result.reason == 'contains_excluded_pattern'

    @pytest.mark.parametrize('text', [
        'Cancelled appointment, reviewed',
        'URTI, MC sent to patient email',
    ])
    def test_form_words_inside_clinical_text_accepted(self, text):
        assert validate_free_text(text).is_valid

    @pytest.mark.parametrize('text', [
        'Email: patient@example.com fever',
        'Fever and cough review  Save',
    ])
    def test_form_words_at_edges_rejected(self, text):
        assert validate_free_text(text).reason == 'contains_excluded_pattern'

    def test_missing(self):
        result = validate_free_text(None)
        assert result.status == 'missing'
        assert result.reason == 'empty_or_not_string'

    def test_blank_is_missing(self):
        assert validate_free_text('   ').status == 'missing'

    def test_too_short(self):
        assert validate_free_text('fever').reason == 'too_short'

    def test_too_long(self):
        assert validate_free_text('fever ' * 1000).reason == 'too_long'

    def test_short_text_needs_domain_keyword(self):
        result = validate_free_text('The quick brown fox jumps')
        assert result.reason == 'no_domain_keywords_short'

    def test_long_text_without_keyword_is_accepted(self):
        text = 'Patient attended today and was seen by the doctor on duty for a general visit'
        assert validate_free_text(text).is_valid

    def test_cleaning_collapses_whitespace(self):
        result = validate_free_text('Lower  back pain\n\n\n\nafter lifting   boxes')
        assert result.cleaned == 'Lower back pain\n\nafter lifting boxes'

    def test_provenance_is_carried(self):
        result = validate_free_text('Acute gastritis with vomiting', provenance='fallback:spatial')
        assert result.provenance == 'fallback:spatial'


class TestCleanFreeText:

    def test_trims_lines(self):
        assert clean_free_text('  cough  \n   fever  ') == 'cough\nfever'


# ── National ID ──────────────────────────────────────────────────────────────

class TestValidateNationalId:

    def test_valid(self):
        result = validate_national_id('s 1234567 a')
        assert result.is_valid
        assert result.cleaned == 'S1234567A'

    def test_missing(self):
        assert validate_national_id('').status == 'missing'
        assert validate_national_id(None).reason == 'missing'

    def test_invalid_format(self):
        assert validate_national_id('X12').reason == 'invalid_format'


# ── Amount ───────────────────────────────────────────────────────────────────

class TestValidateAmount:
    """validate_amount() coerces to a cent-rounded number inside [0, max]."""

    @pytest.mark.parametrize('raw, expected', [
        ('$1,234.50', 1234.5),
        ('45', 45.0),
        (12.345, 12.35),
        ('0.005', 0.01),
        (0, 0.0),
        ('SGD 88.10', 88.1),
    ])
    def test_accepts_and_rounds(self, raw, expected):
        result = validate_amount(raw)
        assert result.is_valid
        assert result.cleaned == expected

    @pytest.mark.parametrize('raw', ['-5', -0.01, 100000.01, '250,000'])
    def test_rejects_out_of_range(self, raw):
        result = validate_amount(raw)
        assert not result.is_valid
        assert result.reason in ('below_minimum', 'above_maximum')

    def test_custom_maximum(self):
        assert validate_amount(60000, maximum=50000).reason == 'above_maximum'

    def test_missing(self):
        assert validate_amount(None).status == 'missing'
        assert validate_amount('').reason == 'null_or_undefined'

    @pytest.mark.parametrize('raw', ['abc', '.', True, float('nan'), math.inf, ['1']])
    def test_not_a_number(self, raw):
        assert validate_amount(raw).reason == 'not_a_number'

    @pytest.mark.parametrize('raw', ['$1,234.567', 19.999, '0.125', 7])
    def test_revalidation_is_stable(self, raw):
        first = validate_amount(raw)
        second = validate_amount(first.cleaned)
        assert second.cleaned == first.cleaned


# ── Items ────────────────────────────────────────────────────────────────────

class TestValidateItems:
    """validate_items() dedupes, drops noise and keeps first-seen order."""

    def test_dedupes_and_drops_noise(self):
        raw = ['Panadol 500mg', '2', 'Qty', 'Cough syrup', 'panadol 500mg', '$12.50', ' Cough  syrup ', 'x']
        result = validate_items(raw)
        assert result.is_valid
        assert result.cleaned == ['Panadol 500mg', 'Cough syrup']

    def test_none_is_valid_empty(self):
        result = validate_items(None)
        assert result.is_valid
        assert result.cleaned == []
        assert result.reason == 'valid_empty'

    def test_empty_list_is_valid_empty(self):
        assert validate_items([]).reason == 'valid_empty'

    def test_not_a_list(self):
        assert validate_items('Panadol').reason == 'not_a_list'

    def test_all_noise_rejected(self):
        result = validate_items(['1', '2', 'Price', '$3.00'])
        assert not result.is_valid
        assert result.reason == 'all_items_filtered_out'

    def test_clean_items_skips_none(self):
        assert clean_items([None, 'Cream']) == ['Cream']


# ── Referral clinic ──────────────────────────────────────────────────────────

class TestValidateReferralClinic:

    def test_valid(self):
        result = validate_referral_clinic('  Tan Tock Seng   Hospital ')
        assert result.cleaned == 'Tan Tock Seng Hospital'

    def test_missing(self):
        assert validate_referral_clinic(None).status == 'missing'

    def test_too_short(self):
        assert validate_referral_clinic('X').reason == 'too_short'

    def test_excluded(self):
        assert validate_referral_clinic('Submit').reason == 'contains_excluded_pattern'


# ── Record ───────────────────────────────────────────────────────────────────

class TestValidateRecord:
    """validate_record() validates every field and decides usability."""

    def _raw(self, **overrides):
        raw = {
            'diagnosis': 'Acute gastroenteritis with vomiting',
            'nric': 'S1234567A',
            'amount': '$45.00',
            'items': ['ORS sachet', 'Buscopan 10mg'],
            'referral_clinic': None,
            'mc_days': '2',
            '_provenance': {'diagnosis': 'primary', 'amount': 'fallback:table_heading'},
        }
        raw.update(overrides)
        return raw

    def test_usable_record(self):
        record = validate_record('2026-10-16:1001', self._raw())
        assert record.usable
        assert record.errors == {}
        assert record.mc_days == 2
        assert record.cleaned('amount') == 45.0
        assert record.fields['amount'].provenance == 'fallback:table_heading'
        assert 'referral_clinic' not in record.fields

    def test_items_alone_make_record_usable(self):
        record = validate_record('k', self._raw(diagnosis='Please enter your login'))
        assert record.usable
        assert record.errors['diagnosis'] == 'contains_excluded_pattern'
        assert record.cleaned('diagnosis', 'fallback') == 'fallback'

    def test_unusable_without_diagnosis_and_items(self):
        record = validate_record('k', self._raw(diagnosis=None, items=[]))
        assert not record.usable

    def test_record_amount_cap(self):
        record = validate_record('k', self._raw(amount='60000'))
        assert record.errors['amount'] == 'above_maximum'

    def test_bad_mc_days_become_zero(self):
        assert validate_record('k', self._raw(mc_days='two')).mc_days == 0

    def test_to_dict(self):
        data = validate_record('k', self._raw()).to_dict()
        assert data['source_key'] == 'k'
        assert data['usable'] is True
        assert data['fields']['nric']['cleaned'] == 'S1234567A'


class TestFieldResult:

    def test_frozen(self):
        result = FieldResult(raw='x')
        with pytest.raises(Exception):
            result.status = 'valid'
