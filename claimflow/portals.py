"""
Portal catalog — URLs, credentials and field locators per remote system.

Selectors change whenever a portal ships a redesign; keep them here, not in
the agents. Each FieldSpec lists stable selectors first and the visible label
used by the table-heading and spatial fallbacks.
"""
from claimflow.config import (
    CLINIC_ASSIST_URL, CLINIC_ASSIST_USERNAME, CLINIC_ASSIST_PASSWORD, CLINIC_ASSIST_CLINIC_GROUP,
    MHC_ASIA_URL, MHC_ASIA_USERNAME, MHC_ASIA_PASSWORD,
    ALLIANCE_MEDINET_URL, ALLIANCE_MEDINET_USERNAME, ALLIANCE_MEDINET_PASSWORD,
)
from claimflow.pipeline.locators import FieldSpec


# ── Shared login form selectors ──────────────────────────────────────────────
LOGIN_USERNAME = (
    'input[name="username"]',
    'input[name="user"]',
    'input[id*="username" i]',
    'input[placeholder*="user" i]',
    'input[type="text"]',
)
LOGIN_PASSWORD = (
    'input[type="password"]',
    'input[name*="password" i]',
    'input[id*="password" i]',
)
LOGIN_SUBMIT = (
    'button[type="submit"]',
    'input[type="submit"]',
    'button:has-text("Login")',
    'button:has-text("Sign In")',
    'a:has-text("Login")',
)


PORTALS = {
    'clinic_assist': {
        'name': 'Clinic Assist',
        'url': CLINIC_ASSIST_URL,
        'username': CLINIC_ASSIST_USERNAME,
        'password': CLINIC_ASSIST_PASSWORD,
        'clinic_group': CLINIC_ASSIST_CLINIC_GROUP,
        'login': {
            'username': LOGIN_USERNAME,
            'password': LOGIN_PASSWORD,
            'submit': LOGIN_SUBMIT,
            'clinic_group': ('select[name*="clinic" i]', 'select[id*="clinic" i]'),
            'success': r'Log\s*Out|Queue\s*List|Patient\s*Search',
            'error': r'invalid\s+(user|password)|not\s+able\s+to\s+authenticate|login\s+failed',
        },
        'queue': {
            'menu': (r'Reports', r'Queue\s*List'),
            'date': FieldSpec('date', ('input[name*="date" i]', 'input[id*="date" i]'), r'^\s*Date'),
            'search': ('button:has-text("Search")', 'input[value="Search"]', 'button:has-text("Generate")'),
            'table': 'table:has(th:has-text("PCNO")), table:has(td:has-text("PCNO"))',
            'columns': {
                'pcno': r'^PCNO$|^PC\s*No',
                'patient_name': r'^(Patient\s*)?Name$',
                'nric': r'^NRIC|^IC\s*No',
                'pay_type': r'^Pay\s*Type$|^Sponsor$',
                'visit_type': r'^Visit\s*Type$',
                'total_amount': r'^(Total|Amount|Fee)',
            },
        },
        'patient_search': {
            'field': FieldSpec('patient_search', ('input[name*="search" i]', 'input[id*="pcno" i]'), r'PCNO|Patient'),
            'button': ('button:has-text("Search")', 'input[value="Search"]'),
            'result_rows': 'table tr:has(td)',
            'visit_link': r'Visit|Case\s*Notes|Treatment',
        },
        'fields': {
            'diagnosis': FieldSpec('diagnosis', ('textarea[name*="diagnosis" i]', '#diagnosis', 'textarea[name*="remarks" i]'), r'Diagnosis'),
            'nric': FieldSpec('nric', ('input[name*="nric" i]', 'input[id*="nric" i]'), r'NRIC|IC\s*No'),
            'amount': FieldSpec('amount', ('input[name*="total" i]', '#totalAmount', 'span[id*="total" i]'), r'Total(\s*Amount)?'),
            'referral_clinic': FieldSpec('referral_clinic', ('input[name*="referral" i]',), r'Referr(al|ed)\s*(Clinic|To)'),
            'mc_days': FieldSpec('mc_days', ('input[name*="mc" i]', 'select[name*="mc" i]'), r'MC\s*Days|Medical\s*Cert'),
        },
        'items_table': {
            'table': 'table:has(th:has-text("Description")), table:has(th:has-text("Drug"))',
            'column': r'^(Description|Drug|Item|Medicine)',
        },
    },

    'mhc_asia': {
        'name': 'MHC Asia',
        'url': MHC_ASIA_URL,
        'username': MHC_ASIA_USERNAME,
        'password': MHC_ASIA_PASSWORD,
        'login': {
            'username': LOGIN_USERNAME,
            'password': LOGIN_PASSWORD,
            'submit': LOGIN_SUBMIT + ('button:has-text("LOGIN HERE")',),
            'success': r'Log\s*Out',
            'error': r'not\s+able\s+to\s+authenticate|authentication\s+failed',
        },
        'program_tiles': {
            'AIA': r'Search\s+under\s+AIA\s+Program',
            'AIACLIENT': r'Search\s+under\s+AIA\s+Program',
            'MHC': r'Normal\s+Visit|Search\s+under\s+Other\s+Programs?',
        },
        'search': {
            'field': FieldSpec('nric_search', ('input[name*="nric" i]', 'input[id*="nric" i]', 'input[placeholder*="NRIC" i]'), r'NRIC|FIN'),
            'button': ('button:has-text("Search")', 'input[type="submit"]', 'button[type="submit"]'),
            'result_rows': 'table tr:has(td)',
            'add_visit': r'Add\s+(Normal\s+)?Visit',
        },
        'fields': {
            'visit_date': FieldSpec('visit_date', ('input[name*="visitDate" i]', 'input[id*="visitDate" i]'), r'Visit\s*Date'),
            'mc_days': FieldSpec('mc_days', ('select[name*="mcDay" i]', 'input[name*="mcDay" i]'), r'MC\s*Day'),
            'diagnosis': FieldSpec('diagnosis', ('textarea[name*="diagnosis" i]', 'input[name*="diagnosisDesc" i]'), r'Diagnosis'),
            'consultation_fee': FieldSpec('consultation_fee', ('input[name*="consult" i]',), r'Consultation\s*Fee'),
            'total_amount': FieldSpec('total_amount', ('input[name*="totalFee" i]', 'input[name*="total" i]'), r'Total\s*(Fee|Amount)'),
            'referral_clinic': FieldSpec('referral_clinic', ('input[name*="referral" i]',), r'Referral'),
        },
        'items': {
            'section': r'Drugs?\s*(&|and)?\s*Services?|Medicines?',
            'inputs': 'input[type="text"][name*="drug" i], input[type="text"][name*="item" i]',
        },
        'buttons': {
            'compute': r'compute\s+claim',
            'draft': r'save\s+(?:as\s+|a\s+)?draft',
            'submit': r'^\s*submit(\s+claim)?\s*$',
        },
    },

    'alliance_medinet': {
        'name': 'Alliance Medinet',
        'url': ALLIANCE_MEDINET_URL,
        'username': ALLIANCE_MEDINET_USERNAME,
        'password': ALLIANCE_MEDINET_PASSWORD,
        'login': {
            'username': LOGIN_USERNAME + ('input[type="email"]',),
            'password': LOGIN_PASSWORD,
            'submit': LOGIN_SUBMIT,
            'success': r'Log\s*Out|Sign\s*Out|Dashboard',
            'error': r'invalid\s+(credentials|username|password)|incorrect',
        },
        'program_tiles': {},
        'search': {
            'field': FieldSpec('nric_search', ('input[name*="memberId" i]', 'input[name*="nric" i]'), r'NRIC|Member\s*ID'),
            'button': ('button:has-text("Search")', 'button[type="submit"]'),
            'result_rows': 'table tr:has(td)',
            'add_visit': r'New\s+Claim|Submit\s+Claim',
        },
        'fields': {
            'visit_date': FieldSpec('visit_date', ('input[name*="visitDate" i]', 'input[name*="date" i]'), r'Visit\s*Date|Date\s*of\s*Visit'),
            'mc_days': FieldSpec('mc_days', ('input[name*="mc" i]',), r'MC\s*Days?'),
            'diagnosis': FieldSpec('diagnosis', ('textarea[name*="diagnosis" i]',), r'Diagnosis'),
            'total_amount': FieldSpec('total_amount', ('input[name*="amount" i]',), r'(Total|Claim)\s*Amount'),
        },
        'items': {
            'section': r'Medications?|Items?',
            'inputs': 'input[type="text"][name*="med" i], input[type="text"][name*="item" i]',
        },
        'buttons': {
            'compute': r'calculate',
            'draft': r'save\s+(?:as\s+)?draft',
            'submit': r'^\s*submit(\s+claim)?\s*$',
        },
    },
}


def get_portal(name: str) -> dict:
    """Look up a portal profile by key."""
    profile = PORTALS.get(name)
    if profile is None:
        raise ValueError(f"Unknown portal '{name}'. Available: {list(PORTALS.keys())}")
    return profile
