"""
Clinic Assist source agent — reads visits out of the clinic system.

Two jobs: list the day's visits from the queue report, and open one visit to
scrape the clinical fields (diagnosis, drugs, amount, NRIC, MC days).
"""
import logging
import re
from datetime import date
from typing import Any, Dict, List

from claimflow.errors import AuthenticationError, LocatorNotFoundError
from claimflow.pipeline.base import PortalAgent, to_portal_date
from claimflow.portals import get_portal
from claimflow.services.identity import normalize_display_name, normalize_identifier
from claimflow.services.validation import validate_amount

logger = logging.getLogger('pipeline.source')


def _match_column(headers, pattern):
    regex = re.compile(pattern, re.IGNORECASE)
    for header in headers:
        if regex.search(header.strip()):
            return header
    return None


class ClinicSourceAgent(PortalAgent):
    portal = 'clinic_assist'
    _logger = logger
    description = 'Clinic Assist — queue report listing and visit scraping'

    def __init__(self, page, profile: Dict[str, Any] = None, **kwargs):
        super().__init__(page, profile or get_portal(self.portal), **kwargs)

    def authenticate(self):
        login = self.profile['login']
        self.login_with_form(login)
        group = self.profile.get('clinic_group')
        if group:
            select = self.first_present(login['clinic_group'])
            if select is None:
                raise AuthenticationError(self.profile['name'], 'clinic group selector not found')
            select.select_option(label=group)

    # ── Queue listing ────────────────────────────────────────────────────────

    def list_visits(self, visit_date: date) -> List[Dict[str, Any]]:
        """Rows of the queue report for one date, mapped to visit columns."""
        self.ensure_authenticated()
        queue = self.profile['queue']
        for step in queue['menu']:
            if not self.click_text(step, roles='a, button, li, span'):
                raise LocatorNotFoundError(f"{self.portal}.menu:{step}")
            self.page.wait_for_load_state('domcontentloaded')

        self.fill_fields({'date': to_portal_date(visit_date)}, {'date': queue['date']})
        button = self.first_present(queue['search'])
        if button is None:
            raise LocatorNotFoundError(f"{self.portal}.queue_search")
        button.click()
        self.page.wait_for_load_state('domcontentloaded')

        rows = self.table_rows(queue['table'])
        if not rows:
            self.log.info("Queue report for %s is empty", visit_date)
            return []

        headers = list(rows[0].keys())
        columns = {field: _match_column(headers, pattern) for field, pattern in queue['columns'].items()}
        visits = []
        for row in rows:
            mapped = {field: (row.get(header) or '').strip() if header else '' for field, header in columns.items()}
            name = normalize_display_name(mapped.get('patient_name'))
            if not name and not mapped.get('pcno'):
                continue
            visits.append({
                'source': self.portal,
                'visit_date': visit_date,
                'patient_name': name,
                'pcno': normalize_identifier(mapped.get('pcno')),
                'nric': mapped.get('nric') or None,
                'pay_type': (mapped.get('pay_type') or '').upper() or None,
                'visit_type': mapped.get('visit_type') or None,
                'total_amount': validate_amount(mapped.get('total_amount')).cleaned,
            })
        self.log.info("Queue report for %s: %d visits", visit_date, len(visits))
        return visits

    # ── Single visit ─────────────────────────────────────────────────────────

    def locate_record(self, visit: Dict[str, Any]):
        """Open the visit by PCNO, falling back to the cleaned patient name."""
        self.ensure_authenticated()
        search = self.profile['patient_search']
        key = normalize_identifier(visit.get('pcno')) or normalize_display_name(visit.get('patient_name'))
        if not key:
            raise LocatorNotFoundError(f"{self.portal}.patient (no PCNO or name)")

        self.fill_fields({'patient_search': key}, {'patient_search': search['field']})
        button = self.first_present(search['button'])
        if button is None:
            raise LocatorNotFoundError(f"{self.portal}.patient_search_button")
        button.click()
        self.page.wait_for_load_state('domcontentloaded')

        rows = self.page.locator(search['result_rows']).filter(has_text=key)
        if rows.count() == 0:
            self.screenshot(f"patient-not-found-{key}")
            raise LocatorNotFoundError(f"{self.portal}.patient:{key}")
        rows.first.click()
        self.page.wait_for_load_state('domcontentloaded')

        visit_date = to_portal_date(visit.get('visit_date'))
        link = self.page.locator('a, tr').filter(has_text=visit_date).filter(
            has_text=re.compile(search['visit_link'], re.IGNORECASE))
        if visit_date and link.count():
            link.first.click()
            self.page.wait_for_load_state('domcontentloaded')

    def extract_visit(self, visit: Dict[str, Any]) -> Dict[str, Any]:
        """Scrape the open visit: field values plus the drug/item list."""
        raw = self.extract_fields(self.profile['fields'])
        raw['items'] = self._extract_items()
        raw['_provenance']['items'] = 'primary' if raw['items'] is not None else 'not_found'
        if not raw.get('nric') and visit.get('nric'):
            raw['nric'] = visit['nric']
            raw['_provenance']['nric'] = 'queue_report'
        return raw

    def _extract_items(self):
        spec = self.profile['items_table']
        rows = self.table_rows(spec['table'])
        if not rows:
            return []
        column = _match_column(list(rows[0].keys()), spec['column'])
        if column is None:
            return None
        return [row.get(column, '') for row in rows]


ADAPTERS = {
    'clinic_assist': ClinicSourceAgent,
}
