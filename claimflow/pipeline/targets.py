"""
Insurer portal target agents — fill and save claims.

TargetAgent drives the claim form described by a portal profile; subclasses
add the portal's own navigation quirks. Pay types route to portals through
config.PAY_TYPE_PORTALS; a pay type with no portal is unsupported.
"""
import logging
import re
from typing import Any, Dict, List, Optional

from playwright.sync_api import Error as PlaywrightError

from claimflow.config import PAY_TYPE_PORTALS
from claimflow.errors import LocatorNotFoundError, UnsupportedPortalError
from claimflow.pipeline.base import PortalAgent, to_portal_date
from claimflow.portals import get_portal
from claimflow.services.identity import normalize_national_id

logger = logging.getLogger('pipeline.targets')


def portal_for_pay_type(pay_type: Optional[str]) -> str:
    """Portal key for a visit's pay type. Raises UnsupportedPortalError."""
    key = (pay_type or '').strip().upper()
    portal = PAY_TYPE_PORTALS.get(key)
    if portal is None:
        raise UnsupportedPortalError(f"Pay type '{key or 'none'}' has no supported portal")
    return portal


def build_claim(visit: Dict[str, Any]) -> Dict[str, Any]:
    """Form values for a visit, in portal formats."""
    amount = visit.get('total_amount')
    return {
        'visit_date': to_portal_date(visit.get('visit_date')),
        'mc_days': str(visit.get('mc_days') or 0),
        'diagnosis': visit.get('diagnosis_description') or None,
        'total_amount': f"{amount:.2f}" if isinstance(amount, (int, float)) else None,
        'referral_clinic': visit.get('referral_clinic') or None,
    }


class TargetAgent(PortalAgent):
    """
    Claim form agent driven by the portal profile.

    Flow per visit: ensure logged in → search member by NRIC → open the add
    visit form → fill fields and items → save as draft or submit.
    """
    _logger = logger

    def __init__(self, page, profile: Dict[str, Any] = None, pay_type: str = None, **kwargs):
        super().__init__(page, profile or get_portal(self.portal), **kwargs)
        self.pay_type = (pay_type or '').upper()

    def authenticate(self):
        self.login_with_form(self.profile['login'])

    # ── Navigation ───────────────────────────────────────────────────────────

    def open_program(self, pay_type: str):
        """Click the program tile for this pay type, when the portal has one."""
        tile = self.profile.get('program_tiles', {}).get(pay_type)
        if tile and self.click_text(tile, roles='a, button, div, td, span'):
            self.page.wait_for_load_state('domcontentloaded')

    def locate_record(self, nric: str):
        self.ensure_authenticated()
        member = normalize_national_id(nric)
        if member is None:
            raise LocatorNotFoundError(f"{self.portal}.member (invalid NRIC {nric!r})")

        search = self.profile['search']
        self.open_program(self.pay_type)
        self.fill_fields({'nric_search': member}, {'nric_search': search['field']})
        button = self.first_present(search['button'])
        if button is None:
            raise LocatorNotFoundError(f"{self.portal}.search_button")
        button.click()
        self.page.wait_for_load_state('domcontentloaded')

        rows = self.page.locator(search['result_rows']).filter(has_text=member)
        if rows.count() == 0:
            self.screenshot(f"member-not-found-{member}")
            raise LocatorNotFoundError(f"{self.portal}.member:{member}")
        rows.first.click()
        self.page.wait_for_load_state('domcontentloaded')

        if not self.click_text(search['add_visit']):
            raise LocatorNotFoundError(f"{self.portal}.add_visit")
        self.page.wait_for_load_state('domcontentloaded')

    # ── Form filling ─────────────────────────────────────────────────────────

    def fill_claim(self, visit: Dict[str, Any]) -> Dict[str, str]:
        """Fill the open claim form. Returns field → provenance."""
        written = self.fill_fields(build_claim(visit), self.profile['fields'])
        items = visit.get('treatment_detail') or []
        if items:
            written['items'] = self.fill_items(items)
        return written

    def fill_items(self, items: List[str]) -> str:
        """Write item names into the blank text inputs of the drugs section."""
        spec = self.profile['items']
        section = self.page.locator('table, fieldset, div').filter(
            has_text=re.compile(spec['section'], re.IGNORECASE)).last
        inputs = section.locator(spec['inputs'])
        available = [inputs.nth(i) for i in range(inputs.count()) if inputs.nth(i).is_visible()]
        if not available:
            raise LocatorNotFoundError(f"{self.portal}.items")
        if len(items) > len(available):
            self.log.warning("%d items but only %d item rows — extra items dropped", len(items), len(available))
        for element, item in zip(available, items):
            element.fill(item)
        return 'primary'

    # ── Save / submit ────────────────────────────────────────────────────────

    def submit(self, save_as_draft: bool = True) -> Dict[str, Any]:
        """
        Compute the claim if the portal offers it, then save as draft or submit.

        Draft mode only clicks a control whose text says 'draft' and not
        'submit'. Dialog text raised by the portal is returned for the record.
        """
        buttons = self.profile['buttons']
        dialogs: List[str] = []

        def _on_dialog(dialog):
            dialogs.append(dialog.message)
            try:
                dialog.accept()
            except PlaywrightError:
                pass

        self.page.on('dialog', _on_dialog)
        try:
            if buttons.get('compute') and self.click_text(buttons['compute']):
                self.page.wait_for_load_state('domcontentloaded')

            if save_as_draft:
                clicked = self._click_draft(buttons['draft'])
                status = 'draft'
            else:
                clicked = self.click_text(buttons['submit'])
                status = 'submitted'
            if not clicked:
                self.screenshot(f"{status}-button-missing")
                raise LocatorNotFoundError(f"{self.portal}.{status}_button")
            self.page.wait_for_load_state('domcontentloaded')
        finally:
            self.page.remove_listener('dialog', _on_dialog)

        self.screenshot(f"{status}-saved")
        self.log.info("Claim %s", status)
        return {'status': status, 'portal': self.portal, 'dialogs': dialogs}

    def _click_draft(self, pattern: str) -> bool:
        regex = re.compile(pattern, re.IGNORECASE)
        candidates = self.page.locator('button, input[type="button"], input[type="submit"], a')
        for i in range(candidates.count()):
            element = candidates.nth(i)
            if not element.is_visible():
                continue
            label = ' '.join(filter(None, [
                element.inner_text() or '',
                element.get_attribute('value') or '',
                element.get_attribute('aria-label') or '',
            ])).lower()
            if regex.search(label) and 'submit' not in label:
                element.click()
                return True
        return False


class MhcAsiaAgent(TargetAgent):
    portal = 'mhc_asia'
    description = 'MHC Asia — MHC, AIA and AIA Client panel claims'


class AllianceMedinetAgent(TargetAgent):
    portal = 'alliance_medinet'
    description = 'Alliance Medinet — Alliance panel claims'

    def fill_claim(self, visit: Dict[str, Any]) -> Dict[str, str]:
        # Alliance has no referral field; the diagnosis box carries it instead.
        visit = dict(visit)
        if visit.get('referral_clinic') and visit.get('diagnosis_description'):
            visit['diagnosis_description'] = (
                f"{visit['diagnosis_description']}\nReferred to: {visit['referral_clinic']}"
            )
        visit['referral_clinic'] = None
        return super().fill_claim(visit)


ADAPTERS = {
    'mhc_asia': MhcAsiaAgent,
    'alliance_medinet': AllianceMedinetAgent,
}
