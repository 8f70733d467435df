"""
Portal agent contract.

Every remote system the workflows drive is wrapped in a PortalAgent. The
flows only see authenticate → locate_record → extract_fields / fill_fields →
submit; which selectors, menus and buttons that takes lives in the concrete
agent and its portal profile (claimflow.portals).
"""
import logging
import re
from abc import ABC, abstractmethod
from datetime import date, datetime
from typing import Any, Dict, List, Optional, Sequence, Type

from playwright.sync_api import Error as PlaywrightError

from claimflow.errors import AuthenticationError, LocatorNotFoundError, UnsupportedPortalError
from claimflow.logging_config import run_logger
from claimflow.pipeline.locators import FieldSpec, LocatorChain, read_value
from claimflow.services.artifacts import capture_screenshot

logger = logging.getLogger('pipeline.agents')


def to_portal_date(value) -> str:
    """YYYY-MM-DD (or a date) → DD/MM/YYYY as the portals expect."""
    if value is None or value == '':
        return ''
    if isinstance(value, (date, datetime)):
        return value.strftime('%d/%m/%Y')
    text = str(value).strip()
    match = re.match(r'^(\d{4})-(\d{2})-(\d{2})', text)
    if match:
        year, month, day = match.groups()
        return f"{day}/{month}/{year}"
    return text


class PortalAgent(ABC):
    """
    Base class for all portal agents.

    The agent owns one Playwright page inside one browsing session. Lookups go
    through the LocatorChain, so a field missing from its usual place is still
    found by heading or by proximity to its label.
    """
    portal: str = ''
    description: str = ''
    _logger = logger

    def __init__(self, page, profile: Dict[str, Any], locators: LocatorChain = None, run_id: str = None):
        self.page = page
        self.profile = profile
        self.locators = locators or LocatorChain()
        self.run_id = run_id
        self.authenticated = False
        self.log = run_logger(self._logger, run_id, portal=self.portal)

    # ── Contract ─────────────────────────────────────────────────────────────

    @abstractmethod
    def authenticate(self):
        """Log in. Raises AuthenticationError; never retried by the caller."""
        ...

    @abstractmethod
    def locate_record(self, key: Any):
        """Navigate to the record identified by key. Raises LocatorNotFoundError."""
        ...

    def extract_fields(self, specs: Dict[str, FieldSpec]) -> Dict[str, Any]:
        """
        Read each field's current text.

        Missing fields come back as None. The '_provenance' entry maps each
        field to the strategy that found it ('primary', 'fallback:spatial', ...).
        """
        values: Dict[str, Any] = {}
        provenance: Dict[str, str] = {}
        for name, spec in specs.items():
            result = self.locators.resolve(self.page, spec)
            provenance[name] = result.provenance
            if not result.found:
                values[name] = None
                continue
            try:
                values[name] = read_value(result.element).strip()
            except PlaywrightError as e:
                self.log.warning("Could not read %s: %s", name, e)
                values[name] = None
                provenance[name] = 'unreadable'
        values['_provenance'] = provenance
        return values

    def fill_fields(self, values: Dict[str, Any], specs: Dict[str, FieldSpec]) -> Dict[str, str]:
        """
        Write values into the matching fields. None values are skipped.

        Raises LocatorNotFoundError for the first field no strategy can find.
        Returns field → provenance for the fields written.
        """
        written = {}
        for name, value in values.items():
            if value is None or name not in specs:
                continue
            result = self.locators.resolve(self.page, specs[name])
            if not result.found:
                raise LocatorNotFoundError(f"{self.portal}.{name}", result.tried)
            self._set_value(result.element, value)
            written[name] = result.provenance
        return written

    def submit(self, save_as_draft: bool = True) -> Dict[str, Any]:
        """Save the filled claim as a draft or submit it. Source portals only read."""
        raise UnsupportedPortalError(f"{self.portal} does not accept submissions")

    # ── Shared helpers ───────────────────────────────────────────────────────

    def login_with_form(self, login: Dict[str, Any]):
        """Fill a username/password form and wait for the success marker."""
        name = self.profile.get('name', self.portal)
        if not self.profile.get('username') or not self.profile.get('password'):
            raise AuthenticationError(name, 'credentials not configured')

        self.page.goto(self.profile['url'], wait_until='domcontentloaded')
        username = self.first_present(login['username'])
        password = self.first_present(login['password'])
        if username is None or password is None:
            self.screenshot('login-form-missing')
            raise AuthenticationError(name, 'login form not found')

        username.fill(self.profile['username'])
        password.fill(self.profile['password'])
        button = self.first_present(login['submit'])
        if button is None:
            password.press('Enter')
        else:
            button.click()
        self.page.wait_for_load_state('domcontentloaded')

        success = self.page.get_by_text(re.compile(login['success'], re.IGNORECASE)).first
        try:
            success.wait_for(state='attached')
        except PlaywrightError:
            error = self.page.get_by_text(re.compile(login['error'], re.IGNORECASE)).first
            message = error.inner_text() if error.count() else 'no logged-in marker after login'
            self.screenshot('login-failed')
            raise AuthenticationError(name, message.strip())

        self.authenticated = True
        self.log.info("Logged into %s", name)

    def session_expired(self) -> bool:
        """True when the login form is showing again."""
        password = self.first_present(self.profile['login']['password'])
        return password is not None

    def ensure_authenticated(self):
        if not self.authenticated or self.session_expired():
            if self.authenticated:
                self.log.info("Session expired — logging in again")
            self.authenticate()

    def first_present(self, selectors: Sequence[str]):
        """First visible element matching any selector, or None."""
        for selector in selectors:
            try:
                matches = self.page.locator(selector)
                for i in range(matches.count()):
                    element = matches.nth(i)
                    if element.is_visible():
                        return element
            except PlaywrightError:
                continue
        return None

    def click_text(self, pattern: str, roles: str = 'button, input[type="button"], input[type="submit"], a') -> bool:
        """Click the first visible control whose text matches pattern. Returns False if none."""
        regex = re.compile(pattern, re.IGNORECASE)
        candidates = self.page.locator(roles).filter(has_text=regex)
        for i in range(candidates.count()):
            element = candidates.nth(i)
            if element.is_visible():
                element.click()
                return True
        by_role = self.page.get_by_role('button', name=regex)
        if by_role.count() and by_role.first.is_visible():
            by_role.first.click()
            return True
        return False

    def table_rows(self, table_selector: str) -> List[Dict[str, str]]:
        """Rows of the first matching table as header → cell text dicts."""
        table = self.page.locator(table_selector).first
        if table.count() == 0:
            return []
        headers = [h.strip() for h in table.locator('tr').first.locator('th, td').all_inner_texts()]
        rows = []
        body = table.locator('tr')
        for i in range(1, body.count()):
            cells = [c.strip() for c in body.nth(i).locator('td').all_inner_texts()]
            if not any(cells):
                continue
            rows.append(dict(zip(headers, cells)))
        return rows

    def screenshot(self, label: str) -> Optional[str]:
        return capture_screenshot(self.page, self.run_id, f"{self.portal}-{label}")

    @staticmethod
    def _set_value(element, value):
        tag = element.evaluate('el => el.tagName').upper()
        text = str(value)
        if tag == 'SELECT':
            try:
                element.select_option(label=text)
            except PlaywrightError:
                element.select_option(value=text)
            return
        element.fill(text)


# ── Agent registry ───────────────────────────────────────────────────────────
# Each agent module populates its own ADAPTERS dict, e.g.:
#   ADAPTERS = {'mhc_asia': MhcAsiaAgent, 'alliance_medinet': AllianceMedinetAgent}


def get_agent(agents: Dict[str, Type[PortalAgent]], portal: str, *args, **kwargs) -> PortalAgent:
    """Look up and instantiate the agent for a portal."""
    agent_cls = agents.get(portal)
    if not agent_cls:
        raise ValueError(f"No agent registered for portal '{portal}'")
    return agent_cls(*args, **kwargs)
