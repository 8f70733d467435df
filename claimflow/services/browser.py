"""
Browsing session manager — one Chromium instance, many isolated contexts.

The manager owns Playwright, the browser and every context it created. It is
a context manager: close() runs on success, exception and cancellation alike,
and running it twice is harmless. Process signals only call the same close().

    with BrowserSessionManager(proxy_pool=pool) as browser:
        page = browser.root_session.new_page()
        mhc = browser.new_isolated_session()
"""
import json
import logging
import signal
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

from playwright.sync_api import sync_playwright, Error as PlaywrightError

from claimflow.config import (
    PROXY_ENABLED, PROXY_SERVER, PROXY_USERNAME, PROXY_PASSWORD, PROXY_BYPASS,
    PROXY_AUTO_DISCOVER, HEADLESS, SLOW_MO, UI_TIMEOUT_MS, VIEWPORT,
)
from claimflow.services.artifacts import capture_screenshot
from claimflow.services.proxy_pool import ProxyCandidate, ProxyPool

logger = logging.getLogger('services.browser')


ALLOWED_SCHEMES = ('http', 'https', 'data', 'about', 'blob', 'javascript')
GUARD_LOG_PREFIX = '[claimflow] blocked'

# Injected into every page before any site script runs. Neutralises links,
# forms and resource URLs that would hand off to an OS protocol handler.
NAVIGATION_GUARD_SCRIPT = """
(() => {
  const ALLOWED = new Set(%(allowed)s.map((s) => s + ':'));
  const URL_ATTRS = new Set(['href', 'src', 'action', 'data', 'poster']);
  const blocked = (url) => {
    if (!url) return false;
    try { return !ALLOWED.has(new URL(String(url), window.location.href).protocol); }
    catch (e) { return false; }
  };
  const warn = (where, url) => { try { console.warn('%(prefix)s ' + where, String(url)); } catch (e) {} };

  const neutralise = (el, attr, url) => {
    el.setAttribute('data-blocked-' + attr, String(url));
    setAttr.call(el, attr, (attr === 'href' || attr === 'action') ? '#' : 'about:blank');
  };

  const setAttr = Element.prototype.setAttribute;
  Element.prototype.setAttribute = function (name, value) {
    const attr = String(name || '').toLowerCase();
    if (URL_ATTRS.has(attr) && blocked(value)) {
      warn('setAttribute', value);
      return neutralise(this, attr, value);
    }
    return setAttr.call(this, name, value);
  };

  const guardProperty = (proto, prop) => {
    const desc = proto && Object.getOwnPropertyDescriptor(proto, prop);
    if (!desc || !desc.set) return;
    Object.defineProperty(proto, prop, {
      configurable: true,
      get: desc.get,
      set: function (url) {
        if (blocked(url)) { warn(prop, url); return neutralise(this, prop, url); }
        return desc.set.call(this, url);
      },
    });
  };
  guardProperty(HTMLAnchorElement.prototype, 'href');
  guardProperty(HTMLFormElement.prototype, 'action');
  guardProperty(HTMLLinkElement.prototype, 'href');
  guardProperty(HTMLObjectElement.prototype, 'data');
  guardProperty(HTMLVideoElement.prototype, 'poster');
  [HTMLIFrameElement, HTMLImageElement, HTMLScriptElement, HTMLEmbedElement,
   HTMLSourceElement, HTMLTrackElement].forEach((cls) => guardProperty(cls.prototype, 'src'));

  const open = window.open;
  window.open = function (url, ...rest) {
    if (blocked(url)) { warn('window.open', url); return null; }
    return open.call(window, url, ...rest);
  };
  ['assign', 'replace'].forEach((method) => {
    const original = Location.prototype[method];
    Location.prototype[method] = function (url) {
      if (blocked(url)) { warn('location.' + method, url); return; }
      return original.call(this, url);
    };
  });
  const hrefDesc = Object.getOwnPropertyDescriptor(Location.prototype, 'href');
  if (hrefDesc && hrefDesc.set) {
    Object.defineProperty(Location.prototype, 'href', {
      configurable: true,
      get: hrefDesc.get,
      set: function (url) {
        if (blocked(url)) { warn('location.href', url); return; }
        return hrefDesc.set.call(this, url);
      },
    });
  }

  const sanitiseTree = (root) => {
    if (!root || !root.querySelectorAll) return;
    root.querySelectorAll('a[href], form[action]').forEach((el) => {
      const attr = el.tagName === 'FORM' ? 'action' : 'href';
      const url = el.getAttribute(attr);
      if (blocked(url)) { warn(el.tagName.toLowerCase() + '.sanitise', url); neutralise(el, attr, url); }
    });
  };
  const guardEvent = (event) => {
    const el = event.target && event.target.closest ? event.target.closest('a, form') : null;
    if (!el) return;
    const url = el.getAttribute(el.tagName === 'FORM' ? 'action' : 'href');
    if (blocked(url)) {
      warn(event.type, url);
      event.preventDefault();
      event.stopImmediatePropagation();
      sanitiseTree(el.parentNode || el);
    }
  };
  document.addEventListener('click', guardEvent, true);
  document.addEventListener('auxclick', guardEvent, true);
  document.addEventListener('submit', guardEvent, true);
  if (navigator && typeof navigator.registerProtocolHandler === 'function') {
    navigator.registerProtocolHandler = () => warn('registerProtocolHandler', '');
  }

  new MutationObserver((mutations) => {
    for (const m of mutations) {
      if (m.type === 'attributes') sanitiseTree(m.target.parentNode || m.target);
      m.addedNodes && m.addedNodes.forEach((node) => sanitiseTree(node.parentNode || node));
    }
  }).observe(document, { subtree: true, childList: true, attributes: true, attributeFilter: ['href', 'action'] });
  document.addEventListener('DOMContentLoaded', () => sanitiseTree(document));
})();
""" % {'allowed': json.dumps(list(ALLOWED_SCHEMES)), 'prefix': GUARD_LOG_PREFIX}


def _now():
    return datetime.now(timezone.utc)


@dataclass
class BrowsingSession:
    """One isolated cookie/storage scope (a Playwright BrowserContext)."""
    id: str
    context: Any
    bound_proxy: Optional[ProxyCandidate] = None
    created_at: datetime = field(default_factory=_now)
    closed_at: Optional[datetime] = None
    timeout_ms: int = UI_TIMEOUT_MS

    @property
    def closed(self) -> bool:
        return self.closed_at is not None

    def new_page(self):
        page = self.context.new_page()
        page.set_default_timeout(self.timeout_ms)
        return page

    def close(self):
        if self.closed:
            return
        self.closed_at = _now()
        try:
            self.context.close()
        except PlaywrightError as e:
            logger.warning("Session %s close error: %s", self.id, e)


class BrowserSessionManager:
    """
    Owns the browser engine and every session bound to it.

    Proxy resolution, in order: proxying disabled → direct; PROXY_SERVER set →
    that server as-is; auto-discovery → ProxyPool.acquire().
    """

    def __init__(
        self,
        proxy_pool: ProxyPool = None,
        proxy_enabled: bool = PROXY_ENABLED,
        proxy_server: str = PROXY_SERVER,
        proxy_username: str = PROXY_USERNAME,
        proxy_password: str = PROXY_PASSWORD,
        proxy_bypass: str = PROXY_BYPASS,
        auto_discover: bool = PROXY_AUTO_DISCOVER,
        headless: bool = HEADLESS,
        slow_mo: int = SLOW_MO,
        timeout_ms: int = UI_TIMEOUT_MS,
        viewport: Dict[str, int] = None,
        playwright_factory=sync_playwright,
    ):
        self.proxy_pool = proxy_pool
        self.proxy_enabled = proxy_enabled
        self.proxy_server = proxy_server
        self.proxy_username = proxy_username
        self.proxy_password = proxy_password
        self.proxy_bypass = proxy_bypass
        self.auto_discover = auto_discover
        self.headless = headless
        self.slow_mo = slow_mo
        self.timeout_ms = timeout_ms
        self.viewport = dict(viewport or VIEWPORT)
        self._playwright_factory = playwright_factory

        self._playwright = None
        self._browser = None
        self.proxy: Optional[ProxyCandidate] = None
        self.sessions: List[BrowsingSession] = []
        self.root_session: Optional[BrowsingSession] = None
        self._closed = False

    # ── Lifecycle ────────────────────────────────────────────────────────────

    def __enter__(self):
        self.init()
        return self

    def __exit__(self, exc_type, exc, tb):
        self.close()
        return False

    def init(self) -> BrowsingSession:
        """Launch the browser, bind the egress proxy and open the root session."""
        if self.root_session is not None:
            return self.root_session
        if self._closed:
            raise RuntimeError("Browser session manager already closed")

        try:
            self.proxy = self._resolve_proxy()
            self._playwright = self._playwright_factory().start()
            self._browser = self._playwright.chromium.launch(
                headless=self.headless,
                slow_mo=self.slow_mo,
                args=['--disable-dev-shm-usage', '--no-default-browser-check'],
            )
            self.root_session = self._open_session()
        except Exception:
            self.close()
            raise

        logger.info("Browser launched (headless=%s, proxy=%s)",
                    self.headless, self.proxy.server if self.proxy else 'direct')
        return self.root_session

    def new_isolated_session(self) -> BrowsingSession:
        """Fresh cookies/storage on the same browser and proxy."""
        if self._browser is None:
            raise RuntimeError("Browser not initialised — call init() first")
        return self._open_session()

    def close(self):
        """Close every session, the browser and Playwright. Idempotent."""
        if self._closed:
            return
        self._closed = True

        for session in reversed(self.sessions):
            session.close()

        if self._browser is not None:
            try:
                self._browser.close()
            except PlaywrightError as e:
                logger.warning("Browser close error: %s", e)
            self._browser = None

        if self._playwright is not None:
            try:
                self._playwright.stop()
            except PlaywrightError as e:
                logger.warning("Playwright stop error: %s", e)
            self._playwright = None

        logger.info("Browser closed (%d sessions)", len(self.sessions))

    @property
    def closed(self) -> bool:
        return self._closed

    # ── Helpers ──────────────────────────────────────────────────────────────

    def screenshot(self, page, run_id: str, label: str) -> Optional[str]:
        return capture_screenshot(page, run_id, label)

    def _resolve_proxy(self) -> Optional[ProxyCandidate]:
        if not self.proxy_enabled:
            return None
        if self.proxy_server:
            return ProxyCandidate(
                server=self.proxy_server,
                source='manual',
                username=self.proxy_username,
                password=self.proxy_password,
            )
        if self.auto_discover and self.proxy_pool is not None:
            return self.proxy_pool.acquire()
        logger.warning("Proxy enabled but no server configured and auto-discovery off — connecting directly")
        return None

    def _context_options(self) -> Dict[str, Any]:
        options = {
            'viewport': self.viewport,
            'ignore_https_errors': True,
            'locale': 'en-SG',
            'timezone_id': 'Asia/Singapore',
        }
        if self.proxy is not None:
            proxy = {'server': self.proxy.server}
            if self.proxy.username:
                proxy['username'] = self.proxy.username
                proxy['password'] = self.proxy.password or ''
            if self.proxy_bypass:
                proxy['bypass'] = self.proxy_bypass
            options['proxy'] = proxy
        return options

    def _open_session(self) -> BrowsingSession:
        context = self._browser.new_context(**self._context_options())
        context.set_default_timeout(self.timeout_ms)
        context.add_init_script(NAVIGATION_GUARD_SCRIPT)
        context.on('page', self._watch_page)

        session = BrowsingSession(
            id=str(uuid.uuid4()),
            context=context,
            bound_proxy=self.proxy,
            timeout_ms=self.timeout_ms,
        )
        self.sessions.append(session)
        logger.info("Opened session %s", session.id[:8])
        return session

    def _watch_page(self, page):
        page.on('console', _log_guard_message)
        page.on('popup', lambda popup: logger.info("Popup opened: %s", popup.url))


def _log_guard_message(message):
    text = message.text
    if text.startswith(GUARD_LOG_PREFIX):
        logger.warning("Navigation guard: %s", text[len(GUARD_LOG_PREFIX):].strip())


def install_signal_handlers(manager: BrowserSessionManager, signals=(signal.SIGINT, signal.SIGTERM)):
    """
    Close the browser on SIGINT/SIGTERM, then exit.

    Returns the previous handlers so callers can restore them.
    """
    def _handle(signum, frame):
        logger.warning("Received signal %d — closing browser", signum)
        manager.close()
        raise SystemExit(128 + signum)

    previous = {}
    for sig in signals:
        previous[sig] = signal.signal(sig, _handle)
    return previous


def default_session_manager() -> BrowserSessionManager:
    """Manager configured from the environment, with a fresh ProxyPool per run."""
    return BrowserSessionManager(proxy_pool=ProxyPool())
