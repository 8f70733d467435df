"""
Locator strategies — find a form field on pages with no stable markup.

Portal agents describe each field with a FieldSpec (stable selectors plus a
visible label) and resolve it through an ordered chain:

    AttributeLocator      → name/id/css selectors
    TableHeadingLocator   → the cell following the label's table cell
    SpatialLocator        → the visible control nearest the label, same row only

Every strategy returns a LocatorResult and never raises, so the chain can move
on to the next one.
"""
import logging
import re
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Any, List, Optional, Sequence, Tuple

from playwright.sync_api import Error as PlaywrightError

logger = logging.getLogger('pipeline.locators')


FIELD_CONTROLS_CSS = (
    'input:not([type="hidden"]):not([type="button"]):not([type="submit"]):not([type="image"]),'
    ' select, textarea'
)


@dataclass(frozen=True)
class FieldSpec:
    """How to find one field: stable selectors first, then its visible label."""
    name: str
    selectors: Tuple[str, ...] = ()
    label: Optional[str] = None

    @property
    def label_pattern(self):
        return re.compile(self.label, re.IGNORECASE) if self.label else None


@dataclass(frozen=True)
class Box:
    x: float
    y: float
    width: float = 0.0
    height: float = 0.0

    @property
    def center(self) -> Tuple[float, float]:
        return (self.x + self.width / 2, self.y + self.height / 2)

    @classmethod
    def from_bounding_box(cls, bbox) -> Optional['Box']:
        if not bbox:
            return None
        return cls(x=bbox['x'], y=bbox['y'], width=bbox['width'], height=bbox['height'])


@dataclass
class LocatorResult:
    found: bool
    element: Any = None
    strategy: str = ''
    detail: str = ''
    tried: List[str] = field(default_factory=list)

    @property
    def provenance(self) -> str:
        if not self.found:
            return 'not_found'
        return 'primary' if self.strategy == AttributeLocator.name else f"fallback:{self.strategy}"


def squared_distance(a: Tuple[float, float], b: Tuple[float, float]) -> float:
    return (a[0] - b[0]) ** 2 + (a[1] - b[1]) ** 2


def nearest_field(label_center: Tuple[float, float], candidates: Sequence[Tuple[Any, Box]]) -> Optional[Any]:
    """
    Pick the candidate whose box centre is closest to label_center.

    Equal distances resolve to the leftmost box, then the topmost.
    """
    if not candidates:
        return None
    best = min(
        candidates,
        key=lambda c: (squared_distance(label_center, c[1].center), c[1].x, c[1].y),
    )
    return best[0]


def read_value(element) -> str:
    """Text of a control or cell: input_value() for form controls, inner text otherwise."""
    tag = element.evaluate('el => el.tagName').upper()
    if tag in ('INPUT', 'TEXTAREA', 'SELECT'):
        return element.input_value()
    return element.inner_text()


def _first_visible(locator):
    for i in range(locator.count()):
        candidate = locator.nth(i)
        if candidate.is_visible():
            return candidate
    return None


class LocatorStrategy(ABC):
    name: str = ''

    def locate(self, scope, spec: FieldSpec) -> LocatorResult:
        try:
            return self._locate(scope, spec)
        except PlaywrightError as e:
            logger.debug("%s failed for %s: %s", self.name, spec.name, e)
            return LocatorResult(found=False, strategy=self.name, detail=str(e))

    @abstractmethod
    def _locate(self, scope, spec: FieldSpec) -> LocatorResult:
        ...


class AttributeLocator(LocatorStrategy):
    """First visible match among the field's stable selectors."""
    name = 'attribute'

    def _locate(self, scope, spec):
        for selector in spec.selectors:
            element = _first_visible(scope.locator(selector))
            if element is not None:
                return LocatorResult(found=True, element=element, strategy=self.name, detail=selector)
        return LocatorResult(found=False, strategy=self.name)


def _label_element(scope, spec):
    pattern = spec.label_pattern
    if pattern is None:
        return None
    return _first_visible(scope.get_by_text(pattern))


class TableHeadingLocator(LocatorStrategy):
    """The first control in the table cell right after the label's cell."""
    name = 'table_heading'

    def _locate(self, scope, spec):
        label = _label_element(scope, spec)
        if label is None:
            return LocatorResult(found=False, strategy=self.name, detail='label not found')
        cell = label.locator('xpath=ancestor-or-self::*[self::td or self::th][1]')
        following = cell.locator('xpath=following-sibling::td[1]')
        if following.count() == 0:
            return LocatorResult(found=False, strategy=self.name, detail='no following cell')
        element = _first_visible(following.first.locator(FIELD_CONTROLS_CSS))
        if element is None:
            return LocatorResult(found=False, strategy=self.name, detail='no control in cell')
        return LocatorResult(found=True, element=element, strategy=self.name)


class SpatialLocator(LocatorStrategy):
    """Nearest visible control to the label centre, within the label's own table row."""
    name = 'spatial'

    def _locate(self, scope, spec):
        label = _label_element(scope, spec)
        if label is None:
            return LocatorResult(found=False, strategy=self.name, detail='label not found')
        label_box = Box.from_bounding_box(label.bounding_box())
        if label_box is None:
            return LocatorResult(found=False, strategy=self.name, detail='label has no box')

        row = label.locator('xpath=ancestor::tr[1]')
        if row.count() == 0:
            return LocatorResult(found=False, strategy=self.name, detail='label not in a table row')

        controls = row.first.locator(FIELD_CONTROLS_CSS)
        candidates = []
        for i in range(controls.count()):
            control = controls.nth(i)
            if not control.is_visible():
                continue
            box = Box.from_bounding_box(control.bounding_box())
            if box is not None:
                candidates.append((control, box))

        element = nearest_field(label_box.center, candidates)
        if element is None:
            return LocatorResult(found=False, strategy=self.name, detail='no visible control in row')
        return LocatorResult(found=True, element=element, strategy=self.name,
                             detail=f"{len(candidates)} candidates")


DEFAULT_STRATEGIES = (AttributeLocator(), TableHeadingLocator(), SpatialLocator())


class LocatorChain:
    """Try each strategy in order; the first hit wins."""

    def __init__(self, strategies: Sequence[LocatorStrategy] = DEFAULT_STRATEGIES):
        self.strategies = list(strategies)

    def resolve(self, scope, spec: FieldSpec) -> LocatorResult:
        tried = []
        for strategy in self.strategies:
            result = strategy.locate(scope, spec)
            tried.append(strategy.name)
            if result.found:
                result.tried = tried
                if strategy is not self.strategies[0]:
                    logger.info("Field '%s' found by fallback strategy %s", spec.name, strategy.name)
                return result
        logger.warning("Field '%s' not found (tried %s)", spec.name, ', '.join(tried))
        return LocatorResult(found=False, tried=tried)
