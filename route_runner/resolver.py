"""Multi-tier element resolution for steps whose selector drifted."""
from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from typing import Any, Dict, List, Mapping, Optional, Sequence

from .driver import Driver, DriverError
from .models import Step

logger = logging.getLogger(__name__)

PATTERN_WAIT_MS = 2_000
DELAYED_RETRY_MS = 3_000
MOBILE_VIEWPORT_WIDTH = 768

STRATEGY_CONFIDENCE: Dict[str, float] = {
    "basic": 1.0,
    "standard_select": 0.95,
    "standard_input": 0.95,
    "standard_button": 0.95,
    "manual": 0.90,
    "input_button": 0.90,
    "label_checkbox": 0.90,
    "aria_select": 0.90,
    "aria_label": 0.85,
    "custom_dropdown": 0.85,
    "id_variant": 0.85,
    "name_variant": 0.85,
    "data_testid": 0.85,
    "field_alias": 0.85,
    "link_text": 0.85,
    "placeholder_input": 0.80,
    "standard_text": 0.80,
    "delayed": 0.75,
    "partial_id": 0.70,
}
DEFAULT_CONFIDENCE = 0.60

# keyword -> selectors, tried in order; the first keyword found in target/label wins.
DEFAULT_MANUAL_SELECTORS: Dict[str, List[str]] = {
    "この条件で絞り込む": [
        'button:has-text("この条件で絞り込む"):visible',
        'button[type="submit"]:visible',
        'button[class*="submit"]:visible',
    ],
    "Sign in": [
        'button:has-text("Sign in")',
        'input[type="submit"][value*="Sign in"]',
        'button[type="submit"]:visible',
    ],
    "Log in": [
        'button:has-text("Log in")',
        'input[type="submit"][value*="Log in"]',
        'button[type="submit"]:visible',
    ],
    "設定": ['button:has-text("設定")'],
    "確認": ['button:has-text("確認")'],
    "送信": ['button:has-text("送信")', 'button[type="submit"]:visible'],
}

# Field names that sites rename between releases.
FIELD_ALIASES: Dict[str, Sequence[str]] = {
    "phone": ("tel", "telephone", "phone_number"),
    "tel": ("phone", "telephone"),
    "email": ("mail", "email_address"),
    "mail": ("email",),
    "zip": ("postal_code", "zipcode"),
    "postal_code": ("zip", "zipcode"),
    "username": ("user", "login", "user_id"),
    "password": ("pass", "passwd"),
}

_NAME_ATTR = re.compile(r"""\[name\s*=\s*["']?([^"'\]]+)["']?\s*\]""")
_ID_SELECTOR = re.compile(r"^#([A-Za-z][\w-]*)$")
_HAS_TEXT = re.compile(r""":has-text\(\s*["'](.+?)["']\s*\)""")
_TEXT_ENGINE = re.compile(r"""^text\s*=\s*["']?(.+?)["']?$""")
_QUOTED = re.compile(r"""["「『“](.+?)["」』”]""")
_CSS_CHARS = re.compile(r"[\[\]#.:=>()]")


@dataclass
class PatternCandidate:
    selector: str
    strategy: str


@dataclass
class Resolution:
    """Result of resolving a step target."""

    found: bool
    strategy: str
    original_selector: str
    handle: Any = None
    new_selector: Optional[str] = None
    keyword: Optional[str] = None
    element_type: Optional[str] = None
    match_count: int = 0

    @property
    def confidence(self) -> float:
        return confidence_for(self.strategy)


def confidence_for(strategy: str) -> float:
    return STRATEGY_CONFIDENCE.get(strategy, DEFAULT_CONFIDENCE)


def normalize_selector(selector: str) -> str:
    """Normalize a selector copied from browser devtools."""
    normalized = selector.replace("\\:", ":")
    return re.sub(r"\s+", " ", normalized).strip()


def is_structural_path(selector: str) -> bool:
    """Long positional paths that usually only match the desktop layout."""
    return "nth-child" in selector or "md\\:none" in selector or selector.count(">") >= 4


def prioritize_for_device(selectors: Sequence[str], is_mobile: bool) -> List[str]:
    if not is_mobile:
        return list(selectors)
    flexible = [item for item in selectors if not is_structural_path(item)]
    structural = [item for item in selectors if is_structural_path(item)]
    return flexible + structural


def _dedupe(candidates: List[PatternCandidate], original: str) -> List[PatternCandidate]:
    seen = {original}
    unique = []
    for candidate in candidates:
        if candidate.selector in seen:
            continue
        seen.add(candidate.selector)
        unique.append(candidate)
    return unique


def _texts_for(step: Step) -> List[str]:
    texts = []
    target = step.target or ""
    for pattern in (_HAS_TEXT, _TEXT_ENGINE):
        match = pattern.search(target)
        if match:
            texts.append(match.group(1).strip())
    if target and not _CSS_CHARS.search(target) and len(target) <= 40:
        texts.append(target.strip())
    match = _QUOTED.search(step.label or "")
    if match:
        texts.append(match.group(1).strip())
    return [text for text in dict.fromkeys(texts) if text]


def generate_pattern_candidates(step: Step) -> List[PatternCandidate]:
    """Alternative selectors derived from the step's target and label."""
    target = step.target or ""
    candidates: List[PatternCandidate] = []

    name_match = _NAME_ATTR.search(target)
    if name_match:
        name = name_match.group(1).strip()
        candidates.extend([
            PatternCandidate(f'select[name="{name}"]', "standard_select"),
            PatternCandidate(f'input[name="{name}"]', "standard_input"),
            PatternCandidate(f'[data-name="{name}"], [data-field="{name}"]', "custom_dropdown"),
            PatternCandidate(f'[aria-label*="{name}"]', "aria_select"),
            PatternCandidate(f'[placeholder*="{name}"]', "placeholder_input"),
        ])
        for alias in FIELD_ALIASES.get(name.lower(), ()):
            candidates.append(PatternCandidate(f'[name="{alias}"]', "field_alias"))

    id_match = _ID_SELECTOR.match(target.strip())
    if id_match:
        element_id = id_match.group(1)
        candidates.extend([
            PatternCandidate(f'[data-testid="{element_id}"]', "data_testid"),
            PatternCandidate(f'[name="{element_id}"]', "name_variant"),
            PatternCandidate(f'[id*="{element_id}"]', "partial_id"),
        ])

    for text in _texts_for(step):
        candidates.extend([
            PatternCandidate(f'button:has-text("{text}")', "standard_button"),
            PatternCandidate(f'input[type="submit"][value="{text}"], input[type="button"][value="{text}"]', "input_button"),
            PatternCandidate(f'label:has-text("{text}")', "label_checkbox"),
            PatternCandidate(f'[aria-label*="{text}"]', "aria_label"),
            PatternCandidate(f'a:has-text("{text}")', "link_text"),
            PatternCandidate(f'text="{text}"', "standard_text"),
        ])

    return _dedupe(candidates, target)


class ElementResolver:
    """Resolves a step target through manual, direct, pattern and delayed tiers."""

    def __init__(
        self,
        driver: Driver,
        manual_selectors: Optional[Mapping[str, Sequence[str]]] = None,
        pattern_wait_ms: int = PATTERN_WAIT_MS,
        retry_delay_ms: int = DELAYED_RETRY_MS,
    ) -> None:
        self.driver = driver
        self.manual_selectors = dict(DEFAULT_MANUAL_SELECTORS if manual_selectors is None else manual_selectors)
        self.pattern_wait_ms = pattern_wait_ms
        self.retry_delay_ms = retry_delay_ms

    def resolve(self, step: Step) -> Resolution:
        """Locate the step target. A ``new_selector`` on the result is only a
        candidate; callers record it once the action on it has succeeded."""
        logger.debug("Resolving target for '%s': %s", step.label, step.target)
        resolution = (
            self._try_manual(step)
            or self._try_direct(step)
            or self._try_patterns(step)
            or self._try_delayed(step)
        )
        if resolution is None:
            logger.warning("All resolver tiers failed for %s", step.target)
            return Resolution(found=False, strategy="none", original_selector=step.target)

        logger.info("Resolved '%s' via %s", step.label, resolution.strategy)
        return resolution

    def _locate(self, selector: str) -> List[Any]:
        if not selector:
            return []
        try:
            return self.driver.locate(selector)
        except DriverError as exc:
            logger.debug("Selector %s failed: %s", selector, exc)
            return []

    def _is_mobile(self) -> bool:
        try:
            width = self.driver.viewport_width()
        except DriverError:
            return False
        return width is not None and width < MOBILE_VIEWPORT_WIDTH

    def _try_manual(self, step: Step) -> Optional[Resolution]:
        target = step.target or ""
        label = step.label or ""
        for keyword, selectors in self.manual_selectors.items():
            if keyword.lower() not in target.lower() and keyword.lower() not in label.lower():
                continue
            is_mobile = self._is_mobile()
            logger.info("Manual selectors for '%s' (%d patterns, %s)", keyword, len(selectors),
                        "mobile" if is_mobile else "desktop")
            for raw_selector in prioritize_for_device(selectors, is_mobile):
                selector = normalize_selector(raw_selector)
                handles = self._locate(selector)
                if not handles:
                    continue
                try:
                    visible = self.driver.is_visible(handles[0])
                except DriverError as exc:
                    logger.debug("Visibility check failed for %s: %s", selector, exc)
                    continue
                if not visible:
                    logger.debug("Manual selector %s matched but is not visible", selector)
                    continue
                final_selector = f"{selector} >> nth=0" if len(handles) > 1 else selector
                return Resolution(
                    found=True,
                    strategy="manual",
                    original_selector=target,
                    handle=handles[0],
                    new_selector=final_selector,
                    keyword=keyword,
                    element_type=self._tag_name(handles[0]),
                    match_count=len(handles),
                )
            # Only the first matching keyword is tried.
            break
        return None

    def _try_direct(self, step: Step) -> Optional[Resolution]:
        handles = self._locate(step.target)
        if not handles:
            return None
        return Resolution(
            found=True,
            strategy="basic",
            original_selector=step.target,
            handle=handles[0],
            element_type=self._tag_name(handles[0]),
            match_count=len(handles),
        )

    def _try_patterns(self, step: Step) -> Optional[Resolution]:
        for candidate in generate_pattern_candidates(step):
            try:
                self.driver.wait_visible(candidate.selector, self.pattern_wait_ms)
            except DriverError as exc:
                logger.debug("Pattern %s (%s) failed: %s", candidate.selector, candidate.strategy, exc)
                continue
            handles = self._locate(candidate.selector)
            if not handles:
                continue
            return Resolution(
                found=True,
                strategy=candidate.strategy,
                original_selector=step.target,
                handle=handles[0],
                new_selector=candidate.selector,
                element_type=self._tag_name(handles[0]),
                match_count=len(handles),
            )
        return None

    def _try_delayed(self, step: Step) -> Optional[Resolution]:
        if not step.target:
            return None
        logger.info("Waiting %dms for dynamic rendering of %s", self.retry_delay_ms, step.target)
        self.driver.sleep(self.retry_delay_ms)
        handles = self._locate(step.target)
        if not handles:
            return None
        return Resolution(
            found=True,
            strategy="delayed",
            original_selector=step.target,
            handle=handles[0],
            element_type=self._tag_name(handles[0]),
            match_count=len(handles),
        )

    def _tag_name(self, handle: Any) -> Optional[str]:
        try:
            return self.driver.tag_name(handle)
        except DriverError:
            return None
