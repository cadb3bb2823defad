"""
WCAG lookup tables used by the analyzer and the result mapper.
"""
from typing import Dict, List

from app.features.scan.models.scan_job import ConformanceLevel

# axe-core tags per conformance level; each level includes the levels below it
WCAG_TAGS_BY_LEVEL: Dict[ConformanceLevel, List[str]] = {
    ConformanceLevel.A: ["wcag2a", "wcag21a", "wcag22a"],
    ConformanceLevel.AA: ["wcag2a", "wcag21a", "wcag22a", "wcag2aa", "wcag21aa", "wcag22aa"],
    ConformanceLevel.AAA: [
        "wcag2a", "wcag21a", "wcag22a",
        "wcag2aa", "wcag21aa", "wcag22aa",
        "wcag2aaa", "wcag21aaa", "wcag22aaa",
    ],
}

# Success criteria per axe rule, for rules whose tags don't carry them
AXE_RULE_TO_WCAG: Dict[str, List[str]] = {
    # Images and alternative text
    "image-alt": ["1.1.1"],
    "input-image-alt": ["1.1.1"],
    "area-alt": ["1.1.1"],
    "svg-img-alt": ["1.1.1"],
    "object-alt": ["1.1.1"],
    "image-redundant-alt": ["1.1.1"],
    "role-img-alt": ["1.1.1"],

    # Color and contrast
    "color-contrast": ["1.4.3"],
    "color-contrast-enhanced": ["1.4.6"],
    "link-in-text-block": ["1.4.1"],

    # Semantic structure
    "page-has-heading-one": ["1.3.1"],
    "heading-order": ["1.3.1"],
    "list": ["1.3.1"],
    "listitem": ["1.3.1"],
    "definition-list": ["1.3.1"],
    "dlitem": ["1.3.1"],
    "table-duplicate-name": ["1.3.1"],
    "td-headers-attr": ["1.3.1"],
    "th-has-data-cells": ["1.3.1"],
    "layout-table": ["1.3.1"],
    "scope-attr-valid": ["1.3.1"],
    "td-has-header": ["1.3.1"],

    # Forms
    "label": ["1.3.1", "3.3.2"],
    "label-title-only": ["1.3.1", "3.3.2"],
    "label-content-name-mismatch": ["2.5.3", "3.3.2"],
    "input-button-name": ["4.1.2"],
    "select-name": ["4.1.2"],
    "form-field-multiple-labels": ["3.3.2"],
    "fieldset-legend": ["1.3.1", "3.3.2"],
    "autocomplete-valid": ["1.3.5"],

    # Keyboard and focus
    "accesskeys": ["2.1.1"],
    "tabindex": ["2.1.1"],
    "focus-order-semantics": ["2.4.3"],
    "scrollable-region-focusable": ["2.1.1"],

    # Links
    "link-name": ["2.4.4", "4.1.2"],
    "identical-links-same-purpose": ["2.4.4"],

    # Page structure
    "bypass": ["2.4.1"],
    "document-title": ["2.4.2"],
    "html-has-lang": ["3.1.1"],
    "html-lang-valid": ["3.1.1"],
    "html-xml-lang-mismatch": ["3.1.1"],
    "valid-lang": ["3.1.2"],

    # Landmarks
    "landmark-one-main": ["1.3.1"],
    "landmark-complementary-is-top-level": ["1.3.1"],
    "landmark-no-duplicate-banner": ["1.3.1"],
    "landmark-no-duplicate-contentinfo": ["1.3.1"],
    "landmark-unique": ["1.3.1"],
    "region": ["1.3.1"],

    # ARIA
    "aria-allowed-attr": ["4.1.2"],
    "aria-allowed-role": ["4.1.2"],
    "aria-hidden-body": ["4.1.2"],
    "aria-hidden-focus": ["1.3.1", "4.1.2"],
    "aria-input-field-name": ["4.1.2"],
    "aria-required-attr": ["4.1.2"],
    "aria-required-children": ["1.3.1"],
    "aria-required-parent": ["1.3.1"],
    "aria-roledescription": ["4.1.2"],
    "aria-roles": ["4.1.2"],
    "aria-toggle-field-name": ["4.1.2"],
    "aria-valid-attr-value": ["4.1.2"],
    "aria-valid-attr": ["4.1.2"],
    "button-name": ["4.1.2"],

    # Media
    "audio-caption": ["1.2.2"],
    "video-caption": ["1.2.2"],
    "video-description": ["1.2.5"],

    # Timing and viewport
    "meta-refresh": ["2.2.1", "2.2.4", "3.2.5"],
    "meta-viewport": ["1.4.4"],
    "meta-viewport-large": ["1.4.4"],
    "marquee": ["2.2.2"],
    "blink": ["2.2.2"],
    "avoid-inline-spacing": ["1.4.12"],

    # Parsing
    "duplicate-id": ["4.1.1"],
    "duplicate-id-active": ["4.1.1"],
    "duplicate-id-aria": ["4.1.1"],

    # Frames
    "frame-title": ["2.4.1", "4.1.2"],
    "frame-title-unique": ["4.1.2"],
}


def tags_for_level(level: ConformanceLevel) -> List[str]:
    return list(WCAG_TAGS_BY_LEVEL[level])


def criteria_for_rule(rule_id: str) -> List[str]:
    return list(AXE_RULE_TO_WCAG.get(rule_id, []))
