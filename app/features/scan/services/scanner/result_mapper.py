"""
Turns raw axe-core output into issues ready for storage.

Pure functions only: the same raw result always maps to the same issues.
Ids are assigned by the database when the issues are persisted.
"""
import re
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from app.features.scan.models.scan_issue import IssueImpact
from app.features.scan.services.scanner.html_sanitizer import sanitize_html
from app.features.scan.services.scanner.wcag import criteria_for_rule

WCAG_TAG_PATTERN = re.compile(r"^wcag(\d)(\d)(\d+)$")


@dataclass
class MappedIssue:
    rule_id: str
    impact: IssueImpact
    description: str
    help_text: str
    help_url: str
    wcag_criteria: List[str]
    css_selector: str
    html_snippet: str
    nodes: List[Dict[str, Any]] = field(default_factory=list)


@dataclass
class IssueSummary:
    total: int = 0
    critical: int = 0
    serious: int = 0
    moderate: int = 0
    minor: int = 0


@dataclass
class MappedResults:
    issues: List[MappedIssue]
    summary: IssueSummary
    passes: int
    inapplicable: int


def map_impact(label: Optional[str]) -> IssueImpact:
    """axe impact label to IssueImpact; unknown or missing labels count as moderate."""
    if not label:
        return IssueImpact.moderate
    try:
        return IssueImpact(label.lower())
    except ValueError:
        return IssueImpact.moderate


def _criterion_key(criterion: str):
    return tuple(int(part) for part in criterion.split("."))


def extract_wcag_criteria(tags: List[str], rule_id: str) -> List[str]:
    """
    Success criteria for a rule, from its ``wcagNNN`` tags (wcag412 -> 4.1.2)
    plus the static rule table.
    """
    criteria = set()
    for tag in tags or []:
        match = WCAG_TAG_PATTERN.match(tag)
        if match:
            criteria.add(".".join(match.groups()))

    criteria.update(criteria_for_rule(rule_id))
    return sorted(criteria, key=_criterion_key)


def _selector_parts(target: List[Any]) -> List[str]:
    parts = []
    for selector in target or []:
        if isinstance(selector, str):
            parts.append(selector)
        elif isinstance(selector, list):
            # iframe / shadow DOM selectors are nested lists
            parts.append(" ".join(str(s) for s in selector))
        else:
            parts.append(str(selector))
    return parts


def map_node(node: Dict[str, Any]) -> Dict[str, Any]:
    return {
        "html": sanitize_html(node.get("html") or ""),
        "target": _selector_parts(node.get("target")),
        "failure_summary": node.get("failureSummary") or None,
    }


def map_violations(violations: List[Dict[str, Any]]) -> List[MappedIssue]:
    """One issue per violated rule, keeping every affected node."""
    issues = []
    for violation in violations or []:
        raw_nodes = violation.get("nodes") or []
        nodes = [map_node(n) for n in raw_nodes]

        primary = raw_nodes[0] if raw_nodes else None
        css_selector = " ".join(_selector_parts(primary.get("target"))) if primary else ""
        html_snippet = sanitize_html(primary.get("html") or "") if primary else ""

        rule_id = violation.get("id", "")
        issues.append(
            MappedIssue(
                rule_id=rule_id,
                impact=map_impact(violation.get("impact")),
                description=violation.get("description", ""),
                help_text=violation.get("help", ""),
                help_url=violation.get("helpUrl", ""),
                wcag_criteria=extract_wcag_criteria(violation.get("tags", []), rule_id),
                css_selector=css_selector,
                html_snippet=html_snippet,
                nodes=nodes,
            )
        )
    return issues


def summarize(issues: List[MappedIssue]) -> IssueSummary:
    summary = IssueSummary(total=len(issues))
    for issue in issues:
        setattr(summary, issue.impact.value, getattr(summary, issue.impact.value) + 1)
    return summary


def map_results(raw: Dict[str, Any]) -> MappedResults:
    issues = map_violations(raw.get("violations", []))
    return MappedResults(
        issues=issues,
        summary=summarize(issues),
        passes=len(raw.get("passes") or []),
        inapplicable=len(raw.get("inapplicable") or []),
    )
