from sqlalchemy import Column, String, Text, ForeignKey, Index, Enum, JSON
from sqlalchemy.orm import relationship
import enum

from app.platform.db.base import BaseModel


class IssueImpact(enum.Enum):
    """Severity tiers, most severe first"""
    critical = "critical"
    serious = "serious"
    moderate = "moderate"
    minor = "minor"

    @property
    def priority(self) -> int:
        return {"critical": 4, "serious": 3, "moderate": 2, "minor": 1}[self.value]


class Issue(BaseModel):
    """
    One rule violation found on a page.

    All DOM nodes matched by the rule are kept in ``nodes``; the primary
    selector and snippet come from the first of them.
    """
    __tablename__ = "issues"

    scan_result_id = Column(String, ForeignKey("scan_results.id", ondelete="CASCADE"), nullable=False, index=True)

    rule_id = Column(String(128), nullable=False)
    impact = Column(Enum(IssueImpact), nullable=False, index=True)

    description = Column(Text, nullable=False)
    help_text = Column(Text, nullable=True)
    help_url = Column(String(1024), nullable=True)
    wcag_criteria = Column(JSON, nullable=False, default=list)

    # Element context
    css_selector = Column(String(1024), nullable=True)
    html_snippet = Column(Text, nullable=True)
    nodes = Column(JSON, nullable=False, default=list)

    scan_result = relationship("ScanResult", back_populates="issues", lazy="select")

    __table_args__ = (
        Index('idx_issues_rule', 'rule_id'),
    )
