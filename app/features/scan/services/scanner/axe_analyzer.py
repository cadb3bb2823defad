"""
axe-core analysis of a loaded page.
"""
import logging
from pathlib import Path
from typing import Any, Dict, Optional, Protocol

from app.platform.config import settings
from app.features.scan.models.scan_job import ConformanceLevel
from app.features.scan.services.scanner.wcag import tags_for_level

logger = logging.getLogger(__name__)

AXE_RUN_SCRIPT = """
    const tags = arguments[0];
    const done = arguments[arguments.length - 1];
    if (!window.axe) { done({error: 'axe not injected'}); return; }
    axe.run(document, {
        runOnly: {type: 'tag', values: tags},
        resultTypes: ['violations'],
        iframes: true
    })
    .then(r => done({
        violations: r.violations,
        passes: r.passes.map(p => ({id: p.id})),
        inapplicable: r.inapplicable.map(p => ({id: p.id})),
        incomplete: r.incomplete.map(p => ({id: p.id}))
    }))
    .catch(e => done({error: String(e)}));
"""


class AnalysisError(Exception):
    pass


class Analyzer(Protocol):
    def analyze(self, driver, level: ConformanceLevel, timeout: Optional[float] = None) -> Dict[str, Any]:
        ...


class AxeAnalyzer:
    """Injects axe-core into the page and runs it with the tag set of the level."""

    def __init__(self, script_path: Optional[str] = None, script_timeout: float = 30.0):
        self.script_path = script_path or settings.AXE_SCRIPT_PATH
        self.script_timeout = script_timeout
        self._script: Optional[str] = None

    def _load_script(self) -> str:
        if self._script is None:
            path = Path(self.script_path)
            if not path.is_file():
                raise AnalysisError(f"axe-core script not found at {path}")
            self._script = path.read_text(encoding="utf-8")
        return self._script

    def inject(self, driver) -> None:
        driver.execute_script(self._load_script())
        if not driver.execute_script("return !!window.axe;"):
            raise AnalysisError("axe-core was injected but window.axe is missing")

    def analyze(self, driver, level: ConformanceLevel, timeout: Optional[float] = None) -> Dict[str, Any]:
        """Run axe-core within ``timeout`` seconds, or the analyzer's own limit."""
        self.inject(driver)
        driver.set_script_timeout(self.script_timeout if timeout is None else timeout)

        result = driver.execute_async_script(AXE_RUN_SCRIPT, tags_for_level(level))
        if not isinstance(result, dict):
            raise AnalysisError("axe.run returned no result")
        if result.get("error"):
            raise AnalysisError(f"axe.run failed: {result['error']}")

        logger.debug(
            f"axe found {len(result.get('violations', []))} violations on {driver.current_url}"
        )
        return result
