"""Scan orchestration: walk, extract, match, filter, classify, report.

Per-file pipelines run on a thread pool and share the read-only rule set.
Results are gathered on the calling thread, which is the only place shared
state is touched.
"""

from __future__ import annotations

import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Sequence, Set

from .classifier import Classifier
from .config import ScanConfig, split_allowed
from .engine import MatchEngine
from .errors import FileAccessError, sanitize_path
from .extractors import extract_file
from .extractors.base import file_unit
from .filekinds import detect_kind
from .oracle import DependencyAuditor, OracleClient, VulnerabilityOracle
from .reachability import ReachabilityFilter
from .report import Clock, ReportBuilder, report_timestamp
from .result import DegradedFile, Finding, Report, SkippedFile, UnknownCheck
from .rules import RuleSet, load, load_baseline
from .units import ScanUnit, UnitKind
from .utils.fileio import read_source
from .walker import FileWalker

logger = logging.getLogger(__name__)


@dataclass
class FileResult:
    """Everything one per-file pipeline produced."""

    path: str
    findings: List[Finding] = field(default_factory=list)
    dependencies: List[ScanUnit] = field(default_factory=list)
    suppressed: int = 0
    scanned: bool = True
    skipped: Optional[SkippedFile] = None
    degraded: Optional[DegradedFile] = None


@dataclass
class _Accumulator:
    findings: List[Finding] = field(default_factory=list)
    skipped: List[SkippedFile] = field(default_factory=list)
    degraded: List[DegradedFile] = field(default_factory=list)
    suppressed: int = 0
    files_scanned: int = 0
    not_started: int = 0

    def add(self, result: Optional[FileResult]) -> None:
        if result is None:
            self.not_started += 1
            return
        self.findings.extend(result.findings)
        self.suppressed += result.suppressed
        if result.scanned:
            self.files_scanned += 1
        if result.skipped is not None:
            self.skipped.append(result.skipped)
        if result.degraded is not None:
            self.degraded.append(result.degraded)


class Scanner:
    """Run one scan of ``root``. Instances are single-use."""

    def __init__(
        self,
        root: Path,
        ruleset: RuleSet,
        config: Optional[ScanConfig] = None,
        oracle: Optional[VulnerabilityOracle] = None,
        clock: Optional[Clock] = None,
    ) -> None:
        self.root = Path(root)
        self.config = config or ScanConfig()
        self.ruleset = ruleset.without(self.config.disabled_rules) if self.config.disabled_rules else ruleset
        self.oracle = oracle
        self.clock = clock
        self.engine = MatchEngine()
        self.reachability = ReachabilityFilter(self.config.fixture_dirs)
        self.classifier = Classifier(self.config.pii_terms)
        self._cancel = threading.Event()

    def cancel(self) -> None:
        """Stop starting new files; in-flight files finish and the report is marked incomplete."""

        self._cancel.set()

    @property
    def cancelled(self) -> bool:
        return self._cancel.is_set()

    def relative(self, path: Path) -> str:
        try:
            return path.relative_to(self.root).as_posix()
        except ValueError:
            return path.as_posix()

    def scan_file(self, path: Path) -> FileResult:
        relative = self.relative(path)
        logger.debug("scanning %s", relative)
        try:
            source = read_source(path, self.config.max_file_bytes)
        except FileAccessError as exc:
            logger.warning("skipping %s: %s", sanitize_path(path), exc.reason)
            return FileResult(relative, scanned=False, skipped=SkippedFile(relative, exc.reason))

        result = FileResult(relative)
        if source.binary:
            kind = detect_kind(relative)
            units: Sequence[ScanUnit] = [file_unit(relative, kind)]
            result.scanned = False
            result.skipped = SkippedFile(relative, "binary content")
        else:
            extraction = extract_file(relative, source.text)
            kind = extraction.file_kind
            units = extraction.units
            if extraction.degraded:
                result.degraded = DegradedFile(relative, kind, extraction.degraded)

        matches = self.engine.match_units(units, self.ruleset.rules_for(kind))
        kept, dropped = self.reachability.partition(matches)
        result.suppressed = len(dropped)
        result.findings = [self.classifier.classify(match, match.taint) for match in kept]
        result.dependencies = [unit for unit in units if unit.kind == UnitKind.DEPENDENCY]
        return result

    def _scan_if_running(self, path: Path) -> Optional[FileResult]:
        if self._cancel.is_set():
            return None
        try:
            return self.scan_file(path)
        except Exception as exc:  # one broken file is skipped, never fatal to the scan
            relative = self.relative(path)
            logger.warning("skipping %s after internal error: %s", relative, exc, exc_info=True)
            return FileResult(relative, scanned=False, skipped=SkippedFile(relative, f"internal error: {exc}"))

    def run(self) -> Report:
        allowlist = self.config.active_allowlist()
        walker = FileWalker(self.root, self.config.exclude)
        auditor: Optional[DependencyAuditor] = None
        if self.oracle is not None:
            auditor = DependencyAuditor(self.ruleset.rules, OracleClient(self.oracle, self.config.oracle_timeout))
            if not auditor.active:
                auditor.client.close()
                auditor = None

        state = _Accumulator()
        futures: Dict["Future[Optional[FileResult]]", Path] = {}
        collected: Set["Future[Optional[FileResult]]"] = set()
        walk_finished = False
        executor = ThreadPoolExecutor(max_workers=self.config.workers, thread_name_prefix="secscan")
        try:
            for path in walker.walk():
                if self._cancel.is_set():
                    break
                futures[executor.submit(self._scan_if_running, path)] = path
            else:
                walk_finished = True
            for future in as_completed(futures):
                result = future.result()
                collected.add(future)
                state.add(result)
                if auditor is not None and result is not None and result.dependencies:
                    auditor.submit(result.dependencies)
        except KeyboardInterrupt:
            logger.warning("interrupted; finishing in-flight files and reporting partial results")
            self.cancel()
        finally:
            executor.shutdown(wait=True, cancel_futures=self._cancel.is_set())

        for future in futures:
            if future in collected:
                continue
            if future.cancelled():
                state.not_started += 1
                continue
            state.add(future.result())

        unknown: List[UnknownCheck] = []
        if auditor is not None:
            advisory_matches, unknown = auditor.resolve()
            auditor.client.close()
            kept, dropped = self.reachability.partition(advisory_matches)
            state.suppressed += len(dropped)
            state.findings.extend(self.classifier.classify(match, match.taint) for match in kept)

        findings, allowlisted = split_allowed(state.findings, allowlist)
        complete = walk_finished and state.not_started == 0
        if not complete:
            logger.warning("scan cancelled; report covers %d files", state.files_scanned)

        return ReportBuilder().build(
            findings,
            root=sanitize_path(self.root),
            ruleset_version=self.ruleset.version,
            timestamp=report_timestamp(self.clock),
            files_scanned=state.files_scanned,
            skipped=list(walker.skipped) + state.skipped,
            degraded=state.degraded,
            unknown_checks=unknown,
            suppressed=state.suppressed,
            allowlisted=allowlisted,
            complete=complete,
        )


def scan(
    root: Path,
    rules: Optional[Sequence[Path]] = None,
    config: Optional[ScanConfig] = None,
    oracle: Optional[VulnerabilityOracle] = None,
    clock: Optional[Clock] = None,
) -> Report:
    """Scan ``root`` with the baseline rules (or ``rules``) and return the report.

    Rule sources are validated before any file is read.
    """

    ruleset = load(rules) if rules else load_baseline()
    return Scanner(root, ruleset, config=config, oracle=oracle, clock=clock).run()
