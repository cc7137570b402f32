# src/ai_review_sync/sync.py
"""
One synchronization pass for a pull request: analyse what changed, obtain
findings, reconcile them with the annotations already posted, and apply the
resulting plan to the hosting platform.
"""
import json
import logging
from typing import Callable, Dict, List, Optional, Tuple

from .change_analyzer import ChangeAnalyzer, flag_outdated_annotations
from .diff_parser import parse_diff_text, parse_single_file_patch
from .exceptions import SCMAPIError, SyncAbortedError
from .models import (
    SEVERITIES, Annotation, ChangedFile, ChangeRecord, Finding,
    MutationFailure, ReconciliationPlan, SyncReport, UnifiedDiff,
)
from .reconciler import AnnotationReconciler, ReconciliationInput, ReconciliationStrategy
from .review_cache import BaseReviewCache
from .utils.retry import retry_call

logger = logging.getLogger(__name__)

DEFAULT_MAX_LINES_PER_CHUNK = 500

# Receives the change records that need review, returns the findings for the current revision
FindingSource = Callable[[List[ChangeRecord]], List[Finding]]


def _parse_finding(raw: dict) -> Finding:
    if not isinstance(raw, dict):
        raise TypeError(f"expected an object, got {type(raw).__name__}")
    severity = str(raw.get("severity", "info")).lower()
    if severity not in SEVERITIES:
        logger.warning(f"Unknown severity '{raw.get('severity')}' on {raw.get('file')}:{raw.get('line')}; using 'info'.")
        severity = "info"
    return Finding(
        file=str(raw["file"]),
        line=int(raw["line"]),
        severity=severity,
        message=str(raw["message"]),
        suggestion=raw.get("suggestion") or None,
    )


def load_findings(path: str) -> List[Finding]:
    """
    Reads findings from a JSON file holding either a list of finding objects or
    {"findings": [...]}. Entries that are not objects, or miss a file, line or
    message, are skipped.
    """
    with open(path, 'r', encoding='utf-8') as f:
        document = json.load(f)
    raw_findings = document.get("findings", []) if isinstance(document, dict) else document
    if not isinstance(raw_findings, list):
        raise ValueError(f"Findings file {path} must contain a list of findings")

    findings = []
    for index, raw in enumerate(raw_findings):
        try:
            findings.append(_parse_finding(raw))
        except (KeyError, TypeError, ValueError) as e:
            logger.warning(f"Skipping malformed finding #{index} in {path}: {e}")
    logger.info(f"Loaded {len(findings)} findings from {path}")
    return findings


def file_finding_source(path: str) -> FindingSource:
    """A finding source that always returns the complete contents of `path`."""
    def source(records: List[ChangeRecord]) -> List[Finding]:
        return load_findings(path)
    return source


class AnnotationSync:
    def __init__(
        self,
        client,
        cache: BaseReviewCache,
        unit_key: str,
        strategy: Optional[ReconciliationStrategy] = None,
        max_lines_per_chunk: int = DEFAULT_MAX_LINES_PER_CHUNK,
        include_patterns: Optional[List[str]] = None,
        exclude_patterns: Optional[List[str]] = None,
        retry_attempts: int = 3,
        retry_base_delay: float = 1.0,
        dry_run: bool = False,
    ):
        """
        Args:
            client: Hosting platform client (see GitHubSCMClient).
            cache: Per-file review state store.
            unit_key: Identifies the pull request, e.g. "owner/repo#42".
            strategy: Reconciliation strategy; delete-and-recreate when omitted.
            max_lines_per_chunk: Upper bound of changed lines handed to the finding source per record.
            include_patterns / exclude_patterns: Git-style patterns limiting which files are sent for review.
            retry_attempts / retry_base_delay: Backoff settings for each platform mutation.
            dry_run: Compute and log the plan without touching the platform or the cache.
        """
        if max_lines_per_chunk < 1:
            raise ValueError(f"max_lines_per_chunk must be at least 1, got {max_lines_per_chunk}")
        self.client = client
        self.cache = cache
        self.unit_key = unit_key
        self.analyzer = ChangeAnalyzer(cache, unit_key)
        self.reconciler = AnnotationReconciler(strategy)
        self.max_lines_per_chunk = max_lines_per_chunk
        self.include_patterns = include_patterns or []
        self.exclude_patterns = exclude_patterns or []
        self.retry_attempts = retry_attempts
        self.retry_base_delay = retry_base_delay
        self.dry_run = dry_run

    # --- Analysis ---

    def collect_diffs(self, files: List[ChangedFile]) -> Dict[str, UnifiedDiff]:
        """
        Parses each file's patch. Files the listing returned without a patch are
        looked up in the full pull request diff.
        """
        diffs: Dict[str, UnifiedDiff] = {}
        missing = set()
        for file in files:
            if file.patch:
                diffs[file.filename] = parse_single_file_patch(
                    file.filename, file.patch, file.status, file.previous_filename)
            else:
                missing.add(file.filename)

        if missing:
            logger.info(f"{len(missing)} files have no patch in the file listing; falling back to the full diff.")
            full_diff = self.client.get_pr_diff()
            if full_diff:
                for diff in parse_diff_text(full_diff):
                    if diff.filename in missing:
                        diffs[diff.filename] = diff
        return diffs

    def analyze(self) -> Tuple[List[ChangedFile], Dict[str, UnifiedDiff], List[ChangeRecord]]:
        files = self.client.list_changed_files()
        if files is None:
            raise SyncAbortedError("Could not list the changed files of the pull request")

        diffs = self.collect_diffs(files)
        # Renames, binaries and mode-only changes parse without hunks and are still worked with
        if files and not diffs:
            raise SyncAbortedError(f"No diff could be obtained for any of the {len(files)} changed files")

        records = self.analyzer.analyze_files(files, diffs)
        return files, diffs, records

    def records_for_review(self, records: List[ChangeRecord]) -> List[ChangeRecord]:
        """Records needing review, filtered by path patterns and split into bounded chunks."""
        selected = self.analyzer.filter_by_patterns(
            self.analyzer.files_needing_review(records), self.include_patterns, self.exclude_patterns)
        chunks = []
        for record in selected:
            chunks.extend(self.analyzer.chunk_record(record, self.max_lines_per_chunk))
        logger.info(f"{len(selected)} files ({self.analyzer.total_changed_lines(selected)} lines) "
                    f"selected for review in {len(chunks)} chunks")
        return chunks

    # --- Reconciliation ---

    def reconcile(self, findings: List[Finding], records: List[ChangeRecord],
                  diffs: Dict[str, UnifiedDiff], head_sha: Optional[str]) -> ReconciliationPlan:
        annotations = self.client.list_annotations()
        if annotations is None:
            raise SyncAbortedError("Could not list existing annotations; refusing to reconcile blind")
        flag_outdated_annotations(annotations, diffs)

        reviews = self.client.list_reviews()
        if reviews is None:
            logger.warning("Could not list reviews; stale reviews will not be dismissed this pass.")
            reviews = []

        return self.reconciler.reconcile(ReconciliationInput(
            annotations=annotations,
            findings=findings,
            change_records=records,
            diffs=diffs,
            reviews=reviews,
            head_sha=head_sha,
        ))

    # --- Execution ---

    def _apply(self, operation: str, target: str, call: Callable, report: SyncReport) -> Tuple[bool, object]:
        try:
            result = retry_call(
                call,
                max_attempts=self.retry_attempts,
                base_delay=self.retry_base_delay,
                exceptions=(SCMAPIError,),
                description=f"{operation} {target}",
            )
            return True, result
        except SCMAPIError as e:
            logger.error(f"Failed to {operation} {target}: {e}")
            report.failures.append(MutationFailure(operation, target, str(e)))
        except Exception as e:
            logger.error(f"Unexpected error during {operation} {target}: {e}", exc_info=True)
            report.failures.append(MutationFailure(operation, target, str(e)))
        return False, None

    def execute_plan(self, plan: ReconciliationPlan) -> SyncReport:
        """
        Applies `plan` in the order resolve thread, delete, dismiss review, update, create.
        Threads go first because deleting the only comment of a thread removes the thread.
        A failed call is recorded and the rest of the plan still runs.
        """
        report = SyncReport(dry_run=self.dry_run, plan=plan)
        if self.dry_run:
            logger.info(f"Dry run: {plan.mutation_count} mutations planned, none applied.")
            for spec in plan.to_create:
                logger.info(f"Dry run: would create on {spec.file}:{spec.line} (position {spec.position})")
            return report

        for thread_id in plan.threads_to_resolve:
            ok, _ = self._apply("resolve_thread", f"thread {thread_id}",
                                lambda t=thread_id: self.client.resolve_thread(t), report)
            report.threads_resolved += ok

        for annotation_id in plan.to_delete:
            ok, _ = self._apply("delete", f"annotation #{annotation_id}",
                                lambda a=annotation_id: self.client.delete_annotation(a), report)
            report.deleted += ok

        for review_id in plan.reviews_to_dismiss:
            ok, _ = self._apply("dismiss_review", f"review #{review_id}",
                                lambda r=review_id: self.client.dismiss_review(r), report)
            report.reviews_dismissed += ok

        for update in plan.to_update:
            ok, _ = self._apply("update", f"annotation #{update.annotation_id} ({update.reason})",
                                lambda u=update: self.client.update_annotation(u.annotation_id, u.body), report)
            report.updated += ok

        for spec in plan.to_create:
            ok, annotation_id = self._apply("create", f"{spec.file}:{spec.line}",
                                            lambda s=spec: self.client.create_annotation(s.file, s.position, s.body),
                                            report)
            if ok:
                report.created += 1
                report.created_annotations.append(
                    Annotation(id=annotation_id, file_path=spec.file, body=spec.body, line=spec.line))

        log = logger.warning if report.partial_success else logger.info
        log(f"Sync applied: {report.deleted} deleted, {report.created} created, {report.updated} updated, "
            f"{report.threads_resolved} threads resolved, {report.reviews_dismissed} reviews dismissed, "
            f"{len(report.failures)} failures")
        return report

    # --- Pass ---

    def run(self, finding_source: FindingSource, head_sha: Optional[str] = None,
            already_reconciled: bool = False) -> SyncReport:
        """
        Runs one full pass.

        Args:
            finding_source: Produces the complete set of findings for the current revision.
            head_sha: Revision being reconciled.
            already_reconciled: True when this revision was reconciled before; the pass is then skipped.

        Raises:
            SyncAbortedError: When no file of the pull request can be worked with,
                or the existing annotations cannot be listed.
        """
        if already_reconciled:
            logger.info(f"{self.unit_key} at {head_sha} was already reconciled; skipping.")
            return SyncReport(skipped=True, dry_run=self.dry_run)

        _, diffs, records = self.analyze()
        findings = finding_source(self.records_for_review(records))
        plan = self.reconcile(findings, records, diffs, head_sha)
        report = self.execute_plan(plan)

        if self.dry_run:
            return report
        if report.partial_success:
            logger.warning("Not recording review state because some mutations failed; the next pass will retry.")
            return report

        for record in self.analyzer.files_needing_review(records):
            self.analyzer.mark_as_reviewed(record, report.created_annotations)
        if head_sha:
            self.cache.record_reconciled_revision(self.unit_key, head_sha)
        return report
