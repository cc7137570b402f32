# src/ai_review_sync/reconciler.py
"""
Computes how the set of annotations posted on a pull request should change
for the current revision.

Two interchangeable strategies are provided:

* DeleteAndRecreateStrategy (default): every annotation this tool posted is
  deleted and the current findings are posted fresh. An annotation that is
  already exactly what would be posted again is left alone.
* UpdateInPlaceStrategy: annotations are matched to findings on (file, line)
  and edited, marked resolved, or deleted, keeping human replies attached.

Both only compute a ReconciliationPlan; executing it is the caller's job.
"""
import logging
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from typing import Dict, List, Optional, Tuple

from .annotation_markers import (
    extract_issue, finding_fingerprint, is_authored_by_us, is_resolved_body,
    render_finding_body, render_resolved_body, render_updated_body, summarize_finding,
)
from .diff_parser import get_position_for_line
from .models import (
    Annotation, AnnotationSpec, AnnotationUpdate, ChangeRecord, Finding,
    IssueSummary, ReconciliationPlan, Review, UnifiedDiff,
)

logger = logging.getLogger(__name__)

DISMISSABLE_REVIEW_STATES = ("APPROVED", "CHANGES_REQUESTED")

IssueKey = Tuple[str, Optional[int]]


@dataclass
class ReconciliationInput:
    """
    Everything a strategy needs. `annotations` and `reviews` may include items
    written by humans or other tools; strategies only touch their own.
    """
    annotations: List[Annotation]
    findings: List[Finding]
    change_records: List[ChangeRecord] = field(default_factory=list)
    diffs: Dict[str, UnifiedDiff] = field(default_factory=dict)
    reviews: List[Review] = field(default_factory=list)
    head_sha: Optional[str] = None


def recognize_annotations(annotations: List[Annotation]) -> List[Annotation]:
    """Annotations authored by this tool, structured or legacy."""
    return [a for a in annotations if is_authored_by_us(a.body)]


def deduplicate_findings(findings: List[Finding]) -> List[Finding]:
    seen = set()
    unique = []
    for finding in findings:
        fingerprint = finding_fingerprint(finding)
        if fingerprint in seen:
            logger.debug(f"Dropping duplicate finding on {finding.file}:{finding.line}")
            continue
        seen.add(fingerprint)
        unique.append(finding)
    return unique


def select_stale_reviews(reviews: List[Review], head_sha: Optional[str]) -> List[int]:
    """
    Reviews by this tool that still carry a verdict and were submitted for an older
    revision. Without a head SHA, every such review but the newest is stale.
    """
    ours = [r for r in reviews if r.state in DISMISSABLE_REVIEW_STATES and is_authored_by_us(r.body)]
    if head_sha:
        return [r.id for r in ours if r.commit_sha != head_sha]
    ours.sort(key=lambda r: r.submitted_at or "", reverse=True)
    return [r.id for r in ours[1:]]


def classify_issues(old_issues: List[IssueSummary], findings: List[Finding]
                    ) -> Tuple[List[IssueSummary], List[IssueSummary], List[IssueSummary]]:
    """
    Diffs previous issues against current findings on (file, line).

    Returns:
        (resolved, updated, new): old issues with no current finding, current findings
        whose message differs from the old one at the same place, and current findings
        at places with no old issue.
    """
    old_by_key: Dict[IssueKey, List[IssueSummary]] = OrderedDict()
    for issue in old_issues:
        old_by_key.setdefault((issue.file, issue.line), []).append(issue)

    matched_keys = set()
    updated: List[IssueSummary] = []
    new: List[IssueSummary] = []
    for finding in findings:
        summary = summarize_finding(finding)
        key = (summary.file, summary.line)
        if key in old_by_key:
            matched_keys.add(key)
            if all(old.message != summary.message for old in old_by_key[key]):
                updated.append(summary)
        else:
            new.append(summary)

    resolved = [issue for key, issues in old_by_key.items() if key not in matched_keys for issue in issues]
    return resolved, updated, new


def _unique(items: list) -> list:
    return list(OrderedDict.fromkeys(items))


class ReconciliationStrategy(ABC):
    name = ""

    def plan(self, inputs: ReconciliationInput) -> ReconciliationPlan:
        ours = recognize_annotations(inputs.annotations)
        findings = deduplicate_findings(inputs.findings)

        plan = ReconciliationPlan()
        placed: List[Tuple[Finding, int]] = []
        for finding in findings:
            position = self._position_for(finding, inputs.diffs)
            if position is None:
                logger.warning(f"Finding on {finding.file}:{finding.line} is not inside the diff; it will not be posted.")
                plan.unplaced_findings.append(finding)
            else:
                placed.append((finding, position))

        self._plan_annotations(ours, placed, inputs, plan)
        plan.threads_to_resolve = _unique(plan.threads_to_resolve)
        plan.reviews_to_dismiss = select_stale_reviews(inputs.reviews, inputs.head_sha)

        plan.resolved_issues, plan.updated_issues, plan.new_issues = classify_issues(
            [extract_issue(a) for a in ours], findings)
        return plan

    @staticmethod
    def _position_for(finding: Finding, diffs: Dict[str, UnifiedDiff]) -> Optional[int]:
        diff = diffs.get(finding.file)
        if diff is None:
            return None
        return get_position_for_line(diff, finding.line)

    @staticmethod
    def _spec_for(finding: Finding, position: int, head_sha: Optional[str]) -> AnnotationSpec:
        return AnnotationSpec(
            file=finding.file,
            position=position,
            line=finding.line,
            body=render_finding_body(finding, head_sha, position),
        )

    @staticmethod
    def _schedule_delete(annotation: Annotation, plan: ReconciliationPlan):
        plan.to_delete.append(annotation.id)
        if annotation.thread_id and not annotation.thread_resolved:
            plan.threads_to_resolve.append(annotation.thread_id)

    @abstractmethod
    def _plan_annotations(self, ours: List[Annotation], placed: List[Tuple[Finding, int]],
                          inputs: ReconciliationInput, plan: ReconciliationPlan):
        """Fills the annotation mutations of `plan`."""


class DeleteAndRecreateStrategy(ReconciliationStrategy):
    name = "delete_and_recreate"

    @staticmethod
    def _is_retainable(annotation: Annotation) -> bool:
        return (annotation.metadata is not None
                and annotation.metadata.fingerprint is not None
                and not annotation.is_outdated
                and not is_resolved_body(annotation.body))

    def _plan_annotations(self, ours, placed, inputs, plan):
        retainable: Dict[str, List[Annotation]] = {}
        for annotation in ours:
            if self._is_retainable(annotation):
                retainable.setdefault(annotation.metadata.fingerprint, []).append(annotation)

        retained_ids = set()
        for finding, position in placed:
            candidates = retainable.get(finding_fingerprint(finding))
            if candidates:
                retained_ids.add(candidates.pop(0).id)
                continue
            plan.to_create.append(self._spec_for(finding, position, inputs.head_sha))

        for annotation in ours:
            if annotation.id not in retained_ids:
                self._schedule_delete(annotation, plan)

        if retained_ids:
            logger.info(f"Keeping {len(retained_ids)} annotations that already match current findings.")


class UpdateInPlaceStrategy(ReconciliationStrategy):
    name = "update_in_place"

    def _plan_annotations(self, ours, placed, inputs, plan):
        records = {r.filename: r for r in inputs.change_records}

        def file_modified(path: str) -> bool:
            record = records.get(path)
            return record is not None and record.hash_changed

        old_by_key: Dict[IssueKey, List[Annotation]] = OrderedDict()
        for annotation in ours:
            old_by_key.setdefault((annotation.file_path, annotation.line), []).append(annotation)

        new_by_key: Dict[IssueKey, List[Tuple[Finding, int]]] = OrderedDict()
        for finding, position in placed:
            new_by_key.setdefault((finding.file, finding.line), []).append((finding, position))

        for key, entries in new_by_key.items():
            olds = old_by_key.get(key, [])

            # Identical content first, then whatever is left at the same place
            unmatched_entries = []
            for finding, position in entries:
                fingerprint = finding_fingerprint(finding)
                same = next((a for a in olds if a.metadata and a.metadata.fingerprint == fingerprint), None)
                if same is None:
                    unmatched_entries.append((finding, position))
                    continue
                olds.remove(same)
                if is_resolved_body(same.body):
                    plan.to_update.append(AnnotationUpdate(
                        same.id, render_finding_body(finding, inputs.head_sha, position), "reopened"))

            for finding, position in unmatched_entries:
                if not olds:
                    plan.to_create.append(self._spec_for(finding, position, inputs.head_sha))
                    continue
                old = olds.pop(0)
                if file_modified(finding.file):
                    plan.to_update.append(AnnotationUpdate(
                        old.id, render_updated_body(old.body, finding, inputs.head_sha, position), "updated"))
                else:
                    logger.debug(f"{finding.file}:{finding.line} unchanged; keeping annotation #{old.id} as is.")

        for olds in old_by_key.values():
            for old in olds:
                if file_modified(old.file_path):
                    if not is_resolved_body(old.body):
                        plan.to_update.append(AnnotationUpdate(old.id, render_resolved_body(old.body), "resolved"))
                    if old.thread_id and not old.thread_resolved:
                        plan.threads_to_resolve.append(old.thread_id)
                elif old.is_outdated:
                    self._schedule_delete(old, plan)


STRATEGIES = {
    DeleteAndRecreateStrategy.name: DeleteAndRecreateStrategy,
    UpdateInPlaceStrategy.name: UpdateInPlaceStrategy,
}
DEFAULT_STRATEGY = DeleteAndRecreateStrategy.name


def get_strategy(name: Optional[str] = None) -> ReconciliationStrategy:
    name = (name or DEFAULT_STRATEGY).strip().lower().replace('-', '_')
    if name not in STRATEGIES:
        raise ValueError(f"Unknown reconciliation strategy '{name}'. Expected one of: {sorted(STRATEGIES)}")
    return STRATEGIES[name]()


def log_issue_changes(plan: ReconciliationPlan):
    """Logs one line per resolved, updated and new issue of `plan`."""
    for label, issues in (("Resolved", plan.resolved_issues), ("Updated", plan.updated_issues),
                          ("New", plan.new_issues)):
        for issue in issues:
            logger.info(f"  {label}: {issue.file}:{issue.line} [{issue.severity}] {issue.message}")


class AnnotationReconciler:
    """Computes a ReconciliationPlan with the configured strategy."""

    def __init__(self, strategy: Optional[ReconciliationStrategy] = None):
        self.strategy = strategy or get_strategy()

    def reconcile(self, inputs: ReconciliationInput) -> ReconciliationPlan:
        logger.info(f"Reconciling {len(inputs.annotations)} annotations against "
                    f"{len(inputs.findings)} findings ({self.strategy.name}).")
        plan = self.strategy.plan(inputs)
        logger.info(
            f"Plan: delete {len(plan.to_delete)}, create {len(plan.to_create)}, update {len(plan.to_update)}, "
            f"resolve {len(plan.threads_to_resolve)} threads, dismiss {len(plan.reviews_to_dismiss)} reviews "
            f"(resolved issues: {len(plan.resolved_issues)}, updated: {len(plan.updated_issues)}, "
            f"new: {len(plan.new_issues)}, unplaced: {len(plan.unplaced_findings)})"
        )
        log_issue_changes(plan)
        return plan
