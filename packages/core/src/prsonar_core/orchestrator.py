"""Drive one analysis run against the pull requests it applies to.

Per pull request, strictly in this order:

    set build status to in progress
    fetch our existing comments and the lines visible in the diff
    reconcile, then create and update inline comments
    delete stale inline comments
    delete every previous global summary
    post the new global summary
    approve or unapprove
    set the final build status

A failing API call stops the remaining steps for that pull request only. The
build status is then left where the last successful step put it, usually
"pending", which is an honest signal that the run did not finish.
"""

from __future__ import annotations

import logging
from urllib.parse import quote

from prsonar_core.config import validate_config
from prsonar_core.errors import ApiCallFailed, CommentNotFound
from prsonar_core.models import (
    AnalysisContext,
    BuildStatus,
    Owner,
    PostedComment,
    PullRequest,
    PullRequestOutcome,
    RunOutcome,
)
from prsonar_core.reconciler import ReconciliationPlan, reconcile
from prsonar_core.report import ReviewReport, VerdictPolicy

logger = logging.getLogger(__name__)

_SECRET_KEYS = {"github_token"}


class ReconciliationOrchestrator:
    """Applies reconciliation plans through a hosting client.

    ``client`` is anything with the GitHubClient methods; ``config`` is the
    dict returned by load_config(). Nothing is shared between pull requests:
    each one gets its own plan and report.
    """

    def __init__(self, client, config: dict):
        self._client = client
        self._config = config

    @property
    def policy(self) -> VerdictPolicy:
        return VerdictPolicy.from_config(self._config)

    # ------------------------------------------------------------------ #
    # Entry points                                                         #
    # ------------------------------------------------------------------ #

    def should_run(self, context: AnalysisContext) -> bool:
        """Validate the configuration; raises ConfigurationError if it is unusable."""
        if logger.isEnabledFor(logging.DEBUG):
            safe = {k: v for k, v in self._config.items() if k not in _SECRET_KEYS}
            logger.debug("Configuration: %s", safe)
        validate_config(self._config)
        return True

    def execute(self, context: AnalysisContext) -> RunOutcome:
        outcome = RunOutcome()
        for pull_request in self.pull_requests_to_analyze():
            logger.info("Analyzing pull request #%d (%s)...", pull_request.number, pull_request.src_branch)
            outcome.pull_requests.append(self.handle_pull_request(context, pull_request))
        return outcome

    def preview(self, context: AnalysisContext) -> list[tuple[PullRequest, ReconciliationPlan]]:
        """Compute the plan for every pull request without writing anything."""
        return [(pr, self._plan(context, pr)) for pr in self.pull_requests_to_analyze()]

    # ------------------------------------------------------------------ #
    # Pull request discovery                                               #
    # ------------------------------------------------------------------ #

    def pull_requests_to_analyze(self) -> list[PullRequest]:
        pr_id = self._config.get("pull_request_id") or 0
        if pr_id:
            pull_request = self._client.find_pull_request_with_id(pr_id)
            if pull_request is None:
                logger.info("Pull request with id '%d' not found. No analysis will be performed.", pr_id)
                return []
            return [pull_request]

        branch = self._config.get("branch_name")
        pull_requests = self._client.find_pull_requests_with_source_branch(branch)
        if not pull_requests:
            logger.info("No open pull requests with source branch '%s' found. No analysis will be performed.", branch)
        return pull_requests

    # ------------------------------------------------------------------ #
    # Per pull request                                                     #
    # ------------------------------------------------------------------ #

    def handle_pull_request(self, context: AnalysisContext, pull_request: PullRequest) -> PullRequestOutcome:
        result = PullRequestOutcome(pr_number=pull_request.number)
        try:
            self._process(context, pull_request, result)
        except ApiCallFailed as e:
            logger.error("Stopped processing pull request #%d: %s", pull_request.number, e)
            result.error = str(e)
        return result

    def _process(self, context: AnalysisContext, pull_request: PullRequest, result: PullRequestOutcome) -> None:
        self._set_build_status(BuildStatus.IN_PROGRESS, context, pull_request)
        plan = self._plan(context, pull_request)
        self._apply_inline_comments(pull_request, plan, result)
        self._delete_previous_comments(pull_request, plan.to_delete, result)
        self._delete_previous_global_comments(pull_request, plan.stale_globals, result)
        self._create_global_comment(context, pull_request, plan.report)
        result.approved = self._approve_or_unapprove_if_enabled(pull_request, plan.report)

        status = plan.report.calculate_build_status()
        if self._set_build_status(status, context, pull_request):
            result.build_status = status

        logger.info(
            "Pull request #%d: %d issue(s), %d comment(s) created, %d updated, %d deleted.",
            pull_request.number,
            plan.report.total,
            result.created,
            result.updated,
            result.deleted,
        )

    def _plan(self, context: AnalysisContext, pull_request: PullRequest) -> ReconciliationPlan:
        existing = self._client.find_own_pull_request_comments(pull_request)
        changed_lines = self._client.find_changed_lines(pull_request)
        return reconcile(
            context.findings, existing, self.policy, changed_lines, server_base_url=self.server_base_url(context)
        )

    def _apply_inline_comments(self, pull_request: PullRequest, plan: ReconciliationPlan, result) -> None:
        for comment in plan.to_create:
            self._client.create_pull_request_comment(pull_request, comment.body, file=comment.file, line=comment.line)
            result.created += 1
        for comment_id, comment in plan.to_update.items():
            self._client.update_pull_request_comment(pull_request, comment_id, comment.body)
            result.updated += 1

    def _delete(self, pull_request: PullRequest, comment: PostedComment, result) -> None:
        try:
            self._client.delete_pull_request_comment(pull_request, comment.comment_id, is_inline=comment.is_inline)
        except CommentNotFound:
            logger.info("Comment %s on #%d was already deleted.", comment.comment_id, pull_request.number)
            return
        result.deleted += 1

    def _delete_previous_comments(self, pull_request: PullRequest, comments: dict[int, PostedComment], result):
        for comment in comments.values():
            # Checked again here so a wrong plan can never delete foreign comments.
            if comment.is_inline and comment.owner is Owner.SYSTEM:
                self._delete(pull_request, comment, result)

    def _delete_previous_global_comments(self, pull_request: PullRequest, comments: dict[int, PostedComment], result):
        for comment in comments.values():
            if not comment.is_inline and comment.owner is Owner.SYSTEM:
                self._delete(pull_request, comment, result)

    def _create_global_comment(self, context: AnalysisContext, pull_request: PullRequest, report: ReviewReport) -> None:
        max_findings = self._config.get("max_summary_findings", 10)
        body = report.format_as_markdown(max_findings, server_base_url=self.server_base_url(context))
        self._client.create_pull_request_comment(pull_request, body)

    def _approve_or_unapprove_if_enabled(self, pull_request: PullRequest, report: ReviewReport) -> bool | None:
        if not self._config.get("approval_enabled"):
            return None
        if report.can_be_approved:
            self._client.approve(pull_request)
            return True
        self._client.un_approve(pull_request)
        return False

    def _set_build_status(self, status: BuildStatus, context: AnalysisContext, pull_request: PullRequest) -> bool:
        if not self._config.get("build_status_enabled"):
            return False
        self._client.update_build_status(pull_request, status, self.details_url(context, pull_request))
        return True

    def server_base_url(self, context: AnalysisContext) -> str:
        return (context.server_base_url or self._config.get("server_base_url") or "").rstrip("/")

    def details_url(self, context: AnalysisContext, pull_request: PullRequest) -> str:
        base_url = self.server_base_url(context)
        project_key = context.project_key or self._config.get("project_key") or ""
        return f"{base_url}/dashboard?id={project_key}:{quote(pull_request.src_branch, safe='')}"
