"""PyGithub-backed implementation of the hosting API the orchestrator drives.

Every call that reaches GitHub goes through _api_call(), which turns
GithubException and network errors into ApiCallFailed. The orchestrator never
sees a PyGithub exception.
"""

from __future__ import annotations

import logging
from contextlib import contextmanager

from github import Github, GithubException

from prsonar_core.errors import ApiCallFailed, CommentNotFound, NotFound
from prsonar_core.gh.diff import get_commentable_lines
from prsonar_core.markdown import MARKER
from prsonar_core.models import BuildStatus, Owner, PostedComment, PullRequest

logger = logging.getLogger(__name__)

_STATUS_DESCRIPTIONS = {
    BuildStatus.IN_PROGRESS: "Static analysis in progress",
    BuildStatus.SUCCESSFUL: "No build-failing issues found",
    BuildStatus.FAILED: "Build-failing issues found",
}


def _describe(e: GithubException) -> str:
    data = e.data if isinstance(e.data, dict) else {}
    return data.get("message") or str(e)


@contextmanager
def _api_call(operation: str, not_found: type[ApiCallFailed] = ApiCallFailed):
    try:
        yield
    except GithubException as e:
        error_cls = not_found if e.status == 404 else ApiCallFailed
        raise error_cls(operation, _describe(e), status=e.status) from e
    except OSError as e:
        # requests' ConnectionError and Timeout are OSError subclasses.
        raise ApiCallFailed(operation, str(e)) from e


class GitHubClient:
    """Comments, commit statuses and approvals for one repository.

    ``gh`` and ``repo`` can be injected so tests never touch the network.
    """

    def __init__(self, repo_name: str, token: str | None = None, status_context: str = "prsonar", gh=None, repo=None):
        self._repo_name = repo_name
        self._gh = gh if gh is not None else Github(token)
        self._repo = repo
        self._status_context = status_context
        self._login: str | None = None

    @property
    def repo(self):
        if self._repo is None:
            with _api_call(f"get repository {self._repo_name}"):
                self._repo = self._gh.get_repo(self._repo_name)
        return self._repo

    def own_login(self) -> str:
        """Login of the token's user, or "" when the token cannot tell us.

        Installation tokens (GitHub Actions) cannot read /user; ownership then
        rests on the content marker alone. A network failure is not cached and
        raises ApiCallFailed like any other call.
        """
        if self._login is None:
            try:
                self._login = self._gh.get_user().login
            except GithubException as e:
                logger.debug("Could not resolve the authenticated user (%s); relying on markers only.", e.status)
                self._login = ""
            except OSError as e:
                raise ApiCallFailed("resolve authenticated user", str(e)) from e
        return self._login

    def _is_own(self, user, body: str | None) -> bool:
        if Owner.of(body) is not Owner.SYSTEM:
            return False
        login = self.own_login()
        return not login or getattr(user, "login", None) == login

    @staticmethod
    def _to_pull_request(pr) -> PullRequest:
        return PullRequest(
            number=pr.number,
            src_branch=pr.head.ref,
            head_sha=pr.head.sha,
            title=pr.title or "",
            handle=pr,
        )

    # ------------------------------------------------------------------ #
    # Lookups                                                              #
    # ------------------------------------------------------------------ #

    def find_pull_requests_with_source_branch(self, branch: str) -> list[PullRequest]:
        with _api_call(f"find pull requests for branch {branch}"):
            owner = self.repo.owner.login
            pulls = list(self.repo.get_pulls(state="open", head=f"{owner}:{branch}"))
        return [self._to_pull_request(pr) for pr in pulls]

    def find_pull_request_with_id(self, pr_number: int) -> PullRequest | None:
        try:
            with _api_call(f"get pull request #{pr_number}", not_found=NotFound):
                pr = self.repo.get_pull(pr_number)
        except NotFound:
            return None
        return self._to_pull_request(pr)

    def find_own_pull_request_comments(self, pr: PullRequest) -> list[PostedComment]:
        """Return the comments this client's user wrote, inline and global.

        Ownership is derived here, once, from the marker and the author.
        """
        with _api_call(f"list review comments of #{pr.number}"):
            review_comments = list(pr.handle.get_review_comments())
        with _api_call(f"list issue comments of #{pr.number}"):
            issue_comments = list(pr.handle.get_issue_comments())

        login = self.own_login()
        comments: list[PostedComment] = []
        for c in review_comments:
            if login and getattr(c.user, "login", None) != login:
                continue
            comments.append(
                PostedComment(
                    comment_id=c.id,
                    is_inline=True,
                    content=c.body or "",
                    file=c.path,
                    # None when the commented line has left the diff.
                    line=c.line,
                    owner=Owner.SYSTEM if self._is_own(c.user, c.body) else Owner.EXTERNAL,
                )
            )
        for c in issue_comments:
            if login and getattr(c.user, "login", None) != login:
                continue
            comments.append(
                PostedComment(
                    comment_id=c.id,
                    is_inline=False,
                    content=c.body or "",
                    owner=Owner.SYSTEM if self._is_own(c.user, c.body) else Owner.EXTERNAL,
                )
            )
        return comments

    def find_changed_lines(self, pr: PullRequest) -> dict[str, set[int]]:
        with _api_call(f"list changed files of #{pr.number}"):
            files = list(pr.handle.get_files())
        return {f.filename: get_commentable_lines(f.patch or "") for f in files}

    # ------------------------------------------------------------------ #
    # Comments                                                             #
    # ------------------------------------------------------------------ #

    def create_pull_request_comment(
        self, pr: PullRequest, message: str, file: str | None = None, line: int | None = None
    ) -> int:
        """Create an inline comment when file and line are given, else a global one."""
        if file is not None and line is not None:
            with _api_call(f"create inline comment on {file}:{line} of #{pr.number}"):
                commit = self.repo.get_commit(pr.head_sha)
                created = pr.handle.create_review_comment(message, commit, file, line=line, side="RIGHT")
        else:
            with _api_call(f"create global comment on #{pr.number}"):
                created = pr.handle.create_issue_comment(message)
        return created.id

    def update_pull_request_comment(self, pr: PullRequest, comment_id: int, message: str) -> None:
        with _api_call(f"update comment {comment_id} of #{pr.number}", not_found=CommentNotFound):
            pr.handle.get_review_comment(comment_id).edit(message)

    def delete_pull_request_comment(self, pr: PullRequest, comment_id: int, is_inline: bool = True) -> None:
        with _api_call(f"delete comment {comment_id} of #{pr.number}", not_found=CommentNotFound):
            if is_inline:
                pr.handle.get_review_comment(comment_id).delete()
            else:
                pr.handle.get_issue_comment(comment_id).delete()

    # ------------------------------------------------------------------ #
    # Build status and approval                                            #
    # ------------------------------------------------------------------ #

    def update_build_status(self, pr: PullRequest, status: BuildStatus, details_url: str) -> None:
        with _api_call(f"set build status {status.value} on #{pr.number}"):
            commit = self.repo.get_commit(pr.head_sha)
            commit.create_status(
                state=status.value,
                target_url=details_url,
                description=_STATUS_DESCRIPTIONS[status],
                context=self._status_context,
            )

    def _own_reviews(self, pr: PullRequest) -> list:
        return [r for r in pr.handle.get_reviews() if self._is_own(r.user, r.body)]

    def approve(self, pr: PullRequest) -> None:
        with _api_call(f"approve #{pr.number}"):
            own = self._own_reviews(pr)
            if own and own[-1].state == "APPROVED":
                logger.debug("#%d is already approved.", pr.number)
                return
            pr.handle.create_review(body=f"{MARKER}\nNo approval-blocking issues found.", event="APPROVE")

    def un_approve(self, pr: PullRequest) -> None:
        with _api_call(f"unapprove #{pr.number}"):
            for review in self._own_reviews(pr):
                if review.state == "APPROVED":
                    review.dismiss("Approval-blocking static analysis issues found.")
