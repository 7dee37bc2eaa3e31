"""Tests for the PyGithub-backed hosting client."""

from unittest.mock import MagicMock

import pytest
import requests
from github import GithubException

from prsonar_core.config import DEFAULT_CONFIG
from prsonar_core.errors import ApiCallFailed, CommentNotFound
from prsonar_core.gh.client import GitHubClient
from prsonar_core.markdown import MARKER
from prsonar_core.models import AnalysisContext, BuildStatus, Owner, PullRequest
from prsonar_core.orchestrator import ReconciliationOrchestrator

SHA = "a" * 40


def _user(login):
    user = MagicMock()
    user.login = login
    return user


def _comment(comment_id, body, login="bot", path=None, line=None):
    c = MagicMock()
    c.id = comment_id
    c.body = body
    c.user = _user(login)
    c.path = path
    c.line = line
    return c


def _review(state, body, login="bot"):
    r = MagicMock()
    r.state = state
    r.body = body
    r.user = _user(login)
    return r


def _not_found():
    return GithubException(404, {"message": "Not Found"}, None)


@pytest.fixture
def gh():
    gh = MagicMock()
    gh.get_user.return_value.login = "bot"
    return gh


@pytest.fixture
def repo():
    return MagicMock()


@pytest.fixture
def client(gh, repo):
    return GitHubClient("owner/repo", gh=gh, repo=repo)


@pytest.fixture
def handle():
    return MagicMock()


@pytest.fixture
def pr(handle):
    return PullRequest(number=5, src_branch="feature", head_sha=SHA, handle=handle)


class TestLookups:
    def test_find_by_branch_filters_on_head(self, client, repo):
        repo.owner.login = "owner"
        raw = MagicMock()
        raw.number = 3
        raw.head.ref = "feature"
        raw.head.sha = SHA
        raw.title = "Add feature"
        repo.get_pulls.return_value = [raw]

        result = client.find_pull_requests_with_source_branch("feature")

        repo.get_pulls.assert_called_once_with(state="open", head="owner:feature")
        assert result == [PullRequest(number=3, src_branch="feature", head_sha=SHA, title="Add feature")]
        assert result[0].handle is raw

    def test_find_by_branch_empty(self, client, repo):
        repo.get_pulls.return_value = []
        assert client.find_pull_requests_with_source_branch("feature") == []

    def test_find_by_id_missing_returns_none(self, client, repo):
        repo.get_pull.side_effect = _not_found()
        assert client.find_pull_request_with_id(99) is None

    def test_find_by_id_server_error_raises(self, client, repo):
        repo.get_pull.side_effect = GithubException(500, {"message": "Server Error"}, None)
        with pytest.raises(ApiCallFailed, match="Server Error"):
            client.find_pull_request_with_id(99)

    def test_network_error_becomes_api_call_failed(self, client, repo):
        repo.get_pull.side_effect = ConnectionError("connection reset")
        with pytest.raises(ApiCallFailed, match="connection reset"):
            client.find_pull_request_with_id(1)


class TestFindOwnComments:
    def test_ownership_from_marker_and_author(self, client, pr, handle):
        handle.get_review_comments.return_value = [
            _comment(1, f"{MARKER}\nissue", path="a.py", line=3),
            _comment(2, "a note I wrote by hand", path="a.py", line=4),
            _comment(3, f"{MARKER}\ncopied by a human", login="alice", path="a.py", line=5),
        ]
        handle.get_issue_comments.return_value = [
            _comment(4, f"{MARKER}\n## Static analysis summary"),
            _comment(5, "thanks!", login="alice"),
        ]

        comments = client.find_own_pull_request_comments(pr)

        by_id = {c.comment_id: c for c in comments}
        assert set(by_id) == {1, 2, 4}
        assert by_id[1].owner is Owner.SYSTEM
        assert by_id[1].is_inline and by_id[1].file == "a.py" and by_id[1].line == 3
        assert by_id[2].owner is Owner.EXTERNAL
        assert by_id[4].owner is Owner.SYSTEM
        assert by_id[4].is_inline is False

    def test_unknown_user_falls_back_to_marker(self, gh, repo, pr, handle):
        gh.get_user.side_effect = GithubException(403, {"message": "Resource not accessible by integration"}, None)
        client = GitHubClient("owner/repo", gh=gh, repo=repo)
        handle.get_review_comments.return_value = [_comment(1, f"{MARKER}\nissue", login="github-actions[bot]")]
        handle.get_issue_comments.return_value = [_comment(2, "human", login="alice")]

        comments = client.find_own_pull_request_comments(pr)

        owners = {c.comment_id: c.owner for c in comments}
        assert owners == {1: Owner.SYSTEM, 2: Owner.EXTERNAL}

    def test_network_error_resolving_user_raises(self, gh, client, pr, handle):
        handle.get_review_comments.return_value = []
        handle.get_issue_comments.return_value = []
        gh.get_user.side_effect = requests.exceptions.ConnectionError("connection reset")

        with pytest.raises(ApiCallFailed, match="connection reset"):
            client.find_own_pull_request_comments(pr)

    def test_login_retried_after_network_error(self, gh, client, pr, handle):
        handle.get_review_comments.return_value = []
        handle.get_issue_comments.return_value = []
        gh.get_user.side_effect = [requests.exceptions.ConnectionError("connection reset"), _user("bot")]

        with pytest.raises(ApiCallFailed):
            client.find_own_pull_request_comments(pr)
        assert client.find_own_pull_request_comments(pr) == []
        assert client.own_login() == "bot"

    def test_outdated_comment_has_no_line(self, client, pr, handle):
        handle.get_review_comments.return_value = [_comment(1, f"{MARKER}\nissue", path="a.py", line=None)]
        handle.get_issue_comments.return_value = []

        assert client.find_own_pull_request_comments(pr)[0].line is None

    def test_listing_failure_raises(self, client, pr, handle):
        handle.get_review_comments.side_effect = GithubException(401, {"message": "Bad credentials"}, None)
        with pytest.raises(ApiCallFailed, match="Bad credentials"):
            client.find_own_pull_request_comments(pr)


class TestChangedLines:
    def test_maps_files_to_commentable_lines(self, client, pr, handle):
        changed = MagicMock()
        changed.filename = "a.py"
        changed.patch = "@@ -1,1 +1,2 @@\n line\n+added"
        binary = MagicMock()
        binary.filename = "logo.png"
        binary.patch = None
        handle.get_files.return_value = [changed, binary]

        assert client.find_changed_lines(pr) == {"a.py": {1, 2}, "logo.png": set()}


class TestComments:
    def test_create_inline_comment(self, client, repo, pr, handle):
        handle.create_review_comment.return_value.id = 42

        comment_id = client.create_pull_request_comment(pr, "body", file="a.py", line=3)

        assert comment_id == 42
        repo.get_commit.assert_called_once_with(SHA)
        handle.create_review_comment.assert_called_once_with(
            "body", repo.get_commit.return_value, "a.py", line=3, side="RIGHT"
        )
        handle.create_issue_comment.assert_not_called()

    def test_create_global_comment(self, client, pr, handle):
        handle.create_issue_comment.return_value.id = 43

        assert client.create_pull_request_comment(pr, "summary") == 43
        handle.create_issue_comment.assert_called_once_with("summary")
        handle.create_review_comment.assert_not_called()

    def test_update_inline_comment(self, client, pr, handle):
        client.update_pull_request_comment(pr, 7, "new body")
        handle.get_review_comment.assert_called_once_with(7)
        handle.get_review_comment.return_value.edit.assert_called_once_with("new body")

    def test_delete_inline_and_global(self, client, pr, handle):
        client.delete_pull_request_comment(pr, 1, is_inline=True)
        client.delete_pull_request_comment(pr, 2, is_inline=False)
        handle.get_review_comment.assert_called_once_with(1)
        handle.get_issue_comment.assert_called_once_with(2)
        handle.get_review_comment.return_value.delete.assert_called_once()
        handle.get_issue_comment.return_value.delete.assert_called_once()

    def test_delete_missing_comment_raises_not_found(self, client, pr, handle):
        handle.get_review_comment.return_value.delete.side_effect = _not_found()
        with pytest.raises(CommentNotFound):
            client.delete_pull_request_comment(pr, 1)

    def test_create_rejected_raises(self, client, pr, handle):
        handle.create_review_comment.side_effect = GithubException(
            422, {"message": "Validation Failed"}, None
        )
        with pytest.raises(ApiCallFailed) as exc_info:
            client.create_pull_request_comment(pr, "body", file="a.py", line=99)
        assert exc_info.value.status == 422
        assert not isinstance(exc_info.value, CommentNotFound)


class TestBuildStatus:
    def test_sets_commit_status(self, gh, repo, pr):
        client = GitHubClient("owner/repo", gh=gh, repo=repo, status_context="sonar")

        client.update_build_status(pr, BuildStatus.FAILED, "https://sonar.example.com/dashboard?id=p:feature")

        repo.get_commit.assert_called_once_with(SHA)
        kwargs = repo.get_commit.return_value.create_status.call_args.kwargs
        assert kwargs["state"] == "failure"
        assert kwargs["target_url"] == "https://sonar.example.com/dashboard?id=p:feature"
        assert kwargs["context"] == "sonar"

    def test_pending_state(self, client, repo, pr):
        client.update_build_status(pr, BuildStatus.IN_PROGRESS, "u")
        assert repo.get_commit.return_value.create_status.call_args.kwargs["state"] == "pending"


class TestApproval:
    def test_approve_creates_review(self, client, pr, handle):
        handle.get_reviews.return_value = []

        client.approve(pr)

        kwargs = handle.create_review.call_args.kwargs
        assert kwargs["event"] == "APPROVE"
        assert kwargs["body"].startswith(MARKER)

    def test_approve_is_noop_when_already_approved(self, client, pr, handle):
        handle.get_reviews.return_value = [_review("APPROVED", f"{MARKER}\nok")]

        client.approve(pr)

        handle.create_review.assert_not_called()

    def test_approve_again_after_dismissal(self, client, pr, handle):
        handle.get_reviews.return_value = [
            _review("APPROVED", f"{MARKER}\nok"),
            _review("DISMISSED", f"{MARKER}\nok"),
        ]

        client.approve(pr)

        handle.create_review.assert_called_once()

    def test_un_approve_dismisses_only_own_approvals(self, client, pr, handle):
        own = _review("APPROVED", f"{MARKER}\nok")
        human = _review("APPROVED", "LGTM", login="alice")
        handle.get_reviews.return_value = [own, human]

        client.un_approve(pr)

        own.dismiss.assert_called_once()
        human.dismiss.assert_not_called()


class TestFailureIsolation:
    def test_network_error_fails_each_pull_request_separately(self, gh, repo):
        repo.owner.login = "owner"
        raws = []
        for number in (1, 2):
            raw = MagicMock()
            raw.number = number
            raw.head.ref = "feature"
            raw.head.sha = SHA
            raw.title = ""
            raw.get_review_comments.return_value = []
            raw.get_issue_comments.return_value = []
            raws.append(raw)
        repo.get_pulls.return_value = raws
        gh.get_user.side_effect = requests.exceptions.ConnectionError("connection reset")
        config = {
            **DEFAULT_CONFIG,
            "repo": "owner/repo",
            "branch_name": "feature",
            "build_status_enabled": False,
            "approval_enabled": False,
        }
        orchestrator = ReconciliationOrchestrator(GitHubClient("owner/repo", gh=gh, repo=repo), config)

        outcome = orchestrator.execute(AnalysisContext(findings=()))

        assert [r.pr_number for r in outcome.pull_requests] == [1, 2]
        assert all("connection reset" in r.error for r in outcome.pull_requests)
        assert gh.get_user.call_count == 2
        for raw in raws:
            raw.create_issue_comment.assert_not_called()
