import json
import unittest
from unittest import mock

import requests

from ai_review_sync.annotation_markers import render_finding_body
from ai_review_sync.exceptions import SCMAPIError
from ai_review_sync.models import STATUS_DELETED, STATUS_MODIFIED, STATUS_RENAMED, Finding
from ai_review_sync.plugin_config import PluginConfig
from ai_review_sync.scm_client import DIFF_MEDIA_TYPE, GitHubSCMClient, graphql_url_for

API = "https://api.github.com"
PULL = f"{API}/repos/acme/widgets/pulls/7"


def make_response(status=200, payload=None, text=None):
    response = mock.Mock()
    response.status_code = status
    if payload is not None:
        body = json.dumps(payload)
        response.json.return_value = payload
    else:
        body = text or ""
    response.text = body
    response.content = body.encode("utf-8")
    return response


def make_config(**overrides):
    config = PluginConfig(scm_token="secret", scm_api_url=None)
    config.ci_repo_owner = "acme"
    config.ci_repo_name = "widgets"
    config.ci_pr_number = 7
    config.ci_head_sha = "sha-head"
    for key, value in overrides.items():
        setattr(config, key, value)
    return config


class TestGraphqlUrl(unittest.TestCase):
    def test_github_com(self):
        self.assertEqual(graphql_url_for("https://api.github.com"), "https://api.github.com/graphql")

    def test_enterprise(self):
        self.assertEqual(graphql_url_for("https://ghe.example.com/api/v3/"), "https://ghe.example.com/api/graphql")


@mock.patch("ai_review_sync.scm_client.requests.request")
class TestReads(unittest.TestCase):
    def setUp(self):
        self.client = GitHubSCMClient(make_config())

    def test_list_annotations(self, request):
        structured_body = render_finding_body(Finding("app.py", 12, "error", "Bad"), "sha-old", 3)
        comments = [
            {"id": 1, "path": "app.py", "body": structured_body, "line": None, "original_line": 11,
             "position": 3, "commit_id": "sha-old", "user": {"login": "ci-bot"}},
            {"id": 2, "path": "app.py", "body": "I disagree", "in_reply_to_id": 1, "position": 3},
            {"id": 3, "path": "lib.py", "body": "\U0001f7e1 **WARNING**: old style", "line": None,
             "original_line": 8, "position": None},
        ]
        threads = {"data": {"repository": {"pullRequest": {"reviewThreads": {
            "pageInfo": {"hasNextPage": False, "endCursor": None},
            "nodes": [{"id": "PRRT_1", "isResolved": False, "comments": {"nodes": [{"databaseId": 1}]}}],
        }}}}}

        def dispatch(method, url, **kwargs):
            if url == f"{PULL}/comments":
                return make_response(payload=comments)
            if url == f"{API}/graphql":
                return make_response(payload=threads)
            raise AssertionError(f"unexpected request {method} {url}")
        request.side_effect = dispatch

        annotations = self.client.list_annotations()

        self.assertEqual([a.id for a in annotations], [1, 3])
        structured, legacy = annotations
        self.assertEqual(structured.line, 12) # from the metadata block
        self.assertEqual(structured.severity, "error")
        self.assertEqual(structured.thread_id, "PRRT_1")
        self.assertFalse(structured.is_outdated)
        self.assertEqual(structured.author, "ci-bot")
        self.assertIsNone(legacy.metadata)
        self.assertEqual(legacy.line, 8)
        self.assertEqual(legacy.severity, "warning")
        self.assertTrue(legacy.is_outdated)
        self.assertIsNone(legacy.thread_id)

    def test_list_annotations_survives_graphql_failure(self, request):
        def dispatch(method, url, **kwargs):
            if url == f"{PULL}/comments":
                return make_response(payload=[{"id": 1, "path": "a.py", "body": "x", "position": 1, "line": 1}])
            return make_response(status=502, text="bad gateway")
        request.side_effect = dispatch

        with self.assertLogs("ai_review_sync.scm_client", level="WARNING"):
            annotations = self.client.list_annotations()

        self.assertEqual(len(annotations), 1)
        self.assertIsNone(annotations[0].thread_id)

    def test_list_annotations_failure_returns_none(self, request):
        request.return_value = make_response(status=500, text="boom")
        self.assertIsNone(self.client.list_annotations())

    def test_pagination(self, request):
        first_page = [{"id": i, "path": "a.py", "body": "", "position": 1} for i in range(100)]
        second_page = [{"id": 100, "path": "a.py", "body": "", "position": 1}]
        request.side_effect = [make_response(payload=first_page), make_response(payload=second_page)]

        raw = self.client._paginate("/repos/acme/widgets/pulls/7/comments")

        self.assertEqual(len(raw), 101)
        self.assertEqual(request.call_args_list[1].kwargs["params"], {"per_page": 100, "page": 2})

    def test_list_changed_files(self, request):
        request.return_value = make_response(payload=[
            {"filename": "a.py", "sha": "blob-a", "status": "modified", "patch": "@@ -1 +1 @@\n-a\n+b"},
            {"filename": "gone.py", "sha": "blob-g", "status": "removed"},
            {"filename": "new.py", "sha": "blob-n", "status": "renamed", "previous_filename": "old.py"},
            {"filename": "copy.py", "sha": "blob-c", "status": "copied"},
        ])

        files = self.client.list_changed_files()

        self.assertEqual([f.status for f in files], [STATUS_MODIFIED, STATUS_DELETED, STATUS_RENAMED, STATUS_MODIFIED])
        self.assertEqual(files[0].content_hash, "blob-a")
        self.assertIsNone(files[1].patch)
        self.assertEqual(files[2].previous_filename, "old.py")

    def test_list_reviews(self, request):
        request.return_value = make_response(payload=[
            {"id": 5, "body": None, "state": "APPROVED", "commit_id": "sha-old", "submitted_at": "2024-01-01T00:00:00Z",
             "user": {"login": "ci-bot"}},
        ])

        reviews = self.client.list_reviews()

        self.assertEqual(reviews[0].id, 5)
        self.assertEqual(reviews[0].body, "")
        self.assertEqual(reviews[0].commit_sha, "sha-old")

    def test_get_pr_diff(self, request):
        request.return_value = make_response(text="diff --git a/a.py b/a.py\n")

        self.assertEqual(self.client.get_pr_diff(), "diff --git a/a.py b/a.py\n")
        self.assertEqual(request.call_args.kwargs["headers"]["Accept"], DIFF_MEDIA_TYPE)

    def test_network_error_on_read_returns_none(self, request):
        request.side_effect = requests.exceptions.ConnectionError("reset")
        self.assertIsNone(self.client.get_pr_diff())


@mock.patch("ai_review_sync.scm_client.requests.request")
class TestMutations(unittest.TestCase):
    def setUp(self):
        self.client = GitHubSCMClient(make_config())

    def test_create_annotation(self, request):
        request.return_value = make_response(status=201, payload={"id": 99})

        annotation_id = self.client.create_annotation("app.py", 4, "body")

        self.assertEqual(annotation_id, 99)
        args, kwargs = request.call_args
        self.assertEqual(args, ("POST", f"{PULL}/comments"))
        self.assertEqual(kwargs["json"], {"body": "body", "commit_id": "sha-head", "path": "app.py", "position": 4})
        self.assertEqual(kwargs["timeout"], 30)

    def test_create_annotation_failure(self, request):
        request.return_value = make_response(status=422, payload={"message": "position is invalid"})

        with self.assertRaises(SCMAPIError) as ctx:
            self.client.create_annotation("app.py", 400, "body")

        self.assertEqual(ctx.exception.status_code, 422)
        self.assertFalse(ctx.exception.retryable)

    def test_rate_limit_is_retryable(self, request):
        request.return_value = make_response(status=429, text="slow down")

        with self.assertRaises(SCMAPIError) as ctx:
            self.client.update_annotation(5, "body")

        self.assertTrue(ctx.exception.retryable)

    def test_network_error_is_retryable(self, request):
        request.side_effect = requests.exceptions.Timeout("timed out")

        with self.assertRaises(SCMAPIError) as ctx:
            self.client.delete_annotation(5)

        self.assertIsNone(ctx.exception.status_code)
        self.assertTrue(ctx.exception.retryable)

    def test_update_annotation(self, request):
        request.return_value = make_response(payload={"id": 5})

        self.client.update_annotation(5, "new body")

        args, kwargs = request.call_args
        self.assertEqual(args, ("PATCH", f"{API}/repos/acme/widgets/pulls/comments/5"))
        self.assertEqual(kwargs["json"], {"body": "new body"})

    def test_delete_annotation(self, request):
        request.return_value = make_response(status=204)

        self.client.delete_annotation(5)

        self.assertEqual(request.call_args.args, ("DELETE", f"{API}/repos/acme/widgets/pulls/comments/5"))

    def test_delete_of_missing_annotation_is_not_an_error(self, request):
        request.return_value = make_response(status=404, payload={"message": "Not Found"})
        self.client.delete_annotation(5)

    def test_resolve_thread(self, request):
        request.return_value = make_response(payload={"data": {"resolveReviewThread": {"thread": {"isResolved": True}}}})

        self.client.resolve_thread("PRRT_1")

        args, kwargs = request.call_args
        self.assertEqual(args, ("POST", f"{API}/graphql"))
        self.assertEqual(kwargs["json"]["variables"], {"threadId": "PRRT_1"})

    def test_resolve_thread_graphql_errors(self, request):
        request.return_value = make_response(payload={"errors": [{"message": "Could not resolve to a node"}]})

        with self.assertRaises(SCMAPIError) as ctx:
            self.client.resolve_thread("PRRT_missing")

        self.assertFalse(ctx.exception.retryable)

    def test_dismiss_review(self, request):
        request.return_value = make_response(payload={"id": 8, "state": "DISMISSED"})

        self.client.dismiss_review(8)

        args, kwargs = request.call_args
        self.assertEqual(args, ("PUT", f"{PULL}/reviews/8/dismissals"))
        self.assertEqual(kwargs["json"]["event"], "DISMISS")


if __name__ == '__main__':
    unittest.main()
