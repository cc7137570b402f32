# src/ai_review_sync/scm_client.py
import logging
import requests # Using requests library for HTTP calls
from typing import List, Dict, Any, Optional, TYPE_CHECKING

from .annotation_markers import decode_metadata, infer_severity
from .exceptions import SCMAPIError
from .models import (
    STATUS_ADDED, STATUS_DELETED, STATUS_MODIFIED, STATUS_RENAMED,
    Annotation, ChangedFile, Review,
)

if TYPE_CHECKING:
    from .plugin_config import PluginConfig

logger = logging.getLogger(__name__)

GITHUB_API_BASE_URL = "https://api.github.com"
DIFF_MEDIA_TYPE = "application/vnd.github.v3.diff"
PAGE_SIZE = 100
REQUEST_TIMEOUT = 30
DISMISS_MESSAGE = "Superseded by a newer automated review."

# GitHub file statuses -> ours. "copied", "changed" and "unchanged" count as modified.
FILE_STATUS_MAP = {
    "added": STATUS_ADDED,
    "removed": STATUS_DELETED,
    "renamed": STATUS_RENAMED,
}

REVIEW_THREADS_QUERY = """
query($owner: String!, $repo: String!, $prNumber: Int!, $cursor: String) {
  repository(owner: $owner, name: $repo) {
    pullRequest(number: $prNumber) {
      reviewThreads(first: 100, after: $cursor) {
        pageInfo { hasNextPage endCursor }
        nodes {
          id
          isResolved
          comments(first: 1) { nodes { databaseId } }
        }
      }
    }
  }
}
"""

RESOLVE_THREAD_MUTATION = """
mutation($threadId: ID!) {
  resolveReviewThread(input: {threadId: $threadId}) {
    thread { isResolved }
  }
}
"""


def graphql_url_for(api_base_url: str) -> str:
    """GraphQL endpoint for a REST base URL (github.com or GitHub Enterprise)."""
    base = api_base_url.rstrip('/')
    if base.endswith("/api/v3"):
        return base[:-len("/v3")] + "/graphql"
    return f"{base}/graphql"


class GitHubSCMClient:
    """
    Talks to the GitHub REST and GraphQL APIs for a single pull request.

    Read calls log and return None on failure. Mutating calls raise SCMAPIError
    so the caller can record the failure and carry on with the rest of its work.
    """
    def __init__(self, config: 'PluginConfig'):
        self.config = config
        self.headers = {
            "Accept": "application/vnd.github.v3+json",
            "Authorization": f"token {self.config.scm_token}",
            "X-GitHub-Api-Version": "2022-11-28"
        }
        self.api_base_url = (getattr(config, 'scm_api_url', None) or GITHUB_API_BASE_URL).rstrip('/')
        self.graphql_url = graphql_url_for(self.api_base_url)
        logger.info(f"SCM Client initialized for base URL: {self.api_base_url}")

    @property
    def _repo_path(self) -> str:
        return f"/repos/{self.config.ci_repo_owner}/{self.config.ci_repo_name}"

    @property
    def _pull_path(self) -> str:
        return f"{self._repo_path}/pulls/{self.config.ci_pr_number}"

    def _send(self, method: str, url: str, params: Optional[Dict] = None, json_data: Optional[Dict] = None,
              custom_headers: Optional[Dict] = None) -> requests.Response:
        request_headers = self.headers.copy()
        if custom_headers:
            request_headers.update(custom_headers)
        logger.debug(f"Making SCM API {method} request to {url} with params {params} and data {json_data}")
        try:
            return requests.request(method, url, headers=request_headers, params=params, json=json_data,
                                    timeout=REQUEST_TIMEOUT)
        except requests.exceptions.RequestException as e:
            raise SCMAPIError(f"SCM API {method} {url} failed: {e}") from e

    def _request(self, method: str, endpoint: str, params: Optional[Dict] = None, json_data: Optional[Dict] = None,
                 expected_status: int = 200, custom_headers: Optional[Dict] = None) -> Optional[Any]:
        """Helper for read calls: returns the parsed body, or None on any failure."""
        url = f"{self.api_base_url}{endpoint}"
        try:
            response = self._send(method, url, params, json_data, custom_headers)
        except SCMAPIError as e:
            logger.error(f"SCM API request to {url} encountered an exception: {e}", exc_info=True)
            return None

        if response.status_code != expected_status:
            logger.error(f"SCM API request to {url} failed with status {response.status_code}: {response.text[:500]}")
            return None
        if not response.content:
            return True # Successful call with no content
        if custom_headers and custom_headers.get("Accept") == DIFF_MEDIA_TYPE:
            return response.text
        return response.json()

    def _mutate(self, method: str, endpoint: str, json_data: Optional[Dict] = None,
                expected_status: int = 200) -> Optional[Any]:
        """Helper for mutating calls: raises SCMAPIError unless `expected_status` comes back."""
        url = f"{self.api_base_url}{endpoint}"
        response = self._send(method, url, json_data=json_data)
        if response.status_code != expected_status:
            raise SCMAPIError(
                f"SCM API {method} {url} failed with status {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        return response.json() if response.content else None

    def _paginate(self, endpoint: str, params: Optional[Dict] = None) -> Optional[List[Dict]]:
        """Collects every page of a list endpoint. None if any page fails."""
        items: List[Dict] = []
        page = 1
        while True:
            page_params = dict(params or {}, per_page=PAGE_SIZE, page=page)
            data = self._request("GET", endpoint, params=page_params)
            if data is None or not isinstance(data, list):
                logger.error(f"Failed to list {endpoint} (page {page}).")
                return None
            items.extend(data)
            if len(data) < PAGE_SIZE:
                return items
            page += 1

    def _graphql(self, query: str, variables: Dict) -> Dict:
        response = self._send("POST", self.graphql_url, json_data={"query": query, "variables": variables})
        if response.status_code != 200:
            raise SCMAPIError(
                f"GraphQL request failed with status {response.status_code}: {response.text[:500]}",
                status_code=response.status_code,
            )
        payload = response.json()
        if payload.get("errors"):
            messages = "; ".join(str(err.get("message", err)) for err in payload["errors"])
            raise SCMAPIError(f"GraphQL request returned errors: {messages}", status_code=200, retryable=False)
        return payload.get("data") or {}

    # --- Reads ---

    def list_review_threads(self) -> Dict[int, Dict[str, Any]]:
        """
        Maps the id of each thread's first comment to {"id": thread node id, "resolved": bool}.
        Threads are optional information; on failure an empty map is returned.
        """
        threads: Dict[int, Dict[str, Any]] = {}
        cursor = None
        variables = {
            "owner": self.config.ci_repo_owner,
            "repo": self.config.ci_repo_name,
            "prNumber": int(self.config.ci_pr_number),
        }
        try:
            while True:
                data = self._graphql(REVIEW_THREADS_QUERY, dict(variables, cursor=cursor))
                connection = data["repository"]["pullRequest"]["reviewThreads"]
                for node in connection["nodes"]:
                    comments = node.get("comments", {}).get("nodes") or []
                    if comments and comments[0].get("databaseId") is not None:
                        threads[comments[0]["databaseId"]] = {"id": node["id"], "resolved": bool(node.get("isResolved"))}
                if not connection["pageInfo"]["hasNextPage"]:
                    break
                cursor = connection["pageInfo"]["endCursor"]
        except (SCMAPIError, KeyError, TypeError) as e:
            logger.warning(f"Could not list review threads; thread resolution will be skipped: {e}")
            return {}
        return threads

    def list_annotations(self) -> Optional[List[Annotation]]:
        """
        All top-level inline comments on the pull request, by anyone. Replies are left
        out: they belong to whoever wrote them. Returns None if the listing failed.
        """
        raw_comments = self._paginate(f"{self._pull_path}/comments")
        if raw_comments is None:
            return None

        threads = self.list_review_threads()
        annotations = []
        for item in raw_comments:
            if item.get("in_reply_to_id"):
                continue
            annotations.append(self._to_annotation(item, threads.get(item["id"])))
        logger.info(f"Fetched {len(annotations)} inline comments for PR #{self.config.ci_pr_number}.")
        return annotations

    @staticmethod
    def _to_annotation(item: Dict[str, Any], thread: Optional[Dict[str, Any]] = None) -> Annotation:
        body = item.get("body") or ""
        metadata = decode_metadata(body)
        line = metadata.line if metadata and metadata.line is not None else (item.get("line") or item.get("original_line"))
        return Annotation(
            id=item["id"],
            file_path=item.get("path", ""),
            body=body,
            line=line,
            severity=infer_severity(body),
            commit_sha=item.get("commit_id"),
            created_at=item.get("created_at"),
            updated_at=item.get("updated_at"),
            # GitHub drops the position once the diff no longer contains the commented line
            is_outdated=item.get("position") is None,
            metadata=metadata,
            position=item.get("position"),
            thread_id=thread["id"] if thread else None,
            thread_resolved=thread["resolved"] if thread else False,
            author=(item.get("user") or {}).get("login"),
        )

    def list_reviews(self) -> Optional[List[Review]]:
        raw_reviews = self._paginate(f"{self._pull_path}/reviews")
        if raw_reviews is None:
            return None
        return [
            Review(
                id=item["id"],
                body=item.get("body") or "",
                state=item.get("state", ""),
                commit_sha=item.get("commit_id"),
                submitted_at=item.get("submitted_at"),
                author=(item.get("user") or {}).get("login"),
            )
            for item in raw_reviews
        ]

    def list_changed_files(self) -> Optional[List[ChangedFile]]:
        raw_files = self._paginate(f"{self._pull_path}/files")
        if raw_files is None:
            return None
        files = [
            ChangedFile(
                filename=item["filename"],
                content_hash=item.get("sha") or "",
                status=FILE_STATUS_MAP.get(item.get("status"), STATUS_MODIFIED),
                patch=item.get("patch"),
                previous_filename=item.get("previous_filename"),
            )
            for item in raw_files
        ]
        logger.info(f"Fetched {len(files)} changed files for PR #{self.config.ci_pr_number}.")
        return files

    def get_pr_diff(self) -> Optional[str]:
        """
        Fetches the unified diff of the whole pull request. Used for files whose
        patch the file listing omits.
        """
        if not (self.config.ci_repo_owner and self.config.ci_repo_name and self.config.ci_pr_number):
            logger.error("Cannot fetch PR diff: Missing repo owner, name, or PR number.")
            return None

        logger.info(f"Fetching full PR diff from SCM: {self._pull_path}")
        diff_text = self._request("GET", self._pull_path, custom_headers={"Accept": DIFF_MEDIA_TYPE})
        if diff_text and isinstance(diff_text, str):
            logger.info(f"Successfully fetched PR diff (length: {len(diff_text)}).")
            return diff_text

        logger.error(f"Failed to fetch PR diff for PR #{self.config.ci_pr_number}.")
        return None

    # --- Mutations ---

    def create_annotation(self, file: str, position: int, body: str) -> int:
        payload = {
            "body": body,
            "commit_id": self.config.ci_head_sha,
            "path": file,
            "position": position,
        }
        created = self._mutate("POST", f"{self._pull_path}/comments", json_data=payload, expected_status=201)
        annotation_id = created["id"] if created else None
        logger.debug(f"Created annotation #{annotation_id} on {file} at position {position}.")
        return annotation_id

    def update_annotation(self, annotation_id: int, body: str):
        self._mutate("PATCH", f"{self._repo_path}/pulls/comments/{annotation_id}", json_data={"body": body})
        logger.debug(f"Updated annotation #{annotation_id}.")

    def delete_annotation(self, annotation_id: int):
        try:
            self._mutate("DELETE", f"{self._repo_path}/pulls/comments/{annotation_id}", expected_status=204)
        except SCMAPIError as e:
            if e.status_code == 404:
                logger.info(f"Annotation #{annotation_id} was already deleted.")
                return
            raise
        logger.debug(f"Deleted annotation #{annotation_id}.")

    def resolve_thread(self, thread_id: str):
        self._graphql(RESOLVE_THREAD_MUTATION, {"threadId": thread_id})
        logger.debug(f"Resolved review thread {thread_id}.")

    def dismiss_review(self, review_id: int, message: str = DISMISS_MESSAGE):
        self._mutate(
            "PUT",
            f"{self._pull_path}/reviews/{review_id}/dismissals",
            json_data={"message": message, "event": "DISMISS"},
        )
        logger.debug(f"Dismissed review #{review_id}.")
