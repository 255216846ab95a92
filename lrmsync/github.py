"""GitHub API boundary: repository contents, commits and webhook signatures."""

from __future__ import annotations

from typing import Any
import base64
import hashlib
import hmac
import logging

import requests

logger = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.github.com"
SIGNATURE_HEADER = "X-Hub-Signature-256"
_SIGNATURE_PREFIX = "sha256="
_RETRYABLE_STATUSES = {429, 500, 502, 503, 504}


class GitHubError(RuntimeError):
    def __init__(self, message: str, *, status: int | None = None, retryable: bool = False) -> None:
        self.status = status
        self.retryable = retryable
        super().__init__(message)


def verify_signature(secret: str, body: bytes, header: str | None) -> bool:
    """Check an ``X-Hub-Signature-256`` header against the raw request body."""
    if not secret or not header or not header.startswith(_SIGNATURE_PREFIX):
        return False
    expected = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, header[len(_SIGNATURE_PREFIX):])


def sign_body(secret: str, body: bytes) -> str:
    digest = hmac.new(secret.encode("utf-8"), body, hashlib.sha256).hexdigest()
    return _SIGNATURE_PREFIX + digest


class GitHubClient:
    def __init__(
        self,
        repo: str,
        *,
        token: str | None = None,
        api_url: str = DEFAULT_API_URL,
        timeout: float = 30.0,
        session: requests.Session | None = None,
    ) -> None:
        self.repo = repo
        self.api_url = api_url.rstrip("/")
        self.timeout = timeout
        self.session = session or self._create_session(token)

    @staticmethod
    def _create_session(token: str | None) -> requests.Session:
        session = requests.Session()
        session.headers["Accept"] = "application/vnd.github+json"
        if token:
            session.headers["Authorization"] = f"Bearer {token}"
        return session

    def _request(self, method: str, path: str, **kwargs: Any) -> requests.Response:
        url = f"{self.api_url}/repos/{self.repo}/{path.lstrip('/')}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except (requests.ConnectionError, requests.Timeout) as exc:
            raise GitHubError(f"{method} {url} failed: {exc}", retryable=True) from exc
        return response

    def _check(self, response: requests.Response) -> Any:
        if response.status_code >= 400:
            raise GitHubError(
                f"GitHub API {response.status_code}: {response.text[:200]}",
                status=response.status_code,
                retryable=response.status_code in _RETRYABLE_STATUSES,
            )
        return response.json()

    def branch_head(self, branch: str) -> str:
        payload = self._check(self._request("GET", f"branches/{branch}"))
        return payload["commit"]["sha"]

    def list_files(self, ref: str, *, path: str = "") -> list[str]:
        """Blob paths of the tree at ``ref``, limited to ``path`` when given."""
        payload = self._check(self._request("GET", f"git/trees/{ref}", params={"recursive": "1"}))
        if payload.get("truncated"):
            logger.warning("tree listing of %s@%s was truncated", self.repo, ref)
        prefix = path.strip("/")
        files = []
        for item in payload.get("tree", []):
            if item.get("type") != "blob":
                continue
            item_path = item["path"]
            if prefix and not item_path.startswith(prefix + "/"):
                continue
            files.append(item_path)
        return sorted(files)

    def get_file_contents(self, path: str, ref: str) -> tuple[bytes, str] | None:
        """File bytes and blob sha at ``ref``; None when the file does not exist."""
        response = self._request("GET", f"contents/{path}", params={"ref": ref})
        if response.status_code == 404:
            return None
        payload = self._check(response)
        return base64.b64decode(payload.get("content", "")), payload["sha"]

    def put_file_contents(
        self,
        path: str,
        content: bytes,
        *,
        message: str,
        branch: str,
        sha: str | None = None,
    ) -> str:
        """Create or update one file; returns the new commit sha."""
        body: dict[str, Any] = {
            "message": message,
            "content": base64.b64encode(content).decode("ascii"),
            "branch": branch,
        }
        if sha is not None:
            body["sha"] = sha
        payload = self._check(self._request("PUT", f"contents/{path}", json=body))
        commit_sha = payload["commit"]["sha"]
        logger.info("committed %s to %s@%s (%s)", path, self.repo, branch, commit_sha[:8])
        return commit_sha
