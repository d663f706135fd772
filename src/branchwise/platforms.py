"""Pull request lookups on GitHub, GitLab and Azure DevOps.

Lookups are best effort. Any network, auth, rate-limit, decoding or size
problem yields an empty mapping so branch analysis can continue without PR
data.
"""

import json
import logging
import os
import re
from dataclasses import dataclass
from typing import Any, Iterable, Mapping, Optional
from urllib.parse import quote

import httpx

from branchwise.models import PRState, PRStatus

logger = logging.getLogger(__name__)

USER_AGENT = "branchwise"
DEFAULT_TIMEOUT = 10.0
DEFAULT_MAX_BYTES = 5 * 1024 * 1024
PAGE_SIZE = 100

TOKEN_ENV = {
    "github": "GITHUB_TOKEN",
    "gitlab": "GITLAB_TOKEN",
    "azure": "AZURE_DEVOPS_TOKEN",
}

_GITHUB_RE = re.compile(r"github\.com[:/]([^/]+)/([^/]+?)(?:\.git)?/?$")
_AZURE_NEW_RE = re.compile(r"dev\.azure\.com/([^/]+)/([^/]+)/_git/([^/]+?)(?:\.git)?/?$")
_AZURE_OLD_RE = re.compile(r"([^./:@]+)\.visualstudio\.com/([^/]+)/_git/([^/]+?)(?:\.git)?/?$")
_AZURE_SSH_RE = re.compile(r"ssh\.dev\.azure\.com:v3/([^/]+)/([^/]+)/([^/]+?)(?:\.git)?/?$")
_SSH_RE = re.compile(r"^(?:ssh://)?git@([^:/]+)[:/](.+?)(?:\.git)?/?$")
_HTTPS_RE = re.compile(r"^https?://(?:[^@/]+@)?([^/]+)/(.+?)(?:\.git)?/?$")


class LookupFailed(Exception):
    """A lookup request could not produce usable data."""


@dataclass(frozen=True)
class PlatformInfo:
    """Hosting platform parsed from a remote URL."""

    platform: Optional[str] = None
    host: Optional[str] = None
    project_path: Optional[str] = None
    organization: Optional[str] = None
    project: Optional[str] = None
    repo: Optional[str] = None


def detect_platform(url: Optional[str]) -> PlatformInfo:
    """Detect the hosting platform from a remote URL.

    GitHub and Azure DevOps are matched by host. Any other SSH or HTTPS host
    with a namespace/project path is treated as a (possibly self-hosted)
    GitLab instance.
    """
    if not url:
        return PlatformInfo()
    url = url.strip()

    match = _GITHUB_RE.search(url)
    if match:
        owner, repo = match.groups()
        return PlatformInfo(platform="github", host="api.github.com", project_path=f"{owner}/{repo}", repo=repo)

    for pattern in (_AZURE_NEW_RE, _AZURE_OLD_RE, _AZURE_SSH_RE):
        match = pattern.search(url)
        if match:
            organization, project, repo = match.groups()
            return PlatformInfo(
                platform="azure",
                host="dev.azure.com",
                organization=organization,
                project=project,
                repo=repo,
            )

    match = _SSH_RE.match(url) or _HTTPS_RE.match(url)
    if match:
        host, path = match.groups()
        if "/" in path and "github.com" not in host and "azure" not in host and "visualstudio" not in host:
            return PlatformInfo(platform="gitlab", host=host, project_path=path)

    return PlatformInfo()


def _github_state(pr: Mapping[str, Any]) -> PRState:
    if pr.get("merged_at"):
        return PRState.MERGED
    return PRState.OPEN if pr.get("state") == "open" else PRState.CLOSED


def _gitlab_state(mr: Mapping[str, Any]) -> PRState:
    state = mr.get("state")
    if state == "opened":
        return PRState.OPEN
    if state == "merged":
        return PRState.MERGED
    # closed, locked
    return PRState.CLOSED


def _azure_state(pr: Mapping[str, Any]) -> PRState:
    status = pr.get("status")
    if status == "active":
        return PRState.OPEN
    if status == "completed":
        return PRState.MERGED
    # abandoned
    return PRState.CLOSED


class PRLookup:
    """Fetch pull request status for branches of one repository.

    Usage::

        with PRLookup(detect_platform(url), token=token) as lookup:
            statuses = lookup.lookup(["feature/x"])
    """

    def __init__(
        self,
        info: PlatformInfo,
        token: Optional[str] = None,
        timeout: float = DEFAULT_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_BYTES,
        client: Optional[httpx.Client] = None,
    ) -> None:
        """Initialize the lookup.

        Args:
            info: Platform parsed from the remote URL
            token: API token; optional for public GitHub/GitLab projects
            timeout: Per request timeout in seconds
            max_bytes: Responses larger than this are discarded
            client: Preconfigured httpx client (tests pass a mock transport)
        """
        self.info = info
        self._token = token
        self._max_bytes = max_bytes
        self._client = client or httpx.Client(timeout=timeout, headers={"User-Agent": USER_AGENT})

    @classmethod
    def from_remote(
        cls,
        url: Optional[str],
        timeout: float = DEFAULT_TIMEOUT,
        max_bytes: int = DEFAULT_MAX_BYTES,
        env: Optional[Mapping[str, str]] = None,
    ) -> "PRLookup":
        """Build a lookup for a remote URL, reading the token from the environment."""
        info = detect_platform(url)
        env = os.environ if env is None else env
        token = env.get(TOKEN_ENV[info.platform]) if info.platform else None
        return cls(info, token=token or None, timeout=timeout, max_bytes=max_bytes)

    def __enter__(self) -> "PRLookup":
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def lookup(self, branches: Iterable[str]) -> dict[str, PRStatus]:
        """Map branch names to their most recent pull request.

        Never raises for remote failures: returns an empty mapping instead.
        """
        wanted = set(branches)
        if not wanted or self.info.platform is None:
            return {}

        fetchers = {
            "github": self._fetch_github,
            "gitlab": self._fetch_gitlab,
            "azure": self._fetch_azure,
        }
        try:
            return fetchers[self.info.platform](wanted)
        except (httpx.HTTPError, LookupFailed, ValueError, KeyError, TypeError, AttributeError) as err:
            logger.warning("PR lookup on %s failed: %s", self.info.platform, err)
            return {}

    def _get_json(self, url: str, headers: Mapping[str, str], **kwargs: Any) -> Any:
        """GET a JSON document, enforcing the response size cap."""
        with self._client.stream("GET", url, headers=headers, **kwargs) as response:
            if response.status_code != 200:
                raise LookupFailed(f"HTTP {response.status_code} from {response.url.host}")
            declared = response.headers.get("Content-Length")
            if declared and declared.isdigit() and int(declared) > self._max_bytes:
                raise LookupFailed(f"Response too large ({declared} bytes)")
            body = bytearray()
            for chunk in response.iter_bytes():
                body.extend(chunk)
                if len(body) > self._max_bytes:
                    raise LookupFailed(f"Response exceeded {self._max_bytes} bytes")
        return json.loads(bytes(body))

    def _fetch_github(self, wanted: set[str]) -> dict[str, PRStatus]:
        headers = {"Accept": "application/vnd.github+json"}
        if self._token:
            headers["Authorization"] = f"Bearer {self._token}"
        pulls = self._get_json(
            f"https://{self.info.host}/repos/{self.info.project_path}/pulls",
            headers,
            params={"state": "all", "per_page": PAGE_SIZE},
        )

        result: dict[str, PRStatus] = {}
        for pr in pulls:
            branch = (pr.get("head") or {}).get("ref")
            # API returns newest first; keep the newest per branch
            if branch in wanted and branch not in result:
                result[branch] = PRStatus(
                    number=int(pr["number"]),
                    state=_github_state(pr),
                    title=str(pr.get("title") or ""),
                    url=str(pr.get("html_url") or ""),
                    draft=bool(pr.get("draft")),
                )
        return result

    def _fetch_gitlab(self, wanted: set[str]) -> dict[str, PRStatus]:
        headers = {"Accept": "application/json"}
        if self._token:
            headers["PRIVATE-TOKEN"] = self._token
        project = quote(self.info.project_path or "", safe="")
        requests = self._get_json(
            f"https://{self.info.host}/api/v4/projects/{project}/merge_requests",
            headers,
            params={"state": "all", "per_page": PAGE_SIZE},
        )

        result: dict[str, PRStatus] = {}
        for mr in requests:
            branch = mr.get("source_branch")
            if branch in wanted and branch not in result:
                result[branch] = PRStatus(
                    number=int(mr["iid"]),
                    state=_gitlab_state(mr),
                    title=str(mr.get("title") or ""),
                    url=str(mr.get("web_url") or ""),
                    draft=bool(mr.get("draft") or mr.get("work_in_progress")),
                )
        return result

    def _fetch_azure(self, wanted: set[str]) -> dict[str, PRStatus]:
        if not self._token:
            logger.debug("Azure DevOps lookups need a token, skipping")
            return {}
        info = self.info
        project = quote(info.project or "", safe="")
        repo = quote(info.repo or "", safe="")
        body = self._get_json(
            f"https://{info.host}/{info.organization}/{project}/_apis/git/repositories/{repo}/pullrequests",
            {"Accept": "application/json"},
            params={"searchCriteria.status": "all", "$top": PAGE_SIZE, "api-version": "7.1"},
            auth=("", self._token),
        )

        result: dict[str, PRStatus] = {}
        for pr in body["value"]:
            branch = str(pr.get("sourceRefName") or "").removeprefix("refs/heads/")
            if branch in wanted and branch not in result:
                number = int(pr["pullRequestId"])
                result[branch] = PRStatus(
                    number=number,
                    state=_azure_state(pr),
                    title=str(pr.get("title") or ""),
                    url=f"https://{info.host}/{info.organization}/{project}/_git/{repo}/pullrequest/{number}",
                    draft=bool(pr.get("isDraft")),
                )
        return result
