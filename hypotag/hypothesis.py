"""
Client for the Hypothesis annotation API.

Only the calls hypotag needs: paging through the user's annotations,
deleting one, and checking credentials.
"""

import logging
from typing import Any, Optional

import requests

from .errors import RemoteError
from .types import Annotation

logger = logging.getLogger(__name__)

DEFAULT_BASE_URL = "https://api.hypothes.is/api"
PAGE_SIZE = 200
TIMEOUT = 30


class HypothesisClient:
    """
    Hypothesis API client over a requests.Session.

    Args:
        username: Hypothesis account name (without the acct: prefix)
        api_key: Developer API token
        base_url: API root
    """

    def __init__(
        self,
        username: str,
        api_key: str,
        base_url: str = DEFAULT_BASE_URL,
        session: Optional[requests.Session] = None,
    ):
        self.username = username
        self.base_url = base_url.rstrip("/")
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Bearer {api_key}",
            "Accept": "application/vnd.hypothesis.v1+json",
        })

    @property
    def user(self) -> str:
        """Fully qualified account ID."""
        return f"acct:{self.username}@hypothes.is"

    def _request(self, method: str, path: str, **kwargs) -> Any:
        url = f"{self.base_url}/{path.lstrip('/')}"
        try:
            resp = self.session.request(method, url, timeout=TIMEOUT, **kwargs)
            resp.raise_for_status()
            return resp.json()
        except requests.RequestException as e:
            raise RemoteError(f"Hypothesis API {method} {path} failed: {e}") from e
        except ValueError as e:
            raise RemoteError(f"Hypothesis API {method} {path} returned invalid JSON") from e

    def get_profile(self) -> dict:
        """Profile of the authenticated user."""
        return self._request("GET", "profile")

    def search_annotations(
        self,
        params: dict[str, Any],
        limit: Optional[int] = None,
    ) -> list[Annotation]:
        """
        Search annotations, following pages until exhausted.

        Args:
            params: Extra search parameters (user, group, tag, ...)
            limit: Stop after this many annotations (None for all)

        Returns:
            Annotations ordered by last update, oldest first
        """
        query = {**params, "sort": "updated", "order": "asc", "limit": PAGE_SIZE}
        annotations: list[Annotation] = []
        while True:
            rows = self._request("GET", "search", params=query).get("rows", [])
            if not rows:
                break
            annotations.extend(Annotation.from_json(row) for row in rows)
            logger.debug("Fetched %d annotations (%d total)", len(rows), len(annotations))
            if limit is not None and len(annotations) >= limit:
                return annotations[:limit]
            query["search_after"] = rows[-1]["updated"]
        return annotations

    def fetch_annotations(
        self,
        group: Optional[str] = None,
        since: Optional[str] = None,
    ) -> list[Annotation]:
        """
        The user's annotations, optionally in one group and updated after a time.
        """
        params: dict[str, Any] = {"user": self.user}
        if group:
            params["group"] = group
        if since:
            params["search_after"] = since
        return self.search_annotations(params)

    def delete_annotation(self, id: str) -> bool:
        """Delete an annotation on the server."""
        return bool(self._request("DELETE", f"annotations/{id}").get("deleted"))
