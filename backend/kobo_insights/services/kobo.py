"""
KoboToolbox API client.

Lists a user's form assets and fetches their submissions. Submission fetches
run in a small thread pool so that an account with many forms does not open
one connection per form at once.
"""
import logging
from concurrent.futures import ThreadPoolExecutor
from typing import Any, Dict, List, Optional

import requests

from kobo_insights.core.config import get_settings
from kobo_insights.core.errors import KoboAPIError
from kobo_insights.core.performance import track_performance
from kobo_insights.core.schemas import Dataset
from kobo_insights.services import repository
from kobo_insights.services.repository import collect_columns

logger = logging.getLogger(__name__)


def looks_like_html(text: str) -> bool:
    """Kobo answers a bad token with its login page instead of JSON."""
    head = text.lstrip()[:200].lower()
    return head.startswith("<!doctype") or "<html" in head


class KoboClient:
    """Thin wrapper over the KoboToolbox v2 REST API."""

    def __init__(
        self,
        token: str,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        session: Optional[requests.Session] = None,
    ):
        settings = get_settings()
        self.base_url = (base_url or settings.kobo_base_url).rstrip("/")
        self.timeout = timeout or settings.kobo_timeout_seconds
        self.session = session or requests.Session()
        self.session.headers.update({
            "Authorization": f"Token {token}",
            "Accept": "application/json",
        })

    def _get(self, path: str) -> Dict[str, Any]:
        url = path if path.startswith(("http://", "https://")) else f"{self.base_url}{path}"
        try:
            response = self.session.get(url, timeout=self.timeout)
        except requests.RequestException as e:
            raise KoboAPIError(f"Could not reach KoboToolbox: {e}")

        if looks_like_html(response.text):
            raise KoboAPIError("KoboToolbox returned an HTML page; the API token is probably invalid", response.status_code)
        if not response.ok:
            raise KoboAPIError(f"KoboToolbox API error: {response.status_code} {response.reason}", response.status_code)

        try:
            return response.json()
        except ValueError:
            raise KoboAPIError("KoboToolbox returned a response that is not JSON", response.status_code)

    def list_assets(self) -> List[Dict[str, Any]]:
        data = self._get("/api/v2/assets/")
        if "results" not in data:
            raise KoboAPIError("Invalid API response format: missing results field")
        return data["results"]

    def fetch_submissions(self, asset_uid: str) -> List[Dict[str, Any]]:
        """All submissions of one form, following pagination."""
        path: Optional[str] = f"/api/v2/assets/{asset_uid}/data/"
        submissions: List[Dict[str, Any]] = []
        while path:
            data = self._get(path)
            submissions.extend(data.get("results") or [])
            path = data.get("next")
        return submissions

    def _project(self, asset: Dict[str, Any]) -> Dict[str, Any]:
        uid = asset.get("uid")
        project = {
            "uid": uid,
            "name": asset.get("name") or "Untitled Project",
            "owner__username": asset.get("owner__username"),
            "date_created": asset.get("date_created"),
            "deployment__active": asset.get("deployment__active"),
            "submissions": [],
            "total_submissions": 0,
            "available_columns": [],
            "data_url": f"{self.base_url}/api/v2/assets/{uid}/data/",
        }
        try:
            submissions = self.fetch_submissions(uid)
        except KoboAPIError as e:
            logger.warning(f"Failed to fetch data for project {uid}: {e}")
            project["error"] = f"Failed to fetch form data: {e}"
            return project

        project["submissions"] = submissions
        project["total_submissions"] = len(submissions)
        project["available_columns"] = collect_columns(submissions)
        return project

    @track_performance("kobo_fetch_projects")
    def fetch_projects(self, max_workers: Optional[int] = None) -> List[Dict[str, Any]]:
        """
        List every asset with its submissions.

        A failure on one project is recorded in that project's ``error`` field;
        only a failure to list the assets themselves raises.

        Raises:
            KoboAPIError: If the asset list cannot be fetched
        """
        assets = self.list_assets()
        workers = max_workers or get_settings().sync_max_concurrency
        logger.info(f"Fetching submissions for {len(assets)} projects ({workers} at a time)")

        with ThreadPoolExecutor(max_workers=workers) as executor:
            return list(executor.map(self._project, assets))


@track_performance("kobo_sync_project")
def sync_project(client: KoboClient, asset_uid: str, name: Optional[str] = None, token_id: Optional[str] = None) -> Dataset:
    """
    Fetch one project's submissions and store them as a dataset (overwrite on upsert).

    ``token_id`` links the dataset to a stored token so it can be auto-synced.
    """
    submissions = client.fetch_submissions(asset_uid)
    dataset = repository.save_dataset(asset_uid, submissions, name=name, token_id=token_id)
    logger.info(f"Synced project {asset_uid}: {len(submissions)} submissions")
    return dataset
