"""
Log collection from GitHub Actions.

This module fetches the logs to upload for one workflow run:
- Workflow run metadata (with an environment-based fallback)
- Jobs of the run (paginated)
- Raw log text of every job
"""
from __future__ import annotations

import datetime as dt
import logging
import os
from typing import Any, Dict, List, Optional

import requests

from logship.exceptions import ConfigurationError
from logship.storage.models import UploadTask

GITHUB_API_URL = 'https://api.github.com'
GITHUB_API_VERSION = '2022-11-28'
UNAVAILABLE_LOG = 'Log content unavailable'
PAGE_SIZE = 100


def _parse_timestamp(value: Optional[str]) -> Optional[dt.datetime]:
    if not value:
        return None
    try:
        return dt.datetime.fromisoformat(value.replace('Z', '+00:00'))
    except ValueError:
        return None


class WorkflowLogCollector:
    """
    Collects job logs of a GitHub Actions workflow run as UploadTasks.
    """

    def __init__(
        self,
        token: str,
        repository: Optional[str] = None,
        logger: Optional[logging.Logger] = None,
        api_url: str = GITHUB_API_URL,
        timeout: float = 30,
        session: Optional[requests.Session] = None
    ):
        """
        :param token: GitHub token with actions:read
        :param repository: owner/repo; defaults to GITHUB_REPOSITORY
        :param logger: Logger instance
        :param api_url: GitHub REST API base URL
        :param timeout: Per-request timeout in seconds
        :param session: Optional pre-configured requests session
        """
        repository = repository or os.getenv('GITHUB_REPOSITORY', '')
        parts = repository.split('/')
        if len(parts) != 2 or not all(parts):
            raise ConfigurationError(f"Invalid repository format: {repository!r}")

        self.owner, self.repo = parts
        self.logger = logger or logging.getLogger(__name__)
        self.api_url = api_url.rstrip('/')
        self.timeout = timeout
        self.session = session or requests.Session()
        self.session.headers.update({
            'Authorization': f'Bearer {token}',
            'Accept': 'application/vnd.github+json',
            'X-GitHub-Api-Version': GITHUB_API_VERSION,
        })

    @property
    def repository(self) -> str:
        return f"{self.owner}/{self.repo}"

    def _repo_url(self, path: str) -> str:
        return f"{self.api_url}/repos/{self.owner}/{self.repo}{path}"

    def close(self):
        self.session.close()

    def get_workflow_run(self, run_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Fetch workflow run metadata.

        Falls back to GITHUB_* environment metadata when the API call fails.

        :param run_id: Run id; defaults to GITHUB_RUN_ID
        :return: Dict with id, name, status, conclusion, created_at, html_url, repository
        """
        run_id = run_id or os.getenv('GITHUB_RUN_ID')
        if not run_id:
            raise ConfigurationError('No workflow run ID provided and GITHUB_RUN_ID not found')

        server_url = os.getenv('GITHUB_SERVER_URL', 'https://github.com')
        repository = {
            'full_name': self.repository,
            'html_url': f"{server_url}/{self.repository}",
        }

        self.logger.info(f"Fetching workflow run: {run_id}")
        try:
            response = self.session.get(self._repo_url(f"/actions/runs/{run_id}"), timeout=self.timeout)
            response.raise_for_status()
            run = response.json()
        except requests.RequestException as e:
            self.logger.warning(
                f"Could not fetch workflow run from API; continuing with environment-based metadata: {e}"
            )
            return {
                'id': int(run_id),
                'name': os.getenv('GITHUB_WORKFLOW', 'Unknown Workflow'),
                'status': None,
                'conclusion': None,
                'created_at': dt.datetime.now(dt.timezone.utc).isoformat(),
                'html_url': f"{server_url}/{self.repository}/actions/runs/{run_id}",
                'repository': repository,
            }

        return {
            'id': run['id'],
            'name': run.get('name') or 'Unknown Workflow',
            'status': run.get('status'),
            'conclusion': run.get('conclusion'),
            'created_at': run.get('created_at'),
            'html_url': run.get('html_url', ''),
            'repository': repository,
        }

    def list_jobs(self, run_id: int) -> List[Dict[str, Any]]:
        """
        List all jobs of a workflow run, following pagination.

        :return: Job dicts; empty when the API call fails
        """
        self.logger.info(f"Fetching jobs for workflow run: {run_id}")
        jobs: List[Dict[str, Any]] = []
        page = 1
        try:
            while True:
                response = self.session.get(
                    self._repo_url(f"/actions/runs/{run_id}/jobs"),
                    params={'per_page': PAGE_SIZE, 'page': page},
                    timeout=self.timeout
                )
                response.raise_for_status()
                data = response.json()
                batch = data.get('jobs', [])
                jobs.extend(batch)
                if len(batch) < PAGE_SIZE or len(jobs) >= data.get('total_count', 0):
                    break
                page += 1
        except requests.RequestException as e:
            self.logger.warning(
                f"Could not list jobs for workflow run {run_id}; continuing without job details: {e}"
            )
            return []
        return jobs

    def download_job_log(self, job: Dict[str, Any]) -> UploadTask:
        """
        Download the raw log of one job.

        :param job: Job dict with id, name and optional started_at / completed_at
        :return: UploadTask; content is a placeholder when the download fails
        """
        job_id, job_name = job['id'], job.get('name', str(job['id']))
        created_at = (
            _parse_timestamp(job.get('completed_at'))
            or _parse_timestamp(job.get('started_at'))
            or dt.datetime.now(dt.timezone.utc)
        )

        self.logger.info(f"Downloading logs for job: {job_name} ({job_id})")
        try:
            # GitHub answers with a redirect to the log blob, which requests follows
            response = self.session.get(self._repo_url(f"/actions/jobs/{job_id}/logs"), timeout=self.timeout)
            response.raise_for_status()
            content = response.text
        except requests.RequestException as e:
            self.logger.warning(f"Failed to download logs for job {job_name}; continuing without logs: {e}")
            content = UNAVAILABLE_LOG

        return UploadTask(name=job_name, id=job_id, content=content, created_at=created_at)

    def collect(self, run_id: int) -> List[UploadTask]:
        """
        Download the logs of every job in a workflow run.

        :param run_id: Workflow run id
        :return: One UploadTask per job, in job order
        """
        jobs = self.list_jobs(run_id)
        self.logger.info(f"Found {len(jobs)} jobs to download logs for")

        tasks = [self.download_job_log(job) for job in jobs]
        downloaded = sum(1 for task in tasks if task.content != UNAVAILABLE_LOG)
        self.logger.info(f"Successfully downloaded logs for {downloaded}/{len(jobs)} jobs")
        return tasks
