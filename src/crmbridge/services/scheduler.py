"""
Cloud Scheduler service for the queue processing job.

The sync queue is drained by an HTTP call to the bridge; a Cloud Scheduler
job makes that call on a fixed schedule.
"""

import logging
from typing import Dict, Any, Optional

from google.api_core.exceptions import NotFound
from google.auth import default
from google.cloud import scheduler_v1

logger = logging.getLogger(__name__)

QUEUE_JOB_NAME = "crmbridge-process-queue"
QUEUE_ENDPOINT = "/api/v1/queue/process"
DEFAULT_QUEUE_SCHEDULE = "* * * * *"


class SchedulerService:
    """
    Service for managing the Cloud Scheduler job that processes the sync queue.
    """

    def __init__(self, project_id: Optional[str] = None, region: str = "us-central1",
                 client: Optional[scheduler_v1.CloudSchedulerClient] = None):
        """
        Initialize Cloud Scheduler service.

        Args:
            project_id: Google Cloud project ID. If None, uses default from environment.
            region: Cloud Scheduler location
            client: Pre-built scheduler client
        """
        try:
            if client is not None:
                self.client = client
                self.project_id = project_id
            elif project_id:
                self.client = scheduler_v1.CloudSchedulerClient()
                self.project_id = project_id
            else:
                # Use application default credentials
                credentials, project = default()
                self.client = scheduler_v1.CloudSchedulerClient(credentials=credentials)
                self.project_id = project

            self.region = region
            self.parent = f"projects/{self.project_id}/locations/{self.region}"
            self.job_path = f"{self.parent}/jobs/{QUEUE_JOB_NAME}"

            logger.info(f"Scheduler service initialized for project: {self.project_id}, region: {self.region}")

        except Exception as e:
            logger.error(f"Failed to initialize Cloud Scheduler: {e}")
            raise

    def _job(self, service_url: str, schedule: str, service_account: Optional[str]) -> Dict[str, Any]:
        account = service_account or f"crmbridge-sa@{self.project_id}.iam.gserviceaccount.com"
        return {
            "name": self.job_path,
            "description": "Process pending CRM bridge syncs",
            "schedule": schedule,
            "time_zone": "UTC",
            "http_target": {
                "uri": f"{service_url.rstrip('/')}{QUEUE_ENDPOINT}",
                "http_method": scheduler_v1.HttpMethod.POST,
                "headers": {"Content-Type": "application/json"},
                "body": b'{"triggered_by": "scheduler"}',
                "oidc_token": {"service_account_email": account},
            },
        }

    def ensure_queue_job(self, service_url: str, schedule: str = DEFAULT_QUEUE_SCHEDULE,
                         service_account: Optional[str] = None) -> Dict[str, Any]:
        """
        Create the queue job, or update it if it already exists.

        Args:
            service_url: Base URL of the bridge API
            schedule: Cron expression, every minute by default
            service_account: Service account used for the OIDC token

        Returns:
            Dictionary with scheduler job details
        """
        job = self._job(service_url, schedule, service_account)
        try:
            try:
                self.client.get_job(name=self.job_path)
                response = self.client.update_job(job=job)
                logger.info(f"Updated scheduler job: {QUEUE_JOB_NAME} with schedule: {schedule}")
            except NotFound:
                response = self.client.create_job(parent=self.parent, job=job)
                logger.info(f"Created scheduler job: {QUEUE_JOB_NAME} with schedule: {schedule}")

            return {
                "job_name": QUEUE_JOB_NAME,
                "job_path": response.name,
                "schedule": schedule,
                "status": "ENABLED",
                "uri": job["http_target"]["uri"],
            }

        except Exception as e:
            logger.error(f"Failed to create queue schedule: {e}")
            raise

    def get_queue_job(self) -> Optional[Dict[str, Any]]:
        """Job details, None if the job does not exist."""
        try:
            job = self.client.get_job(name=self.job_path)
        except NotFound:
            return None

        return {
            "job_name": QUEUE_JOB_NAME,
            "job_path": job.name,
            "schedule": job.schedule,
            "time_zone": job.time_zone,
            "status": job.state.name,
            "uri": job.http_target.uri if job.http_target else None,
        }

    def delete_queue_job(self) -> bool:
        """
        Delete the queue job.

        Returns:
            True if deleted, False if not found
        """
        try:
            self.client.delete_job(name=self.job_path)
            logger.info(f"Deleted scheduler job: {QUEUE_JOB_NAME}")
            return True
        except NotFound:
            logger.warning(f"Scheduler job not found: {QUEUE_JOB_NAME}")
            return False

    def pause_queue_job(self) -> bool:
        try:
            self.client.pause_job(name=self.job_path)
            logger.info(f"Paused scheduler job: {QUEUE_JOB_NAME}")
            return True
        except NotFound:
            return False

    def resume_queue_job(self) -> bool:
        try:
            self.client.resume_job(name=self.job_path)
            logger.info(f"Resumed scheduler job: {QUEUE_JOB_NAME}")
            return True
        except NotFound:
            return False
