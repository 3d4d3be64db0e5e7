"""
Upload application orchestrator.

Runs the CI log shipping workflow end to end:
register server -> fetch run -> collect logs -> upload -> notify.
"""

import asyncio
import functools
import logging
import os
from pathlib import Path
from typing import Any, Dict, List, Optional

from botocore.exceptions import BotoCoreError, ClientError
from dotenv import load_dotenv

from logship.exceptions import UploadError
from logship.utils.logger import setup_logger, console_log
from logship.utils.validation import UploadInputs
from logship.storage.clients import ApiClient, S3Client
from logship.storage.credentials import CredentialProvider
from logship.storage.models import UploadResult, UploadTask
from logship.storage.pipeline import LogPublisher, WorkflowLogCollector
from logship.storage.retry import RetryPolicy
from logship.storage.uploader import UploadOrchestrator
from logship.storage.utils import UploadConfig, LoggingProgressObserver

load_dotenv()

SERVER_TYPE = 'GITHUB_ACTIONS'
NON_FAILURE_CONCLUSIONS = ('success', 'neutral', 'skipped')


def build_metadata(workflow_run: Dict[str, Any]) -> Dict[str, str]:
    """Build details sent with the upload notification."""
    return {
        'jobName': workflow_run['name'],
        'buildNumber': str(workflow_run['id']),
        'repository': workflow_run['repository']['full_name'],
        'branch': os.getenv('GITHUB_HEAD_REF') or os.getenv('GITHUB_REF_NAME') or 'unknown',
        'commit': os.getenv('GITHUB_SHA') or 'unknown',
        'buildUrl': workflow_run.get('html_url') or '',
        'triggeredBy': os.getenv('GITHUB_ACTOR') or 'unknown',
        'buildStatus': workflow_run.get('conclusion') or 'unknown',
    }


class UploadApp:
    """
    Orchestrates the log upload workflow.

    Owns the shared resources (API session, GitHub session, storage client)
    and builds one UploadOrchestrator per workflow run.
    """

    def __init__(
        self,
        inputs: UploadInputs,
        config: Optional[UploadConfig] = None,
        consolidated: bool = False,
        include_successful: bool = False,
        log_dir: str | Path = 'logs/logship',
        verbose: bool = False,
        logger: Optional[logging.Logger] = None
    ):
        """
        :param inputs: Validated workflow inputs
        :param config: Upload configuration (default: configs/upload.yaml)
        :param consolidated: Upload a single concatenated object instead of one per job
        :param include_successful: Upload logs even when the run did not fail
        :param log_dir: Directory for the log file
        :param verbose: Log at DEBUG level
        :param logger: Logger instance (default: file + console logger)
        """
        self.inputs = inputs
        self.config = config or UploadConfig()
        self.consolidated = consolidated
        self.include_successful = include_successful
        self.logger = logger or setup_logger(
            name='logship',
            log_dir=os.getenv('LOGSHIP_LOG_DIR') or log_dir,
            level=logging.DEBUG if verbose else logging.INFO,
            console_output=True
        )

        self.server_address = os.getenv('GITHUB_SERVER_URL', 'https://github.com')
        self.api = ApiClient(
            inputs.api_endpoint,
            inputs.api_key,
            logger=self.logger,
            retry_policy=self.retry_policy()
        )
        self.collector = WorkflowLogCollector(inputs.github_token, logger=self.logger)
        self.storage = S3Client(self.config)
        self.publisher = LogPublisher(
            self.storage,
            logger=self.logger,
            part_size=self.config.part_size,
            queue_size=self.config.queue_size
        )
        self.credentials = CredentialProvider(self.api.get_cloud_credentials, logger=self.logger)
        self.progress = LoggingProgressObserver(self.logger)
        self.outputs = self._initial_outputs()

    @staticmethod
    def _initial_outputs() -> Dict[str, Any]:
        return {
            'upload_status': 'failed',
            'files_uploaded': 0,
            's3_url': '',
            'notification_status': 'failed',
            'analysis_id': '',
            'analysis_url': '',
            'failures': [],
        }

    def retry_policy(self) -> RetryPolicy:
        """Per-task retry policy: attempts and initial delay from inputs, the rest from config."""
        configured = self.config.retry_policy()
        initial = self.inputs.retry_delay_ms
        return RetryPolicy(
            max_attempts=self.inputs.retry_attempts,
            initial_delay_ms=initial,
            max_delay_ms=max(configured.max_delay_ms, initial),
            backoff_factor=configured.backoff_factor
        )

    def _orchestrator(self, workflow_run: Dict[str, Any]) -> UploadOrchestrator:
        return UploadOrchestrator(
            publisher=self.publisher,
            credentials=self.credentials,
            batch_id=workflow_run['id'],
            path_prefix=self.inputs.path_prefix,
            workflow_name=workflow_run['name'],
            retry_policy=self.retry_policy(),
            logger=self.logger,
            on_progress=self.progress,
            slice_pause=self.config.slice_pause
        )

    async def _blocking(self, func, *args, **kwargs):
        loop = asyncio.get_running_loop()
        return await loop.run_in_executor(None, functools.partial(func, *args, **kwargs))

    async def _upload(self, orchestrator: UploadOrchestrator, tasks: List[UploadTask]) -> List[UploadResult]:
        if self.consolidated:
            try:
                result = await orchestrator.upload_consolidated(tasks)
            except (ClientError, BotoCoreError, OSError) as e:
                raise UploadError(f"Consolidated upload failed: {e}") from e
            finally:
                for task in tasks:
                    task.release()
            return [result]

        outcome = await orchestrator.upload_batch(tasks)
        self.outputs['failures'] = list(outcome.failures)
        return outcome.results

    async def arun(self) -> Dict[str, Any]:
        """
        Execute the workflow.

        :return: Outputs dict with upload_status, files_uploaded, s3_url,
            notification_status, analysis_id, analysis_url, failures
        :raises UploadError: Logs were collected but none could be uploaded
        """
        self.outputs = self._initial_outputs()
        outputs = self.outputs

        console_log(self.logger, 'Server Registration', section=True)
        await self._blocking(self.api.register_server, self.server_address, SERVER_TYPE)

        console_log(self.logger, 'Workflow Information', section=True)
        workflow_run = await self._blocking(self.collector.get_workflow_run, self.inputs.run_id)
        self.logger.info(f"Workflow: {workflow_run['name']}")
        self.logger.info(f"Run ID: {workflow_run['id']}")
        self.logger.info(f"Status: {workflow_run.get('status') or 'Unknown'}")
        self.logger.info(f"Conclusion: {workflow_run.get('conclusion') or 'N/A'}")

        conclusion = workflow_run.get('conclusion')
        if conclusion in NON_FAILURE_CONCLUSIONS and not self.include_successful:
            self.logger.info(f"Workflow concluded with '{conclusion}', skipping log upload")
            outputs.update(upload_status='skipped', notification_status='skipped')
            return outputs

        console_log(self.logger, 'Downloading Build Logs', section=True)
        tasks = await self._blocking(self.collector.collect, workflow_run['id'])
        if not tasks:
            self.logger.warning('No logs found for this workflow run')
            outputs.update(notification_status='not-attempted')
            return outputs

        total_size = sum(task.size for task in tasks)
        self.logger.info(f"Downloaded {len(tasks)} log files ({total_size / 1024 / 1024:.2f} MB)")

        console_log(self.logger, 'Uploading Logs', section=True)
        results = await self._upload(self._orchestrator(workflow_run), tasks)
        if not results:
            raise UploadError('Failed to upload any logs')

        outputs.update(
            upload_status='success',
            files_uploaded=len(results),
            s3_url=results[0].location
        )
        self.logger.info(f"Uploaded {len(results)} files, primary URL: {outputs['s3_url']}")

        console_log(self.logger, 'Upload Notification', section=True)
        analysis = await self._blocking(
            self.api.notify_upload_complete,
            results,
            build_metadata(workflow_run),
            self.server_address,
            SERVER_TYPE
        )
        outputs.update(notification_status='success', **analysis)
        if outputs['analysis_url']:
            self.logger.info(f"Analysis: {outputs['analysis_url']}")

        self.logger.info(f"Summary: {outputs['files_uploaded']} files uploaded and API notified")
        return outputs

    def run(self) -> Dict[str, Any]:
        """Synchronous entry point around arun()."""
        return asyncio.run(self.arun())

    def close(self):
        self.api.close()
        self.collector.close()
