"""
Unit tests for storage.app module
Tests the UploadApp workflow with mocked API, collector and orchestrator
"""
import datetime as dt
import os
from pathlib import Path
from unittest.mock import AsyncMock, Mock, patch

import pytest
from botocore.exceptions import ClientError

from logship.exceptions import ApiError, UploadError
from logship.storage.app import UploadApp, build_metadata
from logship.storage.credentials import CredentialProvider
from logship.storage.models import RELEASED_CONTENT, BatchOutcome, UploadResult, UploadTask
from logship.storage.utils import UploadConfig
from logship.utils.validation import UploadInputs

ABSENT_CONFIG = str(Path(__file__).parent / 'absent-upload.yaml')

RUN = {
    'id': 99,
    'name': 'CI',
    'status': 'completed',
    'conclusion': 'failure',
    'created_at': '2024-05-01T12:00:00Z',
    'html_url': 'https://github.com/acme/app/actions/runs/99',
    'repository': {'full_name': 'acme/app', 'html_url': 'https://github.com/acme/app'},
}


def _inputs(**overrides):
    values = dict(
        api_key='lk_live_a8f3k2m9q7',
        api_endpoint='https://api.example.org',
        github_token='ghs_' + 'a' * 36,
        run_id='99',
        retry_attempts=2,
        retry_delay=0.5,
        path_prefix='logs',
    )
    values.update(overrides)
    return UploadInputs(**values)


def _result(name):
    return UploadResult(f'https://ci-logs.s3.amazonaws.com/{name}', 'ci-logs', name, '"etag"')


def _tasks():
    created = dt.datetime(2024, 5, 1, 12, 0, tzinfo=dt.timezone.utc)
    return [
        UploadTask(name='build', id=1, content='build log', created_at=created),
        UploadTask(name='test', id=2, content='test log', created_at=created),
    ]


def _make_app(run=None, tasks=None, outcome=None, consolidated=False, include_successful=False):
    app = UploadApp.__new__(UploadApp)
    app.inputs = _inputs()
    app.config = UploadConfig(ABSENT_CONFIG)
    app.consolidated = consolidated
    app.include_successful = include_successful
    app.logger = Mock()
    app.server_address = 'https://github.com'

    app.api = Mock()
    app.api.notify_upload_complete.return_value = {
        'analysis_id': '42', 'analysis_url': 'https://app.hycos.ai/ci-analysis/42'
    }
    app.collector = Mock()
    app.collector.get_workflow_run.return_value = run or RUN
    app.collector.collect.return_value = _tasks() if tasks is None else tasks

    orchestrator = Mock()
    orchestrator.upload_batch = AsyncMock(
        return_value=outcome or BatchOutcome(results=[_result('a.log'), _result('b.log')])
    )
    orchestrator.upload_consolidated = AsyncMock(return_value=_result('consolidated.log'))
    app._orchestrator = Mock(return_value=orchestrator)

    app.outputs = UploadApp._initial_outputs()
    return app, orchestrator


class TestWorkflow:
    def test_failed_run_uploads_and_notifies(self):
        app, orchestrator = _make_app()

        outputs = app.run()

        assert outputs == {
            'upload_status': 'success',
            'files_uploaded': 2,
            's3_url': 'https://ci-logs.s3.amazonaws.com/a.log',
            'notification_status': 'success',
            'analysis_id': '42',
            'analysis_url': 'https://app.hycos.ai/ci-analysis/42',
            'failures': [],
        }
        app.api.register_server.assert_called_once_with('https://github.com', 'GITHUB_ACTIONS')
        app.collector.get_workflow_run.assert_called_once_with('99')
        app.collector.collect.assert_called_once_with(99)
        orchestrator.upload_batch.assert_awaited_once()

        results, metadata, server, server_type = app.api.notify_upload_complete.call_args.args
        assert [r.object_key for r in results] == ['a.log', 'b.log']
        assert metadata['buildNumber'] == '99'
        assert metadata['buildStatus'] == 'failure'
        assert server == 'https://github.com'

    @pytest.mark.parametrize('conclusion', ['success', 'neutral', 'skipped'])
    def test_non_failure_run_skipped(self, conclusion):
        app, orchestrator = _make_app(run={**RUN, 'conclusion': conclusion})

        outputs = app.run()

        assert outputs['upload_status'] == 'skipped'
        assert outputs['notification_status'] == 'skipped'
        app.collector.collect.assert_not_called()
        orchestrator.upload_batch.assert_not_awaited()

    def test_include_successful(self):
        app, orchestrator = _make_app(run={**RUN, 'conclusion': 'success'}, include_successful=True)

        outputs = app.run()

        assert outputs['upload_status'] == 'success'
        orchestrator.upload_batch.assert_awaited_once()

    def test_no_logs(self):
        app, orchestrator = _make_app(tasks=[])

        outputs = app.run()

        assert outputs['upload_status'] == 'failed'
        assert outputs['notification_status'] == 'not-attempted'
        orchestrator.upload_batch.assert_not_awaited()
        app.api.notify_upload_complete.assert_not_called()

    def test_nothing_uploaded_raises(self):
        outcome = BatchOutcome(failures=[('build', 'denied'), ('test', 'denied')])
        app, _ = _make_app(outcome=outcome)

        with pytest.raises(UploadError, match='Failed to upload any logs'):
            app.run()

        assert app.outputs['upload_status'] == 'failed'
        assert app.outputs['failures'] == [('build', 'denied'), ('test', 'denied')]
        app.api.notify_upload_complete.assert_not_called()

    def test_partial_failures_reported(self):
        outcome = BatchOutcome(results=[_result('a.log')], failures=[('test', 'denied')])
        app, _ = _make_app(outcome=outcome)

        outputs = app.run()

        assert outputs['files_uploaded'] == 1
        assert outputs['failures'] == [('test', 'denied')]

    def test_consolidated_upload(self):
        tasks = _tasks()
        app, orchestrator = _make_app(tasks=tasks, consolidated=True)

        outputs = app.run()

        orchestrator.upload_consolidated.assert_awaited_once_with(tasks)
        orchestrator.upload_batch.assert_not_awaited()
        assert outputs['files_uploaded'] == 1
        assert all(task.content == RELEASED_CONTENT for task in tasks)

    def test_consolidated_transfer_error_wrapped(self):
        app, orchestrator = _make_app(consolidated=True)
        orchestrator.upload_consolidated.side_effect = ClientError(
            {'Error': {'Code': 'AccessDenied'}, 'ResponseMetadata': {'HTTPStatusCode': 403}}, 'PutObject'
        )

        with pytest.raises(UploadError, match='Consolidated upload failed'):
            app.run()

    def test_registration_failure_propagates(self):
        app, _ = _make_app()
        app.api.register_server.side_effect = ApiError('nope', status=401)

        with pytest.raises(ApiError):
            app.run()

        app.collector.get_workflow_run.assert_not_called()
        assert app.outputs['upload_status'] == 'failed'


class TestRetryPolicy:
    def test_policy_from_inputs(self):
        app, _ = _make_app()
        policy = app.retry_policy()
        assert policy.max_attempts == 2
        assert policy.initial_delay_ms == 500
        assert policy.max_delay_ms == 10000
        assert policy.backoff_factor == 2

    def test_long_delay_raises_cap(self):
        app, _ = _make_app()
        app.inputs = _inputs(retry_delay=30)
        assert app.retry_policy().max_delay_ms == 30000


def test_build_metadata():
    env = {'GITHUB_HEAD_REF': '', 'GITHUB_REF_NAME': 'main', 'GITHUB_SHA': 'abc123', 'GITHUB_ACTOR': 'octo'}
    with patch.dict(os.environ, env):
        metadata = build_metadata(RUN)

    assert metadata == {
        'jobName': 'CI',
        'buildNumber': '99',
        'repository': 'acme/app',
        'branch': 'main',
        'commit': 'abc123',
        'buildUrl': 'https://github.com/acme/app/actions/runs/99',
        'triggeredBy': 'octo',
        'buildStatus': 'failure',
    }


class TestLocalBackendEndToEnd:
    def test_logs_written_to_local_storage(self, tmp_path):
        env = {'STORAGE_BACKEND': 'local', 'LOCAL_STORAGE_PATH': str(tmp_path / 'store'),
               'GITHUB_REPOSITORY': 'acme/app'}
        with patch.dict(os.environ, env):
            app = UploadApp(_inputs(), config=UploadConfig(ABSENT_CONFIG), logger=Mock())

        app.api = Mock()
        app.api.get_cloud_credentials.return_value = {
            'access_id': 'AKIA1',
            'secret_key': 'secret',
            'session_token': 'token',
            'expires_at': None,
            'container_name': 'ci-logs',
        }
        app.api.notify_upload_complete.return_value = {'analysis_id': '7', 'analysis_url': 'u'}
        app.credentials = CredentialProvider(app.api.get_cloud_credentials, logger=Mock())
        app.collector = Mock()
        app.collector.get_workflow_run.return_value = RUN
        app.collector.collect.return_value = _tasks()

        outputs = app.run()

        assert outputs['files_uploaded'] == 2
        stored = sorted(p.name for p in (tmp_path / 'store' / 'ci-logs' / 'logs' / '2024-05-01' / '99').glob('*.log'))
        assert stored == ['build_1714564800000.log', 'test_1714564800000.log']
        assert outputs['s3_url'].startswith('file://')
