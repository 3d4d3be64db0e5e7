"""
Unit tests for logship.cli
"""
import os
from unittest.mock import patch

import pytest

from logship import cli
from logship.exceptions import UploadError

GOOD_ARGS = [
    '--api-key', 'lk_live_a8f3k2m9q7',
    '--api-endpoint', 'https://api.example.org',
    '--github-token', 'ghs_' + 'a' * 36,
    '--run-id', '99',
    '--config', 'does-not-exist.yaml',
]

OUTPUTS = {
    'upload_status': 'success',
    'files_uploaded': 2,
    's3_url': 'https://ci-logs.s3.amazonaws.com/a.log',
    'notification_status': 'success',
    'analysis_id': '42',
    'analysis_url': 'https://app.hycos.ai/ci-analysis/42',
    'failures': [],
}


class TestMain:
    @patch('logship.storage.app.UploadApp')
    def test_runs_app_with_validated_inputs(self, mock_app_cls, tmp_path):
        mock_app_cls.return_value.run.return_value = OUTPUTS
        output_file = tmp_path / 'out.txt'

        with patch.dict(os.environ, {'GITHUB_OUTPUT': str(output_file)}):
            code = cli.main(GOOD_ARGS + ['--retry-delay', '1.5', '--consolidated', '--path-prefix', '/ci/'])

        assert code == 0
        inputs = mock_app_cls.call_args.args[0]
        assert inputs.retry_delay_ms == 1500
        assert inputs.path_prefix == 'ci'
        assert mock_app_cls.call_args.kwargs['consolidated'] is True
        assert mock_app_cls.call_args.kwargs['include_successful'] is False
        mock_app_cls.return_value.close.assert_called_once()

        lines = output_file.read_text().splitlines()
        assert 'upload-status=success' in lines
        assert 'files-uploaded=2' in lines
        assert 'analysis-id=42' in lines

    @patch('logship.storage.app.UploadApp')
    def test_failure_returns_one(self, mock_app_cls):
        app = mock_app_cls.return_value
        app.run.side_effect = UploadError('Failed to upload any logs')
        app.outputs = {**OUTPUTS, 'upload_status': 'failed'}

        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop('GITHUB_OUTPUT', None)
            code = cli.main(GOOD_ARGS)

        assert code == 1
        app.logger.error.assert_called_once()
        app.close.assert_called_once()

    @pytest.mark.parametrize('extra', [
        ['--retry-attempts', '11'],
        ['--retry-delay', '0.01'],
        ['--path-prefix', '../etc'],
    ])
    def test_invalid_inputs_exit(self, extra):
        with pytest.raises(SystemExit) as exc_info:
            cli.main(GOOD_ARGS + extra)
        assert exc_info.value.code == 2

    def test_missing_api_key_exit(self):
        args = [a for a in GOOD_ARGS]
        args[1] = ''
        with pytest.raises(SystemExit):
            cli.main(args)


def test_write_outputs_without_target_is_noop(tmp_path):
    with patch.dict(os.environ, {}, clear=True):
        cli.write_outputs(OUTPUTS)
    assert list(tmp_path.iterdir()) == []
