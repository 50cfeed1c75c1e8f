"""Tests for structured logging configuration."""
import json
import logging
import os
import sys
from unittest.mock import patch, MagicMock

import pytest

from leadflow.logging_config import configure_logging, JSONFormatter, JobContextFilter


@pytest.fixture(autouse=True)
def _restore_root_logger():
    root = logging.getLogger()
    level, handlers = root.level, root.handlers[:]
    yield
    root.setLevel(level)
    root.handlers = handlers


class TestConfigureLogging:

    def test_default_level_is_info(self):
        with patch.dict(os.environ, {}, clear=False):
            os.environ.pop('LOG_LEVEL', None)
            configure_logging()
        assert logging.getLogger().level == logging.INFO

    @pytest.mark.parametrize('value,expected', [
        ('DEBUG', logging.DEBUG),
        ('warning', logging.WARNING),
        ('NONSENSE', logging.INFO),
    ])
    def test_level_from_env(self, value, expected):
        with patch.dict(os.environ, {'LOG_LEVEL': value}):
            configure_logging()
        assert logging.getLogger().level == expected

    def test_reconfigure_does_not_duplicate_handlers(self):
        configure_logging()
        configure_logging()
        assert len(logging.getLogger().handlers) == 1

    def test_quiets_worker_logger(self):
        configure_logging()
        assert logging.getLogger('rq.worker').level == logging.WARNING

    def test_sets_flask_logger_level(self):
        app = MagicMock()
        with patch.dict(os.environ, {'LOG_LEVEL': 'ERROR'}):
            configure_logging(app)
        app.logger.setLevel.assert_called_once_with(logging.ERROR)

    def test_text_format(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'text'}):
            configure_logging()
        logging.getLogger('pipeline.runs').info("Run %s created", 'abc')
        output = capsys.readouterr().err
        assert 'INFO pipeline.runs: Run abc created' in output

    def test_json_format(self, capsys):
        with patch.dict(os.environ, {'LOG_FORMAT': 'json'}):
            configure_logging()
        logging.getLogger('pipeline.leads').warning("Lead %d failed", 7)
        parsed = json.loads(capsys.readouterr().err.strip())
        assert parsed['level'] == 'WARNING'
        assert parsed['logger'] == 'pipeline.leads'
        assert parsed['message'] == 'Lead 7 failed'
        assert 'timestamp' in parsed


class TestJSONFormatter:

    def _record(self, **extra):
        record = logging.LogRecord('worker', logging.INFO, __file__, 1, 'handled', None, None)
        for key, value in extra.items():
            setattr(record, key, value)
        return record

    def test_includes_job_id(self):
        parsed = json.loads(JSONFormatter().format(self._record(job_id='job-123')))
        assert parsed['job_id'] == 'job-123'

    def test_omits_job_id_when_absent(self):
        assert 'job_id' not in json.loads(JSONFormatter().format(self._record()))

    def test_includes_exception(self):
        try:
            raise ValueError("boom")
        except ValueError:
            record = logging.LogRecord('worker', logging.ERROR, __file__, 1, 'failed', None, sys.exc_info())
        parsed = json.loads(JSONFormatter().format(record))
        assert 'ValueError: boom' in parsed['exception']


class TestJobContextFilter:

    def _record(self):
        return logging.LogRecord('pipeline.leads', logging.INFO, __file__, 1, 'researching', None, None)

    @patch('leadflow.logging_config.get_current_job')
    def test_tags_records_inside_a_job(self, mock_job):
        mock_job.return_value = MagicMock(id='0123456789abcdef')
        record = self._record()

        assert JobContextFilter().filter(record) is True
        assert record.job_id == '0123456789abcdef'
        assert record.job_tag == ' [job 01234567]'

    @patch('leadflow.logging_config.get_current_job', return_value=None)
    def test_outside_a_job(self, mock_job):
        record = self._record()
        JobContextFilter().filter(record)
        assert record.job_id is None
        assert record.job_tag == ''

    @patch('leadflow.logging_config.get_current_job')
    def test_job_id_in_text_output(self, mock_job, capsys):
        mock_job.return_value = MagicMock(id='feedfacecafe')
        with patch.dict(os.environ, {'LOG_FORMAT': 'text'}):
            configure_logging()
        logging.getLogger('pipeline.leads').info("Lead 3 researched")
        assert 'pipeline.leads [job feedface]: Lead 3 researched' in capsys.readouterr().err
