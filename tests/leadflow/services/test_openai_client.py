"""Tests for leadflow.services.openai_client — response parsing and error mapping."""
import json
from unittest.mock import patch, MagicMock

import openai
import pytest

from leadflow.pipeline.base import ProviderError, ScrapedSite, PRESCREEN_FALLBACK_REASON
from leadflow.services.openai_client import OpenAIAnalyzer, parse_prescreen, parse_report

LEAD = {'name': "McDonald's Manly", 'address': '1 The Corso, Manly', 'website': 'mcdonalds.com.au'}


def _completion(content):
    response = MagicMock()
    response.choices = [MagicMock()]
    response.choices[0].message.content = content
    return response


@pytest.fixture
def mock_client():
    client = MagicMock()
    with patch('leadflow.services.openai_client.client', client):
        yield client


class TestParsePrescreen:

    def test_skip_verdict(self):
        verdict = parse_prescreen({
            'decision': 'skip', 'is_national_brand': True,
            'confidence': 'high', 'reason': 'Global fast food chain',
        })
        assert verdict.should_research is False
        assert verdict.result == 'skip'
        assert verdict.is_national_brand is True
        assert verdict.confidence == 'high'

    def test_unrecognised_decision_fails_open(self):
        verdict = parse_prescreen({'decision': 'maybe'})
        assert verdict.should_research is True
        assert verdict.reason == PRESCREEN_FALLBACK_REASON
        assert verdict.confidence == 'low'

    def test_unknown_confidence_becomes_low(self):
        assert parse_prescreen({'decision': 'research', 'confidence': 'certain'}).confidence == 'low'


class TestParseReport:

    def test_normalizes_grade_and_lists(self):
        report = parse_report({
            'grade': ' b ',
            'grade_reasoning': 'Solid local operator',
            'suggested_hooks': 'Ask about winter demand',
            'pain_points': ['Phone bookings', ''],
        })
        assert report.grade == 'B'
        assert report.suggested_hooks == ['Ask about winter demand']
        assert report.pain_points == ['Phone bookings']
        assert report.opportunities == []


class TestOpenAIAnalyzer:

    def test_prescreen_requests_json(self, mock_client):
        mock_client.chat.completions.create.return_value = _completion(json.dumps({
            'decision': 'skip', 'is_franchise': True, 'confidence': 'high', 'reason': 'Franchise outlet',
        }))

        verdict = OpenAIAnalyzer().prescreen(LEAD, 'cafes')

        assert verdict.is_franchise is True
        kwargs = mock_client.chat.completions.create.call_args.kwargs
        assert kwargs['response_format'] == {'type': 'json_object'}
        assert "McDonald's Manly" in kwargs['messages'][1]['content']

    def test_research_includes_site_content(self, mock_client):
        mock_client.chat.completions.create.return_value = _completion(json.dumps({
            'grade': 'A', 'grade_reasoning': 'Great fit', 'report': 'Report',
        }))
        site = ScrapedSite(main_content='Family plumbing business', team_size='small (1-10)')

        report = OpenAIAnalyzer().research(LEAD, site, 'plumbers')

        assert report.grade == 'A'
        prompt = mock_client.chat.completions.create.call_args.kwargs['messages'][1]['content']
        assert 'Family plumbing business' in prompt

    def test_api_error_becomes_provider_error(self, mock_client):
        mock_client.chat.completions.create.side_effect = openai.OpenAIError('server overloaded')
        with pytest.raises(ProviderError, match='overloaded'):
            OpenAIAnalyzer().research(LEAD, ScrapedSite(main_content='x'), 'plumbers')

    def test_unparseable_json_is_provider_error(self, mock_client):
        mock_client.chat.completions.create.return_value = _completion('not json')
        with pytest.raises(ProviderError):
            OpenAIAnalyzer().deep_research(LEAD, ScrapedSite(main_content='x'), 'plumbers')

    def test_missing_client(self):
        with patch('leadflow.services.openai_client.client', None):
            with pytest.raises(ProviderError):
                OpenAIAnalyzer().prescreen(LEAD, 'cafes')
