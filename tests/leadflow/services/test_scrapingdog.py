"""Tests for leadflow.services.scrapingdog — Maps discovery and website lookup."""
from unittest.mock import patch, MagicMock

import pytest
import requests

from leadflow.pipeline.base import ProviderError
from leadflow.services.scrapingdog import (
    ScrapingdogMaps, ScrapingdogWebsiteFinder, parse_maps_results, pick_official_website,
)

MAPS_PAYLOAD = {
    'search_results': [
        {
            'title': 'Harbourside Plumbing',
            'place_id': 'ChIJ123',
            'address': '1 Wharf Rd, Sydney',
            'phone': '02 9555 0101',
            'website': 'https://harbourside.com.au',
            'gps_coordinates': {'latitude': -33.86, 'longitude': 151.21},
        },
        {'title': 'Closed Pipes', 'data_id': '0x99', 'open_state': 'Permanently closed'},
        {'title': 'Drain Kings', 'data_id': '0x42'},
        {'address': 'no title'},
    ],
}


@pytest.fixture
def api_key():
    with patch('leadflow.services.scrapingdog.SCRAPINGDOG_API_KEY', 'dog-key'):
        yield


def _response(payload, status=200):
    resp = MagicMock()
    resp.json.return_value = payload
    if status >= 400:
        resp.raise_for_status.side_effect = requests.HTTPError(str(status))
    return resp


class TestParseMapsResults:

    def test_skips_closed_and_untitled(self):
        records = parse_maps_results(MAPS_PAYLOAD, limit=10)

        assert [r.name for r in records] == ['Harbourside Plumbing', 'Drain Kings']
        assert records[0].latitude == -33.86
        assert records[1].place_id == '0x42'

    def test_respects_limit(self):
        assert len(parse_maps_results(MAPS_PAYLOAD, limit=1)) == 1

    def test_empty_payload(self):
        assert parse_maps_results({}, limit=5) == []


class TestScrapingdogMaps:

    @patch('leadflow.services.scrapingdog.requests.get')
    def test_search(self, mock_get, api_key):
        mock_get.return_value = _response(MAPS_PAYLOAD)

        records = ScrapingdogMaps().search('plumbers', 'Sydney NSW', 20)

        assert len(records) == 2
        params = mock_get.call_args.kwargs['params']
        assert params['query'] == 'plumbers in Sydney NSW'
        assert params['api_key'] == 'dog-key'

    @patch('leadflow.services.scrapingdog.requests.get')
    def test_http_error_is_provider_error(self, mock_get, api_key):
        mock_get.return_value = _response({}, status=502)
        with pytest.raises(ProviderError):
            ScrapingdogMaps().search('plumbers', 'Sydney NSW', 20)

    def test_missing_key(self):
        with patch('leadflow.services.scrapingdog.SCRAPINGDOG_API_KEY', None):
            with pytest.raises(ProviderError):
                ScrapingdogMaps().search('plumbers', 'Sydney NSW', 20)


class TestWebsiteLookup:

    def test_prefers_result_naming_the_business(self):
        results = [
            {'title': 'Ironbark Carpentry - Yelp', 'link': 'https://www.yelp.com/biz/ironbark'},
            {'title': 'Best carpenters in Sydney', 'link': 'https://carpenters.example.com'},
            {'title': 'Ironbark Carpentry | Home', 'link': 'https://ironbarkcarpentry.com.au'},
        ]
        assert pick_official_website('Ironbark Carpentry', results) == 'https://ironbarkcarpentry.com.au'

    def test_falls_back_to_first_non_directory(self):
        results = [
            {'title': 'Facebook', 'link': 'https://facebook.com/ironbark'},
            {'title': 'Something', 'link': 'https://other.com.au'},
        ]
        assert pick_official_website('Ironbark Carpentry', results) == 'https://other.com.au'

    def test_only_directories(self):
        assert pick_official_website('X', [{'link': 'https://www.yelp.com/x'}]) is None

    @patch('leadflow.services.scrapingdog.requests.get')
    def test_find_website(self, mock_get, api_key):
        mock_get.return_value = _response({'organic_data': [
            {'title': 'Ironbark Carpentry', 'link': 'https://ironbarkcarpentry.com.au'},
        ]})

        website = ScrapingdogWebsiteFinder().find_website('Ironbark Carpentry', 'Sydney NSW')

        assert website == 'https://ironbarkcarpentry.com.au'
        assert mock_get.call_args.kwargs['params']['query'] == 'Ironbark Carpentry Sydney NSW'
