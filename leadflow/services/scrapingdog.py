"""
Scrapingdog — Google Maps business discovery and Google Search website lookup.
"""
import logging
import re
from typing import List, Optional

import requests

from leadflow.config import SCRAPINGDOG_API_KEY, SCRAPINGDOG_API_URL, SEARCH_COUNTRY, SEARCH_DOMAIN
from leadflow.pipeline.base import BusinessDiscovery, BusinessRecord, WebsiteFinder, ProviderError
from leadflow.services.circuit_breaker import get_breaker

logger = logging.getLogger('services.scrapingdog')

_CLOSED_MARKERS = ('permanently closed', 'temporarily closed')

# Listing sites that are never a business's own website
DIRECTORY_DOMAINS = (
    'yelp.com', 'yellowpages.com', 'facebook.com', 'instagram.com',
    'linkedin.com', 'maps.google.com', 'google.com/maps', 'tripadvisor.com',
    'localsearch.com.au', 'truelocal.com.au', 'hotfrog.com.au',
)


def _get(path, params, timeout=60):
    """GET a Scrapingdog endpoint through the breaker; ProviderError on HTTP failure."""
    if not SCRAPINGDOG_API_KEY:
        raise ProviderError('scrapingdog', 'SCRAPINGDOG_API_KEY is not configured')

    def _request():
        resp = requests.get(
            f'{SCRAPINGDOG_API_URL}/{path}',
            params={'api_key': SCRAPINGDOG_API_KEY, **params},
            timeout=timeout,
        )
        resp.raise_for_status()
        return resp.json()

    try:
        return get_breaker('scrapingdog').call(_request)
    except requests.RequestException as e:
        raise ProviderError('scrapingdog', str(e)) from e
    except ValueError as e:
        raise ProviderError('scrapingdog', f'invalid JSON: {e}') from e


def parse_maps_results(data, limit) -> List[BusinessRecord]:
    """Scrapingdog google_maps payload → BusinessRecords, skipping closed businesses."""
    records = []
    for item in (data or {}).get('search_results') or []:
        name = item.get('title') or item.get('name')
        if not name:
            continue
        open_state = str(item.get('open_state') or item.get('hours') or '').lower()
        if any(marker in open_state for marker in _CLOSED_MARKERS):
            logger.debug("Skipping closed business: %s", name)
            continue
        coords = item.get('gps_coordinates') or {}
        records.append(BusinessRecord(
            name=name,
            place_id=item.get('place_id') or item.get('data_id'),
            address=item.get('address') or None,
            phone=item.get('phone') or None,
            website=item.get('website') or None,
            latitude=coords.get('latitude'),
            longitude=coords.get('longitude'),
        ))
        if len(records) >= limit:
            break
    return records


class ScrapingdogMaps(BusinessDiscovery):
    name = 'scrapingdog'

    def search(self, query, location, limit):
        search_query = f'{query} in {location}'
        logger.info("Google Maps search: %s (limit %d)", search_query, limit)
        data = _get('google_maps', {
            'query': search_query,
            'results': limit,
            'domain': SEARCH_DOMAIN,
            'country': SEARCH_COUNTRY,
        })
        records = parse_maps_results(data, limit)
        logger.info("Google Maps search %r found %d businesses", search_query, len(records))
        return records


def pick_official_website(business_name, organic_results) -> Optional[str]:
    """First non-directory result, preferring one whose title or link mentions the business."""
    candidates = [
        r for r in organic_results or []
        if r.get('link') and not any(d in r['link'].lower() for d in DIRECTORY_DOMAINS)
    ]
    if not candidates:
        return None
    words = [w for w in re.split(r'\W+', business_name.lower()) if len(w) > 2]
    for result in candidates:
        haystack = f"{result.get('title', '')} {result['link']}".lower()
        if business_name.lower() in haystack or (words and all(w in haystack for w in words)):
            return result['link']
    return candidates[0]['link']


class ScrapingdogWebsiteFinder(WebsiteFinder):
    """Google Search fallback for leads that Maps returned without a website."""

    def find_website(self, business_name, location):
        data = _get('google', {
            'query': f'{business_name} {location}',
            'results': 5,
            'country': SEARCH_COUNTRY,
        }, timeout=30)
        website = pick_official_website(business_name, (data or {}).get('organic_data'))
        if website:
            logger.info("Found website for %s: %s", business_name, website)
        return website
