"""
Website scraper — home, about and team pages via requests + BeautifulSoup.
"""
import logging
import re

import requests
from bs4 import BeautifulSoup

from leadflow.config import WEBSITE_TIMEOUT, WEBSITE_USER_AGENT
from leadflow.pipeline.base import WebsiteScraper, ScrapedSite, ProviderError

logger = logging.getLogger('services.website')

ABOUT_PATHS = ('/about', '/about-us', '/company')
TEAM_PATHS = ('/team', '/our-team', '/meet-the-team', '/about/team')

# Subpages shorter than this are usually 404 templates or redirects
MIN_PAGE_CHARS = 100
MAX_CONTENT_CHARS = 20000

_LOCATION_PATTERNS = [
    re.compile(r'\d+\s*(locations|offices|stores|branches)', re.I),
    re.compile(r'(multiple|several|many)\s*(locations|offices|stores|branches)', re.I),
    re.compile(r'offices? (in|across|throughout)', re.I),
]
_HEADCOUNT_RE = re.compile(r'(\d+)\+?\s*(employees|team members|staff|people)', re.I)
_ROLE_RE = re.compile(r'\b(director|manager|specialist|consultant|agent)\b', re.I)


def normalize_url(url):
    url = url.strip()
    if not url.startswith(('http://', 'https://')):
        url = f'https://{url}'
    return url.rstrip('/')


def html_to_text(html):
    """Visible page text, one block per line."""
    soup = BeautifulSoup(html, 'html.parser')
    for tag in soup(['script', 'style', 'noscript', 'svg', 'iframe']):
        tag.decompose()
    root = soup.find('main') or soup.body or soup
    lines = (line.strip() for line in root.get_text('\n').splitlines())
    return '\n'.join(line for line in lines if line)[:MAX_CONTENT_CHARS]


def estimate_business_size(main, about=None, team=None):
    """(has_multiple_locations, team_size label or None) from page text."""
    text = ' '.join(part for part in (main, about, team) if part).lower()
    multiple = any(p.search(text) for p in _LOCATION_PATTERNS)

    team_size = None
    match = _HEADCOUNT_RE.search(text)
    if match:
        count = int(match.group(1))
        if count < 10:
            team_size = 'small (1-10)'
        elif count < 50:
            team_size = 'medium (10-50)'
        elif count < 200:
            team_size = 'large (50-200)'
        else:
            team_size = 'enterprise (200+)'
    elif team:
        roles = len(_ROLE_RE.findall(team))
        if roles > 20:
            team_size = 'large (50-200)'
        elif roles > 10:
            team_size = 'medium (10-50)'
        elif roles > 0:
            team_size = 'small (1-10)'
    return multiple, team_size


class HttpWebsiteScraper(WebsiteScraper):
    name = 'website'

    def __init__(self, session=None, timeout=WEBSITE_TIMEOUT):
        self.http = session or requests.Session()
        self.http.headers.setdefault('User-Agent', WEBSITE_USER_AGENT)
        self.timeout = timeout

    def _fetch(self, url):
        resp = self.http.get(url, timeout=self.timeout, allow_redirects=True)
        resp.raise_for_status()
        return html_to_text(resp.text)

    def _first_page(self, base, paths):
        for path in paths:
            try:
                text = self._fetch(f'{base}{path}')
            except requests.RequestException:
                continue
            if len(text) > MIN_PAGE_CHARS:
                logger.debug("Found subpage %s%s", base, path)
                return text
        return None

    def scrape(self, url):
        base = normalize_url(url)
        try:
            main = self._fetch(base)
        except requests.RequestException as e:
            raise ProviderError('website', f'{base}: {e}') from e
        if not main:
            raise ProviderError('website', f'{base}: page has no readable content')

        about = self._first_page(base, ABOUT_PATHS)
        team = self._first_page(base, TEAM_PATHS)
        multiple, team_size = estimate_business_size(main, about, team)
        logger.info("Scraped %s (%d chars, about=%s, team=%s)", base, len(main), bool(about), bool(team))
        return ScrapedSite(
            main_content=main,
            about_content=about,
            team_content=team,
            has_multiple_locations=multiple,
            team_size=team_size,
        )
