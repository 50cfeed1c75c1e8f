"""Shared test fixtures."""
import pytest
from unittest.mock import patch
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from leadflow.database import init_db
from leadflow.models.lead import Lead, domain_from_website
from leadflow.models.run import Run
from leadflow.pipeline.base import (
    BusinessDiscovery, BusinessRecord, WebsiteScraper, ScrapedSite,
    LeadAnalyzer, PrescreenVerdict, ResearchReport, ProviderError,
)
from leadflow.pipeline.controller import PipelineController
from leadflow.pipeline.events import Dispatcher


# ── Fakes ────────────────────────────────────────────────────────────────────

class FakeRedis:
    """Just enough of the Redis hash API for circuit breakers."""

    def __init__(self):
        self.hashes = {}

    def hgetall(self, key):
        return dict(self.hashes.get(key, {}))

    def hset(self, key, mapping=None, **kwargs):
        self.hashes.setdefault(key, {}).update(mapping or {})
        return len(mapping or {})

    def hincrby(self, key, field, amount=1):
        bucket = self.hashes.setdefault(key, {})
        bucket[field] = str(int(bucket.get(field, 0)) + amount)
        return int(bucket[field])

    def delete(self, key):
        return 1 if self.hashes.pop(key, None) is not None else 0


class RecordingDispatcher(Dispatcher):
    """Keeps sent events in memory; drain() delivers them like a worker would."""

    def __init__(self):
        self.events = []
        self.sent = []

    def send(self, event):
        self.events.append(event)
        self.sent.append(event)

    def names(self):
        return [event.name for event in self.sent]

    def of(self, name):
        return [event for event in self.sent if event.name == name]

    def clear(self):
        self.events.clear()
        self.sent.clear()

    def drain(self, controller, limit=1000):
        """Handle queued events (and whatever they emit) until the queue is empty."""
        handled = []
        while self.events and len(handled) < limit:
            event = self.events.pop(0)
            handled.append((event.name, controller.handle(event.name, event.data)))
        return handled


class FakeDiscovery(BusinessDiscovery):
    """Returns `count` businesses per query; queries in `failing` raise ProviderError."""
    name = 'fake'

    def __init__(self, count=10, failing=()):
        self.count = count
        self.failing = set(failing)
        self.calls = []

    def search(self, query, location, limit):
        self.calls.append((query, location, limit))
        if query in self.failing:
            raise ProviderError('fake', f'search failed for {query}')
        return [
            BusinessRecord(
                name=f'{query.title()} Business {i}',
                place_id=f'{query}-{i}',
                address=f'{i} Main St, {location}',
                website=f'https://www.biz{i}-{query}.example.com',
                latitude=-33.8 + i / 100,
                longitude=151.2 + i / 100,
            )
            for i in range(min(self.count, limit))
        ]


class FakeScraper(WebsiteScraper):
    name = 'fake'

    def __init__(self, failing=()):
        self.failing = set(failing)
        self.calls = []

    def scrape(self, url):
        self.calls.append(url)
        if url in self.failing:
            raise ProviderError('website', f'{url}: connection refused')
        return ScrapedSite(
            main_content=f'Home page of {url}. Family owned since 1990.',
            about_content='About us',
            team_size='small (1-10)',
        )


class FakeAnalyzer(LeadAnalyzer):
    """Grades every lead `grade` unless overridden by name."""
    name = 'fake'

    def __init__(self, grade='B', skip=(), grades=None, prescreen_errors=(), research_errors=()):
        self.grade = grade
        self.skip = set(skip)
        self.grades = grades or {}
        self.prescreen_errors = set(prescreen_errors)
        self.research_errors = set(research_errors)
        self.prescreen_calls = []
        self.research_calls = []
        self.deep_calls = []

    def prescreen(self, lead, business_type):
        self.prescreen_calls.append(lead['name'])
        if lead['name'] in self.prescreen_errors:
            raise ProviderError('openai', 'timeout')
        if lead['name'] in self.skip:
            return PrescreenVerdict(should_research=False, reason='National chain',
                                    is_national_brand=True, confidence='high')
        return PrescreenVerdict(should_research=True, reason='Independent business', confidence='medium')

    def research(self, lead, site, business_type):
        self.research_calls.append(lead['name'])
        if lead['name'] in self.research_errors:
            raise ProviderError('openai', 'model overloaded')
        grade = self.grades.get(lead['name'], self.grade)
        return ResearchReport(
            grade=grade,
            grade_reasoning=f'{lead["name"]} is a grade {grade} fit',
            report='Report',
            suggested_hooks=['hook'],
        )

    def deep_research(self, lead, site, business_type):
        self.deep_calls.append(lead['name'])
        return ResearchReport(grade='A', grade_reasoning='Deep dive', report='Deep report')


# ── Database ─────────────────────────────────────────────────────────────────

@pytest.fixture
def db_engine():
    """In-memory SQLite engine with schema created, shared by every session."""
    engine = create_engine(
        'sqlite://',
        connect_args={'check_same_thread': False},
        poolclass=StaticPool,
    )
    init_db(engine)
    yield engine
    engine.dispose()


@pytest.fixture
def session_factory(db_engine):
    return sessionmaker(bind=db_engine, expire_on_commit=False)


@pytest.fixture
def db_session(session_factory):
    session = session_factory()
    yield session
    session.close()


@pytest.fixture(autouse=True)
def fake_breaker_redis():
    """Circuit breakers get a fresh in-memory Redis per test."""
    fake = FakeRedis()
    with patch('leadflow.extensions.redis_client', fake), \
            patch('leadflow.services.circuit_breaker._registry', {}):
        yield fake


# ── Pipeline ─────────────────────────────────────────────────────────────────

@pytest.fixture
def dispatcher():
    return RecordingDispatcher()


@pytest.fixture
def discovery():
    return FakeDiscovery()


@pytest.fixture
def scraper():
    return FakeScraper()


@pytest.fixture
def analyzer():
    return FakeAnalyzer()


@pytest.fixture
def make_discovery():
    return FakeDiscovery


@pytest.fixture
def make_analyzer():
    return FakeAnalyzer


@pytest.fixture
def make_scraper():
    return FakeScraper


@pytest.fixture
def controller(session_factory, dispatcher, discovery, scraper, analyzer):
    return PipelineController(
        dispatcher=dispatcher,
        discovery=discovery,
        scraper=scraper,
        analyzer=analyzer,
        session_factory=session_factory,
    )


@pytest.fixture
def make_run(session_factory):
    """Factory fixture — inserts a Run and returns its id."""
    def _make(**overrides):
        values = dict(
            user_id='user-1',
            business_types=['plumbers'],
            location='Sydney NSW',
            target_count=10,
            status='researching',
            is_paused=False,
        )
        values.update(overrides)
        session = session_factory()
        try:
            run = Run(**values)
            session.add(run)
            session.commit()
            return run.id
        finally:
            session.close()
    return _make


@pytest.fixture
def make_lead(session_factory):
    """Factory fixture — inserts a Lead for a run and returns its id."""
    counter = {'n': 0}

    def _make(run_id, **overrides):
        counter['n'] += 1
        n = counter['n']
        values = dict(
            run_id=run_id,
            user_id='user-1',
            name=f'Lead {n}',
            website=f'https://lead{n}.example.com',
            research_status='pending',
            prescreened=True,
            prescreen_result='research',
        )
        values.update(overrides)
        values.setdefault('email_domain', domain_from_website(values.get('website')))
        session = session_factory()
        try:
            lead = Lead(**values)
            session.add(lead)
            session.commit()
            return lead.id
        finally:
            session.close()
    return _make


@pytest.fixture
def load(session_factory):
    """Fresh copy of a row, read through its own session."""
    def _load(model, pk):
        session = session_factory()
        try:
            return session.get(model, pk)
        finally:
            session.close()
    return _load


# ── Flask ────────────────────────────────────────────────────────────────────

@pytest.fixture
def app(controller):
    """Flask test app wired to the in-memory controller."""
    from leadflow import create_app
    app = create_app()
    app.config['TESTING'] = True
    with patch('leadflow.pipeline.controller._controller', controller):
        yield app


@pytest.fixture
def client(app):
    """Flask test client."""
    with app.test_client() as c:
        yield c


@pytest.fixture
def auth_headers():
    return {'X-User-Id': 'user-1'}
