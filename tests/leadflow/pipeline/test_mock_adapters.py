"""The MOCK_PIPELINE collaborators drive a full run end to end."""
from unittest.mock import patch

import pytest

from leadflow.models.run import Run
from leadflow.pipeline.base import ProviderError
from leadflow.pipeline.controller import PipelineController
from leadflow.pipeline.mock_adapters import MockDiscovery, MockWebsiteScraper, MockAnalyzer, _stable_grade


@pytest.fixture(autouse=True)
def no_delay():
    with patch('leadflow.pipeline.mock_adapters._simulate_delay'):
        yield


class TestMockAdapters:

    def test_discovery_respects_limit(self):
        records = MockDiscovery().search('plumbers', 'Sydney NSW', 3)
        assert len(records) == 3
        assert records[0].place_id == 'mock-plumbers-0'

    def test_chains_are_skipped(self):
        verdict = MockAnalyzer().prescreen({'name': "McDonald's"}, 'cafes')
        assert verdict.should_research is False
        assert verdict.is_national_brand is True

    def test_grade_is_stable(self):
        assert _stable_grade('Bluegum Vet Clinic') == _stable_grade('Bluegum Vet Clinic')

    def test_cafe_site_fails(self):
        with pytest.raises(ProviderError):
            MockWebsiteScraper().scrape('https://copperkettle.cafe')

    def test_full_run(self, session_factory, dispatcher, load):
        controller = PipelineController(
            dispatcher=dispatcher,
            discovery=MockDiscovery(),
            scraper=MockWebsiteScraper(),
            analyzer=MockAnalyzer(),
            session_factory=session_factory,
        )
        run = controller.runs.create_run('user-1', 'plumbers', 'Sydney NSW', 12)
        dispatcher.drain(controller)
        controller.runs.start_research(run['id'], 'user-1')
        dispatcher.drain(controller)

        finished = load(Run, run['id'])
        assert finished.status == 'completed'
        assert finished.progress == 100
        assert finished.total_leads == 12
