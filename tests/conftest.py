"""Pytest configuration and fixtures."""

import pytest

from phaseclean.config.settings import PipelineSettings, UserConfig
from phaseclean.models.enums import ContentType

from tests.scenario import ScenarioLayout, build_scenario_document


# =============================================================================
# Fixtures
# =============================================================================

@pytest.fixture
def scenario() -> tuple[str, ScenarioLayout]:
    return build_scenario_document()


@pytest.fixture
def scenario_text(scenario) -> str:
    return scenario[0]


@pytest.fixture
def scenario_layout(scenario) -> ScenarioLayout:
    return scenario[1]


@pytest.fixture
def settings() -> PipelineSettings:
    """Default settings, independent of the environment."""
    return PipelineSettings(_env_file=None)


@pytest.fixture
def academic_config() -> UserConfig:
    return UserConfig(document_id="rivers", content_type=ContentType.ACADEMIC)


@pytest.fixture
def heuristic_config() -> UserConfig:
    return UserConfig(document_id="rivers", content_type=ContentType.ACADEMIC, heuristic_only=True)


@pytest.fixture
def short_text() -> str:
    """A small hard-wrapped document with page numbers and a running header."""
    return "\n".join([
        "A Short Book",
        "",
        "Chapter 1: Beginnings",
        "",
        "The first paragraph of the story starts here and",
        "continues on a second wrapped line of text.",
        "",
        "12",
        "A SHORT BOOK",
        "",
        "Another paragraph follows with more words in it and",
        "ends with a hyphen-",
        "ated word joined back together.",
        "",
        "Chapter 2: Endings",
        "",
        "The final chapter is brief and closes the short book.",
        "",
        "13",
        "A SHORT BOOK",
    ])
