"""Shared fixtures for the contentflow test suite."""

import pytest
from fakes import (
    FailingSink,
    PipelineModel,
    RecordingSink,
)

from contentflow.orchestrator.agents import build_agents


@pytest.fixture
def recording_sink() -> RecordingSink:
    return RecordingSink()


@pytest.fixture
def failing_sink() -> FailingSink:
    return FailingSink()


@pytest.fixture
def pipeline_model() -> PipelineModel:
    return PipelineModel()


@pytest.fixture
def pipeline_agents(pipeline_model: PipelineModel):
    """Every named agent, all backed by the cooperative scripted model."""
    return build_agents(pipeline_model)
