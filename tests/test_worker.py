import asyncio
import sys
import types
from unittest.mock import AsyncMock, MagicMock

import pytest

from labmatch.v1.infra.jobs.backoff import BackoffPolicy
from labmatch.v1.infra.jobs.handlers import PlaceholderCollaborator
from labmatch.v1.infra.jobs.memory import InMemoryJobQueue
from labmatch.v1.infra.jobs.models import JobStatus
from labmatch.v1.infra.jobs.payloads import SendEmailJob
from labmatch.v1.infra.jobs.worker import (
    build_worker_dependencies,
    load_collaborators,
    run_worker,
)


class RecordingMailer:
    def __init__(self):
        self.sent: list[str] = []

    async def send(self, template_id, to, data):
        self.sent.append(to)


@pytest.fixture
def collaborators_module(monkeypatch):
    """Importable module exposing worker collaborator factories."""
    module = types.ModuleType("labmatch_test_collaborators")
    module.mailer = RecordingMailer()
    module.build = lambda settings: {"mailer": module.mailer}
    module.build_unknown = lambda settings: {"crm": object()}
    monkeypatch.setitem(sys.modules, module.__name__, module)
    return module


class TestLoadCollaborators:
    @pytest.mark.parametrize("path", ["no_colon", ":factory", "module:"])
    def test_malformed_path(self, settings, path):
        with pytest.raises(ValueError, match="module:factory"):
            load_collaborators(path, settings)

    def test_unknown_keys_are_rejected(self, settings, collaborators_module):
        with pytest.raises(ValueError, match="crm"):
            load_collaborators("labmatch_test_collaborators:build_unknown", settings)

    def test_missing_module(self, settings):
        with pytest.raises(ModuleNotFoundError):
            load_collaborators("labmatch_missing_module:build", settings)

    def test_factory_receives_settings(self, settings, collaborators_module):
        factory = MagicMock(return_value={})
        collaborators_module.spy = factory

        assert load_collaborators("labmatch_test_collaborators:spy", settings) == {}
        factory.assert_called_once_with(settings)


class TestBuildWorkerDependencies:
    def test_defaults_to_placeholders(self, settings, session_factory):
        deps = build_worker_dependencies(settings, session_factory, AsyncMock())

        assert isinstance(deps.evaluator, PlaceholderCollaborator)
        assert deps.triggers.engine is deps.eligibility

    def test_configured_collaborators_replace_placeholders(
        self, settings, session_factory, collaborators_module
    ):
        configured = settings.model_copy(
            update={"worker_dependencies": "labmatch_test_collaborators:build"}
        )

        deps = build_worker_dependencies(configured, session_factory, AsyncMock())

        assert deps.mailer is collaborators_module.mailer
        assert isinstance(deps.evaluator, PlaceholderCollaborator)


class TestRunWorker:
    async def test_returns_zero_after_stop(self, settings, session_factory):
        queue = InMemoryJobQueue(poll_interval_s=0.01, backoff=BackoffPolicy(base_delay_ms=0))
        stop = asyncio.Event()
        stop.set()

        exit_code = await run_worker(settings, session_factory, queue=queue, stop_event=stop)

        assert exit_code == 0
        assert not queue.running

    async def test_processes_jobs_until_stopped(
        self, settings, session_factory, collaborators_module
    ):
        configured = settings.model_copy(
            update={"worker_dependencies": "labmatch_test_collaborators:build"}
        )
        queue = InMemoryJobQueue(poll_interval_s=0.01, backoff=BackoffPolicy(base_delay_ms=0))
        job_id = await queue.enqueue(SendEmailJob(template_id="t", to="a@example.com"))
        stop = asyncio.Event()

        worker = asyncio.create_task(
            run_worker(configured, session_factory, queue=queue, stop_event=stop)
        )
        await asyncio.sleep(0.05)
        stop.set()

        assert await worker == 0
        assert collaborators_module.mailer.sent == ["a@example.com"]
        assert (await queue.get_job(job_id)).status == JobStatus.COMPLETED

    async def test_builds_queue_from_settings(self, settings, session_factory):
        stop = asyncio.Event()
        stop.set()

        assert await run_worker(settings, session_factory, stop_event=stop) == 0
