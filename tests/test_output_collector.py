"""Tests for artifact discovery, retry-wrapped downloads and the directory sink."""

import asyncio
from pathlib import Path

import pytest

from comfyflow.src.client.artifact_sink import ArtifactSink, DirectorySink
from comfyflow.src.client.output_collector import (
    artifact_name,
    collect,
    discover_artifacts,
)
from comfyflow.src.data_models.job_models import ArtifactDescriptor, Job
from comfyflow.src.data_models.workflow_models import NodeRole, WorkflowTemplate
from comfyflow.src.errors import NoOutputsError, PartialOutputFailure
from fixtures.comfy_fixtures import FINAL_TEMPLATE, PNG_BYTES, PREVIEW_TEMPLATE

SERVER = "http://comfy:8188"
MIXED = WorkflowTemplate.from_mapping({**FINAL_TEMPLATE, **PREVIEW_TEMPLATE})


class TestDiscoverArtifacts:
    def test_roles_map_to_storage_areas(self):
        outputs = {
            "9": {"images": [{"filename": "final.png", "subfolder": "", "type": "output"}]},
            "12": {"images": [{"filename": "preview.png", "subfolder": "", "type": "temp"}]},
        }
        found = {d.filename: d for d in discover_artifacts(MIXED, outputs)}
        assert found["final.png"].role is NodeRole.FINAL
        assert found["final.png"].storage_type == "output"
        assert found["preview.png"].role is NodeRole.PREVIEW
        assert found["preview.png"].storage_type == "temp"

    def test_non_sink_and_unknown_nodes_are_skipped(self):
        outputs = {
            "6": {"images": [{"filename": "a.png"}]},
            "404": {"images": [{"filename": "b.png"}]},
        }
        assert discover_artifacts(MIXED, outputs) == []

    @pytest.mark.parametrize("output", [{}, {"images": []}, {"images": None}, "junk", {"text": ["hi"]}])
    def test_sink_without_images_is_skipped(self, output):
        assert discover_artifacts(MIXED, {"9": output}) == []

    def test_malformed_image_entries_are_skipped_but_indices_kept(self):
        outputs = {"9": {"images": [{"subfolder": ""}, "junk", {"filename": "ok.png", "subfolder": "batch"}]}}
        (descriptor,) = discover_artifacts(MIXED, outputs)
        assert descriptor.index == 2
        assert descriptor.subfolder == "batch"

    def test_names_are_unique_per_node_and_index(self):
        names = {
            artifact_name(1700000000000, ArtifactDescriptor(
                owner_node_id=node, index=index, filename="x.png", role=NodeRole.FINAL
            ))
            for node in ("9", "12")
            for index in range(3)
        }
        assert len(names) == 6
        assert "comfyflow_generated_1700000000000_9_0.png" in names


class TestCollect:
    @pytest.mark.asyncio
    async def test_downloads_final_artifact_from_output_area(self, fake_server, final_job, tmp_path):
        outputs = {"9": {"images": [{"filename": "x.png", "subfolder": "", "type": "output"}]}}
        async with fake_server.client() as client:
            report = await collect(client, SERVER, final_job, outputs, DirectorySink(tmp_path))

        (request,) = fake_server.requests_to("/view")
        assert dict(request.url.params) == {"filename": "x.png", "subfolder": "", "type": "output"}
        (saved,) = report.saved
        assert Path(saved.local_path).read_bytes() == PNG_BYTES
        assert Path(saved.local_path).name == f"comfyflow_generated_{final_job.timestamp_ms}_9_0.png"
        assert report.failed == 0

    @pytest.mark.asyncio
    async def test_transient_failures_are_retried(self, fake_server, final_job, tmp_path, recording_sleep):
        fake_server.view_statuses = {"x.png": [404, 404]}
        outputs = {"9": {"images": [{"filename": "x.png"}]}}
        async with fake_server.client() as client:
            report = await collect(
                client, SERVER, final_job, outputs, DirectorySink(tmp_path), sleep=recording_sleep
            )

        assert len(report.saved) == 1
        assert len(fake_server.requests_to("/view")) == 3
        assert recording_sleep.delays == [1.0, 1.0]

    @pytest.mark.asyncio
    async def test_partial_failure_warns_and_keeps_going(self, fake_server, final_job, tmp_path, recording_sleep):
        fake_server.view_statuses = {"bad.png": [403], "flaky.png": [500, 500, 500]}
        outputs = {"9": {"images": [{"filename": "bad.png"}, {"filename": "good.png"}, {"filename": "flaky.png"}]}}
        async with fake_server.client() as client:
            with pytest.warns(PartialOutputFailure) as record:
                report = await collect(
                    client, SERVER, final_job, outputs, DirectorySink(tmp_path), sleep=recording_sleep
                )

        assert [s.descriptor.filename for s in report.saved] == ["good.png"]
        assert report.failed == 2
        warning = record[0].message
        assert (warning.saved_count, warning.failed_count) == (1, 2)

    @pytest.mark.asyncio
    async def test_nothing_saved_is_fatal(self, fake_server, final_job, tmp_path, recording_sleep):
        fake_server.view_statuses = {"x.png": [403]}
        outputs = {"9": {"images": [{"filename": "x.png"}]}, "6": {"images": [{"filename": "y.png"}]}}
        async with fake_server.client() as client:
            with pytest.raises(NoOutputsError):
                await collect(
                    client, SERVER, final_job, outputs, DirectorySink(tmp_path), sleep=recording_sleep
                )

    @pytest.mark.asyncio
    async def test_only_skipped_nodes_is_fatal(self, fake_server, final_job, tmp_path):
        async with fake_server.client() as client:
            with pytest.raises(NoOutputsError):
                await collect(client, SERVER, final_job, {"9": {"images": []}}, DirectorySink(tmp_path))
        assert fake_server.requests == []

    @pytest.mark.asyncio
    async def test_preview_job_downloads_from_temp_area(self, fake_server, preview_workflow, tmp_path):
        job = Job(id="abc", submitted_workflow=preview_workflow)
        outputs = {"12": {"images": [{"filename": "p.png", "subfolder": "", "type": "temp"}]}}
        async with fake_server.client() as client:
            await collect(client, SERVER, job, outputs, DirectorySink(tmp_path))

        (request,) = fake_server.requests_to("/view")
        assert request.url.params["type"] == "temp"


class FailingSink:
    """Fails writes whose name contains ``failing``; other writes take a moment."""

    def __init__(self, failing: str, error: BaseException):
        self.failing = failing
        self.error = error
        self.written = []

    async def write(self, name: str, data: bytes) -> str:
        if self.failing in name:
            raise self.error
        await asyncio.sleep(0.05)
        self.written.append(name)
        return f"/sink/{name}"


class TestSinkFailures:
    TWO_IMAGES = {"9": {"images": [{"filename": "a.png"}, {"filename": "b.png"}]}}

    @pytest.mark.asyncio
    async def test_sink_os_error_loses_only_that_artifact(self, fake_server, final_job):
        sink = FailingSink("_9_0", PermissionError("read-only"))
        async with fake_server.client() as client:
            with pytest.warns(PartialOutputFailure):
                report = await collect(client, SERVER, final_job, self.TWO_IMAGES, sink)

        assert report.failed == 1
        assert report.paths == [f"/sink/comfyflow_generated_{final_job.timestamp_ms}_9_1.png"]

    @pytest.mark.asyncio
    async def test_every_write_failing_is_no_outputs(self, fake_server, final_job):
        sink = FailingSink("_9_", FileExistsError("exists"))
        async with fake_server.client() as client:
            with pytest.raises(NoOutputsError):
                await collect(client, SERVER, final_job, self.TWO_IMAGES, sink)

    @pytest.mark.asyncio
    async def test_unexpected_error_waits_for_other_writes(self, fake_server, final_job):
        sink = FailingSink("_9_0", RuntimeError("sink bug"))
        async with fake_server.client() as client:
            with pytest.raises(RuntimeError, match="sink bug"):
                await collect(client, SERVER, final_job, self.TWO_IMAGES, sink)
            written_when_raised = list(sink.written)
            await asyncio.sleep(0.1)

        assert written_when_raised == [f"comfyflow_generated_{final_job.timestamp_ms}_9_1.png"]
        assert sink.written == written_when_raised


class TestDirectorySink:
    @pytest.mark.asyncio
    async def test_writes_once(self, tmp_path):
        sink = DirectorySink(tmp_path / "out")
        assert isinstance(sink, ArtifactSink)
        path = await sink.write("a.png", b"123")
        assert Path(path).read_bytes() == b"123"
        with pytest.raises(FileExistsError):
            await sink.write("a.png", b"456")
        assert Path(path).read_bytes() == b"123"
