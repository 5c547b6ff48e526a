#!/usr/bin/env python3
"""Tests for the sync run: batch mode, interactive decisions, failures and the CLI."""

import base64
import io
from types import SimpleNamespace

import pytest
from PIL import Image

import image_generator

import sync_product_images
from artifact_cache import ArtifactCache
from shopware_client import CatalogItem, CoverAssignment
from sync_errors import AuthError, CatalogProtocolError, GenerationError
from sync_product_images import (
    FAILED,
    SKIPPED,
    UPLOADED,
    Action,
    ProcessingResult,
    ProductImageSync,
    PromptState,
    next_action,
    summarize,
)


def make_items(count):
    return [
        CatalogItem(
            id=f"p{i}",
            name=f"Product {i}",
            description=f"<p>Description {i}</p>",
            product_number=f"SW{i}",
        )
        for i in range(1, count + 1)
    ]


class FakeCatalog:
    def __init__(self, fail_ids=()):
        self.fail_ids = set(fail_ids)
        self.uploads = []

    def upload_and_assign_cover(self, item_id, image_bytes, file_name):
        self.uploads.append((item_id, image_bytes, file_name))
        if item_id in self.fail_ids:
            raise CatalogProtocolError("upload", 500, "storage full")
        return CoverAssignment(media_id=f"media-{item_id}", product_media_id=f"pm-{item_id}")


class FakeGenerator:
    def __init__(self, fail_names=()):
        self.fail_names = set(fail_names)
        self.calls = []

    def generate(self, name, description):
        self.calls.append((name, description))
        if name in self.fail_names:
            raise GenerationError("No image data returned from OpenAI")
        return f"image {len(self.calls)} for {name}".encode()


class ScriptedOperator:
    def __init__(self, answers):
        self.answers = list(answers)
        self.questions = []

    def __call__(self, question):
        self.questions.append(question)
        return self.answers.pop(0)


def make_sync(tmp_path, answers=(), catalog=None, generator=None):
    catalog = catalog or FakeCatalog()
    generator = generator or FakeGenerator()
    cache = ArtifactCache(tmp_path / "temp")
    operator = ScriptedOperator(answers)
    return ProductImageSync(catalog, generator, cache, ask=operator), catalog, generator, cache, operator


def test_batch_reuses_cache_and_uploads_everything(tmp_path):
    sync, catalog, generator, cache, operator = make_sync(tmp_path)
    items = make_items(3)
    cache.write("p2", b"cached image")

    results = sync.run(items, batch=True)

    assert [r.status for r in results] == [UPLOADED, UPLOADED, UPLOADED]
    assert len(generator.calls) == 2
    assert len(catalog.uploads) == 3
    assert catalog.uploads[1] == ("p2", b"cached image", "ai-product-p2")
    assert cache.has("p1") and cache.has("p3")
    assert operator.questions == []


def test_batch_generation_failure_does_not_stop_run(tmp_path):
    sync, catalog, _, cache, _ = make_sync(tmp_path, generator=FakeGenerator(fail_names={"Product 1"}))

    results = sync.run(make_items(2), batch=True)

    assert results[0] == ProcessingResult("p1", "Product 1", FAILED, "No image data returned from OpenAI")
    assert results[1].status == UPLOADED
    assert [u[0] for u in catalog.uploads] == ["p2"]
    assert not cache.has("p1")


def test_upload_failure_is_recorded_and_run_continues(tmp_path):
    sync, catalog, _, cache, _ = make_sync(tmp_path, catalog=FakeCatalog(fail_ids={"p2"}))

    results = sync.run(make_items(3), batch=True)

    assert [r.status for r in results] == [UPLOADED, FAILED, UPLOADED]
    assert "storage full" in results[1].error
    assert "'upload'" in results[1].error
    # The generated image stays cached for the next run
    assert cache.has("p2")


def test_interactive_quit_on_second_item(tmp_path):
    sync, catalog, generator, _, operator = make_sync(tmp_path, answers=["y", "y", "q"])

    results = sync.run(make_items(5))

    assert results == [ProcessingResult("p1", "Product 1", UPLOADED)]
    assert len(catalog.uploads) == 1
    assert len(generator.calls) == 1
    assert operator.answers == []


def test_interactive_decline_generation_skips(tmp_path):
    sync, catalog, generator, _, _ = make_sync(tmp_path, answers=["n", "maybe"])

    results = sync.run(make_items(2))

    assert [r.status for r in results] == [SKIPPED, SKIPPED]
    assert generator.calls == []
    assert catalog.uploads == []


def test_interactive_generated_but_not_uploaded_stays_cached(tmp_path):
    sync, catalog, _, cache, _ = make_sync(tmp_path, answers=["y", "n"])

    results = sync.run(make_items(1))

    assert results[0].status == SKIPPED
    assert catalog.uploads == []
    assert cache.has("p1")


def test_interactive_regenerate_then_upload(tmp_path):
    sync, catalog, generator, cache, operator = make_sync(tmp_path, answers=["y", "r", "y"])

    results = sync.run(make_items(1))

    assert results[0].status == UPLOADED
    assert len(generator.calls) == 2
    assert catalog.uploads[0][1] == b"image 2 for Product 1"
    assert cache.read("p1") == b"image 2 for Product 1"
    assert operator.questions[-1] == sync_product_images.PROMPTS[PromptState.CONFIRM_REGENERATED]


def test_interactive_preview_paths_are_logged(tmp_path, caplog, capsys):
    sync, _, _, cache, _ = make_sync(tmp_path, answers=["y", "r", "n"])

    with caplog.at_level("INFO"):
        sync.run(make_items(1))

    preview = str(cache.path_for("p1"))
    assert f"Image saved for preview: {preview}" in caplog.text
    assert f"New image saved: {preview}" in caplog.text
    assert capsys.readouterr().out == ""


def test_interactive_regenerate_then_decline(tmp_path):
    sync, catalog, generator, cache, _ = make_sync(tmp_path, answers=["y", "r", "r"])

    results = sync.run(make_items(1))

    assert results[0].status == SKIPPED
    assert len(generator.calls) == 2
    assert catalog.uploads == []


def test_interactive_cached_image_upload(tmp_path):
    sync, catalog, generator, cache, operator = make_sync(tmp_path, answers=[" Y "])
    cache.write("p1", b"from last run")

    results = sync.run(make_items(1))

    assert results[0].status == UPLOADED
    assert generator.calls == []
    assert catalog.uploads[0][1] == b"from last run"
    assert operator.questions == [sync_product_images.PROMPTS[PromptState.UPLOAD_CACHED]]


def test_interactive_cached_image_regenerate(tmp_path):
    sync, catalog, generator, cache, _ = make_sync(tmp_path, answers=["r", "y"])
    cache.write("p1", b"old image")

    results = sync.run(make_items(1))

    assert results[0].status == UPLOADED
    assert len(generator.calls) == 1
    assert catalog.uploads[0][1] == b"image 1 for Product 1"
    assert cache.read("p1") == b"image 1 for Product 1"


def test_interactive_cached_image_quit(tmp_path):
    sync, catalog, _, cache, operator = make_sync(tmp_path, answers=["y", "q", "q"])
    cache.write("p2", b"old image")

    results = sync.run(make_items(3))

    # q after generating only declines the upload; q on the cached image quits
    assert results == [ProcessingResult("p1", "Product 1", SKIPPED)]
    assert catalog.uploads == []
    assert operator.answers == []


@pytest.mark.parametrize("state,answer,expected", [
    (PromptState.GENERATE, "y", Action.GENERATE),
    (PromptState.GENERATE, "r", Action.SKIP),
    (PromptState.GENERATE, "q", Action.QUIT),
    (PromptState.UPLOAD_CACHED, "r", Action.REGENERATE),
    (PromptState.UPLOAD_CACHED, "q", Action.QUIT),
    (PromptState.UPLOAD_NEW, "q", Action.SKIP),
    (PromptState.UPLOAD_NEW, "R", Action.REGENERATE),
    (PromptState.CONFIRM_REGENERATED, "r", Action.SKIP),
    (PromptState.CONFIRM_REGENERATED, "y", Action.UPLOAD),
    (PromptState.CONFIRM_REGENERATED, "", Action.SKIP),
])
def test_decision_table(state, answer, expected):
    assert next_action(state, answer) is expected


def test_summarize_counts_and_lists_failures():
    results = [
        ProcessingResult("p1", "Mug", UPLOADED),
        ProcessingResult("p2", "Cup", SKIPPED),
        ProcessingResult("p3", "Plate", FAILED, "boom"),
        ProcessingResult("p4", "Bowl", UPLOADED),
    ]

    summary = summarize(results)

    assert summary.uploaded == 2
    assert summary.skipped == 1
    assert [(r.item_name, r.error) for r in summary.failed] == [("Plate", "boom")]


def test_ask_operator_treats_closed_stdin_as_quit(monkeypatch):
    def closed(prompt):
        raise EOFError

    monkeypatch.setattr("builtins.input", closed)

    assert sync_product_images.ask_operator("Generate image? ") == "q"


ENV = {
    "SHOPWARE_API_URL": "https://shop.example.com",
    "SHOPWARE_CLIENT_ID": "SWIA123",
    "SHOPWARE_CLIENT_SECRET": "secret",
    "OPENAI_API_KEY": "sk-test",
    "SALES_CHANNEL_ID": "channel-1",
}


class FakeShopwareClient:
    items = make_items(2)
    auth_error = None

    def __init__(self, api_url, client_id, client_secret):
        self.api_url = api_url

    def authenticate(self):
        if self.auth_error is not None:
            raise self.auth_error

    def list_items_missing_image(self, channel_id):
        return 10, list(self.items)


def test_main_missing_config_is_fatal(monkeypatch):
    for name in ENV:
        monkeypatch.delenv(name, raising=False)

    assert sync_product_images.main([]) == 1


def test_main_auth_failure_is_fatal(monkeypatch):
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setattr(FakeShopwareClient, "auth_error", AuthError(401, "invalid_client"))
    monkeypatch.setattr(sync_product_images, "ShopwareClient", FakeShopwareClient)

    assert sync_product_images.main(["--batch"]) == 1


def test_main_dry_run_lists_without_generating(monkeypatch, tmp_path, capsys):
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setattr(sync_product_images, "ShopwareClient", FakeShopwareClient)

    def no_generator(*args, **kwargs):
        raise AssertionError("generator must not be built on a dry run")

    monkeypatch.setattr(sync_product_images, "ImageGenerator", no_generator)

    exit_code = sync_product_images.main(["--dry-run", "--cache-dir", str(tmp_path / "temp")])

    out = capsys.readouterr().out
    assert exit_code == 0
    assert "1. Product 1" in out
    assert "Description: Description 2" in out
    assert not (tmp_path / "temp").exists()


def test_main_nothing_to_do(monkeypatch):
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setattr(FakeShopwareClient, "items", [])
    monkeypatch.setattr(sync_product_images, "ShopwareClient", FakeShopwareClient)

    assert sync_product_images.main(["--batch"]) == 0


def test_main_missing_template_is_fatal(monkeypatch, tmp_path):
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    monkeypatch.setattr(sync_product_images, "ShopwareClient", FakeShopwareClient)

    exit_code = sync_product_images.main(["--batch", "--prompt-template", str(tmp_path / "missing.txt")])

    assert exit_code == 1


class FakeOpenAI:
    """Stands in for openai.OpenAI; every request returns a small real PNG."""

    def __init__(self, api_key):
        self.api_key = api_key
        self.images = SimpleNamespace(generate=self._generate)

    def _generate(self, **kwargs):
        buffer = io.BytesIO()
        Image.new("RGB", (8, 8), "white").save(buffer, format="PNG")
        b64 = base64.b64encode(buffer.getvalue()).decode("ascii")
        return SimpleNamespace(data=[SimpleNamespace(b64_json=b64)])


class FlakyShopwareClient(FakeShopwareClient):
    """Rejects the cover upload for p1."""
    uploads = []

    def upload_and_assign_cover(self, item_id, image_bytes, file_name):
        self.uploads.append(item_id)
        if item_id == "p1":
            raise CatalogProtocolError("upload", 500, "storage offline")
        return CoverAssignment(media_id=f"media-{item_id}", product_media_id=f"pm-{item_id}")


def test_main_batch_failure_returns_1(monkeypatch, tmp_path):
    for name, value in ENV.items():
        monkeypatch.setenv(name, value)
    template = tmp_path / "prompt.txt"
    template.write_text("Studio product photo.", encoding="utf-8")
    cache_dir = tmp_path / "temp"
    monkeypatch.setattr(FlakyShopwareClient, "uploads", [])
    monkeypatch.setattr(sync_product_images, "ShopwareClient", FlakyShopwareClient)
    monkeypatch.setattr(image_generator, "OpenAI", FakeOpenAI)

    exit_code = sync_product_images.main([
        "--batch",
        "--cache-dir", str(cache_dir),
        "--prompt-template", str(template),
    ])

    assert exit_code == 1
    assert FlakyShopwareClient.uploads == ["p1", "p2"]
    assert sorted(p.name for p in cache_dir.iterdir()) == ["p1.png", "p2.png"]
