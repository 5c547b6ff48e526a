#!/usr/bin/env python3
"""
Shopware Product Image Sync

Finds products in a sales channel that have no cover image, generates one
with OpenAI and uploads it as the product cover.

Modes:
  interactive (default) - ask before generating and before uploading each image
  --batch               - generate (or reuse cached) and upload everything
  --dry-run             - only list the products that would be processed

Generated images are kept in the cache directory (temp/ by default), so an
interrupted run can be restarted without paying for the same image twice.
"""

import argparse
import logging
import sys
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Callable, Optional

import requests

from artifact_cache import ArtifactCache
from image_generator import DEFAULT_TEMPLATE_PATH, ImageGenerator, strip_html
from shopware_client import CatalogItem, ShopwareClient
from sync_config import load_config
from sync_errors import AuthError, CatalogQueryError, ConfigError

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)s %(message)s",
)

UPLOADED = "uploaded"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass
class ProcessingResult:
    """What happened to one product during a run."""
    item_id: str
    item_name: str
    status: str
    error: Optional[str] = None


@dataclass
class RunSummary:
    uploaded: int = 0
    skipped: int = 0
    failed: list[ProcessingResult] = field(default_factory=list)


class PromptState(Enum):
    """Which question the operator is being asked."""
    GENERATE = "generate"
    UPLOAD_CACHED = "upload_cached"
    UPLOAD_NEW = "upload_new"
    CONFIRM_REGENERATED = "confirm_regenerated"


class Action(Enum):
    GENERATE = "generate"
    REGENERATE = "regenerate"
    UPLOAD = "upload"
    SKIP = "skip"
    QUIT = "quit"


PROMPTS = {
    PromptState.GENERATE: "\n  Generate image? (y/n/q=quit): ",
    PromptState.UPLOAD_CACHED: "\n  Image exists. Upload to Shopware? (y/n/r=regenerate/q=quit): ",
    PromptState.UPLOAD_NEW: "  Upload this image to Shopware? (y/n/r=regenerate): ",
    PromptState.CONFIRM_REGENERATED: "  Upload this image to Shopware? (y/n): ",
}

# Answers not listed for a state skip the product
DECISIONS = {
    PromptState.GENERATE: {
        "y": Action.GENERATE,
        "q": Action.QUIT,
    },
    PromptState.UPLOAD_CACHED: {
        "y": Action.UPLOAD,
        "r": Action.REGENERATE,
        "q": Action.QUIT,
    },
    PromptState.UPLOAD_NEW: {
        "y": Action.UPLOAD,
        "r": Action.REGENERATE,
    },
    PromptState.CONFIRM_REGENERATED: {
        "y": Action.UPLOAD,
    },
}


def next_action(state: PromptState, answer: str) -> Action:
    """Look up the operator's answer in the decision table."""
    return DECISIONS[state].get(answer.strip().lower(), Action.SKIP)


def ask_operator(question: str) -> str:
    """Ask on the console; a closed stdin counts as quit."""
    try:
        return input(question).strip().lower()
    except EOFError:
        return "q"


def truncate(text: str, max_len: int) -> str:
    if len(text) <= max_len:
        return text
    return text[:max_len - 3] + "..."


class ProductImageSync:
    """Drives generation and upload for a list of products."""

    def __init__(
        self,
        catalog: ShopwareClient,
        generator: ImageGenerator,
        cache: ArtifactCache,
        ask: Callable[[str], str] = ask_operator,
    ):
        self.catalog = catalog
        self.generator = generator
        self.cache = cache
        self.ask = ask

    def run(self, items: list[CatalogItem], batch: bool = False) -> list[ProcessingResult]:
        """
        Process products one at a time.

        A failure on one product is recorded and the run moves on. Quitting
        stops the loop; products not reached yet get no result at all.
        """
        results: list[ProcessingResult] = []

        for index, item in enumerate(items, 1):
            logging.info("--- Product %d/%d ---", index, len(items))
            logging.info("  Name: %s", item.name)
            logging.info("  Number: %s", item.product_number)
            logging.info("  Description: %s", truncate(strip_html(item.description) or "(no description)", 200))

            try:
                cached = self.cache.has(item.id)
                if cached:
                    logging.info("  [Image already generated: %s]", self.cache.path_for(item.id))

                if batch:
                    action, image = Action.UPLOAD, self._batch_image(item, cached)
                else:
                    action, image = self._choose(item, cached)
            except Exception as e:
                logging.error("  ERROR: %s", e)
                results.append(ProcessingResult(item.id, item.name, FAILED, str(e)))
                continue

            if action is Action.QUIT:
                logging.info("Quitting...")
                break

            if action is Action.SKIP:
                logging.info("  Skipped.")
                results.append(ProcessingResult(item.id, item.name, SKIPPED))
                continue

            results.append(self._upload(item, image))

        return results

    def _generate(self, item: CatalogItem) -> bytes:
        image = self.generator.generate(item.name, item.description)
        self.cache.write(item.id, image)
        return image

    def _batch_image(self, item: CatalogItem, cached: bool) -> bytes:
        if cached:
            return self.cache.read(item.id)
        return self._generate(item)

    def _choose(self, item: CatalogItem, cached: bool) -> tuple[Action, Optional[bytes]]:
        """
        Walk the decision table for one product.

        Returns:
            (Action.UPLOAD, image), (Action.SKIP, None) or (Action.QUIT, None)
        """
        state = PromptState.UPLOAD_CACHED if cached else PromptState.GENERATE
        image: Optional[bytes] = None

        while True:
            action = next_action(state, self.ask(PROMPTS[state]))

            if action is Action.GENERATE:
                image = self._generate(item)
                logging.info("  Image saved for preview: %s", self.cache.path_for(item.id))
                state = PromptState.UPLOAD_NEW
            elif action is Action.REGENERATE:
                logging.info("  Regenerating...")
                image = self._generate(item)
                logging.info("  New image saved: %s", self.cache.path_for(item.id))
                state = PromptState.CONFIRM_REGENERATED
            elif action is Action.UPLOAD:
                if image is None:
                    image = self.cache.read(item.id)
                return action, image
            else:
                return action, None

    def _upload(self, item: CatalogItem, image: bytes) -> ProcessingResult:
        logging.info("  Uploading to Shopware...")
        try:
            assignment = self.catalog.upload_and_assign_cover(item.id, image, f"ai-product-{item.id}")
        except Exception as e:
            logging.error("  ERROR: %s", e)
            return ProcessingResult(item.id, item.name, FAILED, str(e))

        logging.info("  Cover image assigned (media %s)", assignment.media_id)
        return ProcessingResult(item.id, item.name, UPLOADED)


def summarize(results: list[ProcessingResult]) -> RunSummary:
    summary = RunSummary()
    for result in results:
        if result.status == UPLOADED:
            summary.uploaded += 1
        elif result.status == SKIPPED:
            summary.skipped += 1
        else:
            summary.failed.append(result)
    return summary


def log_summary(summary: RunSummary) -> None:
    logging.info("=" * 50)
    logging.info("SUMMARY")
    logging.info("  Uploaded: %d", summary.uploaded)
    logging.info("  Skipped:  %d", summary.skipped)
    logging.info("  Failed:   %d", len(summary.failed))

    if summary.failed:
        logging.info("Failed products:")
        for result in summary.failed:
            logging.info("  - %s: %s", result.item_name, result.error)


def print_dry_run(items: list[CatalogItem]) -> None:
    """List products without images; nothing is generated or uploaded."""
    print("Products without images:")
    for index, item in enumerate(items, 1):
        print(f"\n  {index}. {item.name}")
        print(f"     Number: {item.product_number}")
        print(f"     Description: {truncate(strip_html(item.description) or '(no description)', 150)}")
    print("\n[DRY RUN] Done. Run without --dry-run to generate and upload images.")


def main(argv: Optional[list[str]] = None) -> int:
    parser = argparse.ArgumentParser(description="Generate and upload cover images for Shopware products")
    parser.add_argument("--batch", action="store_true", help="Generate and upload all images without asking")
    parser.add_argument("--dry-run", action="store_true", help="List products without images and exit")
    parser.add_argument("--cache-dir", type=Path, default=Path("temp"), help="Directory for generated images")
    parser.add_argument("--prompt-template", type=Path, default=DEFAULT_TEMPLATE_PATH, help="Prompt template file")
    args = parser.parse_args(argv)

    if args.dry_run:
        logging.info("[DRY RUN] Skipping image generation and upload.")
    elif args.batch:
        logging.info("[BATCH] Auto-generating and uploading all images.")

    try:
        config = load_config()
    except ConfigError as e:
        logging.error("%s", e)
        logging.error("Set the variables in config.bat (or your shell) and try again.")
        return 1

    logging.info("API URL: %s", config.shopware_api_url)
    logging.info("Sales Channel: %s", config.sales_channel_id)

    client = ShopwareClient(
        config.shopware_api_url,
        config.shopware_client_id,
        config.shopware_client_secret,
    )

    try:
        client.authenticate()
        total, items = client.list_items_missing_image(config.sales_channel_id)
    except (AuthError, CatalogQueryError, requests.RequestException) as e:
        logging.error("Fatal error: %s", e)
        return 1

    logging.info("Found %d products without images (out of %d total).", len(items), total)

    if not items:
        logging.info("All products already have images. Nothing to do!")
        return 0

    if args.dry_run:
        print_dry_run(items)
        return 0

    try:
        generator = ImageGenerator(config.openai_api_key, args.prompt_template)
    except FileNotFoundError as e:
        logging.error("%s", e)
        return 1

    cache = ArtifactCache(args.cache_dir)
    sync = ProductImageSync(client, generator, cache)
    results = sync.run(items, batch=args.batch)

    summary = summarize(results)
    log_summary(summary)

    return 0 if not summary.failed else 1


if __name__ == "__main__":
    sys.exit(main())
