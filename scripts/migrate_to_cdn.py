#!/usr/bin/env python3
"""Clean up legacy product image records and verify CDN storage is ready.

Run with: python scripts/migrate_to_cdn.py [--yes] [--dry-run]
"""
import argparse
import logging
import sys
from pathlib import Path
from typing import List, Optional

# 确保可以导入 catalog_media.*
ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))

from catalog_media.cdn import CdnStorage
from catalog_media.config import Settings, get_settings
from catalog_media.database import SessionLocal
from catalog_media.exceptions import MigrationError
from catalog_media.migration import MigrationJob, MigrationReport, Outcome, Phase


STEP_NUMBERS = {
    Phase.CHECK_CONFIG: 1,
    Phase.TEST_CONNECTION: 2,
    Phase.INVENTORY: 3,
    Phase.SAMPLE: 4,
    Phase.PURGE: 5,
    Phase.VERIFY_PURGE: 6,
    Phase.SMOKE_TEST_UPLOAD: 7,
    Phase.SMOKE_TEST_DELETE: 8,
    Phase.DONE: 9,
}


def print_progress(phase: Phase, message: str) -> None:
    print(f"\n[{STEP_NUMBERS[phase]}] {phase.value}: {message}")


def make_confirm(assume_yes: bool):
    def confirm(report: MigrationReport) -> bool:
        print("\nWARNING: this will delete ALL existing product image records. This cannot be undone.")
        print(f"   - {report.total_images} image records")
        print(f"   - image associations for {report.products_with_images} products")
        if assume_yes:
            return True
        if not sys.stdin.isatty():
            print("   Not running interactively; pass --yes to confirm.")
            return False
        answer = input("   Type 'yes' to continue: ")
        return answer.strip().lower() == "yes"

    return confirm


def print_report(report: MigrationReport, settings: Settings) -> None:
    print(f"   Total images in database: {report.total_images}")
    print(f"   Products with images: {report.products_with_images}")
    for index, sample in enumerate(report.samples, start=1):
        print(f"   {index}. Product: {sample.product_title or 'Unknown'} (#{sample.product_id})")
        print(f"      storage_key: {sample.storage_key}")
        print(f"      url: {sample.url}")
        print(f"      size_variant: {sample.size_variant}")

    if report.outcome == Outcome.NOTHING_TO_DO:
        print("\nNo images to migrate. Database is already clean.")
        return
    if report.outcome == Outcome.DRY_RUN:
        print(f"\nDry run: {report.total_images} image records would be deleted.")
        return
    if report.outcome == Outcome.DECLINED:
        print("\nAborted: image deletion was not confirmed. Nothing was changed.")
        return

    print(f"\n   Deleted image records: {report.deleted}")
    print(f"   Remaining images: {report.remaining_images}")
    print(f"   Products with images: {report.remaining_products}")
    if report.purge_incomplete:
        print("   WARNING: some images may still remain in the database")
    print(f"   Test upload URL: {report.smoke_test_url}")

    print("\nMigration completed successfully.")
    print("Next steps: re-upload product images through the normal upload flow;")
    print("new images are stored on the CDN and their URLs are generated automatically.")
    print("\nCDN configuration:")
    print(f"   Storage URL: {settings.STORAGE_URL}")
    print(f"   CDN URL: {settings.STORAGE_SERVER_BASE_URL}")
    print(f"   Access Key: {'set' if settings.STORAGE_SERVER_ACCESS_KEY else 'missing'}")


def main(argv: Optional[List[str]] = None, *, session_factory=None, storage: Optional[CdnStorage] = None) -> int:
    parser = argparse.ArgumentParser(description="Migrate product images to CDN storage")
    parser.add_argument("--yes", action="store_true", help="delete existing image records without prompting")
    parser.add_argument("--dry-run", action="store_true", help="only inventory and sample existing records")
    args = parser.parse_args(argv)

    settings = get_settings()
    logging.basicConfig(level=settings.LOG_LEVEL, format="%(asctime)s %(levelname)s %(name)s: %(message)s")
    storage = storage or CdnStorage(settings)
    db = (session_factory or SessionLocal)()

    print("Starting migration to CDN storage...")
    try:
        job = MigrationJob(
            db,
            storage,
            confirm=make_confirm(args.yes),
            dry_run=args.dry_run,
            progress=print_progress,
        )
        report = job.run()
    except MigrationError as e:
        print(f"\nMigration failed: {e}", file=sys.stderr)
        return 1
    finally:
        db.close()

    print_report(report, storage.settings)
    return 0


if __name__ == "__main__":
    sys.exit(main())
