"""
Script to run the monthly TISS batch generation manually
Can be scheduled as a cron job or run manually

Usage:
    python run_tiss_batches.py [--force] [--clinic-id ID] [--reference YYYY-MM]

Examples:
    python run_tiss_batches.py                          # Clinics whose generation day is today
    python run_tiss_batches.py --force                  # Every eligible clinic, ignoring the day
    python run_tiss_batches.py --force --clinic-id 3    # Only clinic 3
    python run_tiss_batches.py --reference 2026-08      # Bill August 2026 instead of last month
"""
import asyncio
import argparse
import sys

# Set UTF-8 encoding for Windows console
if sys.platform == 'win32':
    sys.stdout.reconfigure(encoding='utf-8')
    sys.stderr.reconfigure(encoding='utf-8')

from dotenv import load_dotenv
load_dotenv()

from database import AsyncSessionLocal  # noqa: E402
from app.core.error_handling import ValidationException  # noqa: E402
from app.services.tiss.batch_generator import BatchGeneratorService, parse_reference  # noqa: E402


async def run_batches(force: bool = False, clinic_id=None, reference=None) -> int:
    """Run the batch job and print its report; returns the number of failed units"""
    print("=" * 60, flush=True)
    print("🚀 Starting TISS Batch Generation", flush=True)
    print("=" * 60, flush=True)

    async with AsyncSessionLocal() as db:
        report = await BatchGeneratorService(db).run_monthly_job(
            force=force,
            clinic_id=clinic_id,
            reference=reference,
        )

    print(f"\n📅 Reference: {report.reference_month:02d}/{report.reference_year}")
    print("=" * 60)
    print("📊 Summary:")
    print(f"   Clinics processed: {report.clinics_processed}")
    print(f"   Batches created:   {report.batches_created}")
    print(f"   Guides created:    {report.guides_created}")
    print(f"   Skipped:           {report.skipped}")
    print(f"   Errors:            {len(report.errors)}")
    for error in report.errors:
        print(f"     ❌ Clinic {error.clinic_id} / insurer {error.insurer_id}: {error.message}")
    print("=" * 60)
    print("✅ TISS batch generation completed!")
    return len(report.errors)


def main():
    """Main entry point"""
    parser = argparse.ArgumentParser(
        description="Generate monthly TISS batches for eligible clinics",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_tiss_batches.py --force
  python run_tiss_batches.py --force --clinic-id 3
  python run_tiss_batches.py --reference 2026-08
        """
    )

    parser.add_argument(
        "--force",
        action="store_true",
        help="Ignore each clinic's configured generation day"
    )
    parser.add_argument(
        "--clinic-id",
        type=int,
        default=None,
        help="Restrict the run to one clinic"
    )
    parser.add_argument(
        "--reference",
        default=None,
        help="Month to bill as YYYY-MM (default: previous month)"
    )

    args = parser.parse_args()

    try:
        reference = parse_reference(args.reference) if args.reference else None
    except ValidationException as e:
        parser.error(e.message)

    failures = asyncio.run(run_batches(force=args.force, clinic_id=args.clinic_id, reference=reference))
    sys.exit(1 if failures else 0)


if __name__ == "__main__":
    main()
