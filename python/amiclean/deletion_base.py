"""
Base class for deletion scripts to standardize behavior.

This module provides common functionality for deletion scripts including:
- AWS session and EC2 client wiring
- Standardized confirmation prompts
- Pre-flight health checks
- Logging consistency
"""

from typing import Any, Dict, Optional

from amiclean.aws_session import make_ec2_client, make_session
from amiclean.config_manager import config_manager
from amiclean.health_checks import HealthChecker
from amiclean.logging_utils import get_logger
from amiclean.report_utils import sizeof_fmt


class BaseDeletionScript:
    """Base class for deletion scripts with common functionality"""

    def __init__(
        self,
        region: Optional[str] = None,
        profile: Optional[str] = None,
        ec2_client=None,
    ):
        """Initialize base deletion script

        Args:
            region: AWS region (default: from config or boto3)
            profile: AWS profile (default: from config or boto3)
            ec2_client: Pre-built EC2 client; when omitted one is created from a new session
        """
        self.logger = get_logger(self.__class__.__name__)
        self.session = None

        if ec2_client is None:
            self.session = make_session(region, profile)
            ec2_client = make_ec2_client(self.session)

        self.ec2_client = ec2_client
        self.region = region or getattr(self.session, "region_name", None) or config_manager.get_region()
        self.profile = profile or config_manager.get_profile()

        self.health_checker = HealthChecker(session=self.session, ec2_client=self.ec2_client)

    def confirm_deletion(self, count: int, item_type: str, force: bool = False) -> bool:
        """Standardized confirmation prompt for deletions

        Args:
            count: Number of items to be deleted
            item_type: Type of items (e.g., "AMIs")
            force: If True, skip confirmation and return True

        Returns:
            True if user confirmed, False otherwise
        """
        if force or not config_manager.requires_confirmation():
            self.logger.warning("⚠️  Skipping confirmation prompt")
            return True

        print("\n" + "=" * 60)
        print("⚠️  WARNING: You are about to DEREGISTER AMIs and DELETE their snapshots!")
        print("=" * 60)
        print(f"This will delete {count} {item_type}.")
        print("This action cannot be undone.")
        print("Make sure you have reviewed the dry-run output above.")
        print("=" * 60)

        while True:
            response = input("Are you sure you want to proceed with deletion? (yes/no): ").lower().strip()
            if response in ["yes", "y"]:
                return True
            elif response in ["no", "n"]:
                return False
            else:
                print("Please enter 'yes' or 'no'.")

    def run_health_checks(self) -> bool:
        """Run health checks before deletion operations

        Returns:
            True if all checks passed, False otherwise
        """
        self.logger.info("Running health checks...")
        results = self.health_checker.run_all_checks()

        if not all(r.status for r in results):
            self.logger.error("Health checks failed - AWS is not accessible with the current settings")
            self.health_checker.print_health_report(results)
            return False

        self.logger.info("✓ All health checks passed")
        return True

    def log_summary(self, summary: Dict[str, Any], dry_run: bool = False) -> None:
        """Log a standardized deletion summary

        Args:
            summary: Dictionary with summary information
            dry_run: Whether this was a dry run
        """
        mode = "DRY RUN: " if dry_run else ""
        self.logger.info(f"\n📊 {mode}Deletion Summary:")

        if "total_images_scanned" in summary:
            self.logger.info(f"   Images scanned: {summary['total_images_scanned']}")
        if "images_matched" in summary:
            self.logger.info(f"   Images matching policy: {summary['images_matched']}")
        if "images_to_deregister" in summary:
            self.logger.info(f"   Would deregister: {summary['images_to_deregister']}")
        if "snapshots_to_delete" in summary:
            self.logger.info(f"   Would delete snapshots: {summary['snapshots_to_delete']}")
        if "images_deregistered" in summary:
            self.logger.info(f"   Deregistered: {summary['images_deregistered']}")
        if "snapshots_deleted" in summary:
            self.logger.info(f"   Snapshots deleted: {summary['snapshots_deleted']}")
        if "images_skipped" in summary:
            self.logger.info(f"   Skipped (not EBS-backed): {summary['images_skipped']}")
        if "failed" in summary:
            self.logger.info(f"   Failed: {summary['failed']}")
        if "snapshot_storage_gib" in summary:
            self.logger.info(
                f"   {'Would free' if dry_run else 'Freed'}: "
                f"{sizeof_fmt(summary['snapshot_storage_gib'] * 1024 ** 3)} of snapshot storage"
            )
        if "results_file" in summary:
            self.logger.info(f"   Results saved to: {summary['results_file']}")
