#!/usr/bin/env python3
"""
Find and optionally purge AMIs matching an age/tag/usage policy.

Every private image owned by the account is checked against the policy.
Matching EBS-backed images are deregistered and their snapshots deleted
(with --apply). Without --apply the run only reports what would happen.

Usage examples:
  # Dry run: images older than 30 days whose name starts with "app-"
  ami-cleaner --prefix app- --days 30

  # Purge images built from any branch except master
  ami-cleaner --branch '!master' --apply

  # Purge images tagged Environment=staging that no instance uses
  ami-cleaner --tag-key Environment --tag-value staging --unused --apply --force

  # Use a specific profile/region
  ami-cleaner --profile ci --region us-west-2
"""

import argparse
import logging
import sys
from datetime import datetime, timedelta, timezone
from typing import Dict, List, Optional

from tabulate import tabulate

from amiclean.ami_cleaner import AMIClean, get_snapshot_ids
from amiclean.config_manager import config_manager
from amiclean.error_utils import ActionableError, create_config_error
from amiclean.logging_utils import get_logger, log_exception, setup_logging
from amiclean.report_utils import save_json
from amiclean.tag_matching import BRANCH_TAG_KEY, format_tags, parse_branch_filter

logger = get_logger(__name__)


def parse_arguments(argv: Optional[List[str]] = None):
    """Parse command line arguments"""
    parser = argparse.ArgumentParser(
        description="Find and purge AMIs (and their EBS snapshots) matching a retention policy",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=__doc__,
    )

    parser.add_argument("--prefix", help="Only consider images whose name starts with this prefix (default: any)")

    parser.add_argument(
        "--days",
        type=int,
        help="Age of AMI in days before it is a candidate for removal (default: from config, 30)",
    )

    parser.add_argument("--tag-key", help="Tag key images must carry (default: from config)")

    parser.add_argument("--tag-value", help="Value the tag must have")

    parser.add_argument(
        "--branch",
        help=f"Shortcut for --tag-key {BRANCH_TAG_KEY} --tag-value BRANCH. Preface with ! to purge all "
        "branches *but* this one (eg, !master purges all AMIs not from the master branch)",
    )

    parser.add_argument(
        "--invert", action="store_true", help="Purge images that do NOT match the tag (requires --tag-key)"
    )

    parser.add_argument(
        "--unused", action="store_true", help="Only purge images not used by any instance in this account/region"
    )

    parser.add_argument(
        "--apply", action="store_true", help="Actually deregister AMIs and delete snapshots (default: dry-run)"
    )

    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Force dry-run even if config.yaml sets security.dry_run_by_default to false",
    )

    parser.add_argument("--force", action="store_true", help="Skip confirmation prompt when using --apply")

    parser.add_argument("-r", "--region", help="AWS region to use (default: from config, env or boto3)")

    parser.add_argument("-p", "--profile", help="AWS profile to use (default: from config, env or boto3)")

    parser.add_argument("--output", help="Output file path (default: reports/ami-purge-report.json)")

    parser.add_argument(
        "--timestamp", action="store_true", help="Append a timestamp to the report filename so earlier runs are kept"
    )

    parser.add_argument(
        "--skip-health-checks", action="store_true", help="Skip credential and permission checks before running"
    )

    parser.add_argument("-v", "--verbose", action="store_true", help="Log each matching image")

    parser.add_argument("--show-config", action="store_true", help="Print the effective configuration and exit")

    return parser.parse_args(argv)


def resolve_tag_filter(args) -> Dict:
    """Combine --branch, --tag-key/--tag-value, --invert and config into one tag filter.

    Raises:
        ActionableError: when the combination is incomplete
    """
    tag_key = args.tag_key or config_manager.get_tag_key()
    tag_value = args.tag_value if args.tag_value is not None else config_manager.get_tag_value()
    invert = args.invert or config_manager.is_invert()

    if args.branch:
        branch, branch_invert = parse_branch_filter(args.branch)
        if not branch:
            raise create_config_error("branch", args.branch, "branch name is empty")
        tag_key = args.tag_key or BRANCH_TAG_KEY
        tag_value = branch
        invert = invert or branch_invert

    if tag_key and tag_value is None:
        raise create_config_error("tag_value", tag_value, f"a value is required for tag key '{tag_key}'")
    if tag_value is not None and not tag_key:
        raise create_config_error("tag_key", tag_key, "a tag key is required when a tag value is given")
    if invert and not tag_key:
        raise create_config_error("tag_key", tag_key, "--invert needs a tag to invert")

    return {"tag_key": tag_key, "tag_value": tag_value, "invert": invert}


def is_delete_mode(args) -> bool:
    """--apply deletes; --dry-run always wins; otherwise follow config"""
    if args.dry_run:
        return False
    if args.apply:
        return True
    return not config_manager.is_dry_run_by_default()


def format_candidates_table(images: List[Dict]) -> str:
    """Tabulate the images selected for purging"""
    rows = []
    for image in images:
        rows.append(
            [
                image.get("ImageId"),
                image.get("Name") or "",
                image.get("CreationDate") or "",
                image.get("RootDeviceType") or "",
                len(get_snapshot_ids(image)),
                format_tags(image.get("Tags")),
            ]
        )
    headers = ["AMI", "Name", "Created", "Root", "Snapshots", "Tags"]
    return tabulate(rows, headers=headers, tablefmt="grid")


def main(argv: Optional[List[str]] = None) -> int:
    """Main function"""
    args = parse_arguments(argv)
    setup_logging(logging.DEBUG if args.verbose else logging.INFO)

    if args.show_config:
        config_manager.print_config()
        return 0

    output_file = args.output or config_manager.get_purge_report_path()

    try:
        tag_filter = resolve_tag_filter(args)

        days = args.days if args.days is not None else config_manager.get_retention_days()
        if days < 0:
            raise create_config_error("days", days, "must not be negative")
        name_prefix = args.prefix if args.prefix is not None else config_manager.get_name_prefix()
        unused = args.unused or config_manager.is_unused_only()
        delete = is_delete_mode(args)

        expiration_date = datetime.now(timezone.utc) - timedelta(days=days)

        logger.info("=" * 60)
        if delete:
            logger.info("   🗑️  DELETION MODE: Purging AMIs and their snapshots")
            logger.warning("⚠️  AMIs WILL be deregistered and snapshots deleted!")
        else:
            logger.info("   🔍 DRY RUN MODE (default): Finding AMIs to purge")
            logger.info("   Nothing will be deleted. Use --apply to actually purge AMIs.")
        logger.info("=" * 60)
        logger.info(f"Name prefix: {name_prefix or '(any)'}")
        logger.info(f"Created on or before: {expiration_date.isoformat()} ({days} days)")
        if tag_filter["tag_key"]:
            op = "!=" if tag_filter["invert"] else "=="
            logger.info(f"Tag: {tag_filter['tag_key']} {op} {tag_filter['tag_value']}")
        logger.info(f"Unused only: {unused}")

        cleaner = AMIClean(
            expiration_date=expiration_date,
            name_prefix=name_prefix,
            tag_key=tag_filter["tag_key"],
            tag_value=tag_filter["tag_value"],
            invert=tag_filter["invert"],
            unused=unused,
            delete=delete,
            region=args.region,
            profile=args.profile,
        )

        if not args.skip_health_checks and not cleaner.run_health_checks():
            return 1

        all_images = cleaner.get_images()
        purge_list = cleaner.find_images_to_purge(all_images)

        if not purge_list:
            logger.info("✅ No AMIs match the purge criteria")
            report = cleaner.generate_report(all_images, purge_list)
            output_file = save_json(output_file, report, timestamp=args.timestamp)
            logger.info(f"Report written to {output_file}")
            return 0

        print(format_candidates_table(purge_list))

        if delete and not cleaner.confirm_deletion(len(purge_list), "AMIs (and their snapshots)", force=args.force):
            logger.info("Operation cancelled by user")
            return 0

        purge_results = cleaner.purge_images(purge_list)
        report = cleaner.generate_report(all_images, purge_list, purge_results)
        output_file = save_json(output_file, report, timestamp=args.timestamp)

        summary = dict(report["summary"])
        summary["results_file"] = output_file
        cleaner.log_summary(summary, dry_run=not delete)

        if purge_results["failed"]:
            logger.error(f"❌ {len(purge_results['failed'])} AMIs could not be purged")
            return 1

        if not delete:
            logger.info("\n" + "=" * 60)
            logger.info("🔍 DRY RUN MODE COMPLETED")
            logger.info("=" * 60)
            logger.info("No AMIs were deleted. Re-run with --apply to purge them.")
        else:
            logger.info("\n✅ AMI purge completed successfully!")
        return 0

    except KeyboardInterrupt:
        logger.warning("\n⚠️  Operation interrupted by user")
        return 1
    except ActionableError as e:
        logger.error(e.format_message())
        return 1
    except Exception as e:
        log_exception(logger, f"❌ Operation failed: {e}", exc_info=e)
        return 1


if __name__ == "__main__":
    sys.exit(main())
