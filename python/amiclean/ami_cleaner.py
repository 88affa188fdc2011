#!/usr/bin/env python3
"""
Select and purge AMIs owned by the account.

An image is purged when all of the enabled criteria hold:
- its name starts with the configured prefix
- it was created on or before the expiration date
- (optionally) no instance in this account/region was launched from it
- its tag matches the configured key/value, or does not match when inverted

Purging an EBS-backed image deregisters it and then deletes every snapshot
referenced by its block device mappings. Instance-store-backed images are
never touched.

The AWS API cannot filter images by creation date or by the absence of a
tag value, so every owned image is fetched and filtered client side.
"""

from dataclasses import asdict, dataclass, field
from datetime import datetime, timezone
from typing import Dict, List, Optional, Tuple

from botocore.exceptions import BotoCoreError, ClientError

from amiclean.deletion_base import BaseDeletionScript
from amiclean.error_utils import ActionableError, create_ec2_error
from amiclean.logging_utils import format_fields, get_logger
from amiclean.tag_matching import match_tags

logger = get_logger(__name__)

# Date/time format EC2 uses for CreationDate
AWS_TIMESTAMP_FORMAT = "%Y-%m-%dT%H:%M:%S.%fZ"


def parse_creation_date(value: Optional[str]) -> Optional[datetime]:
    """Parse an EC2 CreationDate into an aware UTC datetime.

    Returns None for missing or unparseable values.
    """
    if not value:
        return None
    try:
        return datetime.strptime(value, AWS_TIMESTAMP_FORMAT).replace(tzinfo=timezone.utc)
    except (TypeError, ValueError):
        pass
    try:
        parsed = datetime.fromisoformat(value.replace("Z", "+00:00"))
    except (TypeError, ValueError):
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def get_snapshot_ids(image: Dict) -> List[str]:
    """Snapshot IDs referenced by an image's EBS block device mappings.

    Ephemeral (instance store) mappings and EBS mappings without a snapshot
    are skipped.
    """
    snapshot_ids = []
    for mapping in image.get("BlockDeviceMappings") or []:
        snapshot_id = (mapping.get("Ebs") or {}).get("SnapshotId")
        if snapshot_id:
            snapshot_ids.append(snapshot_id)
    return snapshot_ids


def get_volume_size_gib(image: Dict) -> int:
    """Total size of the image's EBS volumes in GiB"""
    return sum((m.get("Ebs") or {}).get("VolumeSize") or 0 for m in image.get("BlockDeviceMappings") or [])


@dataclass
class AMIPurgeInfo:
    """Data class for an image selected for purging"""

    image_id: str
    name: str
    creation_date: Optional[str]
    root_device_type: Optional[str]
    snapshot_ids: List[str] = field(default_factory=list)
    size_gib: int = 0
    matched_tag_key: Optional[str] = None
    matched_tag_value: Optional[str] = None

    @classmethod
    def from_image(cls, image: Dict, tag_key: Optional[str] = None) -> "AMIPurgeInfo":
        tag_value = None
        if tag_key:
            _, tag = match_tags(image, tag_key, "")
            tag_value = tag.get("Value")
        return cls(
            image_id=image["ImageId"],
            name=image.get("Name") or "",
            creation_date=image.get("CreationDate"),
            root_device_type=image.get("RootDeviceType"),
            snapshot_ids=get_snapshot_ids(image),
            size_gib=get_volume_size_gib(image),
            matched_tag_key=tag_key,
            matched_tag_value=tag_value,
        )


class AMIClean(BaseDeletionScript):
    """Finds AMIs matching a retention policy and purges them"""

    def __init__(
        self,
        expiration_date: datetime,
        name_prefix: str = "",
        tag_key: Optional[str] = None,
        tag_value: Optional[str] = None,
        invert: bool = False,
        unused: bool = False,
        delete: bool = False,
        region: Optional[str] = None,
        profile: Optional[str] = None,
        ec2_client=None,
    ):
        """
        Args:
            expiration_date: Images created after this moment are kept. Naive values are taken as UTC.
            name_prefix: Only images whose name starts with this prefix are considered
            tag_key: Tag key to match; None disables the tag criterion
            tag_value: Tag value to match
            invert: Select images that do NOT carry tag_key=tag_value
            unused: Only select images no instance was launched from
            delete: Actually purge; False means dry run
            region: AWS region
            profile: AWS profile
            ec2_client: Pre-built EC2 client
        """
        super().__init__(region=region, profile=profile, ec2_client=ec2_client)
        if expiration_date.tzinfo is None:
            expiration_date = expiration_date.replace(tzinfo=timezone.utc)
        self.expiration_date = expiration_date
        self.name_prefix = name_prefix or ""
        self.tag_key = tag_key
        self.tag_value = tag_value
        self.invert = invert
        self.unused = unused
        self.delete = delete

    def get_images(self) -> List[Dict]:
        """Get all private AMIs owned by this account"""
        try:
            output = self.ec2_client.describe_images(Owners=["self"])
        except (ClientError, BotoCoreError) as e:
            raise create_ec2_error("DescribeImages", e) from e

        images = output.get("Images", [])
        self.logger.info(f"Found {len(images)} images owned by this account")
        return images

    def check_unused(self, image: Dict) -> bool:
        """Return True when no instance in this account/region uses the image.

        Images shared with other accounts may be in use there; that cannot be
        seen from here. Launch configurations and launch templates are not
        checked either.

        Raises:
            ClientError, BotoCoreError: when DescribeInstances fails
        """
        output = self.ec2_client.describe_instances(
            Filters=[{"Name": "image-id", "Values": [image["ImageId"]]}]
        )
        return not output.get("Reservations")

    def check_image(self, image: Dict) -> bool:
        """Compare an image to the purge criteria; True means purge it"""
        image_id = image.get("ImageId")
        name = image.get("Name") or ""

        if not name.startswith(self.name_prefix):
            return False

        creation_date = parse_creation_date(image.get("CreationDate"))
        if creation_date is None:
            self.logger.warning(
                "Could not parse image creation date; keeping image "
                + format_fields(ami_id=image_id, ami_creation_date=image.get("CreationDate"))
            )
            return False
        if creation_date > self.expiration_date:
            return False

        if self.unused:
            try:
                unused = self.check_unused(image)
            except (ClientError, BotoCoreError) as e:
                # Bail out on errors; an image we cannot check is kept
                self.logger.error(
                    "Could not check for image in use " + format_fields(ami_id=image_id, error=e)
                )
                return False
            if not unused:
                return False

        if self.tag_key:
            match, matched_tag = match_tags(image, self.tag_key, self.tag_value)
        else:
            match, matched_tag = True, {}

        # Invert flips the sense of the tag match
        if self.invert != match:
            self.logger.debug(
                "ami matched selection criteria "
                + format_fields(
                    ami_id=image_id,
                    ami_name=name,
                    ami_tag_key=matched_tag.get("Key"),
                    ami_tag_value=matched_tag.get("Value"),
                    ami_creation_date=creation_date.isoformat(),
                )
            )
            return True

        return False

    def find_images_to_purge(self, images: List[Dict]) -> List[Dict]:
        """Filter images down to the ones matching the purge criteria"""
        purge_list = [image for image in images if self.check_image(image)]
        self.logger.info(f"{len(purge_list)} of {len(images)} images match the purge criteria")
        return purge_list

    def get_ids_to_process(self, images: List[Dict]) -> Tuple[List[str], List[str]]:
        """Return (ami_ids, snapshot_ids) for a purge list"""
        ami_ids = []
        snapshot_ids = []
        for image in images:
            ami_ids.append(image["ImageId"])
            snapshot_ids.extend(get_snapshot_ids(image))
        return ami_ids, snapshot_ids

    def purge_image(self, image: Dict) -> str:
        """Deregister a single image and delete its snapshots.

        Returns:
            The image ID

        Raises:
            ActionableError: when deregistration or a snapshot deletion fails
        """
        image_id = image["ImageId"]

        # Only EBS-backed images are handled; instance-store images keep their bundles in S3
        if image.get("RootDeviceType") != "ebs":
            self.logger.info("image root device not EBS; will not purge " + format_fields(ami_id=image_id))
            return image_id

        snapshot_ids = get_snapshot_ids(image)

        if self.delete:
            self.logger.info("deregistering ami " + format_fields(ami_id=image_id))
            try:
                self.ec2_client.deregister_image(ImageId=image_id, DryRun=False)
            except (ClientError, BotoCoreError) as e:
                error = create_ec2_error("DeregisterImage", e, resource_id=image_id)
                error.details.update({"deregistered": False, "snapshots_deleted": []})
                raise error from e
        else:
            self.logger.info("would deregister ami " + format_fields(ami_id=image_id))

        # Snapshots already removed when a later deletion fails
        deleted = []
        for snapshot_id in snapshot_ids:
            if self.delete:
                self.logger.info("deleting snapshot " + format_fields(snapshot_id=snapshot_id))
                try:
                    self.ec2_client.delete_snapshot(SnapshotId=snapshot_id, DryRun=False)
                except (ClientError, BotoCoreError) as e:
                    error = create_ec2_error("DeleteSnapshot", e, resource_id=snapshot_id)
                    error.details.update({"ami_id": image_id, "deregistered": True, "snapshots_deleted": deleted})
                    raise error from e
                deleted.append(snapshot_id)
            else:
                self.logger.info("would delete snapshot " + format_fields(snapshot_id=snapshot_id))

        return image_id

    def purge_images(self, images: List[Dict]) -> Dict:
        """Purge every image in the list, continuing past individual failures.

        In dry run the counts are reported as images_to_deregister and
        snapshots_to_delete, since nothing was removed.

        Returns:
            Dict with counts and per-image results
        """
        if self.delete:
            image_key, snapshot_key = "images_deregistered", "snapshots_deleted"
        else:
            image_key, snapshot_key = "images_to_deregister", "snapshots_to_delete"

        results = {
            image_key: 0,
            snapshot_key: 0,
            "images_skipped": 0,
            "purged": [],
            "failed": [],
        }

        for image in images:
            image_id = image["ImageId"]
            if image.get("RootDeviceType") != "ebs":
                self.purge_image(image)
                results["images_skipped"] += 1
                continue

            try:
                self.purge_image(image)
            except ActionableError as e:
                self.logger.error(f"Failed to purge {image_id}: {e.message}")
                for suggestion in e.suggestions[:2]:
                    self.logger.error(f"   💡 {suggestion}")
                deregistered = bool(e.details.get("deregistered"))
                snapshots_deleted = list(e.details.get("snapshots_deleted", []))
                if deregistered:
                    results[image_key] += 1
                results[snapshot_key] += len(snapshots_deleted)
                results["failed"].append(
                    {
                        "image_id": image_id,
                        "error": e.message,
                        "deregistered": deregistered,
                        "snapshots_deleted": snapshots_deleted,
                        "details": e.details,
                    }
                )
                continue

            results[image_key] += 1
            results[snapshot_key] += len(get_snapshot_ids(image))
            results["purged"].append(image_id)

        return results

    def generate_report(
        self,
        all_images: List[Dict],
        purge_list: List[Dict],
        purge_results: Optional[Dict] = None,
    ) -> Dict:
        """Build the JSON report for a run"""
        candidates = [AMIPurgeInfo.from_image(image, self.tag_key) for image in purge_list]
        ami_ids, snapshot_ids = self.get_ids_to_process(purge_list)

        summary = {
            "total_images_scanned": len(all_images),
            "images_matched": len(purge_list),
            "snapshots_matched": len(snapshot_ids),
            "snapshot_storage_gib": sum(c.size_gib for c in candidates if c.root_device_type == "ebs"),
        }
        if purge_results is not None:
            for key in ("images_deregistered", "snapshots_deleted", "images_to_deregister", "snapshots_to_delete"):
                if key in purge_results:
                    summary[key] = purge_results[key]
            summary["images_skipped"] = purge_results["images_skipped"]
            summary["failed"] = len(purge_results["failed"])

        return {
            "summary": summary,
            "images": [asdict(c) for c in candidates],
            "ami_ids": ami_ids,
            "snapshot_ids": snapshot_ids,
            "failures": (purge_results or {}).get("failed", []),
            "metadata": {
                "region": self.region,
                "profile": self.profile,
                "dry_run": not self.delete,
                "name_prefix": self.name_prefix,
                "expiration_date": self.expiration_date.isoformat(),
                "tag_key": self.tag_key,
                "tag_value": self.tag_value,
                "invert": self.invert,
                "unused_only": self.unused,
                "analysis_timestamp": datetime.now(timezone.utc).isoformat(),
            },
        }
