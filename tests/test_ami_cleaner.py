"""
Tests for image selection and purge logic in ami_cleaner.py

The EC2 client is a Mock; API failures are simulated with botocore ClientErrors.
"""

from datetime import datetime, timedelta, timezone
from unittest.mock import Mock, call

import pytest
from botocore.exceptions import ClientError

from amiclean.ami_cleaner import (
    AMIClean,
    AMIPurgeInfo,
    get_snapshot_ids,
    get_volume_size_gib,
    parse_creation_date,
)
from amiclean.error_utils import ActionableError

NOW = datetime(2024, 6, 1, 12, 0, 0, tzinfo=timezone.utc)
EXPIRATION = NOW - timedelta(days=30)


def make_image(
    image_id="ami-0001",
    name="app-build-1",
    created=NOW - timedelta(days=60),
    tags=None,
    root_device_type="ebs",
    snapshots=("snap-0001",),
):
    """Build an image dict shaped like a describe_images entry"""
    mappings = [
        {"DeviceName": f"/dev/sd{chr(97 + i)}", "Ebs": {"SnapshotId": snap, "VolumeSize": 8}}
        for i, snap in enumerate(snapshots)
    ]
    image = {
        "ImageId": image_id,
        "Name": name,
        "CreationDate": created.strftime("%Y-%m-%dT%H:%M:%S.000Z") if isinstance(created, datetime) else created,
        "RootDeviceType": root_device_type,
        "BlockDeviceMappings": mappings,
    }
    if tags is not None:
        image["Tags"] = tags
    return image


def client_error(code, operation="DeregisterImage"):
    return ClientError({"Error": {"Code": code, "Message": f"{code} happened"}}, operation)


@pytest.fixture
def ec2():
    client = Mock()
    client.describe_instances.return_value = {"Reservations": []}
    return client


def make_cleaner(ec2, **kwargs):
    kwargs.setdefault("expiration_date", EXPIRATION)
    return AMIClean(ec2_client=ec2, **kwargs)


class TestParseCreationDate:
    """Tests for parse_creation_date"""

    def test_aws_format(self):
        ts = parse_creation_date("2024-01-15T10:30:00.000Z")
        assert ts == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_iso_with_offset(self):
        ts = parse_creation_date("2024-01-15T10:30:00+02:00")
        assert ts == datetime(2024, 1, 15, 8, 30, tzinfo=timezone.utc)

    def test_invalid_values(self):
        assert parse_creation_date("") is None
        assert parse_creation_date(None) is None
        assert parse_creation_date("yesterday") is None


class TestBlockDeviceHelpers:
    """Tests for snapshot and size extraction"""

    def test_skips_ephemeral_and_snapshotless_mappings(self):
        image = {
            "BlockDeviceMappings": [
                {"DeviceName": "/dev/sda1", "Ebs": {"SnapshotId": "snap-1", "VolumeSize": 8}},
                {"DeviceName": "/dev/sdb", "VirtualName": "ephemeral0"},
                {"DeviceName": "/dev/sdc", "Ebs": {"VolumeSize": 20}},
                {"DeviceName": "/dev/sdd", "Ebs": {"SnapshotId": "snap-2", "VolumeSize": 100}},
            ]
        }

        assert get_snapshot_ids(image) == ["snap-1", "snap-2"]
        assert get_volume_size_gib(image) == 128

    def test_no_mappings(self):
        assert get_snapshot_ids({}) == []
        assert get_volume_size_gib({}) == 0


class TestCheckImage:
    """Tests for the composite selection predicate"""

    def test_old_image_without_filters_is_selected(self, ec2):
        cleaner = make_cleaner(ec2)
        assert cleaner.check_image(make_image()) is True

    def test_name_prefix_mismatch(self, ec2):
        cleaner = make_cleaner(ec2, name_prefix="web-")
        assert cleaner.check_image(make_image(name="app-build-1")) is False

    def test_name_prefix_match(self, ec2):
        cleaner = make_cleaner(ec2, name_prefix="app-")
        assert cleaner.check_image(make_image(name="app-build-1")) is True

    def test_missing_name_only_matches_empty_prefix(self, ec2):
        image = make_image()
        del image["Name"]

        assert make_cleaner(ec2).check_image(image) is True
        assert make_cleaner(ec2, name_prefix="app-").check_image(image) is False

    def test_recent_image_is_kept(self, ec2):
        cleaner = make_cleaner(ec2)
        assert cleaner.check_image(make_image(created=NOW - timedelta(days=5))) is False

    def test_image_created_exactly_at_expiration_is_selected(self, ec2):
        cleaner = make_cleaner(ec2)
        assert cleaner.check_image(make_image(created=EXPIRATION)) is True

    def test_unparseable_creation_date_is_kept(self, ec2):
        cleaner = make_cleaner(ec2)
        assert cleaner.check_image(make_image(created="not-a-date")) is False

    def test_naive_expiration_date_treated_as_utc(self, ec2):
        cleaner = AMIClean(expiration_date=EXPIRATION.replace(tzinfo=None), ec2_client=ec2)
        assert cleaner.expiration_date.tzinfo == timezone.utc
        assert cleaner.check_image(make_image()) is True

    def test_tag_match_selects(self, ec2):
        cleaner = make_cleaner(ec2, tag_key="Branch", tag_value="feature-x")
        image = make_image(tags=[{"Key": "Branch", "Value": "feature-x"}])
        assert cleaner.check_image(image) is True

    def test_tag_mismatch_keeps(self, ec2):
        cleaner = make_cleaner(ec2, tag_key="Branch", tag_value="feature-x")
        image = make_image(tags=[{"Key": "Branch", "Value": "master"}])
        assert cleaner.check_image(image) is False

    def test_inverted_tag_match_keeps(self, ec2):
        cleaner = make_cleaner(ec2, tag_key="Branch", tag_value="master", invert=True)
        image = make_image(tags=[{"Key": "Branch", "Value": "master"}])
        assert cleaner.check_image(image) is False

    def test_inverted_tag_mismatch_selects(self, ec2):
        cleaner = make_cleaner(ec2, tag_key="Branch", tag_value="master", invert=True)
        image = make_image(tags=[{"Key": "Branch", "Value": "feature-x"}])
        assert cleaner.check_image(image) is True

    def test_inverted_with_missing_tag_selects(self, ec2):
        cleaner = make_cleaner(ec2, tag_key="Branch", tag_value="master", invert=True)
        assert cleaner.check_image(make_image(tags=[])) is True

    def test_unused_check_not_called_when_disabled(self, ec2):
        make_cleaner(ec2).check_image(make_image())
        ec2.describe_instances.assert_not_called()

    def test_in_use_image_is_kept(self, ec2):
        ec2.describe_instances.return_value = {"Reservations": [{"Instances": [{"InstanceId": "i-1"}]}]}
        cleaner = make_cleaner(ec2, unused=True)

        assert cleaner.check_image(make_image(image_id="ami-used")) is False
        ec2.describe_instances.assert_called_once_with(
            Filters=[{"Name": "image-id", "Values": ["ami-used"]}]
        )

    def test_unused_image_is_selected(self, ec2):
        cleaner = make_cleaner(ec2, unused=True)
        assert cleaner.check_image(make_image()) is True

    def test_unused_check_error_keeps_image(self, ec2):
        ec2.describe_instances.side_effect = client_error("UnauthorizedOperation", "DescribeInstances")
        cleaner = make_cleaner(ec2, unused=True)

        assert cleaner.check_image(make_image()) is False

    def test_age_is_checked_before_usage(self, ec2):
        cleaner = make_cleaner(ec2, unused=True)
        cleaner.check_image(make_image(created=NOW - timedelta(days=1)))
        ec2.describe_instances.assert_not_called()


class TestCheckUnused:
    """Tests for check_unused"""

    def test_no_reservations_key(self, ec2):
        ec2.describe_instances.return_value = {}
        assert make_cleaner(ec2).check_unused(make_image()) is True

    def test_error_propagates(self, ec2):
        ec2.describe_instances.side_effect = client_error("RequestLimitExceeded", "DescribeInstances")
        with pytest.raises(ClientError):
            make_cleaner(ec2).check_unused(make_image())


class TestGetImages:
    """Tests for get_images"""

    def test_requests_owned_images(self, ec2):
        ec2.describe_images.return_value = {"Images": [make_image()]}

        images = make_cleaner(ec2).get_images()

        assert len(images) == 1
        ec2.describe_images.assert_called_once_with(Owners=["self"])

    def test_api_error_is_actionable(self, ec2):
        ec2.describe_images.side_effect = client_error("UnauthorizedOperation", "DescribeImages")

        with pytest.raises(ActionableError) as exc_info:
            make_cleaner(ec2).get_images()

        assert "DescribeImages" in exc_info.value.message


class TestPurgeImage:
    """Tests for purge_image"""

    def test_dry_run_makes_no_mutating_calls(self, ec2):
        cleaner = make_cleaner(ec2, delete=False)

        result = cleaner.purge_image(make_image(snapshots=("snap-1", "snap-2")))

        assert result == "ami-0001"
        ec2.deregister_image.assert_not_called()
        ec2.delete_snapshot.assert_not_called()

    def test_delete_deregisters_then_deletes_snapshots(self, ec2):
        cleaner = make_cleaner(ec2, delete=True)

        result = cleaner.purge_image(make_image(snapshots=("snap-1", "snap-2")))

        assert result == "ami-0001"
        ec2.deregister_image.assert_called_once_with(ImageId="ami-0001", DryRun=False)
        assert ec2.delete_snapshot.call_args_list == [
            call(SnapshotId="snap-1", DryRun=False),
            call(SnapshotId="snap-2", DryRun=False),
        ]

    def test_deregister_happens_before_snapshot_deletion(self, ec2):
        calls = []
        ec2.deregister_image.side_effect = lambda **kw: calls.append("deregister")
        ec2.delete_snapshot.side_effect = lambda **kw: calls.append("delete")

        make_cleaner(ec2, delete=True).purge_image(make_image(snapshots=("snap-1",)))

        assert calls == ["deregister", "delete"]

    def test_instance_store_image_is_not_purged(self, ec2):
        cleaner = make_cleaner(ec2, delete=True)

        result = cleaner.purge_image(make_image(root_device_type="instance-store", snapshots=()))

        assert result == "ami-0001"
        ec2.deregister_image.assert_not_called()
        ec2.delete_snapshot.assert_not_called()

    def test_deregister_failure_skips_snapshots(self, ec2):
        ec2.deregister_image.side_effect = client_error("InvalidAMIID.Unavailable")
        cleaner = make_cleaner(ec2, delete=True)

        with pytest.raises(ActionableError) as exc_info:
            cleaner.purge_image(make_image())

        assert "DeregisterImage" in exc_info.value.message
        assert exc_info.value.details["resource_id"] == "ami-0001"
        ec2.delete_snapshot.assert_not_called()

    def test_snapshot_failure_stops_at_first_error(self, ec2):
        ec2.delete_snapshot.side_effect = client_error("InvalidSnapshot.InUse", "DeleteSnapshot")
        cleaner = make_cleaner(ec2, delete=True)

        with pytest.raises(ActionableError) as exc_info:
            cleaner.purge_image(make_image(snapshots=("snap-1", "snap-2")))

        assert exc_info.value.details["resource_id"] == "snap-1"
        assert ec2.delete_snapshot.call_count == 1


class TestPurgeWorkflow:
    """Tests for find/purge/report across a list of images"""

    @pytest.fixture
    def images(self):
        return [
            make_image(image_id="ami-old", snapshots=("snap-a", "snap-b")),
            make_image(image_id="ami-new", created=NOW - timedelta(days=2)),
            make_image(image_id="ami-store", root_device_type="instance-store", snapshots=()),
            make_image(image_id="ami-other", name="web-1"),
        ]

    def test_find_images_to_purge(self, ec2, images):
        cleaner = make_cleaner(ec2, name_prefix="app-")

        purge_list = cleaner.find_images_to_purge(images)

        assert [i["ImageId"] for i in purge_list] == ["ami-old", "ami-store"]

    def test_get_ids_to_process(self, ec2, images):
        ami_ids, snapshot_ids = make_cleaner(ec2).get_ids_to_process(images[:2])

        assert ami_ids == ["ami-old", "ami-new"]
        assert snapshot_ids == ["snap-a", "snap-b", "snap-0001"]

    def test_purge_images_counts(self, ec2, images):
        cleaner = make_cleaner(ec2, delete=True, name_prefix="app-")

        results = cleaner.purge_images(cleaner.find_images_to_purge(images))

        assert results["images_deregistered"] == 1
        assert results["snapshots_deleted"] == 2
        assert results["images_skipped"] == 1
        assert results["purged"] == ["ami-old"]
        assert results["failed"] == []

    def test_purge_images_continues_after_failure(self, ec2):
        ec2.deregister_image.side_effect = [client_error("UnauthorizedOperation"), None]
        cleaner = make_cleaner(ec2, delete=True)
        images = [make_image(image_id="ami-1"), make_image(image_id="ami-2", snapshots=("snap-2",))]

        results = cleaner.purge_images(images)

        assert results["purged"] == ["ami-2"]
        assert len(results["failed"]) == 1
        assert results["failed"][0]["image_id"] == "ami-1"
        ec2.delete_snapshot.assert_called_once_with(SnapshotId="snap-2", DryRun=False)

    def test_partial_purge_counts_completed_steps(self, ec2):
        ec2.delete_snapshot.side_effect = [None, client_error("InvalidSnapshot.InUse", "DeleteSnapshot")]
        cleaner = make_cleaner(ec2, delete=True)

        results = cleaner.purge_images([make_image(image_id="ami-1", snapshots=("snap-1", "snap-2"))])

        assert results["images_deregistered"] == 1
        assert results["snapshots_deleted"] == 1
        assert results["purged"] == []
        failure = results["failed"][0]
        assert failure["image_id"] == "ami-1"
        assert failure["deregistered"] is True
        assert failure["snapshots_deleted"] == ["snap-1"]

    def test_dry_run_counts_use_would_keys(self, ec2, images):
        cleaner = make_cleaner(ec2, name_prefix="app-")

        results = cleaner.purge_images(cleaner.find_images_to_purge(images))

        assert results["images_to_deregister"] == 1
        assert results["snapshots_to_delete"] == 2
        assert "images_deregistered" not in results
        assert "snapshots_deleted" not in results

    def test_generate_report(self, ec2, images):
        cleaner = make_cleaner(ec2, name_prefix="app-", tag_key="Branch", tag_value="master", invert=True)
        purge_list = cleaner.find_images_to_purge(images)
        results = cleaner.purge_images(purge_list)

        report = cleaner.generate_report(images, purge_list, results)

        assert report["summary"]["total_images_scanned"] == 4
        assert report["summary"]["images_matched"] == 2
        assert report["summary"]["snapshots_matched"] == 2
        assert report["summary"]["snapshot_storage_gib"] == 16
        assert report["summary"]["images_to_deregister"] == 1
        assert "images_deregistered" not in report["summary"]
        assert report["summary"]["failed"] == 0
        assert report["metadata"]["dry_run"] is True
        assert report["metadata"]["invert"] is True
        assert report["ami_ids"] == ["ami-old", "ami-store"]
        assert report["images"][0]["matched_tag_value"] == "not found"


class TestAMIPurgeInfo:
    """Tests for AMIPurgeInfo.from_image"""

    def test_from_image(self):
        image = make_image(tags=[{"Key": "Branch", "Value": "dev"}], snapshots=("snap-1",))

        info = AMIPurgeInfo.from_image(image, "Branch")

        assert info.image_id == "ami-0001"
        assert info.snapshot_ids == ["snap-1"]
        assert info.size_gib == 8
        assert info.matched_tag_key == "Branch"
        assert info.matched_tag_value == "dev"

    def test_from_image_without_tag_filter(self):
        info = AMIPurgeInfo.from_image(make_image())
        assert info.matched_tag_key is None
        assert info.matched_tag_value is None
