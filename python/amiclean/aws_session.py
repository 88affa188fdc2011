"""
boto3 session and client construction.

Region and profile come from the command line first, then from the
configuration manager, and finally from boto3's own resolution chain
(environment, shared config files, instance metadata).
"""

from typing import Optional

import boto3
from botocore.exceptions import BotoCoreError, ProfileNotFound

from amiclean.config_manager import config_manager
from amiclean.error_utils import create_aws_credentials_error
from amiclean.logging_utils import get_logger

logger = get_logger(__name__)


def make_session(region: Optional[str] = None, profile: Optional[str] = None) -> boto3.Session:
    """Create a boto3 session for the given region and profile.

    Raises:
        ActionableError: if the profile does not exist or the session cannot be built
    """
    region = region or config_manager.get_region()
    profile = profile or config_manager.get_profile()

    try:
        session = boto3.Session(profile_name=profile, region_name=region)
    except ProfileNotFound as e:
        raise create_aws_credentials_error(profile, region, e) from e
    except BotoCoreError as e:
        raise create_aws_credentials_error(profile, region, e) from e

    logger.debug(f"AWS session created (profile={profile or 'default'}, region={session.region_name})")
    return session


def make_ec2_client(session: boto3.Session):
    """Return an EC2 client for the session's region"""
    try:
        return session.client("ec2")
    except BotoCoreError as e:
        # NoRegionError lands here when nothing resolves a region
        raise create_aws_credentials_error(session.profile_name, session.region_name, e) from e
