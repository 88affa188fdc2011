#!/usr/bin/env python3
"""
Tag matching utilities for EC2 image tags.

EC2 returns tags as a list of ``{"Key": ..., "Value": ...}`` dicts. An
image with no tags at all may omit the ``Tags`` field entirely.
"""

from typing import Dict, List, Optional, Tuple

NOT_FOUND_VALUE = "not found"
BRANCH_TAG_KEY = "Branch"


def match_tags(image: Dict, tag_key: str, tag_value: str) -> Tuple[bool, Dict[str, str]]:
    """Check whether an image carries a tag with the given value.

    The first tag whose key equals ``tag_key`` decides the outcome: the
    result is True when its value equals ``tag_value`` and False otherwise.
    Matching is exact and case sensitive for both key and value.

    Args:
        image: Image description as returned by describe_images
        tag_key: Tag key to look for
        tag_value: Value the tag must carry

    Returns:
        Tuple of (matched, tag). ``tag`` is the image's own tag when the key
        exists, or a placeholder ``{"Key": tag_key, "Value": "not found"}``
        when it does not.
    """
    for image_tag in image.get("Tags") or []:
        if image_tag.get("Key") == tag_key:
            return image_tag.get("Value") == tag_value, image_tag

    return False, {"Key": tag_key, "Value": NOT_FOUND_VALUE}


def parse_branch_filter(branch: str) -> Tuple[str, bool]:
    """Split a branch filter into (branch, invert).

    A leading ``!`` means "every branch but this one":

        >>> parse_branch_filter("!master")
        ('master', True)
        >>> parse_branch_filter("feature-x")
        ('feature-x', False)
    """
    if branch.startswith("!"):
        return branch[1:], True
    return branch, False


def format_tags(tags: Optional[List[Dict[str, str]]]) -> str:
    """Render EC2 tags as a sorted, comma separated ``key=value`` list"""
    if not tags:
        return ""
    pairs = sorted(f"{t.get('Key')}={t.get('Value', '')}" for t in tags)
    return ", ".join(pairs)
