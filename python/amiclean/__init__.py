"""
AMI cleanup tooling.

Selects Amazon Machine Images owned by the account according to an
age/tag/usage policy and deregisters them together with their backing
EBS snapshots. Dry run is the default everywhere.
"""

__version__ = "1.0.0"
