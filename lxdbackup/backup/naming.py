"""
Artifact naming for container backups.

Every name used in one run (snapshot label, image alias, archive file, run
report) is derived here from the container name and the run timestamp.

Formats:
- v1: {container}-BACKUP-{mac}-{ip}-{timestamp}-IMAGE
- v2: {container}-BACKUP-{timestamp}-IMAGE

v1 drops whichever network part is unknown. v2 is the default.
"""

import re
from datetime import datetime
from typing import Optional


TIMESTAMP_FORMAT = '%Y-%m-%d_%H-%M'

NAMING_FORMATS = ('v1', 'v2')
DEFAULT_NAMING_FORMAT = 'v2'

ARCHIVE_EXTENSION = 'tar.gz'
REPORT_EXTENSION = 'log'

_TIMESTAMP_RE = re.compile(r'^\d{4}-\d{2}-\d{2}_\d{2}-\d{2}$')


class NamingError(ValueError):
    """Raised when a name cannot be derived from the given inputs."""
    pass


def generate_timestamp(now: Optional[datetime] = None) -> str:
    """
    Generate the run timestamp.

    Format: YYYY-MM-DD_HH-MM, which sorts chronologically and is a valid
    LXD snapshot name.
    """
    now = now or datetime.now()
    return now.strftime(TIMESTAMP_FORMAT)


def is_valid_timestamp(timestamp: str) -> bool:
    return bool(timestamp) and bool(_TIMESTAMP_RE.match(timestamp))


def sanitize_mac(mac_address: Optional[str]) -> Optional[str]:
    """00:16:3e:aa:bb:cc -> 00-16-3e-aa-bb-cc"""
    if not mac_address:
        return None
    return mac_address.strip().lower().replace(':', '-')


def sanitize_ip(ip_address: Optional[str]) -> Optional[str]:
    """10.0.3.15 -> 10_0_3_15"""
    if not ip_address:
        return None
    return ip_address.strip().replace('.', '_').replace(':', '_')


def build_artifact_name(
    container_name: str,
    timestamp: str,
    mac_address: Optional[str] = None,
    ip_address: Optional[str] = None,
    naming_format: str = DEFAULT_NAMING_FORMAT
) -> str:
    """
    Build the image alias shared by publish, export and cleanup.

    Args:
        container_name: LXD container name
        timestamp: Run timestamp from generate_timestamp()
        mac_address: Container MAC address (v1 only)
        ip_address: Container IPv4 address (v1 only)
        naming_format: 'v1' or 'v2'

    Returns:
        Artifact name without extension

    Raises:
        NamingError: If the container name or timestamp is empty, or the
            format is unknown
    """
    if not container_name:
        raise NamingError("Container name is required")
    if not timestamp:
        raise NamingError("Could not determine backup timestamp")
    if naming_format not in NAMING_FORMATS:
        raise NamingError(
            f"Invalid naming format: {naming_format}. "
            f"Valid options: {list(NAMING_FORMATS)}"
        )

    parts = [container_name, 'BACKUP']

    if naming_format == 'v1':
        for part in (sanitize_mac(mac_address), sanitize_ip(ip_address)):
            if part:
                parts.append(part)

    parts.extend([timestamp, 'IMAGE'])
    return '-'.join(parts)


def archive_filename(artifact_name: str) -> str:
    return f"{artifact_name}.{ARCHIVE_EXTENSION}"


def report_filename(artifact_name: str) -> str:
    return f"{artifact_name}.{REPORT_EXTENSION}"


def remote_directory(target_dir: str, container_name: str) -> str:
    """
    Remote directory an archive is uploaded into.

    Format: {target_dir}/{container_name}
    """
    target_dir = target_dir.strip('/')
    if not target_dir:
        return container_name
    return f"{target_dir}/{container_name}"
