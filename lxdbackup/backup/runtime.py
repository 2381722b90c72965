"""
LXD container runtime client.

Wraps the ``lxc`` command line tool. Mutating calls raise RuntimeClientError
when the command fails; existence queries return booleans derived from the
command exit status rather than from scraping its output.
"""

import logging
import subprocess
from pathlib import Path
from typing import List, Optional

from lxdbackup.models import NetworkIdentity
from .errors import BackupError
from .naming import ARCHIVE_EXTENSION


logger = logging.getLogger(__name__)


class RuntimeClientError(BackupError):
    """Raised when an lxc command fails."""
    pass


class LXDRuntime:
    """
    Client for the operations a backup needs from LXD.

    Network identity is read from the dnsmasq lease files LXD keeps per
    managed bridge: {lease_dir}/{bridge}/dnsmasq.leases
    """

    def __init__(
        self,
        binary: str = 'lxc',
        bridges: Optional[List[str]] = None,
        lease_dir: str = '/var/lib/lxd/networks',
        timeout: Optional[int] = None
    ):
        """
        Initialize runtime client.

        Args:
            binary: lxc executable name or path
            bridges: Managed bridges to search for DHCP leases (default: lxdbr0)
            lease_dir: Directory holding one sub-directory per bridge
            timeout: Optional per-command timeout in seconds
        """
        self.binary = binary
        self.bridges = bridges or ['lxdbr0']
        self.lease_dir = Path(lease_dir)
        self.timeout = timeout

    @property
    def required_binaries(self) -> List[str]:
        return [self.binary]

    def _run(self, args: List[str], cwd: Optional[str] = None) -> subprocess.CompletedProcess:
        """
        Run an lxc command and return the completed process.

        Raises:
            RuntimeClientError: If the binary cannot be executed or times out
        """
        cmd = [self.binary] + args
        logger.debug(f"Running: {' '.join(cmd)}")

        try:
            return subprocess.run(
                cmd,
                cwd=cwd,
                capture_output=True,
                text=True,
                timeout=self.timeout
            )
        except FileNotFoundError as e:
            raise RuntimeClientError(f"{self.binary} command not found: {e}")
        except subprocess.TimeoutExpired as e:
            raise RuntimeClientError(f"Command timed out after {e.timeout}s: {' '.join(cmd)}")

    def _check(self, args: List[str], cwd: Optional[str] = None) -> str:
        """Run a mutating command, raising RuntimeClientError on non-zero exit."""
        result = self._run(args, cwd=cwd)
        if result.returncode != 0:
            detail = (result.stderr or result.stdout or '').strip()
            raise RuntimeClientError(
                f"'{self.binary} {' '.join(args)}' failed (exit {result.returncode}): {detail}"
            )
        return result.stdout

    def _succeeds(self, args: List[str]) -> bool:
        return self._run(args).returncode == 0

    # Queries

    def container_exists(self, container: str) -> bool:
        return self._succeeds(['info', container])

    def container_has_snapshot(self, container: str, label: str) -> bool:
        return self._succeeds(['query', f"/1.0/instances/{container}/snapshots/{label}"])

    def image_exists(self, alias: str) -> bool:
        return self._succeeds(['image', 'info', alias])

    def query_network_identity(self, container: str) -> Optional[NetworkIdentity]:
        """
        Find the container's current MAC and IP address.

        Lease file lines have the form:
            <expiry> <mac> <ip> <hostname> <client-id>

        Returns:
            NetworkIdentity for the first lease whose hostname matches, or
            None if no bridge has a lease for the container
        """
        for bridge in self.bridges:
            lease_file = self.lease_dir / bridge / 'dnsmasq.leases'

            try:
                lines = lease_file.read_text(errors='replace').splitlines()
            except FileNotFoundError:
                logger.debug(f"No lease file for bridge {bridge}: {lease_file}")
                continue
            except OSError as e:
                logger.warning(f"Cannot read lease file {lease_file}: {e}")
                continue

            for line in lines:
                fields = line.split()
                if len(fields) < 4:
                    continue
                if fields[3] == container:
                    return NetworkIdentity(mac_address=fields[1], ip_address=fields[2])

        return None

    # Mutations

    def snapshot(self, container: str, label: str):
        self._check(['snapshot', container, label])

    def publish(self, container: str, label: str, alias: str):
        self._check(['publish', '--force', f"{container}/{label}", '--alias', alias])

    def export_image(self, alias: str, destination: Path) -> Path:
        """
        Export an image to a compressed archive.

        Args:
            alias: Image alias to export
            destination: Archive path without extension; lxc appends .tar.gz

        Returns:
            Path to the exported archive

        Raises:
            RuntimeClientError: If export fails or produces no archive
        """
        destination = Path(destination)
        self._check(['image', 'export', alias, str(destination)], cwd=str(destination.parent))

        archive_path = destination.with_name(f"{destination.name}.{ARCHIVE_EXTENSION}")
        if not archive_path.is_file():
            raise RuntimeClientError(f"Export reported success but {archive_path} does not exist")
        return archive_path

    def delete_snapshot(self, container: str, label: str):
        self._check(['delete', f"{container}/{label}"])

    def delete_image(self, alias: str):
        self._check(['image', 'delete', alias])
