"""
Shared pytest fixtures for lxdbackup tests.

This module provides fixtures for:
- Test configuration with a temporary work directory
- A fake LXD runtime that tracks snapshots and images in memory
- A fake storage handler that records uploads
- An executor factory wired to both fakes
- Mock fixtures for external services (S3)
"""

import os
from datetime import datetime
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest
import boto3
from moto import mock_aws

from lxdbackup.config import load_config
from lxdbackup.models import NetworkIdentity
from lxdbackup.backup.executor import BackupExecutor
from lxdbackup.backup.runtime import LXDRuntime
from lxdbackup.backup.storage import RcloneStorage


FIXED_NOW = datetime(2024, 1, 15, 12, 30)
FIXED_TIMESTAMP = '2024-01-15_12-30'


@pytest.fixture(scope='function')
def settings(tmp_path):
    """Testing configuration staging into tmp_path/work."""
    return load_config('testing', WORK_DIR=str(tmp_path / 'work'))


@pytest.fixture(scope='function')
def collaborators():
    """
    Parent mock that both fakes are attached to.

    ``collaborators.mock_calls`` records runtime and storage calls in the
    order they happened.
    """
    return MagicMock()


@pytest.fixture(scope='function')
def fake_runtime(collaborators):
    """
    LXDRuntime double backed by in-memory snapshot and image sets.

    export_image writes a small archive so the executor can stat it.
    """
    state = {'snapshots': set(), 'images': set()}

    runtime = MagicMock(spec=LXDRuntime)
    runtime.required_binaries = ['lxc']
    runtime.state = state

    runtime.container_exists.return_value = True
    runtime.query_network_identity.return_value = NetworkIdentity(
        mac_address='00:16:3e:aa:bb:cc',
        ip_address='10.0.3.15'
    )

    def snapshot(container, label):
        state['snapshots'].add((container, label))

    def container_has_snapshot(container, label):
        return (container, label) in state['snapshots']

    def delete_snapshot(container, label):
        state['snapshots'].discard((container, label))

    def publish(container, label, alias):
        state['images'].add(alias)

    def image_exists(alias):
        return alias in state['images']

    def delete_image(alias):
        state['images'].discard(alias)

    def export_image(alias, destination):
        archive_path = Path(destination).with_name(f"{Path(destination).name}.tar.gz")
        archive_path.write_bytes(b'image data' * 200)
        return archive_path

    runtime.snapshot.side_effect = snapshot
    runtime.container_has_snapshot.side_effect = container_has_snapshot
    runtime.delete_snapshot.side_effect = delete_snapshot
    runtime.publish.side_effect = publish
    runtime.image_exists.side_effect = image_exists
    runtime.delete_image.side_effect = delete_image
    runtime.export_image.side_effect = export_image

    collaborators.attach_mock(runtime, 'runtime')
    return runtime


@pytest.fixture(scope='function')
def fake_storage(collaborators):
    """RcloneStorage double; ``fake_storage.uploaded`` maps remote path to size."""
    uploaded = {}

    storage = MagicMock(spec=RcloneStorage)
    storage.required_binaries = ['rclone']
    storage.uploaded = uploaded

    def describe(remote_path):
        return f"testremote:{remote_path}"

    def upload(local_path, remote_dir):
        remote_path = f"{remote_dir}/{os.path.basename(local_path)}"
        uploaded[remote_path] = os.path.getsize(local_path)
        return remote_path

    def remote_size(remote_path):
        return uploaded.get(remote_path)

    storage.describe.side_effect = describe
    storage.upload.side_effect = upload
    storage.remote_size.side_effect = remote_size

    collaborators.attach_mock(storage, 'storage')
    return storage


@pytest.fixture(scope='function')
def binaries_on_path():
    """Pretend every required binary is installed."""
    with patch('lxdbackup.backup.executor.shutil.which', side_effect=lambda b: f"/usr/bin/{b}") as mock_which:
        yield mock_which


@pytest.fixture(scope='function')
def make_executor(settings, fake_runtime, fake_storage, binaries_on_path):
    """Factory for executors wired to the fakes, with a fixed run time."""
    def _make(container_name='web01', **overrides):
        for key, value in overrides.items():
            setattr(settings, key, value)
        return BackupExecutor(
            container_name,
            settings,
            runtime=fake_runtime,
            storage=fake_storage,
            now=FIXED_NOW
        )

    return _make


@pytest.fixture(autouse=True)
def aws_credentials(monkeypatch):
    """Fake AWS credentials so boto3 never reaches a real account."""
    monkeypatch.setenv('AWS_ACCESS_KEY_ID', 'testing')
    monkeypatch.setenv('AWS_SECRET_ACCESS_KEY', 'testing')
    monkeypatch.setenv('AWS_DEFAULT_REGION', 'us-east-1')


@pytest.fixture
def mock_s3():
    """
    Mock AWS S3 service using moto.

    Creates a test bucket 'test-bucket' in us-east-1 region.
    """
    with mock_aws():
        s3 = boto3.resource('s3', region_name='us-east-1')
        s3.create_bucket(Bucket='test-bucket')

        yield s3


@pytest.fixture
def lease_dir(tmp_path):
    """
    dnsmasq lease files for two bridges.

    web01 has a lease on lxdbr1 only.
    """
    base = tmp_path / 'networks'
    (base / 'lxdbr0').mkdir(parents=True)
    (base / 'lxdbr1').mkdir(parents=True)

    (base / 'lxdbr0' / 'dnsmasq.leases').write_text(
        "1705321800 00:16:3e:11:22:33 10.0.3.20 db01 01:00:16:3e:11:22:33\n"
    )
    (base / 'lxdbr1' / 'dnsmasq.leases').write_text(
        "garbage\n"
        "1705321800 00:16:3e:aa:bb:cc 10.0.4.15 web01 *\n"
    )

    return base
