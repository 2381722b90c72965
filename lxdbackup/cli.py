import click

from lxdbackup import __version__, configure_logging
from lxdbackup.backup.executor import run_backup
from lxdbackup.backup.naming import NAMING_FORMATS
from lxdbackup.config import config, load_config


RESTORE_HELP = """\b
Restoring a backup:
  rclone copy backuphosting:lxdbackups/web01/<archive>.tar.gz .
  lxc image import <archive>.tar.gz --alias web01-restore
  lxc init web01-restore web01

\b
Restoring the MAC and IP address (v1 names carry both):
  lxc network attach lxdbr0 web01 eth0 eth0
  lxc config device set web01 eth0 hwaddr 00:16:3e:bc:e4:fe
  lxc config device set web01 eth0 ipv4.address 10.69.123.210
  lxc start web01
"""


@click.command(epilog=RESTORE_HELP)
@click.argument('container')
@click.option('--workdir', type=click.Path(file_okay=False), help='Local staging directory for exported images')
@click.option('--storage', type=click.Choice(['rclone', 's3']), help='Remote storage backend')
@click.option('--target', help='rclone remote name from rclone.conf')
@click.option('--bucket', help='S3 bucket name')
@click.option('--target-dir', help='Remote directory (rclone) or key prefix (S3)')
@click.option('--rclone-options', help='Extra options passed to rclone copy')
@click.option('--naming', type=click.Choice(NAMING_FORMATS), help="Artifact name format ('v1' embeds MAC and IP)")
@click.option('--bridge', 'bridges', multiple=True, help='Bridge to search for DHCP leases (repeatable)')
@click.option('--verify/--no-verify', default=None, help='Compare remote and local size after upload')
@click.option('--report/--no-report', default=None, help='Upload a run report next to the archive')
@click.option('--log-level', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR'], case_sensitive=False))
@click.option('--env', 'config_name', type=click.Choice([name for name in config if name != 'default']),
              help='Configuration profile (default: $LXDBACKUP_ENV or production)')
@click.version_option(__version__, prog_name='lxdbackup')
@click.pass_context
def main(ctx, container, workdir, storage, target, bucket, target_dir, rclone_options,
         naming, bridges, verify, report, log_level, config_name):
    """lxdbackup - back up an LXD container to cloud storage.

    Snapshots CONTAINER, publishes the snapshot as an image, exports it to
    a local archive and uploads the archive with rclone or to S3. Intermediate
    snapshots, images and archives are removed afterwards, also on failure.
    """
    settings = load_config(
        config_name,
        WORK_DIR=workdir,
        STORAGE_BACKEND=storage,
        RCLONE_TARGET=target,
        S3_BUCKET=bucket,
        TARGET_DIR=target_dir,
        RCLONE_OPTIONS=rclone_options,
        NAMING_FORMAT=naming,
        NETWORK_BRIDGES=list(bridges) or None,
        VERIFY_UPLOAD=verify,
        REPORT_ENABLED=report,
        LOG_LEVEL=log_level.upper() if log_level else None
    )

    configure_logging(settings, container)

    result = run_backup(container, settings)
    ctx.exit(result.exit_code)


if __name__ == '__main__':
    main()
