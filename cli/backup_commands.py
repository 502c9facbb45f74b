"""Backup commands: run the job, trigger it from an event, list backups."""

import click
from tabulate import tabulate

from cli.utils import echo_json, get_config, handle_error, read_event_file
from repo_backup.archive import format_bytes
from repo_backup.errors import BackupError
from repo_backup.events import BackupEvent, TriggerRule
from repo_backup.job import BackupJob
from repo_backup.uploader import S3Uploader


def _run_backup(ctx, event: BackupEvent, bucket: str, no_cleanup: bool):
    config = get_config(ctx)
    if no_cleanup:
        config.archive.cleanup = False

    try:
        job = BackupJob(config, bucket_name=bucket)
        result = job.run(event)
    except BackupError as e:
        handle_error(e, ctx.obj['verbose'])

    click.echo(f"✅ Backed up {event.describe()}")
    click.echo(f"   Location: {result.s3_uri}")
    click.echo(f"   Files: {result.archive.file_count}")
    click.echo(f"   Size: {format_bytes(result.archive.compressed_size)}")
    if result.upload.version_id:
        click.echo(f"   Version ID: {result.upload.version_id}")


def register_commands(cli):
    """Register backup commands with main CLI."""

    @cli.command('run')
    @click.option('--bucket', '-b', envvar='BACKUP_BUCKET_NAME', help='Backup bucket (default: BACKUP_BUCKET_NAME or config)')
    @click.option('--no-cleanup', is_flag=True, help='Keep the working directory and archive')
    @click.pass_context
    def run(ctx, bucket, no_cleanup):
        """Back up the repository described by the job environment.

        Reads REPOSITORY_NAME, REFERENCE_NAME, REFERENCE_TYPE, COMMIT_ID,
        REPO_REGION and ACCOUNT_ID, clones the branch, zips it and uploads
        the archive. Exits non-zero if any step fails.

        Examples:
            REPOSITORY_NAME=my-repo REFERENCE_NAME=main COMMIT_ID=abc123 \\
            REPO_REGION=eu-west-1 BACKUP_BUCKET_NAME=my-backups python -m main run
        """
        get_config(ctx)
        try:
            event = BackupEvent.from_environment()
        except BackupError as e:
            handle_error(e, ctx.obj['verbose'])

        _run_backup(ctx, event, bucket, no_cleanup)

    @cli.command('trigger')
    @click.argument('event_file', type=click.Path(allow_dash=True))
    @click.option('--dry-run', is_flag=True, help='Only show the job inputs the event produces')
    @click.option('--bucket', '-b', envvar='BACKUP_BUCKET_NAME', help='Backup bucket (default: BACKUP_BUCKET_NAME or config)')
    @click.option('--no-cleanup', is_flag=True, help='Keep the working directory and archive')
    @click.pass_context
    def trigger(ctx, event_file, dry_run, bucket, no_cleanup):
        """Back up the repository named in a trigger event.

        EVENT_FILE is a CodeCommit "Repository State Change" event as JSON
        ('-' reads stdin). Events for tags, deleted references or branches
        that are not monitored are skipped.

        Examples:
            python -m main trigger event.json --dry-run
            python -m main trigger event.json
        """
        config = get_config(ctx)
        try:
            raw_event = read_event_file(event_file)
        except (OSError, ValueError) as e:
            handle_error(e, ctx.obj['verbose'])

        rule = TriggerRule(config.trigger.branches_to_monitor, config.trigger.event_bus_name)
        if not rule.matches(raw_event):
            click.echo("⏭️  Event does not qualify for backup, skipping")
            return

        try:
            event = BackupEvent.from_eventbridge(raw_event)
        except BackupError as e:
            handle_error(e, ctx.obj['verbose'])

        if dry_run:
            echo_json(event.environment_overrides())
            return

        _run_backup(ctx, event, bucket, no_cleanup)

    @cli.command('list')
    @click.argument('repository')
    @click.option('--reference', '-r', help='Only list backups of this branch')
    @click.option('--bucket', '-b', envvar='BACKUP_BUCKET_NAME', help='Backup bucket (default: BACKUP_BUCKET_NAME or config)')
    @click.pass_context
    def list_backups(ctx, repository, reference, bucket):
        """List backups of a repository, newest first."""
        config = get_config(ctx)
        try:
            uploader = S3Uploader(bucket or config.bucket.name, region=config.bucket.region,
                                  upload_config=config.upload)
            backups = uploader.list_backups(repository, reference)
        except BackupError as e:
            handle_error(e, ctx.obj['verbose'])

        if not backups:
            click.echo(f"No backups found for {repository}")
            return

        table_data = [
            [b['reference'], b['archive'], format_bytes(b['size']),
             b['last_modified'].strftime('%Y-%m-%d %H:%M:%S'), b['storage_class']]
            for b in backups
        ]
        headers = ['Reference', 'Archive', 'Size', 'Uploaded', 'Storage Class']
        click.echo(tabulate(table_data, headers=headers, tablefmt='grid'))
        click.echo(f"\nTotal: {len(backups)} backup(s)")
