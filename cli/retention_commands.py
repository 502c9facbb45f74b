"""Backup retention commands."""

import click

from cli.utils import get_config
from repo_backup.lifecycle_manager import RetentionPolicyManager


def _manager(ctx, bucket):
    config = get_config(ctx)
    return RetentionPolicyManager(bucket or config.bucket.name, region=config.bucket.region)


def register_commands(cli):
    """Register retention commands with main CLI."""

    @cli.group('retention')
    @click.pass_context
    def retention_group(ctx):
        """Manage how long backups are kept in the bucket."""
        pass

    @retention_group.command('show')
    @click.option('--bucket', '-b', envvar='BACKUP_BUCKET_NAME', help='Backup bucket')
    @click.pass_context
    def show(ctx, bucket):
        """Show the bucket's lifecycle rules and settings."""
        manager = _manager(ctx, bucket)
        policy = manager.get_current_policy()

        click.echo("=" * 80)
        click.echo("CURRENT RETENTION POLICY")
        click.echo("=" * 80)
        click.echo(f"Bucket: {manager.bucket_name}")

        if policy is None:
            click.echo("\n❌ No lifecycle policy configured (backups are kept forever)")
        else:
            for i, rule in enumerate(policy['Rules'], 1):
                click.echo(f"\nRule {i}: {rule.get('ID', rule.get('Id', 'Unnamed'))}")
                click.echo(f"  Status: {rule.get('Status', 'Unknown')}")
                prefix = rule.get('Filter', {}).get('Prefix')
                if prefix:
                    click.echo(f"  Prefix: {prefix}")
                expiration = rule.get('Expiration', {})
                if 'Days' in expiration:
                    click.echo(f"  Expiration: After {expiration['Days']} days")

        days = manager.retention_days(policy) if policy is not None else 0
        if days is None:
            click.echo("\nEffective retention: unknown (no LifecyclePolicy rule)")
        elif days:
            click.echo(f"\nEffective retention: {days} days")
        else:
            click.echo("\nEffective retention: forever")

        problems = manager.check_bucket_settings()
        click.echo("\nBucket settings:")
        if problems:
            for problem in problems:
                click.echo(f"  ⚠️  {problem}")
        else:
            click.echo("  ✓ Versioning, encryption and public access block are in place")
        click.echo("=" * 80)

    @retention_group.command('apply')
    @click.option('--days', type=click.IntRange(min=0), help='Retention in days, 0 = forever (default: from config)')
    @click.option('--bucket', '-b', envvar='BACKUP_BUCKET_NAME', help='Backup bucket')
    @click.pass_context
    def apply(ctx, days, bucket):
        """Apply the retention period to the bucket."""
        config = get_config(ctx)
        if days is None:
            days = config.retention.retention_days

        manager = _manager(ctx, bucket)
        if not manager.apply_policy(days):
            click.echo("❌ Failed to apply retention policy", err=True)
            ctx.exit(1)

        if days:
            click.echo(f"✓ Backups in {manager.bucket_name} now expire after {days} days")
        else:
            click.echo(f"✓ Backups in {manager.bucket_name} are retained forever")

    @retention_group.command('delete')
    @click.option('--bucket', '-b', envvar='BACKUP_BUCKET_NAME', help='Backup bucket')
    @click.option('--yes', is_flag=True, help='Do not ask for confirmation')
    @click.pass_context
    def delete(ctx, bucket, yes):
        """Remove the bucket's lifecycle policy."""
        manager = _manager(ctx, bucket)
        if not yes and not click.confirm(f"Remove lifecycle policy from {manager.bucket_name}?"):
            click.echo("Cancelled.")
            return

        if not manager.delete_policy():
            click.echo("❌ Failed to delete lifecycle policy", err=True)
            ctx.exit(1)
        click.echo("✓ Lifecycle policy deleted")
