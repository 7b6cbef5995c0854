"""
Command Line Interface for infrakit.
"""
import functools
import os

import click

from ..MANAGERS.deployment_driver import DeploymentDriver
from ..MANAGERS.readiness_prober import ProbePool
from ..PARSERS.manifest_parser import ManifestParser, load_context
from ..errors import InfrakitError, ManifestError


def handle_errors(f):
    """
    Reports infrakit errors on stderr and exits with the error's code.
    """
    @functools.wraps(f)
    def wrapper(*args, **kwargs):
        ctx = click.get_current_context()
        try:
            return f(*args, **kwargs)
        except InfrakitError as e:
            click.echo(f"Error: {e}", err=True)
            ctx.exit(e.code)
    return wrapper


def load_deployment(ctx):
    """
    Parses the manifest named on the command line, once per invocation.
    """
    if 'deployment' not in ctx.obj:
        file = ctx.obj['file']
        if not os.path.exists(file):
            raise ManifestError(f"{file} not found.")
        parser = ManifestParser(load_context(ctx.obj['env_file']), ctx.obj['env'])
        ctx.obj['deployment'] = parser.parse(file)
    return ctx.obj['deployment']


def make_driver(ctx, dry_run: bool = False, workers: int = 4, work_dir=None) -> DeploymentDriver:
    return DeploymentDriver(load_deployment(ctx), work_dir=work_dir or ctx.obj['work_dir'],
                            workers=workers, dry_run=dry_run)


@click.group()
@click.option('--file', '-f', default='infrakit.yml', help='Manifest file path')
@click.option('--work-dir', '-d', default='/', help='Root directory rendered files are written under')
@click.option('--env', 'env', default=None, help='Environment overlay to apply')
@click.option('--env-file', default=None, help='dotenv file with variables for interpolation')
@click.pass_context
def cli(ctx, file, work_dir, env, env_file):
    """
    infrakit - declarative service configuration and deployment.

    Renders HAProxy, CrowdSec, RabbitMQ and backend configuration from one
    manifest and brings the services up in dependency order.
    """
    ctx.ensure_object(dict)
    ctx.obj['file'] = file
    ctx.obj['work_dir'] = work_dir
    ctx.obj['env'] = env
    ctx.obj['env_file'] = env_file


@cli.command()
@click.option('--target', '-t', multiple=True, help='Only deploy these services and their dependencies')
@click.option('--dry-run', is_flag=True, help='Print actions instead of performing them')
@click.option('--check-config', is_flag=True, help='Run each daemon\'s config check before starting')
@click.option('--keep-going', is_flag=True, help='Continue past services that fail their probes')
@click.pass_context
@handle_errors
def deploy(ctx, target, dry_run, check_config, keep_going):
    """Render, write and start services in dependency order."""
    driver = make_driver(ctx, dry_run=dry_run)
    report = driver.deploy(target, check_config=check_config, keep_going=keep_going)
    if report.results:
        click.echo(report.table())
    click.echo("Services deployed.")


@cli.command()
@click.option('--target', '-t', multiple=True, help='Only verify these services and their dependencies')
@click.option('--workers', '-w', default=4, show_default=True, help='Concurrent probes')
@click.pass_context
@handle_errors
def verify(ctx, target, workers):
    """Run readiness probes without changing anything."""
    driver = make_driver(ctx, workers=workers)
    driver.verify(target, ProbePool(workers))
    click.echo("All probes passed.")


@cli.command()
@click.option('--target', '-t', multiple=True, help='Only tear down these services and their dependents')
@click.option('--dry-run', is_flag=True, help='Print actions instead of performing them')
@click.pass_context
@handle_errors
def teardown(ctx, target, dry_run):
    """Stop services in reverse dependency order and remove their files."""
    stopped = make_driver(ctx, dry_run=dry_run).teardown(target)
    click.echo(f"Services stopped: {', '.join(stopped)}")


@cli.command()
@click.option('--out', '-o', default='dist', help='Output directory')
@click.pass_context
@handle_errors
def render(ctx, out):
    """Render every artefact into a directory."""
    driver = make_driver(ctx, work_dir=out)
    changed = driver.write(driver.plan())
    click.echo(f"Rendered {len(changed)} changed file(s) into {out}")


@cli.command()
@click.pass_context
@handle_errors
def plan(ctx):
    """Validate the manifest and show the bring-up order and artefacts."""
    result = make_driver(ctx).plan()
    for position, svc in enumerate(result.services, 1):
        deps = f" (after {', '.join(svc.depends_on)})" if svc.depends_on else ""
        click.echo(f"{position}. {svc.name} [{svc.kind.value}]{deps}")
        for artefact in result.artefacts[svc.name]:
            click.echo(f"     {artefact.path}  {artefact.digest[:12]}")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == '__main__':
    main()
