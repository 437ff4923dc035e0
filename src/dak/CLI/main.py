# Copyright 2024 Michael Maillet, Damien Davison, Sacha Davison
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""
Command Line Interface for dak.
"""
import os

import click

from ..ACCESS.docker_access import DockerAccess
from ..ACCESS.exceptions import DockerAccessError, DockerConfigurationError
from ..BUILDERS.archive_builder import ImageArchiveBuilder
from ..CONFIG.logging_config import configure_logging
from ..CONFIG.settings import load_settings
from ..MODELS.build_config import BuildConfiguration, BuildOptions
from ..MODELS.network_config import NetworkCreateConfig
from ..PARSERS.compose_parser import ComposeParser


def _access(ctx) -> DockerAccess:
    if "access" not in ctx.obj:
        ctx.obj["access"] = DockerAccess.from_settings(ctx.obj["settings"])
        ctx.call_on_close(ctx.obj["access"].shutdown)
    return ctx.obj["access"]


def _wait(handle, what: str):
    """Block on a stream handle and turn a captured error into a click failure."""
    handle.wait()
    if handle.is_error():
        raise click.ClickException(f"{what} failed: {handle.get_exception()}")
    return handle.result


def _print_event(event):
    if "stream" in event and "line" in event:
        click.echo(event["line"])


@click.group()
@click.option("--config", "-c", "config_file", type=click.Path(dir_okay=False),
              help="Settings file (default: dak.yaml if present)")
@click.option("--host", "-H", help="Docker daemon URL, e.g. unix:///var/run/docker.sock")
@click.option("--verbose", "-v", is_flag=True, help="Debug logging")
@click.pass_context
def cli(ctx, config_file, host, verbose):
    """
    dak - Docker access kit.

    Builds, pulls and pushes images through the local Docker daemon socket.
    """
    ctx.ensure_object(dict)
    try:
        settings = load_settings(config_file, docker_host=host)
    except DockerConfigurationError as e:
        raise click.ClickException(str(e))
    configure_logging(settings.log_level, verbose=verbose)
    ctx.obj["settings"] = settings


@cli.command()
@click.pass_context
def version(ctx):
    """Show the daemon's API version."""
    try:
        click.echo(_access(ctx).get_server_api_version())
    except DockerAccessError as e:
        raise click.ClickException(str(e))


@cli.command()
@click.argument("image")
@click.option("--context", "context_dir", default=".", help="Build context directory")
@click.option("--dockerfile", "-f", default="Dockerfile", help="Dockerfile inside the context")
@click.option("--tag", "-t", "tags", multiple=True, help="Additional tags")
@click.option("--build-arg", "build_args", multiple=True, help="KEY=VALUE build argument")
@click.option("--no-cache", is_flag=True, help="Do not use the build cache")
@click.pass_context
def build(ctx, image, context_dir, dockerfile, tags, build_args, no_cache):
    """Build IMAGE from a Dockerfile."""
    settings = ctx.obj["settings"]
    args = dict(arg.split("=", 1) for arg in build_args if "=" in arg)
    config = BuildConfiguration(dockerfile_dir=context_dir, dockerfile=dockerfile,
                                args=args, no_cache=no_cache, tags=list(tags))
    try:
        image_id = _build(ctx, ImageArchiveBuilder(settings.base_dir, settings.source_dir,
                                                   settings.output_dir), image, config)
    except DockerAccessError as e:
        raise click.ClickException(str(e))
    click.echo(f"Built {image} ({image_id})")


def _build(ctx, builder: ImageArchiveBuilder, image: str, config: BuildConfiguration):
    access = _access(ctx)
    archive = builder.create_archive(image, config)
    options = BuildOptions.for_build(image, config, builder.dockerfile_name(config))
    image_id = _wait(access.build_image(image, archive, options), f"Build of {image}")
    for tag in config.tags:
        access.tag(image, tag, force=True)
    return image_id


@cli.command()
@click.argument("image")
@click.option("--registry", "-r", help="Registry to pull from")
@click.pass_context
def pull(ctx, image, registry):
    """Pull IMAGE."""
    access = _access(ctx)
    registry = registry or ctx.obj["settings"].registry
    try:
        _wait(access.pull_image(image, registry=registry), f"Pull of {image}")
    except DockerAccessError as e:
        raise click.ClickException(str(e))
    click.echo(f"Pulled {image}")


@cli.command()
@click.argument("image")
@click.option("--registry", "-r", help="Registry to push to")
@click.option("--retries", type=int, default=None, help="Retries on HTTP 500")
@click.pass_context
def push(ctx, image, registry, retries):
    """Push IMAGE."""
    access = _access(ctx)
    settings = ctx.obj["settings"]
    registry = registry or settings.registry
    retries = settings.push_retries if retries is None else retries
    try:
        _wait(access.push_image(image, registry=registry, retries=retries), f"Push of {image}")
    except DockerAccessError as e:
        raise click.ClickException(str(e))
    click.echo(f"Pushed {image}")


@cli.command()
@click.option("--all", "-a", "all_containers", is_flag=True, help="Show stopped containers too")
@click.pass_context
def ps(ctx, all_containers):
    """List containers."""
    try:
        containers = _access(ctx).list_containers(all_containers)
    except DockerAccessError as e:
        raise click.ClickException(str(e))
    click.echo(f"{'CONTAINER ID':14} {'IMAGE':30} {'STATUS':8} NAME")
    for container in containers:
        status = "running" if container.running else "exited"
        click.echo(f"{container.short_id:14} {container.image:30} {status:8} {container.name}")


@cli.command()
@click.argument("container_id")
@click.option("--follow", "-f", is_flag=True, help="Follow log output")
@click.pass_context
def logs(ctx, container_id, follow):
    """Print the logs of a container."""
    access = _access(ctx)
    try:
        if follow:
            handle = access.get_logs_async(container_id, _print_event, follow=True)
            try:
                _wait(handle, "Log stream")
            except KeyboardInterrupt:
                handle.close()
        else:
            access.get_log_sync(container_id, _print_event)
    except DockerAccessError as e:
        raise click.ClickException(str(e))


@cli.command("network-create")
@click.argument("name")
@click.option("--driver", "-d", help="Network driver")
@click.pass_context
def network_create(ctx, name, driver):
    """Create a network NAME."""
    try:
        network_id = _access(ctx).create_network(NetworkCreateConfig(name, driver=driver))
    except (DockerAccessError, ValueError) as e:
        raise click.ClickException(str(e))
    click.echo(network_id)


@cli.command("network-rm")
@click.argument("name")
@click.pass_context
def network_rm(ctx, name):
    """Remove the network NAME."""
    try:
        _access(ctx).remove_network(name)
    except DockerAccessError as e:
        raise click.ClickException(str(e))
    click.echo(f"Removed network {name}")


@cli.command("compose-build")
@click.option("--file", "-f", "compose_file", default="docker-compose.yml", help="Compose file path")
@click.pass_context
def compose_build(ctx, compose_file):
    """Build every service of a compose file that has a build section."""
    settings = ctx.obj["settings"]
    try:
        services = ComposeParser().parse(compose_file)
    except DockerConfigurationError as e:
        raise click.ClickException(str(e))

    base_dir = os.path.dirname(os.path.abspath(compose_file))
    builder = ImageArchiveBuilder(base_dir, settings.source_dir, settings.output_dir)
    for name, service in services.items():
        if service.build is None:
            continue
        if service.ignore_build:
            click.echo(f"Skipping {name} (ignoreBuild)")
            continue
        try:
            image_id = _build(ctx, builder, service.image_name, service.build)
        except DockerAccessError as e:
            raise click.ClickException(f"{name}: {e}")
        click.echo(f"Built {name} -> {service.image_name} ({image_id})")


def main():
    """
    Main entry point for the CLI.
    """
    cli(obj={})


if __name__ == "__main__":
    main()
