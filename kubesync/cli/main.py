"""kubesync command-line interface.

Commands:
    kubesync version                       Print version and exit.
    kubesync contexts [--json]             List kubeconfig contexts.
    kubesync watch --resource Pod ...      Stream delta batches as JSON lines.

``watch`` writes one ``{"channel", "payload"}`` object per delta batch to
stdout; logs go to stderr.
"""

from __future__ import annotations

import asyncio
import json
import sys

import click

from kubesync import __version__
from kubesync.app import main as app_main
from kubesync.config import load_config
from kubesync.delta.pusher import StreamSink
from kubesync.informer.session import SUPPORTED_RESOURCE_TYPES
from kubesync.kubeconfig.loader import KubeConfigLoader
from kubesync.models.contexts import K8sContextInfo
from kubesync.models.resources import InformerOptions

# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.option(
    "--kubeconfig",
    default="",
    envvar="KUBESYNC_KUBECONFIG",
    metavar="PATH",
    help="Kubeconfig file.  Defaults to $KUBECONFIG, then ~/.kube/config.",
)
@click.pass_context
def cli(ctx: click.Context, kubeconfig: str) -> None:
    """kubesync - stream Kubernetes resource deltas."""
    ctx.ensure_object(dict)
    ctx.obj["kubeconfig"] = kubeconfig


# ---------------------------------------------------------------------------
# kubesync version
# ---------------------------------------------------------------------------


@cli.command("version")
def cmd_version() -> None:
    """Print the kubesync version and exit."""
    click.echo(f"kubesync {__version__}")


# ---------------------------------------------------------------------------
# kubesync contexts
# ---------------------------------------------------------------------------


@cli.command("contexts")
@click.option("--json", "output_json", is_flag=True, default=False, help="Print contexts as JSON.")
@click.pass_context
def cmd_contexts(ctx: click.Context, output_json: bool) -> None:
    """List the contexts defined in the kubeconfig."""
    loader = KubeConfigLoader(ctx.obj["kubeconfig"] or None)
    result = loader.load_from_default()
    if not result.success:
        raise click.ClickException(result.error or "Kubeconfig could not be loaded")

    if output_json:
        payload = {
            "currentContext": result.current_context,
            "contexts": [c.to_dict() for c in result.contexts],
        }
        click.echo(json.dumps(payload, indent=2))
        return

    if not result.contexts:
        click.echo("No contexts found.")
        return
    for info in result.contexts:
        click.echo(_format_context(info))


def _format_context(info: K8sContextInfo) -> str:
    marker = click.style("*", fg="green", bold=True) if info.is_active else " "
    name = click.style(info.name, bold=info.is_active)
    return f"{marker} {name}  cluster={info.cluster}  namespace={info.namespace}  server={info.server}"


# ---------------------------------------------------------------------------
# kubesync watch
# ---------------------------------------------------------------------------


@cli.command("watch")
@click.option("--context", "context_name", default=None, metavar="NAME", help="Context to watch.  Defaults to the current context.")
@click.option(
    "--resource",
    "-r",
    "resources",
    multiple=True,
    type=click.Choice(sorted(SUPPORTED_RESOURCE_TYPES)),
    help="Resource kind to watch; repeatable.  Defaults to KUBESYNC_RESOURCE_TYPES.",
)
@click.option("--namespace", "-n", default=None, metavar="NS", help="Restrict namespaced kinds to NS.")
@click.option("--label-selector", "-l", default=None, help="Kubernetes label selector.")
@click.option("--field-selector", default=None, help="Kubernetes field selector.")
@click.option(
    "--resync-period",
    type=click.IntRange(min=1),
    default=None,
    metavar="SECONDS",
    help="Maximum lifetime of one watch stream before it is re-opened.",
)
@click.option("--json-logs", is_flag=True, default=False, help="Log JSON lines instead of console output.")
@click.pass_context
def cmd_watch(
    ctx: click.Context,
    context_name: str | None,
    resources: tuple[str, ...],
    namespace: str | None,
    label_selector: str | None,
    field_selector: str | None,
    resync_period: int | None,
    json_logs: bool,
) -> None:
    """Watch resources and print delta batches to stdout until interrupted."""
    try:
        config = load_config()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc

    if ctx.obj["kubeconfig"]:
        config.kubeconfig.path = ctx.obj["kubeconfig"]
    if resources:
        config.watch.resource_types = list(resources)

    options = InformerOptions(
        context_name=context_name or "",
        namespace=namespace,
        label_selector=label_selector,
        field_selector=field_selector,
        resync_period=resync_period,
    )
    asyncio.run(
        app_main(
            config=config,
            sink=StreamSink(sys.stdout),
            context_name=context_name,
            options=options,
            json_logs=json_logs,
        )
    )


# ---------------------------------------------------------------------------
# Entrypoint
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    cli()
