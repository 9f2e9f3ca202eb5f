#!/usr/bin/env python3
"""
CLI tool for the L4 Load Balancer Controller
Provides a kubectl-like interface for managing exposures
"""

import json
import os
import time

import click
import requests
import yaml
from tabulate import tabulate

from validation import validate_exposure_manifest

API_BASE_URL = os.getenv("LBCTL_SERVER", "http://localhost:8000/api/v1")


class LoadBalancerControllerCLI:
    """CLI client for the L4 Load Balancer Controller"""

    def __init__(self, base_url: str = API_BASE_URL):
        self.base_url = base_url.rstrip("/")

    def _make_request(self, method: str, endpoint: str, **kwargs):
        """Make HTTP request to the API"""
        url = f"{self.base_url}{endpoint}"
        try:
            response = requests.request(method, url, timeout=30, **kwargs)
            response.raise_for_status()
            return response.json()
        except requests.exceptions.RequestException as e:
            click.echo(f"Error: {e}", err=True)
            if getattr(e, "response", None) is not None:
                try:
                    click.echo(f"Detail: {e.response.json()}", err=True)
                except ValueError:
                    click.echo(f"Response: {e.response.text}", err=True)
            return None


def _split_key(key: str):
    namespace, _, name = key.rpartition("/")
    return namespace or "default", name


def _load_manifest(filename: str):
    with open(filename, "r") as f:
        if filename.endswith(".yaml") or filename.endswith(".yml"):
            return yaml.safe_load(f)
        return json.load(f)


@click.group()
@click.option(
    "--server",
    "-s",
    default=API_BASE_URL,
    show_default=True,
    help="Controller API base URL",
)
@click.pass_context
def cli(ctx, server):
    """L4 Load Balancer Controller CLI - kubectl-like interface for exposures"""
    ctx.obj = LoadBalancerControllerCLI(server)


@cli.command()
@click.argument("filename", type=click.Path(exists=True))
@click.pass_obj
def apply(client, filename):
    """Apply an exposure from a YAML/JSON file"""
    manifest = _load_manifest(filename)

    is_valid, error = validate_exposure_manifest(manifest)
    if not is_valid:
        raise click.ClickException(f"Invalid manifest: {error}")

    metadata = manifest["metadata"]
    namespace = metadata.get("namespace", "default")
    body = {"annotations": metadata.get("annotations") or {}, "spec": manifest["spec"]}

    result = client._make_request(
        "PUT", f"/exposures/{namespace}/{metadata['name']}", json=body
    )

    if result:
        click.echo(f"exposure/{namespace}/{result['name']} applied")
        click.echo(f"Generation: {result['generation']}")
        click.echo(f"Status: {result['status']}")


@cli.command()
@click.option("--namespace", "-n", default=None, help="Only this namespace")
@click.option(
    "--output", "-o", type=click.Choice(["table", "json", "wide"]), default="table"
)
@click.pass_obj
def get(client, namespace, output):
    """List exposures"""
    params = {"namespace": namespace} if namespace else {}
    result = client._make_request("GET", "/exposures", params=params)
    if result is None:
        return

    if output == "json":
        click.echo(json.dumps(result, indent=2))
        return

    headers = ["Namespace", "Name", "Status", "Ingress", "Generation"]
    if output == "wide":
        headers += ["Observed", "Retries", "Message"]

    rows = []
    for exposure in result:
        row = [
            exposure["namespace"],
            exposure["name"],
            exposure["status"],
            ",".join(exposure.get("ingress") or []) or "<pending>",
            exposure["generation"],
        ]
        if output == "wide":
            row += [
                exposure["observed_generation"],
                exposure.get("retry_count", 0),
                exposure.get("message", ""),
            ]
        rows.append(row)

    click.echo(tabulate(rows, headers=headers, tablefmt="grid"))


@cli.command()
@click.argument("key")
@click.option("--output", "-o", type=click.Choice(["json", "yaml"]), default="yaml")
@click.pass_obj
def describe(client, key, output):
    """Describe an exposure given as NAMESPACE/NAME"""
    namespace, name = _split_key(key)
    result = client._make_request("GET", f"/exposures/{namespace}/{name}")

    if result:
        if output == "yaml":
            click.echo(yaml.safe_dump(result, default_flow_style=False))
        else:
            click.echo(json.dumps(result, indent=2))


@cli.command()
@click.argument("key")
@click.confirmation_option(prompt="Are you sure you want to delete this exposure?")
@click.pass_obj
def delete(client, key):
    """Delete an exposure (removes its listeners and backends)"""
    namespace, name = _split_key(key)
    result = client._make_request("DELETE", f"/exposures/{namespace}/{name}")

    if result:
        click.echo(f"exposure/{namespace}/{name} marked for deletion")


@cli.command()
@click.argument("key")
@click.pass_obj
def reconcile(client, key):
    """Manually trigger reconciliation for an exposure"""
    namespace, name = _split_key(key)
    result = client._make_request("POST", f"/exposures/{namespace}/{name}/reconcile")

    if result:
        click.echo("Reconciliation triggered successfully")


@cli.command()
@click.argument("key")
@click.option("--follow", "-f", is_flag=True, help="Follow status updates")
@click.option("--interval", "-i", default=5, help="Polling interval in seconds")
@click.pass_obj
def status(client, key, follow, interval):
    """Show status of an exposure"""
    namespace, name = _split_key(key)

    def show_status():
        result = client._make_request("GET", f"/exposures/{namespace}/{name}")
        if result:
            click.clear()
            click.echo(f"Exposure: {result['namespace']}/{result['name']}")
            click.echo(f"Status: {result['status']}")
            click.echo(f"Message: {result.get('message') or 'N/A'}")
            click.echo(f"Ingress: {', '.join(result.get('ingress') or []) or 'N/A'}")
            click.echo(f"Generation: {result['generation']}")
            click.echo(f"Observed Generation: {result['observed_generation']}")
            click.echo(f"Last Reconcile: {result.get('last_reconcile_time') or 'Never'}")

            if result["generation"] != result["observed_generation"]:
                click.echo("\nExposure is out of sync (reconciliation pending)")
            elif result["status"] == "ready":
                click.echo("\nExposure is up to date")

    show_status()

    if follow:
        try:
            while True:
                time.sleep(interval)
                show_status()
        except KeyboardInterrupt:
            click.echo("\nStopped following")


@cli.command()
@click.argument("key")
@click.pass_obj
def ingress(client, key):
    """Show the live load balancer addresses of an exposure"""
    namespace, name = _split_key(key)
    result = client._make_request("GET", f"/exposures/{namespace}/{name}/status")

    if result:
        if not result["exists"]:
            click.echo("No load balancer configured for this cluster")
            return
        for address in result["ingress"]:
            click.echo(address)


@cli.command()
@click.pass_obj
def plugins(client):
    """List registered plugins"""
    result = client._make_request("GET", "/plugins")
    if result is None:
        return

    rows = [
        [kind, plugin["name"], plugin.get("version", "")]
        for kind, entries in sorted(result.items())
        for plugin in entries
    ]
    click.echo(tabulate(rows, headers=["Kind", "Name", "Version"], tablefmt="grid"))


if __name__ == "__main__":
    cli()
