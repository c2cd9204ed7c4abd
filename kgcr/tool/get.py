"""kgcr get action."""

import logging
from argparse import ArgumentParser
from typing import Any

from kgcr import client
from kgcr.exceptions import ScanIncompleteError
from kgcr.manifest import ScanResult
from kgcr.scan import scan

from .format import PrintFormatter, STRUCT_FORMATTERS
from . import selector


_LOGGER = logging.getLogger(__name__)

NO_CRDS_MESSAGE = "No namespaced custom resources found in cluster"


def not_found(result: ScanResult) -> str:
    """Return a message describing an empty scan."""
    if result.all_namespaces:
        return "No custom resources found in any namespace"
    return f"No custom resources found in namespace: {result.namespace}"


def table_rows(result: ScanResult) -> tuple[list[str], list[dict[str, Any]]]:
    """Return the columns and rows of the table for the scan result."""
    cols = ["crd", "resource", "name"]
    if result.all_namespaces:
        cols.insert(0, "namespace")
    rows = [
        {
            "namespace": resource.namespace,
            "crd": resource.crd_name,
            "resource": resource.resource_name,
            "name": resource.name,
        }
        for resource in result.resources
    ]
    return cols, rows


class GetAction:
    """List every instance of every namespaced custom resource."""

    @classmethod
    def register(cls, args: ArgumentParser) -> ArgumentParser:
        """Register the command line flags."""
        selector.add_cluster_flags(args)
        selector.add_scan_flags(args)
        args.add_argument(
            "--output",
            "-o",
            choices=["table", *STRUCT_FORMATTERS],
            default="table",
            help="Output format of the command",
        )
        args.set_defaults(cls=cls)
        return args

    async def run(  # type: ignore[no-untyped-def]
        self,
        kubeconfig: str | None,
        context: str | None,
        output: str,
        **kwargs,  # pylint: disable=unused-argument
    ) -> None:
        """Async Action implementation."""
        cluster, cluster_context = client.connect(kubeconfig, context)
        config = selector.build_scan_config(cluster_context, **kwargs)
        result = await scan(cluster, config)

        if output in STRUCT_FORMATTERS:
            STRUCT_FORMATTERS[output]().print(
                [resource.compact_dict() for resource in result.resources]
            )
        elif not result.jobs:
            print(NO_CRDS_MESSAGE)
        elif not result.resources:
            print(not_found(result))
        else:
            cols, rows = table_rows(result)
            PrintFormatter(cols).print(rows)

        if result.timed_out:
            raise ScanIncompleteError(config.timeout, result.pending)
