"""Entrypoint that resolves a node configuration and prints it."""

from __future__ import annotations

import json
import sys
from typing import Any, Iterable, Mapping, Optional

import yaml
from rich import box
from rich.console import Console
from rich.table import Table
from rich.text import Text

from .config import NodeConfig, parse_cli
from .errors import NodeConfigError
from .logging import configure_logging, get_logger


def _format_value(value: Any) -> str:
    if isinstance(value, (list, dict)):
        return json.dumps(value, sort_keys=True)
    if value is None:
        return "-"
    return str(value)


def _render_table(data: Mapping[str, Any], console: Optional[Console] = None) -> None:
    console = console or Console()
    table = Table(title=Text("Node Configuration", justify="center"), show_header=False, box=box.ROUNDED)
    table.add_column("Field", style="bold cyan", no_wrap=True)
    table.add_column("Value", style="yellow")
    for key, value in data.items():
        if key == "capabilities":
            continue
        table.add_row(key, _format_value(value))
    console.print(table)

    capabilities = data.get("capabilities") or []
    caps = Table(title=Text("Capabilities", justify="center"), show_header=True, header_style="bold cyan", box=box.ROUNDED)
    caps.add_column("#", style="cyan", justify="right")
    caps.add_column("Browser", style="green")
    caps.add_column("Platform", style="blue")
    caps.add_column("Max Instances", style="magenta", justify="right")
    caps.add_column("Protocol", style="white")
    for index, capability in enumerate(capabilities, start=1):
        caps.add_row(
            str(index),
            _format_value(capability.get("browserName")),
            _format_value(capability.get("platform")),
            _format_value(capability.get("maxInstances")),
            _format_value(capability.get("seleniumProtocol")),
        )
    console.print(caps)


def _print_output(data: Mapping[str, Any], output: str) -> None:
    if output == "yaml":
        yaml.safe_dump(dict(data), sys.stdout, sort_keys=False)
    elif output == "table":
        _render_table(data)
    else:
        json.dump(data, sys.stdout, indent=2)
        sys.stdout.write("\n")


def main(argv: Optional[Iterable[str]] = None) -> None:
    args = parse_cli(argv)
    try:
        config = NodeConfig.from_args(args)
        level = args.log_level or ("DEBUG" if config.debug else "INFO")
        configure_logging(level=level, log_format=args.log_format, log_file=config.log)
        get_logger("grid.node").debug("Merged node configuration", extra={"config": config.logging_dict()})
        resolved = config.resolve()
    except NodeConfigError as exc:
        sys.stderr.write(f"Error: {exc}\n")
        sys.exit(1)
    except ValueError as exc:
        sys.stderr.write(f"Invalid configuration: {exc}\n")
        sys.exit(1)
    _print_output(resolved.to_dict(), args.output)


if __name__ == "__main__":
    main()
