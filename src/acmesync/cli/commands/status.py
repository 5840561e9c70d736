"""``status`` subcommand: summary plus a table of every stored request."""

from __future__ import annotations


def run_status(config, args, controller=None) -> None:  # noqa: ARG001
    from acmesync.cli.commands.request import build_controller, print_table  # noqa: PLC0415

    if controller is None:
        controller = build_controller(config.settings)
    summary = controller.status()
    counts = ", ".join(f"{state}={n}" for state, n in summary["requests"].items() if n)
    print(f"requests: {counts or 'none'} (active {summary['active']})")  # noqa: T201
    print_table(controller.list())
