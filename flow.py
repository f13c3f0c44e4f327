#!/usr/bin/env python
import os
import sys
import argparse
from pathlib import Path

from agentflow import (
    AgentDirectory,
    AgentFlowError,
    AgentPromoter,
    ConsolePrompt,
    EngineConfig,
    FlowSyntaxError,
    FlowValidationError,
    JsonAgentRepository,
    Runtime,
    TextRenderer,
    compile_workflow,
    configure_logging,
    render_graph,
)


def find_flow_file(target: str):
    # Heuristic search for the file
    potential_paths = [
        Path(target),
        Path(f"{target}.flow"),
        Path("examples") / target,
        Path("examples") / f"{target}.flow",
    ]
    for p in potential_paths:
        if p.exists() and p.is_file():
            return p, potential_paths
    return None, potential_paths


def find_agents_file(explicit, flow_file: Path):
    # --agents, then AGENTFLOW_AGENTS, then an agents.json beside the flow or in examples/
    for given in (explicit, os.environ.get("AGENTFLOW_AGENTS")):
        if given:
            return Path(given)
    for p in (flow_file.parent / "agents.json", Path("examples") / "agents.json"):
        if p.exists() and p.is_file():
            return p
    return None


def build_directory(agents_file) -> AgentDirectory:
    if agents_file is None:
        return AgentDirectory()
    return AgentDirectory(repository=JsonAgentRepository(agents_file))


def install_tracing():
    from opentelemetry import trace
    from opentelemetry.sdk.trace import TracerProvider
    from opentelemetry.sdk.trace.export import ConsoleSpanExporter, SimpleSpanProcessor

    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)


def build_parser() -> argparse.ArgumentParser:
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--log-level", default="INFO", help="loguru level (DEBUG, INFO, WARNING, ...)")
    common.add_argument("--agents", help="JSON agent registry used to resolve step names (default: $AGENTFLOW_AGENTS or agents.json)")
    common.add_argument("--no-step-check", action="store_true", help="Accept step names the agent directory does not know")

    parser = argparse.ArgumentParser(description="AgentFlow CLI - compile and run agent workflows")
    subparsers = parser.add_subparsers(dest="command")

    run_parser = subparsers.add_parser("run", parents=[common], help="Run a .flow file")
    run_parser.add_argument("name", help="Name or path of the flow file (e.g. bugfix or examples/bugfix.flow)")
    run_parser.add_argument("--dry-run", action="store_true", help="Echo steps instead of invoking agents")
    run_parser.add_argument("--unattended", action="store_true", help="Never prompt; checkpoints continue automatically")
    run_parser.add_argument("--policy", choices=["steer", "retry", "skip", "abort"], help="Failure policy")
    run_parser.add_argument("--concurrency", type=int, help="Max nodes per parallel batch")
    run_parser.add_argument("--timeout", type=float, help="Per-node timeout in seconds")
    run_parser.add_argument("--trace", action="store_true", help="Print OpenTelemetry spans to the console")

    check_parser = subparsers.add_parser("check", parents=[common], help="Compile and validate a .flow file")
    check_parser.add_argument("name")

    show_parser = subparsers.add_parser("show", parents=[common], help="Print the compiled graph")
    show_parser.add_argument("name")
    return parser


def main(argv=None):
    parser = build_parser()
    args = parser.parse_args(argv)
    if not args.command:
        parser.print_help()
        return 1

    configure_logging(args.log_level)
    flow_file, checked = find_flow_file(args.name)
    if not flow_file:
        print(f"Error: Could not find flow file for '{args.name}'")
        print("Checked: " + ", ".join(str(p) for p in checked))
        return 1

    directory = build_directory(find_agents_file(args.agents, flow_file))
    check_steps = not args.no_step_check

    try:
        if args.command == "check":
            compiled = compile_workflow(flow_file, directory=directory, check_steps=check_steps)
            for issue in compiled.report.warnings:
                print(f"[warning] {issue}")
            print(f"[CLI] OK: {len(compiled.graph)} nodes, {len(compiled.graph.edges)} edges")
            return 0

        if args.command == "show":
            compiled = compile_workflow(flow_file, directory=directory, check_steps=check_steps)
            print(render_graph(compiled.graph))
            return 0

        if args.trace:
            install_tracing()
        config = EngineConfig.from_env(
            failure_policy=args.policy,
            max_concurrency=args.concurrency,
            node_timeout=args.timeout,
        )
        prompt = None if args.unattended else ConsolePrompt()
        print(f"[CLI] Running: {flow_file}")
        rt = Runtime(
            directory=directory,
            prompt=prompt,
            renderer=TextRenderer(),
            config=config,
            dry_run=args.dry_run,
            check_steps=check_steps,
        )
        rt.load(flow_file)
        summary = rt.run()
        print(f"[CLI] {summary.describe()}")
        if prompt is not None and directory.temporary_names():
            result = AgentPromoter(directory).offer(prompt)
            for name, reason in result.failed:
                print(f"[CLI] could not promote {name}: {reason}")
        return 0 if summary.ok else 1
    except FlowSyntaxError as e:
        where = f" (char {e.offset})" if e.offset is not None else ""
        print(f"[SyntaxError]{where} {e}")
        return 1
    except FlowValidationError as e:
        print(f"[ValidationError] {e}")
        return 1
    except AgentFlowError as e:
        print(f"[Error] {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
