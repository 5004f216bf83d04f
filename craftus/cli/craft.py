"""
Craft commands for Craftus CLI

Generate a master craft image from a prompt and, optionally, dissect it into
materials and illustrated steps.
"""

import asyncio
import json
import logging
from pathlib import Path
from typing import Optional

import click
from PIL import Image

from ..core.config import Config
from ..core.observability import setup_logfire, setup_logging
from ..services.models import CraftCategory
from ..services.node_state import NodeKind, NodeRecord, NodeStatus, NodeTransition, TransitionType

logger = logging.getLogger(__name__)

STATUS_ICONS = {
    NodeStatus.PENDING: "⏳",
    NodeStatus.IN_FLIGHT: "🔄",
    NodeStatus.SUCCEEDED: "✅",
    NodeStatus.FAILED: "❌",
}


def _print_transition(transition: NodeTransition, record: NodeRecord) -> None:
    icon = STATUS_ICONS.get(record.status, "•")
    line = f"{icon} [{record.kind.value}] {record.label or record.id}: {transition.type.value}"
    if record.status is NodeStatus.FAILED and record.error_kind:
        line += f" ({record.error_kind.value})"
    if record.kind is NodeKind.MASTER and transition.type is TransitionType.DISSECTION:
        line = f"🔍 [{record.kind.value}] dissection {record.dissection.value}"
        if record.dissection_error:
            line += f": {record.dissection_error}"
    click.echo(line)


def _load_selection(path: str, size):
    """Load a cut-out or mask PNG and scale it to the master image size."""
    from ..services.region_extractor import mask_from_alpha

    with Image.open(path) as selection:
        selection = selection.convert("RGBA")
        if selection.size != size:
            selection = selection.resize(size, Image.Resampling.NEAREST)
        return mask_from_alpha(selection)


def _write_images(deps, master_id: str, output_dir: Path) -> int:
    output_dir.mkdir(parents=True, exist_ok=True)
    written = 0
    nodes = deps.node_state

    master = nodes.get(master_id)
    if master.payload is not None:
        (output_dir / "master.png").write_bytes(master.payload.image.data)
        written += 1

    for record in nodes.children(master_id, NodeKind.STEP):
        if record.payload is not None:
            (output_dir / f"step-{record.step_number:02d}.png").write_bytes(record.payload.image.data)
            written += 1

    return written


@click.group('craft')
def craft_group():
    """Craft generation - master images, dissection and step images"""
    pass


@craft_group.command('generate')
@click.argument('prompt')
@click.option('--category', '-c', required=True,
              type=click.Choice([c.value for c in CraftCategory], case_sensitive=False),
              help='Craft category')
@click.option('--dissect/--no-dissect', default=False, help='Dissect the master into steps')
@click.option('--selection', type=click.Path(exists=True, dir_okay=False),
              help='PNG cut-out (transparent background) selecting one object to dissect')
@click.option('--max-step-images', type=click.IntRange(min=1), default=None,
              help='Maximum step images per dissection (default: MAX_STEP_IMAGES)')
@click.option('--output-dir', type=click.Path(file_okay=False), default=None,
              help='Directory to write master and step images to')
@click.option('--output-json', type=click.Path(dir_okay=False), default=None,
              help='Export the node snapshot to a JSON file')
def generate_command(
    prompt: str,
    category: str,
    dissect: bool,
    selection: Optional[str],
    max_step_images: Optional[int],
    output_dir: Optional[str],
    output_json: Optional[str],
):
    """
    Generate a craft master image and optionally its step-by-step breakdown.

    Examples:
        craftus craft generate "a red potion bottle" --category Clay
        craftus craft generate "felt owl" -c "Kids Crafts" --dissect --output-dir ./owl
    """
    setup_logging(Config.LOG_LEVEL)
    setup_logfire()

    try:
        Config.validate()
    except ValueError as e:
        click.echo(f"❌ {e}", err=True)
        raise click.exceptions.Exit(1)

    if selection and not dissect:
        click.echo("⚠️  --selection only applies with --dissect; ignoring it")

    try:
        result = asyncio.run(_generate(
            prompt=prompt,
            category=CraftCategory(category),
            dissect=dissect,
            selection=selection,
            max_step_images=max_step_images,
            output_dir=output_dir,
        ))
    except Exception as e:
        click.echo(f"❌ Error: {e}", err=True)
        raise click.exceptions.Exit(1)

    _display_results(result)

    if output_json:
        with open(output_json, 'w') as f:
            json.dump(result["snapshot"], f, indent=2, default=str)
        click.echo(f"\n📄 Snapshot exported to: {output_json}")

    if result["summary"].get("error"):
        raise click.exceptions.Exit(1)


async def _generate(
    prompt: str,
    category: CraftCategory,
    dissect: bool,
    selection: Optional[str],
    max_step_images: Optional[int],
    output_dir: Optional[str],
) -> dict:
    """Run the pipeline, printing node transitions as they happen"""
    from ..dependencies import CraftDependencies
    from ..pipelines.craft import CraftOrchestrator

    click.echo("\n" + "=" * 60)
    click.echo(f"🎨 Generating {category.value} craft: {prompt}")
    click.echo("=" * 60 + "\n")

    deps = CraftDependencies.create(max_step_images=max_step_images)
    unsubscribe = deps.node_state.subscribe(_print_transition)
    orchestrator = CraftOrchestrator(deps)

    try:
        master = await orchestrator.generate_master(prompt, category)
        summary = orchestrator.get_state(master.id).summary()

        if dissect and master.status is NodeStatus.SUCCEEDED:
            mask = None
            if selection:
                size = master.payload.image.to_pil().size
                mask = _load_selection(selection, size)
            summary = await orchestrator.dissect(master.id, mask)
    finally:
        unsubscribe()

    written = 0
    if output_dir:
        written = _write_images(deps, master.id, Path(output_dir))

    return {
        "summary": summary,
        "snapshot": deps.node_state.snapshot(),
        "images_written": written,
        "output_dir": output_dir,
    }


def _display_results(result: dict):
    """Display run results in terminal-friendly format"""
    summary = result["summary"]

    click.echo("\n" + "=" * 60)
    click.echo("📊 Results")
    click.echo("=" * 60 + "\n")

    click.echo(f"🆔 Master: {summary['master_id']}")
    if summary.get("groups"):
        click.echo(f"🖼️  Step images: {summary['groups_succeeded']} succeeded, "
                   f"{summary['groups_failed']} failed, {summary['groups_skipped']} skipped "
                   f"({summary['groups']} groups)")

    materials = [
        n for n in result["snapshot"]["nodes"]
        if n["kind"] == NodeKind.MATERIALS.value and n["payload"]
    ]
    if materials:
        payload = materials[0]["payload"]
        click.echo(f"🧰 Materials ({payload['complexity']}, {payload['complexity_score']}/10):")
        for item in payload["materials"]:
            click.echo(f"   - {item}")

    if summary.get("error"):
        click.echo(f"\n❌ Failed at {summary.get('error_step')}: {summary['error']}")

    if result.get("images_written"):
        click.echo(f"\n💾 {result['images_written']} image(s) written to {result['output_dir']}")


@craft_group.command('describe')
@click.option('--max-step-images', type=click.IntRange(min=1), default=None,
              help='Step image cap used for the call estimate (default: MAX_STEP_IMAGES)')
def describe_command(max_step_images: Optional[int]):
    """List the pipeline nodes, their models and the calls each run can make"""
    from ..pipelines.craft.orchestrator import DISSECTION_NODES, MASTER_NODES
    from ..pipelines.metadata import get_node_metadata, summarize_run

    max_groups = max_step_images or Config.MAX_STEP_IMAGES

    for title, node_classes in (("Master run", MASTER_NODES), ("Dissection run", DISSECTION_NODES)):
        click.echo(f"\n{title}:")
        for node_class in node_classes:
            metadata = get_node_metadata(node_class)
            click.echo(f"  {node_class.get_node_id()}")
            if metadata is None:
                continue
            click.echo(f"    inputs:   {', '.join(metadata.inputs)}")
            click.echo(f"    outputs:  {', '.join(metadata.outputs)}")
            click.echo(f"    services: {', '.join(metadata.services)}")
            if metadata.uses_llm:
                click.echo(f"    llm:      {metadata.llm} ({metadata.llm_purpose})")

        run = summarize_run(node_classes, max_groups)
        for model, node_names in run["models"].items():
            click.echo(f"  🤖 {model}: {', '.join(node_names)}")
        click.echo(
            f"  📞 Up to {run['max_api_calls']} call(s) per run "
            f"(rate limit {Config.RATE_LIMIT_MAX_CALLS} per {Config.RATE_LIMIT_WINDOW_SECONDS:g}s)"
        )
