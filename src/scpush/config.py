"""
Configuration loading and merging for scpush.

Handles hierarchical configuration from global and project-level files.
"""

import json
import sys
from pathlib import Path
from typing import Any, Dict, List, Optional, Tuple

import click

from scpush.protocol import TransferOptions

PROJECT_CONFIG_NAME = ".scpush.json"


def global_config_locations() -> List[Path]:
    return [
        Path.home() / ".scpush" / "scpush.json",
        Path.home() / ".config" / "scpush" / "scpush.json",
    ]


def _read_json(path: Path) -> Optional[Dict[str, Any]]:
    try:
        with open(path, "r") as f:
            return json.load(f)
    except json.JSONDecodeError as e:
        click.echo(f"Warning: Failed to parse '{path}': {e}", err=True)
        return None


def load_config_with_sources() -> Tuple[Dict[str, Any], Dict[str, Any]]:
    """
    Load and merge configuration files with source tracking.

    The first existing global file is the base; every .scpush.json from the
    filesystem root down to the current directory is merged on top of it.

    Returns:
        Tuple of (merged_config, source_map) where source_map records which
        file contributed each binding property.
    """
    configs_to_merge: List[Tuple[Path, Dict[str, Any]]] = []
    source_map: Dict[str, Any] = {"bindings": {}, "config_files": []}

    for loc in global_config_locations():
        if loc.exists():
            data = _read_json(loc)
            if data is not None:
                configs_to_merge.append((loc, data))
                source_map["config_files"].append(str(loc))
                break

    project_configs: List[Path] = []
    current_dir = Path.cwd()
    while True:
        candidate = current_dir / PROJECT_CONFIG_NAME
        if candidate.exists():
            project_configs.append(candidate)
        parent = current_dir.parent
        if parent == current_dir:
            break
        current_dir = parent

    # Shallowest first so deeper files override
    for config_path in reversed(project_configs):
        data = _read_json(config_path)
        if data is not None:
            configs_to_merge.append((config_path, data))
            source_map["config_files"].append(str(config_path))

    if not configs_to_merge:
        searched = global_config_locations() + [Path.cwd() / PROJECT_CONFIG_NAME]
        click.echo(
            f"Error: Configuration file not found. Checked: {', '.join(str(p) for p in searched)}",
            err=True,
        )
        sys.exit(1)

    merged_config: Dict[str, Any] = {}
    for config_path, config in configs_to_merge:
        config_path_str = str(config_path)

        for binding_name, binding_config in config.get("bindings", {}).items():
            bindings = merged_config.setdefault("bindings", {})
            sources = source_map["bindings"].setdefault(
                binding_name, {"defined_in": [], "properties": {}}
            )
            sources["defined_in"].append(config_path_str)

            binding_config = binding_config.copy()
            if "local_basepath" in binding_config:
                local_basepath = Path(binding_config["local_basepath"]).expanduser()
                if not local_basepath.is_absolute():
                    local_basepath = config_path.parent / local_basepath
                binding_config["local_basepath"] = str(local_basepath.resolve())
            elif binding_name not in bindings:
                binding_config["local_basepath"] = str(config_path.parent.resolve())

            for prop_key in binding_config:
                sources["properties"].setdefault(prop_key, []).append(config_path_str)

            bindings.setdefault(binding_name, {}).update(binding_config)

        for key in config:
            if key != "bindings":
                merged_config[key] = config[key]

    return merged_config, source_map


def load_config() -> Dict[str, Any]:
    """
    Load and merge configuration files with inheritance.

    Merging rules:
    - bindings: deep merge per binding, deeper files win per property
    - other top-level keys: deeper files override

    Returns:
        Dictionary containing merged configuration.
    """
    merged_config, _ = load_config_with_sources()
    return merged_config


def get_host_config(config: Dict[str, Any], alias: str) -> Dict[str, Any]:
    """
    Get host binding configuration by alias.

    Raises:
        SystemExit: If alias not found in configuration.
    """
    bindings = config.get("bindings", {})
    if alias not in bindings:
        click.echo(f"Error: Host alias '{alias}' not found in configuration.", err=True)
        sys.exit(1)
    return bindings[alias]


def transfer_options(host_config: Dict[str, Any]) -> TransferOptions:
    """Transfer flags for a binding; timestamps are preserved unless disabled."""
    return TransferOptions(
        preserve_times=bool(host_config.get("preserve_times", True)),
        quiet=bool(host_config.get("quiet", False)),
    )


def show_config(merged_config: Dict[str, Any], source_map: Dict[str, Any]) -> None:
    """Display merged configuration with the file each property came from."""
    click.echo(
        click.style("\n📋 Configuration Files (merge order):", fg="cyan", bold=True)
    )
    for i, config_file in enumerate(source_map["config_files"], 1):
        click.echo(f"  {i}. {config_file}")

    # Never print credentials
    redacted = json.loads(json.dumps(merged_config))
    for binding in redacted.get("bindings", {}).values():
        if "password" in binding:
            binding["password"] = "********"

    click.echo(click.style("\n🔀 Merged Configuration:", fg="cyan", bold=True))
    click.echo(click.style(json.dumps(redacted, indent=2), fg="green"))

    if source_map.get("bindings"):
        click.echo(click.style("\n📍 Source Annotations:", fg="cyan", bold=True))
        for binding_name, binding_info in source_map["bindings"].items():
            click.echo(f"    • {click.style(binding_name, fg='white', bold=True)}")
            defined_in_str = ", ".join(binding_info["defined_in"])
            click.echo(
                f"      ↳ defined in: {click.style(defined_in_str, fg='blue', dim=True)}"
            )
            for prop, sources in binding_info.get("properties", {}).items():
                sources_str = ", ".join(sources)
                click.echo(
                    f"        - {click.style(prop, fg='magenta')}: from {click.style(sources_str, fg='blue', dim=True)}"
                )


def auto_detect_binding(config: Dict[str, Any]) -> Optional[str]:
    """
    Auto-detect binding by comparing the current directory with local_basepath.

    The deepest matching local_basepath wins. When several bindings share
    that path the user is asked to choose.

    Returns:
        Binding alias, or None if no binding contains the current directory.
    """
    bindings = config.get("bindings", {})
    if not bindings:
        return None

    cwd = Path.cwd().resolve()
    matches: List[Tuple[str, Path]] = []
    for alias, binding_config in bindings.items():
        local_basepath_str = binding_config.get("local_basepath", "")
        if not local_basepath_str:
            continue
        local_basepath = Path(local_basepath_str).expanduser().resolve()
        try:
            cwd.relative_to(local_basepath)
        except ValueError:
            continue
        matches.append((alias, local_basepath))

    if not matches:
        return None

    matches.sort(key=lambda m: len(str(m[1])), reverse=True)
    best_path = matches[0][1]
    candidates = [alias for alias, path in matches if path == best_path]
    if len(candidates) == 1:
        return candidates[0]

    click.echo(
        click.style(
            f"\n⚠️  WARNING: Multiple bindings detected for path: {best_path}",
            fg="yellow",
            bold=True,
        )
    )
    for idx, alias in enumerate(candidates, start=1):
        hostname = bindings[alias].get("hostname", "N/A")
        click.echo(f"  {click.style(str(idx), fg='cyan', bold=True)}. {alias} - {hostname}")
    click.echo(f"  {click.style('0', fg='red', bold=True)}. Cancel and exit")

    choice = click.prompt(
        "\nSelect binding",
        type=click.IntRange(0, len(candidates)),
        default=1,
        show_default=True,
    )
    if choice == 0:
        click.echo("Operation cancelled.")
        sys.exit(0)
    return candidates[choice - 1]
