#!/usr/bin/env python3
"""
mediagen_cli.py - MediaGen Command Line Interface
═══════════════════════════════════════════════════════════════════════════════

Generate images/videos through Gemini, ComfyUI, Grok or the AI/ML API, and
inspect ComfyUI workflows embedded in PNG files.

Usage:
    python mediagen_cli.py generate "a lighthouse at dusk" -b gemini
    python mediagen_cli.py generate "neon city" -b comfyui -W workflow.json --batch 4
    python mediagen_cli.py generate "make it snow" -b aimlapi -m flux/kontext-pro/image-to-image -i photo.png
    python mediagen_cli.py generate -b grok --prompts-file prompts.txt --start 3 --end 8
    python mediagen_cli.py extract image.png       # List nodes of an embedded workflow
    python mediagen_cli.py backends                # List available backends

API keys are read from GEMINI_API_KEY, XAI_API_KEY, AIML_API_KEY and
IMGBB_API_KEY unless config.yaml names other variables.

Part of MediaGen v0.1.0
"""
import sys
import json
import argparse
import logging
import threading
from pathlib import Path

# Setup logging
logging.basicConfig(
    level=logging.INFO,
    format='%(asctime)s [%(levelname)s] %(message)s',
    datefmt='%H:%M:%S'
)
logger = logging.getLogger(__name__)


def _load(args):
    from mediagen import load_config

    override = {}
    if getattr(args, 'output', None):
        override['output_dir'] = args.output
    if getattr(args, 'server', None):
        override['backends'] = {'comfyui': {'url': args.server}}
    if getattr(args, 'no_filter', False):
        override['safety'] = {'enabled': False}
    config = load_config(Path(args.config), override)
    if args.verbose:
        logging.getLogger().setLevel(logging.DEBUG)
    else:
        logging.getLogger().setLevel(config.get('log_level', 'INFO'))
    return config


def _ask_consent(service, policy_url, message):
    print(f"\n{service}: {message}")
    print(f"Privacy policy: {policy_url}")
    answer = input("Continue? [y]es / [n]o / [a]lways: ").strip().lower()
    return answer in ('y', 'yes', 'a', 'always'), answer in ('a', 'always')


def cmd_generate(args):
    """Run one generation request, or one per line of a prompt file."""
    from mediagen import (
        GenerationOrchestrator, GenerationRequest, GenerationOptions, BackendType,
        ConsentGate, YamlSettingsStore, FileOutputWriter, JsonHistoryStore,
        GenerationError, load_workflow_file, load_request_images,
    )

    config = _load(args)
    try:
        workflow = load_workflow_file(Path(args.workflow)) if args.workflow else None
        options = GenerationOptions(
            model=args.model or "",
            width=args.width,
            height=args.height,
            negative_prompt=args.negative or "",
            seed=args.seed,
            workflow=workflow,
            workflow_name=Path(args.workflow).stem if args.workflow else "",
            prompt_node_id=args.prompt_node,
            image_node_ids=tuple(args.image_node or ()),
            output_node_id=args.output_node,
        )
        request = GenerationRequest(
            prompt=args.prompt or "",
            backend=BackendType(args.backend),
            images=load_request_images(args.image),
            options=options,
            batch_size=args.batch,
        )
    except GenerationError as e:
        logger.error(e.summary)
        sys.exit(1)

    settings = YamlSettingsStore(Path(config['settings_file']).expanduser())
    consent = ConsentGate(settings, prompt=None if args.yes else _ask_consent)
    orch = GenerationOrchestrator(
        config,
        consent=consent,
        history=JsonHistoryStore(Path(config['history_file'])),
        writer=FileOutputWriter(Path(config['output_dir'])),
    )

    if args.prompts_file:
        try:
            source = orch.submit_prompt_file(Path(args.prompts_file), request, args.start, args.end)
        except GenerationError as e:
            logger.error(e.summary)
            sys.exit(1)
        print(f"Running prompts {source.start}-{source.end} of {args.prompts_file}")
    else:
        source = orch.submit(request)

    items = []
    errors = []

    def consume():
        try:
            for item in source:
                items.append(item)
                where = item.path or "(no file)"
                print(f"  [{item.index}/{item.total}] {where}  {item.caption}")
        except GenerationError as e:
            errors.append(e)

    # Run in a worker so Ctrl+C can cancel from the main thread
    worker = threading.Thread(target=consume, name="generation", daemon=True)
    worker.start()
    try:
        while worker.is_alive():
            worker.join(0.2)
    except KeyboardInterrupt:
        print("\nCancelling...")
        orch.cancel()
        worker.join(10)
        sys.exit(130)

    if errors:
        logger.error(errors[0].summary)
        if args.verbose:
            print(errors[0].detail, file=sys.stderr)
        sys.exit(1)
    if items:
        print(f"\nGenerated {len(items)} item(s).")
    failures = getattr(source, 'failures', None)
    if failures:
        print("\nFailed to generate the following prompts:")
        for failure in failures:
            print(f"  {failure}")
        sys.exit(1)


def cmd_extract(args):
    """List prompt/output/image nodes of a workflow file."""
    from mediagen import extract_workflow_json, scan_workflow_nodes

    path = Path(args.file)
    if not path.exists():
        logger.error(f"File not found: {path}")
        sys.exit(1)

    data = path.read_bytes()
    text = extract_workflow_json(data) if path.suffix.lower() == '.png' else data.decode('utf-8', 'replace')
    if not text:
        print(f"No embedded workflow in {path.name}")
        sys.exit(1)
    try:
        workflow = json.loads(text)
    except ValueError as e:
        logger.error(f"Workflow is not valid JSON: {e}")
        sys.exit(1)

    if args.json:
        print(text)
        return
    found = scan_workflow_nodes(workflow)
    for title, nodes in (("Prompt nodes", found.prompt_nodes),
                         ("Output nodes", found.output_nodes),
                         ("Image nodes", found.image_nodes)):
        print(f"\n=== {title} ({len(nodes)}) ===")
        for node in nodes:
            print(f"  {node.label}")


def cmd_backends(args):
    """List available backends."""
    from mediagen import list_available_backends, EnvCredentialStore

    config = _load(args)
    print("\n=== Available Backends (v0.1.0) ===\n")

    results = list_available_backends(config, EnvCredentialStore(config.get('credentials')))
    for name, (available, message) in results.items():
        status = "✓" if available else "✗"
        print(f"  [{status}] {name:12} - {message}")


def main():
    parser = argparse.ArgumentParser(
        description="MediaGen v0.1.0 - Image/Video Generation Orchestrator",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python mediagen_cli.py generate "a red fox" -b grok --batch 3
  python mediagen_cli.py generate "" -b comfyui -W shot.png      # reuse embedded prompt
  python mediagen_cli.py extract shot.png
  python mediagen_cli.py backends
        """
    )

    parser.add_argument('-C', '--config', default='./config.yaml',
                        help='Config file (default: ./config.yaml)')
    parser.add_argument('-v', '--verbose', action='store_true', help='Debug logging')

    subparsers = parser.add_subparsers(dest='command', help='Commands')

    # Generate command
    gen_parser = subparsers.add_parser('generate', help='Generate images or video')
    gen_parser.add_argument('prompt', nargs='?', default='', help='Prompt text')
    gen_parser.add_argument('-b', '--backend', default='gemini',
                            choices=['gemini', 'comfyui', 'grok', 'aimlapi'])
    gen_parser.add_argument('-i', '--image', action='append', help='Reference image (repeatable)')
    gen_parser.add_argument('-m', '--model', help='Model id (Gemini/Grok/AI/ML API)')
    gen_parser.add_argument('-n', '--batch', type=int, default=1, help='Number of outputs')
    gen_parser.add_argument('-s', '--seed', type=int, help='Pin the first seed (ComfyUI)')
    gen_parser.add_argument('--width', type=int)
    gen_parser.add_argument('--height', type=int)
    gen_parser.add_argument('--negative', help='Negative prompt')
    gen_parser.add_argument('-W', '--workflow', help='ComfyUI workflow (.json or .png)')
    gen_parser.add_argument('--prompt-node', help='ComfyUI node id receiving the prompt')
    gen_parser.add_argument('--image-node', action='append', help='ComfyUI LoadImage node id')
    gen_parser.add_argument('--output-node', help='ComfyUI node id to download from')
    gen_parser.add_argument('--server', help='ComfyUI server URL')
    gen_parser.add_argument('-o', '--output', help='Output directory')
    gen_parser.add_argument('-y', '--yes', action='store_true',
                            help='Accept privacy notices without asking')
    gen_parser.add_argument('--prompts-file', help='Run one request per line of this file')
    gen_parser.add_argument('--start', type=int, default=1, help='First prompt line (1-based)')
    gen_parser.add_argument('--end', type=int, help='Last prompt line (default: last)')
    gen_parser.add_argument('--no-filter', action='store_true',
                            help='Disable the local prompt filter')
    gen_parser.set_defaults(func=cmd_generate)

    # Extract command
    extract_parser = subparsers.add_parser('extract', help='Show nodes of an embedded workflow')
    extract_parser.add_argument('file', help='PNG or workflow JSON')
    extract_parser.add_argument('--json', action='store_true', help='Print the raw workflow JSON')
    extract_parser.set_defaults(func=cmd_extract)

    # Backends command
    backends_parser = subparsers.add_parser('backends', help='List available backends')
    backends_parser.set_defaults(func=cmd_backends)

    args = parser.parse_args()

    if not args.command:
        parser.print_help()
        sys.exit(1)

    args.func(args)


if __name__ == '__main__':
    main()
