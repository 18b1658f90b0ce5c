"""
Command-line client for Flux Studio.

Architectural role:
- Terminal interface over `fluxstudio.image.service.FluxSession`.
- Renders progress, moderation guidance and errors on stdout/stderr.
- Starts the HTTP service (`serve`).

Commands:
- `generate PROMPT`: run one job end to end and persist the result.
- `list`: show stored images, newest first.
- `delete IMAGE_ID`: remove one image.
- `clear --yes`: remove every image.
- `reconcile [--watch INTERVAL]`: move ephemeral-only images into durable
  storage, once or on a fixed interval until Ctrl-C.
- `serve`: run the HTTP service with uvicorn.

Error handling strategy:
- Moderation failures print per-reason explanation and suggestion.
- Every other `FluxError` prints one error line; exit status 1.
- Ctrl-C during `generate` or `reconcile --watch` fires a cancellation handle.

Side effects:
- Writes images to the configured durable store or ephemeral mirror.
"""

from dotenv import load_dotenv

load_dotenv()

import argparse
import asyncio
import logging
import signal
import sys

from fluxstudio.core.cancellation import CancellationHandle
from fluxstudio.core.errors import FluxError, ModerationError, ValidationError
from fluxstudio.core.types import AspectRatio, FluxModel, format_timestamp
from fluxstudio.image.provider_config import FluxSettings, resolve_api_key
from fluxstudio.image.service import FluxSession, encode_image_file
from fluxstudio.safety.moderation import render_guidance


logger = logging.getLogger(__name__)


# =========================================================
# UTF-8 SAFE OUTPUT
# =========================================================

if hasattr(sys.stdout, "reconfigure"):
    try:
        sys.stdout.reconfigure(encoding="utf-8", errors="ignore")
    except (AttributeError, ValueError, OSError):
        pass


def build_parser():
    parser = argparse.ArgumentParser(
        prog="fluxstudio",
        description="Generate, track and store FLUX Kontext images",
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--api-key", default=None, help="Provider key (overrides stored/env key)")
    commands = parser.add_subparsers(dest="command", required=True)

    generate = commands.add_parser("generate", help="Generate one image")
    generate.add_argument("prompt")
    generate.add_argument(
        "--model",
        default=FluxModel.PRO.value,
        choices=[model.value for model in FluxModel],
    )
    generate.add_argument(
        "--aspect-ratio",
        default=AspectRatio.SQUARE.value,
        choices=[ratio.value for ratio in AspectRatio],
    )
    generate.add_argument("--input-image", default=None, help="Reference image file for edits")
    generate.add_argument("--seed", type=int, default=None)

    commands.add_parser("list", help="List stored images")

    delete = commands.add_parser("delete", help="Delete one image")
    delete.add_argument("image_id")

    clear = commands.add_parser("clear", help="Delete all images")
    clear.add_argument("--yes", action="store_true", help="Confirm deleting everything")

    reconcile = commands.add_parser("reconcile", help="Move ephemeral images into durable storage")
    reconcile.add_argument(
        "--watch",
        type=float,
        default=None,
        metavar="INTERVAL",
        help="Keep reconciling every INTERVAL seconds until Ctrl-C",
    )

    serve = commands.add_parser("serve", help="Run the HTTP service")
    serve.add_argument("--host", default="127.0.0.1")
    serve.add_argument("--port", type=int, default=8000)

    return parser


def print_progress(update):
    print(update.message, flush=True)


def print_image(image):
    prompt = image.prompt if len(image.prompt) <= 60 else image.prompt[:57] + "..."
    print(f"{image.id}  {format_timestamp(image.timestamp)}  {image.model}  {image.aspect_ratio}  {prompt}")
    url = image.url if not image.url.startswith("data:") else "(inline data, not yet in durable storage)"
    print(f"    {url}")


async def run_generate(session, args):
    input_image = encode_image_file(args.input_image) if args.input_image else None
    cancel = CancellationHandle()

    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl-C will abort without cleanup")

    try:
        image = await session.generate(
            args.model,
            args.prompt,
            aspect_ratio=args.aspect_ratio,
            input_image=input_image,
            seed=args.seed,
            cancel=cancel,
            on_progress=print_progress,
        )
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass

    print("\nImage ready:\n")
    print_image(image)


async def run_list(session, args):
    images = await session.list_images()
    if not images:
        print("No images stored.")
        return
    for image in images:
        print_image(image)


async def run_delete(session, args):
    await session.delete_image(args.image_id)
    print(f"Deleted {args.image_id}")


async def run_clear(session, args):
    if not args.yes:
        print("Refusing to delete all images without --yes.")
        return
    deleted = await session.clear_all()
    print(f"Cleared images (deleted from durable storage: {deleted})")


async def run_reconcile(session, args):
    if args.watch is None:
        migrated = await session.reconcile()
        print(f"Moved {migrated} image(s) into durable storage")
        return

    if args.watch <= 0:
        raise ValidationError("--watch interval must be positive")

    cancel = CancellationHandle()
    loop = asyncio.get_running_loop()
    try:
        loop.add_signal_handler(signal.SIGINT, cancel.cancel)
    except (NotImplementedError, RuntimeError):
        logger.debug("Signal handlers unavailable; Ctrl-C will abort without cleanup")

    print(f"Reconciling every {args.watch:g}s (Ctrl-C to stop)", flush=True)
    try:
        await session.run_reconciliation(args.watch, cancel)
    finally:
        try:
            loop.remove_signal_handler(signal.SIGINT)
        except (NotImplementedError, RuntimeError):
            pass
    print("Reconciliation stopped.")


COMMANDS = {
    "generate": run_generate,
    "list": run_list,
    "delete": run_delete,
    "clear": run_clear,
    "reconcile": run_reconcile,
}


def serve(host, port):
    import uvicorn

    uvicorn.run("fluxstudio.api.http_api:app", host=host, port=port)


def main(argv=None):
    """Run one CLI command; return the process exit status."""
    parser = build_parser()
    args = parser.parse_args(argv)

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.WARNING,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )

    if args.command == "serve":
        serve(args.host, args.port)
        return 0

    session = FluxSession.from_settings(resolve_api_key(args.api_key), FluxSettings())

    try:
        asyncio.run(COMMANDS[args.command](session, args))
    except ModerationError as exc:
        print("\n" + render_guidance(exc.reasons), file=sys.stderr)
        return 1
    except FluxError as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    except KeyboardInterrupt:
        print("\nOperation cancelled by user.", file=sys.stderr)
        return 130
    return 0


if __name__ == "__main__":
    sys.exit(main())
