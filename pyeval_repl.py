import argparse
import asyncio
import logging
import sys
from pathlib import Path

from pyeval.pyeval_config import EvaluatorConfig, load_config
from pyeval.pyeval_evaluator import Evaluator
from pyeval.pyeval_host import ConsoleHost

logger = logging.getLogger("pyeval_repl")

# A basic awaitable input prompt.
async def ainput(prompt: str) -> str:
    loop = asyncio.get_running_loop()
    sys.stdout.write(prompt)
    sys.stdout.flush()
    return await loop.run_in_executor(None, sys.stdin.readline)

def build_evaluator(config: EvaluatorConfig) -> Evaluator:
    non_python = [u for u in config.script_urls if not u.split("?", 1)[0].endswith(".py")]
    if non_python:
        logger.warning(
            "The console host runs script assets as Python; %s will not load. "
            "Set script_urls to Python sources to use %s.",
            ", ".join(non_python), config.heavy_dependency,
        )
    host = ConsoleHost(timeout=config.http_timeout)
    return Evaluator(host, config)

async def run_script_file(file_path: str, config: EvaluatorConfig):
    """Evaluate a file as a single chunk and exit with appropriate status."""
    evaluator = build_evaluator(config)
    try:
        source = Path(file_path).read_text(encoding="utf-8")
    except FileNotFoundError:
        print(f"Error: file not found: {file_path}", file=sys.stderr)
        raise SystemExit(1)
    result = await evaluator.handle_chunk(source)
    if result.status == 'error':
        print(result.format_error(), file=sys.stderr)
        raise SystemExit(1)

def parse_args(argv):
    parser = argparse.ArgumentParser(description="Evaluate Python chunks with on-demand dependencies.")
    parser.add_argument("script", nargs="?", help="file to evaluate instead of starting the REPL")
    parser.add_argument("--config", help="YAML file with evaluator settings")
    parser.add_argument("--verbose", action="store_true", help="log evaluator activity to stderr")
    return parser.parse_args(argv)

async def main(argv=None):
    """Run a script file when provided, otherwise start the interactive REPL."""
    args = parse_args(sys.argv[1:] if argv is None else argv)
    if args.verbose:
        logging.basicConfig(level=logging.DEBUG, format="%(levelname)s %(name)s: %(message)s")
    config = load_config(args.config) if args.config else EvaluatorConfig()

    if args.script:
        await run_script_file(args.script, config)
        return

    print("pyeval REPL v0.1")
    print("Type 'exit' or press Ctrl+D to quit.")

    evaluator = build_evaluator(config)

    while True:
        try:
            raw = await ainput(">>> ")
            if raw == "":
                raise EOFError
            line = raw.rstrip("\r\n")

            if not line.strip():
                continue
            if line.strip() == "exit":
                break

            # Output and the value are forwarded by the host as they are produced
            result = await evaluator.handle_chunk(line)
            if result.status == 'error':
                print(result.format_error(), file=sys.stderr)

        except EOFError:
            print("\nExiting.")
            break
        except Exception as e:
            print(f"Error: {e}", file=sys.stderr)

    evaluator.close()

if __name__ == "__main__":
    try:
        asyncio.run(main())
    except KeyboardInterrupt:
        print("\nExiting.")
