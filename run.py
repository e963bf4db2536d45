#!/usr/bin/env python3
"""
Poem Translator - Launcher
==========================
Start the API server, the background worker, or both.

Usage:
    python run.py            # API server
    python run.py worker     # background worker only
    python run.py all        # API server with an in-process worker
"""
import argparse
import os
import sys
import threading
from pathlib import Path

# Add package to path if running directly
package_dir = Path(__file__).parent
if str(package_dir) not in sys.path:
    sys.path.insert(0, str(package_dir))

os.environ.setdefault('POEM_TRANSLATOR_APP_DIR', str(package_dir))


class Colors:
    RESET = '\033[0m'
    BOLD = '\033[1m'
    RED = '\033[91m'
    GREEN = '\033[92m'
    YELLOW = '\033[93m'
    CYAN = '\033[96m'


def check_provider() -> bool:
    """Check whether the generation provider answers."""
    from poem_translator.services.generation_client import get_generation_client
    return get_generation_client().is_healthy()


def print_banner(mode: str):
    from poem_translator.config import config
    print(f"\n{Colors.CYAN}{'=' * 60}{Colors.RESET}")
    print(f"{Colors.BOLD}{Colors.GREEN}  POEM TRANSLATOR ({mode}){Colors.RESET}")
    print(f"{Colors.CYAN}{'=' * 60}{Colors.RESET}")
    print(f"  Provider: {config.provider.base_url}")
    print(f"  App dir:  {config.paths.app_dir}")
    print(f"{Colors.CYAN}{'=' * 60}{Colors.RESET}\n")


def start_worker_thread() -> threading.Thread:
    from poem_translator.worker import run_worker
    thread = threading.Thread(target=run_worker, name='translation-worker', daemon=True)
    thread.start()
    return thread


def main(argv=None):
    parser = argparse.ArgumentParser(description='Poem Translator')
    parser.add_argument('mode', nargs='?', default='serve', choices=['serve', 'worker', 'all'],
                        help='what to run (default: serve)')
    args = parser.parse_args(argv)

    print_banner(args.mode)

    print(f"{Colors.YELLOW}Checking provider...{Colors.RESET}")
    if check_provider():
        print(f"{Colors.GREEN}   Provider is reachable{Colors.RESET}\n")
    else:
        print(f"{Colors.RED}   Provider not reachable; units will fail and back off until it is{Colors.RESET}\n")

    if args.mode == 'worker':
        from poem_translator.worker import run_worker
        run_worker()
        return

    if args.mode == 'all':
        start_worker_thread()

    from poem_translator.app import run_server
    run_server()


if __name__ == '__main__':
    main()
