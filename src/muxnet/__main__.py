from pathlib import Path
import argparse
import asyncio
import logging
import sys

import yaml

from .app import Muxnet
from .config import MuxnetConfig, OphanimConfig, generate_session_name
from .ophanim.history import HistoryStore, HistoryStoreError


LOG_FORMAT = 'MuxNet: %(asctime)s %(filename)s:%(lineno)d %(levelname)s %(message)s'
LOG_FILE_NAME = 'muxnet.log'


def configure_logging(level: str, log_file: Path | None = None):
    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        logging.basicConfig(level=level, format=LOG_FORMAT, filename=log_file)
    else:
        logging.basicConfig(level=level, format=LOG_FORMAT, stream=sys.stdout)


def log_file_for(config: MuxnetConfig) -> Path | None:
    """The dashboard owns the terminal, so interactive runs log into the history directory."""
    if config.daemon_mode:
        return None
    return config.ophanim.history_dir / LOG_FILE_NAME


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog='muxnet',
        description='Watches tmux sessions for #$, #@, #% and #! directives and answers them in place.',
    )
    parser.add_argument("--session", type=str, default=None, required=False, help="Custom session name")
    parser.add_argument("--delay", type=float, default=2.0, required=False, help="Delay between scans, in seconds")
    parser.add_argument("-d", "--daemon", action="store_true", help="Run in daemon mode")
    parser.add_argument("--continue", dest="continue_conversation", action="store_true",
                        help="Send prior exchanges of a session along with each directive")
    parser.add_argument("--log-level", choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], default='INFO', required=False)

    subparsers = parser.add_subparsers(dest="command")
    history_parser = subparsers.add_parser("history", help="Manage stored conversation histories")
    history_subparsers = history_parser.add_subparsers(dest="history_command", required=True)
    history_subparsers.add_parser("list", help="List stored histories")
    for name, help_text in [
        ("show", "Print a stored history"),
        ("undo", "Drop the last exchange of a stored history"),
        ("delete", "Delete a stored history"),
    ]:
        history_subparsers.add_parser(name, help=help_text).add_argument("key", type=str)

    return parser


async def run_history_command(args: argparse.Namespace, store: HistoryStore) -> int:
    if args.history_command == 'list':
        for key in await store.list():
            print(key)
        return 0

    if args.history_command == 'show':
        history = await store.load(args.key)
        print(yaml.dump(history.model_dump(mode='json'), sort_keys=False, indent=2, allow_unicode=True), end='')
        return 0

    if args.history_command == 'undo':
        history = await store.load(args.key)
        if history.undo_last() is None:
            print(f'Nothing to undo in {args.key}.')
            return 0
        try:
            await store.save(args.key)
        except HistoryStoreError as e:
            print(f'Failed to undo: {e}', file=sys.stderr)
            return 1
        print(f'Removed the last exchange of {args.key}; {len(history)} left.')
        return 0

    if args.history_command == 'delete':
        try:
            removed = await store.delete(args.key)
        except HistoryStoreError as e:
            print(f'Failed to delete: {e}', file=sys.stderr)
            return 1
        print(f'History {args.key} deleted.' if removed else f'History {args.key} does not exist.')
        return 0

    raise ValueError(f'Unknown history command: {args.history_command}')


async def run_muxnet(config: MuxnetConfig):
    muxnet = Muxnet(config)
    await muxnet.run()


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    ophanim_config = OphanimConfig.from_env()

    if args.command == 'history':
        configure_logging(args.log_level if args.log_level != 'INFO' else 'WARNING')
        store = HistoryStore(ophanim_config.history_dir)
        return asyncio.run(run_history_command(args, store))

    config = MuxnetConfig(
        session_name=args.session or generate_session_name(),
        response_delay_seconds=args.delay,
        daemon_mode=args.daemon,
        continue_conversation=args.continue_conversation,
        ophanim=ophanim_config,
    )

    configure_logging(args.log_level, log_file=log_file_for(config))

    asyncio.run(run_muxnet(config))
    return 0


if __name__ == '__main__':
    sys.exit(main())
