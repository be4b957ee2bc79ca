#!/usr/bin/env python3
"""
Command line entry point: list jobs, run one job, or serve the HTTP API.
Scheduling is left to an external cron hitting ``run`` or POST /api/jobs/<name>.
"""
import argparse
import json
import logging
import sys

from config import CONFIG
from jobs import JOBS, run_job
from logging_config import log_config, setup_logging


def parse_params(pairs) -> dict:
    """``k=v`` pairs; values are decoded as JSON when possible (numbers, bools)."""
    params = {}
    for pair in pairs or []:
        key, sep, value = pair.partition('=')
        if not sep or not key:
            raise argparse.ArgumentTypeError(f'expected key=value, got {pair!r}')
        try:
            params[key] = json.loads(value)
        except ValueError:
            params[key] = value
    return params


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description='XRay market data sync pipeline')
    parser.add_argument('--log-level', default='INFO',
                        choices=['DEBUG', 'INFO', 'WARNING', 'ERROR'], help='Logging level')
    sub = parser.add_subparsers(dest='command', required=True)

    sub.add_parser('list', help='List registered jobs')

    run_p = sub.add_parser('run', help='Run one job and print its JSON result')
    run_p.add_argument('job', choices=sorted(JOBS), help='Job name')
    run_p.add_argument('--param', action='append', default=[], metavar='KEY=VALUE',
                       help='Job parameter (repeatable)')

    serve_p = sub.add_parser('serve', help='Run the HTTP API')
    serve_p.add_argument('--host', default=CONFIG['HOST'], help='API server host')
    serve_p.add_argument('--port', type=int, default=CONFIG['PORT'], help='API server port')
    return parser


def main(argv=None) -> int:
    args = build_parser().parse_args(argv)
    setup_logging(getattr(logging, args.log_level))
    logger = logging.getLogger(__name__)

    if args.command == 'list':
        for name in sorted(JOBS):
            print(name)
        return 0

    if args.command == 'run':
        log_config()
        try:
            params = parse_params(args.param)
        except argparse.ArgumentTypeError as e:
            logger.error(str(e))
            return 2
        body, status = run_job(args.job, params)
        print(json.dumps(body, indent=2, default=str))
        return 0 if status == 200 else 1

    from app import app
    log_config()
    logger.info(f'Starting API server on {args.host}:{args.port}')
    app.run(host=args.host, port=args.port, debug=CONFIG['DEBUG'])
    return 0


if __name__ == '__main__':
    sys.exit(main())
