"""
Launch a local payment network: one verifier and several resource servers.
"""
import os
import signal
import subprocess
import sys
import time
from dataclasses import dataclass, field
from typing import Dict, List, Mapping, Optional

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from loguru import logger


@dataclass(frozen=True)
class ProcessSpec:
    name: str
    port: int
    env: Dict[str, str] = field(default_factory=dict)

    def command(self) -> List[str]:
        return [
            sys.executable,
            str(settings.BASE_DIR / 'manage.py'),
            'runserver',
            '--noreload',
            f'127.0.0.1:{self.port}',
        ]


def build_process_specs(
    num_sellers: int,
    base_port: int,
    facilitator_port: int,
    base_env: Optional[Mapping[str, str]] = None,
) -> List[ProcessSpec]:
    """One facilitator followed by ``num_sellers`` sellers on consecutive ports."""
    inherited = dict(base_env if base_env is not None else os.environ)
    facilitator_url = f'http://localhost:{facilitator_port}/verify'

    specs = [ProcessSpec(
        name='facilitator',
        port=facilitator_port,
        env={**inherited, 'X402_SERVICE': 'facilitator', 'FACILITATOR_PORT': str(facilitator_port)},
    )]
    for index in range(num_sellers):
        port = base_port + index
        if port == facilitator_port:
            raise ValueError(f'Seller #{index + 1} would reuse facilitator port {port}')
        specs.append(ProcessSpec(
            name=f'seller-{index + 1}',
            port=port,
            env={
                **inherited,
                'X402_SERVICE': 'seller',
                'SELLER_PORT': str(port),
                'FACILITATOR_URL': facilitator_url,
            },
        ))
    return specs


def stop_process(proc: subprocess.Popen) -> None:
    if proc.poll() is not None:
        return
    proc.terminate()
    try:
        proc.wait(timeout=5)
    except subprocess.TimeoutExpired:
        proc.kill()


def _interrupt(signum, frame):
    raise KeyboardInterrupt


class Command(BaseCommand):
    help = 'Start one facilitator and N sellers as runserver subprocesses.'

    def add_arguments(self, parser):
        parser.add_argument('--sellers', type=int, default=settings.LAUNCHER_NUM_SELLERS)
        parser.add_argument('--base-port', type=int, default=settings.LAUNCHER_BASE_PORT)
        parser.add_argument('--facilitator-port', type=int, default=settings.FACILITATOR_PORT)

    def handle(self, *args, **options):
        try:
            specs = build_process_specs(
                options['sellers'], options['base_port'], options['facilitator_port'])
        except ValueError as exc:
            raise CommandError(str(exc)) from exc

        processes: List[subprocess.Popen] = []
        signal.signal(signal.SIGTERM, _interrupt)
        try:
            for spec in specs:
                logger.info('starting {} on port {}', spec.name, spec.port)
                processes.append(subprocess.Popen(spec.command(), env=spec.env))
                time.sleep(1.0 if spec.name == 'facilitator' else 0.5)

            self.stdout.write(self.style.SUCCESS(
                f'Network ready: facilitator on {specs[0].port}, '
                f'{len(specs) - 1} seller(s) from {options["base_port"]}. Press Ctrl+C to stop.'))
            while all(proc.poll() is None for proc in processes):
                time.sleep(0.5)
            logger.error('a network process exited unexpectedly, shutting down')
        except KeyboardInterrupt:
            logger.info('shutting down network')
        finally:
            for proc in processes:
                stop_process(proc)
