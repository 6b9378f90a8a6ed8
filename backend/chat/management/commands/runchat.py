"""
Run the chat backend (REST + WebSocket) as one long-running daphne process.

Usage: python manage.py runchat [--host 0.0.0.0] [--port 8000]

Exits non-zero if the database is unreachable or the port cannot be bound,
and 0 after a graceful shutdown (SIGINT / SIGTERM).
"""
import logging
import socket

from django.conf import settings
from django.core.management.base import BaseCommand, CommandError
from django.db import DatabaseError, connection

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = 'Serve the chat backend over ASGI with daphne'

    def add_arguments(self, parser):
        parser.add_argument('--host', default=None, help='Interface to listen on (default: HOST setting)')
        parser.add_argument('--port', type=int, default=None, help='Port to listen on (default: PORT setting)')

    def handle(self, *args, **options):
        from daphne.endpoints import build_endpoint_description_strings
        from daphne.server import Server

        host = options['host'] or settings.HOST
        port = options['port'] or settings.PORT

        self.check_database()
        self.check_port(host, port)

        from config.asgi import application

        self.stdout.write(self.style.SUCCESS(f'Chat server listening on {host}:{port}'))
        logger.info(f'Starting daphne on {host}:{port} (env={settings.DJANGO_ENV})')
        Server(
            application=application,
            endpoints=build_endpoint_description_strings(host=host, port=port),
            signal_handlers=True,
        ).run()
        logger.info('Chat server stopped')

    def check_database(self):
        try:
            connection.ensure_connection()
        except DatabaseError as exc:
            raise CommandError(f'Cannot reach the database: {exc}')
        finally:
            connection.close()

    def check_port(self, host, port):
        family = socket.AF_INET6 if ':' in host else socket.AF_INET
        sock = socket.socket(family, socket.SOCK_STREAM)
        sock.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        try:
            sock.bind((host, port))
        except OSError as exc:
            raise CommandError(f'Cannot bind {host}:{port}: {exc}')
        finally:
            sock.close()
