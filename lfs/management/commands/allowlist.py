# lfs/management/commands/allowlist.py

import logging

from django.core.management.base import BaseCommand, CommandError

from lfs.domain import AllowedRepository, InvalidRepositoryIdentifier
from lfs.repository import CachingRepositoryAllowlist

logger = logging.getLogger(__name__)


class Command(BaseCommand):
    help = "Manages the set of owner/name repositories this LFS server serves."

    def add_arguments(self, parser):
        parser.add_argument('action', choices=['add', 'remove', 'list'])
        parser.add_argument('repository', nargs='?', help="owner/name (required for add and remove)")

    def handle(self, *args, **options):
        allowlist = CachingRepositoryAllowlist()
        action = options['action']

        if action == 'list':
            for repository in allowlist.list():
                self.stdout.write(repository.full_name)
            return

        if not options['repository']:
            raise CommandError(f"'{action}' needs a repository in owner/name form")
        try:
            repository = AllowedRepository.parse(options['repository'])
        except InvalidRepositoryIdentifier as e:
            raise CommandError(str(e))

        if action == 'add':
            allowlist.add(repository)
            logger.info(f"Allowlisted {repository}")
            self.stdout.write(self.style.SUCCESS(f"Added {repository}"))
        else:
            if allowlist.remove(repository):
                logger.info(f"Removed {repository} from the allowlist")
                self.stdout.write(self.style.SUCCESS(f"Removed {repository}"))
            else:
                self.stdout.write(self.style.WARNING(f"{repository} was not allowlisted"))
