"""
Seed a development database: alice, bob and charlie (all @chatify.test),
one direct conversation with unread messages and a private group run by alice.

Usage: python manage.py create_test_users [--password TestPass123!]
"""
from django.core.management.base import BaseCommand
from django.db import transaction

from accounts.models import User
from chat.models import Group, Message

# (username, first name)
TEST_USERS = [
    ('alice', 'Alice'),
    ('bob', 'Bob'),
    ('charlie', 'Charlie'),
]


class Command(BaseCommand):
    help = 'Create development users, a direct conversation and a sample private group'

    def add_arguments(self, parser):
        parser.add_argument('--password', default='TestPass123!', help='Password set on every seeded user')

    @transaction.atomic
    def handle(self, *args, **options):
        users = {}
        for username, first_name in TEST_USERS:
            email = f'{username}@chatify.test'
            user, created = User.objects.get_or_create(
                email=email,
                defaults={'username': username, 'first_name': first_name, 'last_name': 'Test'},
            )
            user.set_password(options['password'])
            user.save(update_fields=['password'])
            users[username] = user
            self.stdout.write(self.style.SUCCESS(f'Created: {email}') if created else f'Password reset: {email}')

        alice, bob, charlie = users['alice'], users['bob'], users['charlie']

        if not Message.objects.filter(sender=bob, receiver=alice).exists():
            for text in ('Hey Alice!', 'Are you around for a quick call?'):
                Message.objects.create(sender=bob, receiver=alice, text=text)
            self.stdout.write('Seeded a direct conversation bob -> alice')

        group, created = Group.objects.get_or_create(
            name='Test Group', admin=alice,
            defaults={'description': 'Seeded by create_test_users'},
        )
        group.members.add(bob, charlie)
        if created:
            Message.objects.create(sender=alice, group=group, text='Welcome to the test group')
            self.stdout.write(self.style.SUCCESS(f'Created group: {group.name}'))
        self.stdout.write(self.style.SUCCESS('Test data ready.'))
