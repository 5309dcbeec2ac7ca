"""
Management command to create the default plan catalogue
"""
from decimal import Decimal

from django.core.management.base import BaseCommand

from billing.models import Plan, Subscription


DEFAULT_PLANS = [
    {
        'name': 'free',
        'display_name': 'Free',
        'description': 'Small practices getting started',
        'price_monthly': Decimal('0.00'),
        'price_yearly': None,
        'max_patients': 50,
        'max_dentists': 1,
        'max_appointments_month': 100,
        'features': {'has_nfse_auto': False, 'has_reports': False},
        'sort_order': 1,
    },
    {
        'name': 'basic',
        'display_name': 'Basic',
        'description': 'Single-chair clinics',
        'price_monthly': Decimal('99.90'),
        'price_yearly': Decimal('999.00'),
        'max_patients': 500,
        'max_dentists': 3,
        'max_appointments_month': 500,
        'features': {'has_nfse_auto': False, 'has_reports': True},
        'sort_order': 2,
    },
    {
        'name': 'professional',
        'display_name': 'Professional',
        'description': 'Growing clinics with automatic NFS-e',
        'price_monthly': Decimal('199.90'),
        'price_yearly': Decimal('1999.00'),
        'max_patients': 2000,
        'max_dentists': 10,
        'max_appointments_month': None,
        'features': {'has_nfse_auto': True, 'has_reports': True},
        'sort_order': 3,
    },
    {
        'name': 'enterprise',
        'display_name': 'Enterprise',
        'description': 'Clinic networks, no limits',
        'price_monthly': Decimal('499.90'),
        'price_yearly': Decimal('4999.00'),
        'max_patients': None,
        'max_dentists': None,
        'max_appointments_month': None,
        'features': {'has_nfse_auto': True, 'has_reports': True, 'priority_support': True},
        'sort_order': 4,
    },
]


class Command(BaseCommand):
    help = 'Create default subscription plans'

    def add_arguments(self, parser):
        parser.add_argument(
            '--reset',
            action='store_true',
            help='Delete existing plans (only those without subscriptions) before creating new ones',
        )

    def handle(self, *args, **options):
        if options['reset']:
            self.stdout.write(self.style.WARNING('Deleting unused plans...'))
            used = Subscription.objects.values_list('plan_id', flat=True)
            deleted, _ = Plan.objects.exclude(id__in=used).delete()
            self.stdout.write(self.style.SUCCESS(f'{deleted} plans deleted'))

        self.stdout.write('Creating subscription plans...')

        for values in DEFAULT_PLANS:
            values = dict(values)
            plan, created = Plan.objects.get_or_create(name=values.pop('name'), defaults=values)
            if created:
                self.stdout.write(self.style.SUCCESS(f'Created plan: {plan.display_name}'))
            else:
                self.stdout.write(f'Plan already exists: {plan.display_name}')

        self.stdout.write(self.style.SUCCESS(f'Done. {Plan.objects.count()} plans in catalogue.'))
