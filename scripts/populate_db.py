import os
import sys
import django
import random
import uuid
from decimal import Decimal
from faker import Faker

# Add project root to Python path
sys.path.append(os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

# Set up Django environment
os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'storage_marketplace.settings')
django.setup()

from rentals.compliance import accept_host_clause
from rentals.exceptions import LifecycleError
from rentals.models import PlatformSetting, Space, User
from rentals.pricing import PERIOD_UNITS
from rentals.reservations import create_reservation, quote_for_space

fake = Faker()

# Rough multipliers from the monthly rate to each period unit
UNIT_FACTORS = {
    'day': Decimal('0.05'),
    'week': Decimal('0.3'),
    'month': Decimal('1'),
    'quarter': Decimal('2.8'),
    'semester': Decimal('5.4'),
    'year': Decimal('10'),
}


def create_settings():
    print("Creating platform settings...")
    for key, value in (('deposit_percentage', Decimal('20.00')), ('commission_percentage', Decimal('10.00'))):
        PlatformSetting.objects.update_or_create(
            key=key,
            defaults={'value': value, 'description': fake.sentence()}
        )


def create_users(num_guests=10, num_hosts=5):
    print(f"Creating {num_guests} guests and {num_hosts} hosts...")

    guests = []
    hosts = []

    for _ in range(num_guests):
        email = fake.unique.email()
        user = User.objects.create_user(
            username=email,
            email=email,
            password='password123',
            first_name=fake.first_name(),
            last_name=fake.last_name(),
            role='guest'
        )
        guests.append(user)

    for _ in range(num_hosts):
        email = fake.unique.email()
        user = User.objects.create_user(
            username=email,
            email=email,
            password='password123',
            first_name=fake.first_name(),
            last_name=fake.last_name(),
            role='host'
        )
        # Most hosts have accepted the clause so their spaces can be published
        if random.random() < 0.8:
            accept_host_clause(user, fake.ipv4())
        hosts.append(user)

    print(f"Created {len(guests)} guests and {len(hosts)} hosts.")
    return guests, hosts


def create_spaces(hosts):
    print("Creating spaces...")
    spaces = []

    space_types = [choice for choice, _ in Space.SPACE_TYPE_CHOICES]
    access_types = [choice for choice, _ in Space.ACCESS_CHOICES]

    for host in hosts:
        for _ in range(random.randint(1, 3)):
            total = Decimal(random.randint(10, 400))
            monthly = Decimal(random.uniform(20.0, 120.0)).quantize(Decimal('0.01'))
            offered = random.sample(PERIOD_UNITS, random.randint(1, len(PERIOD_UNITS)))
            if 'month' not in offered:
                offered.append('month')

            prices = {
                f'price_per_sqm_{unit}': (monthly * UNIT_FACTORS[unit]).quantize(Decimal('0.01'))
                for unit in offered
            }
            space = Space.objects.create(
                host=host,
                title=f"{fake.word().capitalize()} {random.choice(['Storage', 'Warehouse', 'Depot', 'Room'])}",
                description=fake.paragraph(),
                space_type=random.choice(space_types),
                total_sqm=total,
                available_sqm=(total * Decimal(random.uniform(0.5, 1.0))).quantize(Decimal('0.01')),
                has_security=random.choice([True, False]),
                dust_protected=random.choice([True, False]),
                access_type=random.choice(access_types),
                address=fake.street_address(),
                city=fake.city(),
                status='published' if host.anti_bypass_accepted else 'draft',
                **prices
            )
            spaces.append(space)

    print(f"Created {len(spaces)} spaces.")
    return spaces


def create_reservations(guests, spaces):
    print("Creating reservations...")
    reservations = []

    published = [space for space in spaces if space.status == 'published']
    for guest in guests:
        if not published:
            break
        for _ in range(random.randint(0, 2)):
            space = random.choice(published)
            area = Decimal(random.randint(1, 10))
            period_type = random.choice([unit for unit, rate in space.price_table().items() if rate])
            period_count = random.randint(1, 3)
            try:
                offer = quote_for_space(space, area, period_type, period_count)
                reservation = create_reservation(
                    guest=guest,
                    space_id=space.pk,
                    area=area,
                    period_type=period_type,
                    period_count=period_count,
                    quoted=offer.as_dict(),
                    method=random.choice(['card', 'qr']),
                    idempotency_key=str(uuid.uuid4()),
                )
            except LifecycleError as e:
                print(f"Skipped reservation on space {space.pk}: {e.detail}")
                continue
            reservations.append(reservation)

    print(f"Created {len(reservations)} reservations.")
    return reservations


def main():
    print("Starting database population...")

    create_settings()

    guests, hosts = create_users(num_guests=20, num_hosts=8)

    spaces = create_spaces(hosts)

    create_reservations(guests, spaces)

    print("Database population completed successfully!")


if __name__ == '__main__':
    main()
