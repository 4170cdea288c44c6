#!/usr/bin/env python3
"""Seed a demo vendor with services, workers and weekly schedules."""
import sys
from datetime import time
from decimal import Decimal
from pathlib import Path

# Add the parent directory to the path so we can import the app
sys.path.insert(0, str(Path(__file__).parent.parent))

from bookit import create_app
from bookit.auth import build_token
from bookit.extensions import db
from bookit.models import Service, User, Vendor, Worker, WorkerAvailability

def seed_demo():
    """Create one active vendor that can take bookings Monday to Saturday."""
    app = create_app()

    with app.app_context():
        db.create_all()

        if Vendor.query.filter_by(name="FrizNaKlik").first():
            print("⏭️  Demo vendor already exists")
            return

        owner = User(name="Vera Owner", email="owner@example.com", role="vendor_owner")
        customer = User(name="Charlie Customer", email="charlie@example.com", role="user")
        db.session.add_all([owner, customer])
        db.session.flush()

        vendor = Vendor(owner_id=owner.user_id, name="FrizNaKlik", status="active", slot_step_minutes=15)
        db.session.add(vendor)
        db.session.flush()

        haircut = Service(vendor_id=vendor.vendor_id, name="Haircut", price=Decimal("15.00"), duration_minutes=30)
        coloring = Service(vendor_id=vendor.vendor_id, name="Coloring", price=Decimal("45.00"), duration_minutes=90)
        db.session.add_all([haircut, coloring])
        db.session.flush()

        ana = Worker(vendor_id=vendor.vendor_id, name="Ana", services=[haircut, coloring])
        marko = Worker(vendor_id=vendor.vendor_id, name="Marko", services=[haircut])
        db.session.add_all([ana, marko])
        db.session.flush()

        # Monday (1) to Saturday (6); Sunday stays closed.
        for worker in (ana, marko):
            for day in range(1, 7):
                db.session.add(WorkerAvailability(
                    worker_id=worker.worker_id,
                    day_of_week=day,
                    start_time=time(9, 0),
                    end_time=time(17, 0) if day < 6 else time(13, 0),
                ))

        db.session.commit()

        print(f"✅ Vendor {vendor.vendor_id} seeded with 2 services and 2 workers")
        print(f"🔑 Owner token:    {build_token(owner.user_id)}")
        print(f"🔑 Customer token: {build_token(customer.user_id)}")

if __name__ == "__main__":
    seed_demo()
