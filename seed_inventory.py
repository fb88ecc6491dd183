# -*- coding: utf-8 -*-
"""
seed_inventory.py: load a sample parts catalog into an empty lab database.

Usage:
- python seed_inventory.py --admin-email admin@lab.example

Parts that already exist (by part_id) are left untouched. New parts are
created at zero and then restocked through the ledger, so every seeded
unit has a matching "restock" transaction.
"""

import argparse

from app import create_app
from extensions import db
from models import User
from modules.inventory import ledger
from modules.inventory.models import Part

SAMPLE_PARTS = [
    dict(part_id="RES-10K-001", description="10kΩ Resistor 0.25W 5%", bin_id="A1",
         location_within_bin="Slot 3", quantity=250, min_quantity=50,
         part_link="https://www.digikey.com/product-detail/en/yageo/CFR-25JB-52-10K/10KQBK-ND/338"),
    dict(part_id="CAP-100UF-001", description="100µF Electrolytic Capacitor 25V", bin_id="B2",
         location_within_bin="Drawer 1", quantity=85, min_quantity=25,
         part_link="https://www.digikey.com/product-detail/en/panasonic-electronic-components/EEU-FR1E101B/P122-ND/76779"),
    dict(part_id="IC-MCU-001", description="ARM Cortex-M4 Microcontroller 32-bit", bin_id="C1",
         location_within_bin="Anti-static bag", quantity=45, min_quantity=10,
         part_link="https://www.digikey.com/product-detail/en/stmicroelectronics/STM32F407VGT6/497-11147-ND/2063877"),
    dict(part_id="CONN-USB-001", description="USB Type-C Connector SMD", bin_id="D3",
         location_within_bin="Small parts bin", quantity=120, min_quantity=20,
         part_link="https://www.digikey.com/product-detail/en/amphenol-icc-fci/10118194-0001LF/609-4618-1-ND/2785382"),
    dict(part_id="XTAL-16MHZ-001", description="16MHz Crystal Oscillator ±20ppm", bin_id="E1",
         location_within_bin="Crystal drawer", quantity=75, min_quantity=15,
         part_link="https://www.digikey.com/product-detail/en/abracon-llc/ABM8G-16.000MHZ-4Y-T3/535-12327-1-ND/4355619"),
    dict(part_id="CRYPTO-CHIP-001", description="Hardware Security Module - FIPS 140-2 Level 3 (Export Restricted)",
         bin_id="S2", location_within_bin="Secure Cabinet B", quantity=3, min_quantity=5,
         part_link="https://internal-catalog.company.com/crypto-chip-001", is_sensitive=True),
    dict(part_id="LED-RED-001", description="Red LED 5mm High-Brightness", bin_id="E1",
         location_within_bin="Bin 12", quantity=150, min_quantity=50,
         part_link="https://www.digikey.com/product-detail/en/kingbright/WP7113ID/754-1264-ND/1747663"),
    dict(part_id="WIRE-22AWG-001", description="22AWG Hookup Wire (Red) - 100ft Spool", bin_id="F1",
         location_within_bin="Wire Rack", quantity=8, min_quantity=10,
         part_link="https://www.digikey.com/product-detail/en/alpha-wire/3051-RD005/A3051R-100-ND/280895"),
    dict(part_id="SENSOR-TEMP-001", description="Digital Temperature Sensor - High Precision", bin_id="G2",
         location_within_bin="Sensor Drawer", quantity=30, min_quantity=15,
         part_link="https://www.analog.com/en/products/adt7420.html"),
    dict(part_id="PSU-5V-001", description="5V 2A Switching Power Supply Module", bin_id="H1",
         location_within_bin="Power Supply Shelf", quantity=18, min_quantity=8,
         part_link="https://www.meanwell.com/webapp/product/search.aspx?prod=RS-15-5"),
]


def seed_parts(admin: User) -> int:
    """Insert the sample parts that are missing; returns how many were added."""
    added = 0
    for sample in SAMPLE_PARTS:
        data = dict(sample)
        quantity = data.pop("quantity")
        if Part.query.filter_by(part_id=data["part_id"]).first():
            print(f"  = {data['part_id']} already present")
            continue

        part = Part(quantity=0, qr_code=f"QR-{data['part_id']}", **data)
        db.session.add(part)
        db.session.commit()
        ledger.restock(part, quantity, admin, "Initial stock")
        print(f"  + {part.part_id}: {quantity} units")
        added += 1
    return added


def main():
    parser = argparse.ArgumentParser(description="Seed the parts catalog with sample data")
    parser.add_argument("--admin-email", required=True, help="admin account recorded on the restock transactions")
    args = parser.parse_args()

    app = create_app()
    with app.app_context():
        admin = User.query.filter_by(email=args.admin_email.strip().lower()).first()
        if admin is None or not admin.is_admin:
            parser.error(f"{args.admin_email} is not an admin account (see create_user.py)")

        print("→ Seeding parts …")
        added = seed_parts(admin)
        print(f"✓ Done. {added} part(s) added.")


if __name__ == "__main__":
    main()
