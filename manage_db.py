"""Database management for the dispatch engine.

Usage:
    python manage_db.py init          # Create the dispatch tables
    python manage_db.py seed          # Add sample warehouses, products and agents (idempotent)
    python manage_db.py reset         # Drop and recreate the tables (WARNING: destroys all data)
    python manage_db.py check         # Connectivity and pending-order backlog

DATABASE_URL selects the database (see backend/db/database.py).
"""

import asyncio
import sys
from contextlib import asynccontextmanager
from decimal import Decimal
from pathlib import Path

# Add backend to path
sys.path.insert(0, str(Path(__file__).parent))

from backend.core.models.domain import (
    AgentStatus,
    DeliveryAgent,
    Product,
    VehicleCapacity,
    Warehouse,
)
from backend.db import database

SAMPLE_WAREHOUSES = [
    Warehouse("WH_BLR_01", "Koramangala Hub", 12.9352, 77.6245, "80 Feet Rd, Koramangala, Bengaluru"),
    Warehouse("WH_BLR_02", "Indiranagar Hub", 12.9784, 77.6408, "100 Feet Rd, Indiranagar, Bengaluru"),
]

SAMPLE_PRODUCTS = [
    Product("PRD_SPICE", "Spice Sampler", unit_weight_grams=150.0, price=Decimal("249.00")),
    Product("PRD_TEA", "Tea Leaves 250g", unit_weight_grams=260.0, price=Decimal("199.00")),
    Product("PRD_RICE", "Basmati Rice 5kg", unit_weight_grams=5000.0, price=Decimal("899.00")),
]

SAMPLE_AGENTS = [
    DeliveryAgent("AGT_2W_001", "Ravi", VehicleCapacity.TWO_WHEELER, AgentStatus.AVAILABLE, 12.9360, 77.6230, "+919800000001"),
    DeliveryAgent("AGT_2W_002", "Meena", VehicleCapacity.TWO_WHEELER, AgentStatus.AVAILABLE, 12.9770, 77.6390, "+919800000002"),
    DeliveryAgent("AGT_4W_001", "Arjun", VehicleCapacity.FOUR_WHEELER, AgentStatus.AVAILABLE, 12.9340, 77.6260, "+919800000003"),
]


@asynccontextmanager
async def connected():
    """Open the database for one command and yield its store factory."""
    store_factory = await database.init_database()
    try:
        yield store_factory
    finally:
        await database.close_database()


async def init_db():
    async with connected():
        await database.create_schema()
    print("[OK] Dispatch tables created")


async def seed_db():
    """Insert the sample fleet. Rows that already exist are left untouched."""
    async with connected() as store_factory:
        await database.create_schema()

        async with store_factory() as store:
            for warehouse in SAMPLE_WAREHOUSES:
                if await store.warehouses.find_by_id(warehouse.warehouse_id) is None:
                    await store.warehouses.save(warehouse)
                    print(f"  [OK] Warehouse {warehouse.warehouse_id}: {warehouse.name}")

            for product in SAMPLE_PRODUCTS:
                if await store.products.find_by_id(product.product_id) is None:
                    await store.products.save(product)
                    print(f"  [OK] Product {product.product_id}: {product.unit_weight_grams:.0f}g")

            for agent in SAMPLE_AGENTS:
                if await store.agents.find_by_id(agent.agent_id) is None:
                    await store.agents.save(agent)
                    print(f"  [OK] Agent {agent.agent_id}: {agent.vehicle_capacity.value}")

    print("[OK] Sample data in place")


async def reset_db():
    print("[WARNING] This will destroy ALL orders, agents, products and warehouses!")
    if input("Type 'yes' to confirm: ").lower() != "yes":
        print("Reset cancelled.")
        return

    async with connected():
        await database.create_schema(drop_existing=True)
    print("[OK] Dispatch tables recreated empty")


async def check_db():
    async with connected():
        health = await database.check_database_health()

    if health["status"] != "healthy":
        print(f"[ERROR] Database is unhealthy: {health.get('error', 'Unknown error')}")
        sys.exit(1)

    print("[OK] Database is healthy")
    print(f"  Orders awaiting assignment: {health['pending_orders']}")
    if "pool_size" in health:
        print(f"  Pool size: {health['pool_size']} (checked out: {health['checked_out']})")


COMMANDS = {
    "init": init_db,
    "seed": seed_db,
    "reset": reset_db,
    "check": check_db,
}


async def main():
    command = sys.argv[1].lower() if len(sys.argv) > 1 else None
    if command not in COMMANDS:
        if command:
            print(f"Unknown command: {command}")
        print(__doc__)
        sys.exit(1)

    try:
        await COMMANDS[command]()
    except Exception as e:
        print(f"[ERROR] {e}")
        import traceback
        traceback.print_exc()
        sys.exit(1)


if __name__ == "__main__":
    asyncio.run(main())
