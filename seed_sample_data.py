import asyncio
from datetime import datetime, time, timedelta
import random

from expiry_alerts.config import settings
from expiry_alerts.database import init_db
from expiry_alerts.models.employee import Employee, EmployeeDocument


async def create_sample_data():
    """Populate employees whose documents expire on and around the alert thresholds"""
    print("🚀 Starting Sample Data Generation...")
    client = await init_db(settings)

    today = datetime.combine(datetime.utcnow().date(), time.min)
    companies = ["CUBS", "AL ASHBAL AJMAN", "GOLDEN CUBS", "FLUID"]
    trades = ["Electrician", "Welder", "Driver", "Foreman", "Mason"]
    nationalities = ["India", "Pakistan", "Nepal", "Bangladesh", "Philippines"]

    # Offsets landing exactly on thresholds plus a few in between
    visa_offsets = [60, 30, 15, 7, 1, 45, 10, -3, 120, None]
    names = [
        "Alice Smith", "Bob Johnson", "Charlie Davis", "Diana Prince", "Ethan Hunt",
        "Fiona Gallagher", "George Miller", "Hannah Baker", "Ian Wright", "Julia Roberts"
    ]

    for i, (name, offset) in enumerate(zip(names, visa_offsets)):
        emp_id = f"EMP{100 + i}"
        existing = await Employee.find_one(Employee.employee_id == emp_id)
        if existing:
            print(f"⏩ {emp_id} already exists, skipping...")
            continue

        first, last = name.lower().split()
        emp = Employee(
            employee_id=emp_id,
            name=name,
            email=f"{first}.{last}@company.com",
            company_name=random.choice(companies),
            nationality=random.choice(nationalities),
            trade=random.choice(trades),
            joining_date=today - timedelta(days=random.randint(30, 1500)),
            visa_expiry_date=today + timedelta(days=offset) if offset is not None else None,
            passport_expiry_date=today + timedelta(days=random.choice([30, 60, 200, 900])),
            labour_card_expiry_date=today + timedelta(days=random.choice([30, 60, 400])),
            documents=[
                EmployeeDocument(title="Visa copy", document_type="visa", file_path=f"CUBS/{emp_id}/visa.pdf"),
                EmployeeDocument(title="Passport copy", document_type="passport", file_path=f"CUBS/{emp_id}/passport.pdf"),
            ],
        )
        await emp.insert()
        print(f"✅ Created Employee: {name} ({emp_id}), visa offset {offset}")

    print("✨ Sample data ready")
    client.close()


if __name__ == "__main__":
    asyncio.run(create_sample_data())
