from sqlalchemy.orm import Session

from studio_booking.models.customer import Customer


def find_customer(db: Session, phone: str) -> Customer | None:
    return db.query(Customer).filter(Customer.phone == phone).first()


def remember_customer(db: Session, phone: str, name: str | None, email: str | None) -> Customer:
    """Create or refresh the customer record; the caller commits."""
    customer = find_customer(db, phone)
    if customer is None:
        customer = Customer(phone=phone)
        db.add(customer)
    if name:
        customer.name = name
    if email:
        customer.email = email
    return customer
