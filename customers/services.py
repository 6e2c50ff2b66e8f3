# customers/services.py

from dataclasses import dataclass

from common.roles import CustomerRole
from .models import Customer


@dataclass(frozen=True)
class CustomerRoleInfo:
    customer_id: int
    role: str
    is_wholesale_eligible: bool


def get_customer_role(customer_id: int) -> CustomerRoleInfo:
    """
    Role reader consumed by pricing: wholesale eligibility is derived from
    the customer's role, nothing else.
    """
    role = Customer.objects.values_list("role", flat=True).get(id=customer_id)
    return role_info(customer_id, role)


def role_info(customer_id: int, role: str) -> CustomerRoleInfo:
    return CustomerRoleInfo(
        customer_id=customer_id,
        role=role,
        is_wholesale_eligible=(role == CustomerRole.WHOLESALER),
    )
