from django.contrib.auth import get_user_model
from django.test import TestCase

from common.permissions import customer_for_user, user_role
from common.roles import CustomerRole
from customers.models import Customer
from customers.services import get_customer_role, role_info


class CustomerRoleTests(TestCase):
    def setUp(self):
        User = get_user_model()
        self.user = User.objects.create_user(username="bulk", password="pass")
        self.customer = Customer.objects.create(user=self.user, full_name="Bulk Buyer", role=CustomerRole.WHOLESALER)

    def test_wholesaler_is_wholesale_eligible(self):
        info = get_customer_role(self.customer.id)
        self.assertEqual(info.role, "wholesaler")
        self.assertTrue(info.is_wholesale_eligible)

    def test_other_roles_are_not(self):
        for role in (CustomerRole.CLIENT, CustomerRole.MANAGER, CustomerRole.ADMIN):
            self.assertFalse(role_info(1, role).is_wholesale_eligible)

    def test_unknown_customer(self):
        with self.assertRaises(Customer.DoesNotExist):
            get_customer_role(999999)

    def test_profile_lookup_from_user(self):
        self.assertEqual(customer_for_user(self.user), self.customer)
        self.assertEqual(user_role(self.user), CustomerRole.WHOLESALER)
        loner = get_user_model().objects.create_user(username="loner", password="pass")
        self.assertIsNone(customer_for_user(loner))
        self.assertIsNone(customer_for_user(None))
