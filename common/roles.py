from django.db import models

class CustomerRole(models.TextChoices):
    CLIENT     = "client",     "Client"
    WHOLESALER = "wholesaler", "Wholesaler"
    MANAGER    = "manager",    "Manager"
    ADMIN      = "admin",      "Admin"


# roles that may manage prices, tiers and point balances
STAFF_ROLES = {CustomerRole.MANAGER, CustomerRole.ADMIN}
